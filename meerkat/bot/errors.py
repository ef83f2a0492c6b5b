# meerkat/bot/errors.py

"""
Bot error types
"""


class TelegramAPIError(Exception):
    """Bot API answered with ok=false"""

    def __init__(self, method: str, code: int, description: str):
        super().__init__(f"{method} failed ({code}): {description}")
        self.method = method
        self.code = code
        self.description = description


class SendInterrupted(Exception):
    """Shutdown was requested while a send was waiting to be retried"""
