# meerkat/bot/__init__.py

"""
Chat bot: Telegram transport and the dispatch loop
"""
from .client import TelegramClient
from .dispatcher import Bot, PeriodicTask, interval_to_ticks
from .errors import SendInterrupted, TelegramAPIError
from .messages import (
    IncomingMessage, OutboundMessage, TextMessage,
    PhotoMessage, VideoMessage, DocumentMessage,
)

__all__ = [
    'TelegramClient',
    'Bot', 'PeriodicTask', 'interval_to_ticks',
    'SendInterrupted', 'TelegramAPIError',
    'IncomingMessage', 'OutboundMessage', 'TextMessage',
    'PhotoMessage', 'VideoMessage', 'DocumentMessage',
]
