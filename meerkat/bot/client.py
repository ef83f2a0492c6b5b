# meerkat/bot/client.py

"""
Telegram Bot API client
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import TelegramAPIError
from .messages import IncomingMessage, OutboundMessage

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.telegram.org"


class TelegramClient:
    """Thin async wrapper over the Bot API HTTP interface"""

    def __init__(self, token: str, api_url: str = DEFAULT_API_URL,
                 timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            token: bot token from @BotFather
            api_url: Bot API server
            timeout: HTTP timeout in seconds, long polls use timeout - 1
            transport: custom httpx transport (tests)
        """
        if not token:
            raise ValueError("Telegram API token is empty")
        self.timeout = timeout
        self.client = httpx.AsyncClient(
            base_url=f"{api_url.rstrip('/')}/bot{token}/",
            timeout=timeout,
            transport=transport,
        )
        self.offset = 0
        self.me: Optional[Dict[str, Any]] = None

    async def close(self):
        await self.client.aclose()

    async def _call(self, method: str, data: Optional[Dict[str, Any]] = None,
                    files: Optional[Dict[str, Any]] = None,
                    timeout: Optional[float] = None) -> Any:
        kwargs: Dict[str, Any] = {}
        if timeout is not None:
            kwargs['timeout'] = timeout
        if files:
            response = await self.client.post(method, data=data, files=files, **kwargs)
        else:
            response = await self.client.post(method, json=data or {}, **kwargs)

        try:
            payload = response.json()
        except ValueError:
            response.raise_for_status()
            raise TelegramAPIError(method, response.status_code, "non-JSON response")

        if not payload.get("ok"):
            raise TelegramAPIError(
                method,
                payload.get("error_code", response.status_code),
                payload.get("description", ""),
            )
        return payload.get("result")

    async def get_me(self) -> Dict[str, Any]:
        self.me = await self._call("getMe")
        logger.info(f"Authorized on account {self.me.get('username')}")
        return self.me

    async def send(self, message: OutboundMessage) -> Dict[str, Any]:
        data, files = message.to_request()
        return await self._call(message.method, data, files)

    async def get_updates(self, timeout: Optional[int] = None) -> List[IncomingMessage]:
        """
        Long-poll for new updates and advance the offset past them.
        Non-message updates are skipped.
        """
        if timeout is None:
            timeout = max(int(self.timeout) - 1, 0)
        result = await self._call(
            "getUpdates",
            {'offset': self.offset, 'timeout': timeout, 'allowed_updates': ["message"]},
            timeout=timeout + self.timeout,
        )

        messages = []
        for update in result or []:
            self.offset = max(self.offset, update.get("update_id", 0) + 1)
            message = update.get("message")
            if not message or "text" not in message:
                continue
            messages.append(IncomingMessage(
                chat_id=message["chat"]["id"],
                text=message["text"],
                message_id=message.get("message_id", 0),
                username=message.get("from", {}).get("username"),
            ))
        return messages

    async def poll_updates(self, queue: asyncio.Queue, shutdown: asyncio.Event,
                           retry_interval: float = 2.0):
        """Feed incoming messages into queue until shutdown is set"""
        logger.info("Starting update poller")
        while not shutdown.is_set():
            try:
                messages = await self.get_updates()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Telegram API failure while polling updates: {e}")
                try:
                    await asyncio.wait_for(shutdown.wait(), timeout=retry_interval)
                except asyncio.TimeoutError:
                    pass
                continue

            for message in messages:
                await queue.put(message)

        logger.info("Update poller stopped")
