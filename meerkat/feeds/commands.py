# meerkat/feeds/commands.py

"""
Simple chat command handlers
"""
import logging
from typing import Optional

import httpx

from ..bot.messages import IncomingMessage, PhotoMessage, TextMessage

logger = logging.getLogger(__name__)


async def ping_command(message: IncomingMessage) -> TextMessage:
    """Healthcheck: /ping answers pong"""
    return TextMessage(chat_id=message.chat_id, text="pong")


def picture_command(image_url: str, filename: str = "dacha.jpg",
                    timeout: float = 30.0,
                    transport: Optional[httpx.AsyncBaseTransport] = None):
    """
    Handler sending the picture currently served at image_url (a camera
    snapshot endpoint, typically)
    """

    async def handle(message: IncomingMessage) -> PhotoMessage:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(image_url)
        response.raise_for_status()
        logger.info(f"Fetched {len(response.content)} bytes from {image_url}")
        return PhotoMessage(chat_id=message.chat_id, media=response.content, filename=filename)

    return handle
