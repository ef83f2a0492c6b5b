# meerkat/bot/messages.py

"""
Outbound chat messages and inbound commands
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Dict, Optional, Tuple, Union

logger = logging.getLogger(__name__)

MediaSource = Union[str, Path, bytes]


@dataclass
class IncomingMessage:
    """A text message received from a chat"""
    chat_id: int
    text: str
    message_id: int = 0
    username: Optional[str] = None

    @property
    def command(self) -> str:
        """Command token without the @botname suffix"""
        token = self.text.strip().split(maxsplit=1)[0] if self.text.strip() else ""
        return token.split("@", 1)[0]

    @property
    def args(self) -> str:
        parts = self.text.strip().split(maxsplit=1)
        return parts[1] if len(parts) > 1 else ""


@dataclass
class OutboundMessage:
    """
    Base of every message the bot sends.

    The dispatcher assigns the destination with set_chat_id() right before
    sending and always calls close() afterwards, successful or not.
    """
    chat_id: int = 0

    method = ""

    def set_chat_id(self, chat_id: int):
        self.chat_id = chat_id

    def close(self):
        pass

    def to_request(self) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
        """Bot API form fields and multipart files"""
        raise NotImplementedError

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


@dataclass
class TextMessage(OutboundMessage):
    text: str = ""

    method = "sendMessage"

    def to_request(self):
        return {'chat_id': self.chat_id, 'text': self.text}, None


@dataclass
class _MediaMessage(OutboundMessage):
    """
    Message carrying a file.

    A local path is opened lazily by to_request() and the handle released by
    close(), so the same message can be sent to several chats in a row.
    Strings that look like URLs or Bot API file ids are passed through.
    """
    media: MediaSource = b""
    caption: str = ""
    filename: Optional[str] = None

    field_name = ""
    _handle: Optional[BinaryIO] = field(default=None, init=False, repr=False)

    def to_request(self):
        data = {'chat_id': self.chat_id}
        if self.caption:
            data['caption'] = self.caption

        media = self.media
        if isinstance(media, bytes):
            return data, {self.field_name: (self.filename or self.field_name, media)}

        if isinstance(media, str) and (media.startswith(("http://", "https://"))
                                       or not Path(media).is_absolute()):
            data[self.field_name] = media
            return data, None

        path = Path(media)
        self.close()
        self._handle = open(path, "rb")
        return data, {self.field_name: (self.filename or path.name, self._handle)}

    def close(self):
        if self._handle is not None:
            try:
                self._handle.close()
            except OSError as e:
                logger.warning(f"Error closing {self.media}: {e}")
            self._handle = None


@dataclass
class PhotoMessage(_MediaMessage):
    method = "sendPhoto"
    field_name = "photo"


@dataclass
class VideoMessage(_MediaMessage):
    method = "sendVideo"
    field_name = "video"


@dataclass
class DocumentMessage(_MediaMessage):
    method = "sendDocument"
    field_name = "document"
