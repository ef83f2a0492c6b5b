# meerkat/fsmonitor/events.py

"""
Raw file system notifications as seen by the directory monitor
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
)


class EventType(Enum):
    CREATE = "create"
    WRITE = "write"
    REMOVE = "remove"
    RENAME = "rename"
    CHMOD = "chmod"


# watchdog reports attribute changes as modifications, closes as "closed"
_WATCHDOG_EVENT_TYPES = {
    EVENT_TYPE_CREATED: EventType.CREATE,
    EVENT_TYPE_MODIFIED: EventType.WRITE,
    EVENT_TYPE_CLOSED: EventType.WRITE,
    EVENT_TYPE_DELETED: EventType.REMOVE,
    EVENT_TYPE_MOVED: EventType.RENAME,
}


@dataclass
class FsEvent:
    event_type: EventType
    path: str
    dest_path: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self):
        if self.dest_path:
            return f"{self.event_type.value}: {self.path} -> {self.dest_path}"
        return f"{self.event_type.value}: {self.path}"

    @classmethod
    def from_watchdog(cls, event: FileSystemEvent) -> Optional["FsEvent"]:
        """
        Convert a watchdog event, None for kinds the monitor never looks at
        (opened, closed without write)
        """
        event_type = _WATCHDOG_EVENT_TYPES.get(event.event_type)
        if event_type is None:
            return None

        src_path = _as_str(event.src_path)
        dest_path = _as_str(getattr(event, "dest_path", "")) or None
        return cls(event_type=event_type, path=src_path, dest_path=dest_path)


def _as_str(path) -> str:
    if isinstance(path, bytes):
        return path.decode()
    return str(path)
