# meerkat/fsmonitor/classifier.py

"""
Decides what a raw file system notification means for the monitor
"""
import asyncio
import logging
import os
from typing import Optional

from .events import EventType, FsEvent
from .patterns import FilterFunc
from .walker import PendingWalkQueue
from .watchset import WatchSet

logger = logging.getLogger(__name__)


class EventClassifier:
    """
    Maps notifications to actions:

    - rename, chmod, write: ignored
    - create of a directory: register, then queue for a one-level walk
    - create of a file: run through the filename filter, return the path
      when accepted
    - remove: drop the path from the watch set if it was a tracked
      directory; inotify reports a removed directory twice (once from the
      parent, once from the directory itself), the second one is a no-op
    """

    def __init__(self, watch_set: WatchSet, walk_queue: PendingWalkQueue,
                 file_filter: Optional[FilterFunc] = None):
        self.watch_set = watch_set
        self.walk_queue = walk_queue
        self.file_filter = file_filter

        self.stats = {
            'classified': 0,
            'ignored': 0,
            'directories': 0,
            'accepted': 0,
            'rejected': 0,
            'errors': 0,
        }

    async def classify(self, event: FsEvent) -> Optional[str]:
        """
        Returns:
            Path of a new file to report, None otherwise
        """
        self.stats['classified'] += 1

        if event.event_type == EventType.CREATE:
            return await self._on_create(event.path)

        if event.event_type == EventType.REMOVE:
            # unschedule joins the emitter thread
            if await asyncio.to_thread(self.watch_set.discard, event.path):
                logger.info(f"Stopped watching removed directory {event.path}")
            return None

        self.stats['ignored'] += 1
        return None

    async def _on_create(self, path: str) -> Optional[str]:
        try:
            is_dir = os.path.isdir(path) and not os.path.islink(path)
            if not is_dir and not os.path.exists(path):
                raise FileNotFoundError(path)
        except OSError as e:
            self.stats['errors'] += 1
            logger.info(f"Dropping create event for {path}: {e}")
            return None

        if is_dir:
            self.stats['directories'] += 1
            # schedule() starts an emitter thread and may wait on a concurrent add
            exists, err = await asyncio.to_thread(self.watch_set.try_add, path)
            if err is not None:
                logger.warning(f"Failed to add directory {path} watch: {err}")
            elif not exists:
                await self.walk_queue.put(path)
            return None

        if self.file_filter is not None and not self.file_filter(path):
            self.stats['rejected'] += 1
            return None

        self.stats['accepted'] += 1
        logger.info(f"New file: {path}", extra={'path': path})
        return path
