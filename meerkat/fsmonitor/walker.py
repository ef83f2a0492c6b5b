# meerkat/fsmonitor/walker.py

"""
One-level directory walker feeding the watch set
"""
import asyncio
import logging
import os
from collections import deque
from typing import Callable, List, Optional

from .watchset import WatchSet

logger = logging.getLogger(__name__)

_CLOSED = object()


class PendingWalkQueue:
    """
    Bounded FIFO of directories waiting for a one-level walk.

    Only directories already registered in the watch set may be put here.
    close() drops whatever is still queued and wakes the consumer.
    """

    def __init__(self, maxsize: int = 100):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def put(self, path: str):
        if self.closed:
            logger.debug(f"Walk queue closed, dropping {path}")
            return
        await self._queue.put(path)

    async def get(self) -> Optional[str]:
        """Next directory, or None once the queue is closed"""
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.task_done()
            return None
        return item

    def task_done(self):
        self._queue.task_done()

    async def join(self):
        """Wait until every queued directory has been walked"""
        await self._queue.join()

    def close(self):
        if self.closed:
            return
        self.closed = True
        dropped = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            if item is not _CLOSED:
                dropped += 1
        if dropped:
            logger.debug(f"Dropped {dropped} pending walks on close")
        self._queue.put_nowait(_CLOSED)

    def qsize(self) -> int:
        return self._queue.qsize()


class DirectoryWalker:
    """
    Consumes the pending walk queue until it is closed.

    Each directory is listed one level deep. Child directories are
    registered first and, when they were not tracked before, walked in turn
    from a local work list. Deeper levels are never visited in the same
    listing; they are reached through their parent's own walk, or through a
    live "created" notification, whichever registers them first.
    """

    def __init__(self, watch_set: WatchSet, queue: PendingWalkQueue):
        self.watch_set = watch_set
        self.queue = queue
        self.stats = {
            'walked': 0,
            'errors': 0,
        }

    async def run(self):
        loop = asyncio.get_running_loop()
        while True:
            directory = await self.queue.get()
            if directory is None:
                break

            try:
                to_walk = deque([directory])
                while to_walk and not self.queue.closed:
                    current = to_walk.pop()
                    new_dirs = await loop.run_in_executor(None, self.walk_one_level, current)
                    to_walk.extend(new_dirs)
            finally:
                self.queue.task_done()

        logger.debug("Directory walker exiting")

    def walk_one_level(self, directory: str) -> List[str]:
        """
        Register the immediate subdirectories of directory

        Returns:
            Subdirectories that were newly registered and still need a walk
        """
        new_dirs = []
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as e:
            # directory vanished between registration and walk
            self.stats['errors'] += 1
            logger.warning(f"Cannot list directory {directory}: {e}")
            return new_dirs

        self.stats['walked'] += 1
        for entry in entries:
            if not _is_real_dir(entry):
                continue

            exists, err = self.watch_set.try_add(entry.path)
            if err is not None:
                self.stats['errors'] += 1
                logger.warning(f"Failed to add directory {entry.path} watch: {err}")
            elif not exists:
                new_dirs.append(entry.path)

        return new_dirs

    def rescan(self, root: str, should_stop: Callable[[], bool] = lambda: False) -> int:
        """
        Walk the whole tree under root, registering anything not yet tracked.

        Unlike the one-level walk this descends into already tracked
        directories too, so it finds directories whose creation
        notifications were lost.

        Returns:
            Number of newly registered directories
        """
        added = 0
        to_walk = deque([root])
        while to_walk and not should_stop():
            current = to_walk.pop()
            try:
                with os.scandir(current) as it:
                    children = [e.path for e in it if _is_real_dir(e)]
            except OSError as e:
                logger.debug(f"Rescan skipping {current}: {e}")
                continue

            for child in children:
                exists, err = self.watch_set.try_add(child)
                if err is not None:
                    self.stats['errors'] += 1
                    logger.warning(f"Failed to add directory {child} watch: {err}")
                    continue
                if not exists:
                    added += 1
                to_walk.append(child)

        return added


def _is_real_dir(entry: os.DirEntry) -> bool:
    try:
        return entry.is_dir(follow_symlinks=False)
    except OSError:
        return False
