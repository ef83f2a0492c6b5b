# meerkat/fsmonitor/monitor.py

"""
Directory tree monitor reporting new files as chat messages
"""
import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler

from ..bot.messages import DocumentMessage, OutboundMessage, PhotoMessage, VideoMessage
from ..utils.file_utils import fits_photo_limits, get_file_type, wait_for_file_stable
from .classifier import EventClassifier
from .events import FsEvent
from .patterns import FilterFunc
from .walker import DirectoryWalker, PendingWalkQueue
from .watchset import ObserverRegistrar, WatchRegistrar, WatchSet

logger = logging.getLogger(__name__)

MessageFactory = Callable[[str], OutboundMessage]
RegistrarFactory = Callable[[FileSystemEventHandler], WatchRegistrar]


class MonitorSetupError(Exception):
    """The watch facility or the root directory could not be set up"""


def file_message(path: str) -> OutboundMessage:
    """Photo for images the Bot API accepts as photos, video or document otherwise"""
    caption = f"file {path} added"
    file_type = get_file_type(path)
    if file_type == 'image' and fits_photo_limits(path):
        return PhotoMessage(media=Path(path), caption=caption)
    if file_type == 'video':
        return VideoMessage(media=Path(path), caption=caption)
    return DocumentMessage(media=Path(path), caption=caption)


DEFAULT_STABLE_CHECKS = 2
NOTIFICATION_QUEUE_SIZE = 1000
REPORT_QUEUE_SIZE = 100
REPORT_WORKERS = 4


class _NotificationBridge(FileSystemEventHandler):
    """
    Hands watchdog events from the observer thread to the event loop.

    Never blocks: watchdog holds the observer lock while dispatching, and
    schedule()/unschedule() need that same lock.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, offer: Callable[[FsEvent], None]):
        self.loop = loop
        self.offer = offer

    def on_any_event(self, event: FileSystemEvent):
        fs_event = FsEvent.from_watchdog(event)
        if fs_event is None:
            return
        try:
            self.loop.call_soon_threadsafe(self.offer, fs_event)
        except RuntimeError:
            # loop closed during shutdown
            pass


class DirectoryMonitor:
    """
    Watches a directory tree and reports newly created files.

    An instance is a background function: await monitor(shutdown, events)
    runs until shutdown is set. Startup order matters:

    1. a fresh observer is started
    2. the root directory is registered, failure raises MonitorSetupError
    3. the notification consumer starts
    4. the root is queued for the walker, which registers the rest of the
       tree one level at a time

    A directory is always registered before it is walked, so files created
    in it while the walk is in progress still produce notifications.

    The consumer only classifies. Accepted files go through a bounded
    report queue to a few reporter workers, which wait for the file to stop
    growing and then write to the events queue. A full events queue blocks
    the reporters, then the consumer, and finally overflows the bounded
    notification queue. Overflowing notifications are dropped and counted,
    and the tree is rescanned once the consumer catches up so that no
    directory stays unwatched.
    """

    def __init__(self, directory, file_filter: Optional[FilterFunc] = None,
                 message_factory: MessageFactory = file_message,
                 registrar_factory: Optional[RegistrarFactory] = None,
                 walk_queue_size: int = 100,
                 stable_checks: int = DEFAULT_STABLE_CHECKS,
                 stable_interval: float = 0.5,
                 notification_queue_size: int = NOTIFICATION_QUEUE_SIZE,
                 report_queue_size: int = REPORT_QUEUE_SIZE,
                 report_workers: int = REPORT_WORKERS):
        """
        Args:
            directory: root of the tree to watch
            file_filter: decides which new files are reported, None reports all
            message_factory: builds the chat message for a reported file
            registrar_factory: builds the OS watch facility from an event
                handler, defaults to a watchdog observer
            walk_queue_size: capacity of the pending walk queue
            stable_checks: unchanged size checks before a new file is
                reported, 0 reports immediately
            stable_interval: seconds between size checks
            notification_queue_size: raw notifications buffered before
                new ones are dropped
            report_queue_size: accepted files waiting for a reporter
            report_workers: files waited on concurrently
        """
        self.directory = os.path.abspath(os.fspath(directory))
        if not os.path.isdir(self.directory):
            raise MonitorSetupError(f"Can't watch non-existent directory {self.directory}")
        if report_workers < 1:
            raise ValueError("report_workers must be at least 1")

        self.file_filter = file_filter
        self.message_factory = message_factory
        self.registrar_factory = registrar_factory or ObserverRegistrar
        self.walk_queue_size = walk_queue_size
        self.stable_checks = stable_checks
        self.stable_interval = stable_interval
        self.notification_queue_size = notification_queue_size
        self.report_queue_size = report_queue_size
        self.report_workers = report_workers

        self.registrar: Optional[WatchRegistrar] = None
        self.watch_set: Optional[WatchSet] = None
        self.walk_queue: Optional[PendingWalkQueue] = None
        self.walker: Optional[DirectoryWalker] = None
        self.classifier: Optional[EventClassifier] = None
        self.notifications: Optional[asyncio.Queue] = None
        self.reports: Optional[asyncio.Queue] = None
        self.is_running = False
        self._overflowed = False
        self._walker_task: Optional[asyncio.Task] = None

        self.stats = {
            'notifications': 0,
            'dropped': 0,
            'rescans': 0,
            'reported': 0,
            'errors': 0,
        }

        logger.info(f"DirectoryMonitor initialized for {self.directory}")

    def __repr__(self):
        return f"DirectoryMonitor({self.directory!r})"

    async def start(self):
        """Create the watch handle and register the root directory"""
        loop = asyncio.get_running_loop()
        self.notifications = asyncio.Queue(maxsize=self.notification_queue_size)
        self.reports = asyncio.Queue(maxsize=self.report_queue_size)
        self._overflowed = False
        handler = _NotificationBridge(loop, self._offer)

        try:
            self.registrar = self.registrar_factory(handler)
            if hasattr(self.registrar, "start"):
                self.registrar.start()
        except Exception as e:
            raise MonitorSetupError(f"Failed to create watcher: {e}") from e

        self.watch_set = WatchSet(self.registrar)
        _, err = self.watch_set.try_add(self.directory)
        if err is not None:
            self._stop_registrar()
            raise MonitorSetupError(
                f"Can't start watching possibly non-existent directory {self.directory}: {err}"
            ) from err

        self.walk_queue = PendingWalkQueue(self.walk_queue_size)
        self.walker = DirectoryWalker(self.watch_set, self.walk_queue)
        self.classifier = EventClassifier(self.watch_set, self.walk_queue, self.file_filter)
        self.is_running = True
        logger.info(f"Started watching {self.directory}", extra={'directory': self.directory})

    async def stop(self):
        if not self.is_running:
            return
        self.is_running = False

        await asyncio.to_thread(self._stop_registrar)
        if self.walk_queue is not None:
            self.walk_queue.close()
        if self._walker_task is not None:
            try:
                await asyncio.wait_for(self._walker_task, timeout=10)
            except asyncio.TimeoutError:
                logger.warning(f"Walker for {self.directory} did not stop in time")
            except Exception as e:
                logger.error(f"Walker for {self.directory} failed: {e}")
            self._walker_task = None

        logger.info(f"Stopped watching {self.directory}")

    def _stop_registrar(self):
        if self.registrar is not None and hasattr(self.registrar, "stop"):
            try:
                self.registrar.stop()
            except Exception as e:
                logger.error(f"Error stopping watcher for {self.directory}: {e}")

    def _offer(self, event: FsEvent):
        """Runs on the loop; queue a raw notification or count it as dropped"""
        try:
            self.notifications.put_nowait(event)
        except asyncio.QueueFull:
            self.stats['dropped'] += 1
            if not self._overflowed:
                logger.warning(f"Notification queue for {self.directory} is full, dropping events")
            self._overflowed = True

    async def __call__(self, shutdown: asyncio.Event, events: asyncio.Queue):
        await self.start()
        consumer = asyncio.create_task(self._consume(shutdown))
        reporters = [
            asyncio.create_task(self._report(events, shutdown))
            for _ in range(self.report_workers)
        ]
        try:
            # walker only starts once notifications are being consumed
            await asyncio.sleep(0)
            self._walker_task = asyncio.create_task(self.walker.run())
            await self.walk_queue.put(self.directory)
            await consumer
        finally:
            for task in (consumer, *reporters):
                task.cancel()
            await asyncio.gather(consumer, *reporters, return_exceptions=True)
            await self.stop()

    async def wait_settled(self):
        """Wait until every queued walk has finished"""
        await self.walk_queue.join()

    async def _consume(self, shutdown: asyncio.Event):
        stop = asyncio.create_task(shutdown.wait())
        try:
            while True:
                get = asyncio.create_task(self.notifications.get())
                done, _ = await asyncio.wait({get, stop}, return_when=asyncio.FIRST_COMPLETED)
                if stop in done:
                    get.cancel()
                    return

                await self.process_notification(get.result(), shutdown)
                if self._overflowed:
                    await self._recover(shutdown)
        finally:
            stop.cancel()

    async def process_notification(self, event: FsEvent, shutdown: asyncio.Event):
        """Classify one notification, handing accepted files to the reporters"""
        self.stats['notifications'] += 1
        try:
            path = await self.classifier.classify(event)
        except Exception as e:
            self.stats['errors'] += 1
            logger.error(f"Error handling {event}: {e}")
            return

        if path:
            await _put_until_shutdown(self.reports, path, shutdown)

    async def _recover(self, shutdown: asyncio.Event):
        """Register directories whose creation notifications were dropped"""
        self._overflowed = False
        self.stats['rescans'] += 1
        logger.warning(f"Rescanning {self.directory} after dropped notifications")
        added = await asyncio.to_thread(self.walker.rescan, self.directory, shutdown.is_set)
        if added:
            logger.info(f"Rescan of {self.directory} registered {added} directories")

    async def _report(self, events: asyncio.Queue, shutdown: asyncio.Event):
        """Reporter worker, runs until cancelled"""
        while True:
            path = await self.reports.get()
            try:
                if not await wait_for_file_stable(path, check_interval=self.stable_interval,
                                                  required_stable=self.stable_checks):
                    logger.warning(f"File {path} vanished or kept changing, not reporting")
                    continue
                message = self.message_factory(path)
            except Exception as e:
                self.stats['errors'] += 1
                logger.error(f"Error reporting {path}: {e}")
                continue

            if await self._emit(message, shutdown, events):
                self.stats['reported'] += 1

    async def _emit(self, message: OutboundMessage, shutdown: asyncio.Event,
                    events: asyncio.Queue) -> bool:
        """
        Write message to events, blocking while it is full

        Returns:
            False when shutdown came first; the message is closed then
        """
        try:
            delivered = await _put_until_shutdown(events, message, shutdown)
        except asyncio.CancelledError:
            message.close()
            raise
        if not delivered:
            message.close()
        return delivered

    def get_status(self) -> Dict[str, Any]:
        return {
            'directory': self.directory,
            'is_running': self.is_running,
            'watched_directories': len(self.watch_set) if self.watch_set else 0,
            'pending_walks': self.walk_queue.qsize() if self.walk_queue else 0,
            'pending_notifications': self.notifications.qsize() if self.notifications else 0,
            'pending_reports': self.reports.qsize() if self.reports else 0,
            'stats': {
                **self.stats,
                **(self.classifier.stats if self.classifier else {}),
            },
        }


async def _put_until_shutdown(queue: asyncio.Queue, item, shutdown: asyncio.Event) -> bool:
    """Put item, waiting for space unless shutdown is set first"""
    if shutdown.is_set():
        return False

    put = asyncio.create_task(queue.put(item))
    stop = asyncio.create_task(shutdown.wait())
    try:
        done, _ = await asyncio.wait({put, stop}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop.cancel()
        if not put.done():
            put.cancel()
    return put in done
