# meerkat/bot/dispatcher.py

"""
Bot event loop: chat commands, periodic reports and background events
multiplexed into one serialized stream of outgoing messages
"""
import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from .errors import SendInterrupted
from .messages import IncomingMessage, OutboundMessage, TextMessage

logger = logging.getLogger(__name__)

CommandHandler = Callable[[IncomingMessage], Awaitable[OutboundMessage]]
TaskFunction = Callable[[], Awaitable[str]]
BackgroundFunction = Callable[[asyncio.Event, asyncio.Queue], Awaitable[None]]

BASE_PERIOD = 5 * 60  # seconds per tick
RETRY_INTERVAL = 2.0
BACKGROUND_QUEUE_SIZE = 10
SHUTDOWN_GRACE = 5.0


@dataclass
class PeriodicTask:
    interval: int  # ticks, always >= 1
    intro: str
    fn: TaskFunction


def interval_to_ticks(interval: Union[float, timedelta], base_period: float = BASE_PERIOD) -> int:
    """
    Number of base ticks covering interval, rounded up, at least one

    Args:
        interval: seconds or timedelta
        base_period: seconds per tick
    """
    if isinstance(interval, timedelta):
        interval = interval.total_seconds()
    if interval <= 0:
        return 1
    # guard against float noise making an exact multiple round up
    ticks = math.ceil(round(interval / base_period, 9))
    return max(1, ticks)


class Bot:
    """
    Serializes everything the bot says.

    Handlers, periodic tasks and background functions are registered before
    run(); while running only the tick counter changes. Every send is
    retried every retry_interval seconds until it succeeds or shutdown is
    requested.
    """

    def __init__(self, client: Any, chat_ids: Iterable[int],
                 runtime: str = "process",
                 base_period: float = BASE_PERIOD,
                 retry_interval: float = RETRY_INTERVAL,
                 background_queue_size: int = BACKGROUND_QUEUE_SIZE):
        """
        Args:
            client: chat transport with async send(message), and optionally
                poll_updates(queue, shutdown, retry_interval) and get_me()
            chat_ids: authorized chats; commands from anyone else are ignored
            runtime: name used in status strings
            base_period: seconds between periodic ticks
            retry_interval: seconds between send retries
            background_queue_size: capacity of the background event queue
        """
        self.client = client
        self.chat_ids: List[int] = list(dict.fromkeys(chat_ids))
        if not self.chat_ids:
            raise ValueError("At least one authorized chat id is required")
        self.allowed_chat_ids = set(self.chat_ids)
        self.runtime = runtime
        self.base_period = base_period
        self.retry_interval = retry_interval

        self.handlers: Dict[str, CommandHandler] = {}
        self.periodic_tasks: List[PeriodicTask] = []
        self.background_functions: List[BackgroundFunction] = []
        self.background_events: asyncio.Queue = asyncio.Queue(maxsize=background_queue_size)
        self.updates: asyncio.Queue = asyncio.Queue()
        self.tick = 0

        self.stats = {
            'commands': 0,
            'ignored_commands': 0,
            'periodic_reports': 0,
            'background_events': 0,
            'send_failures': 0,
        }

    # registration

    def add_handler(self, command: str, handler: CommandHandler):
        logger.info(f"Registered command: {command}")
        self.handlers[command] = handler

    def add_periodic_task(self, interval: Union[float, timedelta], intro: str, fn: TaskFunction):
        task = PeriodicTask(interval_to_ticks(interval, self.base_period), intro, fn)
        logger.info(f"Added task to run every {task.interval * self.base_period / 60:g} minutes")
        self.periodic_tasks.append(task)

    def add_background_task(self, fn: BackgroundFunction):
        self.background_functions.append(fn)

    # lifecycle

    async def init(self, shutdown: asyncio.Event):
        """Connect to the chat API, retrying until it answers or shutdown"""
        logger.info("Connecting bot client to API")
        if hasattr(self.client, "get_me"):
            await self._retry_till_interrupt(shutdown, self.client.get_me)

    async def run(self, shutdown: asyncio.Event) -> str:
        """
        Serve until shutdown is set

        Returns:
            Status string telling how the loop stopped
        """
        loop = asyncio.get_running_loop()

        background = [
            asyncio.create_task(self._run_background(fn, shutdown), name=f"background-{i}")
            for i, fn in enumerate(self.background_functions)
        ]
        poller = None
        if hasattr(self.client, "poll_updates"):
            poller = asyncio.create_task(
                self.client.poll_updates(self.updates, shutdown, self.retry_interval),
                name="update-poller",
            )

        next_tick = loop.time() + self.base_period
        sources: Dict[str, Callable[[], Awaitable[Any]]] = {
            'shutdown': shutdown.wait,
            'tick': lambda: asyncio.sleep(max(0.0, next_tick - loop.time())),
            'update': self.updates.get,
            'event': self.background_events.get,
        }
        pending: Dict[str, asyncio.Task] = {}

        try:
            while True:
                for name, source in sources.items():
                    if name not in pending:
                        pending[name] = asyncio.create_task(source())

                await asyncio.wait(pending.values(), return_when=asyncio.FIRST_COMPLETED)

                if pending['shutdown'].done():
                    return f"{self.runtime} context cancelled"

                try:
                    if pending['tick'].done():
                        del pending['tick']
                        next_tick += self.base_period
                        await self.process_periodic_tasks(shutdown)

                    if pending['update'].done():
                        message = pending.pop('update').result()
                        await self.process_command(message, shutdown)

                    if pending['event'].done():
                        event = pending.pop('event').result()
                        await self.process_background_event(event, shutdown)
                except SendInterrupted as e:
                    return str(e)
        finally:
            sources_left = list(pending.values())
            if poller is not None:
                sources_left.append(poller)
            for task in sources_left:
                task.cancel()
            await asyncio.gather(*sources_left, return_exceptions=True)

            # an event dequeued in the same round shutdown won was never sent
            event_task = pending.get('event')
            if event_task is not None and not event_task.cancelled() \
                    and event_task.exception() is None:
                event_task.result().close()
            await self._stop_background(background)

    # event handling

    async def process_periodic_tasks(self, shutdown: asyncio.Event):
        self.tick += 1
        for task in self.periodic_tasks:
            if self.tick % task.interval != 0:
                continue
            try:
                text = await task.fn()
            except Exception as e:
                logger.error(f"Periodic task {task.intro!r} failed: {e}")
                continue
            if not text:
                continue

            self.stats['periodic_reports'] += 1
            for chat_id in self.chat_ids:
                message = TextMessage(chat_id=chat_id, text=f"{task.intro} {text}")
                await self._retry_till_interrupt(shutdown, lambda m=message: self.client.send(m))

    async def process_command(self, message: IncomingMessage, shutdown: asyncio.Event):
        if message.chat_id not in self.allowed_chat_ids:
            logger.warning(f"Received {message.text[:10]!r} message from unknown chat {message.chat_id}",
                           extra={'chat_id': message.chat_id})
            self.stats['ignored_commands'] += 1
            return

        handler = self.handlers.get(message.command)
        if handler is None:
            logger.debug(f"No handler for {message.command!r}")
            self.stats['ignored_commands'] += 1
            return

        self.stats['commands'] += 1
        logger.info(f"Handling {message.command}",
                    extra={'command': message.command, 'chat_id': message.chat_id})

        async def respond():
            response = await handler(message)
            try:
                if not response.chat_id:
                    response.set_chat_id(message.chat_id)
                return await self.client.send(response)
            finally:
                response.close()

        await self._retry_till_interrupt(shutdown, respond)

    async def process_background_event(self, event: OutboundMessage, shutdown: asyncio.Event):
        logger.info(f"Received background event {type(event).__name__}")
        self.stats['background_events'] += 1

        for chat_id in self.chat_ids:
            event.set_chat_id(chat_id)

            async def send():
                try:
                    return await self.client.send(event)
                finally:
                    event.close()

            await self._retry_till_interrupt(shutdown, send)

    async def _retry_till_interrupt(self, shutdown: asyncio.Event,
                                    operation: Callable[[], Awaitable[Any]]) -> Any:
        while True:
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.stats['send_failures'] += 1
                logger.warning(f"Telegram API failure: {e}")
                try:
                    await asyncio.wait_for(shutdown.wait(), timeout=self.retry_interval)
                except asyncio.TimeoutError:
                    continue
                raise SendInterrupted(f"{self.runtime} was cancelled") from e

    # background functions

    async def _run_background(self, fn: BackgroundFunction, shutdown: asyncio.Event):
        try:
            await fn(shutdown, self.background_events)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Background task {fn!r} failed: {e}", exc_info=True)

    async def _stop_background(self, tasks: List[asyncio.Task]):
        if tasks:
            _, still_running = await asyncio.wait(tasks, timeout=SHUTDOWN_GRACE)
            for task in still_running:
                logger.warning(f"Background task {task.get_name()} did not stop, cancelling")
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

        while True:
            try:
                event = self.background_events.get_nowait()
            except asyncio.QueueEmpty:
                break
            event.close()

    def get_status(self) -> Dict[str, Any]:
        return {
            'runtime': self.runtime,
            'tick': self.tick,
            'commands': sorted(self.handlers),
            'periodic_tasks': [
                {'intro': t.intro, 'every_ticks': t.interval} for t in self.periodic_tasks
            ],
            'background_functions': len(self.background_functions),
            'chat_ids': list(self.chat_ids),
            'stats': self.stats.copy(),
        }
