# meerkat/service.py

"""
Wires feeds, monitors and the bot together for the selected service modes
"""
import asyncio
import logging
import signal
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any, List, Optional

from .bot.client import TelegramClient
from .bot.dispatcher import Bot
from .bot.errors import SendInterrupted
from .feeds.commands import picture_command, ping_command
from .feeds.external_ip import IPAddressStore, PublicIPMonitor
from .feeds.temperature import TemperatureMonitor, TemperatureSensor, temperature_command
from .fsmonitor.monitor import DirectoryMonitor, MonitorSetupError
from .fsmonitor.patterns import FilenameFilter, new_file_filter_chain
from .utils.config import Config

logger = logging.getLogger(__name__)


class ServiceMode(IntFlag):
    NONE = 0
    COMMANDS = 1
    PERIODIC = 2
    FSMONITOR = 4
    HEALTHCHECK = 8
    TEMPMONITOR = 16


@dataclass
class Session:
    """Per-run state shared by the feeds, instead of module globals"""
    config: Config
    sensor: TemperatureSensor
    public_ip: PublicIPMonitor
    monitors: List[DirectoryMonitor] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: Config) -> "Session":
        sensor = TemperatureSensor(
            device_path=config.sensor.device_path,
            min_read_interval=config.sensor.min_read_interval,
        )
        public_ip = PublicIPMonitor(
            resolver_url=config.public_ip.resolver_url,
            store=IPAddressStore(config.public_ip.storage_dirs or None),
            timeout=config.telegram.http_timeout,
        )
        return cls(config=config, sensor=sensor, public_ip=public_ip)


def build_bot(config: Config, modes: ServiceMode, client: Any,
              session: Optional[Session] = None) -> Bot:
    """Create the bot and register everything the modes ask for"""
    session = session or Session.from_config(config)
    bot = Bot(
        client,
        config.telegram.chat_ids,
        runtime=config.bot.runtime,
        base_period=config.bot.base_period,
        retry_interval=config.bot.retry_interval,
        background_queue_size=config.bot.background_queue_size,
    )

    if ServiceMode.COMMANDS in modes:
        logger.info("Adding command handlers")
        bot.add_handler("/temp", temperature_command(session.sensor))
        if config.image_url:
            bot.add_handler("/pic", picture_command(config.image_url,
                                                    timeout=config.telegram.http_timeout))

    if ServiceMode.PERIODIC in modes:
        logger.info("Adding periodic tasks")
        bot.add_periodic_task(config.public_ip.interval, config.public_ip.intro, session.public_ip)

    if ServiceMode.TEMPMONITOR in modes:
        bot.add_periodic_task(
            config.sensor.report_interval,
            "Temperature changed:",
            TemperatureMonitor(session.sensor, threshold=config.sensor.report_threshold),
        )

    if ServiceMode.FSMONITOR in modes:
        logger.info("Adding background tasks")
        monitor_config = config.monitor
        if not monitor_config.directories:
            logger.warning("File system monitoring requested but no directories configured")
        for directory in monitor_config.directories:
            file_filter = new_file_filter_chain(
                FilenameFilter(monitor_config.patterns),
                rate_limit=monitor_config.rate_limit,
            )
            try:
                monitor = DirectoryMonitor(
                    directory,
                    file_filter=file_filter,
                    walk_queue_size=monitor_config.walk_queue_size,
                    stable_checks=monitor_config.stable_checks,
                    stable_interval=monitor_config.stable_interval,
                    notification_queue_size=monitor_config.notification_queue_size,
                    report_queue_size=monitor_config.report_queue_size,
                    report_workers=monitor_config.report_workers,
                )
            except MonitorSetupError as e:
                logger.error(f"fsmonitor: {e}")
                continue
            session.monitors.append(monitor)
            bot.add_background_task(monitor)

    if ServiceMode.HEALTHCHECK in modes:
        bot.add_handler("/ping", ping_command)

    return bot


async def run_service(config: Config, modes: ServiceMode) -> str:
    """
    Run until SIGINT/SIGTERM or until the bot stops on its own

    Returns:
        Final status string
    """
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()
    runtime = config.bot.runtime
    interrupted = False

    def on_signal(signum):
        nonlocal interrupted
        interrupted = True
        logger.info(f"{runtime} received {signal.Signals(signum).name}")
        shutdown.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, on_signal, signum)

    client = TelegramClient(
        config.telegram.token,
        api_url=config.telegram.api_url,
        timeout=config.telegram.http_timeout,
    )
    try:
        bot = build_bot(config, modes, client)
        try:
            await bot.init(shutdown)
        except SendInterrupted as e:
            status = str(e)
        else:
            logger.info("Telegram API initialized")
            status = await bot.run(shutdown)
    finally:
        shutdown.set()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)
        await client.close()

    if interrupted:
        status = f"{runtime} was interrupted by system signal"
    logger.info(status, extra={'runtime': runtime})
    return status
