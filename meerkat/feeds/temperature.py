# meerkat/feeds/temperature.py

"""
DS18B20 1-wire temperature sensor feed
"""
import asyncio
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

from ..bot.messages import IncomingMessage, TextMessage

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_PATH = "/sys/bus/w1/devices/28-3c01d607ca0a/w1_slave"
ERR_TEMP = -1000
MAX_RETRIES = 10
MIN_REFRESH_INTERVAL = 5.0  # seconds
REPORT_THRESHOLD = 500  # milli-degrees


class SensorReadError(Exception):
    """Sensor output could not be read or parsed"""


def parse_temperature(lines: Iterable[str]) -> int:
    """
    Extract the reading from w1_slave output

    The first line whose last token starts with "t=" holds the temperature
    in milli-degrees Celsius, e.g. "4b 46 7f ff 0c 10 1c t=29812".

    Raises:
        SensorReadError: no such line, or the value is not an integer
    """
    for line in lines:
        tokens = line.strip().split(" ")
        if len(tokens) < 2:
            continue
        last = tokens[-1]
        if not last.startswith("t="):
            continue

        parts = last.split("=")
        if len(parts) != 2:
            raise SensorReadError(f"could not parse {last}")
        try:
            value = int(parts[1])
        except ValueError:
            raise SensorReadError(f"could not parse {last}")
        if not -(2 ** 31) <= value < 2 ** 31:
            raise SensorReadError(f"reading out of range: {last}")
        logger.debug(f"Scanned temp {value}")
        return value

    raise SensorReadError("no temp pattern found")


def format_temperature(value: int) -> str:
    return f"{value / 1000.0:.1f} ℃ 🌡"


class TemperatureSensor:
    """
    Cached access to one sensor.

    Reads are throttled to one per min_read_interval; a read that returns
    the previous value is retried a few times since the sensor does not
    always refresh. On failure the last good reading is returned.
    """

    def __init__(self, device_path: Union[str, Path] = DEFAULT_DEVICE_PATH,
                 min_read_interval: float = MIN_REFRESH_INTERVAL,
                 retry_delay: float = 0.1):
        self.device_path = Path(device_path)
        self.min_read_interval = min_read_interval
        self.retry_delay = retry_delay

        self.last_temp = ERR_TEMP
        self.last_time: Optional[float] = None
        self.last_timestamp = datetime.now()
        self._lock = asyncio.Lock()

    def read_once(self) -> int:
        try:
            with open(self.device_path, "r", encoding="utf-8", errors="replace") as f:
                return parse_temperature(f)
        except OSError as e:
            raise SensorReadError(f"cannot read {self.device_path}: {e}") from e

    async def read(self, retries: int = MAX_RETRIES) -> Tuple[int, datetime, Optional[Exception]]:
        """
        Returns:
            (milli-degrees, time of the reading, error of the last attempt)
        """
        async with self._lock:
            if self.last_time is not None and time.monotonic() - self.last_time < self.min_read_interval:
                return self.last_temp, self.last_timestamp, None

            retries = min(max(retries, 1), MAX_RETRIES)
            temperature, error = ERR_TEMP, None
            for attempt in range(retries + 1):
                try:
                    temperature = await asyncio.to_thread(self.read_once)
                    error = None
                    if temperature != self.last_temp:
                        break
                except SensorReadError as e:
                    error = e
                    logger.warning(f"Sensor read failed: {e}")
                if attempt < retries:
                    await asyncio.sleep(self.retry_delay)

            if error is not None:
                return self.last_temp, self.last_timestamp, error

            self.last_temp = temperature
            self.last_time = time.monotonic()
            self.last_timestamp = datetime.now()
            return temperature, self.last_timestamp, None


class TemperatureMonitor:
    """Periodic task reporting changes larger than threshold"""

    def __init__(self, sensor: TemperatureSensor, threshold: int = REPORT_THRESHOLD,
                 initial: int = -10):
        self.sensor = sensor
        self.threshold = threshold
        self.reported = initial

    async def __call__(self) -> str:
        value, _, err = await self.sensor.read()
        if err is not None:
            logger.error(f"Error reading temperature: {err}")
            return ""
        if abs(value - self.reported) > self.threshold:
            self.reported = value
            return format_temperature(value)
        return ""


def temperature_command(sensor: TemperatureSensor):
    """Handler for /temp"""

    async def handle(message: IncomingMessage) -> TextMessage:
        value, timestamp, _ = await sensor.read()
        text = f"{format_temperature(value)} on {timestamp.strftime('%b %-d %H:%M:%S')}"
        return TextMessage(chat_id=message.chat_id, text=text)

    return handle
