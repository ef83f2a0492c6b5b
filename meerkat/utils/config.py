# meerkat/utils/config.py

"""
Configuration management for meerkat
"""
import json
import logging
import os
import re
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Invalid configuration value"""


_DURATION_UNITS = {
    'ns': 1e-9,
    'us': 1e-6,
    'µs': 1e-6,
    'ms': 1e-3,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Union[str, int, float, None]) -> Optional[float]:
    """
    Parse a duration such as "30s", "1m30s", "500ms" or "1.5h" into seconds.
    Plain numbers are seconds. Empty values give None.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        pass

    pos, total = 0, 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ConfigError(f"Invalid duration: {value!r}")
    return total


def parse_chat_ids(value: Union[str, List, None]) -> List[int]:
    """Comma separated chat ids, e.g. "12345,-100987" """
    if value is None:
        return []
    items = value.split(",") if isinstance(value, str) else value
    chat_ids = []
    for item in items:
        item = str(item).strip()
        if not item:
            continue
        try:
            chat_ids.append(int(item))
        except ValueError:
            raise ConfigError(f"Failed to parse chat id {item!r}")
    return chat_ids


def parse_directories(value: Union[str, List, None]) -> List[Path]:
    """Semicolon separated directory list"""
    if value is None:
        return []
    items = value.split(";") if isinstance(value, str) else value
    return [Path(str(item).strip()) for item in items if str(item).strip()]


@dataclass
class TelegramConfig:
    """Bot API configuration"""
    token: str = ""
    api_url: str = "https://api.telegram.org"
    chat_ids: List[int] = field(default_factory=list)
    http_timeout: float = 30.0

    def __post_init__(self):
        self.chat_ids = parse_chat_ids(self.chat_ids)


@dataclass
class BotConfig:
    """Dispatch loop configuration"""
    runtime: str = "process"
    base_period: float = 5 * 60  # seconds per periodic tick
    retry_interval: float = 2.0
    background_queue_size: int = 10


@dataclass
class MonitorConfig:
    """File system monitor configuration"""
    directories: List[Path] = field(default_factory=list)
    patterns: List[str] = field(default_factory=lambda: [r"(?i)\.jpe?g$"])
    rate_limit: Optional[float] = None  # seconds between reported files
    walk_queue_size: int = 100
    stable_checks: int = 2
    stable_interval: float = 0.5
    notification_queue_size: int = 1000
    report_queue_size: int = 100
    report_workers: int = 4

    def __post_init__(self):
        self.directories = parse_directories(self.directories)
        self.rate_limit = parse_duration(self.rate_limit)


@dataclass
class SensorConfig:
    """Temperature sensor configuration"""
    device_path: Path = Path("/sys/bus/w1/devices/28-3c01d607ca0a/w1_slave")
    min_read_interval: float = 5.0
    report_threshold: int = 500  # milli-degrees
    report_interval: float = 5 * 60

    def __post_init__(self):
        if isinstance(self.device_path, str):
            self.device_path = Path(self.device_path)


@dataclass
class PublicIPConfig:
    """Public IP change report configuration"""
    resolver_url: str = "https://api.ipify.org"
    interval: float = 30 * 60
    intro: str = "Public IP Changed:"
    storage_dirs: List[Path] = field(default_factory=list)

    def __post_init__(self):
        self.storage_dirs = [Path(d) for d in self.storage_dirs]


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "text"  # text, json, or color
    max_file_size: int = 5 * 1024 * 1024
    backup_count: int = 3


@dataclass
class Config:
    """Main configuration class"""
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    bot: BotConfig = field(default_factory=BotConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    sensor: SensorConfig = field(default_factory=SensorConfig)
    public_ip: PublicIPConfig = field(default_factory=PublicIPConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    image_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        def serialize(obj):
            if isinstance(obj, Path):
                return str(obj)
            if isinstance(obj, dict):
                return {k: serialize(v) for k, v in obj.items()}
            if isinstance(obj, list):
                return [serialize(v) for v in obj]
            return obj

        return serialize(asdict(self))

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False)

    def save(self, path: Union[str, Path]):
        """Save config to file"""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w', encoding='utf-8') as f:
            if path.suffix.lower() in ['.yaml', '.yml']:
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False)
            else:
                json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Configuration saved to {path}")

    def update_from_dict(self, data: Mapping[str, Any]):
        """Update sections from a nested dictionary, unknown keys are errors"""
        for key, value in data.items():
            if not hasattr(self, key):
                raise ConfigError(f"Unknown configuration key: {key}")
            current = getattr(self, key)
            if is_dataclass(current):
                if not isinstance(value, Mapping):
                    raise ConfigError(f"Section {key} must be a mapping")
                known = {f.name for f in fields(current)}
                unknown = set(value) - known
                if unknown:
                    raise ConfigError(f"Unknown keys in {key}: {', '.join(sorted(unknown))}")
                merged = {**asdict(current), **value}
                try:
                    setattr(self, key, type(current)(**merged))
                except (TypeError, ValueError) as e:
                    raise ConfigError(f"Invalid {key} section: {e}") from e
            else:
                setattr(self, key, value)

    def apply_env(self, environ: Optional[Mapping[str, str]] = None):
        """Override settings from environment variables"""
        env = os.environ if environ is None else environ

        if env.get("TELEGRAM_APITOKEN"):
            self.telegram.token = env["TELEGRAM_APITOKEN"].strip()
        if env.get("CHAT_ID", "").strip():
            self.telegram.chat_ids = parse_chat_ids(env["CHAT_ID"])
        if env.get("MONITORED_DIRECTORIES", "").strip():
            self.monitor.directories = parse_directories(env["MONITORED_DIRECTORIES"])
        if env.get("FSMON_RATE_LIMIT", "").strip():
            self.monitor.rate_limit = parse_duration(env["FSMON_RATE_LIMIT"])
        if env.get("IMAGE_URL", "").strip():
            self.image_url = env["IMAGE_URL"].strip()
        if env.get("SENSOR_DEVICE_PATH", "").strip():
            self.sensor.device_path = Path(env["SENSOR_DEVICE_PATH"].strip())
        if env.get("LOG_LEVEL", "").strip():
            self.logging.level = env["LOG_LEVEL"].strip()

    def validate(self):
        if not self.telegram.token:
            raise ConfigError("TELEGRAM_APITOKEN is not set")
        if not self.telegram.chat_ids:
            raise ConfigError("CHAT_ID is not set or empty")
        if self.bot.base_period <= 0:
            raise ConfigError("bot.base_period must be positive")
        if self.bot.retry_interval <= 0:
            raise ConfigError("bot.retry_interval must be positive")
        if self.monitor.report_workers < 1:
            raise ConfigError("monitor.report_workers must be at least 1")


def load_config(path: Union[str, Path, None] = None,
                environ: Optional[Mapping[str, str]] = None) -> Config:
    """
    Build the configuration: defaults, then the config file (YAML or JSON)
    if given, then environment variables
    """
    config = Config()

    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        logger.info(f"Loading configuration from {path}")
        with open(path, 'r', encoding='utf-8') as f:
            try:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    data = yaml.safe_load(f) or {}
                else:
                    data = json.load(f)
            except (yaml.YAMLError, json.JSONDecodeError) as e:
                raise ConfigError(f"Cannot parse {path}: {e}") from e

        if not isinstance(data, Mapping):
            raise ConfigError(f"{path} must contain a mapping")
        config.update_from_dict(data)

    config.apply_env(environ)
    return config
