# meerkat/utils/logger.py

"""
Logging setup for meerkat.

Bot API URLs carry the bot token (https://api.telegram.org/bot<token>/...)
and httpx puts the URL into its exception messages, so every formatter
installed here masks the configured secrets.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, List, Optional

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
MASK = '***'

# attributes passed with extra={...} that end up in JSON records
CONTEXT_FIELDS = ('chat_id', 'path', 'directory', 'command', 'runtime')

QUIET_LOGGERS = ('watchdog', 'httpx', 'httpcore', 'PIL')


class RedactingFormatter(logging.Formatter):
    """Plain text formatter that masks secrets in the final output"""

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None,
                 secrets: Iterable[str] = ()):
        super().__init__(fmt, datefmt)
        # longest first so a secret containing another is masked whole
        self.secrets: List[str] = sorted({s for s in secrets if s}, key=len, reverse=True)

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, MASK)
        return text

    def format(self, record: logging.LogRecord) -> str:
        return self.redact(super().format(record))


class JsonFormatter(RedactingFormatter):
    """One JSON object per line"""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'function': record.funcName,
            'line': record.lineno,
        }
        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                log_record[name] = getattr(record, name)

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)

        return self.redact(json.dumps(log_record, default=str, ensure_ascii=False))


class ColorFormatter(RedactingFormatter):
    """Colored level names for terminals"""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[41m',
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname)
        if color is None:
            return super().format(record)

        # other handlers share the record
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def make_formatter(log_format: str, secrets: Iterable[str] = ()) -> logging.Formatter:
    """
    Args:
        log_format: text, json or color
        secrets: strings to mask in every line
    """
    log_format = log_format.lower()
    if log_format == "json":
        return JsonFormatter(secrets=secrets)
    if log_format == "color":
        return ColorFormatter(TEXT_FORMAT, DATE_FORMAT, secrets=secrets)
    return RedactingFormatter(TEXT_FORMAT, DATE_FORMAT, secrets=secrets)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: str = "text",  # text, json, or color
    max_file_size: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    secrets: Iterable[str] = (),
) -> logging.Logger:
    """
    Configure the root logger for the service

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to a rotating log file, None logs to stdout only
        log_format: Format of console logs (text, json, or color)
        max_file_size: Size of the log file before rotation
        backup_count: Number of rotated files to keep
        secrets: values masked in every log line, e.g. the bot token
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    secrets = list(secrets)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(make_formatter(log_format, secrets))
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            filename=log_path,
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        # escape codes stay out of files
        file_format = "json" if log_format.lower() == "json" else "text"
        file_handler.setFormatter(make_formatter(file_format, secrets))
        file_handler.setLevel(level)
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to file: {log_path}")

    # httpx logs every request URL at INFO, token included
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    root_logger.debug(f"Logging configured. Level: {log_level}, Format: {log_format}")
    return root_logger
