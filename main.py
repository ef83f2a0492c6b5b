#main.py

"""
meerkat - home notification bot
"""
import argparse
import asyncio
import logging
import sys

from meerkat.service import ServiceMode, run_service
from meerkat.utils.config import ConfigError, load_config
from meerkat.utils.logger import setup_logging

logger = logging.getLogger(__name__)

MODE_FLAGS = [
    ("--mode-commands", ServiceMode.COMMANDS, "respond to commands (temp, pic)"),
    ("--mode-periodic", ServiceMode.PERIODIC, "periodic background tasks (IP-change)"),
    ("--mode-fsmon", ServiceMode.FSMONITOR, "monitor file system for images"),
    ("--mode-healthcheck", ServiceMode.HEALTHCHECK, "ping-pong"),
    ("--mode-tempmon", ServiceMode.TEMPMONITOR, "monitor and report temp changes more than 0.5"),
]


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="meerkat", description=__doc__.strip())
    for flag, _, help_text in MODE_FLAGS:
        parser.add_argument(flag, action="store_true", help=help_text)
    parser.add_argument("--config", help="YAML or JSON configuration file")
    parser.add_argument("--log-level", help="override the configured log level")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    modes = ServiceMode.NONE
    for flag, mode, _ in MODE_FLAGS:
        if getattr(args, flag[2:].replace("-", "_")):
            modes |= mode

    try:
        config = load_config(args.config)
        if args.log_level:
            config.logging.level = args.log_level
        setup_logging(
            config.logging.level,
            config.logging.file,
            config.logging.format,
            max_file_size=config.logging.max_file_size,
            backup_count=config.logging.backup_count,
            secrets=[config.telegram.token],
        )
        config.validate()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if modes == ServiceMode.NONE:
        logger.warning("No service mode selected, the bot will only connect and idle")

    status = asyncio.run(run_service(config, modes))
    print(status)
    return 0


if __name__ == "__main__":
    sys.exit(main())
