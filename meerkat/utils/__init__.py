# meerkat/utils/__init__.py

"""
meerkat utilities
"""
from .config import Config, ConfigError, load_config, parse_duration
from .logger import setup_logging
from .file_utils import get_file_type, wait_for_file_stable

__all__ = [
    'Config', 'ConfigError', 'load_config', 'parse_duration',
    'setup_logging',
    'get_file_type', 'wait_for_file_stable',
]
