"""Helper modules and utilities for vsnap."""

from .config import Config, create_default_config
from .logging import get_logger, log_manager
from .system_utils import SystemUtils

__all__ = [
    'Config',
    'create_default_config',
    'get_logger',
    'log_manager',
    'SystemUtils',
]
