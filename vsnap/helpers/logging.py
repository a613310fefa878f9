################################################################################
# VSNAP
#
# @file:        logging.py
# @module:      vsnap.helpers.logging
# @description: Logger factory and process-wide log manager.
# @author:      Vladimir Fomin & Contributors
# @repository:  https://github.com/fominv/vsnap
# @version:     0.6.0
#
# ------------------------------------------------------------------------------
# Copyright (c) 2025 Vladimir Fomin
# MIT License: see LICENSE or https://opensource.org/licenses/MIT
################################################################################

"""
Logging for vsnap.

All modules obtain their logger through ``get_logger(__name__)``. Handlers
are attached once by ``log_manager.setup()`` from the CLI entry point:
a Rich console handler on stderr and, optionally, a rotating log file.
Context passed via ``extra={...}`` is appended to file records.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from ..constants import LOG_DATE_FORMAT, LOG_FORMAT

ROOT_LOGGER_NAME = "vsnap"

# Attributes every LogRecord has; anything else came in through ``extra``.
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class StructuredFormatter(logging.Formatter):
    """Formatter that appends ``extra`` context as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        context = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if not context:
            return base
        pairs = " ".join(f"{k}={v}" for k, v in sorted(context.items()))
        return f"{base} [{pairs}]"


class LogManager:
    """Configures the ``vsnap`` logger hierarchy exactly once."""

    def __init__(self):
        self.console = Console(stderr=True)

    @property
    def logger(self) -> logging.Logger:
        return logging.getLogger(ROOT_LOGGER_NAME)

    def setup(
        self,
        level: str = "WARNING",
        log_file: Optional[str] = None,
        max_size_mb: int = 10,
        backup_count: int = 3,
    ) -> None:
        """
        Attach handlers to the ``vsnap`` logger.

        Args:
            level: Log level name for the console handler
            log_file: Optional path of a rotating log file
            max_size_mb: Rotation threshold of the log file
            backup_count: Number of rotated files to keep
        """
        root = self.logger
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()

        numeric_level = getattr(logging, str(level).upper(), logging.WARNING)
        root.setLevel(logging.DEBUG)
        root.propagate = False

        console_handler = RichHandler(
            console=self.console,
            show_time=False,
            show_path=False,
            markup=False,
        )
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(console_handler)

        if log_file:
            path = Path(log_file).expanduser()
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.handlers.RotatingFileHandler(
                    path,
                    maxBytes=max_size_mb * 1024 * 1024,
                    backupCount=backup_count,
                    encoding="utf-8",
                )
            except OSError as e:
                root.warning(f"Cannot open log file {path}: {e}")
            else:
                file_handler.setLevel(logging.DEBUG)
                file_handler.setFormatter(
                    StructuredFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
                )
                root.addHandler(file_handler)


log_manager = LogManager()


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger inside the ``vsnap`` hierarchy."""
    if not name:
        return logging.getLogger(ROOT_LOGGER_NAME)
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
