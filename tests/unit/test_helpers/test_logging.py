"""Unit tests for the logging helpers."""

import logging

import pytest
from rich.logging import RichHandler

from vsnap.helpers.logging import LogManager, StructuredFormatter, get_logger


@pytest.fixture
def manager():
    mgr = LogManager()
    yield mgr
    root = mgr.logger
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


def test_get_logger_prefixes_names():
    assert get_logger("vsnap.cores.inventory").name == "vsnap.cores.inventory"
    assert get_logger("tests.something").name == "vsnap.tests.something"
    assert get_logger().name == "vsnap"


def test_setup_attaches_console_handler(manager):
    manager.setup(level="INFO")

    handlers = manager.logger.handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0], RichHandler)
    assert handlers[0].level == logging.INFO


def test_setup_is_idempotent(manager):
    manager.setup()
    manager.setup()

    assert len(manager.logger.handlers) == 1


def test_file_handler_writes_context(manager, tmp_path):
    log_file = tmp_path / "logs" / "vsnap.log"
    manager.setup(level="ERROR", log_file=str(log_file))

    get_logger("vsnap.test").info("hello", extra={"snapshot": "snap-a"})
    for handler in manager.logger.handlers:
        handler.flush()

    content = log_file.read_text()
    assert "hello" in content
    assert "snapshot=snap-a" in content


def test_structured_formatter_without_extra():
    record = logging.makeLogRecord({"msg": "plain", "levelname": "INFO", "name": "vsnap"})

    assert StructuredFormatter("%(message)s").format(record) == "plain"
