import logging

import pytest
from rich.logging import RichHandler

import logger


@pytest.fixture
def handler(monkeypatch):
    handler = RichHandler(level="INFO")
    monkeypatch.setattr(logger, "_handler", handler)
    monkeypatch.delenv("LOGLEVEL", raising=False)
    monkeypatch.delenv("WEBSOCKETS_LOGLEVEL", raising=False)
    websockets_logger = logging.getLogger("websockets")
    level = websockets_logger.level
    yield handler
    websockets_logger.setLevel(level)


def test_apply_logging_config(handler) -> None:
    logger.apply_logging_config({"level": "DEBUG", "websockets_level": "ERROR"})
    assert handler.level == logging.DEBUG
    assert logging.getLogger("websockets").level == logging.ERROR


def test_environment_overrides_config(handler, monkeypatch) -> None:
    monkeypatch.setenv("LOGLEVEL", "WARNING")
    monkeypatch.setenv("WEBSOCKETS_LOGLEVEL", "INFO")
    logger.apply_logging_config({"level": "DEBUG", "websockets_level": "ERROR"})
    assert handler.level == logging.WARNING
    assert logging.getLogger("websockets").level == logging.INFO
