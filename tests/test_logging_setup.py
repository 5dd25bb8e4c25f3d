import logging
import sys

import pytest

from ingest.logging_setup import LOGGER_NAME, setup_logging


@pytest.fixture()
def pipeline_logger(monkeypatch):
    logger = logging.getLogger(LOGGER_NAME)
    quiet = logging.getLogger("urllib3")
    levels = (logger.level, quiet.level)
    monkeypatch.setattr(logger, "handlers", [])
    yield logger
    logger.setLevel(levels[0])
    quiet.setLevel(levels[1])


def test_setup_logging_reads_env_level_and_adds_one_handler(pipeline_logger, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")

    assert setup_logging() is pipeline_logger
    setup_logging()

    assert pipeline_logger.level == logging.DEBUG
    stdout_handlers = [h for h in pipeline_logger.handlers if getattr(h, "stream", None) is sys.stdout]
    assert len(stdout_handlers) == 1
    assert "%(threadName)s" in stdout_handlers[0].formatter._fmt
    assert logging.getLogger("urllib3").level == logging.WARNING


def test_explicit_level_wins_over_env(pipeline_logger, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    setup_logging("warning")

    assert pipeline_logger.level == logging.WARNING
