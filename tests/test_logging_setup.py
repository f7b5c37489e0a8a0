"""Logging configuration tests."""

import logging

import pytest

from lecture_worker.logging_setup import LOGGER_NAME, log_exception, setup_logging


@pytest.fixture
def worker_logger():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()


def test_setup_writes_to_named_file(tmp_path, worker_logger):
    logger = setup_logging("debug", str(tmp_path / "logs"), log_file="test.log", log_format="%(levelname)s|%(message)s")

    logger.debug("segment written")
    for handler in logger.handlers:
        handler.flush()

    content = (tmp_path / "logs" / "test.log").read_text()
    assert "DEBUG|segment written" in content
    assert logger.level == logging.DEBUG


def test_repeated_setup_does_not_stack_handlers(tmp_path, worker_logger):
    setup_logging("INFO", str(tmp_path))
    logger = setup_logging("INFO", str(tmp_path))

    assert len(logger.handlers) == 2
    assert logging.getLogger("httpx").level == logging.WARNING


def test_log_exception_includes_traceback(tmp_path, worker_logger):
    logger = setup_logging("INFO", str(tmp_path), log_file="errors.log")

    try:
        raise RuntimeError("ffmpeg exploded")
    except RuntimeError:
        log_exception(logger, "Transcode failed")
    for handler in logger.handlers:
        handler.flush()

    content = (tmp_path / "errors.log").read_text()
    assert "Transcode failed" in content
    assert "RuntimeError: ffmpeg exploded" in content
