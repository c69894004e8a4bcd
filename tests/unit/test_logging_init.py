from __future__ import annotations

import logging
from io import StringIO

from retail_ingest.logging.init import (
    SUMMARY_LEVEL,
    LabeledFormatter,
    get_logger,
    log_summary,
    reset_logging,
    set_debug,
    setup_logging,
)


def test_setup_logging_creates_logger_with_labeled_formatter() -> None:
    """The package logger gets one stdout handler with labels."""
    reset_logging()
    logger = setup_logging()
    assert logger.name == "retail_ingest"
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, LabeledFormatter)
    assert logger.propagate is False


def test_setup_logging_is_idempotent() -> None:
    """Calling setup twice does not duplicate handlers."""
    reset_logging()
    assert setup_logging() is setup_logging()
    assert get_logger() is setup_logging()
    assert len(get_logger().handlers) == 1


def test_labeled_prefixes() -> None:
    """Each level is printed with its label."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(LabeledFormatter())
    logger = logging.getLogger("test_retail_ingest_labels")
    logger.propagate = False
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    try:
        logger.info("hello")
        logger.warning("careful")
        logger.error("bad")
        logger.log(SUMMARY_LEVEL, "total=1")
    finally:
        logger.removeHandler(handler)
    assert stream.getvalue().splitlines() == ["INFO hello", "WARN careful", "ERROR bad", "SUMMARY total=1"]


def test_module_loggers_flow_into_package_handler(capsys) -> None:
    """Module loggers under the package reach the handler."""
    reset_logging()
    setup_logging()
    logging.getLogger("retail_ingest.services.orchestrator").info("from child")
    log_summary("file=x total=0")
    out = capsys.readouterr().out
    assert "INFO from child" in out
    assert "SUMMARY file=x total=0" in out


def test_set_debug_toggles_level() -> None:
    reset_logging()
    setup_logging()
    set_debug(True)
    assert get_logger().level == logging.DEBUG
    set_debug(False)
    assert get_logger().level == logging.INFO
