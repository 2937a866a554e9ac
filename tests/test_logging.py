"""Tests for run logging setup."""

from __future__ import annotations

import logging

import pytest

from payline.utils.logging import PACKAGE_LOGGER, SUMMARY_LOGGER, setup_logging


@pytest.fixture(autouse=True)
def restore_payline_loggers():
    yield
    for name in (PACKAGE_LOGGER, SUMMARY_LOGGER):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()


class TestSetupLogging:
    def test_repeated_setup_does_not_stack_handlers(self, tmp_path):
        setup_logging(log_dir=str(tmp_path))
        log_path = setup_logging(log_dir=str(tmp_path))

        assert len(logging.getLogger(PACKAGE_LOGGER).handlers) == 2
        assert logging.getLogger(SUMMARY_LOGGER).handlers == []

        logging.getLogger(SUMMARY_LOGGER).info("Batch done")
        assert log_path.read_text(encoding="utf-8").count("SUMMARY - Batch done") == 1

    def test_summaries_are_kept_above_module_level(self, tmp_path):
        log_path = setup_logging(log_dir=str(tmp_path), level="WARNING")

        logging.getLogger("payline.convergence").info("routine detail")
        logging.getLogger(SUMMARY_LOGGER).info("Plan p1 converged")

        text = log_path.read_text(encoding="utf-8")
        assert "routine detail" not in text
        assert "Plan p1 converged" in text

    def test_quiet_console_only_shows_errors(self, tmp_path):
        setup_logging(log_dir=str(tmp_path), quiet_console=True)
        (console,) = [
            h for h in logging.getLogger(PACKAGE_LOGGER).handlers
            if not isinstance(h, logging.FileHandler)
        ]
        assert console.level == logging.ERROR
