"""Run logging for the payline CLI.

Every CLI invocation writes one timestamped file under the log directory.
Module loggers live under ``payline``; one-line run totals (convergence and
batch summaries) go to ``payline.summary`` and are tagged SUMMARY in the same
file. Calling ``setup_logging`` again replaces the handlers of the previous
call instead of stacking new ones.
"""

import logging
from datetime import datetime
from pathlib import Path

PACKAGE_LOGGER = "payline"
SUMMARY_LOGGER = "payline.summary"


class RunFormatter(logging.Formatter):
    """Plain lines for module loggers, a SUMMARY tag for run totals."""

    def __init__(self):
        super().__init__("{asctime} {levelname:<7} {name} - {message}", style="{")
        self._summary = logging.Formatter("{asctime} SUMMARY - {message}", style="{")

    def format(self, record: logging.LogRecord) -> str:
        if record.name == SUMMARY_LOGGER:
            return self._summary.format(record)
        return super().format(record)


def _reset(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def setup_logging(
    log_dir: str = "./logs",
    level: str = "INFO",
    quiet_console: bool = True,
    console_level: str | None = None,
) -> Path:
    """Attach the run's file and console handlers to the ``payline`` logger.

    Args:
        log_dir: Directory for the run's log file
        level: Level for payline's module loggers; summaries are kept at INFO
        quiet_console: If True, only errors reach the console
        console_level: Console level when not quiet (defaults to level)

    Returns:
        Path of the log file written by this run
    """
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    log_path = Path(log_dir) / f"payline_{datetime.now():%Y%m%d_%H%M%S}.log"

    logger = logging.getLogger(PACKAGE_LOGGER)
    summary_logger = logging.getLogger(SUMMARY_LOGGER)
    _reset(logger)
    _reset(summary_logger)

    logger.setLevel(level.upper())
    logger.propagate = False
    summary_logger.setLevel(logging.INFO)
    summary_logger.propagate = True

    file_handler = logging.FileHandler(log_path, encoding="utf-8", mode="w")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(RunFormatter())
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.ERROR if quiet_console else (console_level or level).upper())
    console_handler.setFormatter(logging.Formatter("{levelname:<7} {message}", style="{"))
    logger.addHandler(console_handler)

    logging.captureWarnings(True)
    logger.debug("Logging to %s", log_path)
    return log_path
