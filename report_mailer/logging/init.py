from __future__ import annotations

import logging
import sys
from typing import TextIO

"""Application logging.

Every line the mailer writes is ``LABEL message`` where LABEL is one of
INFO|WARN|ERROR|SUMMARY (DEBUG with ``--debug``). SUMMARY (level 25) is emitted
once per ``run`` with the batch result fields.

Module loggers (``logging.getLogger(__name__)`` under ``report_mailer``) have no
handlers of their own and reach the single stdout handler installed here.
"""

__all__ = [
    "LOGGER_NAME",
    "SUMMARY_LEVEL",
    "LabeledFormatter",
    "setup_logging",
    "get_logger",
    "enable_debug",
    "log_summary",
    "reset_logging",
]

LOGGER_NAME = "report_mailer"
SUMMARY_LEVEL = 25

LEVEL_LABELS = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    SUMMARY_LEVEL: "SUMMARY",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "CRITICAL",
}

_configured: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        label = LEVEL_LABELS.get(record.levelno, record.levelname)
        line = f"{label} {record.getMessage()}"
        if record.exc_info and record.levelno <= logging.DEBUG:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(stream: TextIO | None = None) -> logging.Logger:
    """Install the labeled stdout handler on the ``report_mailer`` logger.

    Calling it again returns the already configured logger untouched, so the
    CLI and library entry points can both call it.
    """
    global _configured
    if _configured is not None:
        return _configured

    logging.addLevelName(SUMMARY_LEVEL, "SUMMARY")
    app_logger = logging.getLogger(LOGGER_NAME)
    for old in list(app_logger.handlers):
        app_logger.removeHandler(old)

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(LabeledFormatter())
    handler.setLevel(logging.INFO)
    app_logger.addHandler(handler)
    app_logger.setLevel(logging.INFO)
    # root にハンドラがあっても二重出力しない
    app_logger.propagate = False

    _configured = app_logger
    return app_logger


def get_logger() -> logging.Logger:
    return _configured if _configured is not None else setup_logging()


def enable_debug(app_logger: logging.Logger) -> None:
    """Lower the logger and its handlers to DEBUG (``--debug``)."""
    app_logger.setLevel(logging.DEBUG)
    for handler in app_logger.handlers:
        handler.setLevel(logging.DEBUG)


def log_summary(fields: str) -> None:
    """Emit ``SUMMARY <fields>``."""
    get_logger().log(SUMMARY_LEVEL, fields)


def reset_logging() -> None:
    """Forget the configured logger so the next ``setup_logging`` reinstalls it (tests)."""
    global _configured
    _configured = None
