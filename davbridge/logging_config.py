"""
Structured logging for davbridge.

All modules log through ``logging.getLogger(__name__)`` with context passed
in ``extra=``. configure_logging() installs a structlog ProcessorFormatter on
a stderr handler, which renders those records as key/value console lines or
JSON without any change at the call sites.
"""

import logging
import sys

import structlog


# Third-party loggers that are chatty at INFO/DEBUG
_NOISE_LOGGERS = (
    "caldav",
    "urllib3",
    "requests",
)


def _build_processors(time_fmt: str) -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        structlog.stdlib.ExtraAdder(),
    ]


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """
    Configure process-wide logging to stderr.

    Args:
        level: Root log level name, e.g. "DEBUG" or "WARNING"
        fmt: "text" for console output, "json" for JSON lines
    """
    if fmt == "json":
        pre_chain = _build_processors(time_fmt="iso")
        renderer = structlog.processors.JSONRenderer()
    else:
        pre_chain = _build_processors(time_fmt="%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=pre_chain,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
