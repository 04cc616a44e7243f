import logging
import sys
from os import environ

import structlog

# Applied to every stdlib record (ours, uvicorn's, httpx's) before rendering.
# ExtraAdder copies the `extra=` fields passed to logger calls onto the event.
FOREIGN_PRE_CHAIN = [
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.ExtraAdder(),
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
]


def json_formatter() -> structlog.stdlib.ProcessorFormatter:
    """Formatter rendering each stdlib record as a single JSON line."""
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=FOREIGN_PRE_CHAIN,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(default=str),
        ],
    )


def setup_logging(level: str | None = None) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(json_formatter())

    # Replace only our own handler, so repeated calls don't duplicate output and foreign handlers survive.
    root = logging.getLogger()
    root.handlers = [
        h
        for h in root.handlers
        if not isinstance(h.formatter, structlog.stdlib.ProcessorFormatter)
    ] + [handler]
    root.setLevel((level or environ.get("LOG_LEVEL", "INFO")).upper())

    # Route uvicorn's loggers through the same handler.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.propagate = True
    logging.getLogger("httpx").setLevel(logging.WARNING)
