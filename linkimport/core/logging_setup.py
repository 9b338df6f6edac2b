"""structlog bootstrap: one stdout handler, console output locally, JSON elsewhere.

stdlib loggers (uvicorn, httpx) are routed through the same ProcessorFormatter
so every line has the same shape and carries the bound request_id.
"""

import logging
import sys

import structlog

_LOCAL_ENVIRONMENTS = frozenset({"", "local", "development", "dev", "test"})

# Library loggers and the level they are held at.
_QUIET_LOGGERS = {
    "uvicorn.access": logging.INFO,
    "uvicorn.error": logging.INFO,
    # httpx logs a line per request, redirect hops included
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}

_configured = False


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]


def _renderer(environment: str):
    if environment.lower() in _LOCAL_ENVIRONMENTS:
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty(), pad_event=40)
    return structlog.processors.JSONRenderer(ensure_ascii=False)


def configure_logging(log_level: str, environment: str = "local") -> None:
    """Configure structlog and the root logger once per process."""
    global _configured
    if _configured:
        return

    shared = _shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(environment),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level.upper())
    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    _configured = True
