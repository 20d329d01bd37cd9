"""Structured logging setup using structlog.

One shared processor chain, two renderers: coloured console output while
developing, JSON lines when ``app_env == "production"`` or ``json_output`` is
set. Stdlib loggers (httpx, qdrant-client, redis, openai) are bridged into the
same chain. Everything goes to stderr; stdout belongs to the CLI results.
"""

import logging
import sys

import structlog

# Client libraries that log every request at INFO; only shown with DEBUG.
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "qdrant_client")


def _resolve_level(log_level: str) -> int:
    level = getattr(logging, log_level.strip().upper(), None)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(
    log_level: str = "INFO", json_output: bool = False, app_env: str = "development"
) -> structlog.BoundLogger:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR. Unknown names fall back to INFO.
        json_output: Force JSON output regardless of ``app_env``.
        app_env: Deployment environment from AppSettings; "production" selects JSON.

    Returns:
        A configured structlog BoundLogger.
    """
    level = _resolve_level(log_level)
    use_json = json_output or app_env.strip().lower() == "production"

    # contextvars must run first so bound request ids reach every event
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        # Keine Farbcodes, wenn stderr in eine Datei oder Pipe geht
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[*shared_processors, renderer],
        # Events below the level are dropped before any processor runs
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Stdlib records get the same chain minus structlog's internal meta keys
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET if level <= logging.DEBUG else logging.WARNING)

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Named structlog logger; configures defaults on first use."""
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name)
