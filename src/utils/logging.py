"""Structured logging setup using structlog.

One shared processor chain (context vars, log level, stack info, exception
info, ISO timestamps) feeds either a coloured ConsoleRenderer for local
development or a JSONRenderer for production.  ``APP_ENV=production`` or
``json_output=True`` selects JSON.

Standard-library ``logging`` is rewired through the same structlog
formatter so the SDKs we call (openai, anthropic, httpx, uvicorn) produce
identically formatted lines.  ``quiet=True`` sends everything to stderr at
WARNING and above, which keeps stdout clean for CLI reports.
"""

import logging
import os
import sys

import structlog

# Chatty third-party loggers that log every HTTP round-trip at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic")


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    quiet: bool = False,
) -> structlog.BoundLogger:
    """Configure structlog with environment-appropriate rendering.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR).
        json_output: Force JSON output regardless of APP_ENV.
        quiet: Log to stderr at WARNING+ only (CLI ``--json`` / ``--quiet``).

    Returns:
        A configured structlog BoundLogger.
    """
    app_env = os.environ.get("APP_ENV", "development")
    use_json = json_output or app_env == "production"
    if quiet:
        log_level = "WARNING"
    stream = sys.stderr if quiet else sys.stdout

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
        renderer = structlog.dev.ConsoleRenderer(colors=not quiet)

    structlog.configure(
        processors=[
            *shared_processors,
            renderer,
        ],
        # Filtering happens before the processor chain runs.
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        # Without a file the logger writes to whatever sys.stdout is at creation.
        logger_factory=(
            structlog.PrintLoggerFactory(file=sys.stderr) if quiet else structlog.PrintLoggerFactory()
        ),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a named structlog logger.

    If structlog has not been configured yet, calls configure_logging() with defaults.

    Args:
        name: Logger name, typically the module name.

    Returns:
        A structlog BoundLogger bound with the given name.
    """
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(logger_name=name)
