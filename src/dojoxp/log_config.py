"""Structured logging configuration with structlog."""

import logging

import structlog

from dojoxp.config import Settings


def _static_fields(settings: Settings) -> structlog.types.Processor:
    """Stamp every event with the engine version and deployment environment."""

    def processor(_logger: object, _method: str, event_dict: dict) -> dict:
        event_dict.setdefault("service", "dojoxp")
        event_dict.setdefault("version", settings.app_version)
        event_dict.setdefault("environment", settings.environment)
        return event_dict

    return processor


def setup_logging(settings: Settings) -> None:
    """Configure structlog for JSON or console output.

    Call once at host startup; the ledger and badge modules only fetch
    loggers and never configure them.
    """
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _static_fields(settings),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level)
    # SQL echo is noise at INFO; keep driver chatter at WARNING unless debugging
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))
