"""Structured JSON logging configuration using structlog."""

import logging
import sys

import structlog

_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.StackInfoRenderer(),
    structlog.dev.set_exc_info,
    structlog.processors.format_exc_info,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.JSONRenderer(),
]


def configure_logging(component: str, level: str = "INFO") -> structlog.typing.FilteringBoundLogger:
    """
    Return a structlog logger bound to ``component``.

    The level filter lives on the returned logger rather than in the global
    structlog configuration, so two engines built with different levels keep
    their own thresholds. Output goes to stderr as one JSON object per line.
    """
    wrapper = structlog.make_filtering_bound_logger(
        getattr(logging, level.upper(), logging.INFO)
    )
    return structlog.wrap_logger(
        structlog.PrintLogger(file=sys.stderr),
        processors=_PROCESSORS,
        wrapper_class=wrapper,
        context_class=dict,
    ).bind(component=component)
