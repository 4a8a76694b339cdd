"""Structured logging configuration: structlog over stdlib logging.

Environment variables:
    CARGO_PRUNE_LOG_LEVEL   level for ``cargo_prune.*`` (default WARNING, DEBUG with -v)
    CARGO_PRUNE_LOG_FORMAT  console | json (default: console)

Everything goes to stderr; stdout carries only the report.
"""

from __future__ import annotations

import logging
import logging.config
import os
from contextlib import AbstractContextManager

import structlog

LEVEL_ENV = "CARGO_PRUNE_LOG_LEVEL"
FORMAT_ENV = "CARGO_PRUNE_LOG_FORMAT"
_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def log_level(verbose: bool = False) -> str:
    default = "DEBUG" if verbose else "WARNING"
    level = os.environ.get(LEVEL_ENV, default).upper()
    if level not in _LEVELS:
        return default
    return level


def _processors(json_output: bool) -> list[structlog.types.Processor]:
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
    ]
    if json_output:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors += [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    return processors


def setup_logging(verbose: bool = False) -> None:
    """Configure structlog and stdlib logging for one CLI run."""
    level = log_level(verbose)
    json_output = os.environ.get(FORMAT_ENV, "console").lower() == "json"
    shared = _processors(json_output)
    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structlog": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "foreign_pre_chain": shared,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        renderer,
                    ],
                },
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "formatter": "structlog",
                },
            },
            "root": {"handlers": ["stderr"], "level": "WARNING"},
            "loggers": {"cargo_prune": {"level": level}},
        }
    )


def package_context(name: str) -> AbstractContextManager:
    """Tag every event logged by the current thread with ``package=name``."""
    return structlog.contextvars.bound_contextvars(package=name)
