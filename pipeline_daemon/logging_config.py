"""
Structured logging configuration for the pipeline daemon.
"""

import json
import logging
import os
import sys
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from structlog.stdlib import LoggerFactory

from pipeline_daemon.config import Settings

_ERROR_METHODS = {"error", "exception", "critical"}


class ErrorLogPersister:
    """structlog processor that mirrors project-scoped errors to disk.

    Every error-level event carrying a ``project_id`` is written to
    ``<projects>/<project_id>/logs/errors/error-<stamp>.json.txt`` so the
    failure can be inspected next to the project's other logs.
    """

    def __init__(self, projects_workspace: str):
        self._root = projects_workspace

    def __call__(self, logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        project_id = event_dict.get("project_id")
        if method_name in _ERROR_METHODS and isinstance(project_id, str) and project_id:
            with suppress(OSError, TypeError, ValueError):
                self._write(project_id, event_dict)
        return event_dict

    def _write(self, project_id: str, event_dict: Dict[str, Any]) -> Optional[str]:
        errors_dir = os.path.join(self._root, project_id, "logs", "errors")
        os.makedirs(errors_dir, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        path = os.path.join(errors_dir, f"error-{stamp}.json.txt")
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(event_dict, handle, indent=2, default=str)
        return path


def setup_logging(settings: Settings) -> None:
    """Configure structured logging for the daemon."""
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            ErrorLogPersister(settings.projects_workspace),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LoggerMixin:
    """Mixin class to add logging capabilities to other classes."""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return get_logger(self.__class__.__name__)
