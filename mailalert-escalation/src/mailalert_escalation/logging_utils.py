"""
Utilities for configuring consistent logging across the escalation service.

Every entry point (CLI, HTTP server, scheduler loop) calls
``configure_logging`` once so that log lines share one format on stdout:

- ``MAILALERT_LOG_LEVEL`` controls the root log level (default: ``INFO``).
- ``MAILALERT_LOG_FORMAT`` controls the message format.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Final

DEFAULT_FORMAT: Final[str] = os.environ.get(
    "MAILALERT_LOG_FORMAT",
    "%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
DEFAULT_DATEFMT: Final[str] = "%Y-%m-%d %H:%M:%S"
_CONFIGURED: bool = False


def _resolve_level(name: str | None) -> int:
    if not name:
        return logging.INFO
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(*, force: bool = False) -> None:
    """
    Configure the root logger to stream messages to stdout.

    Args:
        force: When True, existing handlers are cleared before configuring.
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    root_logger = logging.getLogger()
    if force:
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)

    level = _resolve_level(os.environ.get("MAILALERT_LOG_LEVEL"))
    root_logger.setLevel(level)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT))
    root_logger.addHandler(handler)

    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(max(logging.WARNING, level))

    _CONFIGURED = True


class RunLogAdapter(logging.LoggerAdapter):
    """Prefix every message with the invocation's run id."""

    def process(self, msg, kwargs):
        return f"[run {self.extra['run_id']}] {msg}", kwargs


def run_logger(logger: logging.Logger, run_id: str) -> RunLogAdapter:
    return RunLogAdapter(logger, {"run_id": run_id})
