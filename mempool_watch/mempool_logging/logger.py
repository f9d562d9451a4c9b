"""
Structured logging for Mempool Watch (structlog).

Every record carries event_type, level, timestamp (ISO 8601, UTC) and the
module name under "logger"; call sites add tx_hash / block_hash / counters as
keyword context. LOG_FORMAT=json (default) emits one JSON object per line on
stdout, LOG_FORMAT=console a human-readable line. LOG_LEVEL filters (INFO).

Configured once on first import. No mempool_watch imports here, so any
module can import this one first.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

import structlog
from dotenv import load_dotenv

# Same .env as mempool_watch.config.env (project root), so LOG_LEVEL / LOG_FORMAT there apply
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()


def _normalize_event(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Store structlog's positional event under event_type."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    return event_dict


def _drop_unset(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Omit context keys whose value is None (e.g. no block reconciled yet)."""
    return {k: v for k, v in event_dict.items() if v is not None}


def _renderer() -> Any:
    if LOG_FORMAT == "console":
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _drop_unset,
            _normalize_event,
            _renderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL_VALUE),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Return a structured logger tagged with the module name.

        logger = get_logger(__name__)
        logger.info("block_reconciled", block_number=19000000, found=42, total=150)
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_block(name: str, block_hash: str, block_number: int) -> structlog.BoundLogger:
    """Logger with the block's hash and number attached to every record."""
    return get_logger(name).bind(block_hash=block_hash, block_number=block_number)
