"""
Structured logging for the duel client.

Every wallet, ledger, engine and vault module logs through get_logger(__name__)
with a snake_case event name and keyword context, e.g.

    logger.warning("rpc_retry", context="eth_chainId", attempt=2, delay_sec=4.5)

Output carries timestamp, level, logger and event_type. Full 42-character
addresses under ADDRESS_KEYS are shortened so session logs never carry a
complete wallet address. Secrets are never passed to the logger.

Depends on structlog and stdlib logging only, so any package module can import it.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)

# json (default) or console
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

ADDRESS_KEYS = ("account", "player", "creator", "opponent", "sender", "winner")


def _add_timestamp(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def _event_type(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog's positional event becomes event_type."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    return event_dict


def _shorten_addresses(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in ADDRESS_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) == 42 and value.lower().startswith("0x"):
            event_dict[key] = f"{value[:6]}...{value[-4:]}"
    return event_dict


def configure_structlog() -> None:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_timestamp,
        _event_type,
        _shorten_addresses,
    ]
    if LOG_FORMAT == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL_VALUE),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """Module logger with `logger=<name>` bound."""
    return structlog.get_logger(name).bind(logger=name)


def bind_account(account: str) -> structlog.BoundLogger:
    """Session logger: the connected account is attached to every event."""
    return get_logger("elements_duel.session").bind(account=account)
