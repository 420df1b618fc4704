from __future__ import annotations

"""
Structured logging setup for devchain.

This module configures **structlog** + the stdlib ``logging`` package so that:
- All devchain events are emitted as structured key/value records, rendered as
  JSON (CI, machine consumption) or with the console renderer (interactive use).
- Context variables (e.g., devnet id, command name) are merged into each event.
- Exceptions include a structured stack trace when requested.

Quick start
-----------
    from devchain.logging import setup_logging, get_logger

    setup_logging(service_name="devchain")  # call once on process start
    log = get_logger(__name__)
    log.info("devnet.started", ledger_sequence=0)

Environment
-----------
- DEVCHAIN_LOG_LEVEL: one of DEBUG, INFO, WARNING, ERROR (default: INFO)
- DEVCHAIN_LOG_FORMAT: "json" or "console" (default: console)
"""

import logging
import os
from typing import Any, Dict, Iterable, Optional, Union

import structlog
from structlog.contextvars import merge_contextvars

# ------------------------------ Redaction ------------------------------------

REDACT_KEYS = {"authorization", "token", "password", "secret", "private_key", "seed", "devnet_seed"}


def _redact_secrets(_: logging.Logger, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for k in list(event_dict.keys()):
        if k.lower() in REDACT_KEYS and event_dict[k] is not None:
            event_dict[k] = "***"
    return event_dict


# ------------------------------ Setup ----------------------------------------


def _base_processors(service_name: str, include_stacktrace: bool) -> Iterable:
    yield structlog.stdlib.add_log_level
    yield structlog.processors.TimeStamper(fmt="iso", utc=True)
    yield merge_contextvars
    yield structlog.processors.StackInfoRenderer()
    if include_stacktrace:
        yield structlog.processors.format_exc_info
    yield _redact_secrets
    yield structlog.processors.UnicodeDecoder()

    def _ensure_service(_: logging.Logger, __: str, ev: Dict[str, Any]) -> Dict[str, Any]:
        ev.setdefault("service", service_name)
        return ev

    yield _ensure_service


def setup_logging(
    *,
    service_name: str = "devchain",
    level: Optional[Union[str, int]] = None,
    log_format: Optional[str] = None,
    include_stacktrace: Optional[bool] = None,
) -> None:
    """
    Configure structlog + stdlib logging. Safe to call more than once; the last
    call wins.

    Parameters
    ----------
    service_name: str
        Value injected as "service" into every event.
    level: str|int
        Log level (e.g., "INFO"). Defaults to $DEVCHAIN_LOG_LEVEL or INFO.
    log_format: str
        "json" or "console". Defaults to $DEVCHAIN_LOG_FORMAT or "console".
    include_stacktrace: bool
        Render exc_info into the event. Defaults to True for JSON only.
    """
    env_level = os.getenv("DEVCHAIN_LOG_LEVEL", "").upper() or None
    env_format = os.getenv("DEVCHAIN_LOG_FORMAT", "").lower() or None

    level = level or env_level or "INFO"
    log_format = (log_format or env_format or "console").lower()
    if include_stacktrace is None:
        include_stacktrace = log_format == "json"

    processors = list(_base_processors(service_name, include_stacktrace))

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False, sort_keys=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            *processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                *processors,
            ],
        )
    )

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(handler)

    logging.getLogger("httpx").setLevel(os.getenv("DEVCHAIN_LOG_LEVEL_HTTPX", "WARNING"))
    logging.getLogger("httpcore").setLevel(os.getenv("DEVCHAIN_LOG_LEVEL_HTTPX", "WARNING"))


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Return a structlog logger routed through stdlib logging under `name`.
    """
    return structlog.get_logger(name)


# ------------------------------ Context helpers -------------------------------


def bind_context(**kv: Any) -> None:
    """Bind key/value pairs into the structlog contextvars store."""
    structlog.contextvars.bind_contextvars(**kv)


def clear_context(*keys: str) -> None:
    """Clear specific keys from contextvars, or clear all if no keys provided."""
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()


__all__ = [
    "setup_logging",
    "get_logger",
    "bind_context",
    "clear_context",
]
