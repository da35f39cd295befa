"""Structured logging foundation for RuneSwap.

Provides JSON logging (prod) or colored console (dev) via structlog.
Includes an audit trail logger for swap and PSBT exchange transitions.
Session tokens are scrubbed from every event before rendering.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, cast

import structlog

_REDACTED = "[REDACTED]"
_SECRET_KEYS = frozenset({"jwt", "user_jwt", "token", "authorization", "signed_psbt_base64"})


def _scrub_secrets(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    for key in _SECRET_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = _REDACTED
    return event_dict


def _configure_structlog() -> None:
    """Configure structlog from RUNESWAP_ENV and RUNESWAP_LOG_LEVEL."""
    env = os.environ.get("RUNESWAP_ENV", "development")
    level_name = os.environ.get("RUNESWAP_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    if env == "production":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _scrub_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


_CONFIGURED = False


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Get a named logger instance.

    Args:
        name: Logger name (typically module __name__).

    Returns:
        Configured structlog logger, filtered at RUNESWAP_LOG_LEVEL.
    """
    global _CONFIGURED
    if not _CONFIGURED:
        _configure_structlog()
        _CONFIGURED = True

    return cast(structlog.typing.FilteringBoundLogger, structlog.get_logger(name))


def get_audit_logger() -> structlog.typing.FilteringBoundLogger:
    """Get the audit trail logger for swap and loan transitions.

    All audit events are logged with event_type for downstream filtering.
    """
    return get_logger("runeswap.audit")


def mask_secret(value: str) -> str:
    """Mask all but the last 4 characters of a secret."""
    if len(value) <= 4:
        return "****"
    return "*" * (len(value) - 4) + value[-4:]


def redact(fields: dict[str, Any], *keys: str) -> dict[str, Any]:
    """Return a copy of fields with the given keys replaced by a marker."""
    return {k: (_REDACTED if k in keys and v is not None else v) for k, v in fields.items()}


def log_swap_event(
    action: str,
    attempt_id: str,
    **kwargs: Any,
) -> None:
    """Log a swap or loan attempt transition to the audit trail.

    Args:
        action: Event kind (swap_start, swap_step, fee_retry, swap_success, ...).
        attempt_id: Attempt UUID string.
        **kwargs: Additional context (step, fee_rate, tx_id, error, etc).
    """
    logger = get_audit_logger()
    logger.info(
        "swap_event",
        event_type="audit",
        action=action,
        attempt_id=attempt_id,
        **kwargs,
    )


def log_exchange_event(
    action: str,
    operation: str,
    proposal_id: str | None,
    **kwargs: Any,
) -> None:
    """Log a PSBT exchange state transition to the audit trail.

    Args:
        action: Target state or event (preparing, awaiting_signature, ...).
        operation: Operation kind (swap, borrow, repay).
        proposal_id: Venue swap/offer id once known.
        **kwargs: Additional context (fee_rate, reason, tx_id).
    """
    logger = get_audit_logger()
    logger.info(
        "exchange_event",
        event_type="audit",
        action=action,
        operation=operation,
        proposal_id=proposal_id,
        **kwargs,
    )
