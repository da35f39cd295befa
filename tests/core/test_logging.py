"""Tests for structured logging."""

from __future__ import annotations

from runeswap.core.logging import (
    _scrub_secrets,
    get_audit_logger,
    get_logger,
    log_exchange_event,
    log_swap_event,
    mask_secret,
    redact,
)


class TestStructuredLogging:
    def test_get_logger_returns_bound_logger(self) -> None:
        logger = get_logger("test.module")
        assert logger is not None

    def test_get_audit_logger(self) -> None:
        logger = get_audit_logger()
        assert logger is not None

    def test_log_swap_event_does_not_raise(self) -> None:
        log_swap_event(
            action="swap_start",
            attempt_id="attempt-123",
            fee_rate=20.0,
        )

    def test_log_exchange_event_without_proposal_id(self) -> None:
        log_exchange_event("preparing", "swap", None, fee_rate=12.0)


class TestSecrets:
    def test_mask_secret_keeps_last_four(self) -> None:
        assert mask_secret("sk-abcdef1234") == "*********1234"

    def test_mask_secret_short_value(self) -> None:
        assert mask_secret("abc") == "****"

    def test_redact_replaces_named_keys(self) -> None:
        fields = {"wallet_address": "bc1p", "token": "jwt-value"}
        assert redact(fields, "token") == {"wallet_address": "bc1p", "token": "[REDACTED]"}

    def test_redact_leaves_none_untouched(self) -> None:
        assert redact({"token": None}, "token") == {"token": None}

    def test_scrub_secrets_processor(self) -> None:
        event = {"event": "x", "jwt": "header.payload.sig", "wallet_address": "bc1p", "token": None}
        scrubbed = _scrub_secrets(None, "info", event)
        assert scrubbed == {
            "event": "x", "jwt": "[REDACTED]", "wallet_address": "bc1p", "token": None,
        }
