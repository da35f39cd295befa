"""Tests for swap attempt state and event models."""

from __future__ import annotations

from runeswap.models.swap import SwapEvent, SwapEventKind, SwapState, SwapStep


def test_initial_state() -> None:
    state = SwapState()
    assert state.step == SwapStep.IDLE
    assert not state.in_progress
    assert state.fee_retries == 0


def test_event_defaults() -> None:
    event = SwapEvent(kind=SwapEventKind.SWAP_STEP, step=SwapStep.SIGNING)
    assert event.at.tzinfo is not None
    assert event.tx_id is None
