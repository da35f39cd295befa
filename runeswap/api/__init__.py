"""HTTP surface for quotes, swap PSBTs and Liquidium loans."""

from __future__ import annotations

from runeswap.api.app import create_app

__all__ = ["create_app"]
