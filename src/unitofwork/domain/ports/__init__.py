"""Ports consumed by the unit-of-work domain."""

from __future__ import annotations

from .store import RelationalStore, StoreTransaction

__all__ = ["RelationalStore", "StoreTransaction"]
