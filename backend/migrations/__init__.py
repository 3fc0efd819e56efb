"""Ordered schema migrations for the marketplace database."""

from __future__ import annotations

from .marketplace.migration_0001_initial import Migration0001Initial

MIGRATIONS = [Migration0001Initial()]

__all__ = ["MIGRATIONS"]
