"""Configuration helpers for the marketplace matching service."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable

_CONFIG_DIR = os.path.join(os.path.dirname(__file__), "..", "config")
_CONFIG_FILE = "marketplace.json"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _load_json(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError:
        return {}


def _payload() -> dict:
    return _load_json(os.path.join(_CONFIG_DIR, _CONFIG_FILE))


def _lookup(payload: dict, dotted: str) -> object:
    node: object = payload
    for part in dotted.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return node


def _coerce_bool(raw: object) -> bool | None:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
    return None


def _coerce_seconds(raw: object) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if value < 0:
        return None
    return value


def _coerce_text(raw: object) -> str | None:
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return None


def _from_sources(env_keys: Iterable[str], json_sources: Iterable[str], coerce, fallback):
    for key in env_keys:
        parsed = coerce(os.getenv(key))
        if parsed is not None:
            return parsed
    payload = _payload()
    for dotted in json_sources:
        parsed = coerce(_lookup(payload, dotted))
        if parsed is not None:
            return parsed
    return fallback


@dataclass(frozen=True)
class MarketplaceSettings:
    database_url: str
    refresh_delay_seconds: float
    lifecycle_strict: bool
    log_level: str
    api_base_url: str


@lru_cache(maxsize=1)
def get_settings() -> MarketplaceSettings:
    """Return settings resolved from the environment, then ``config/marketplace.json``."""

    return MarketplaceSettings(
        database_url=_from_sources(
            ("MARKETPLACE_DATABASE_URL",), ("databaseUrl",), _coerce_text, "sqlite:///storage/marketplace.db"
        ),
        refresh_delay_seconds=_from_sources(
            ("MARKETPLACE_REFRESH_DELAY",), ("refreshDelaySeconds",), _coerce_seconds, 1.0
        ),
        lifecycle_strict=_from_sources(
            ("MARKETPLACE_LIFECYCLE_STRICT",), ("lifecycle.strict",), _coerce_bool, False
        ),
        log_level=_from_sources(("MARKETPLACE_LOG_LEVEL",), ("logLevel",), _coerce_text, "INFO").upper(),
        api_base_url=_from_sources(
            ("MARKETPLACE_API_URL",), ("apiBaseUrl",), _coerce_text, "http://localhost:3001/api"
        ),
    )


def reset_settings() -> None:
    """Drop cached settings so the next lookup re-reads the environment."""

    get_settings.cache_clear()

