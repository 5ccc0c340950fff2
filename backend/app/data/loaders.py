"""Cached data loaders for built-in procedure catalogs."""

# purpose: expose the shipped SOP catalog used when no stored SOP matches a lookup
# status: active
# depends_on: json, pathlib

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

_BASE_DIR = Path(__file__).resolve().parent


def _load_json(path: Path) -> Any:
    """Return parsed JSON payload from disk."""

    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


@lru_cache(maxsize=None)
def get_sop_catalog() -> tuple[dict[str, Any], ...]:
    """Return cached built-in SOP definitions with their checklist steps."""

    payload = _load_json(_BASE_DIR / "sop_catalog.json")
    return tuple(payload)


@lru_cache(maxsize=None)
def get_sop_catalog_index() -> dict[str, dict[str, Any]]:
    """Return the built-in SOP catalog keyed by SOP id string."""

    return {entry["id"]: entry for entry in get_sop_catalog()}
