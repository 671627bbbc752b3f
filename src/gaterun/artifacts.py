"""Canonical JSON helpers for reports and the trend cache."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path


def canonical_dumps(obj: Any, *, indent: int | None = None) -> str:
    """Serialize a JSON-compatible object with stable key ordering."""
    return json.dumps(
        obj,
        sort_keys=True,
        indent=indent,
        separators=(",", ": ") if indent else (",", ":"),
        ensure_ascii=False,
    )


def write_json(path: Path, obj: Any, *, indent: int | None = None) -> None:
    """Write canonical JSON as UTF-8."""
    path.parent.mkdir(parents=True, exist_ok=True)
    text = canonical_dumps(obj, indent=indent)
    path.write_text(text + "\n" if indent else text, encoding="utf-8")


def read_json(path: Path, default: Any = None) -> Any:
    """Load JSON from ``path``; ``default`` when the file is missing."""
    if not path.exists():
        return default
    with open(path, encoding="utf-8") as f:
        return json.load(f)
