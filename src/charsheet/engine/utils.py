from __future__ import annotations

from typing import Any
from typing import Mapping


def table_lookup(table: Mapping[int, int], key: int, default: int = 0) -> int:
    """Look up a value in a sparse, level-keyed table.

    Any key that isn't mapped assumes the value of the next lowest key. For example:
            2: 1
            6: 2
            18: 3
        means: levels 2-5 give 1, levels 6-17 give 2, levels 18+ give 3.
        Anything below the lowest key gives `default`.
    """
    result = default
    for threshold in sorted(table):
        if key < threshold:
            break
        result = table[threshold]
    return result


def normalize_name(name: str | None) -> str:
    """Case-folded, whitespace-trimmed name for class/subclass comparisons."""
    return (name or "").strip().casefold()


def deep_merge(a: Mapping[str, Any] | None, b: Mapping[str, Any] | None) -> dict:
    """Merge `b` over `a`, recursing into mappings present in both."""
    merged = dict(a or {})
    for key, value in (b or {}).items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
