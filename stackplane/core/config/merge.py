"""
Layer merge — combine N partial stack configurations into one.

Layers are applied in increasing precedence: the first layer is the
lowest (global defaults), the last one the highest (ad-hoc override).

Rules, applied recursively key by key:
    mapping  + mapping   recursive merge
    sequence + sequence  append, drop exact duplicates, keep first-seen order
    anything else        higher-precedence value wins, no coercion

A missing (``None``) layer behaves like ``{}``. Inputs are never mutated.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from copy import deepcopy
from typing import Any


def merge(layers: Iterable[Mapping[str, Any] | None]) -> dict[str, Any]:
    """Fold ``layers`` left to right into a single mapping.

    ``merge([a, b, c]) == merge([merge([a, b]), c])`` for any layers.
    """
    result: dict[str, Any] = {}
    for layer in layers:
        result = merge_pair(result, layer)
    return result


def merge_pair(
    base: Mapping[str, Any] | None,
    override: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Merge ``override`` onto ``base`` and return a new mapping."""
    result: dict[str, Any] = deepcopy(dict(base or {}))

    for key, value in (override or {}).items():
        if key not in result:
            result[key] = deepcopy(value)
            continue
        result[key] = _merge_values(result[key], value)

    return result


def _merge_values(base: Any, override: Any) -> Any:
    if isinstance(base, Mapping) and isinstance(override, Mapping):
        return merge_pair(base, override)

    if _is_sequence(base) and _is_sequence(override):
        return _append_dedupe(base, override)

    return deepcopy(override)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _append_dedupe(base: Iterable[Any], override: Iterable[Any]) -> list[Any]:
    """Append ``override`` to ``base`` keeping only the first of equal items.

    Items may be unhashable (mappings inside volume lists), so equality
    is checked structurally against what has been kept so far.
    """
    kept: list[Any] = []
    for item in [*base, *override]:
        if any(_structurally_equal(item, seen) for seen in kept):
            continue
        kept.append(deepcopy(item))
    return kept


def _structurally_equal(a: Any, b: Any) -> bool:
    # 1 == True in Python; a port number must not collapse into a flag.
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        return a.keys() == b.keys() and all(_structurally_equal(a[k], b[k]) for k in a)
    if _is_sequence(a) and _is_sequence(b):
        return len(a) == len(b) and all(_structurally_equal(x, y) for x, y in zip(a, b))
    return type(a) is type(b) and a == b
