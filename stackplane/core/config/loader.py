"""
Input loader — reads layered stack files into per-stack layer lists.

An input document may be a single stack mapping, a list of stack
mappings, or a mapping with a ``stacks:`` list. Multiplicity is always
normalized to a list.

Stacks with the same name in several files are layered in file order
(earlier file = lower precedence). For every stack the final layer list
is::

    [defaults.stack_defaults, <file 1 entry>, <file 2 entry>, ..., override]
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from stackplane.core.config.defaults import PlannerDefaults
from stackplane.core.errors import InputError

logger = logging.getLogger(__name__)


@dataclass
class StackLayers:
    """The ordered layers of one stack, lowest precedence first."""

    name: str
    layers: list[dict[str, Any]] = field(default_factory=list)


def read_yaml(path: Path) -> Any:
    """Read and parse a YAML file.

    Raises:
        InputError: If the file is missing, unreadable or not valid YAML.
    """
    if not path.is_file():
        raise InputError(f"File not found: {path}", source=str(path))
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise InputError(f"Cannot read {path}: {e}", source=str(path)) from e
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise InputError(f"Invalid YAML in {path}: {e}", source=str(path)) from e


def normalize_stacks(document: Any, source: str = "<input>") -> list[dict[str, Any]]:
    """Turn a single stack, a list of stacks or ``{stacks: [...]}`` into a list."""
    if document is None:
        return []
    if isinstance(document, Mapping) and "stacks" in document and "name" not in document:
        document = document["stacks"] or []
    if isinstance(document, Mapping):
        return [dict(document)]
    if isinstance(document, Sequence) and not isinstance(document, (str, bytes)):
        stacks: list[dict[str, Any]] = []
        for index, entry in enumerate(document):
            if not isinstance(entry, Mapping):
                raise InputError(
                    f"Stack entry #{index} in {source} is {type(entry).__name__}, expected a mapping",
                    source=source,
                )
            stacks.append(dict(entry))
        return stacks
    raise InputError(
        f"Expected a stack mapping or a list of stacks in {source}, got {type(document).__name__}",
        source=source,
    )


def load_stack_file(path: Path) -> list[dict[str, Any]]:
    """Load every stack entry declared in one file."""
    stacks = normalize_stacks(read_yaml(path), source=str(path))
    logger.debug("Loaded %d stack entr(ies) from %s", len(stacks), path)
    return stacks


def load_override(path: Path | None) -> dict[str, Any] | None:
    """Load the optional ad-hoc override mapping."""
    if path is None:
        return None
    data = read_yaml(path)
    if data is None:
        return None
    if not isinstance(data, Mapping):
        raise InputError(
            f"Expected a YAML mapping in {path}, got {type(data).__name__}",
            source=str(path),
        )
    return dict(data)


def collect_stack_layers(
    documents: Sequence[Sequence[Mapping[str, Any]]],
    defaults: PlannerDefaults,
    override: Mapping[str, Any] | None = None,
) -> list[StackLayers]:
    """Group stack entries by name and attach the defaults and override layers.

    Args:
        documents: Stack entries per input document, in precedence order.
        defaults: Run defaults; ``stack_defaults`` becomes the lowest layer.
        override: Optional mapping applied as the highest layer of every stack.

    Returns:
        One StackLayers per distinct stack name, in first-seen order.
        Entries without a usable name are kept as separate stacks so that
        validation can report them.
    """
    grouped: dict[str, StackLayers] = {}
    unnamed = 0

    for entries in documents:
        for entry in entries:
            name = entry.get("name")
            if isinstance(name, str) and name:
                key = name
            else:
                unnamed += 1
                key = f"<unnamed-{unnamed}>"
            if key not in grouped:
                grouped[key] = StackLayers(name=key, layers=[dict(defaults.stack_defaults)])
            grouped[key].layers.append(dict(entry))

    for stack in grouped.values():
        stack.layers.append(dict(override or {}))

    logger.info("Collected %d stack(s): %s", len(grouped), list(grouped))
    return list(grouped.values())


def load_stack_layers(
    paths: Sequence[Path],
    defaults: PlannerDefaults,
    override_path: Path | None = None,
) -> list[StackLayers]:
    """Read the given layer files and the override file into StackLayers."""
    documents = [load_stack_file(path) for path in paths]
    return collect_stack_layers(documents, defaults, load_override(override_path))
