"""Merge primary rows with resolved references into view models."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from reference_resolver import JoinSpec, usable_id


def decorate(record: dict, specs: Iterable[JoinSpec], references: Dict[str, Dict[Any, Any]]) -> dict:
    view = dict(record)
    for spec in specs:
        ident = record.get(spec.key)
        value = None
        if usable_id(ident):
            value = references.get(spec.target, {}).get(ident)
        view[spec.target] = spec.placeholder if value is None or value == "" else value
    return view


def decorate_all(rows: List[dict], specs: Iterable[JoinSpec], references: Dict[str, Dict[Any, Any]]) -> list[dict]:
    specs = list(specs)
    return [decorate(row, specs, references) for row in rows]
