"""Resolve foreign identifiers to display values from reference tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Tuple

from load_scope import LoadCancelled, LoadScope

logger = logging.getLogger("vowbook.resolver")

PLACEHOLDER = "N/A"


@dataclass(frozen=True)
class Lookup:
    """One hop: read ``key`` from the current row, match it against ``table.match``."""

    table: str
    key: str
    match: str = "id"
    display: Tuple[str, ...] = ("name",)

    def __post_init__(self) -> None:
        if isinstance(self.display, str):
            object.__setattr__(self, "display", (self.display,))
        if not self.display:
            raise ValueError(f"lookup on {self.table} needs at least one display field")


@dataclass(frozen=True)
class JoinSpec:
    target: str
    path: Tuple[Lookup, ...]
    alternates: Tuple[Tuple[Lookup, ...], ...] = ()
    placeholder: str = PLACEHOLDER

    def __post_init__(self) -> None:
        if isinstance(self.path, Lookup):
            object.__setattr__(self, "path", (self.path,))
        object.__setattr__(self, "path", tuple(self.path))
        alternates = tuple(
            (route,) if isinstance(route, Lookup) else tuple(route) for route in self.alternates
        )
        object.__setattr__(self, "alternates", alternates)
        if not self.path:
            raise ValueError(f"join {self.target} has an empty path")
        for route in alternates:
            if not route or route[0].key != self.key:
                raise ValueError(f"join {self.target} alternates must start from {self.key}")

    @property
    def key(self) -> str:
        return self.path[0].key

    def routes(self) -> list[Tuple[Lookup, ...]]:
        return [self.path, *self.alternates]


def usable_id(value: Any) -> bool:
    if value is None or value == "":
        return False
    try:
        hash(value)
    except TypeError:
        return False
    return True


def display_value(row: dict | None, fields: Iterable[str]) -> Any:
    """A single field yields its raw value; several are joined with spaces."""
    if not row:
        return None
    fields = tuple(fields)
    if len(fields) == 1:
        value = row.get(fields[0])
        return None if value == "" else value
    parts = [str(row[name]) for name in fields if row.get(name) not in (None, "")]
    return " ".join(parts) if parts else None


@dataclass
class _Lane:
    spec: JoinSpec
    route: Tuple[Lookup, ...]
    cursor: Dict[Any, Any]
    values: Dict[Any, Any] = field(default_factory=dict)

    def active(self, depth: int) -> bool:
        return depth < len(self.route) and bool(self.cursor)


class ReferenceResolver:
    def __init__(self, backend) -> None:
        self._backend = backend

    async def resolve_many(
        self,
        rows: List[dict],
        specs: Iterable[JoinSpec],
        scope: LoadScope | None = None,
    ) -> Dict[str, Dict[Any, Any]]:
        """Bulk resolution for list pages.

        Identifiers wanted from the same ``(table, match)`` at the same hop are
        fetched with one ``in`` query. Returns ``{target: {first_hop_id: value}}``.
        """
        scope = scope or LoadScope("resolve_many")
        specs = list(specs)
        lanes: list[_Lane] = []
        for spec in specs:
            for route in spec.routes():
                cursor = {}
                for row in rows:
                    ident = row.get(route[0].key)
                    if usable_id(ident):
                        cursor[ident] = ident
                lanes.append(_Lane(spec, route, cursor))

        depth = 0
        while any(lane.active(depth) for lane in lanes):
            active = [lane for lane in lanes if lane.active(depth)]
            wanted: Dict[Tuple[str, str], set] = {}
            for lane in active:
                lookup = lane.route[depth]
                wanted.setdefault((lookup.table, lookup.match), set()).update(lane.cursor.values())
            fetched = await self._fetch_batches(wanted, scope)
            for lane in active:
                lookup = lane.route[depth]
                index = fetched.get((lookup.table, lookup.match), {})
                last = depth == len(lane.route) - 1
                advanced = {}
                for first_id, current in lane.cursor.items():
                    row = index.get(current)
                    if row is None:
                        continue
                    if last:
                        lane.values[first_id] = display_value(row, lookup.display)
                    else:
                        nxt = row.get(lane.route[depth + 1].key)
                        if usable_id(nxt):
                            advanced[first_id] = nxt
                lane.cursor = {} if last else advanced
            depth += 1

        result: Dict[str, Dict[Any, Any]] = {spec.target: {} for spec in specs}
        for lane in lanes:
            mapping = result[lane.spec.target]
            for first_id, value in lane.values.items():
                if value is not None and first_id not in mapping:
                    mapping[first_id] = value
        return result

    async def _fetch_batches(self, wanted: Dict[Tuple[str, str], set], scope: LoadScope) -> Dict[Tuple[str, str], dict]:
        calls = {}
        for (table, match), ids in wanted.items():
            ordered = sorted(ids, key=str)
            calls[f"{table}.{match}"] = self._backend.select(table, in_=(match, ordered))
        outcomes = await scope.gather(calls)
        fetched: Dict[Tuple[str, str], dict] = {}
        for (table, match) in wanted:
            outcome = outcomes[f"{table}.{match}"]
            if isinstance(outcome.error, LoadCancelled):
                raise outcome.error
            if not outcome.ok:
                logger.warning("reference_lookup_failed table=%s match=%s error=%s", table, match, outcome.error)
                fetched[(table, match)] = {}
                continue
            index = {}
            for row in outcome.value or []:
                ident = row.get(match)
                if usable_id(ident):
                    index.setdefault(ident, row)
            fetched[(table, match)] = index
        return fetched

    async def resolve_one(
        self,
        record: dict,
        specs: Iterable[JoinSpec],
        scope: LoadScope | None = None,
    ) -> Dict[str, Dict[Any, Any]]:
        """Per-record resolution for detail pages: one lookup per identifier."""
        scope = scope or LoadScope("resolve_one")
        specs = list(specs)
        outcomes = await scope.gather({spec.target: self._resolve_spec(record, spec) for spec in specs})
        result: Dict[str, Dict[Any, Any]] = {}
        for spec in specs:
            outcome = outcomes[spec.target]
            ident = record.get(spec.key)
            mapping: Dict[Any, Any] = {}
            if not outcome.ok:
                logger.warning(
                    "reference_lookup_failed target=%s key=%s id=%s error=%s",
                    spec.target,
                    spec.key,
                    ident,
                    outcome.error,
                )
            elif outcome.value is not None and usable_id(ident):
                mapping[ident] = outcome.value
            result[spec.target] = mapping
        return result

    async def _resolve_spec(self, record: dict, spec: JoinSpec) -> Any:
        for route in spec.routes():
            ident = record.get(route[0].key)
            for depth, lookup in enumerate(route):
                if not usable_id(ident):
                    break
                row = await self._backend.fetch_one(lookup.table, ident, match=lookup.match)
                if row is None:
                    break
                if depth == len(route) - 1:
                    value = display_value(row, lookup.display)
                    if value is not None:
                        return value
                    break
                ident = row.get(route[depth + 1].key)
        return None

