"""Detail and list page loading for registered entities."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from field_editor import FieldEditor, FieldEditorError
from list_aggregator import ListAggregator, ListView, child_stats, count_by
from load_scope import LoadCancelled, LoadScope
from notices import Notifier
from reference_resolver import ReferenceResolver
from view_model import decorate, decorate_all
from vowbook.timefmt import DEFAULT_DISPLAY_TZ, to_iso_utc

from app.entities import ChildCollection, ChildCount, EntityPage

logger = logging.getLogger("vowbook.pages")


def _derived(page: EntityPage, view: dict, reference: datetime, tz_name: str) -> dict:
    if page.derive is None:
        return view
    return {**view, **page.derive(view, reference, tz_name)}


def _capitalized(noun: str) -> str:
    return f"{noun[:1].upper()}{noun[1:]}"


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _submitted_values(page: EntityPage, values: Dict[str, Any]) -> dict:
    accepted = set(page.creatable_fields) | set(page.transient_fields)
    for name in values:
        if name not in accepted:
            raise FieldEditorError("FIELD_NOT_EDITABLE", f"{name} cannot be set", name)
    submitted = {}
    for name, value in values.items():
        if _is_blank(value):
            continue
        if isinstance(value, str):
            value = value.strip()
        convert = page.create_converters.get(name)
        if convert is not None:
            try:
                value = convert(value)
            except (TypeError, ValueError) as exc:
                raise FieldEditorError("FIELD_INVALID", f"{name}: {exc}", name) from None
        submitted[name] = value
    for name in page.required_fields:
        if name not in submitted:
            raise FieldEditorError("FIELD_REQUIRED", f"{name} is required", name)
    return submitted


async def create_record(
    backend,
    page: EntityPage,
    values: Dict[str, Any],
    *,
    reference: datetime | None = None,
    tz_name: str = DEFAULT_DISPLAY_TZ,
    notifier: Notifier | None = None,
    clock: Callable[[], datetime] | None = None,
) -> dict | None:
    """Insert one row built from submitted ``values`` and return its view model.

    Unknown, invalid or missing required fields raise ``FieldEditorError``
    before anything is written. Blank strings count as absent, so defaults
    apply. A failed insert returns None with an error notice; so does a failed
    ``after_create`` step, after the new row has been removed again.
    """
    notifier = notifier or Notifier()
    if not page.creatable:
        raise FieldEditorError("RECORD_NOT_CREATABLE", f"New {page.noun} records cannot be added")
    submitted = _submitted_values(page, values)
    stamp = to_iso_utc((clock or (lambda: datetime.now(timezone.utc)))())
    row = {name: value() if callable(value) else value for name, value in page.create_defaults.items()}
    row.update({name: value for name, value in submitted.items() if name in page.creatable_fields})
    row.update(created_at=stamp, updated_at=stamp)
    try:
        created = await backend.insert(page.table, row)
    except Exception as exc:
        logger.warning("record_create_failed entity=%s error=%s", page.key, exc)
        notifier.error(f"Failed to add {page.noun}")
        return None
    if page.after_create is not None:
        try:
            await page.after_create(backend, created, submitted, stamp)
        except Exception as exc:
            logger.warning("record_create_followup_failed entity=%s id=%s error=%s", page.key, created.get("id"), exc)
            try:
                await backend.delete(page.table, created.get("id"))
            except Exception as cleanup_exc:
                logger.warning("create_compensation_failed entity=%s id=%s error=%s", page.key, created.get("id"), cleanup_exc)
            notifier.error(f"Failed to add {page.noun}")
            return None
    logger.info("record_created entity=%s id=%s", page.key, created.get("id"))
    references = await ReferenceResolver(backend).resolve_one(created, page.joins)
    view = decorate(created, page.joins, references)
    notifier.success(f"{_capitalized(page.noun)} added successfully")
    return _derived(page, view, reference or datetime.now(timezone.utc), tz_name)


@dataclass
class PageLoad:
    ok: bool
    record: dict | None = None
    children: Dict[str, list] = field(default_factory=dict)
    redirect: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "record": self.record,
            "children": self.children,
            "redirect": self.redirect,
        }


class DetailPage:
    """One open detail view: load, inline edits, delete, close.

    Only the primary fetch is fatal. Reference and child lookups that fail
    leave their fields on the placeholder. Closing the page cancels its load
    scope so late results are dropped.
    """

    def __init__(
        self,
        backend,
        page: EntityPage,
        record_id: Any,
        *,
        reference: datetime | None = None,
        tz_name: str = DEFAULT_DISPLAY_TZ,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._backend = backend
        self.page = page
        self.record_id = record_id
        self.reference = reference or datetime.now(timezone.utc)
        self.tz_name = tz_name
        self.notifier = notifier or Notifier()
        self._clock = clock
        self.scope = LoadScope(f"{page.key}:{record_id}")
        self.resolver = ReferenceResolver(backend)
        self.record: dict | None = None
        self.view: dict | None = None
        self.children: Dict[str, list] = {}
        self.editor: FieldEditor | None = None

    async def load(self) -> PageLoad:
        page = self.page
        try:
            record = await self.scope.run(self._backend.fetch_one(page.table, self.record_id))
        except LoadCancelled:
            raise
        except Exception as exc:
            logger.warning("record_load_failed entity=%s id=%s error=%s", page.key, self.record_id, exc)
            self.notifier.error(f"Failed to load {page.noun} details")
            return PageLoad(ok=False, redirect=page.list_path, error="RECORD_LOAD_FAILED")
        if record is None:
            logger.info("record_not_found entity=%s id=%s", page.key, self.record_id)
            self.notifier.error(f"{_capitalized(page.noun)} not found")
            return PageLoad(ok=False, redirect=page.list_path, error="RECORD_NOT_FOUND")

        loads = {"references": self.resolver.resolve_one(record, page.joins, self.scope)}
        for child in page.children:
            loads[f"child:{child.key}"] = self._load_child(child, record)
        outcomes = await self.scope.gather(loads)

        references = outcomes["references"].value if outcomes["references"].ok else {}
        if not outcomes["references"].ok:
            logger.warning("reference_resolution_failed entity=%s error=%s", page.key, outcomes["references"].error)
        children = {}
        for child in page.children:
            outcome = outcomes[f"child:{child.key}"]
            if not outcome.ok:
                logger.warning(
                    "child_load_failed entity=%s child=%s id=%s error=%s",
                    page.key,
                    child.key,
                    self.record_id,
                    outcome.error,
                )
            children[child.key] = outcome.value if outcome.ok else []
        view = _derived(page, decorate(record, page.joins, references), self.reference, self.tz_name)

        def apply() -> None:
            self.record = record
            self.view = view
            self.children = children
            self.editor = FieldEditor(
                self._backend,
                page.table,
                self.record_id,
                record,
                editable=page.editable_fields,
                notifier=self.notifier,
                clock=self._clock,
            )

        self.scope.commit(apply)
        return PageLoad(ok=True, record=view, children=children)

    async def _load_child(self, child: ChildCollection, record: dict) -> list[dict]:
        rows = await self._backend.select(child.table, eq={child.foreign_key: record.get("id")}, order_by=child.order_by)
        references = await self.resolver.resolve_many(rows, child.joins, self.scope)
        return decorate_all(rows, child.joins, references)

    async def save_field(self, field_name: str, value: Any) -> bool:
        if self.editor is None:
            raise FieldEditorError("RECORD_NOT_LOADED", f"{self.page.noun} is not loaded", field_name)
        saved = await self.editor.set_value(field_name, value)
        if not saved:
            return False
        record = dict(self.editor.record)
        stale = [spec for spec in self.page.joins if spec.key == field_name]
        references = await self.resolver.resolve_one(record, stale, self.scope) if stale else {}
        view = dict(self.view or {})
        view.update(record)
        view = decorate(view, stale, references)

        def apply() -> None:
            self.record = record
            self.view = _derived(self.page, view, self.reference, self.tz_name)

        self.scope.commit(apply)
        return True

    async def delete(self) -> bool:
        page = self.page
        try:
            await self._backend.delete(page.table, self.record_id)
        except Exception as exc:
            logger.warning("record_delete_failed entity=%s id=%s error=%s", page.key, self.record_id, exc)
            self.notifier.error(f"Failed to delete {page.noun}")
            return False
        logger.info("record_deleted entity=%s id=%s", page.key, self.record_id)
        self.notifier.success(f"{_capitalized(page.noun)} deleted successfully")
        return True

    def close(self) -> None:
        self.scope.cancel()


class ListPage:
    def __init__(
        self,
        backend,
        page: EntityPage,
        *,
        page_size: int = 10,
        tz_name: str = DEFAULT_DISPLAY_TZ,
        notifier: Notifier | None = None,
    ) -> None:
        self._backend = backend
        self.page = page
        self.tz_name = tz_name
        self.notifier = notifier or Notifier()
        self.scope = LoadScope(f"{page.key}:list")
        self.resolver = ReferenceResolver(backend)
        self.aggregator = ListAggregator(
            search_fields=page.search_fields,
            page_size=page_size,
            histogram_fields=page.histogram_fields,
            sum_fields=page.sum_fields,
            average_fields=page.average_fields,
            average_places=page.average_places,
            trend_field=page.trend_field,
            gained_field=page.gained_field,
        )
        self.rows: List[dict] = []
        self.view: ListView | None = None

    async def load(
        self,
        *,
        query: str | None = None,
        page_number: int = 1,
        filters: Dict[str, Any] | None = None,
        reference: datetime | None = None,
    ) -> ListView:
        """Fetch the whole table, join, derive and aggregate.

        A failed table fetch records an error notice and propagates.
        """
        page = self.page
        reference = reference or datetime.now(timezone.utc)
        try:
            rows = await self.scope.run(
                self._backend.select(
                    page.table,
                    eq=page.base_filters or None,
                    order_by=page.order_by,
                    descending=page.descending,
                )
            )
        except LoadCancelled:
            raise
        except Exception:
            self.notifier.error(f"Failed to load {page.title.lower()}")
            raise
        loads = {"references": self.resolver.resolve_many(rows, page.joins, self.scope)}
        for counter in page.child_counts:
            loads[f"count:{counter.field}"] = self._load_counted(counter)
        outcomes = await self.scope.gather(loads)
        references = outcomes["references"].value if outcomes["references"].ok else {}
        if not outcomes["references"].ok:
            logger.warning("reference_resolution_failed entity=%s error=%s", page.key, outcomes["references"].error)

        children_stats = {}
        for counter in page.child_counts:
            outcome = outcomes[f"count:{counter.field}"]
            if not outcome.ok:
                logger.warning("child_count_failed entity=%s table=%s error=%s", page.key, counter.table, outcome.error)
                self.notifier.error(f"Failed to load {counter.table.replace('_', ' ')}")
                continue
            counts = count_by(outcome.value, counter.foreign_key)
            rows = [{**row, counter.field: counts.get(str(row.get("id"))) or row.get(counter.field) or 0} for row in rows]
            children_stats[counter.field] = child_stats(outcome.value, len(rows), counter.trend_field)

        views = [_derived(page, view, reference, self.tz_name) for view in decorate_all(rows, page.joins, references)]
        allowed = {key: value for key, value in (filters or {}).items() if key in page.filter_fields}
        result = self.aggregator.aggregate(views, query=query, page=page_number, filters=allowed, reference=reference)
        if children_stats:
            result.stats["children"] = children_stats

        def apply() -> None:
            self.rows = views
            self.view = result

        self.scope.commit(apply)
        logger.info(
            "list_loaded entity=%s rows=%s visible=%s page=%s",
            page.key,
            len(views),
            result.page.total,
            result.page.page,
        )
        return result

    async def _load_counted(self, counter: ChildCount) -> list[dict]:
        columns = counter.foreign_key if not counter.trend_field else f"{counter.foreign_key}, {counter.trend_field}"
        return await self._backend.select(counter.table, columns)

    def close(self) -> None:
        self.scope.cancel()
