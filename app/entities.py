"""Declarative registry of the admin pages and how their rows are joined."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Sequence, Tuple

from ad_pricing import billing_cycle, total_price
from csv_records import parse_time, to_cents
from list_aggregator import derive_status
from reference_resolver import JoinSpec, Lookup
from vowbook.timefmt import to_display, to_iso_utc

Derive = Callable[[dict, datetime, str], Dict[str, Any]]
AfterCreate = Callable[[Any, dict, dict, str], Awaitable[Any]]


@dataclass(frozen=True)
class ChildCollection:
    """Rows of ``table`` whose ``foreign_key`` points at the primary record."""

    key: str
    table: str
    foreign_key: str
    joins: Tuple[JoinSpec, ...] = ()
    order_by: str | None = None


@dataclass(frozen=True)
class ChildCount:
    """Count of ``table`` rows per primary row, stored on the row as ``field``.

    A row without counted children keeps its own ``field`` value. Totals, the
    per-row average and the daily trend on ``trend_field`` go into the list
    statistics under ``children``.
    """

    field: str
    table: str
    foreign_key: str
    trend_field: str | None = None


@dataclass(frozen=True)
class EntityPage:
    key: str
    table: str
    title: str
    noun: str
    list_path: str
    joins: Tuple[JoinSpec, ...] = ()
    children: Tuple[ChildCollection, ...] = ()
    search_fields: Tuple[str, ...] = ()
    filter_fields: Tuple[str, ...] = ()
    editable_fields: Tuple[str, ...] = ()
    creatable_fields: Tuple[str, ...] = ()
    required_fields: Tuple[str, ...] = ()
    transient_fields: Tuple[str, ...] = ()
    create_converters: Dict[str, Callable[[Any], Any]] = field(default_factory=dict)
    create_defaults: Dict[str, Any] = field(default_factory=dict)
    after_create: AfterCreate | None = None
    child_counts: Tuple[ChildCount, ...] = ()
    base_filters: Dict[str, Any] = field(default_factory=dict)
    order_by: str | None = "created_at"
    descending: bool = True
    histogram_fields: Tuple[str, ...] = ()
    sum_fields: Tuple[str, ...] = ()
    average_fields: Tuple[str, ...] = ()
    average_places: int = 0
    trend_field: str | None = None
    gained_field: str | None = None
    derive: Derive | None = None
    read_capability: str = "records.read"
    write_capability: str = "records.write"
    create_capability: str = "records.write"
    delete_capability: str = "records.write"

    def is_editable(self, field_name: str) -> bool:
        return field_name in self.editable_fields

    @property
    def creatable(self) -> bool:
        return bool(self.creatable_fields)

    def summary(self) -> dict:
        return {
            "key": self.key,
            "title": self.title,
            "list_path": self.list_path,
            "search_fields": list(self.search_fields),
            "filter_fields": list(self.filter_fields),
            "editable_fields": list(self.editable_fields),
            "creatable_fields": list(self.creatable_fields),
        }


def _name(table: str, key: str, match: str = "id", display: Sequence[str] | str = "name") -> Lookup:
    return Lookup(table, key, match, tuple(display) if not isinstance(display, str) else display)


def _derive_ad(row: dict, reference: datetime, tz_name: str) -> Dict[str, Any]:
    pages = row.get("selected_pages") if isinstance(row.get("selected_pages"), dict) else {}
    return {
        "billing_cycle": billing_cycle(pages),
        "total_price": total_price(row.get("placement_type") or "", pages),
        "status": derive_status(row.get("start_date"), row.get("end_date"), reference),
    }


def _derive_job(row: dict, reference: datetime, tz_name: str) -> Dict[str, Any]:
    return {
        "event_start_display": to_display(row.get("event_start_time"), tz_name),
        "event_end_display": to_display(row.get("event_end_time"), tz_name),
        "created_display": to_display(row.get("created_at"), tz_name),
    }


def _iso(value: Any) -> str:
    return to_iso_utc(parse_time(str(value)))


def _cents(value: Any) -> int:
    return to_cents(str(value))


def _new_token() -> str:
    return str(uuid.uuid4())


async def _add_booking_event(backend, booking: dict, values: dict, stamp: str) -> None:
    couple = await backend.fetch_one("couples", booking.get("couple_id"), columns="id, name")
    await backend.insert(
        "events",
        {
            "couple_id": booking.get("couple_id"),
            "vendor_id": booking.get("vendor_id"),
            "booking_id": booking.get("id"),
            "start_time": values["start_time"],
            "end_time": values["end_time"],
            "type": values.get("service_type") or "Event",
            "title": f"{(couple or {}).get('name') or 'Unknown'} - {booking.get('service_type')}",
            "created_at": stamp,
            "updated_at": stamp,
        },
    )


def _derive_event(row: dict, reference: datetime, tz_name: str) -> Dict[str, Any]:
    return {
        "start_display": to_display(row.get("start_time"), tz_name),
        "end_display": to_display(row.get("end_time"), tz_name),
    }


_COUPLE_NAME = JoinSpec("couple_name", (_name("couples", "couple_id"),))
_VENDOR_NAME = JoinSpec("vendor_name", (_name("vendors", "vendor_id"),))


ENTITY_PAGES: Dict[str, EntityPage] = {
    page.key: page
    for page in (
        EntityPage(
            key="ads",
            table="ads",
            title="Ad Purchases",
            noun="ad purchase",
            list_path="/pages/ads",
            search_fields=("sponsor_name", "email", "placement_type"),
            filter_fields=("status", "placement_type"),
            editable_fields=("sponsor_name", "email", "phone", "start_date", "end_date"),
            histogram_fields=("placement_type", "status"),
            sum_fields=("total_price",),
            trend_field="created_at",
            derive=_derive_ad,
        ),
        EntityPage(
            key="orders",
            table="store_orders",
            title="Store Orders",
            noun="order",
            list_path="/pages/orders",
            joins=(
                JoinSpec(
                    "user_name",
                    (_name("couples", "user_id", match="user_id"),),
                    alternates=((_name("vendors", "user_id", match="user_id"),),),
                    placeholder="Unknown",
                ),
            ),
            children=(
                ChildCollection(
                    key="items",
                    table="store_order_items",
                    foreign_key="order_id",
                    joins=(JoinSpec("product_name", (_name("store_products", "product_id"),), placeholder="Unknown Product"),),
                ),
            ),
            search_fields=("id", "user_name", "email", "status"),
            filter_fields=("status",),
            editable_fields=("status", "tracking_number", "shipping_provider"),
            histogram_fields=("status",),
            sum_fields=("total_amount",),
            trend_field="created_at",
        ),
        EntityPage(
            key="payments",
            table="payments",
            title="Payments",
            noun="payment",
            list_path="/pages/payments",
            joins=(
                JoinSpec(
                    "couple_name",
                    (_name("invoices", "invoice_id"), _name("couples", "couple_id", display=("partner1_name", "partner2_name"))),
                    placeholder="Unknown",
                ),
                JoinSpec(
                    "vendor_name",
                    (_name("invoices", "invoice_id"), _name("vendors", "vendor_id")),
                    placeholder="Unknown",
                ),
                JoinSpec(
                    "package_name",
                    (_name("bookings", "booking_id"), _name("service_packages", "package_id")),
                ),
            ),
            search_fields=("couple_name", "vendor_name", "status", "payment_type"),
            filter_fields=("status", "payment_type"),
            editable_fields=("status",),
            histogram_fields=("status", "payment_type"),
            sum_fields=("amount",),
            trend_field="created_at",
        ),
        EntityPage(
            key="jobs",
            table="job_board",
            title="Job Board",
            noun="job",
            list_path="/pages/jobs",
            joins=(
                _COUPLE_NAME,
                JoinSpec("service_package_name", (_name("service_packages", "service_package_id"),)),
                JoinSpec("venue_name", (_name("venues", "venue_id"),)),
                _VENDOR_NAME,
            ),
            search_fields=("job_type", "description", "couple_name", "venue_name"),
            filter_fields=("is_open", "job_type"),
            editable_fields=(
                "job_type",
                "description",
                "price",
                "is_open",
                "vendor_id",
                "event_start_time",
                "event_end_time",
            ),
            histogram_fields=("job_type",),
            sum_fields=("price",),
            trend_field="created_at",
            derive=_derive_job,
        ),
        EntityPage(
            key="bookings",
            table="bookings",
            title="Bookings",
            noun="booking",
            list_path="/pages/bookings",
            joins=(
                JoinSpec("couple_name", (_name("couples", "couple_id"),), placeholder="Unknown"),
                JoinSpec("vendor_name", (_name("vendors", "vendor_id"),), placeholder="Unknown"),
                JoinSpec("package_name", (_name("service_packages", "package_id"),)),
                JoinSpec("venue_name", (_name("venues", "venue_id"),)),
            ),
            search_fields=("couple_name", "vendor_name", "service_type"),
            filter_fields=("status", "service_type"),
            editable_fields=("status", "package_id", "venue_id"),
            creatable_fields=("couple_id", "vendor_id", "status", "amount", "service_type", "package_id", "venue_id"),
            transient_fields=("start_time", "end_time"),
            required_fields=("couple_id", "vendor_id", "venue_id", "start_time", "end_time"),
            create_defaults={"status": "pending", "service_type": "Unknown", "amount": 0},
            create_converters={"amount": _cents, "start_time": _iso, "end_time": _iso},
            after_create=_add_booking_event,
            histogram_fields=("status", "service_type"),
            sum_fields=("amount",),
            trend_field="created_at",
        ),
        EntityPage(
            key="events",
            table="events",
            title="Events",
            noun="event",
            list_path="/pages/events",
            joins=(_COUPLE_NAME, _VENDOR_NAME),
            search_fields=("title", "type", "couple_name", "vendor_name"),
            filter_fields=("type",),
            editable_fields=("title", "type", "start_time", "end_time"),
            creatable_fields=("couple_id", "vendor_id", "start_time", "end_time", "type", "title"),
            required_fields=("couple_id", "vendor_id", "start_time", "end_time"),
            create_defaults={"type": "Event"},
            create_converters={"start_time": _iso, "end_time": _iso},
            histogram_fields=("type",),
            order_by="start_time",
            trend_field="created_at",
            derive=_derive_event,
        ),
        EntityPage(
            key="service_packages",
            table="service_packages",
            title="Service Packages",
            noun="service package",
            list_path="/pages/service_packages",
            joins=(_VENDOR_NAME,),
            search_fields=("name", "service_type", "description", "vendor_name"),
            filter_fields=("service_type", "status"),
            editable_fields=("name", "description", "price", "status", "hour_amount", "event_type"),
            creatable_fields=(
                "service_type",
                "name",
                "description",
                "price",
                "features",
                "coverage",
                "status",
                "vendor_id",
                "hour_amount",
                "lookup_key",
                "event_type",
            ),
            required_fields=("service_type", "name"),
            histogram_fields=("service_type", "status"),
            trend_field="created_at",
        ),
        EntityPage(
            key="venues",
            table="venues",
            title="Venues",
            noun="venue",
            list_path="/pages/venues",
            search_fields=("name", "city", "state", "region"),
            filter_fields=("state", "region"),
            editable_fields=(
                "name",
                "phone",
                "email",
                "contact_name",
                "street_address",
                "city",
                "state",
                "zip",
                "service_area",
                "insurance",
            ),
            creatable_fields=(
                "name",
                "phone",
                "email",
                "contact_name",
                "street_address",
                "city",
                "state",
                "zip",
                "service_area_id",
            ),
            required_fields=("name",),
            histogram_fields=("region",),
            order_by="name",
            descending=False,
        ),
        EntityPage(
            key="faqs",
            table="faqs",
            title="FAQs",
            noun="FAQ",
            list_path="/pages/faqs",
            search_fields=("question", "answer"),
            filter_fields=("category", "published"),
            editable_fields=("question", "answer", "category", "display_order", "published"),
            creatable_fields=("question", "answer", "category", "display_order", "published"),
            required_fields=("question", "answer"),
            create_defaults={"published": False},
            histogram_fields=("category",),
            order_by="display_order",
            descending=False,
        ),
        EntityPage(
            key="blog_posts",
            table="blog_posts",
            title="Blog Posts",
            noun="blog post",
            list_path="/pages/blog_posts",
            search_fields=("title", "excerpt"),
            filter_fields=("status", "category"),
            editable_fields=("title", "excerpt", "content", "category", "status", "featured", "tags", "read_time"),
            histogram_fields=("status", "category"),
            sum_fields=("like_count",),
            child_counts=(ChildCount("view_count", "blog_post_views", "post_id", trend_field="viewed_at"),),
        ),
        EntityPage(
            key="blog_subscribers",
            table="blog_subscriptions",
            title="Blog Subscribers",
            noun="subscriber",
            list_path="/pages/blog_subscribers",
            search_fields=("email", "name"),
            filter_fields=("status", "subscription_source"),
            editable_fields=("status",),
            histogram_fields=("status", "subscription_source"),
            order_by="subscribed_at",
            trend_field="subscribed_at",
            gained_field="subscribed_at",
        ),
        EntityPage(
            key="forum_posts",
            table="vendor_forum_posts",
            title="Vendor Forum",
            noun="forum post",
            list_path="/pages/forum_posts",
            joins=(_VENDOR_NAME,),
            children=(
                ChildCollection(
                    key="replies",
                    table="vendor_forum_replies",
                    foreign_key="post_id",
                    joins=(JoinSpec("vendor_name", (_name("vendors", "vendor_id"),), placeholder="Admin"),),
                    order_by="created_at",
                ),
            ),
            search_fields=("title", "content", "vendor_name"),
            filter_fields=("category",),
            editable_fields=("title", "content", "category", "is_hidden"),
            base_filters={"is_hidden": False},
            trend_field="created_at",
            creatable_fields=("title", "content", "category"),
            required_fields=("title", "content"),
            create_defaults={"is_hidden": False, "vendor_id": None},
            create_capability="forum.moderate",
            delete_capability="forum.moderate",
        ),
        EntityPage(
            key="forum_replies",
            table="vendor_forum_replies",
            title="Forum Replies",
            noun="reply",
            list_path="/pages/forum_replies",
            joins=(
                JoinSpec("post_title", (_name("vendor_forum_posts", "post_id", display="title"),), placeholder="Unknown"),
                JoinSpec("vendor_name", (_name("vendors", "vendor_id"),), placeholder="Admin"),
            ),
            search_fields=("content", "post_title", "vendor_name"),
            filter_fields=("post_id",),
            editable_fields=("content",),
            creatable_fields=("post_id", "content"),
            required_fields=("post_id", "content"),
            create_defaults={"vendor_id": None},
            trend_field="created_at",
            write_capability="forum.moderate",
            create_capability="forum.moderate",
            delete_capability="forum.moderate",
        ),
        EntityPage(
            key="issues",
            table="vendor_issues",
            title="Vendor Issues",
            noun="issue",
            list_path="/pages/issues",
            joins=(_VENDOR_NAME,),
            search_fields=("name", "issue_type", "description", "vendor_name"),
            filter_fields=("status", "severity", "issue_type"),
            editable_fields=("status", "admin_response"),
            histogram_fields=("status", "severity"),
            trend_field="created_at",
        ),
        EntityPage(
            key="products",
            table="store_products",
            title="Store Products",
            noun="product",
            list_path="/pages/products",
            joins=(JoinSpec("category_name", (_name("store_categories", "category_id"),), placeholder="Unknown"),),
            search_fields=("name", "category_name", "audience"),
            filter_fields=("audience", "category_id"),
            editable_fields=("name", "description", "price", "stock", "audience", "category_id"),
            histogram_fields=("audience",),
        ),
        EntityPage(
            key="timelines",
            table="timeline_shares",
            title="Timelines",
            noun="timeline share",
            list_path="/pages/timelines",
            joins=(_COUPLE_NAME, _VENDOR_NAME),
            search_fields=("couple_name", "vendor_name", "status"),
            filter_fields=("status",),
            editable_fields=("status",),
            histogram_fields=("status",),
            creatable_fields=("couple_id", "vendor_id"),
            required_fields=("couple_id", "vendor_id"),
            create_defaults={"status": "active", "token": _new_token},
            create_capability="timelines.share",
        ),
        EntityPage(
            key="support_reviews",
            table="support_feedback",
            title="Support Reviews",
            noun="review",
            list_path="/pages/support_reviews",
            search_fields=("customer_name", "email", "event_type", "feedback"),
            filter_fields=("event_type", "would_recommend"),
            histogram_fields=("event_type", "would_recommend"),
            average_fields=("booking_experience_rating", "support_experience_rating"),
            average_places=2,
            trend_field="created_at",
        ),
        EntityPage(
            key="couples",
            table="couples",
            title="Couples",
            noun="couple",
            list_path="/pages/couples",
            search_fields=("name", "email", "partner1_name", "partner2_name", "venue_name"),
            filter_fields=("venue_state",),
            editable_fields=("name", "email", "phone", "wedding_date", "budget", "guest_count", "venue_name"),
            sum_fields=("budget",),
            average_fields=("guest_count",),
            trend_field="created_at",
            gained_field="created_at",
        ),
        EntityPage(
            key="vendors",
            table="vendors",
            title="Vendors",
            noun="vendor",
            list_path="/pages/vendors",
            search_fields=("name", "email", "service_type"),
            filter_fields=("service_type",),
            editable_fields=("name", "profile_photo", "phone_number", "stripe_account_id", "profile"),
            histogram_fields=("service_type",),
            trend_field="created_at",
            gained_field="created_at",
        ),
    )
}


def get_entity_page(key: str) -> EntityPage | None:
    return ENTITY_PAGES.get(key)


def list_entity_pages() -> list[dict]:
    return [page.summary() for page in ENTITY_PAGES.values()]
