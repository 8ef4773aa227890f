"""Ad placement price tables and purchase totals."""

from __future__ import annotations

from typing import Any, Dict, Mapping

MONTHLY = "monthly"
QUARTERLY = "quarterly"
YEARLY = "yearly"
BILLING_CYCLES = (MONTHLY, QUARTERLY, YEARLY)

EMAIL_SPONSORSHIP = "Email Sponsorship"
PHOTO_AD = "Photo Ad"
FEATURED_PHOTO_AD = "Featured Photo Ad"

PLACEMENT_PRICES: Dict[str, Dict[str, int]] = {
    "Basic Ad": {MONTHLY: 250, QUARTERLY: 675, YEARLY: 2000},
    "Featured Ad": {MONTHLY: 500, QUARTERLY: 1350, YEARLY: 4000},
    "Sponsored Ad": {MONTHLY: 1250, QUARTERLY: 3375, YEARLY: 10000},
    PHOTO_AD: {MONTHLY: 150, QUARTERLY: 405, YEARLY: 1200},
    FEATURED_PHOTO_AD: {MONTHLY: 500, QUARTERLY: 1350, YEARLY: 4000},
    EMAIL_SPONSORSHIP: {MONTHLY: 250, QUARTERLY: 675, YEARLY: 2000},
}

# Price per main (home) page placement.
MAIN_PAGE_PRICES: Dict[str, Dict[str, int]] = {
    "Basic Ad": {MONTHLY: 1000, QUARTERLY: 2700, YEARLY: 8000},
    "Featured Ad": {MONTHLY: 1500, QUARTERLY: 4050, YEARLY: 12000},
    "Sponsored Ad": {MONTHLY: 2250, QUARTERLY: 6075, YEARLY: 18000},
}


def billing_cycle(selected_pages: Mapping[str, Any] | None) -> str:
    cycle = (selected_pages or {}).get("billingCycle")
    return cycle if cycle in BILLING_CYCLES else MONTHLY


def unit_price(placement_type: str, cycle: str) -> int:
    return PLACEMENT_PRICES.get(placement_type, {}).get(cycle, 0)


def main_page_price(placement_type: str, cycle: str) -> int:
    return MAIN_PAGE_PRICES.get(placement_type, {}).get(cycle, 0)


def _count(selected_pages: Mapping[str, Any], key: str) -> int:
    value = selected_pages.get(key)
    return len(value) if isinstance(value, (list, tuple)) else 0


def total_price(placement_type: str, selected_pages: Mapping[str, Any] | None) -> int:
    """Total for one ad purchase given its placement type and selected pages.

    ``selected_pages`` carries ``billingCycle`` plus the chosen
    ``selectedServices``, ``selectedVendors``, ``selectedMains``,
    ``selectedEmails`` and ``numPhotos`` the way ads store them.
    """
    pages = selected_pages or {}
    cycle = billing_cycle(pages)
    price = unit_price(placement_type, cycle)
    if placement_type == EMAIL_SPONSORSHIP:
        return _count(pages, "selectedEmails") * price
    if placement_type in (PHOTO_AD, FEATURED_PHOTO_AD):
        photos = pages.get("numPhotos")
        if isinstance(photos, bool) or not isinstance(photos, int) or photos < 1:
            photos = 1
        return photos * price
    placements = _count(pages, "selectedServices") + _count(pages, "selectedVendors")
    return placements * price + _count(pages, "selectedMains") * main_page_price(placement_type, cycle)
