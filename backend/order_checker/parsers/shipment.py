"""
Shipment and Delivery Extractors

Shipped emails list one or more packages. Tracking numbers and arrival
estimates have no shared key in the template, so they are paired by
position. If Walmart ever lists them in different orders the pairing
silently mismatches.

Delivered/arrived emails have no tracking number; they produce a synthetic
ShippedOrder so the order drops out of the live-orders view.
"""

import re
from typing import Optional

from bs4 import BeautifulSoup

from order_checker.error_tracking import ExtractionError
from order_checker.models import CachedResult, MessageKind, ShippedOrder, normalize_order_id

from .base import find_order_number, make_soup, register_extractor, tags_containing


CARRIER_RE = re.compile(r"(\w+)\s+tracking\s+number")


def extract_tracking_numbers(soup: BeautifulSoup) -> list[str]:
    numbers = []
    seen = set()
    for span in tags_containing(soup, "span", "tracking number"):
        for link in span.find_all("a"):
            # Nested spans both match; count each link once
            if id(link) in seen:
                continue
            seen.add(id(link))
            numbers.append(link.get_text().strip())
    return numbers


def extract_arrival_dates(soup: BeautifulSoup) -> list[str]:
    return [strong.get_text().strip() for strong in tags_containing(soup, "strong", "Arrives")]


def extract_carrier(soup: BeautifulSoup) -> str:
    text = "".join(span.get_text() for span in tags_containing(soup, "span", "tracking number"))
    match = CARRIER_RE.search(text)
    return match.group(1) if match else ""


@register_extractor(MessageKind.SHIPPED)
def extract_shipped(html_body: Optional[str], subject: str) -> CachedResult:
    """Parse a 'Shipped:' email into ShippedOrder records."""
    soup = make_soup(html_body)
    order_id = find_order_number(soup)
    if not order_id:
        raise ExtractionError("order number anchor not found")

    tracking_numbers = extract_tracking_numbers(soup)
    arrival_dates = extract_arrival_dates(soup)
    carrier = extract_carrier(soup)

    shipped = []
    for tracking_number, arrival in zip(tracking_numbers, arrival_dates):
        if not tracking_number:
            continue
        shipped.append(
            ShippedOrder(
                id=order_id,
                tracking_number=tracking_number,
                carrier=carrier,
                estimated_arrival=arrival,
            )
        )
    return CachedResult(shipped=shipped)


def find_delivered_order_number(soup: BeautifulSoup) -> str:
    """
    Delivered emails show the order as a plain '#2000129-05242992' link
    without an aria-label. The last matching link wins.
    """
    raw = ""
    for link in soup.find_all("a"):
        text = link.get_text().strip()
        if text.startswith("#") and "-" in text and len(text) > 10 and text[1] == "2":
            raw = text
    return normalize_order_id(raw) if raw else ""


@register_extractor(MessageKind.ARRIVED)
def extract_delivered(html_body: Optional[str], subject: str) -> CachedResult:
    soup = make_soup(html_body)
    order_id = find_delivered_order_number(soup)
    if not order_id:
        raise ExtractionError("delivered order number not found")
    return CachedResult(shipped=[ShippedOrder.delivered(order_id)])
