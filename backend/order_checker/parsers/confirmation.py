"""
Order Confirmation Extractor

Handles "thanks for your order" and "thanks for your preorder" emails:
- Order number from the aria-labelled link
- Line items from product image alt text
- Order total next to the fee disclaimer
- Order date block
"""

import re
from typing import Optional

from bs4 import BeautifulSoup, Tag

from order_checker.classifier import status_from_subject
from order_checker.models import CachedResult, Item, MessageKind, Order

from .base import extract_order_date, make_soup, register_extractor, require_order_number, tags_containing


TOTAL_DISCLAIMER = "Includes all fees, taxes, discounts and driver tip"
THUMBNAIL_PROXY = "https://images.weserv.nl/?url={url}&trim=10&bg=00000000"
LEADING_INT_RE = re.compile(r"^\d+")


def parse_item_from_image(img: Tag) -> Optional[Item]:
    """
    Build an Item from a product image.

    Alt text looks like "quantity 2 item Great Value Widget". Quantity defaults
    to 1 when the number is missing or unreadable.
    """
    alt = img.get("alt", "")
    parts = alt.split(" item ")
    if len(parts) != 2:
        return None

    quantity = 1
    qty_tokens = parts[0].split(" ")
    if len(qty_tokens) > 1:
        match = LEADING_INT_RE.match(qty_tokens[1])
        if match:
            quantity = int(match.group(0))

    image_url = img.get("src", "")
    if image_url:
        image_url = THUMBNAIL_PROXY.format(url=image_url)

    return Item(name=parts[1], quantity=quantity, image_url=image_url)


def extract_items(soup: BeautifulSoup) -> list[Item]:
    items = []
    for img in soup.find_all("img", alt=lambda alt: bool(alt) and "quantity" in alt):
        item = parse_item_from_image(img)
        if item:
            items.append(item)
    return items


def extract_total(soup: BeautifulSoup) -> str:
    """Total sits in a <strong> inside the element after the disclaimer's parent."""
    anchors = tags_containing(soup, "strong", TOTAL_DISCLAIMER)
    if not anchors:
        return ""

    # Confirmation emails carry one total; only the first disclaimer is read
    parent = anchors[0].parent
    if parent is None:
        return ""
    sibling = parent.find_next_sibling()
    if sibling is None:
        return ""
    return "".join(strong.get_text() for strong in sibling.find_all("strong")).strip()


@register_extractor(MessageKind.ORDER_CONFIRMATION)
def extract_order_confirmation(html_body: Optional[str], subject: str) -> CachedResult:
    """Parse an order confirmation into an Order delta."""
    soup = make_soup(html_body)
    order_id = require_order_number(soup)
    order_date, order_date_parsed = extract_order_date(soup)

    order = Order(
        id=order_id,
        items=extract_items(soup),
        total=extract_total(soup),
        order_date=order_date,
        order_date_parsed=order_date_parsed,
        status=status_from_subject(subject),
    )
    return CachedResult(order=order)
