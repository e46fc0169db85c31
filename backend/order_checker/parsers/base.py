"""
Walmart Extractor Base - Shared Utilities and Registry

Contains:
- Extractor registry and decorator keyed by MessageKind
- Structural queries shared by several Walmart templates
- Date parsing for the "Order date:" block
"""

import re
from datetime import datetime
from typing import Callable, Optional

from bs4 import BeautifulSoup, Tag

from order_checker.error_tracking import ExtractionError
from order_checker.models import CachedResult, MessageKind, normalize_order_id


# Type alias for extractor functions: (html_body, subject) -> CachedResult
Extractor = Callable[[Optional[str], str], CachedResult]


# Registry of message kind -> extractor function
EXTRACTORS: dict[MessageKind, Extractor] = {}


ORDER_DATE_RE = re.compile(r"Order date:\s*(.*)")
ORDER_DATE_FORMATS = ("%a, %b %d, %Y", "%A, %B %d, %Y", "%a, %B %d, %Y")


def register_extractor(*kinds: MessageKind):
    """Decorator to register an extractor for one or more message kinds."""
    def decorator(func: Extractor):
        for kind in kinds:
            EXTRACTORS[kind] = func
        return func
    return decorator


def get_extractor(kind: MessageKind) -> Optional[Extractor]:
    return EXTRACTORS.get(kind)


def make_soup(html_body: Optional[str]) -> BeautifulSoup:
    """Parse an HTML body, treating a missing body as an extraction failure."""
    if not html_body or not html_body.strip():
        raise ExtractionError("html part not found")
    return BeautifulSoup(html_body, "html.parser")


def tags_containing(soup: BeautifulSoup, name: str, text: str) -> list[Tag]:
    """All <name> elements whose text content contains `text` (jQuery :contains)."""
    return [tag for tag in soup.find_all(name) if text in tag.get_text()]


def find_order_number(soup: BeautifulSoup) -> str:
    """
    Order number from the first link whose aria-label has a space in it.

    Walmart renders the order number as e.g. <a aria-label="Order number 2000131-89912005">.

    Returns:
        Normalized order ID, or '' if the anchor is absent
    """
    anchor = soup.find("a", attrs={"aria-label": lambda value: bool(value) and " " in value})
    if anchor is None:
        return ""
    return normalize_order_id(anchor.get_text())


def require_order_number(soup: BeautifulSoup) -> str:
    order_id = find_order_number(soup)
    if not order_id:
        raise ExtractionError("order number anchor not found")
    return order_id


def parse_order_date(text: str) -> Optional[datetime]:
    """Parse 'Mon, Jan 2, 2006' style dates; None when the format doesn't match."""
    if not text:
        return None
    for fmt in ORDER_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def extract_order_date(soup: BeautifulSoup) -> tuple[str, Optional[datetime]]:
    """
    Read the "Order date: ..." block.

    Returns:
        (raw date string, parsed datetime or None). Both empty when the block is missing.
    """
    blocks = tags_containing(soup, "div", "Order date:")
    if not blocks:
        return "", None

    # Innermost div holds just the label and the value
    for block in reversed(blocks):
        match = ORDER_DATE_RE.search(block.get_text())
        if match:
            raw = match.group(1).strip()
            return raw, parse_order_date(raw)
    return "", None
