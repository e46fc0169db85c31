"""
Cancellation Extractors

Two templates cancel an order:
- "Canceled: delivery from order #2000131-89912005" carries the order number in the subject
- Payment-failure notices ("... was canceled") carry it only in the HTML body
"""

from typing import Optional

from order_checker.error_tracking import ExtractionError
from order_checker.models import CachedResult, MessageKind, Order, OrderStatus, normalize_order_id

from .base import make_soup, register_extractor, require_order_number


def order_id_from_subject(subject: str) -> str:
    """Order number is whatever follows the first '#' in the subject."""
    parts = subject.split("#")
    if len(parts) <= 1:
        return ""
    tokens = parts[1].split()
    return normalize_order_id(tokens[0]) if tokens else ""


@register_extractor(MessageKind.CANCELED)
def extract_canceled(html_body: Optional[str], subject: str) -> CachedResult:
    order_id = order_id_from_subject(subject)
    if not order_id:
        raise ExtractionError("order number missing from cancellation subject")
    return CachedResult(order=Order(id=order_id, status=OrderStatus.CANCELED))


@register_extractor(MessageKind.PAYMENT_FAILURE_CANCELED)
def extract_payment_failure_canceled(html_body: Optional[str], subject: str) -> CachedResult:
    soup = make_soup(html_body)
    order_id = require_order_number(soup)
    return CachedResult(order=Order(id=order_id, status=OrderStatus.CANCELED))
