"""
Walmart Extractors - One Strategy Per Message Kind

This package contains the HTML extractors for each Walmart template:
- confirmation.py: order and pre-order confirmations
- cancellation.py: subject-based and payment-failure cancellations
- shipment.py: shipped and delivered/arrived notices

Usage:
    from order_checker.parsers import extract

    result = extract(MessageKind.SHIPPED, html_body, subject)
"""

from typing import Optional

from order_checker.models import CachedResult, MessageKind

# Import registry and utilities from base
from .base import EXTRACTORS, get_extractor, register_extractor

# Import all template modules to trigger @register_extractor decorators
from . import cancellation
from . import confirmation
from . import shipment


def extract(kind: MessageKind, html_body: Optional[str], subject: str) -> CachedResult:
    """
    Run the extractor registered for `kind`.

    Raises:
        ExtractionError: if the message lacks the order number or HTML body
        KeyError: if no extractor is registered for `kind`
    """
    extractor = get_extractor(kind)
    if extractor is None:
        raise KeyError(f"No extractor registered for {kind.value}")
    return extractor(html_body, subject)


__all__ = [
    'EXTRACTORS',
    'extract',
    'get_extractor',
    'register_extractor',
]
