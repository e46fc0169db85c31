"""
Walmart Message Classifier

Maps a message subject line to a MessageKind. Walmart subjects can contain
overlapping keywords, so the checks run in a fixed order and the first match
wins:

1. "Canceled:" anywhere                      -> CANCELED
2. ends with the payment-failure marker      -> PAYMENT_FAILURE_CANCELED
3. "Shipped:" anywhere                       -> SHIPPED
4. starts with "Arrived:" or "Delivered:"    -> ARRIVED
5. anything else                             -> ORDER_CONFIRMATION
"""

from order_checker.models import MessageKind, OrderStatus

# The template ends with a red circle emoji. Some clients hand us the header
# after a latin-1 round trip, so accept the mojibake form as well.
PAYMENT_FAILURE_SUFFIXES = (
    "was canceled \U0001F534",
    "was canceled ð\u009f\u0094´",
    "was canceled ðŸ”´",
)

ARRIVED_PREFIXES = ("Arrived:", "Delivered:")


def classify_subject(subject: str) -> MessageKind:
    """
    Classify a Walmart message by its subject line.

    Args:
        subject: Raw subject header value

    Returns:
        MessageKind for routing to the matching extractor
    """
    subject = subject or ""

    if "Canceled:" in subject:
        return MessageKind.CANCELED
    if subject.rstrip().endswith(PAYMENT_FAILURE_SUFFIXES):
        return MessageKind.PAYMENT_FAILURE_CANCELED
    if "Shipped:" in subject:
        return MessageKind.SHIPPED
    if subject.startswith(ARRIVED_PREFIXES):
        return MessageKind.ARRIVED
    return MessageKind.ORDER_CONFIRMATION


def status_from_subject(subject: str) -> OrderStatus:
    """Confirmation subjects mention 'preorder' for pre-orders."""
    if "preorder" in (subject or ""):
        return OrderStatus.PRE_ORDERED
    return OrderStatus.CONFIRMED
