"""Tests for Walmart subject classification."""

import pytest

from order_checker.classifier import classify_subject, status_from_subject
from order_checker.models import MessageKind, OrderStatus


@pytest.mark.parametrize(
    "subject,expected",
    [
        ("Canceled: delivery from order #2000131-89912005", MessageKind.CANCELED),
        ("Your order was canceled \U0001F534", MessageKind.PAYMENT_FAILURE_CANCELED),
        ("Your order was canceled ðŸ”´", MessageKind.PAYMENT_FAILURE_CANCELED),
        ("Shipped: 2 items", MessageKind.SHIPPED),
        ("Arrived: Great Value Widget", MessageKind.ARRIVED),
        ("Delivered: 1 item", MessageKind.ARRIVED),
        ("Thanks for your order", MessageKind.ORDER_CONFIRMATION),
        ("Thanks for your preorder", MessageKind.ORDER_CONFIRMATION),
    ],
)
def test_classify_subject(subject, expected):
    assert classify_subject(subject) == expected


def test_cancellation_takes_precedence_over_shipped():
    """Overlapping keywords resolve in fixed order."""
    assert classify_subject("Canceled: Shipped: order #123") == MessageKind.CANCELED


def test_payment_failure_marker_must_end_subject():
    assert classify_subject("Your order was canceled \U0001F534 today") == MessageKind.ORDER_CONFIRMATION


def test_payment_failure_tolerates_trailing_whitespace():
    assert classify_subject("Your order was canceled \U0001F534  ") == MessageKind.PAYMENT_FAILURE_CANCELED


def test_arrived_only_matches_as_prefix():
    assert classify_subject("Re: Arrived: widget") == MessageKind.ORDER_CONFIRMATION


def test_empty_subject_is_confirmation():
    assert classify_subject("") == MessageKind.ORDER_CONFIRMATION
    assert classify_subject(None) == MessageKind.ORDER_CONFIRMATION


def test_status_from_subject():
    assert status_from_subject("Thanks for your preorder") == OrderStatus.PRE_ORDERED
    assert status_from_subject("Thanks for your order") == OrderStatus.CONFIRMED
