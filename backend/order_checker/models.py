"""
Order Data Model

Plain dataclasses for the records built during a scan:
- Item / Order: one logical Walmart purchase
- ShippedOrder: one tracking event (or a synthetic delivered marker)
- CachedResult: what one message contributed, as stored in the result cache

All records serialize to JSON-safe dicts so cached results round-trip exactly.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


DELIVERED_TRACKING_NUMBER = "DELIVERED"
DELIVERED_CARRIER = "Delivered"


class OrderStatus(str, Enum):
    """Lifecycle status of an order"""
    CONFIRMED = "confirmed"
    PRE_ORDERED = "pre-ordered"
    CANCELED = "canceled"


class MessageKind(str, Enum):
    """Walmart message kinds recognised by the subject classifier"""
    CANCELED = "canceled"
    PAYMENT_FAILURE_CANCELED = "payment_failure_canceled"
    SHIPPED = "shipped"
    ARRIVED = "arrived"
    ORDER_CONFIRMATION = "order_confirmation"


def normalize_order_id(raw: str) -> str:
    """Canonical order ID: whitespace, leading '#' and hyphens removed."""
    return raw.strip().lstrip("#").replace("-", "")


@dataclass
class Item:
    name: str
    quantity: int = 1
    image_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "quantity": self.quantity, "image_url": self.image_url}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Item":
        return cls(
            name=data.get("name", ""),
            quantity=int(data.get("quantity", 1)),
            image_url=data.get("image_url", ""),
        )


@dataclass
class Order:
    """A Walmart order aggregated from one or more messages."""
    id: str
    items: list[Item] = field(default_factory=list)
    total: str = ""
    order_date: str = ""
    order_date_parsed: Optional[datetime] = None
    status: OrderStatus = OrderStatus.CONFIRMED

    @property
    def is_canceled(self) -> bool:
        return self.status == OrderStatus.CANCELED

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "order_date": self.order_date,
            "order_date_parsed": (
                self.order_date_parsed.isoformat() if self.order_date_parsed else None
            ),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        parsed = data.get("order_date_parsed")
        return cls(
            id=data["id"],
            items=[Item.from_dict(i) for i in data.get("items") or []],
            total=data.get("total", ""),
            order_date=data.get("order_date", ""),
            order_date_parsed=datetime.fromisoformat(parsed) if parsed else None,
            status=OrderStatus(data.get("status", OrderStatus.CONFIRMED.value)),
        )


@dataclass
class ShippedOrder:
    """One tracking event for an order."""
    id: str
    tracking_number: str
    carrier: str = ""
    estimated_arrival: str = ""

    @property
    def is_delivered_marker(self) -> bool:
        return self.tracking_number == DELIVERED_TRACKING_NUMBER

    @property
    def dedup_key(self) -> str:
        # Delivered markers share a sentinel tracking number, so they dedup by order
        return self.id if self.is_delivered_marker else self.tracking_number

    @classmethod
    def delivered(cls, order_id: str) -> "ShippedOrder":
        return cls(
            id=order_id,
            tracking_number=DELIVERED_TRACKING_NUMBER,
            carrier=DELIVERED_CARRIER,
            estimated_arrival="",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "estimated_arrival": self.estimated_arrival,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShippedOrder":
        return cls(
            id=data.get("id", ""),
            tracking_number=data.get("tracking_number", ""),
            carrier=data.get("carrier", ""),
            estimated_arrival=data.get("estimated_arrival", ""),
        )


@dataclass
class CachedResult:
    """What a single message contributed to the ledger.

    An empty result (no order, no shipments) is still cached so the message
    is not fetched again within the TTL.
    """
    order: Optional[Order] = None
    shipped: list[ShippedOrder] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.order is None and not self.shipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.order.to_dict() if self.order else None,
            "shipped": [s.to_dict() for s in self.shipped],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CachedResult":
        order = data.get("order")
        return cls(
            order=Order.from_dict(order) if order else None,
            shipped=[ShippedOrder.from_dict(s) for s in data.get("shipped") or []],
        )
