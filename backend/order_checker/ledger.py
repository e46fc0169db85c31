"""
Order Ledger

The keyed container that scan workers merge their results into.

Merge rules for two records about the same order:
- items: adopted only while the ledger entry has none (first writer wins)
- status: adopted unless the ledger entry is already canceled (cancellation is sticky)
- total / order date: filled only while empty (first known value wins)

Shipments are deduplicated by tracking number, or by order ID for the
synthetic delivered markers.
"""

import copy
import threading
from dataclasses import replace
from typing import Iterable, Optional

from order_checker.models import CachedResult, Order, OrderStatus, ShippedOrder


def merge_order(existing: Optional[Order], delta: Order) -> Order:
    """
    Merge `delta` into `existing` without mutating either.

    Args:
        existing: Current ledger entry, or None if the order is new
        delta: Order data extracted from one message

    Returns:
        The merged Order
    """
    if existing is None:
        return copy.deepcopy(delta)

    merged = replace(existing, items=list(existing.items))

    if not merged.items and delta.items:
        merged.items = list(delta.items)

    if merged.status != OrderStatus.CANCELED:
        merged.status = delta.status

    if not merged.total and delta.total:
        merged.total = delta.total

    if not merged.order_date and delta.order_date:
        merged.order_date = delta.order_date
        merged.order_date_parsed = delta.order_date_parsed

    return merged


class OrderLedger:
    """Orders and shipments for one scan, safe for concurrent workers.

    The lock is held only for the merge itself, never around network I/O.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._orders: dict[str, Order] = {}
        self._shipped: list[ShippedOrder] = []
        self._shipped_keys: set[str] = set()

    def merge(self, delta: Order) -> Order:
        """Merge one order delta and return the resulting entry (a copy)."""
        if not delta.id:
            raise ValueError("Cannot merge an order without an ID")
        with self._lock:
            merged = merge_order(self._orders.get(delta.id), delta)
            self._orders[delta.id] = merged
            return copy.deepcopy(merged)

    def mark_canceled(self, order_id: str) -> Order:
        return self.merge(Order(id=order_id, status=OrderStatus.CANCELED))

    def add_shipments(self, shipments: Iterable[ShippedOrder]) -> int:
        """Append shipments not seen before. Returns how many were added."""
        added = 0
        with self._lock:
            for shipment in shipments:
                key = shipment.dedup_key
                if not key or key in self._shipped_keys:
                    continue
                self._shipped_keys.add(key)
                self._shipped.append(copy.deepcopy(shipment))
                added += 1
        return added

    def apply(self, result: CachedResult) -> None:
        """Fold one message's result into the ledger."""
        if result.order is not None and result.order.id:
            self.merge(result.order)
        if result.shipped:
            self.add_shipments(result.shipped)

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return copy.deepcopy(order) if order else None

    def snapshot(self) -> tuple[dict[str, Order], list[ShippedOrder]]:
        """Deep copies of the current orders and shipments."""
        with self._lock:
            return copy.deepcopy(self._orders), copy.deepcopy(self._shipped)

    def __len__(self) -> int:
        with self._lock:
            return len(self._orders)


def merge_ledgers(dest: OrderLedger, src: OrderLedger) -> OrderLedger:
    """Combine the results of several mailboxes into `dest`."""
    orders, shipped = src.snapshot()
    for order in orders.values():
        dest.merge(order)
    dest.add_shipments(shipped)
    return dest
