"""
Order Analytics

Pure post-processing over a finished ledger snapshot:
- Price learning from single-product orders
- Per-product spend summaries and cancellation statistics
- Live (not yet shipped or delivered) orders
- The report payload served to the UI
"""

import re
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta
from typing import Iterable, Optional

from order_checker.models import Order, OrderStatus, ShippedOrder


@dataclass
class ProductSummary:
    name: str
    image_url: str
    total_units: int = 0
    total_spent: float = 0.0
    price_per_unit: float = 0.0


@dataclass
class ProductStats:
    name: str
    image_url: str
    total_ordered: int = 0
    total_canceled: int = 0
    cancel_rate: float = 0.0


@dataclass
class EmailStats:
    total_emails_scanned: int
    total_orders: int
    total_canceled: int
    cancellation_rate: float


@dataclass
class OrderDetail:
    order_id: str
    order_date: str
    image_url: str
    name: str
    quantity: int
    total: str


@dataclass
class LiveOrderSummary:
    total_orders: int
    total_units: int
    estimated_value: float


def parse_amount(text: str) -> Optional[float]:
    """Numeric value of a currency string like '$1,234.56'."""
    if not text:
        return None
    cleaned = re.sub(r"[$,\s]", "", text)
    match = re.search(r"\d+(?:\.\d+)?", cleaned)
    if not match:
        return None
    return float(match.group(0))


def format_money(amount: float) -> str:
    return f"${amount:.2f}"


def format_order_id(order_id: str) -> str:
    """Re-insert the hyphen Walmart shows after the 7th digit."""
    if len(order_id) > 7 and "-" not in order_id:
        return f"{order_id[:7]}-{order_id[7:]}"
    return order_id


# Substring rewrites applied before punctuation is stripped, so listing
# variants of the same product group together
PRODUCT_NAME_ALIASES = (
    ("pokemon trading card games", ""),
    ("pokemon", ""),
    ("scarlett violet", "sv"),
    ("evolutions", "evo"),
    ("suprise", "surprise"),
)


def normalize_product_name(name: str) -> str:
    normalized = name.lower()
    for old, new in PRODUCT_NAME_ALIASES:
        normalized = normalized.replace(old, new)
    return re.sub(r"[^a-z0-9]+", "", normalized)


def canonicalize_item_names(orders: dict[str, Order]) -> dict[str, Order]:
    """
    Copy of `orders` where every item name is replaced by the first name seen
    with the same normalized form.
    """
    canonical: dict[str, str] = {}
    result = {}
    for order_id, order in orders.items():
        items = []
        for item in order.items:
            name = canonical.setdefault(normalize_product_name(item.name), item.name)
            items.append(replace(item, name=name))
        result[order_id] = replace(order, items=items)
    return result


def filter_non_canceled(orders: dict[str, Order]) -> list[Order]:
    return [order for order in orders.values() if order.status != OrderStatus.CANCELED]


def filter_live_orders(non_canceled: Iterable[Order], shipped: Iterable[ShippedOrder]) -> list[Order]:
    """Orders with no shipment or delivery record yet."""
    shipped_ids = {s.id for s in shipped}
    return [order for order in non_canceled if order.id not in shipped_ids]


def learn_prices(non_canceled: Iterable[Order]) -> dict[str, float]:
    """
    Unit prices learned from orders containing a single product.

    An order whose line items all share one name gives total / quantity for
    that product. The first order that teaches a price wins.
    """
    learned: dict[str, float] = {}
    for order in non_canceled:
        if not order.items:
            continue
        first_name = order.items[0].name
        if any(item.name != first_name for item in order.items[1:]):
            continue
        if first_name in learned:
            continue

        total = parse_amount(order.total)
        quantity = order.total_quantity
        if total is not None and quantity > 0:
            learned[first_name] = total / quantity
    return learned


def calculate_summaries(non_canceled: Iterable[Order], learned_prices: dict[str, float]) -> list[ProductSummary]:
    summaries: dict[str, ProductSummary] = {}
    for order in non_canceled:
        for item in order.items:
            summary = summaries.setdefault(item.name, ProductSummary(name=item.name, image_url=item.image_url))
            summary.total_units += item.quantity
            price = learned_prices.get(item.name)
            if price is not None:
                summary.price_per_unit = price
                summary.total_spent = price * summary.total_units
    return list(summaries.values())


def calculate_email_stats(orders: dict[str, Order], total_emails_scanned: int) -> EmailStats:
    total_orders = len(orders)
    total_canceled = sum(1 for order in orders.values() if order.status == OrderStatus.CANCELED)
    rate = (total_canceled / total_orders) * 100 if total_orders else 0.0
    return EmailStats(
        total_emails_scanned=total_emails_scanned,
        total_orders=total_orders,
        total_canceled=total_canceled,
        cancellation_rate=rate,
    )


def calculate_product_stats(orders: dict[str, Order]) -> list[ProductStats]:
    """Per-product ordered/canceled units, highest cancellation rate first."""
    stats: dict[str, ProductStats] = {}
    for order in orders.values():
        for item in order.items:
            stat = stats.setdefault(item.name, ProductStats(name=item.name, image_url=item.image_url))
            stat.total_ordered += item.quantity
            if order.status == OrderStatus.CANCELED:
                stat.total_canceled += item.quantity

    for stat in stats.values():
        if stat.total_ordered > 0:
            stat.cancel_rate = (stat.total_canceled / stat.total_ordered) * 100

    return sorted(stats.values(), key=lambda s: s.cancel_rate, reverse=True)


def prepare_order_details(non_canceled: Iterable[Order], learned_prices: dict[str, float]) -> list[OrderDetail]:
    """One row per line item; the order total is the fallback when no unit price is known."""
    details = []
    for order in non_canceled:
        for item in order.items:
            price = learned_prices.get(item.name)
            total = format_money(price * item.quantity) if price is not None else order.total
            details.append(
                OrderDetail(
                    order_id=format_order_id(order.id),
                    order_date=order.order_date,
                    image_url=item.image_url,
                    name=item.name,
                    quantity=item.quantity,
                    total=total,
                )
            )
    return details


def calculate_live_order_summary(live_orders: Iterable[Order], learned_prices: dict[str, float]) -> LiveOrderSummary:
    total_orders = 0
    total_units = 0
    value = 0.0
    for order in live_orders:
        total_orders += 1
        total_units += order.total_quantity

        priced = [learned_prices.get(item.name) for item in order.items]
        if order.items and all(price is not None for price in priced):
            value += sum(price * item.quantity for price, item in zip(priced, order.items))
        else:
            value += parse_amount(order.total) or 0.0
    return LiveOrderSummary(total_orders=total_orders, total_units=total_units, estimated_value=value)


def _format_day(value: datetime) -> str:
    return f"{value:%b} {value.day}, {value.year}"


def build_date_range(days: int, now: datetime = None) -> str:
    end = now or datetime.now()
    start = end - timedelta(days=days)
    return f"Email Scan Range: {_format_day(start)} to {_format_day(end)} ({days} days)"


def build_report(
    orders: dict[str, Order],
    shipped: list[ShippedOrder],
    days_scanned: int,
    total_emails_scanned: int = None,
    now: datetime = None,
) -> dict:
    """
    Everything the report view needs, as JSON-safe dicts.

    total_emails_scanned defaults to the live order count, which is what the
    report has always shown in that column.
    """
    orders = canonicalize_item_names(orders)
    non_canceled = sorted(
        filter_non_canceled(orders), key=lambda o: o.order_date_parsed or datetime.max
    )
    learned = learn_prices(non_canceled)
    live = filter_live_orders(non_canceled, shipped)

    if total_emails_scanned is None:
        total_emails_scanned = len(live)

    return {
        "orders": {order_id: order.to_dict() for order_id, order in orders.items()},
        "shipped": [s.to_dict() for s in shipped],
        "email_stats": asdict(calculate_email_stats(orders, total_emails_scanned)),
        "live_order_summary": asdict(calculate_live_order_summary(live, learned)),
        "live_orders": [asdict(d) for d in prepare_order_details(live, learned)],
        "product_cancel": [asdict(s) for s in calculate_product_stats(orders)],
        "order_lines": [asdict(d) for d in prepare_order_details(non_canceled, learned)],
        "product_spend": [asdict(s) for s in calculate_summaries(non_canceled, learned)],
        "learned_prices": learned,
        "date_range": build_date_range(days_scanned, now=now),
    }
