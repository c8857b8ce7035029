"""
Purpose: User-facing wording and grouping for order statuses, and the collection-center dashboard counts.
Rule: pure functions over Order / OrderStatus. No I/O.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timezone
from enum import Enum
from typing import Dict, Iterable, Optional

from orders.models import TRACKED_STATUSES, Order, OrderStatus

STATUS_MESSAGES: Dict[OrderStatus, str] = {
    OrderStatus.CREATED: "Delivery created",
    OrderStatus.PENDING_RIDER_ASSIGNMENT: "Finding nearby rider...",
    OrderStatus.ASSIGNED: "Rider assigned! Preparing for pickup",
    OrderStatus.PICKUP_STARTED: "Rider is on the way to collect samples",
    OrderStatus.PICKED_UP: "Samples collected! En route to hospital",
    OrderStatus.DELIVERY_STARTED: "Rider is delivering to hospital",
    OrderStatus.DELIVERED: "Delivery completed successfully!",
    OrderStatus.CANCELLED: "Delivery has been cancelled",
}

ACTIVE_STATUSES = frozenset({OrderStatus.PENDING_RIDER_ASSIGNMENT}) | TRACKED_STATUSES


class DeliveryStage(str, Enum):
    AWAITING_RIDERS = "awaiting_riders"
    BEING_DELIVERED = "being_delivered"


def status_message(status: OrderStatus) -> str:
    return STATUS_MESSAGES.get(status, "Status unknown")


def is_active(status: OrderStatus) -> bool:
    return status in ACTIVE_STATUSES


def delivery_stage(status: OrderStatus) -> Optional[DeliveryStage]:
    """
    Groups active orders for the active-deliveries list. Finished orders have no stage.
    """
    if status in (OrderStatus.PENDING_RIDER_ASSIGNMENT, OrderStatus.ASSIGNED, OrderStatus.PICKUP_STARTED):
        return DeliveryStage.AWAITING_RIDERS
    if status in (OrderStatus.PICKED_UP, OrderStatus.DELIVERY_STARTED):
        return DeliveryStage.BEING_DELIVERED
    return None


@dataclass(frozen=True)
class DashboardSummary:
    total_orders_today: int
    in_transit_now: int
    in_transit_with_rider: int
    in_transit_without_rider: int
    completed_today: int
    partner_hospitals: int
    completion_rate: int


def _same_day(order: Order, field_name: str, today: date) -> bool:
    at = order.timestamps.get(field_name)
    if at is None:
        return False
    if at.tzinfo is not None:
        at = at.astimezone(timezone.utc)
    return at.date() == today


def summarize_orders(orders: Iterable[Order], today: date) -> DashboardSummary:
    """
    Dashboard counts for one collection center.
    `today` is a UTC date; completion_rate is 100 when nothing was created today.
    """
    orders = list(orders)
    todays = [order for order in orders if _same_day(order, "created_at", today)]
    in_transit = [order for order in orders if order.status in TRACKED_STATUSES]
    completed = [
        order for order in orders
        if order.status == OrderStatus.DELIVERED and _same_day(order, "delivered_at", today)
    ]
    hospitals = {order.hospital_id for order in orders if order.hospital_id}

    with_rider = sum(1 for order in in_transit if order.rider is not None)
    rate = round(len(completed) / len(todays) * 100) if todays else 100

    return DashboardSummary(
        total_orders_today=len(todays),
        in_transit_now=len(in_transit),
        in_transit_with_rider=with_rider,
        in_transit_without_rider=len(in_transit) - with_rider,
        completed_today=len(completed),
        partner_hospitals=len(hospitals),
        completion_rate=rate,
    )
