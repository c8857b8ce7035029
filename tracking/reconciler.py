"""
Purpose: Fold one OrderSnapshot into the Order aggregate.

Order of operations matters:
1. status (forward only; stale or conflicting statuses are ignored),
2. backfill of timestamps the service now knows for steps already reached,
   then the status history (new entries appended, their times fill any gaps),
3. rider and rider location,
4. reported custody scans,
5. scan-driven transitions that were waiting on the status.

Applying the same snapshot twice changes nothing the second time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from custody.protocol import merge_custody_events, resolve_deferred_transitions
from gateway.snapshots import OrderSnapshot, SnapshotFormatError
from orders.models import TRACKED_STATUSES, CustodyScanEvent, Order, OrderStatus, StatusChange
from orders.state_machines.order_state import (
    InvalidTransition,
    TransitionEvent,
    advance_status,
    apply_status,
    is_terminal,
    status_rank,
)

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    transitions: List[TransitionEvent] = field(default_factory=list)
    accepted_scans: List[CustodyScanEvent] = field(default_factory=list)
    stamped: int = 0
    history_added: List[StatusChange] = field(default_factory=list)
    rider_updated: bool = False
    location_updated: bool = False
    details_updated: bool = False
    ignored_status: Optional[OrderStatus] = None

    @property
    def changed(self) -> bool:
        return bool(
            self.transitions
            or self.accepted_scans
            or self.stamped
            or self.history_added
            or self.rider_updated
            or self.location_updated
            or self.details_updated
        )


def order_from_snapshot(snapshot: OrderSnapshot) -> Order:
    """
    A fresh aggregate in CREATED, ready to have the snapshot applied.
    """
    if snapshot.sample is None or snapshot.pickup is None or snapshot.delivery is None:
        raise SnapshotFormatError(f"Order {snapshot.order_id} is missing sample or pickup/delivery locations")
    return Order(
        id=snapshot.order_id,
        sample=snapshot.sample,
        pickup=snapshot.pickup,
        delivery=snapshot.delivery,
        order_number=snapshot.order_number,
        hospital_id=snapshot.hospital_id,
        hospital_name=snapshot.hospital_name,
        special_instructions=snapshot.special_instructions,
        estimated_delivery_time=snapshot.estimated_delivery_time,
    )


def _known_stamps(snapshot: OrderSnapshot) -> Dict[OrderStatus, datetime]:
    """
    Transition times the service told us about. The timing fields win over history entries.
    """
    stamps = {change.status: change.changed_at for change in snapshot.status_history}
    stamps.update(snapshot.timestamps)
    return stamps


def _apply_reported_status(order: Order, snapshot: OrderSnapshot, result: ReconcileResult) -> None:
    reported = snapshot.status
    if reported == order.status:
        return

    if is_terminal(order.status):
        logger.warning(
            "Order %s is %s; ignoring reported status %s", order.id, order.status.value, reported.value
        )
        result.ignored_status = reported
        return

    try:
        if reported == OrderStatus.CANCELLED:
            at = _known_stamps(snapshot).get(OrderStatus.CANCELLED) or snapshot.fetched_at
            event = apply_status(order, OrderStatus.CANCELLED, at)
            if event:
                result.transitions.append(event)
            return

        if status_rank(reported) < status_rank(order.status):
            # older response overtaken by a newer one
            logger.debug(
                "Order %s: stale status %s behind %s", order.id, reported.value, order.status.value
            )
            result.ignored_status = reported
            return

        result.transitions.extend(advance_status(order, reported, snapshot.fetched_at, stamps=_known_stamps(snapshot)))
    except InvalidTransition as exc:
        logger.warning("Order %s: reported status not applied: %s", order.id, exc)
        result.ignored_status = reported


def _step_reached(order: Order, status: OrderStatus) -> bool:
    if order.status == OrderStatus.CANCELLED:
        return status != OrderStatus.DELIVERED
    if status == OrderStatus.CANCELLED:
        return False
    return status_rank(status) <= status_rank(order.status)


def _backfill_timestamps(order: Order, snapshot: OrderSnapshot, result: ReconcileResult) -> None:
    for status, at in snapshot.timestamps.items():
        if _step_reached(order, status) and order.stamp(status, at):
            result.stamped += 1


def _merge_status_history(order: Order, snapshot: OrderSnapshot, result: ReconcileResult) -> None:
    known = {change.identity() for change in order.status_history}
    for change in snapshot.status_history:
        if change.identity() in known:
            continue
        known.add(change.identity())
        order.status_history.append(change)
        result.history_added.append(change)
        if _step_reached(order, change.status) and order.stamp(change.status, change.changed_at):
            result.stamped += 1
    if result.history_added:
        order.status_history.sort(key=lambda change: change.changed_at)


def _rider_allowed(order: Order) -> bool:
    if order.status == OrderStatus.CANCELLED:
        return order.timestamp_for(OrderStatus.ASSIGNED) is not None or order.rider is not None
    return status_rank(order.status) >= status_rank(OrderStatus.ASSIGNED)


def _apply_rider(order: Order, snapshot: OrderSnapshot, result: ReconcileResult) -> None:
    if snapshot.rider is not None and snapshot.rider != order.rider and _rider_allowed(order):
        order.rider = snapshot.rider
        result.rider_updated = True

    location = snapshot.rider_location
    if location is None or order.status not in TRACKED_STATUSES:
        return
    if order.rider_location is not None and location.recorded_at <= order.rider_location.recorded_at:
        return
    order.rider_location = location
    result.location_updated = True


def _apply_details(order: Order, snapshot: OrderSnapshot, result: ReconcileResult) -> None:
    for name in ("order_number", "hospital_id", "hospital_name", "special_instructions", "estimated_delivery_time"):
        value = getattr(snapshot, name)
        if value is not None and value != getattr(order, name):
            setattr(order, name, value)
            result.details_updated = True


def apply_snapshot(order: Order, snapshot: OrderSnapshot) -> ReconcileResult:
    if snapshot.order_id != order.id:
        raise SnapshotFormatError(f"Snapshot for order {snapshot.order_id} applied to order {order.id}")

    result = ReconcileResult()
    _apply_reported_status(order, snapshot, result)
    _backfill_timestamps(order, snapshot, result)
    _merge_status_history(order, snapshot, result)
    _apply_rider(order, snapshot, result)
    _apply_details(order, snapshot, result)
    result.accepted_scans = merge_custody_events(order, snapshot.custody_events)
    result.transitions.extend(resolve_deferred_transitions(order))

    if result.changed:
        logger.debug("Order %s reconciled: %s", order.id, result)
    return result
