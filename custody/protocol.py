"""
Purpose: Ordering rules for QR custody scans (pickup, then delivery).
What it does:
- record_scan: validates and appends a scan performed through this client,
  then drives the matching status transition when the order is ready for it.
- merge_custody_events: folds scans reported by the order service into the
  order, dropping duplicates and anything that breaks the sequence rules.
- resolve_deferred_transitions: retries transitions for scans that arrived
  before the status caught up (scan clock vs. status propagation skew).

Rules:
- at most one successful scan per type;
- a delivery scan needs a successful pickup scan recorded strictly before it;
- nothing can be scanned on a cancelled order.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Iterable, List, Optional

from orders.models import CustodyScanEvent, Order, OrderStatus, ScanType
from orders.state_machines.order_state import (
    InvalidTransition,
    TransitionEvent,
    advance_status,
    status_rank,
)

logger = logging.getLogger(__name__)


class CustodyProtocolError(Exception):
    """Raised when a scan violates the custody ordering rules."""

    def __init__(self, order_id: str, scan_type: ScanType, message: str):
        self.order_id = order_id
        self.scan_type = scan_type
        super().__init__(message)


class OutOfSequence(CustodyProtocolError):
    """Delivery scan without a prior successful pickup scan."""
    pass


class AlreadyScanned(CustodyProtocolError):
    """A successful scan of this type already exists for the order."""
    pass


# Status each successful scan moves the order to.
SCAN_TARGETS: Dict[ScanType, OrderStatus] = {
    ScanType.PICKUP: OrderStatus.PICKED_UP,
    ScanType.DELIVERY: OrderStatus.DELIVERED,
}

# Statuses from which a scan may drive its transition right away.
SCAN_READY_FROM: Dict[ScanType, FrozenSet[OrderStatus]] = {
    ScanType.PICKUP: frozenset({OrderStatus.ASSIGNED, OrderStatus.PICKUP_STARTED}),
    ScanType.DELIVERY: frozenset({OrderStatus.PICKED_UP, OrderStatus.DELIVERY_STARTED}),
}


@dataclass(frozen=True)
class ScanResult:
    event: CustodyScanEvent
    transitions: List[TransitionEvent] = field(default_factory=list)
    deferred: bool = False


def _as_utc(at: datetime) -> datetime:
    # naive scan times from the device clock are read as UTC, like reported ones
    if at.tzinfo is None:
        return at.replace(tzinfo=timezone.utc)
    return at


def check_scan(order: Order, scan_type: ScanType, at: datetime) -> None:
    """
    Raises if a successful `scan_type` scan at `at` would break the custody rules.
    """
    at = _as_utc(at)
    if order.status == OrderStatus.CANCELLED:
        raise InvalidTransition(
            order.id,
            order.status,
            SCAN_TARGETS[scan_type],
            message=f"Order {order.id} is cancelled; {scan_type.value} scan rejected",
        )

    if order.successful_scans(scan_type):
        raise AlreadyScanned(order.id, scan_type, f"Order {order.id} already has a successful {scan_type.value} scan")

    if scan_type == ScanType.DELIVERY:
        prior_pickups = [event for event in order.successful_scans(ScanType.PICKUP) if _as_utc(event.recorded_at) < at]
        if not prior_pickups:
            raise OutOfSequence(
                order.id, scan_type, f"Order {order.id}: delivery scan at {at.isoformat()} has no prior pickup scan"
            )


def _append(order: Order, event: CustodyScanEvent) -> None:
    order.custody_events.append(event)
    order.custody_events.sort(key=lambda item: _as_utc(item.recorded_at))


def _already_reached(order: Order, target: OrderStatus) -> bool:
    return order.status != OrderStatus.CANCELLED and status_rank(order.status) >= status_rank(target)


def _drive_transition(order: Order, scan_type: ScanType, at: datetime) -> Optional[List[TransitionEvent]]:
    """
    Returns the transitions made, [] if the order is already there,
    or None if the status is not ready yet and the move must wait.
    """
    target = SCAN_TARGETS[scan_type]
    if _already_reached(order, target):
        return []
    if order.status not in SCAN_READY_FROM[scan_type]:
        return None
    return advance_status(order, target, at)


def record_scan(
        order: Order,
        scan_type: ScanType,
        at: datetime,
        performed_by: Optional[str] = None,
) -> ScanResult:
    at = _as_utc(at)
    check_scan(order, scan_type, at)

    event = CustodyScanEvent(
        scan_type=scan_type,
        order_id=order.id,
        recorded_at=at,
        performed_by=performed_by,
        success=True,
    )
    _append(order, event)
    logger.info("Order %s: %s scan recorded at %s", order.id, scan_type.value, at.isoformat())

    transitions = _drive_transition(order, scan_type, at)
    if transitions is None:
        logger.info(
            "Order %s: %s transition deferred, status is %s", order.id, scan_type.value, order.status.value
        )
        return ScanResult(event=event, deferred=True)
    return ScanResult(event=event, transitions=transitions)


def merge_custody_events(order: Order, events: Iterable[CustodyScanEvent]) -> List[CustodyScanEvent]:
    """
    Appends reported scans that are new and valid. Returns the ones accepted.
    Never raises for protocol violations: they are logged and skipped.
    A successful scan of a type the order already has is the service echoing
    a scan made here (with its own clock and rider id) and is dropped quietly.
    """
    accepted: List[CustodyScanEvent] = []
    known = {event.identity() for event in order.custody_events}
    normalized = [
        event if event.recorded_at.tzinfo is not None else replace(event, recorded_at=_as_utc(event.recorded_at))
        for event in events
    ]

    for event in sorted(normalized, key=lambda item: item.recorded_at):
        if event.order_id != order.id:
            logger.warning("Scan for order %s delivered with order %s, skipped", event.order_id, order.id)
            continue
        if event.identity() in known:
            continue
        if event.success and order.successful_scans(event.scan_type):
            logger.debug("Order %s: %s scan already on record, skipped", order.id, event.scan_type.value)
            continue

        if event.success:
            try:
                check_scan(order, event.scan_type, event.recorded_at)
            except (CustodyProtocolError, InvalidTransition) as exc:
                logger.warning("Rejected reported scan for order %s: %s", order.id, exc)
                continue

        _append(order, event)
        known.add(event.identity())
        accepted.append(event)

    return accepted


def resolve_deferred_transitions(order: Order) -> List[TransitionEvent]:
    """
    Applies scan-driven transitions that were waiting on the status.
    Pickup is resolved before delivery so both can land in one pass.
    """
    if order.status == OrderStatus.CANCELLED:
        return []

    transitions: List[TransitionEvent] = []
    for scan_type in (ScanType.PICKUP, ScanType.DELIVERY):
        scans = order.successful_scans(scan_type)
        if not scans:
            continue
        moved = _drive_transition(order, scan_type, scans[0].recorded_at)
        if moved:
            transitions.extend(moved)
    return transitions
