from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from orders.models import LIFECYCLE, Order, OrderStatus

logger = logging.getLogger(__name__)


class OrderStateException(Exception):
    """Base class for order lifecycle errors."""
    pass


class InvalidTransition(OrderStateException):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, order_id: str, current: OrderStatus, requested: OrderStatus, message: Optional[str] = None):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(message or f"Cannot transition order {order_id} from {current.value} to {requested.value}")


@dataclass(frozen=True)
class TransitionEvent:
    """
    Emitted on every successful status change. The timeline and the custody
    protocol consume these.
    """
    order_id: str
    from_status: OrderStatus
    to_status: OrderStatus
    at: Optional[datetime]


# Only one forward edge out of each lifecycle state.
FORWARD_EDGES: Dict[OrderStatus, OrderStatus] = {
    current: following for current, following in zip(LIFECYCLE, LIFECYCLE[1:])
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def status_rank(status: OrderStatus) -> int:
    """
    Position on the forward lifecycle. CANCELLED has no rank (-1).
    """
    if status == OrderStatus.CANCELLED:
        return -1
    return LIFECYCLE.index(status)


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    if new == current:
        return True
    if new == OrderStatus.CANCELLED:
        return not is_terminal(current)
    return FORWARD_EDGES.get(current) == new


def transition_path(current: OrderStatus, target: OrderStatus) -> List[OrderStatus]:
    """
    The chain of single forward edges leading from `current` to `target`,
    excluding `current` itself. Empty when target is behind, equal, or unreachable.
    """
    if target == OrderStatus.CANCELLED:
        return [] if is_terminal(current) else [OrderStatus.CANCELLED]
    if current == OrderStatus.CANCELLED:
        return []

    start, end = status_rank(current), status_rank(target)
    if end <= start:
        return []
    return list(LIFECYCLE[start + 1:end + 1])


def apply_status(order: Order, new_status: OrderStatus, at: Optional[datetime]) -> Optional[TransitionEvent]:
    """
    Moves `order` along one legal edge.

    - Same status: idempotent no-op, returns None.
    - Illegal edge: raises InvalidTransition and leaves the order untouched.
    - Legal edge: sets the status and stamps the step with `at` unless it is
      already stamped (an older instant re-delivered out of order never wins).
    """
    if new_status == order.status:
        return None

    if not can_transition(order.status, new_status):
        logger.warning(
            "Rejected transition for order %s: %s -> %s", order.id, order.status.value, new_status.value
        )
        raise InvalidTransition(order.id, order.status, new_status)

    previous = order.status
    order.status = new_status
    order.stamp(new_status, at)
    logger.info("Order %s: %s -> %s", order.id, previous.value, new_status.value)
    return TransitionEvent(order_id=order.id, from_status=previous, to_status=new_status, at=at)


def advance_status(
    order: Order,
    target: OrderStatus,
    at: Optional[datetime],
    stamps: Optional[Dict[OrderStatus, datetime]] = None,
) -> List[TransitionEvent]:
    """
    Walks every forward edge between the current status and `target`.

    The backend reports the full current status on each poll, so a rider can
    be several steps further along than the last snapshot we saw.
    Intermediate steps are only stamped with instants we actually know (`stamps`);
    the target falls back to `at`.

    Raises InvalidTransition if target is neither ahead of the current status nor equal to it.
    """
    stamps = stamps or {}
    if target == order.status:
        order.stamp(target, stamps.get(target))
        return []

    path = transition_path(order.status, target)
    if not path:
        logger.warning(
            "Rejected transition for order %s: %s -> %s", order.id, order.status.value, target.value
        )
        raise InvalidTransition(order.id, order.status, target)

    events: List[TransitionEvent] = []
    for step in path:
        step_at = stamps.get(step)
        if step == target and step_at is None:
            step_at = at
        event = apply_status(order, step, step_at)
        if event:
            events.append(event)
    return events


def cancel_order(order: Order, at: datetime) -> Optional[TransitionEvent]:
    """
    Absorbing move to CANCELLED. Delivered orders cannot be cancelled.
    """
    if order.status == OrderStatus.DELIVERED:
        raise InvalidTransition(
            order.id,
            order.status,
            OrderStatus.CANCELLED,
            message=f"Order {order.id} cannot be cancelled in its current state ({order.status.value})",
        )
    return apply_status(order, OrderStatus.CANCELLED, at)
