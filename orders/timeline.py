"""
Purpose: Turn an Order into the five-step delivery timeline shown to the collection center.

Timestamps are ground truth. A step is:
- completed: its timestamp is set, or it was evidently passed (a later step is
  stamped, or the order status is at/after it) even though we never got its time;
- current: the first step that is not completed, provided its predecessor is;
- pending: everything else. A cancelled order has no current step.

derive_timeline never raises.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Tuple

from orders.models import Order, OrderStatus
from orders.state_machines.order_state import status_rank

PENDING_LABEL = "Pending"

TimeFormatter = Callable[[datetime], str]


class StepState(str, Enum):
    COMPLETED = "completed"
    CURRENT = "current"
    PENDING = "pending"


@dataclass(frozen=True)
class TimelineStep:
    step: str
    subtitle: str
    time_label: str
    at: Optional[datetime]
    state: StepState


# (title, status whose timestamp marks the step)
TIMELINE_STEPS: Tuple[Tuple[str, OrderStatus], ...] = (
    ("Created", OrderStatus.CREATED),
    ("Rider Assignment", OrderStatus.ASSIGNED),
    ("En Route to Pickup", OrderStatus.PICKUP_STARTED),
    ("Samples Collected", OrderStatus.PICKED_UP),
    ("Delivered", OrderStatus.DELIVERED),
)


def format_time(at: datetime) -> str:
    """h:mm AM/PM, e.g. '9:05 AM'."""
    return at.strftime("%I:%M %p").lstrip("0")


def _time_label(at: Optional[datetime], formatter: TimeFormatter) -> str:
    if at is None:
        return PENDING_LABEL
    try:
        return formatter(at)
    except (ValueError, TypeError, OverflowError, OSError):
        return PENDING_LABEL


def _subtitle(order: Order, status: OrderStatus, completed: bool) -> str:
    if status == OrderStatus.CREATED:
        sample_type = getattr(order.sample.sample_type, "value", order.sample.sample_type)
        return f"Delivery created with {order.sample.quantity} {sample_type} sample(s)"
    if status == OrderStatus.ASSIGNED:
        return "Rider assigned successfully" if order.rider or completed else "Waiting for rider assignment"
    if status == OrderStatus.PICKUP_STARTED:
        return "Rider traveling to collection center"
    if status == OrderStatus.PICKED_UP:
        return "QR code scanned and samples picked up"
    return "Successfully delivered to hospital lab" if completed else "En route to hospital"


def derive_timeline(order: Order, formatter: Optional[TimeFormatter] = None) -> List[TimelineStep]:
    formatter = formatter or format_time
    stamped = [order.timestamp_for(status) for _, status in TIMELINE_STEPS]
    reached_rank = status_rank(order.status)

    completed: List[bool] = []
    for index, (_, status) in enumerate(TIMELINE_STEPS):
        if stamped[index] is not None:
            completed.append(True)
            continue
        later_stamped = any(at is not None for at in stamped[index + 1:])
        passed = reached_rank >= 0 and reached_rank >= status_rank(status)
        completed.append(later_stamped or passed)

    steps: List[TimelineStep] = []
    current_taken = order.status == OrderStatus.CANCELLED
    for index, (title, status) in enumerate(TIMELINE_STEPS):
        if completed[index]:
            state = StepState.COMPLETED
        elif not current_taken and (index == 0 or completed[index - 1]):
            state = StepState.CURRENT
            current_taken = True
        else:
            state = StepState.PENDING

        steps.append(
            TimelineStep(
                step=title,
                subtitle=_subtitle(order, status, completed[index]),
                time_label=_time_label(stamped[index], formatter),
                at=stamped[index],
                state=state,
            )
        )
    return steps


def current_step(order: Order) -> Optional[TimelineStep]:
    for step in derive_timeline(order):
        if step.state == StepState.CURRENT:
            return step
    return None
