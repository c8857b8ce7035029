import pytest
from datetime import datetime, timedelta, timezone

from orders.models import OrderStatus
from orders.state_machines.order_state import apply_status
from orders.timeline import PENDING_LABEL, StepState, current_step, derive_timeline, format_time


def states(timeline):
    return [step.state for step in timeline]


def test_new_order_waits_for_rider(make_order):
    order = make_order(OrderStatus.PENDING_RIDER_ASSIGNMENT)

    timeline = derive_timeline(order)

    assert [step.step for step in timeline] == [
        "Created",
        "Rider Assignment",
        "En Route to Pickup",
        "Samples Collected",
        "Delivered",
    ]
    assert states(timeline) == [
        StepState.COMPLETED,
        StepState.CURRENT,
        StepState.PENDING,
        StepState.PENDING,
        StepState.PENDING,
    ]
    assert timeline[0].subtitle == "Delivery created with 2 blood sample(s)"
    assert timeline[1].subtitle == "Waiting for rider assignment"
    assert timeline[1].time_label == PENDING_LABEL


def test_assignment_completes_step_two(make_order, rider, t0):
    order = make_order(OrderStatus.PENDING_RIDER_ASSIGNMENT)
    apply_status(order, OrderStatus.ASSIGNED, t0 + timedelta(minutes=4))
    order.rider = rider

    timeline = derive_timeline(order)

    assert timeline[1].state == StepState.COMPLETED
    assert timeline[1].subtitle == "Rider assigned successfully"
    assert timeline[1].at == t0 + timedelta(minutes=4)
    assert timeline[2].state == StepState.CURRENT


def test_missing_timestamps_before_a_stamped_step_count_as_completed(make_order, t0):
    """
    Status ran ahead of the timestamps we know: the skipped steps are
    completed with no time rather than left pending behind a later one.
    """
    order = make_order(OrderStatus.CREATED)
    order.status = OrderStatus.PICKED_UP
    order.stamp(OrderStatus.PICKED_UP, t0 + timedelta(minutes=15))

    timeline = derive_timeline(order)

    assert states(timeline) == [
        StepState.COMPLETED,
        StepState.COMPLETED,
        StepState.COMPLETED,
        StepState.COMPLETED,
        StepState.CURRENT,
    ]
    assert timeline[1].time_label == PENDING_LABEL
    assert timeline[1].at is None
    assert timeline[2].at is None
    assert timeline[4].subtitle == "En route to hospital"


def test_status_alone_marks_steps_completed(make_order):
    order = make_order(OrderStatus.PICKUP_STARTED, stamp_steps=False)

    timeline = derive_timeline(order)

    assert states(timeline)[:3] == [StepState.COMPLETED] * 3
    assert timeline[3].state == StepState.CURRENT


def test_delivered_order_has_no_current_step(make_order):
    order = make_order(OrderStatus.DELIVERED)

    timeline = derive_timeline(order)

    assert states(timeline) == [StepState.COMPLETED] * 5
    assert timeline[4].subtitle == "Successfully delivered to hospital lab"
    assert current_step(order) is None


def test_cancelled_order_has_no_current_step(make_order, t0):
    order = make_order(OrderStatus.ASSIGNED)
    apply_status(order, OrderStatus.CANCELLED, t0 + timedelta(minutes=10))

    timeline = derive_timeline(order)

    assert states(timeline) == [
        StepState.COMPLETED,
        StepState.COMPLETED,
        StepState.PENDING,
        StepState.PENDING,
        StepState.PENDING,
    ]
    assert current_step(order) is None


def test_formatter_failure_falls_back_to_pending(make_order):
    order = make_order(OrderStatus.ASSIGNED)

    def broken(at):
        raise ValueError("bad locale")

    timeline = derive_timeline(order, formatter=broken)

    assert all(step.time_label == PENDING_LABEL for step in timeline)
    assert timeline[0].state == StepState.COMPLETED


@pytest.mark.parametrize("at, label", [
    (datetime(2024, 5, 1, 9, 5, tzinfo=timezone.utc), "9:05 AM"),
    (datetime(2024, 5, 1, 14, 30, tzinfo=timezone.utc), "2:30 PM"),
    (datetime(2024, 5, 1, 0, 15, tzinfo=timezone.utc), "12:15 AM"),
])
def test_format_time(at, label):
    assert format_time(at) == label


def test_derive_timeline_is_idempotent(make_order):
    order = make_order(OrderStatus.DELIVERY_STARTED)

    assert derive_timeline(order) == derive_timeline(order)
