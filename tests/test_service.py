import asyncio
import pytest
from datetime import timedelta

from custody.protocol import OutOfSequence
from custody.tokens import QRTokens, TokensNotIssued
from gateway.client import ActionRejected
from orders.models import OrderStatus, Sample, SampleType, ScanType
from orders.state_machines.order_state import InvalidTransition
from orders.timeline import StepState
from tracking.policy import TrackingPolicy
from tracking.service import TrackingService, UnknownOrder


class MockOrderService:
    """
    In-memory order service: answers with whatever snapshot is stored for an order id.
    """
    def __init__(self):
        self.snapshots = {}
        self.cancelled = []
        self.created = []
        self.qr_requests = 0

    def fetch_order_snapshot(self, order_id, include_location=False):
        return self.snapshots[order_id]

    def create_order(self, hospital_id, sample, special_instructions=None):
        self.created.append((hospital_id, sample, special_instructions))
        return "ord-new"

    def cancel_order(self, order_id, reason, notes=None):
        self.cancelled.append((order_id, reason))

    def fetch_qr_token(self, order_id):
        self.qr_requests += 1
        return QRTokens(pickup_qr='{"qr_id": "qr-p"}', delivery_qr='{"qr_id": "qr-d"}')

    def list_orders(self, statuses=None, limit=None):
        return list(self.snapshots.values())


@pytest.fixture
def backend():
    return MockOrderService()


@pytest.fixture
def service(backend, t0):
    return TrackingService(backend, clock=lambda: t0 + timedelta(hours=1))


def load(service, order_id):
    return asyncio.run(service.load_order(order_id))


def test_unknown_order(service):
    with pytest.raises(UnknownOrder) as excinfo:
        service.get_timeline("ord-404")

    assert isinstance(excinfo.value, LookupError)
    with pytest.raises(LookupError):
        service.get_tracking_view("ord-404")


def test_load_order_then_read_timeline_and_view(service, backend, make_snapshot, rider, t0):
    backend.snapshots["ord-1"] = make_snapshot(OrderStatus.ASSIGNED, rider=rider, timestamps={
        OrderStatus.CREATED: t0,
        OrderStatus.ASSIGNED: t0 + timedelta(minutes=3),
    })

    order = load(service, "ord-1")

    assert order.status == OrderStatus.ASSIGNED
    timeline = service.get_timeline("ord-1")
    assert timeline[1].state == StepState.COMPLETED
    assert timeline[1].time_label == "9:03 AM"
    view = service.get_tracking_view("ord-1")
    assert view.order_id == "ord-1"
    assert view.eta is not None


def test_record_scan_through_service(service, backend, make_snapshot, rider, t0):
    backend.snapshots["ord-1"] = make_snapshot(OrderStatus.ASSIGNED, rider=rider)
    load(service, "ord-1")

    with pytest.raises(OutOfSequence):
        service.record_scan("ord-1", ScanType.DELIVERY, t0 + timedelta(minutes=5))

    result = service.record_scan("ord-1", ScanType.PICKUP, t0 + timedelta(minutes=10), performed_by=rider.id)

    assert not result.deferred
    assert service.get_order("ord-1").status == OrderStatus.PICKED_UP
    assert service.poller.latest("ord-1").order.status == OrderStatus.PICKED_UP


def test_cancel_delivered_order_rejected_locally(service, backend, make_snapshot, rider):
    backend.snapshots["ord-1"] = make_snapshot(OrderStatus.DELIVERED, rider=rider)
    load(service, "ord-1")

    with pytest.raises(InvalidTransition, match="cannot be cancelled in its current state"):
        asyncio.run(service.cancel_order("ord-1", "Changed my mind"))

    assert backend.cancelled == []
    assert service.get_order("ord-1").status == OrderStatus.DELIVERED


def test_cancel_order(service, backend, make_snapshot, t0):
    backend.snapshots["ord-1"] = make_snapshot(OrderStatus.PENDING_RIDER_ASSIGNMENT)
    load(service, "ord-1")

    order = asyncio.run(service.cancel_order("ord-1", "Sample spoiled"))

    assert backend.cancelled == [("ord-1", "Sample spoiled")]
    assert order.status == OrderStatus.CANCELLED
    assert order.timestamp_for(OrderStatus.CANCELLED) == t0 + timedelta(hours=1)


def test_cancel_rejected_by_service_leaves_order(service, backend, make_snapshot):
    backend.snapshots["ord-1"] = make_snapshot(OrderStatus.ASSIGNED)
    load(service, "ord-1")

    def refuse(order_id, reason, notes=None):
        raise ActionRejected("Order already picked up")

    backend.cancel_order = refuse

    with pytest.raises(ActionRejected):
        asyncio.run(service.cancel_order("ord-1", "Too late"))

    assert service.get_order("ord-1").status == OrderStatus.ASSIGNED


def test_qr_tokens_only_once_assigned_and_cached(service, backend, make_snapshot, rider):
    backend.snapshots["ord-1"] = make_snapshot(OrderStatus.PENDING_RIDER_ASSIGNMENT)
    load(service, "ord-1")

    with pytest.raises(TokensNotIssued):
        asyncio.run(service.get_qr_tokens("ord-1"))
    assert backend.qr_requests == 0

    backend.snapshots["ord-1"] = make_snapshot(OrderStatus.ASSIGNED, rider=rider)
    load(service, "ord-1")

    first = asyncio.run(service.get_qr_tokens("ord-1"))
    second = asyncio.run(service.get_qr_tokens("ord-1"))

    assert first is second
    assert backend.qr_requests == 1


def test_create_order(service, backend):
    sample = Sample(sample_type=SampleType.SALIVA, quantity=1)

    order_id = asyncio.run(service.create_order("hosp-3", sample))

    assert order_id == "ord-new"
    assert backend.created == [("hosp-3", sample, None)]


def test_dashboard_summary(service, backend, make_snapshot, rider, t0):
    backend.snapshots = {
        "a": make_snapshot(OrderStatus.PICKED_UP, order_id="a", rider=rider, hospital_id="h1"),
        "b": make_snapshot(OrderStatus.DELIVERED, order_id="b", rider=rider, hospital_id="h2", timestamps={
            OrderStatus.CREATED: t0,
            OrderStatus.DELIVERED: t0 + timedelta(minutes=40),
        }),
        "c": make_snapshot(OrderStatus.CREATED, order_id="c", pickup=None),
    }

    summary = asyncio.run(service.dashboard_summary(today=t0.date()))

    # "c" has no locations and is skipped
    assert summary.total_orders_today == 2
    assert summary.in_transit_now == 1
    assert summary.in_transit_with_rider == 1
    assert summary.completed_today == 1
    assert summary.partner_hospitals == 2
    assert summary.completion_rate == 50
    assert service.get_order("a").status == OrderStatus.PICKED_UP


def test_dropped_orders_take_their_qr_tokens_along(backend, make_snapshot, rider, t0):
    service = TrackingService(
        backend, TrackingPolicy(max_idle_orders=1), clock=lambda: t0 + timedelta(hours=1)
    )
    backend.snapshots["ord-1"] = make_snapshot(OrderStatus.ASSIGNED, rider=rider)
    backend.snapshots["ord-2"] = make_snapshot(OrderStatus.ASSIGNED, order_id="ord-2", rider=rider)

    load(service, "ord-1")
    asyncio.run(service.get_qr_tokens("ord-1"))
    load(service, "ord-2")

    with pytest.raises(UnknownOrder):
        asyncio.run(service.get_qr_tokens("ord-1"))

    asyncio.run(service.get_qr_tokens("ord-2"))
    assert backend.qr_requests == 2
    assert service.get_order("ord-2").status == OrderStatus.ASSIGNED
