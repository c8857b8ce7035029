import pytest
from datetime import datetime, timedelta, timezone

from gateway.snapshots import OrderSnapshot
from orders.models import LIFECYCLE, Order, OrderStatus, Rider, Sample, SampleType, Urgency
from orders.state_machines.order_state import status_rank

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

# Collection center -> hospital lab, roughly 1.3 km apart
PICKUP = (-17.8292, 31.0522)
DELIVERY = (-17.8175, 31.0451)


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def rider():
    return Rider(id="rider-7", name="Tendai M.", phone="+263771000000", vehicle_type="motorbike")


@pytest.fixture
def make_order():
    """
    Builds an order already sitting at `status`, every passed step stamped one minute apart.
    """
    def _make(status=OrderStatus.CREATED, order_id="ord-1", rider=None, stamp_steps=True):
        order = Order(
            id=order_id,
            sample=Sample(sample_type=SampleType.BLOOD, quantity=2, urgency=Urgency.URGENT),
            pickup=PICKUP,
            delivery=DELIVERY,
        )
        order.stamp(OrderStatus.CREATED, T0)
        if status == OrderStatus.CANCELLED:
            order.status = status
            order.stamp(OrderStatus.CANCELLED, T0 + timedelta(minutes=1))
            return order

        for index, step in enumerate(LIFECYCLE[:status_rank(status) + 1]):
            if stamp_steps:
                order.stamp(step, T0 + timedelta(minutes=index))
        order.status = status
        if status_rank(status) >= status_rank(OrderStatus.ASSIGNED):
            order.rider = rider
        return order

    return _make


@pytest.fixture
def make_snapshot():
    def _make(status, order_id="ord-1", fetched_at=None, **fields):
        fields.setdefault("sample", Sample(sample_type=SampleType.BLOOD, quantity=2, urgency=Urgency.URGENT))
        fields.setdefault("pickup", PICKUP)
        fields.setdefault("delivery", DELIVERY)
        fields.setdefault("timestamps", {OrderStatus.CREATED: T0})
        return OrderSnapshot(
            order_id=order_id,
            status=status,
            fetched_at=fetched_at or T0 + timedelta(minutes=30),
            **fields,
        )

    return _make
