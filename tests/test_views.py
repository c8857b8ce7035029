import pytest
from datetime import timedelta

from orders.models import OrderStatus, RiderLocation
from routing.geo import distance
from tracking.policy import default_tracking_policy
from tracking.views import LocationFreshness, build_tracking_view


@pytest.fixture
def policy():
    return default_tracking_policy()


def test_fresh_location_is_live(make_order, rider, policy, t0):
    order = make_order(OrderStatus.PICKUP_STARTED, rider=rider)
    fix = RiderLocation((-17.8400, 31.0600), t0 + timedelta(minutes=10))
    order.rider_location = fix

    view = build_tracking_view(order, policy, fix.recorded_at + timedelta(seconds=20))

    assert view.rider_location == fix.coordinates
    assert view.location_freshness == LocationFreshness.LIVE
    assert view.location_as_of == fix.recorded_at
    assert view.eta.destination == order.delivery


def test_location_older_than_one_interval_is_stale(make_order, rider, policy, t0):
    order = make_order(OrderStatus.PICKED_UP, rider=rider)
    fix = RiderLocation((-17.8230, 31.0480), t0 + timedelta(minutes=20))
    order.rider_location = fix

    view = build_tracking_view(order, policy, fix.recorded_at + timedelta(seconds=31))

    assert view.location_freshness == LocationFreshness.STALE
    # still shown, with its capture time
    assert view.rider_location == fix.coordinates
    assert view.location_as_of == fix.recorded_at


def test_map_region_covers_rider_and_both_stops(make_order, rider, policy, t0):
    order = make_order(OrderStatus.PICKUP_STARTED, rider=rider)
    order.rider_location = RiderLocation((-17.8600, 31.0700), t0 + timedelta(minutes=10))

    region = build_tracking_view(order, policy, t0 + timedelta(minutes=10)).map_region

    for lat, lon in (order.pickup, order.delivery, order.rider_location.coordinates):
        assert abs(lat - region.latitude) <= region.latitude_delta / 2
        assert abs(lon - region.longitude) <= region.longitude_delta / 2


def test_no_rider_location_after_delivery(make_order, rider, policy, t0):
    order = make_order(OrderStatus.DELIVERED, rider=rider)
    order.rider_location = RiderLocation((-17.8175, 31.0451), t0 + timedelta(minutes=40))

    view = build_tracking_view(order, policy, t0 + timedelta(minutes=41))

    assert view.rider_location is None
    assert view.location_freshness is None
    assert view.eta is None


def test_unassigned_order_shows_route_only(make_order, policy, t0):
    order = make_order(OrderStatus.PENDING_RIDER_ASSIGNMENT)

    view = build_tracking_view(order, policy, t0)

    assert view.rider_location is None
    assert view.eta.distance_km == pytest.approx(distance(order.pickup, order.delivery))
