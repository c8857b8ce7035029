"""
Purpose: What a tracking screen renders for one order.

TrackingView  - rider position, how fresh it is, ETA and the map region.
TrackingUpdate - what subscribers receive on every poll tick.

Rule: built from the Order aggregate and the policy only. No I/O.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from orders.models import TRACKED_STATUSES, LatLon, Order, RiderLocation
from orders.timeline import TimelineStep
from routing.eta_service import EtaEstimate, estimate_rider_eta
from routing.geo import MapRegion, bounding_region
from tracking.policy import TrackingPolicy


class TrackingState(str, Enum):
    LOADING = "loading"     # nothing fetched yet
    LIVE = "live"
    DEGRADED = "degraded"   # showing last known data after failed fetches


class LocationFreshness(str, Enum):
    LIVE = "live"
    STALE = "stale"         # older than one location poll interval


@dataclass(frozen=True)
class TrackingView:
    order_id: str
    rider_location: Optional[LatLon]
    location_freshness: Optional[LocationFreshness]
    location_as_of: Optional[datetime]
    eta: Optional[EtaEstimate]
    map_region: MapRegion


@dataclass(frozen=True)
class TrackingUpdate:
    """
    One notification to subscribers. `order` is the shared aggregate; treat it as read-only.
    """
    order_id: str
    state: TrackingState
    order: Optional[Order] = None
    timeline: List[TimelineStep] = field(default_factory=list)
    view: Optional[TrackingView] = None
    consecutive_failures: int = 0
    stale_seconds: Optional[float] = None
    last_error: Optional[str] = None


def location_freshness(location: RiderLocation, now: datetime, max_age_sec: float) -> LocationFreshness:
    age = (now - location.recorded_at).total_seconds()
    return LocationFreshness.STALE if age > max_age_sec else LocationFreshness.LIVE


def build_tracking_view(order: Order, policy: TrackingPolicy, now: datetime) -> TrackingView:
    # a rider position only means something while the rider is on the job
    location = order.rider_location if order.status in TRACKED_STATUSES else None

    points: List[LatLon] = [order.pickup, order.delivery]
    if location is not None:
        points.append(location.coordinates)

    return TrackingView(
        order_id=order.id,
        rider_location=location.coordinates if location else None,
        location_freshness=(
            location_freshness(location, now, policy.location_poll_interval_sec) if location else None
        ),
        location_as_of=location.recorded_at if location else None,
        eta=estimate_rider_eta(order, policy.average_speed_kmh),
        map_region=bounding_region(
            points,
            padding_factor=policy.map_padding_factor,
            min_span=policy.map_min_span_degrees,
            default_center=policy.map_default_center,
        ),
    )
