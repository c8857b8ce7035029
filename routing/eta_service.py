#Purpose: ETA estimation policy.
#Converts straight-line distances into the "arrives in X" the tracking screen shows.
#Rider leg depends on where the order is in its lifecycle:
#before pickup: rider -> collection center -> hospital
#after pickup: rider -> hospital
#No rider fix yet: collection center -> hospital
#Linear in distance. Traffic factors are out of scope.

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from orders.models import Order, OrderStatus
from orders.state_machines.order_state import status_rank
from routing.geo import path_distance

LatLon = Tuple[float, float]

DEFAULT_AVERAGE_SPEED_KMH = 30.0  # 2 minutes per km


@dataclass(frozen=True)
class EtaEstimate:
    distance_km: float
    duration_s: Optional[float]
    destination: LatLon


def eta(distance_km: float, average_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH) -> Optional[float]:
    """
    Seconds to cover distance_km at average_speed_kmh. None if the speed is not positive.
    """
    if average_speed_kmh <= 0 or distance_km < 0:
        return None
    return distance_km / average_speed_kmh * 3600.0


def _remaining_route(order: Order) -> List[LatLon]:
    rider_fix = order.rider_location.coordinates if order.rider_location else None
    picked_up = order.status != OrderStatus.CANCELLED and status_rank(order.status) >= status_rank(OrderStatus.PICKED_UP)

    if picked_up:
        return [rider_fix or order.pickup, order.delivery]
    if rider_fix is None:
        return [order.pickup, order.delivery]
    return [rider_fix, order.pickup, order.delivery]


def estimate_rider_eta(order: Order, average_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH) -> Optional[EtaEstimate]:
    """
    Remaining distance/time until the samples reach the hospital.
    None once the order is delivered or cancelled.
    """
    if order.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
        return None

    route = _remaining_route(order)
    remaining_km = path_distance(route)
    return EtaEstimate(
        distance_km=remaining_km,
        duration_s=eta(remaining_km, average_speed_kmh),
        destination=order.delivery,
    )
