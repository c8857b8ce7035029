"""
Purpose: Normalize order-service payloads into OrderSnapshot objects.
What it does:
- Reads the nested order shape (timing{}, rider_info{}, locations{}) and the
  flattened legacy fields the service still sends alongside it.
- Reads the service-side status history (oldest first).
- Picks the rider's latest position from location_tracking, falling back to
  rider_current_location. (0, 0) and fixes without a capture time are dropped.

Rule: No HTTP here, no transition rules. Parsing only.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from orders.models import (
    TIMESTAMP_FIELDS,
    CustodyScanEvent,
    OrderStatus,
    Rider,
    RiderLocation,
    Sample,
    SampleType,
    ScanType,
    StatusChange,
    Urgency,
)

LatLon = Tuple[float, float]


class SnapshotFormatError(ValueError):
    """Raised when an order-service payload cannot be understood."""
    pass


@dataclass
class OrderSnapshot:
    """
    Point-in-time read of one order. Everything except order_id/status is optional:
    the service omits whatever it does not know yet.
    """
    order_id: str
    status: OrderStatus
    fetched_at: datetime
    timestamps: Dict[OrderStatus, datetime] = field(default_factory=dict)
    rider: Optional[Rider] = None
    rider_location: Optional[RiderLocation] = None
    custody_events: List[CustodyScanEvent] = field(default_factory=list)
    status_history: List[StatusChange] = field(default_factory=list)
    location_included: bool = False

    sample: Optional[Sample] = None
    pickup: Optional[LatLon] = None
    delivery: Optional[LatLon] = None
    order_number: Optional[str] = None
    hospital_id: Optional[str] = None
    hospital_name: Optional[str] = None
    special_instructions: Optional[str] = None
    estimated_delivery_time: Optional[str] = None


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise SnapshotFormatError(f"Invalid timestamp: {value!r}") from exc
    else:
        raise SnapshotFormatError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_coordinates(lat: Any, lng: Any) -> Optional[LatLon]:
    """
    (lat, lng) as floats. None when missing, unparsable, or the (0, 0) placeholder.
    """
    if lat is None or lng is None or lat == "" or lng == "":
        return None
    try:
        point = (float(lat), float(lng))
    except (TypeError, ValueError):
        return None
    if point == (0.0, 0.0):
        return None
    return point


def _point(container: Optional[Mapping[str, Any]]) -> Optional[LatLon]:
    if not container:
        return None
    return parse_coordinates(container.get("lat"), container.get("lng"))


def parse_status(value: Any) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError as exc:
        raise SnapshotFormatError(f"Unknown order status: {value!r}") from exc


def parse_timestamps(order: Mapping[str, Any]) -> Dict[OrderStatus, datetime]:
    timing = order.get("timing") or {}
    stamps: Dict[OrderStatus, datetime] = {}
    for status, name in TIMESTAMP_FIELDS.items():
        value = parse_timestamp(timing.get(name) or order.get(name))
        if value is not None:
            stamps[status] = value
    return stamps


def parse_rider(order: Mapping[str, Any]) -> Optional[Rider]:
    rider_id = order.get("rider_id")
    if not rider_id:
        return None
    info = order.get("rider_info") or {}
    vehicle = info.get("vehicle") or {}
    return Rider(
        id=str(rider_id),
        name=info.get("name") or order.get("rider_name") or "Rider",
        phone=info.get("phone") or order.get("rider_phone") or "",
        vehicle_type=vehicle.get("type") or "",
        vehicle_registration=vehicle.get("registration") or "",
    )


def parse_sample(order: Mapping[str, Any]) -> Optional[Sample]:
    raw_type = order.get("sample_type")
    if not raw_type:
        return None
    try:
        sample_type = SampleType(raw_type)
    except ValueError:
        sample_type = SampleType.OTHER
    try:
        urgency = Urgency(order.get("urgency") or Urgency.ROUTINE.value)
    except ValueError:
        urgency = Urgency.ROUTINE
    try:
        quantity = int(order.get("sample_quantity") or 1)
    except (TypeError, ValueError):
        quantity = 1
    return Sample(sample_type=sample_type, quantity=max(1, quantity), urgency=urgency)


def parse_rider_location(
        order: Mapping[str, Any],
        location_tracking: Optional[List[Mapping[str, Any]]] = None,
) -> Optional[RiderLocation]:
    if location_tracking:
        latest = location_tracking[-1]
        point = parse_coordinates(latest.get("location_lat"), latest.get("location_lng"))
        recorded_at = parse_timestamp(latest.get("recorded_at"))
        if point is not None and recorded_at is not None:
            return RiderLocation(coordinates=point, recorded_at=recorded_at)

    current = order.get("rider_current_location") or {}
    point = _point(current)
    recorded_at = parse_timestamp(current.get("updated_at"))
    if point is None or recorded_at is None:
        return None
    return RiderLocation(coordinates=point, recorded_at=recorded_at)


def parse_custody_events(order_id: str, raw_events: Optional[List[Mapping[str, Any]]]) -> List[CustodyScanEvent]:
    events: List[CustodyScanEvent] = []
    for raw in raw_events or []:
        try:
            scan_type = ScanType(raw.get("scan_type"))
        except ValueError as exc:
            raise SnapshotFormatError(f"Unknown scan type: {raw.get('scan_type')!r}") from exc
        recorded_at = parse_timestamp(raw.get("recorded_at"))
        if recorded_at is None:
            raise SnapshotFormatError(f"Scan event for order {order_id} has no recorded_at")
        events.append(
            CustodyScanEvent(
                scan_type=scan_type,
                order_id=str(raw.get("order_id") or order_id),
                recorded_at=recorded_at,
                performed_by=raw.get("performed_by"),
                success=bool(raw.get("success", True)),
            )
        )
    return events


def parse_status_history(order_id: str, raw_history: Optional[List[Mapping[str, Any]]]) -> List[StatusChange]:
    history: List[StatusChange] = []
    for raw in raw_history or []:
        changed_at = parse_timestamp(raw.get("changed_at"))
        if changed_at is None:
            raise SnapshotFormatError(f"Status history entry for order {order_id} has no changed_at")
        previous = raw.get("previous_status")
        history.append(
            StatusChange(
                status=parse_status(raw.get("status")),
                changed_at=changed_at,
                previous_status=parse_status(previous) if previous else None,
                changed_by_name=raw.get("changed_by_name") or "System",
                notes=raw.get("notes"),
            )
        )
    history.sort(key=lambda change: change.changed_at)
    return history


def parse_order_snapshot(
        order: Mapping[str, Any],
        fetched_at: datetime,
        *,
        custody_events: Optional[List[Mapping[str, Any]]] = None,
        status_history: Optional[List[Mapping[str, Any]]] = None,
        location_tracking: Optional[List[Mapping[str, Any]]] = None,
        location_included: bool = False,
) -> OrderSnapshot:
    order_id = order.get("id")
    if not order_id:
        raise SnapshotFormatError("Order payload has no id")
    order_id = str(order_id)

    locations = order.get("locations") or {}
    pickup = _point(locations.get("pickup")) or parse_coordinates(
        order.get("pickup_location_lat"), order.get("pickup_location_lng")
    )
    delivery = _point(locations.get("delivery")) or parse_coordinates(
        order.get("delivery_location_lat"), order.get("delivery_location_lng")
    )
    timing = order.get("timing") or {}

    return OrderSnapshot(
        order_id=order_id,
        status=parse_status(order.get("status")),
        fetched_at=fetched_at,
        timestamps=parse_timestamps(order),
        rider=parse_rider(order),
        rider_location=parse_rider_location(order, location_tracking) if location_included else None,
        custody_events=parse_custody_events(order_id, custody_events or order.get("custody_events")),
        status_history=parse_status_history(order_id, status_history or order.get("status_history")),
        location_included=location_included,
        sample=parse_sample(order),
        pickup=pickup,
        delivery=delivery,
        order_number=order.get("order_number"),
        hospital_id=order.get("hospital_id"),
        hospital_name=order.get("hospital_name"),
        special_instructions=order.get("special_instructions"),
        estimated_delivery_time=timing.get("estimated_delivery_time") or order.get("estimated_delivery_time"),
    )
