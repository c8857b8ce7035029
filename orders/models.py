"""
Purpose: Domain models for the Orders capability.
What it does:
- Defines core data structures:
- Order (id, sample, pickup/delivery coords, status, write-once timestamps, rider, rider location, custody events)
- Rider, RiderLocation, Sample
- CustodyScanEvent (pickup / delivery QR scans)
- StatusChange (one entry of the service-side status history)

Defines enums/constants:
- OrderStatus = created | pending_rider_assignment | assigned | pickup_started | picked_up | delivery_started | delivered | cancelled
- ScanType = pickup | delivery
- SampleType, Urgency

Rule: No HTTP calls, no transition rules. Models only.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

LatLon = Tuple[float, float]


class OrderStatus(str, Enum):
    CREATED = "created"
    PENDING_RIDER_ASSIGNMENT = "pending_rider_assignment"
    ASSIGNED = "assigned"
    PICKUP_STARTED = "pickup_started"
    PICKED_UP = "picked_up"
    DELIVERY_STARTED = "delivery_started"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Forward lifecycle, in order. CANCELLED sits outside it.
LIFECYCLE: Tuple[OrderStatus, ...] = (
    OrderStatus.CREATED,
    OrderStatus.PENDING_RIDER_ASSIGNMENT,
    OrderStatus.ASSIGNED,
    OrderStatus.PICKUP_STARTED,
    OrderStatus.PICKED_UP,
    OrderStatus.DELIVERY_STARTED,
    OrderStatus.DELIVERED,
)

# Statuses during which the rider is on the move and their location is polled.
TRACKED_STATUSES = frozenset({
    OrderStatus.ASSIGNED,
    OrderStatus.PICKUP_STARTED,
    OrderStatus.PICKED_UP,
    OrderStatus.DELIVERY_STARTED,
})

# status -> timestamp field. pending_rider_assignment has no timestamp of its own.
TIMESTAMP_FIELDS: Dict[OrderStatus, str] = {
    OrderStatus.CREATED: "created_at",
    OrderStatus.ASSIGNED: "assigned_at",
    OrderStatus.PICKUP_STARTED: "pickup_started_at",
    OrderStatus.PICKED_UP: "picked_up_at",
    OrderStatus.DELIVERY_STARTED: "delivery_started_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


class SampleType(str, Enum):
    BLOOD = "blood"
    URINE = "urine"
    TISSUE = "tissue"
    SALIVA = "saliva"
    STOOL = "stool"
    OTHER = "other"


class Urgency(str, Enum):
    ROUTINE = "routine"
    URGENT = "urgent"
    EMERGENCY = "emergency"


class ScanType(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


@dataclass(frozen=True)
class Sample:
    """
    What is being carried. Fixed at creation.
    """
    sample_type: SampleType
    quantity: int = 1
    urgency: Urgency = Urgency.ROUTINE

    @classmethod
    def new(cls, sample_type: str | SampleType, quantity: int = 1, urgency: str | Urgency = Urgency.ROUTINE) -> Sample:
        if isinstance(sample_type, str):
            sample_type = SampleType(sample_type)
        if isinstance(urgency, str):
            urgency = Urgency(urgency)
        if quantity < 1:
            raise ValueError("sample quantity must be >= 1")
        return cls(sample_type=sample_type, quantity=quantity, urgency=urgency)


@dataclass(frozen=True)
class Rider:
    id: str
    name: str
    phone: str = ""
    vehicle_type: str = ""
    vehicle_registration: str = ""


@dataclass(frozen=True)
class RiderLocation:
    """
    A single rider position fix. recorded_at is the capture instant on the rider's device,
    not the moment we fetched it.
    """
    coordinates: LatLon
    recorded_at: datetime


@dataclass(frozen=True)
class CustodyScanEvent:
    """
    One QR verification at the pickup or delivery point.
    A delivery scan only counts if a successful pickup scan precedes it.
    """
    scan_type: ScanType
    order_id: str
    recorded_at: datetime
    performed_by: Optional[str] = None
    success: bool = True

    def identity(self) -> Tuple[ScanType, datetime, Optional[str], bool]:
        return (self.scan_type, self.recorded_at, self.performed_by, self.success)


@dataclass(frozen=True)
class StatusChange:
    """
    One entry of the status history the order service keeps for an order.
    """
    status: OrderStatus
    changed_at: datetime
    previous_status: Optional[OrderStatus] = None
    changed_by_name: str = "System"
    notes: Optional[str] = None

    def identity(self) -> Tuple[OrderStatus, datetime, Optional[OrderStatus]]:
        return (self.status, self.changed_at, self.previous_status)


def _empty_timestamps() -> Dict[str, Optional[datetime]]:
    return {name: None for name in TIMESTAMP_FIELDS.values()}


@dataclass
class Order:
    """
    The aggregate root. Only the state machine (orders.state_machines.order_state)
    and the custody protocol mutate status, timestamps and custody_events.
    """

    id: str
    sample: Sample
    pickup: LatLon
    delivery: LatLon

    status: OrderStatus = OrderStatus.CREATED
    timestamps: Dict[str, Optional[datetime]] = field(default_factory=_empty_timestamps)

    rider: Optional[Rider] = None
    rider_location: Optional[RiderLocation] = None
    custody_events: List[CustodyScanEvent] = field(default_factory=list)
    status_history: List[StatusChange] = field(default_factory=list)

    # Descriptive fields passed through from the order service
    order_number: Optional[str] = None
    hospital_id: Optional[str] = None
    hospital_name: Optional[str] = None
    special_instructions: Optional[str] = None
    estimated_delivery_time: Optional[str] = None

    def timestamp_for(self, status: OrderStatus) -> Optional[datetime]:
        name = TIMESTAMP_FIELDS.get(status)
        if name is None:
            return None
        return self.timestamps.get(name)

    def stamp(self, status: OrderStatus, at: Optional[datetime]) -> bool:
        """
        Write-once: sets the timestamp for `status` only if it is still unset.
        Returns True if a value was written.
        """
        name = TIMESTAMP_FIELDS.get(status)
        if name is None or at is None:
            return False
        if self.timestamps.get(name) is not None:
            return False
        self.timestamps[name] = at
        return True

    def successful_scans(self, scan_type: ScanType) -> List[CustodyScanEvent]:
        return [event for event in self.custody_events if event.scan_type == scan_type and event.success]
