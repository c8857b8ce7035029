"""
Purpose: Package entry + stable exports.

Orders domain package.

Public API:
- Domain models: Order, OrderStatus, Rider, RiderLocation, Sample, CustodyScanEvent, ScanType
- Lifecycle: apply_status, advance_status, InvalidTransition
- Timeline: derive_timeline
"""
from .models import (
    CustodyScanEvent,
    Order,
    OrderStatus,
    Rider,
    RiderLocation,
    Sample,
    SampleType,
    ScanType,
    Urgency,
)
from .state_machines.order_state import (
    InvalidTransition,
    OrderStateException,
    TransitionEvent,
    advance_status,
    apply_status,
)
from .timeline import StepState, TimelineStep, derive_timeline

__all__ = ["Order",
           "OrderStatus",
             "Rider",
             "RiderLocation",
             "Sample",
             "SampleType",
             "Urgency",
             "ScanType",
             "CustodyScanEvent",
             "apply_status",
             "advance_status",
             "InvalidTransition",
             "OrderStateException",
             "TransitionEvent",
             "derive_timeline",
             "TimelineStep",
             "StepState",
             ]
