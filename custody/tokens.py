"""
QR tokens shown to the rider at pickup and delivery.

The tokens are opaque: this client never interprets them, it only decides
when they may be requested and packs the payload a QR renderer encodes.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from orders.models import Order, OrderStatus, ScanType
from orders.state_machines.order_state import status_rank


class TokensNotIssued(Exception):
    """Raised when QR tokens are requested before the order can have them."""
    pass


@dataclass(frozen=True)
class QRTokens:
    pickup_qr: str
    delivery_qr: Optional[str] = None


def tokens_issuable(order: Order) -> bool:
    """
    Tokens exist once a rider is assigned, and never for cancelled orders.
    """
    if order.status == OrderStatus.CANCELLED:
        return False
    return status_rank(order.status) >= status_rank(OrderStatus.ASSIGNED)


def build_qr_payload(qr_id: str, scan_type: ScanType, order_id: str, created_at: Optional[datetime | str] = None) -> str:
    if isinstance(created_at, datetime):
        created_at = created_at.isoformat()
    return json.dumps(
        {
            "qr_id": qr_id,
            "type": scan_type.value,
            "order_id": order_id,
            "created_at": created_at,
        }
    )
