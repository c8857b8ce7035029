#Purpose: The order-service "adapter/client".
#Sole responsibility: talk to the order service via HTTP and return normalized outputs.
#Encapsulates service-specific details:
#URL construction (/orders/{id}, /operations/orders/{id}/details, /qr/order/{id}, ...)
#the {success, message, data, error} envelope
#bearer auth from an explicit SessionContext
#timeouts / error mapping
#It should not contain lifecycle rules or polling.

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import requests
from dotenv import load_dotenv

from custody.tokens import QRTokens, build_qr_payload
from gateway.snapshots import OrderSnapshot, SnapshotFormatError, parse_order_snapshot
from orders.models import OrderStatus, Sample, ScanType

# Read the order service URL from environment
# Example in .env:
# ORDER_SERVICE_URL=https://api.example.com/api
load_dotenv()
BASE_URL = os.getenv("ORDER_SERVICE_URL")
DEFAULT_TIMEOUT = float(os.getenv("ORDER_SERVICE_TIMEOUT", 30))

logger = logging.getLogger(__name__)


class OrderServiceError(Exception):
    """Base error for order service calls."""

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None):
        self.code = code
        self.status_code = status_code
        super().__init__(message)


class FetchFailure(OrderServiceError):
    """Network/backend failure. Transient: callers may retry."""
    pass


class ActionRejected(OrderServiceError):
    """The service understood the request and refused it."""
    pass


@dataclass(frozen=True)
class SessionContext:
    """
    Credentials for the signed-in collection center, passed in explicitly.
    """
    access_token: Optional[str] = None

    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderServiceClient:
    """
    Order service Adapter / Client

    Sole responsibility:
    - Talk to the order service via HTTP
    - Unwrap the response envelope
    - Return normalized outputs (OrderSnapshot, QRTokens, ids)
    """
    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[SessionContext] = None,
        timeout: float = DEFAULT_TIMEOUT,
        http: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or BASE_URL or "").rstrip("/")
        self.session = session or SessionContext()
        self.timeout = timeout #the time to wait for a response before giving up
        self.http = http or requests.Session()

        if not self.base_url:
            raise ValueError("Order service base URL not set. Please set ORDER_SERVICE_URL in the .env file.")

    #----------------
    # Internal helpers
    #----------------
    def _request(self, method: str, path: str, *, params: Optional[Dict[str, Any]] = None,
                 payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(
                method,
                url,
                params=params,
                json=payload,
                headers=self.session.headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Order service %s %s failed: %s", method, path, exc)
            raise FetchFailure(f"Network error calling {path}: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise FetchFailure(
                f"Order service returned a non-JSON body for {path}", status_code=response.status_code
            ) from exc

        if not isinstance(body, dict):
            raise FetchFailure(f"Unexpected response shape for {path}", status_code=response.status_code)

        error = body.get("error") or {}
        message = error.get("message") or body.get("message") or "Order service error"

        if response.status_code >= 500:
            logger.error("Order service %s %s -> %s: %s", method, path, response.status_code, message)
            raise FetchFailure(message, code=error.get("code"), status_code=response.status_code)

        if response.status_code >= 400 or not body.get("success", False):
            logger.warning("Order service %s %s rejected: %s", method, path, message)
            raise ActionRejected(message, code=error.get("code"), status_code=response.status_code)

        return body.get("data") or {}

    #----------------
    # Public methods
    #----------------
    def fetch_order_snapshot(self, order_id: str, include_location: bool = False) -> OrderSnapshot:
        """
        Reads the order (status, timing, rider, status history) and, when asked, the rider's
        latest position. The position comes from the operations details read; if that fails,
        the location_tracking list sent with the order is used instead. With neither, the
        snapshot still succeeds and location_included stays False.
        """
        data = self._request("GET", f"/orders/{order_id}")
        order = data.get("order")
        if not order:
            raise FetchFailure(f"Order {order_id} missing from response")

        location_tracking: Optional[List[Dict[str, Any]]] = None
        location_order = order
        location_included = False
        if include_location:
            try:
                details = self._request("GET", f"/operations/orders/{order_id}/details")
            except OrderServiceError as exc:
                location_tracking = data.get("location_tracking")
                location_included = bool(location_tracking)
                logger.warning(
                    "Rider location details for order %s unavailable (%s), %s",
                    order_id, exc, "using order tracking" if location_included else "skipped",
                )
            else:
                location_tracking = details.get("location_tracking") or data.get("location_tracking") or []
                location_order = {**order, **(details.get("order") or {})}
                location_included = True

        try:
            return parse_order_snapshot(
                location_order,
                _utcnow(),
                custody_events=data.get("custody_events"),
                status_history=data.get("status_history"),
                location_tracking=location_tracking,
                location_included=location_included,
            )
        except SnapshotFormatError as exc:
            raise FetchFailure(f"Malformed order payload for {order_id}: {exc}") from exc

    def create_order(self, hospital_id: str, sample: Sample, special_instructions: Optional[str] = None) -> str:
        payload = {
            "hospital_id": hospital_id,
            "sample_type": sample.sample_type.value,
            "sample_quantity": sample.quantity,
            "urgency": sample.urgency.value,
        }
        if special_instructions:
            payload["special_instructions"] = special_instructions

        data = self._request("POST", "/orders/create", payload=payload)
        order_id = data.get("id") or (data.get("order") or {}).get("id")
        if not order_id:
            raise ActionRejected("Order service did not return an order id")
        logger.info("Created order %s for hospital %s", order_id, hospital_id)
        return str(order_id)

    def cancel_order(self, order_id: str, reason: str, notes: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {"reason": reason}
        if notes:
            payload["notes"] = notes
        self._request("POST", f"/orders/{order_id}/cancel", payload=payload)
        logger.info("Cancelled order %s: %s", order_id, reason)

    def fetch_qr_token(self, order_id: str) -> QRTokens:
        data = self._request("GET", f"/qr/order/{order_id}")
        codes = {code.get("qr_type"): code for code in data.get("qr_codes") or []}

        def payload_for(scan_type: ScanType) -> Optional[str]:
            code = codes.get(scan_type.value)
            if not code:
                return None
            return build_qr_payload(
                code["qr_id"], scan_type, str(data.get("order_id") or order_id), code.get("created_at")
            )

        pickup = payload_for(ScanType.PICKUP)
        if pickup is None:
            raise ActionRejected(f"No pickup QR code found for order {order_id}")
        return QRTokens(pickup_qr=pickup, delivery_qr=payload_for(ScanType.DELIVERY))

    def list_orders(self, statuses: Optional[Sequence[OrderStatus]] = None,
                    limit: Optional[int] = None) -> List[OrderSnapshot]:
        params: Dict[str, Any] = {}
        if statuses:
            params["status"] = ",".join(status.value for status in statuses)
        if limit is not None:
            params["limit"] = limit

        data = self._request("GET", "/orders/my", params=params or None)
        fetched_at = _utcnow()
        try:
            return [parse_order_snapshot(order, fetched_at) for order in data.get("orders") or []]
        except SnapshotFormatError as exc:
            raise FetchFailure(f"Malformed order list: {exc}") from exc
