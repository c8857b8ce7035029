"""
Purpose: The single entry point screens talk to.
What it does:
- subscribe / unsubscribe to live order updates (delegates to TrackingPoller)
- pure reads over the last known order: timeline, tracking view
- actions: record a custody scan, create / cancel an order, fetch QR tokens
- dashboard counts for the signed-in collection center

Methods that call the order service are coroutines: the blocking HTTP call runs in
a worker thread and the Order aggregate is only touched back on the event loop.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional

from custody.protocol import ScanResult, record_scan
from custody.tokens import QRTokens, TokensNotIssued, tokens_issuable
from gateway.client import OrderServiceClient
from gateway.snapshots import SnapshotFormatError
from orders.models import Order, OrderStatus, Sample, ScanType
from orders.presentation import DashboardSummary, summarize_orders
from orders.state_machines.order_state import InvalidTransition
from orders.state_machines.order_state import cancel_order as cancel_locally
from orders.timeline import TimeFormatter, TimelineStep, derive_timeline
from tracking.policy import TrackingPolicy, default_tracking_policy
from tracking.poller import SubscriptionHandle, TrackingPoller, UpdateCallback
from tracking.views import TrackingView, build_tracking_view

logger = logging.getLogger(__name__)


class UnknownOrder(LookupError):
    """No order with this id has been loaded."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Unknown order: {order_id}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrackingService:
    def __init__(
        self,
        client: OrderServiceClient,
        policy: Optional[TrackingPolicy] = None,
        *,
        poller: Optional[TrackingPoller] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.policy = policy or default_tracking_policy()
        self.poller = poller or TrackingPoller(client, self.policy, clock=clock)
        self._clock = clock
        self._qr_tokens: Dict[str, QRTokens] = {}

    #----------------
    # Live updates
    #----------------
    def subscribe(self, order_id: str, on_update: UpdateCallback) -> SubscriptionHandle:
        return self.poller.subscribe(order_id, on_update)

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        self.poller.unsubscribe(handle)

    async def close(self) -> None:
        await self.poller.close()

    #----------------
    # Reads
    #----------------
    def get_order(self, order_id: str) -> Order:
        order = self.poller.get_order(order_id)
        if order is None:
            raise UnknownOrder(order_id)
        return order

    async def load_order(self, order_id: str) -> Order:
        """
        One-off fetch for screens that need an order without subscribing.
        """
        snapshot = await asyncio.to_thread(self.client.fetch_order_snapshot, order_id, True)
        order = self.poller.ingest(snapshot)
        self.poller.publish(order_id)
        return order

    def get_timeline(self, order_id: str, formatter: Optional[TimeFormatter] = None) -> List[TimelineStep]:
        return derive_timeline(self.get_order(order_id), formatter)

    def get_tracking_view(self, order_id: str) -> TrackingView:
        return build_tracking_view(self.get_order(order_id), self.policy, self._clock())

    #----------------
    # Actions
    #----------------
    def record_scan(
            self,
            order_id: str,
            scan_type: ScanType,
            at: datetime,
            performed_by: Optional[str] = None,
    ) -> ScanResult:
        result = record_scan(self.get_order(order_id), scan_type, at, performed_by)
        self.poller.publish(order_id)
        return result

    async def create_order(self, hospital_id: str, sample: Sample, special_instructions: Optional[str] = None) -> str:
        return await asyncio.to_thread(self.client.create_order, hospital_id, sample, special_instructions)

    async def cancel_order(self, order_id: str, reason: str, notes: Optional[str] = None) -> Optional[Order]:
        """
        Known orders are checked locally first so a delivered order never reaches the service.
        Returns the local order, now cancelled, or None if it was never loaded.
        """
        order = self.poller.get_order(order_id)
        if order is not None and order.status == OrderStatus.DELIVERED:
            raise InvalidTransition(
                order_id,
                order.status,
                OrderStatus.CANCELLED,
                message="This order cannot be cancelled in its current state",
            )

        await asyncio.to_thread(self.client.cancel_order, order_id, reason, notes)

        if order is None:
            return None
        cancel_locally(order, self._clock())
        self.poller.publish(order_id)
        return order

    async def get_qr_tokens(self, order_id: str) -> QRTokens:
        order = self.get_order(order_id)
        cached = self._qr_tokens.get(order_id)
        if cached is not None:
            return cached

        if not tokens_issuable(order):
            raise TokensNotIssued(f"QR codes for order {order_id} are not available while it is {order.status.value}")

        tokens = await asyncio.to_thread(self.client.fetch_qr_token, order_id)
        # tokens live only as long as their order stays in the registry
        self._qr_tokens = {
            known_id: kept for known_id, kept in self._qr_tokens.items()
            if self.poller.get_order(known_id) is not None
        }
        self._qr_tokens[order_id] = tokens
        return tokens

    async def dashboard_summary(self, today: Optional[date] = None) -> DashboardSummary:
        snapshots = await asyncio.to_thread(self.client.list_orders)
        orders: List[Order] = []
        for snapshot in snapshots:
            try:
                orders.append(self.poller.ingest(snapshot))
            except SnapshotFormatError as exc:
                logger.warning("Skipping order %s in dashboard: %s", snapshot.order_id, exc)
        return summarize_orders(orders, today or self._clock().date())
