"""
Purpose: Keep observed orders fresh while at least one screen is watching.
What it does:
- One asyncio task per observed order id, shared by every subscriber of that id
  (reference counted: started on the first subscribe, cancelled on the last unsubscribe).
- Each tick: fetch a snapshot (blocking requests call, run in a worker thread),
  reconcile it into the Order aggregate, rebuild timeline + tracking view, notify.
- Failed fetches keep the last known order, notify a degraded update and back off.

The Order aggregates live in the poller's registry and outlive subscriptions, so a
screen can still read the last known state after everyone unsubscribed. Orders nobody
watches are kept up to policy.max_idle_orders, least recently touched dropped first.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from gateway.client import FetchFailure, OrderServiceClient
from gateway.snapshots import OrderSnapshot, SnapshotFormatError
from orders.models import TRACKED_STATUSES, Order
from orders.timeline import derive_timeline
from tracking.policy import TrackingPolicy, default_tracking_policy
from tracking.reconciler import apply_snapshot, order_from_snapshot
from tracking.views import TrackingState, TrackingUpdate, build_tracking_view

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[TrackingUpdate], None]
SleepFn = Callable[[float], Awaitable[None]]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class SubscriptionHandle:
    """
    What a screen holds. Pass it back to unsubscribe.
    """
    order_id: str
    handle_id: int
    active: bool = True


@dataclass
class TrackedOrder:
    """
    Per-order poll state: the aggregate plus failure bookkeeping.
    """
    order_id: str
    order: Optional[Order] = None
    consecutive_failures: int = 0
    last_success_at: Optional[datetime] = None
    last_location_fetch_at: Optional[datetime] = None
    last_error: Optional[str] = None
    latest: Optional[TrackingUpdate] = None


@dataclass
class _Subscription:
    tracked: TrackedOrder
    callbacks: Dict[int, tuple] = field(default_factory=dict)  # handle_id -> (handle, callback)
    task: Optional[asyncio.Task] = None

    @property
    def subscriber_count(self) -> int:
        return len(self.callbacks)


class TrackingPoller:
    """
    Reference-counted polling loops keyed by order id.
    subscribe/unsubscribe must be called from the event loop thread.
    """

    def __init__(
        self,
        client: OrderServiceClient,
        policy: Optional[TrackingPolicy] = None,
        *,
        sleep: SleepFn = asyncio.sleep,
        clock: Clock = _utcnow,
    ):
        self.client = client
        self.policy = policy or default_tracking_policy()
        self._sleep = sleep
        self._clock = clock
        self._tracked: Dict[str, TrackedOrder] = {}
        self._subscriptions: Dict[str, _Subscription] = {}
        self._handle_ids = itertools.count(1)

    #----------------
    # Subscriptions
    #----------------
    def subscribe(self, order_id: str, on_update: UpdateCallback) -> SubscriptionHandle:
        loop = asyncio.get_running_loop()
        handle = SubscriptionHandle(order_id=order_id, handle_id=next(self._handle_ids))

        subscription = self._subscriptions.get(order_id)
        if subscription is None:
            subscription = _Subscription(tracked=self._tracked_order(order_id))
            self._subscriptions[order_id] = subscription
            subscription.task = loop.create_task(self._poll(subscription), name=f"tracking:{order_id}")
            logger.info("Started polling order %s", order_id)

        subscription.callbacks[handle.handle_id] = (handle, on_update)

        # late joiners see the current state right away
        if subscription.tracked.latest is not None:
            self._deliver(handle, on_update, subscription.tracked.latest)
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        if not handle.active:
            return
        handle.active = False

        subscription = self._subscriptions.get(handle.order_id)
        if subscription is None:
            return
        subscription.callbacks.pop(handle.handle_id, None)

        if subscription.subscriber_count == 0:
            del self._subscriptions[handle.order_id]
            if subscription.task is not None:
                subscription.task.cancel()
            logger.info("Stopped polling order %s", handle.order_id)
            self._evict_idle()

    def active_order_ids(self) -> List[str]:
        return list(self._subscriptions)

    def subscriber_count(self, order_id: str) -> int:
        subscription = self._subscriptions.get(order_id)
        return subscription.subscriber_count if subscription else 0

    def latest(self, order_id: str) -> Optional[TrackingUpdate]:
        tracked = self._tracked.get(order_id)
        return tracked.latest if tracked else None

    async def close(self) -> None:
        """
        Cancel every loop and wait for them to finish.
        """
        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()
        for subscription in subscriptions:
            for handle, _ in subscription.callbacks.values():
                handle.active = False
            if subscription.task is not None:
                subscription.task.cancel()
        tasks = [s.task for s in subscriptions if s.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    #----------------
    # Order registry
    #----------------
    def get_order(self, order_id: str) -> Optional[Order]:
        tracked = self._tracked.get(order_id)
        return tracked.order if tracked else None

    def ingest(self, snapshot: OrderSnapshot) -> Order:
        """
        Reconcile a snapshot fetched outside the poll loop into the registry.
        """
        tracked = self._tracked_order(snapshot.order_id)
        self._reconcile(tracked, snapshot)
        self._evict_idle(keep=snapshot.order_id)
        return tracked.order

    def publish(self, order_id: str) -> None:
        """
        Push the current state of an order to its subscribers, e.g. after a local scan.
        """
        tracked = self._tracked.get(order_id)
        subscription = self._subscriptions.get(order_id)
        if tracked is None or tracked.order is None:
            return
        update = self._build_update(tracked)
        if subscription is not None:
            self._notify(subscription, update)
        else:
            tracked.latest = update

    #----------------
    # Poll loop
    #----------------
    def _tracked_order(self, order_id: str) -> TrackedOrder:
        tracked = self._tracked.get(order_id) or TrackedOrder(order_id=order_id)
        self._touch(tracked)
        return tracked

    def _touch(self, tracked: TrackedOrder) -> None:
        # re-inserted so the registry stays in least-recently-touched order
        self._tracked.pop(tracked.order_id, None)
        self._tracked[tracked.order_id] = tracked

    def _evict_idle(self, keep: Optional[str] = None) -> None:
        idle = [order_id for order_id in self._tracked if order_id not in self._subscriptions]
        excess = len(idle) - self.policy.max_idle_orders
        droppable = [order_id for order_id in idle if order_id != keep]
        for order_id in droppable[:max(0, excess)]:
            del self._tracked[order_id]
            logger.debug("Dropped idle order %s from the registry", order_id)

    def _location_due(self, tracked: TrackedOrder, now: datetime) -> bool:
        if tracked.order is not None and tracked.order.status not in TRACKED_STATUSES:
            return False
        if tracked.last_location_fetch_at is None:
            return True
        elapsed = (now - tracked.last_location_fetch_at).total_seconds()
        return elapsed >= self.policy.location_poll_interval_sec

    def _reconcile(self, tracked: TrackedOrder, snapshot: OrderSnapshot) -> None:
        if tracked.order is None:
            tracked.order = order_from_snapshot(snapshot)
        apply_snapshot(tracked.order, snapshot)

    async def _poll(self, subscription: _Subscription) -> None:
        tracked = subscription.tracked
        order_id = tracked.order_id

        while True:
            include_location = self._location_due(tracked, self._clock())
            try:
                snapshot = await asyncio.to_thread(self.client.fetch_order_snapshot, order_id, include_location)
                self._reconcile(tracked, snapshot)
            except (FetchFailure, SnapshotFormatError) as exc:
                self._record_failure(tracked, exc)
            except Exception as exc:
                logger.exception("TRACKING_POLL_ERROR order=%s", order_id)
                self._record_failure(tracked, exc)
            else:
                tracked.consecutive_failures = 0
                tracked.last_error = None
                tracked.last_success_at = self._clock()
                self._touch(tracked)
                if snapshot.location_included:
                    tracked.last_location_fetch_at = tracked.last_success_at

            self._notify(subscription, self._build_update(tracked))
            await self._sleep(self.policy.retry_delay(tracked.consecutive_failures))

    def _record_failure(self, tracked: TrackedOrder, exc: Exception) -> None:
        tracked.consecutive_failures += 1
        tracked.last_error = str(exc)
        logger.warning(
            "Fetching order %s failed (%d in a row): %s",
            tracked.order_id, tracked.consecutive_failures, exc,
        )

    def _build_update(self, tracked: TrackedOrder) -> TrackingUpdate:
        now = self._clock()
        if tracked.order is None:
            return TrackingUpdate(
                order_id=tracked.order_id,
                state=TrackingState.LOADING,
                consecutive_failures=tracked.consecutive_failures,
                last_error=tracked.last_error,
            )

        stale_seconds = None
        state = TrackingState.LIVE
        if tracked.consecutive_failures:
            state = TrackingState.DEGRADED
            if tracked.last_success_at is not None:
                stale_seconds = max(0.0, (now - tracked.last_success_at).total_seconds())

        return TrackingUpdate(
            order_id=tracked.order_id,
            state=state,
            order=tracked.order,
            timeline=derive_timeline(tracked.order),
            view=build_tracking_view(tracked.order, self.policy, now),
            consecutive_failures=tracked.consecutive_failures,
            stale_seconds=stale_seconds,
            last_error=tracked.last_error,
        )

    def _notify(self, subscription: _Subscription, update: TrackingUpdate) -> None:
        subscription.tracked.latest = update
        # callbacks may unsubscribe while we iterate
        for handle, callback in list(subscription.callbacks.values()):
            self._deliver(handle, callback, update)

    def _deliver(self, handle: SubscriptionHandle, callback: UpdateCallback, update: TrackingUpdate) -> None:
        if not handle.active:
            return
        try:
            callback(update)
        except Exception:
            logger.exception("Subscriber callback failed for order %s", handle.order_id)
