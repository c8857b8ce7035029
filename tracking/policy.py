"""
Purpose: Central configuration for order tracking (single source of truth).
What it does:

Stores all tunable cadences/thresholds:

ORDER_POLL_INTERVAL_SEC = 5        (full order detail)
LOCATION_POLL_INTERVAL_SEC = 30    (rider location endpoint)
BACKOFF_CEILING_SEC = 60
AVERAGE_SPEED_KMH = 30             (2 min per km)
MAP_PADDING_FACTOR = 1.5
MAP_MIN_SPAN_DEGREES = 0.01
MAX_IDLE_ORDERS = 200            (orders kept with nobody watching)

Rule: No logic here beyond the retry schedule, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Tuple

from dotenv import load_dotenv


@dataclass(frozen=True)
class TrackingPolicy:
    """
    Central configuration for the tracking poller and the tracking view.
    """

    # --- Poll cadence ---
    # Full order snapshot (status, timing, rider, custody scans).
    order_poll_interval_sec: float = 5.0

    # Rider location endpoint. Also the age after which a fix is "last known"
    # rather than current.
    location_poll_interval_sec: float = 30.0

    # --- Failure backoff ---
    # After N consecutive failures the next attempt waits
    # order_poll_interval * backoff_factor ** (N - 1), capped at the ceiling.
    backoff_factor: float = 2.0
    backoff_ceiling_sec: float = 60.0

    # --- ETA ---
    average_speed_kmh: float = 30.0

    # --- Map region ---
    map_padding_factor: float = 1.5
    map_min_span_degrees: float = 0.01
    # Used only when there is nothing to show yet.
    map_default_center: Tuple[float, float] = (0.0, 0.0)

    # --- Registry ---
    # Orders kept in memory with no subscriber. Past this, the ones touched
    # longest ago are dropped and reloaded on demand.
    max_idle_orders: int = 200

    def retry_delay(self, consecutive_failures: int) -> float:
        """
        Seconds to wait before the next fetch.
        """
        if consecutive_failures <= 0:
            return self.order_poll_interval_sec
        delay = self.order_poll_interval_sec * self.backoff_factor ** (consecutive_failures - 1)
        return min(delay, max(self.backoff_ceiling_sec, self.order_poll_interval_sec))

    def validate(self) -> None:
        """
        Basic sanity checks. Call once at startup.
        """
        if self.order_poll_interval_sec <= 0:
            raise ValueError("order_poll_interval_sec must be > 0")

        if self.location_poll_interval_sec <= 0:
            raise ValueError("location_poll_interval_sec must be > 0")

        if self.backoff_factor < 1.0:
            raise ValueError("backoff_factor must be >= 1.0")

        if self.backoff_ceiling_sec < self.order_poll_interval_sec:
            raise ValueError("backoff_ceiling_sec must be >= order_poll_interval_sec")

        if self.average_speed_kmh <= 0:
            raise ValueError("average_speed_kmh must be > 0")

        if self.map_padding_factor < 1.0:
            raise ValueError("map_padding_factor must be >= 1.0")

        if self.map_min_span_degrees <= 0:
            raise ValueError("map_min_span_degrees must be > 0")

        if self.max_idle_orders < 0:
            raise ValueError("max_idle_orders must be >= 0")


def default_tracking_policy() -> TrackingPolicy:
    """
    Convenience factory for the default policy.
    """
    p = TrackingPolicy()
    p.validate()
    return p


def policy_from_env() -> TrackingPolicy:
    """
    Default policy with overrides from the environment / .env file:
    TRACKING_ORDER_POLL_INTERVAL, TRACKING_LOCATION_POLL_INTERVAL,
    TRACKING_BACKOFF_CEILING, TRACKING_AVERAGE_SPEED_KMH, TRACKING_MAX_IDLE_ORDERS.
    """
    load_dotenv()
    defaults = TrackingPolicy()
    p = TrackingPolicy(
        order_poll_interval_sec=float(os.getenv("TRACKING_ORDER_POLL_INTERVAL", defaults.order_poll_interval_sec)),
        location_poll_interval_sec=float(
            os.getenv("TRACKING_LOCATION_POLL_INTERVAL", defaults.location_poll_interval_sec)
        ),
        backoff_ceiling_sec=float(os.getenv("TRACKING_BACKOFF_CEILING", defaults.backoff_ceiling_sec)),
        average_speed_kmh=float(os.getenv("TRACKING_AVERAGE_SPEED_KMH", defaults.average_speed_kmh)),
        max_idle_orders=int(os.getenv("TRACKING_MAX_IDLE_ORDERS", defaults.max_idle_orders)),
    )
    p.validate()
    return p
