import pytest

from tracking.policy import TrackingPolicy, default_tracking_policy, policy_from_env


def test_retry_delay_doubles_up_to_ceiling():
    policy = default_tracking_policy()

    assert [policy.retry_delay(n) for n in range(7)] == [5, 5, 10, 20, 40, 60, 60]


def test_retry_delay_never_below_interval():
    policy = TrackingPolicy(order_poll_interval_sec=90, backoff_ceiling_sec=90)

    assert policy.retry_delay(3) == 90


@pytest.mark.parametrize("overrides", [
    {"order_poll_interval_sec": 0},
    {"location_poll_interval_sec": -1},
    {"backoff_factor": 0.5},
    {"backoff_ceiling_sec": 1},
    {"average_speed_kmh": 0},
    {"map_padding_factor": 0.9},
    {"map_min_span_degrees": 0},
    {"max_idle_orders": -1},
])
def test_validate_rejects_bad_values(overrides):
    with pytest.raises(ValueError):
        TrackingPolicy(**overrides).validate()


def test_policy_from_env(monkeypatch):
    monkeypatch.setenv("TRACKING_ORDER_POLL_INTERVAL", "3")
    monkeypatch.setenv("TRACKING_LOCATION_POLL_INTERVAL", "15")
    monkeypatch.setenv("TRACKING_BACKOFF_CEILING", "45")
    monkeypatch.setenv("TRACKING_AVERAGE_SPEED_KMH", "25")
    monkeypatch.setenv("TRACKING_MAX_IDLE_ORDERS", "20")

    policy = policy_from_env()

    assert policy.order_poll_interval_sec == 3
    assert policy.location_poll_interval_sec == 15
    assert policy.backoff_ceiling_sec == 45
    assert policy.average_speed_kmh == 25
    assert policy.max_idle_orders == 20


def test_policy_from_env_defaults(monkeypatch):
    for name in ("TRACKING_ORDER_POLL_INTERVAL", "TRACKING_LOCATION_POLL_INTERVAL",
                 "TRACKING_BACKOFF_CEILING", "TRACKING_AVERAGE_SPEED_KMH", "TRACKING_MAX_IDLE_ORDERS"):
        monkeypatch.delenv(name, raising=False)

    assert policy_from_env() == TrackingPolicy()
