#Marks tracking as a package.
#Re-exports the screen-facing API: the service facade, the poller and the update/view types.
#No business logic.

from .policy import TrackingPolicy, default_tracking_policy, policy_from_env
from .poller import SubscriptionHandle, TrackingPoller
from .reconciler import ReconcileResult, apply_snapshot, order_from_snapshot
from .service import TrackingService, UnknownOrder
from .views import LocationFreshness, TrackingState, TrackingUpdate, TrackingView, build_tracking_view

__all__ = [
           "TrackingService",
             "UnknownOrder",
             "TrackingPoller",
             "SubscriptionHandle",
             "TrackingPolicy",
             "default_tracking_policy",
             "policy_from_env",
             "apply_snapshot",
             "order_from_snapshot",
             "ReconcileResult",
             "TrackingState",
             "TrackingUpdate",
             "TrackingView",
             "LocationFreshness",
             "build_tracking_view",
             ]
