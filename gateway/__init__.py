#Marks gateway as a package.
#Re-exports the order service client, its errors and the snapshot type.
#No business logic.

from .client import ActionRejected, FetchFailure, OrderServiceClient, OrderServiceError, SessionContext
from .snapshots import OrderSnapshot, SnapshotFormatError, parse_order_snapshot

__all__ = [
           "OrderServiceClient",
             "SessionContext",
             "OrderServiceError",
             "FetchFailure",
             "ActionRejected",
             "OrderSnapshot",
             "SnapshotFormatError",
             "parse_order_snapshot",
             ]
