from .user import User
from .subscription import Subscription, ACTIVE_STATUS, CANCELED_STATUS, REVOKED_STATUS
from .billing_event import BillingEventLog

__all__ = [
    "User",
    "Subscription",
    "BillingEventLog",
    "ACTIVE_STATUS",
    "CANCELED_STATUS",
    "REVOKED_STATUS",
]
