"""Subscription reconciliation: normalize provider events, apply them, answer entitlement."""

from .errors import (
    BillingError,
    InvalidPlan,
    MalformedEvent,
    ProviderUnavailable,
    StorageUnavailable,
)
from .events import EventKind, NormalizedEvent, normalize_event
from .reconciler import ApplyOutcome, ApplyResult, Reconciler
from .entitlements import EntitlementService, SubscriptionStatus
from .checkout import CheckoutService

__all__ = [
    "ApplyOutcome",
    "ApplyResult",
    "BillingError",
    "CheckoutService",
    "EntitlementService",
    "EventKind",
    "InvalidPlan",
    "MalformedEvent",
    "NormalizedEvent",
    "ProviderUnavailable",
    "Reconciler",
    "StorageUnavailable",
    "SubscriptionStatus",
    "normalize_event",
]
