class BillingError(Exception):
    """Base class for billing failures surfaced to callers."""

    code = "billing_error"


class MalformedEvent(BillingError):
    """A provider event is missing data it must carry. Discard that event only."""

    code = "malformed_event"


class StorageUnavailable(BillingError):
    """The subscription store could not complete a write. The provider should redeliver."""

    code = "storage_unavailable"


class InvalidPlan(BillingError):
    code = "invalid_plan"

    def __init__(self, plan_type):
        super().__init__(f"No product configured for plan {plan_type!r}")
        self.plan_type = plan_type


class ProviderUnavailable(BillingError):
    code = "provider_unavailable"
