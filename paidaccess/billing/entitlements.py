from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select

from paidaccess.models import Subscription, ACTIVE_STATUS
from paidaccess.models.subscription import as_utc
from .reconciler import utcnow


@dataclass(frozen=True)
class SubscriptionStatus:
    active: bool
    plan_type: Optional[str] = None
    status: Optional[str] = None
    current_period_end: Optional[datetime] = None

    def to_dict(self) -> dict:
        payload = {"hasActiveSubscription": self.active}
        if self.active:
            payload.update({
                "planType": self.plan_type,
                "status": self.status,
                "currentPeriodEnd": self.current_period_end.isoformat() if self.current_period_end else None,
            })
        return payload


NOT_ENTITLED = SubscriptionStatus(active=False)


class EntitlementService:
    """
    Read-only answer to "does this customer currently have paid access?".
    Entitlement is derived on every call: status == 'active' and a period end
    still in the future. Newest record wins when several qualify.
    """

    def __init__(self, session, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock

    def is_entitled(self, customer_email: Optional[str]) -> SubscriptionStatus:
        email = (customer_email or "").strip().lower()
        if not email:
            return NOT_ENTITLED

        stmt = (
            select(Subscription)
            .where(
                Subscription.customer_email == email,
                Subscription.status == ACTIVE_STATUS,
                Subscription.current_period_end.is_not(None),
                Subscription.current_period_end > self.clock(),
            )
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        sub = self.session.execute(stmt).scalars().first()
        if sub is None:
            return NOT_ENTITLED
        return SubscriptionStatus(
            active=True,
            plan_type=sub.plan_type,
            status=sub.status,
            current_period_end=as_utc(sub.current_period_end),
        )
