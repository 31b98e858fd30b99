from datetime import timezone
from sqlalchemy import text
from paidaccess.extensions import db

ACTIVE_STATUS = "active"
CANCELED_STATUS = "canceled"
REVOKED_STATUS = "revoked"


def as_utc(dt):
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt):
    dt = as_utc(dt)
    return dt.isoformat() if dt else None


class Subscription(db.Model):
    """One row per provider subscription; written only by the reconciler."""

    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)

    subscription_id = db.Column(db.String(64), nullable=False, unique=True, index=True)

    customer_email = db.Column(db.String(255), nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=True)

    plan_type = db.Column(db.String(128), nullable=False, server_default=text("''"))
    status = db.Column(db.String(32), nullable=False, index=True, server_default=text("'incomplete'"))

    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)

    __table_args__ = (
        db.Index("ix_subscriptions_email_status_created", "customer_email", "status", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subscriptionId": self.subscription_id,
            "customerEmail": self.customer_email,
            "customerName": self.customer_name,
            "planType": self.plan_type,
            "status": self.status,
            "currentPeriodStart": _iso(self.current_period_start),
            "currentPeriodEnd": _iso(self.current_period_end),
            "canceledAt": _iso(self.canceled_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} subscription_id={self.subscription_id!r} status={self.status!r}>"
