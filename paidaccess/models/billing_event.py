from sqlalchemy import text
from paidaccess.extensions import db


class BillingEventLog(db.Model):
    """Audit trail of webhook deliveries. Not consulted for dedupe."""

    __tablename__ = "billing_event_logs"

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.String(255), nullable=False, index=True)
    type = db.Column(db.String(80), nullable=False, index=True)
    subscription_id = db.Column(db.String(64), nullable=True, index=True)
    outcome = db.Column(db.String(32), nullable=False)
    signature_valid = db.Column(db.Boolean, nullable=False, server_default=text("false"))
    payload = db.Column(db.JSON, nullable=False, default=dict)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
