from datetime import datetime, timezone
from sqlalchemy.exc import SQLAlchemyError

from paidaccess.models import BillingEventLog
from .errors import StorageUnavailable


def record_delivery(session, *, delivery_id, ev_type, outcome, payload,
                    subscription_id=None, signature_valid=False, notes=None):
    """Append one webhook delivery to ``billing_event_logs``."""
    log = BillingEventLog(
        delivery_id=delivery_id,
        type=(ev_type or "unknown")[:80],
        subscription_id=subscription_id,
        outcome=outcome,
        signature_valid=signature_valid,
        payload=payload if isinstance(payload, dict) else {"_raw": payload},
        notes=notes[:255] if notes else None,
        created_at=datetime.now(timezone.utc),
    )
    try:
        session.add(log)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise StorageUnavailable(str(exc)) from exc
    return log
