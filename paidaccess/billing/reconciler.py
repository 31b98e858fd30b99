"""
Apply normalized lifecycle events to the ``subscriptions`` table.

Every transition is one atomic statement keyed by ``subscription_id``:
created/updated events are an ``INSERT ... ON CONFLICT DO UPDATE``, cancel
and revoke are a conditional ``UPDATE``. Values are absolute overwrites and a
repeated cancel keeps the first ``canceled_at``, so applying the same event
twice leaves the same row as applying it once.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import case, func, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from paidaccess.models import Subscription, CANCELED_STATUS, REVOKED_STATUS
from .errors import StorageUnavailable
from .events import EventKind, NormalizedEvent

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

_TERMINAL = {
    EventKind.CANCELED: CANCELED_STATUS,
    EventKind.REVOKED: REVOKED_STATUS,
}


class ApplyOutcome(str, Enum):
    UPSERTED = "upserted"
    UPDATED = "updated"
    NOOP = "noop"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ApplyResult:
    outcome: ApplyOutcome
    subscription_id: Optional[str] = None
    rowcount: int = 0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    """The single write path into the subscription store."""

    def __init__(self, session, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock

    def apply(self, event: NormalizedEvent) -> ApplyResult:
        if event.kind is EventKind.UNKNOWN:
            logger.info("billing.reconcile.ignored type=%s", event.event_type)
            return ApplyResult(ApplyOutcome.IGNORED)

        now = self.clock()
        try:
            if event.kind in _TERMINAL:
                result = self._terminate(event, _TERMINAL[event.kind], now)
            elif event.carries_customer:
                result = self._upsert(event, now)
            else:
                result = self._update(event, now)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(
                "billing.reconcile.storage_failed type=%s subscription_id=%s",
                event.event_type, event.subscription_id,
            )
            raise StorageUnavailable(str(exc)) from exc

        if result.outcome is ApplyOutcome.NOOP:
            logger.info(
                "billing.reconcile.noop type=%s subscription_id=%s (no record yet)",
                event.event_type, event.subscription_id,
            )
        return result

    # ---- write paths -------------------------------------------------------

    def _insert(self):
        dialect = self.session.get_bind(Subscription).dialect.name
        try:
            return _INSERTS[dialect]
        except KeyError:
            raise RuntimeError(f"Upsert not supported on dialect {dialect!r}") from None

    def _upsert(self, event: NormalizedEvent, now: datetime) -> ApplyResult:
        table = Subscription.__table__
        stmt = self._insert()(table).values(
            subscription_id=event.subscription_id,
            customer_email=event.customer_email,
            customer_name=event.customer_name,
            plan_type=event.plan_label or "",
            status=event.status or "incomplete",
            current_period_start=event.period_start,
            current_period_end=event.period_end,
            created_at=now,
            updated_at=now,
        )
        excluded = stmt.excluded
        set_ = {
            "customer_email": excluded.customer_email,
            "current_period_start": excluded.current_period_start,
            "current_period_end": excluded.current_period_end,
            "updated_at": excluded.updated_at,
        }
        # status/plan_type are NOT NULL: an event that omits them keeps the stored value
        if event.status:
            set_["status"] = excluded.status
        if event.plan_label:
            set_["plan_type"] = excluded.plan_type
        if event.customer_name:
            set_["customer_name"] = excluded.customer_name

        stmt = stmt.on_conflict_do_update(index_elements=[table.c.subscription_id], set_=set_)
        res = self.session.execute(stmt)
        return ApplyResult(ApplyOutcome.UPSERTED, event.subscription_id, res.rowcount or 1)

    def _update(self, event: NormalizedEvent, now: datetime) -> ApplyResult:
        # No customer on the event: it can refresh a known row but never create one.
        values = {
            "current_period_start": event.period_start,
            "current_period_end": event.period_end,
            "updated_at": now,
        }
        if event.status:
            values["status"] = event.status
        if event.plan_label:
            values["plan_type"] = event.plan_label
        if event.customer_name:
            values["customer_name"] = event.customer_name
        return self._conditional_update(event, values, ApplyOutcome.UPDATED)

    def _terminate(self, event: NormalizedEvent, status: str, now: datetime) -> ApplyResult:
        # Redelivery keeps the first cancellation time and leaves updated_at alone.
        table = Subscription.__table__
        values = {
            "status": status,
            "canceled_at": func.coalesce(table.c.canceled_at, now),
            "updated_at": case((table.c.status == status, table.c.updated_at), else_=now),
        }
        return self._conditional_update(event, values, ApplyOutcome.UPDATED)

    def _conditional_update(self, event, values, outcome) -> ApplyResult:
        table = Subscription.__table__
        stmt = (
            update(table)
            .where(table.c.subscription_id == event.subscription_id)
            .values(**values)
        )
        res = self.session.execute(stmt)
        if not res.rowcount:
            return ApplyResult(ApplyOutcome.NOOP, event.subscription_id, 0)
        return ApplyResult(outcome, event.subscription_id, res.rowcount)
