"""
Normalize raw Polar webhook envelopes into typed lifecycle events.

The provider posts ``{"type": ..., "data": {...}}``. Two payload shapes are
accepted for subscription events:

* nested: ``data = {"subscription": {...}, "customer": {...}}``
* flat:   ``data`` is the subscription object itself, with an embedded
  ``customer`` (or ``user``) object

Unrecognized types normalize to ``EventKind.UNKNOWN`` so the reconciler can
log and drop them; new provider event types never fail a delivery.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from paidaccess.models import Subscription
from .errors import MalformedEvent


class EventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    CANCELED = "canceled"
    REVOKED = "revoked"
    UNKNOWN = "unknown"


_SUBSCRIPTION_TYPES = {
    "subscription.created": EventKind.CREATED,
    "subscription.updated": EventKind.UPDATED,
    "subscription.active": EventKind.UPDATED,
    "subscription.uncanceled": EventKind.UPDATED,
    "subscription.canceled": EventKind.CANCELED,
    "subscription.revoked": EventKind.REVOKED,
}

_CHECKOUT_TYPES = {"checkout.completed", "checkout.updated"}
_CHECKOUT_DONE = {"succeeded", "confirmed", "completed"}

_COLUMNS = Subscription.__table__.c


@dataclass(frozen=True)
class NormalizedEvent:
    kind: EventKind
    event_type: str
    subscription_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    plan_label: Optional[str] = None
    status: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    @property
    def carries_customer(self) -> bool:
        return bool(self.customer_email)


def parse_timestamp(value: Any, field: str) -> Optional[datetime]:
    """ISO-8601 string or epoch seconds -> aware UTC datetime. Empty -> None."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise MalformedEvent(f"{field}: not a timestamp")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise MalformedEvent(f"{field}: {exc}") from exc
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise MalformedEvent(f"{field}: unparseable timestamp {value!r}") from exc
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    raise MalformedEvent(f"{field}: not a timestamp")


def _obj(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _bounded(value: Optional[str], column, ev_type: str) -> Optional[str]:
    # Provider values wider than the column would fail the write on every redelivery.
    width = column.type.length
    if value is not None and width and len(value) > width:
        raise MalformedEvent(f"{ev_type}: {column.name} longer than {width} characters")
    return value


def _subscription_obj(data: Dict[str, Any]) -> Dict[str, Any]:
    nested = data.get("subscription")
    if isinstance(nested, dict):
        return nested
    return data


def _customer(data: Dict[str, Any], sub: Dict[str, Any]):
    cust = _obj(data.get("customer")) or _obj(sub.get("customer")) or _obj(sub.get("user"))
    email = _text(cust.get("email")) or _text(data.get("customer_email")) or _text(sub.get("customer_email"))
    name = (
        _text(cust.get("name"))
        or _text(cust.get("public_name"))
        or _text(data.get("customer_name"))
        or _text(sub.get("customer_name"))
    )
    return (email.lower() if email else None), name


def _plan_label(data: Dict[str, Any], sub: Dict[str, Any]) -> Optional[str]:
    product = _obj(sub.get("product")) or _obj(data.get("product"))
    return (
        _text(product.get("name"))
        or _text(sub.get("plan_type"))
        or _text(_obj(sub.get("metadata")).get("plan_type"))
        or _text(_obj(data.get("metadata")).get("plan_type"))
    )


def _from_subscription(kind: EventKind, ev_type: str, data: Dict[str, Any]) -> NormalizedEvent:
    sub = _subscription_obj(data)
    sub_id = _bounded(_text(sub.get("id")), _COLUMNS.subscription_id, ev_type)
    if not sub_id:
        raise MalformedEvent(f"{ev_type}: subscription id missing")

    if kind in (EventKind.CANCELED, EventKind.REVOKED):
        return NormalizedEvent(kind=kind, event_type=ev_type, subscription_id=sub_id)

    email, name = _customer(data, sub)
    if kind is EventKind.CREATED and not email:
        raise MalformedEvent(f"{ev_type}: customer email missing for {sub_id}")

    return NormalizedEvent(
        kind=kind,
        event_type=ev_type,
        subscription_id=sub_id,
        customer_email=_bounded(email, _COLUMNS.customer_email, ev_type),
        customer_name=_bounded(name, _COLUMNS.customer_name, ev_type),
        plan_label=_bounded(_plan_label(data, sub), _COLUMNS.plan_type, ev_type),
        status=_bounded(_text(sub.get("status")), _COLUMNS.status, ev_type),
        period_start=parse_timestamp(sub.get("current_period_start"), "current_period_start"),
        period_end=parse_timestamp(sub.get("current_period_end"), "current_period_end"),
    )


def _from_checkout(ev_type: str, data: Dict[str, Any]) -> NormalizedEvent:
    # Only a completed checkout that embeds the full subscription can seed a record;
    # bare checkout notifications are informational.
    sub = _obj(data.get("subscription"))
    checkout_status = _text(data.get("status"))
    if checkout_status and checkout_status.lower() not in _CHECKOUT_DONE:
        return NormalizedEvent(kind=EventKind.UNKNOWN, event_type=ev_type)
    if not sub or not sub.get("status"):
        return NormalizedEvent(kind=EventKind.UNKNOWN, event_type=ev_type)
    return _from_subscription(EventKind.CREATED, ev_type, data)


def normalize_event(envelope: Any) -> NormalizedEvent:
    """Map a raw ``{type, data}`` envelope to a :class:`NormalizedEvent`.

    Raises :class:`MalformedEvent` when a recognized event lacks required data.
    """
    if not isinstance(envelope, dict):
        raise MalformedEvent("event envelope must be an object")
    ev_type = _text(envelope.get("type"))
    if not ev_type:
        raise MalformedEvent("event type missing")

    kind = _SUBSCRIPTION_TYPES.get(ev_type)
    if kind is None and ev_type not in _CHECKOUT_TYPES:
        return NormalizedEvent(kind=EventKind.UNKNOWN, event_type=ev_type)

    data = envelope.get("data")
    if not isinstance(data, dict):
        raise MalformedEvent(f"{ev_type}: data must be an object")

    if kind is None:
        return _from_checkout(ev_type, data)
    return _from_subscription(kind, ev_type, data)
