import hashlib
import json
from flask import request, jsonify, current_app
from polar_sdk.webhooks import WebhookVerificationError, validate_event
from pydantic import ValidationError
from . import bp
from paidaccess.extensions import db, csrf, limiter
from paidaccess.billing import (
    MalformedEvent,
    Reconciler,
    StorageUnavailable,
    normalize_event,
)
from paidaccess.billing.audit import record_delivery


def _delivery_id(raw: bytes) -> str:
    # Polar sends a stable webhook-id across redeliveries; fall back to a payload digest
    return (request.headers.get("webhook-id") or "")[:255] or "sha256:" + hashlib.sha256(raw).hexdigest()[:32]


def _signature_ok(raw: bytes, secret: str) -> bool:
    try:
        validate_event(body=raw, headers=dict(request.headers), secret=secret)
    except ValidationError:
        # Signature verified; the payload is just not one the SDK models. The normalizer decides.
        return True
    except (WebhookVerificationError, ValueError):
        return False
    return True


def _log(**fields):
    current_app.logger.info(json.dumps({"event": "polar_webhook", **fields}))


# ----- Polar Webhook (subscriptions lifecycle) -----
@csrf.exempt
@limiter.exempt
@bp.post("/polar")
def polar_webhook():
    """
    Polar → /webhooks/polar
    Verifies signature (when a secret is configured), normalizes the event and
    reconciles it into the subscription store.

    200 {"success": true}   applied, no-op or unknown type
    200 {"success": false}  malformed event; redelivery would not help
    503                     storage failure; the provider should retry
    """
    raw = request.get_data(cache=True) or b""

    # 1) Verify signature
    secret = current_app.config.get("POLAR_WEBHOOK_SECRET")
    signature_valid = False
    if secret:
        if not _signature_ok(raw, secret):
            current_app.logger.warning("polar_webhook.invalid_signature")
            return jsonify({"success": False, "error": "invalid_signature"}), 401
        signature_valid = True
    else:
        current_app.logger.warning("polar_webhook.signature_unchecked: POLAR_WEBHOOK_SECRET not set")

    # 2) Parse envelope
    try:
        envelope = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return jsonify({"success": False, "error": "invalid_json"}), 400
    if not isinstance(envelope, dict):
        return jsonify({"success": False, "error": "invalid_json"}), 400

    delivery_id = _delivery_id(raw)
    ev_type = envelope.get("type")

    # 3) Normalize: a malformed event is dropped on its own, never partially applied
    try:
        event = normalize_event(envelope)
    except MalformedEvent as e:
        current_app.logger.warning("polar_webhook.malformed type=%s: %s", ev_type, e)
        try:
            record_delivery(
                db.session, delivery_id=delivery_id, ev_type=ev_type, outcome="malformed",
                payload=envelope, signature_valid=signature_valid, notes=str(e),
            )
        except StorageUnavailable:
            current_app.logger.exception("polar_webhook.audit_failed")
        return jsonify({"success": False, "error": MalformedEvent.code}), 200

    # 4) Reconcile + audit
    try:
        result = Reconciler(db.session).apply(event)
        record_delivery(
            db.session, delivery_id=delivery_id, ev_type=event.event_type, outcome=result.outcome.value,
            payload=envelope, subscription_id=event.subscription_id, signature_valid=signature_valid,
        )
    except StorageUnavailable:
        current_app.logger.exception("polar_webhook.storage_unavailable type=%s", ev_type)
        return jsonify({"success": False, "error": StorageUnavailable.code}), 503

    _log(
        type=event.event_type,
        delivery_id=delivery_id,
        subscription_id=event.subscription_id,
        outcome=result.outcome.value,
    )
    return jsonify({"success": True}), 200
