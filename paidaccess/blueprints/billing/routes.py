from flask import Blueprint, request, current_app, jsonify
from flask_login import login_required, current_user
from sqlalchemy import select
from paidaccess.extensions import db, limiter
from paidaccess.models import Subscription
from paidaccess.billing import InvalidPlan, ProviderUnavailable
from paidaccess.security.entitlements import admin_required, current_entitlement

billing_bp = Blueprint("billing", __name__)

LIST_DEFAULT_LIMIT = 50
LIST_MAX_LIMIT = 200


def _checkout_service():
    return current_app.extensions["paidaccess.checkout"]


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


@billing_bp.get("")
@billing_bp.get("/")
@login_required
def index():
    """Billing landing: current entitlement plus the plans that can be purchased."""
    return jsonify({
        "subscription": current_entitlement().to_dict(),
        "plans": sorted(_checkout_service().products.keys()),
    })


@billing_bp.get("/subscription")
@login_required
def subscription_status():
    return jsonify(current_entitlement().to_dict())


@billing_bp.post("/checkout")
@limiter.limit("10/minute")
@login_required
def checkout():
    # Block duplicate purchases while already entitled
    if current_entitlement().active:
        return jsonify({"error": "subscription_active"}), 409

    data = request.get_json(silent=True) or {}
    plan_type = (data.get("planType") or "").strip()
    success_url = (data.get("successUrl") or "").strip()
    if not plan_type or not success_url:
        return jsonify({"error": "planType and successUrl are required"}), 400

    try:
        payload = _checkout_service().create_checkout(
            customer_email=current_user.email,
            customer_name=data.get("customerName") or getattr(current_user, "name", None),
            plan_type=plan_type,
            success_url=success_url,
            cancel_url=data.get("cancelUrl"),
        )
    except InvalidPlan as e:
        return jsonify({"error": e.code, "message": str(e)}), 400
    except ProviderUnavailable as e:
        current_app.logger.exception(
            "billing.checkout.session_create_failed",
            extra={"plan_type": plan_type, "user_id": current_user.id},
        )
        return jsonify({"error": e.code}), 502

    return jsonify(payload), 200


@billing_bp.get("/subscriptions")
@login_required
@admin_required
def list_subscriptions():
    """Admin projection of the store, newest first, optional ?status= filter."""
    limit = min(max(_int_arg("limit", LIST_DEFAULT_LIMIT), 1), LIST_MAX_LIMIT)
    page = max(_int_arg("page", 1), 1)

    stmt = select(Subscription).order_by(Subscription.created_at.desc(), Subscription.id.desc())
    status = (request.args.get("status") or "").strip()
    if status:
        stmt = stmt.where(Subscription.status == status)

    pagination = db.paginate(stmt, page=page, per_page=limit, max_per_page=LIST_MAX_LIMIT, error_out=False)
    return jsonify({
        "subscriptions": [s.to_dict() for s in pagination.items],
        "page": pagination.page,
        "limit": pagination.per_page,
        "total": pagination.total,
    })
