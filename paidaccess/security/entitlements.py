from functools import wraps
from typing import Callable
from flask import abort, g
from flask_login import current_user
from paidaccess.extensions import db
from paidaccess.billing import EntitlementService


def current_entitlement():
    """Entitlement for the logged-in user; evaluated at most once per request."""
    if "entitlement" not in g:
        email = getattr(current_user, "email", None) if getattr(current_user, "is_authenticated", False) else None
        g.entitlement = EntitlementService(db.session).is_entitled(email)
    return g.entitlement


def enforce_active_subscription():
    """
    Returns None when allowed; otherwise (payload, 403).
    Allowed only while the user's newest active subscription has a period end in the future.
    """
    if current_entitlement().active:
        return None
    return ({"error": "entitlement_required", "missing": "active_subscription"}, 403)


def require_active_subscription(fn: Callable):
    """Gate a view on paid access. Stack under login_required."""
    @wraps(fn)
    def _wrap(*args, **kwargs):
        resp = enforce_active_subscription()
        if resp is not None:
            return resp
        return fn(*args, **kwargs)
    return _wrap


def admin_required(fn: Callable):
    # 401/403 bodies come from the app's JSON error handlers
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not getattr(current_user, "is_authenticated", False):
            abort(401)
        if not getattr(current_user, "is_admin", False):
            abort(403)
        return fn(*args, **kwargs)
    return _wrap
