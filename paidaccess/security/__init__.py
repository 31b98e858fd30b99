from flask_talisman import Talisman

def init_security(app):
    """
    Production/staging security headers with a conservative CSP.
    The app serves JSON and redirects to Polar-hosted checkout; no third-party scripts.
    """
    csp = {
        "default-src": ["'self'"],
        "script-src":  ["'self'"],
        "img-src":     ["'self'", "data:"],
        "connect-src": ["'self'", "https://api.polar.sh"],
        "frame-ancestors": ["'none'"],
        "base-uri":    ["'self'"],
        "form-action": ["'self'", "https://checkout.polar.sh"],
    }

    Talisman(
        app,
        content_security_policy=csp,
        force_https=True,
        strict_transport_security=True,
        session_cookie_secure=True,
        frame_options="DENY",
        referrer_policy="strict-origin-when-cross-origin",
    )
