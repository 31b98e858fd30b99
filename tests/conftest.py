import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import base64
from datetime import datetime, timedelta, timezone

import pytest
from standardwebhooks import Webhook
from paidaccess import create_app
from paidaccess.extensions import db
from paidaccess.models import User, Subscription

@pytest.fixture(scope="session")
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "WTF_CSRF_ENABLED": False,
        "RATELIMIT_ENABLED": False,
        "POLAR_WEBHOOK_SECRET": None,
        "POLAR_ACCESS_TOKEN": "polar_at_test",
        "POLAR_API_URL": "https://polar.example",
        "POLAR_PRODUCT_TEACHER": "prod_teacher",
        "POLAR_PRODUCT_SCHOOL": "prod_school",
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()


# ---- helpers shared by the billing tests ----

def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)

def iso_days_from_now(days):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()

def make_user(app, email="teacher@example.com", admin=False):
    with app.app_context():
        u = User(email=email, name="Test User", is_admin=admin)
        u.set_password("x")
        db.session.add(u)
        db.session.commit()
        return u.id

def login(client, user_id: int):
    # Simulate Flask-Login session
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)

def add_subscription(app, sub_id, email, status="active", period_end_days=30, created_at=None, plan="teacher"):
    now = datetime.now(timezone.utc)
    with app.app_context():
        s = Subscription(
            subscription_id=sub_id,
            customer_email=email,
            plan_type=plan,
            status=status,
            current_period_start=now - timedelta(days=1),
            current_period_end=(now + timedelta(days=period_end_days)) if period_end_days is not None else None,
            created_at=created_at or now,
            updated_at=created_at or now,
        )
        db.session.add(s)
        db.session.commit()
        return s.id

def polar_signed_headers(secret, body: bytes, msg_id="msg_1", at=None):
    # Polar keys the Standard Webhooks HMAC on the raw bytes of the whole secret
    at = at or datetime.now(timezone.utc)
    webhook = Webhook(base64.b64encode(secret.encode()).decode())
    return {
        "webhook-id": msg_id,
        "webhook-timestamp": str(int(at.timestamp())),
        "webhook-signature": webhook.sign(msg_id, at, body.decode("utf-8")),
    }
