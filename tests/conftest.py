"""
Pytest configuration for the VibeStack API tests.
Points the app at a throwaway SQLite file and fake Stripe/Supabase secrets.
"""

import hashlib
import hmac
import json
import os
import tempfile
import time

# Must be set before any vibestack import: db.py and auth.py read them at import time
_test_data_dir = tempfile.mkdtemp(prefix="vibestack_test_")
os.environ["DATABASE_URL"] = f"sqlite:///{_test_data_dir}/test.db"
os.environ["PUBLIC_BASE_URL"] = "http://localhost:3000"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_vibestack"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_vibestack"
os.environ["SUPABASE_JWT_SECRET"] = "test-supabase-jwt-secret-at-least-32-bytes-long"
os.environ.pop("SUPABASE_JWT_JWKS_URL", None)
os.environ.pop("SUPABASE_ISS", None)
os.environ.pop("REDIS_URL", None)
os.environ.pop("HEALTH_TOKEN", None)
os.environ.pop("ENABLE_HSTS", None)

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from vibestack.db import TABLES, engine, init_db
from vibestack.data import users
from vibestack.services import mailer, rate_limit

init_db()

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]
ORIGIN = {"Origin": "http://localhost:3000"}


@pytest.fixture(autouse=True)
def clean_state(monkeypatch, tmp_path):
    for key in ("SMTP_HOST", "SMTP_PORT", "OPENAI_API_KEY", "PUBLISH_RATE_LIMIT_HOURS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(mailer, "OUTBOX_DIR", tmp_path / "mail_outbox")
    rate_limit._mem.clear()
    with engine.begin() as conn:
        for table in reversed(TABLES):
            conn.execute(text(f"DELETE FROM {table}"))
    yield


@pytest.fixture
def app():
    from vibestack.main import app as fastapi_app

    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def bearer(user_id: str, email: str | None = None, username: str | None = None) -> dict:
    claims = {"sub": user_id, "exp": int(time.time()) + 3600}
    if email:
        claims["email"] = email
    if username:
        claims["preferred_username"] = username
    token = jwt.encode(claims, os.environ["SUPABASE_JWT_SECRET"], algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user():
    def _make(user_id: str, email: str, handle: str, plan: str = "hobby", sub_id: str | None = None) -> dict:
        users.ensure_user_row(user_id, email, handle)
        if plan != "hobby" or sub_id:
            users.set_user_plan(user_id, plan, sub_id)
        return users.get_user(user_id)

    return _make


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


@pytest.fixture
def post_webhook(client):
    def _post(event: dict, signature: str | None = None):
        payload = json.dumps(event)
        return client.post(
            "/api/webhooks/stripe",
            content=payload,
            headers={
                "stripe-signature": signature or sign_payload(payload),
                "content-type": "application/json",
            },
        )

    return _post


def checkout_event(author_id: str, email: str, sub_id: str, subscriber_user_id: str | None = None) -> dict:
    metadata = {"authorId": author_id}
    if subscriber_user_id:
        metadata["subscriberUserId"] = subscriber_user_id
    return {
        "id": f"evt_{sub_id}",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": f"cs_{sub_id}",
                "object": "checkout.session",
                "payment_status": "paid",
                "customer_details": {"email": email},
                "subscription": sub_id,
                "metadata": metadata,
            }
        },
    }
