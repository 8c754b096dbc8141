"""Subscriber ledger: one row per (author, normalized email).

The unique key is the only coordination between the redirect-path and
webhook-path writers; every mutation below is a single statement.
"""
import logging
import secrets
from typing import Optional

from sqlalchemy import text

from vibestack.db import engine, utc_iso

log = logging.getLogger(__name__)

STATUSES = ("pending", "active", "past_due", "unsubscribed")

_COLS = (
    "id, author_id, subscriber_user_id, email, status, "
    "stripe_subscription_id, unsubscribe_token, created_at"
)


def normalize_email(email: str | None) -> str | None:
    if not email:
        return None
    s = email.strip().lower()
    return s or None


def new_unsubscribe_token() -> str:
    return secrets.token_urlsafe(32)


def _row_to_subscriber(row) -> dict:
    return dict(row._mapping)


def upsert_active_subscription(
    author_id: str,
    email: str | None,
    stripe_subscription_id: str | None,
    subscriber_user_id: str | None = None,
) -> bool:
    """
    Idempotent insert-or-activate keyed on (author_id, email).

    On conflict the row becomes active, takes the latest subscription id and
    keeps a known subscriber_user_id when the caller doesn't supply one.
    Returns False (and writes nothing) when correlation fields are missing.
    """
    normalized = normalize_email(email)
    if not author_id or not normalized or not stripe_subscription_id:
        log.warning(
            "ledger.upsert skipped missing_fields author=%s email=%s sub=%s",
            author_id,
            bool(normalized),
            stripe_subscription_id,
        )
        return False
    params = {
        "author_id": author_id,
        "subscriber_user_id": subscriber_user_id or None,
        "email": normalized,
        "sub_id": stripe_subscription_id,
        "token": new_unsubscribe_token(),
        "created_at": utc_iso(),
    }
    sql = (
        "INSERT INTO subscribers "
        "(author_id, subscriber_user_id, email, status, stripe_subscription_id, unsubscribe_token, created_at) "
        "VALUES (:author_id, :subscriber_user_id, :email, 'active', :sub_id, :token, :created_at) "
        "ON CONFLICT (author_id, email) DO UPDATE SET "
        "status = 'active', "
        "stripe_subscription_id = excluded.stripe_subscription_id, "
        "subscriber_user_id = COALESCE(excluded.subscriber_user_id, subscribers.subscriber_user_id)"
    )
    with engine.begin() as conn:
        conn.execute(text(sql), params)
    log.info(
        "ledger.upsert author=%s sub=%s subscriber_user=%s",
        author_id,
        stripe_subscription_id,
        subscriber_user_id,
    )
    return True


def mark_unsubscribed_by_subscription(stripe_subscription_id: str) -> int:
    if not stripe_subscription_id:
        return 0
    with engine.begin() as conn:
        res = conn.execute(
            text(
                "UPDATE subscribers SET status = 'unsubscribed' "
                "WHERE stripe_subscription_id = :sid AND status <> 'unsubscribed'"
            ),
            {"sid": stripe_subscription_id},
        )
        return int(res.rowcount or 0)


def mark_past_due_by_subscription(stripe_subscription_id: str) -> int:
    if not stripe_subscription_id:
        return 0
    with engine.begin() as conn:
        res = conn.execute(
            text(
                "UPDATE subscribers SET status = 'past_due' "
                "WHERE stripe_subscription_id = :sid AND status = 'active'"
            ),
            {"sid": stripe_subscription_id},
        )
        return int(res.rowcount or 0)


def get_by_token(token: str) -> Optional[dict]:
    if not token:
        return None
    with engine.begin() as conn:
        row = conn.execute(
            text(f"SELECT {_COLS} FROM subscribers WHERE unsubscribe_token = :token LIMIT 1"),
            {"token": token},
        ).first()
    return _row_to_subscriber(row) if row else None


def claim_unsubscribe(token: str) -> Optional[dict]:
    """
    Conditionally move a row to 'unsubscribed'. Returns the row as it was
    claimed (its subscription id still attached) or None when the token is
    unknown or the row was already unsubscribed.
    """
    if not token:
        return None
    with engine.begin() as conn:
        row = conn.execute(
            text(
                "UPDATE subscribers SET status = 'unsubscribed' "
                "WHERE unsubscribe_token = :token AND status <> 'unsubscribed' "
                f"RETURNING {_COLS}"
            ),
            {"token": token},
        ).first()
    return _row_to_subscriber(row) if row else None


def get_subscriber(author_id: str, email: str | None) -> Optional[dict]:
    normalized = normalize_email(email)
    if not author_id or not normalized:
        return None
    with engine.begin() as conn:
        row = conn.execute(
            text(f"SELECT {_COLS} FROM subscribers WHERE author_id = :aid AND email = :email LIMIT 1"),
            {"aid": author_id, "email": normalized},
        ).first()
    return _row_to_subscriber(row) if row else None


def count_rows(author_id: str, email: str | None = None) -> int:
    params = {"aid": author_id}
    sql = "SELECT COUNT(1) FROM subscribers WHERE author_id = :aid"
    if email is not None:
        sql += " AND email = :email"
        params["email"] = normalize_email(email)
    with engine.begin() as conn:
        return int(conn.execute(text(sql), params).scalar() or 0)


def count_by_status(author_id: str) -> dict[str, int]:
    with engine.begin() as conn:
        rows = conn.execute(
            text("SELECT status, COUNT(1) FROM subscribers WHERE author_id = :aid GROUP BY status"),
            {"aid": author_id},
        ).all()
    return {status: int(n) for status, n in rows}


def find_active_subscription(
    author_id: str, user_id: str | None = None, email: str | None = None
) -> Optional[dict]:
    """The viewer's active ledger row for this author, matched by identity or email."""
    normalized = normalize_email(email)
    if not author_id or not (user_id or normalized):
        return None
    matchers = []
    params = {"aid": author_id}
    if user_id:
        matchers.append("subscriber_user_id = :uid")
        params["uid"] = user_id
    if normalized:
        matchers.append("email = :email")
        params["email"] = normalized
    with engine.begin() as conn:
        row = conn.execute(
            text(
                f"SELECT {_COLS} FROM subscribers "
                f"WHERE author_id = :aid AND status = 'active' AND ({' OR '.join(matchers)}) "
                "ORDER BY id LIMIT 1"
            ),
            params,
        ).first()
    return _row_to_subscriber(row) if row else None


def list_mailable(author_id: str) -> list[dict]:
    """Rows that still receive posts: anything not unsubscribed."""
    with engine.begin() as conn:
        rows = conn.execute(
            text(
                f"SELECT {_COLS} FROM subscribers "
                "WHERE author_id = :aid AND status <> 'unsubscribed' ORDER BY id"
            ),
            {"aid": author_id},
        ).all()
    return [_row_to_subscriber(r) for r in rows]
