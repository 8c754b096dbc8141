import logging
from typing import Optional

from sqlalchemy import text

from vibestack.db import engine, utc_iso

log = logging.getLogger(__name__)

PLANS = ("hobby", "pro")

_USER_COLS = "id, handle, email, bio, plan, plan_subscription_id, created_at"


def normalize_plan(plan: str | None) -> str:
    return "pro" if plan == "pro" else "hobby"


def build_handle(user_id: str, username: str | None = None, first_name: str | None = None) -> str:
    return username or first_name or f"user_{user_id[-5:]}"


def _row_to_user(row) -> dict:
    m = row._mapping
    return {
        "id": m["id"],
        "handle": m["handle"],
        "email": m["email"],
        "bio": m["bio"],
        "plan": normalize_plan(m["plan"]),
        "plan_subscription_id": m["plan_subscription_id"],
        "created_at": m["created_at"],
    }


def _insert_if_absent(user_id: str, email: str, handle: str) -> bool:
    with engine.begin() as conn:
        res = conn.execute(
            text(
                "INSERT INTO users (id, handle, email, plan, created_at) "
                "VALUES (:id, :handle, :email, 'hobby', :created_at) "
                "ON CONFLICT DO NOTHING"
            ),
            {"id": user_id, "handle": handle, "email": email, "created_at": utc_iso()},
        )
        return (res.rowcount or 0) > 0


def _email_owner(email: str) -> Optional[str]:
    with engine.begin() as conn:
        return conn.execute(
            text("SELECT id FROM users WHERE email = :email LIMIT 1"), {"email": email}
        ).scalar()


def ensure_user_row(user_id: str, email: str | None, handle: str | None = None) -> Optional[dict]:
    """
    Insert-if-absent for the users row; existing rows are never modified.
    A handle already taken by someone else gets the id suffix appended; an
    email already owned by another id falls back to the no-email placeholder.
    """
    if not user_id:
        return None
    existing = get_user(user_id)
    if existing:
        return existing
    placeholder = f"{user_id}@no-email.invalid"
    email_val = (email or "").strip().lower() or placeholder
    handle_val = handle or build_handle(user_id)
    if _insert_if_absent(user_id, email_val, handle_val):
        return get_user(user_id)
    # Lost a race on our own id, or collided on email or handle
    existing = get_user(user_id)
    if existing:
        return existing
    owner = _email_owner(email_val)
    if owner and owner != user_id:
        log.warning("users.email_collision user=%s owner=%s", user_id, owner)
        email_val = placeholder
        if _insert_if_absent(user_id, email_val, handle_val):
            return get_user(user_id)
    if get_user(user_id) is None:
        fallback = f"{handle_val}_{user_id[-5:]}"
        log.info("users.handle_collision user=%s handle=%s fallback=%s", user_id, handle_val, fallback)
        _insert_if_absent(user_id, email_val, fallback)
    return get_user(user_id)


def get_user(user_id: str) -> Optional[dict]:
    if not user_id:
        return None
    with engine.begin() as conn:
        row = conn.execute(
            text(f"SELECT {_USER_COLS} FROM users WHERE id = :id LIMIT 1"),
            {"id": user_id},
        ).first()
    return _row_to_user(row) if row else None


def get_user_by_handle(handle: str) -> Optional[dict]:
    if not handle:
        return None
    with engine.begin() as conn:
        row = conn.execute(
            text(f"SELECT {_USER_COLS} FROM users WHERE handle = :handle LIMIT 1"),
            {"handle": handle},
        ).first()
    return _row_to_user(row) if row else None


def get_user_plan(user_id: str) -> str:
    user = get_user(user_id)
    return normalize_plan(user["plan"] if user else None)


def set_user_plan(user_id: str, plan: str, plan_subscription_id: str | None) -> None:
    with engine.begin() as conn:
        conn.execute(
            text("UPDATE users SET plan = :plan, plan_subscription_id = :sid WHERE id = :id"),
            {"id": user_id, "plan": normalize_plan(plan), "sid": plan_subscription_id},
        )


def activate_pro(user_id: str, subscription_id: str) -> bool:
    """hobby -> pro. Re-delivery of the same subscription is a no-op success;
    a pro user is never re-pointed at a different subscription here."""
    with engine.begin() as conn:
        res = conn.execute(
            text(
                "UPDATE users SET plan = 'pro', plan_subscription_id = :sid "
                "WHERE id = :id AND (plan <> 'pro' OR plan_subscription_id IS NULL "
                "OR plan_subscription_id = :sid)"
            ),
            {"id": user_id, "sid": subscription_id},
        )
        return (res.rowcount or 0) > 0


def demote_by_plan_subscription(subscription_id: str) -> int:
    """pro -> hobby for whoever holds this platform subscription. Idempotent."""
    if not subscription_id:
        return 0
    with engine.begin() as conn:
        res = conn.execute(
            text(
                "UPDATE users SET plan = 'hobby', plan_subscription_id = NULL "
                "WHERE plan_subscription_id = :sid"
            ),
            {"sid": subscription_id},
        )
        return int(res.rowcount or 0)
