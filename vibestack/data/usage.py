# Day-bucketed AI call counter
# Table:
#   ai_daily_usage(
#     user_id TEXT NOT NULL,
#     usage_date TEXT NOT NULL,   -- UTC calendar day, YYYY-MM-DD
#     calls INTEGER NOT NULL,
#     updated_at TEXT NOT NULL,
#     PRIMARY KEY(user_id, usage_date)
#   )
import datetime as dt
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import text

from vibestack.db import engine, utc_iso, utc_now
from vibestack.services.plans import get_ai_daily_call_limit

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageResult:
    allowed: bool
    calls: int
    limit: int
    reset_at: str

    def as_body(self) -> dict:
        return {"calls": self.calls, "limit": self.limit, "resetAt": self.reset_at}

    def as_headers(self) -> dict:
        return {
            "X-AI-Usage-Calls": str(self.calls),
            "X-AI-Usage-Limit": str(self.limit),
            "X-AI-Usage-Reset": self.reset_at,
        }


def _utc(now: Optional[dt.datetime]) -> dt.datetime:
    d = now or utc_now()
    if d.tzinfo is None:
        return d.replace(tzinfo=dt.timezone.utc)
    return d.astimezone(dt.timezone.utc)


def utc_date_key(now: Optional[dt.datetime] = None) -> str:
    return _utc(now).date().isoformat()


def next_utc_midnight(now: Optional[dt.datetime] = None) -> str:
    """Reset time is always the next UTC midnight, whatever the caller's zone."""
    d = _utc(now)
    midnight = dt.datetime(d.year, d.month, d.day, tzinfo=dt.timezone.utc) + dt.timedelta(days=1)
    return utc_iso(midnight)


def get_ai_usage(
    user_id: str, plan: str, now: Optional[dt.datetime] = None, limit: Optional[int] = None
) -> UsageResult:
    """Pure read of today's count; never creates or bumps the row."""
    lim = get_ai_daily_call_limit(plan) if limit is None else limit
    with engine.begin() as conn:
        calls = conn.execute(
            text(
                "SELECT calls FROM ai_daily_usage WHERE user_id = :user_id AND usage_date = :usage_date"
            ),
            {"user_id": user_id, "usage_date": utc_date_key(now)},
        ).scalar()
    return UsageResult(
        allowed=int(calls or 0) < lim,
        calls=int(calls or 0),
        limit=lim,
        reset_at=next_utc_midnight(now),
    )


def consume_ai_call(
    user_id: str, plan: str, now: Optional[dt.datetime] = None, limit: Optional[int] = None
) -> UsageResult:
    """
    Atomically take one call from today's quota.

    Insert calls=1 or increment, with the limit check in the conflict clause
    so concurrent callers can never push the stored count past the limit.
    No returned row means the conditional update declined.
    """
    lim = get_ai_daily_call_limit(plan) if limit is None else limit
    reset_at = next_utc_midnight(now)
    if lim <= 0:
        return UsageResult(allowed=False, calls=0, limit=lim, reset_at=reset_at)

    with engine.begin() as conn:
        calls = conn.execute(
            text(
                """
                INSERT INTO ai_daily_usage (user_id, usage_date, calls, updated_at)
                VALUES (:user_id, :usage_date, 1, :updated_at)
                ON CONFLICT (user_id, usage_date) DO UPDATE
                  SET calls = ai_daily_usage.calls + 1,
                      updated_at = excluded.updated_at
                  WHERE ai_daily_usage.calls < :max_calls
                RETURNING calls
                """
            ),
            {
                "user_id": user_id,
                "usage_date": utc_date_key(now),
                "updated_at": utc_iso(now),
                "max_calls": lim,
            },
        ).scalar()

    calls = int(calls or 0)
    if calls <= 0 or calls > lim:
        return UsageResult(allowed=False, calls=lim, limit=lim, reset_at=reset_at)
    return UsageResult(allowed=True, calls=calls, limit=lim, reset_at=reset_at)
