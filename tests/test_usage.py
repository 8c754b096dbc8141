import datetime as dt
from concurrent.futures import ThreadPoolExecutor

from sqlalchemy import text

from vibestack.data.usage import consume_ai_call, get_ai_usage, next_utc_midnight, utc_date_key
from vibestack.db import engine

UTC = dt.timezone.utc


def _stored_calls(user_id: str, day: str) -> int:
    with engine.begin() as conn:
        return int(
            conn.execute(
                text("SELECT calls FROM ai_daily_usage WHERE user_id = :u AND usage_date = :d"),
                {"u": user_id, "d": day},
            ).scalar()
            or 0
        )


def test_first_call_creates_row():
    now = dt.datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    res = consume_ai_call("u1", "hobby", now=now, limit=5)
    assert res.allowed
    assert res.calls == 1
    assert res.limit == 5
    assert res.reset_at == "2026-03-02T00:00:00Z"
    assert _stored_calls("u1", "2026-03-01") == 1


def test_rejects_once_limit_reached():
    now = dt.datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    results = [consume_ai_call("u1", "hobby", now=now, limit=3) for _ in range(5)]
    assert [r.allowed for r in results] == [True, True, True, False, False]
    rejected = results[-1]
    assert rejected.as_body() == {"calls": 3, "limit": 3, "resetAt": "2026-03-02T00:00:00Z"}
    assert _stored_calls("u1", "2026-03-01") == 3


def test_concurrent_calls_never_exceed_limit():
    now = dt.datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def call(_):
        return consume_ai_call("u_race", "hobby", now=now, limit=5)

    with ThreadPoolExecutor(max_workers=20) as pool:
        results = list(pool.map(call, range(20)))

    assert sum(1 for r in results if r.allowed) == 5
    assert _stored_calls("u_race", "2026-03-01") == 5


def test_counter_resets_at_utc_midnight():
    before = dt.datetime(2026, 3, 1, 23, 59, 59, tzinfo=UTC)
    after = dt.datetime(2026, 3, 2, 0, 0, 1, tzinfo=UTC)
    consume_ai_call("u1", "hobby", now=before, limit=2)
    consume_ai_call("u1", "hobby", now=before, limit=2)
    assert not consume_ai_call("u1", "hobby", now=before, limit=2).allowed
    assert get_ai_usage("u1", "hobby", now=after, limit=2).calls == 0

    fresh = consume_ai_call("u1", "hobby", now=after, limit=2)
    assert fresh.allowed
    assert fresh.calls == 1
    assert fresh.reset_at == "2026-03-03T00:00:00Z"
    assert _stored_calls("u1", "2026-03-01") == 2
    assert get_ai_usage("u1", "hobby", now=after, limit=2).calls == 1


def test_day_key_and_reset_use_utc_not_local_zone():
    # 20:30 in New York on Mar 1 is already Mar 2 in UTC
    local = dt.datetime(2026, 3, 1, 20, 30, tzinfo=dt.timezone(dt.timedelta(hours=-5)))
    assert utc_date_key(local) == "2026-03-02"
    assert next_utc_midnight(local) == "2026-03-03T00:00:00Z"


def test_usage_read_is_pure():
    now = dt.datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    for _ in range(3):
        res = get_ai_usage("u_read", "hobby", now=now, limit=5)
        assert res.calls == 0
    assert _stored_calls("u_read", "2026-03-01") == 0

    consume_ai_call("u_read", "hobby", now=now, limit=5)
    assert get_ai_usage("u_read", "hobby", now=now, limit=5).calls == 1
    assert get_ai_usage("u_read", "hobby", now=now, limit=5).calls == 1


def test_zero_limit_denies_without_writing():
    now = dt.datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    assert not consume_ai_call("u1", "hobby", now=now, limit=0).allowed
    assert _stored_calls("u1", "2026-03-01") == 0


def test_plan_limits_come_from_settings(monkeypatch):
    monkeypatch.setenv("HOBBY_AI_DAILY_CALLS", "2")
    monkeypatch.setenv("PRO_AI_DAILY_CALLS", "4")
    now = dt.datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    assert consume_ai_call("hobby_user", "hobby", now=now).limit == 2
    assert consume_ai_call("pro_user", "pro", now=now).limit == 4


def test_headers_expose_quota():
    now = dt.datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    res = consume_ai_call("u1", "pro", now=now, limit=10)
    assert res.as_headers() == {
        "X-AI-Usage-Calls": "1",
        "X-AI-Usage-Limit": "10",
        "X-AI-Usage-Reset": "2026-03-02T00:00:00Z",
    }
