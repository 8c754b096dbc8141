import time
import logging
import datetime as dt
from dataclasses import dataclass
from typing import Optional

from cachetools import TTLCache
from redis.asyncio import Redis

from vibestack.core.config import get_settings
from vibestack.data import posts

log = logging.getLogger(__name__)


# --- Publish limiter -------------------------------------------------------
# Read-then-check on purpose: two publishes racing inside the same instant can
# both pass. One extra post slipping through is acceptable here, so this is
# not held to the atomic-upsert discipline the ledger and meter use.


@dataclass(frozen=True)
class PublishLimit:
    window_hours: float
    recent: int

    @property
    def message(self) -> str:
        hours = int(self.window_hours) if float(self.window_hours).is_integer() else self.window_hours
        return f"Rate limit exceeded: You can only publish one post per {hours} hours."

    def as_detail(self) -> dict:
        return {
            "reason": "publish_rate_limited",
            "retryAfterHours": self.window_hours,
            "message": self.message,
        }


def check_publish_rate_limit(
    author_id: str,
    window_hours: Optional[float] = None,
    now: Optional[dt.datetime] = None,
) -> Optional[PublishLimit]:
    """None when the author may publish; a PublishLimit describing the rejection otherwise."""
    hours = get_settings().PUBLISH_RATE_LIMIT_HOURS if window_hours is None else window_hours
    if hours <= 0:
        return None
    now_dt = now or dt.datetime.now(dt.timezone.utc)
    since = now_dt - dt.timedelta(hours=hours)
    recent = posts.count_published_since(author_id, since)
    if recent > 0:
        log.info("publish.rate_limited author=%s recent=%d window_h=%s", author_id, recent, hours)
        return PublishLimit(window_hours=hours, recent=recent)
    return None


# --- Burst limiter for public endpoints -------------------------------------

_redis: Optional[Redis] = None
_mem: TTLCache = TTLCache(maxsize=10_000, ttl=120)


def _redis_client() -> Optional[Redis]:
    global _redis
    if _redis is not None:
        return _redis
    url = get_settings().REDIS_URL
    _redis = Redis.from_url(url, encoding="utf-8", decode_responses=True) if url else None
    return _redis


def _minute_bucket(ts: Optional[float] = None) -> int:
    return int((ts or time.time()) // 60)


async def allow_ip(ip: Optional[str], scope: str, limit_per_min: int) -> bool:
    """Fixed one-minute window per (scope, ip); Redis when configured, else in-process."""
    if not ip:
        return True
    limit = max(1, limit_per_min)
    key = f"vs:rl:{scope}:ip:{ip}:{_minute_bucket()}"
    r = _redis_client()
    if r is not None:
        try:
            val = await r.incr(key)
            if val == 1:
                await r.expire(key, 120)
            return val <= limit
        except Exception:
            log.warning("rate_limit.redis_unavailable scope=%s; using in-process counter", scope)
    # Per-process only; old minute keys age out of the TTL cache
    count = _mem.get(key, 0) + 1
    _mem[key] = count
    return count <= limit


def client_ip(request) -> Optional[str]:
    fwd = request.headers.get("x-forwarded-for")
    return (fwd.split(",")[0].strip() if fwd else None) or (
        request.client.host if request.client else None
    )
