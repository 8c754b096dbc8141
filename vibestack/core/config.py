# vibestack/core/config.py
import os
import json
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

# Load .env into process environment early
load_dotenv()


def _get(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    return v if v is not None else default


def _get_int(name: str, default: int) -> int:
    try:
        return int(float(_get(name, str(default)) or default))
    except Exception:
        return default


def _get_float(name: str, default: float) -> float:
    try:
        return float(_get(name, str(default)) or default)
    except Exception:
        return default


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _get_list(name: str, default_list: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default_list)
    s = raw.strip()
    # Try JSON first
    if s.startswith("[") and s.endswith("]"):
        try:
            parsed = json.loads(s)
            if isinstance(parsed, list):
                return [str(x) for x in parsed]
        except Exception:
            pass
    # Fallback to CSV
    return [x.strip() for x in s.split(",") if x.strip()]


@dataclass(frozen=True)
class Settings:
    PUBLIC_BASE_URL: str = "http://localhost:3000"
    CORS_ORIGINS: List[str] = field(default_factory=lambda: ["*"])
    # Stripe (server-side)
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_WEBHOOK_TOLERANCE_S: int = 300
    SUBSCRIPTION_PRICE_CENTS: int = 1200
    PRO_SUBSCRIPTION_PRICE_CENTS: int = 1200
    # Publishing
    PUBLISH_RATE_LIMIT_HOURS: float = 24.0
    # AI metering
    HOBBY_AI_DAILY_CALLS: int = 15
    PRO_AI_DAILY_CALLS: int = 100
    HOBBY_AI_TEXT_LIMIT: int = 2000
    PRO_AI_TEXT_LIMIT: int = 8000
    OPENAI_API_KEY: str | None = None
    AI_MODEL: str = "gpt-5-mini"
    AI_MAX_OUTPUT_TOKENS: int = 1200
    # SMTP (publish notifications)
    SMTP_HOST: str | None = None
    SMTP_PORT: int | None = None
    SMTP_USER: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_FROM: str | None = None
    # Runtime / ops
    REDIS_URL: str | None = None
    UNSUB_RL_PER_MIN: int = 20
    CHECKOUT_RL_PER_MIN: int = 10
    ENABLE_SWAGGER: bool = False
    ENABLE_HSTS: bool = False
    HEALTH_TOKEN: str | None = None


def get_settings() -> Settings:
    public_base = (_get("PUBLIC_BASE_URL", "http://localhost:3000") or "").strip().rstrip("/")
    return Settings(
        PUBLIC_BASE_URL=public_base or "http://localhost:3000",
        CORS_ORIGINS=_get_list("CORS_ORIGINS", ["*"]),
        STRIPE_SECRET_KEY=_get("STRIPE_SECRET_KEY"),
        STRIPE_WEBHOOK_SECRET=_get("STRIPE_WEBHOOK_SECRET"),
        STRIPE_WEBHOOK_TOLERANCE_S=_get_int("STRIPE_WEBHOOK_TOLERANCE_S", 300),
        SUBSCRIPTION_PRICE_CENTS=_get_int("SUBSCRIPTION_PRICE_CENTS", 1200),
        PRO_SUBSCRIPTION_PRICE_CENTS=_get_int("PRO_SUBSCRIPTION_PRICE_CENTS", 1200),
        PUBLISH_RATE_LIMIT_HOURS=_get_float("PUBLISH_RATE_LIMIT_HOURS", 24.0),
        HOBBY_AI_DAILY_CALLS=_get_int("HOBBY_AI_DAILY_CALLS", 15),
        PRO_AI_DAILY_CALLS=_get_int("PRO_AI_DAILY_CALLS", 100),
        HOBBY_AI_TEXT_LIMIT=_get_int("HOBBY_AI_TEXT_LIMIT", 2000),
        PRO_AI_TEXT_LIMIT=_get_int("PRO_AI_TEXT_LIMIT", 8000),
        OPENAI_API_KEY=(_get("OPENAI_API_KEY") or "").strip() or None,
        AI_MODEL=(_get("AI_MODEL", "gpt-5-mini") or "gpt-5-mini").strip(),
        AI_MAX_OUTPUT_TOKENS=_get_int("AI_MAX_OUTPUT_TOKENS", 1200),
        SMTP_HOST=_get("SMTP_HOST"),
        SMTP_PORT=(_get_int("SMTP_PORT", 0) or None) if _get("SMTP_PORT") else None,
        SMTP_USER=_get("SMTP_USER"),
        SMTP_PASSWORD=_get("SMTP_PASSWORD"),
        SMTP_FROM=_get("SMTP_FROM") or _get("SMTP_USER"),
        REDIS_URL=(_get("REDIS_URL") or "").strip() or None,
        UNSUB_RL_PER_MIN=_get_int("UNSUB_RL_PER_MIN", 20),
        CHECKOUT_RL_PER_MIN=_get_int("CHECKOUT_RL_PER_MIN", 10),
        ENABLE_SWAGGER=_get_bool("ENABLE_SWAGGER"),
        ENABLE_HSTS=_get_bool("ENABLE_HSTS"),
        HEALTH_TOKEN=_get("HEALTH_TOKEN") or None,
    )
