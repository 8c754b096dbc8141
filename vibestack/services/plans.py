import logging
from typing import Optional

from vibestack.core.config import Settings, get_settings
from vibestack.data import subscribers, users
from vibestack.services import billing_gateway

log = logging.getLogger(__name__)

PLAN_CONFIG: dict[str, dict[str, int]] = {
    "hobby": {"subscribers": 500, "ai_text_limit": 2000, "ai_daily_calls": 15},
    "pro": {"subscribers": 10000, "ai_text_limit": 8000, "ai_daily_calls": 100},
}


def _plan_limits(plan: str, cfg: Optional[Settings] = None) -> dict[str, int]:
    cfg = cfg or get_settings()
    if users.normalize_plan(plan) == "pro":
        return {
            **PLAN_CONFIG["pro"],
            "ai_text_limit": cfg.PRO_AI_TEXT_LIMIT,
            "ai_daily_calls": cfg.PRO_AI_DAILY_CALLS,
        }
    return {
        **PLAN_CONFIG["hobby"],
        "ai_text_limit": cfg.HOBBY_AI_TEXT_LIMIT,
        "ai_daily_calls": cfg.HOBBY_AI_DAILY_CALLS,
    }


def get_ai_daily_call_limit(plan: str, cfg: Optional[Settings] = None) -> int:
    return _plan_limits(plan, cfg)["ai_daily_calls"]


def get_ai_text_limit(plan: str, cfg: Optional[Settings] = None) -> int:
    return _plan_limits(plan, cfg)["ai_text_limit"]


def get_subscriber_cap(plan: str) -> int:
    return _plan_limits(plan)["subscribers"]


def audience_summary(author_id: str, plan: str) -> dict[str, int]:
    """Subscriber counts next to the plan's advertised cap. Display only, nothing is enforced."""
    counts = subscribers.count_by_status(author_id)
    return {
        "active": counts.get("active", 0),
        "pastDue": counts.get("past_due", 0),
        "unsubscribed": counts.get("unsubscribed", 0),
        "cap": get_subscriber_cap(plan),
    }


def downgrade_to_hobby(user_id: str) -> None:
    """
    Self-service pro -> hobby. Cancelling the external subscription is
    best-effort; the plan row is cleared whatever the gateway says.
    """
    user = users.get_user(user_id)
    sub_id = user.get("plan_subscription_id") if user else None
    if sub_id:
        try:
            billing_gateway.cancel_subscription(sub_id)
        except Exception:
            log.exception("plans.downgrade cancel_failed user=%s sub=%s", user_id, sub_id)
    users.set_user_plan(user_id, "hobby", None)
    log.info("plans.downgrade user=%s previous_sub=%s", user_id, sub_id)


def activate_pro(user_id: str, subscription_id: str) -> bool:
    """hobby -> pro from a verified pro checkout."""
    if not user_id or not subscription_id:
        log.warning("plans.activate skipped missing_fields user=%s sub=%s", user_id, subscription_id)
        return False
    applied = users.activate_pro(user_id, subscription_id)
    if applied:
        log.info("plans.activate user=%s sub=%s", user_id, subscription_id)
    else:
        log.warning(
            "plans.activate not_applied user=%s sub=%s (unknown user or already pro on another subscription)",
            user_id,
            subscription_id,
        )
    return applied
