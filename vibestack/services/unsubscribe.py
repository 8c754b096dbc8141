"""Two-phase unsubscribe.

GET only looks the token up and renders a confirmation form so link
prefetchers can't unsubscribe anyone. POST claims the row with a single
conditional update; only the request that wins the claim cancels the
Stripe subscription, so repeats never cancel twice.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from vibestack.data import subscribers
from vibestack.services import billing_gateway

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnsubscribeOutcome:
    found: bool
    changed: bool
    status: Optional[str] = None
    cancel_attempted: bool = False
    cancel_failed: bool = False


def lookup(token: str) -> Optional[dict]:
    """Side-effect free read used by the confirmation step."""
    return subscribers.get_by_token(token)


def perform(token: str) -> UnsubscribeOutcome:
    claimed = subscribers.claim_unsubscribe(token)
    if claimed is None:
        current = subscribers.get_by_token(token)
        if current is None:
            return UnsubscribeOutcome(found=False, changed=False)
        # Already unsubscribed: idempotent success, nothing to cancel
        return UnsubscribeOutcome(found=True, changed=False, status=current["status"])

    sub_id = claimed.get("stripe_subscription_id")
    cancel_failed = False
    if sub_id:
        try:
            billing_gateway.cancel_subscription(sub_id)
        except Exception:
            cancel_failed = True
            log.exception(
                "unsubscribe.cancel_failed subscriber=%s sub=%s", claimed.get("id"), sub_id
            )
    log.info(
        "unsubscribe.done subscriber=%s author=%s sub=%s cancel_failed=%s",
        claimed.get("id"),
        claimed.get("author_id"),
        sub_id,
        cancel_failed,
    )
    return UnsubscribeOutcome(
        found=True,
        changed=True,
        status="unsubscribed",
        cancel_attempted=bool(sub_id),
        cancel_failed=cancel_failed,
    )
