"""Checkout reconciliation.

Two writers report the same completed checkout: the browser coming back
from Stripe (redirect path) and Stripe's webhook. Both end in
``subscribers.upsert_active_subscription``, which is idempotent, so they may
run in any order, concurrently, or only one of them may run at all.
"""
import logging
from typing import Any, Optional

from vibestack.data import subscribers, users
from vibestack.services import billing_gateway, plans

log = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


def _session_email(session: dict) -> Optional[str]:
    email = session.get("customer_email") or (session.get("customer_details") or {}).get("email")
    return subscribers.normalize_email(email)


def reconcile_checkout_redirect(
    session_id: str, author_id: str, viewer_user_id: Optional[str] = None
) -> bool:
    """
    Redirect-path reconciler. Re-fetches the session from Stripe and never
    trusts anything the browser sent beyond the session reference. Any
    failure just skips; the webhook remains the durable path.
    """
    if not session_id or not author_id:
        return False
    try:
        session = billing_gateway.retrieve_checkout_session(session_id)
    except Exception:
        log.exception("checkout.redirect retrieve_failed session=%s author=%s", session_id, author_id)
        return False

    metadata = session.get("metadata") or {}
    sub_id = billing_gateway.object_id(session.get("subscription"))
    email = _session_email(session)
    if session.get("payment_status") != "paid":
        log.info("checkout.redirect not_paid session=%s status=%s", session_id, session.get("payment_status"))
        return False
    if metadata.get("authorId") != author_id:
        log.warning(
            "checkout.redirect author_mismatch session=%s page_author=%s session_author=%s",
            session_id,
            author_id,
            metadata.get("authorId"),
        )
        return False

    try:
        return subscribers.upsert_active_subscription(
            author_id,
            email,
            sub_id,
            metadata.get("subscriberUserId") or viewer_user_id,
        )
    except Exception:
        log.exception("checkout.redirect upsert_failed session=%s author=%s", session_id, author_id)
        return False


def _on_checkout_completed(session: dict) -> str:
    metadata = session.get("metadata") or {}
    sub_id = billing_gateway.object_id(session.get("subscription"))

    if metadata.get("planType") == "pro":
        applied = plans.activate_pro(metadata.get("userId"), sub_id)
        return "plan_activated" if applied else "skipped"

    applied = subscribers.upsert_active_subscription(
        metadata.get("authorId"),
        _session_email(session),
        sub_id,
        metadata.get("subscriberUserId"),
    )
    return "subscriber_activated" if applied else "skipped"


def _on_subscription_deleted(subscription: dict) -> str:
    sub_id = subscription.get("id")
    if not sub_id:
        log.warning("stripe.webhook subscription_deleted missing id")
        return "skipped"
    rows = subscribers.mark_unsubscribed_by_subscription(sub_id)
    demoted = users.demote_by_plan_subscription(sub_id)
    log.info("stripe.webhook subscription_deleted sub=%s ledger_rows=%d users_demoted=%d", sub_id, rows, demoted)
    return "cancelled"


def _invoice_subscription_id(invoice: dict) -> Optional[str]:
    sub = billing_gateway.object_id(invoice.get("subscription"))
    if sub:
        return sub
    # Newer API versions nest it under parent.subscription_details
    details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
    return billing_gateway.object_id(details.get("subscription"))


def _on_invoice_payment_failed(invoice: dict) -> str:
    sub_id = _invoice_subscription_id(invoice)
    if not sub_id:
        log.warning("stripe.webhook payment_failed missing subscription invoice=%s", invoice.get("id"))
        return "skipped"
    rows = subscribers.mark_past_due_by_subscription(sub_id)
    log.info("stripe.webhook payment_failed sub=%s ledger_rows=%d", sub_id, rows)
    return "past_due"


_HANDLERS = {
    CHECKOUT_COMPLETED: _on_checkout_completed,
    SUBSCRIPTION_DELETED: _on_subscription_deleted,
    INVOICE_PAYMENT_FAILED: _on_invoice_payment_failed,
}


def handle_webhook_event(event: dict[str, Any]) -> str:
    """Apply one verified event. Exceptions propagate to the caller."""
    etype = event.get("type")
    handler = _HANDLERS.get(etype)
    if handler is None:
        log.info("stripe.webhook ignored event=%s", etype)
        return "ignored"
    obj = (event.get("data") or {}).get("object") or {}
    outcome = handler(obj)
    log.info("stripe.webhook event=%s id=%s outcome=%s", etype, event.get("id"), outcome)
    return outcome


def acknowledge_failed_event(event: dict[str, Any], exc: BaseException) -> dict:
    """
    Redelivery suppression: a verified event whose processing blew up is
    still acknowledged with 2xx so Stripe doesn't retry it forever. The
    failure is only visible through this log line, so alert on it.
    """
    log.error(
        "stripe.webhook processing_failed_acknowledged event=%s id=%s error=%s",
        event.get("type"),
        event.get("id"),
        exc,
        exc_info=exc,
    )
    return {"ok": True, "handled": False}
