"""Thin wrapper around the Stripe SDK.

Everything that talks to Stripe goes through here so call sites stay
plain-dict and tests can swap single functions.
"""
import json
import logging
from typing import Any, Optional

import stripe

from vibestack.core.config import Settings, get_settings

log = logging.getLogger(__name__)


class GatewayNotConfigured(RuntimeError):
    pass


class SignatureError(ValueError):
    pass


def _configure(cfg: Optional[Settings] = None) -> Settings:
    cfg = cfg or get_settings()
    if not cfg.STRIPE_SECRET_KEY:
        raise GatewayNotConfigured("STRIPE_SECRET_KEY not set")
    stripe.api_key = cfg.STRIPE_SECRET_KEY
    return cfg


def _plain(obj: Any) -> dict:
    """StripeObject -> plain nested dict."""
    if obj is None:
        return {}
    if type(obj) is dict:
        return obj
    to_dict = getattr(obj, "to_dict_recursive", None) or getattr(obj, "to_dict", None)
    if to_dict is not None:
        return to_dict()
    return json.loads(str(obj))


def object_id(value: Any) -> Optional[str]:
    """Expandable fields arrive either as an id string or as an object."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None) if value is not None else None


def create_checkout_session(
    *,
    product_name: str,
    description: str,
    unit_amount: int,
    success_url: str,
    cancel_url: str,
    metadata: dict[str, str],
    customer_email: Optional[str] = None,
) -> dict:
    _configure()
    payload: dict[str, Any] = {
        "mode": "subscription",
        "payment_method_types": ["card"],
        "line_items": [
            {
                "price_data": {
                    "currency": "usd",
                    "product_data": {"name": product_name, "description": description},
                    "unit_amount": unit_amount,
                    "recurring": {"interval": "month"},
                },
                "quantity": 1,
            }
        ],
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": {k: v for k, v in metadata.items() if v},
    }
    if customer_email:
        payload["customer_email"] = customer_email
    session = stripe.checkout.Session.create(**payload)
    return _plain(session)


def retrieve_checkout_session(session_id: str) -> dict:
    _configure()
    return _plain(stripe.checkout.Session.retrieve(session_id))


def cancel_subscription(subscription_id: str) -> None:
    _configure()
    stripe.Subscription.cancel(subscription_id)
    log.info("stripe.subscription.cancel sub=%s", subscription_id)


def verify_webhook(payload: bytes, signature: Optional[str], cfg: Optional[Settings] = None) -> dict:
    """
    Check the Stripe-Signature header against the raw body and only then
    parse it. Raises SignatureError on any verification or parse failure.
    """
    cfg = cfg or get_settings()
    secret = cfg.STRIPE_WEBHOOK_SECRET
    if not secret:
        raise GatewayNotConfigured("STRIPE_WEBHOOK_SECRET not set")
    if not signature:
        raise SignatureError("missing signature header")
    try:
        body = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(
            body, signature, secret, tolerance=cfg.STRIPE_WEBHOOK_TOLERANCE_S
        )
        event = json.loads(body)
    except (stripe.SignatureVerificationError, UnicodeDecodeError, ValueError) as e:
        raise SignatureError(str(e)) from e
    if not isinstance(event, dict) or not event.get("type"):
        raise SignatureError("malformed event")
    return event
