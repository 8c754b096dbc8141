import logging
from typing import Optional
from urllib.parse import quote, urlparse

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from vibestack.core.auth import get_current_profile, get_optional_user
from vibestack.core.config import Settings, get_settings
from vibestack.core.types import CheckoutRequest, CheckoutResponse, PlanResponse
from vibestack.data import users
from vibestack.services import billing_gateway, plans, reconciliation
from vibestack.services.rate_limit import allow_ip, client_ip

router = APIRouter(prefix="/api")
log = logging.getLogger(__name__)


def _is_valid_origin(request: Request, cfg: Settings) -> bool:
    allowed_host = urlparse(cfg.PUBLIC_BASE_URL).netloc
    for header in ("origin", "referer"):
        value = request.headers.get(header)
        if value:
            return urlparse(value).netloc == allowed_host
    return False


@router.post("/checkout", response_model=CheckoutResponse)
async def create_author_checkout(
    req: CheckoutRequest,
    request: Request,
    cfg: Settings = Depends(get_settings),
    user: Optional[dict] = Depends(get_optional_user),
):
    if not _is_valid_origin(request, cfg):
        raise HTTPException(status_code=403, detail={"reason": "forbidden_origin"})
    if not await allow_ip(client_ip(request), "checkout", cfg.CHECKOUT_RL_PER_MIN):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"reason": "rate_limited_ip", "retry": 60},
        )
    if not cfg.STRIPE_SECRET_KEY:
        raise HTTPException(status_code=503, detail={"reason": "stripe_not_configured"})

    author = users.get_user(req.authorId)
    if author is None:
        raise HTTPException(status_code=404, detail={"reason": "author_not_found"})
    viewer_id = user.get("user_id") if user else None
    if viewer_id and viewer_id == author["id"]:
        raise HTTPException(status_code=400, detail={"reason": "cannot_subscribe_to_self"})

    try:
        session = billing_gateway.create_checkout_session(
            product_name="VibeStack Premium Subscription",
            description=f"Unlock all premium posts from {author['handle']}.",
            unit_amount=cfg.SUBSCRIPTION_PRICE_CENTS,
            # Stripe fills in {CHECKOUT_SESSION_ID}; the author page reconciles on return
            success_url=f"{cfg.PUBLIC_BASE_URL}/{quote(author['handle'])}?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{cfg.PUBLIC_BASE_URL}/{quote(author['handle'])}?canceled=true",
            metadata={"authorId": author["id"], "subscriberUserId": viewer_id or ""},
            customer_email=(user or {}).get("email"),
        )
    except Exception:
        log.exception("stripe.checkout.create failed author=%s", author["id"])
        raise HTTPException(status_code=502, detail={"reason": "checkout_failed"})
    if not session.get("url"):
        raise HTTPException(status_code=502, detail={"reason": "checkout_failed"})
    log.info("checkout.created author=%s viewer=%s session=%s", author["id"], viewer_id, session.get("id"))
    return {"url": session["url"]}


@router.post("/plans/pro", response_model=CheckoutResponse)
async def upgrade_to_pro(
    cfg: Settings = Depends(get_settings),
    row: dict = Depends(get_current_profile),
):
    if row["plan"] == "pro":
        raise HTTPException(status_code=409, detail={"reason": "already_pro"})
    if not cfg.STRIPE_SECRET_KEY:
        raise HTTPException(status_code=503, detail={"reason": "stripe_not_configured"})
    try:
        session = billing_gateway.create_checkout_session(
            product_name="VibeStack Pro",
            description="Full vibe engine access and premium features.",
            unit_amount=cfg.PRO_SUBSCRIPTION_PRICE_CENTS,
            success_url=f"{cfg.PUBLIC_BASE_URL}/dashboard?plan=pro",
            cancel_url=f"{cfg.PUBLIC_BASE_URL}/?canceled=true",
            metadata={"planType": "pro", "userId": row["id"]},
            customer_email=None if row["email"].endswith("@no-email.invalid") else row["email"],
        )
    except Exception:
        log.exception("stripe.checkout.create failed plan=pro user=%s", row["id"])
        raise HTTPException(status_code=502, detail={"reason": "checkout_failed"})
    if not session.get("url"):
        raise HTTPException(status_code=502, detail={"reason": "checkout_failed"})
    return {"url": session["url"]}


@router.post("/plans/hobby", response_model=PlanResponse)
async def downgrade_to_hobby(row: dict = Depends(get_current_profile)):
    plans.downgrade_to_hobby(row["id"])
    return {"ok": True, "plan": "hobby"}


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, cfg: Settings = Depends(get_settings)):
    # Only unauthenticated write endpoint; protected by Stripe signature verification
    if not cfg.STRIPE_WEBHOOK_SECRET:
        return JSONResponse({"ok": False, "reason": "stripe_not_configured"}, status_code=400)

    payload = await request.body()
    sig = request.headers.get("stripe-signature")
    try:
        event = billing_gateway.verify_webhook(payload, sig, cfg)
    except billing_gateway.SignatureError as e:
        log.warning("stripe.webhook signature_rejected error=%s", e)
        return JSONResponse({"ok": False}, status_code=400)

    try:
        outcome = reconciliation.handle_webhook_event(event)
    except Exception as e:
        return reconciliation.acknowledge_failed_event(event, e)
    return {"ok": True, "handled": True, "outcome": outcome}
