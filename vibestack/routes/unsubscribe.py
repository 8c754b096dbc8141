import html
import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Form, HTTPException, Request, status
from fastapi.responses import HTMLResponse

from vibestack.core.config import get_settings
from vibestack.services import unsubscribe
from vibestack.services.rate_limit import allow_ip, client_ip

router = APIRouter(prefix="/api")
log = logging.getLogger(__name__)

_PAGE = (
    "<!doctype html><html><head><meta charset=\"utf-8\"><title>{title}</title></head>"
    '<body style="font-family: sans-serif; max-width: 480px; margin: 60px auto; text-align: center;">'
    "<h1>{title}</h1>{body}</body></html>"
)


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(_PAGE.format(title=html.escape(title), body=body), status_code=status_code)


def _not_found() -> HTMLResponse:
    return _page("Link not found", "<p>This unsubscribe link is invalid or has expired.</p>", 404)


@router.get("/unsubscribe", response_class=HTMLResponse)
async def confirm_unsubscribe(token: Optional[str] = None):
    # Read-only: mail scanners and link prefetchers hit this URL
    if not token:
        return _page("Missing token", "<p>No unsubscribe token was supplied.</p>", 400)
    row = unsubscribe.lookup(token)
    if row is None:
        return _not_found()
    if row["status"] == "unsubscribed":
        return _page("Already unsubscribed", "<p>You will not receive further emails from this author.</p>")
    action = f"/api/unsubscribe?token={quote(token)}"
    body = (
        f"<p>Stop receiving emails at <strong>{html.escape(row['email'])}</strong> "
        "and cancel the paid subscription?</p>"
        f'<form method="post" action="{html.escape(action)}">'
        f'<input type="hidden" name="token" value="{html.escape(token)}"/>'
        '<button type="submit">Unsubscribe</button></form>'
    )
    return _page("Confirm unsubscribe", body)


@router.post("/unsubscribe", response_class=HTMLResponse)
async def perform_unsubscribe(
    request: Request,
    token: Optional[str] = None,
    form_token: Optional[str] = Form(None, alias="token"),
):
    if not await allow_ip(client_ip(request), "unsubscribe", get_settings().UNSUB_RL_PER_MIN):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"reason": "rate_limited_ip", "retry": 60},
        )
    token = token or form_token
    if not token:
        return _page("Missing token", "<p>No unsubscribe token was supplied.</p>", 400)

    outcome = unsubscribe.perform(token)
    if not outcome.found:
        return _not_found()
    log.info("unsubscribe.request changed=%s cancel_failed=%s", outcome.changed, outcome.cancel_failed)
    return _page("Unsubscribed", "<p>You have been unsubscribed. Sorry to see you go.</p>")
