from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from vibestack.core.auth import get_optional_user
from vibestack.core.types import AuthorPageResponse, PostPageResponse
from vibestack.data import posts, subscribers, users
from vibestack.routes.posts import post_to_response
from vibestack.services import reconciliation

router = APIRouter(prefix="/api")

POSTS_PER_PAGE = 12


def _author_or_404(handle: str) -> dict:
    author = users.get_user_by_handle(handle)
    if author is None:
        raise HTTPException(status_code=404, detail={"reason": "author_not_found"})
    return author


def _viewer_access(author: dict, user: Optional[dict]) -> tuple[bool, Optional[str]]:
    """(subscribed, unsubscribe token) for the viewer of an author's content."""
    viewer_id = user.get("user_id") if user else None
    viewer_email = user.get("email") if user else None
    if viewer_id and viewer_id == author["id"]:
        return True, None
    row = subscribers.find_active_subscription(author["id"], viewer_id, viewer_email)
    if row:
        return True, row["unsubscribe_token"]
    return False, None


@router.get("/authors/{handle}", response_model=AuthorPageResponse)
async def author_page(
    handle: str,
    session_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    user: Optional[dict] = Depends(get_optional_user),
):
    """Paywall view of an author's page.

    Coming back from checkout carries ?session_id=...; the redirect-path
    reconciler runs first so a just-paid reader isn't locked out while the
    webhook is still in flight.
    """
    author = _author_or_404(handle)

    if session_id:
        reconciliation.reconcile_checkout_redirect(session_id, author["id"], user.get("user_id") if user else None)

    subscribed, token = _viewer_access(author, user)
    page_posts = posts.list_published(author["id"], POSTS_PER_PAGE, (page - 1) * POSTS_PER_PAGE)
    return {
        "authorId": author["id"],
        "handle": author["handle"],
        "subscribed": subscribed,
        "unsubscribeToken": token,
        "posts": [post_to_response(p, reveal=subscribed or not p["is_paid"]) for p in page_posts],
    }


@router.get("/authors/{handle}/posts/{slug}", response_model=PostPageResponse)
async def post_page(handle: str, slug: str, user: Optional[dict] = Depends(get_optional_user)):
    """One published post. Paid posts show only a teaser to non-subscribers."""
    author = _author_or_404(handle)
    post = posts.get_published_by_slug(author["id"], slug)
    if post is None:
        raise HTTPException(status_code=404, detail={"reason": "post_not_found"})

    subscribed, token = _viewer_access(author, user)
    paywalled = post["is_paid"] and not subscribed
    body = post_to_response(post)
    if paywalled:
        body["content"] = posts.teaser(post["content"])
    return {
        "authorId": author["id"],
        "handle": author["handle"],
        "subscribed": subscribed,
        "paywalled": paywalled,
        "unsubscribeToken": token,
        "post": body,
    }
