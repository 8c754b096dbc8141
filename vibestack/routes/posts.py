import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from vibestack.core.auth import get_current_profile
from vibestack.core.types import CreatePostRequest, PostResponse, UpdatePostRequest
from vibestack.data import posts
from vibestack.db import utc_iso
from vibestack.services.mailer import notify_subscribers_of_post
from vibestack.services.rate_limit import check_publish_rate_limit

router = APIRouter(prefix="/api")
log = logging.getLogger(__name__)


def post_to_response(p: dict, reveal: bool = True) -> dict:
    return {
        "id": p["id"],
        "authorId": p["author_id"],
        "title": p["title"],
        "slug": p["slug"],
        "content": p["content"] if reveal else None,
        "vibe": p.get("vibe_theme"),
        "status": p["status"],
        "isPaid": bool(p["is_paid"]),
        "publishedAt": p.get("published_at"),
        "createdAt": p.get("created_at"),
    }


def _rate_limited(author_id: str):
    limit = check_publish_rate_limit(author_id)
    if limit is None:
        return None
    return JSONResponse(limit.as_detail(), status_code=status.HTTP_429_TOO_MANY_REQUESTS)


@router.post("/posts", response_model=PostResponse)
async def create_post(
    req: CreatePostRequest,
    bg: BackgroundTasks,
    author: dict = Depends(get_current_profile),
):
    vibe = req.vibe if author["plan"] == "pro" else "neutral"

    if req.status == "published":
        limited = _rate_limited(author["id"])
        if limited is not None:
            return limited

    post = posts.create_post(
        author["id"], req.title, req.content, status=req.status, vibe_theme=vibe, is_paid=req.isPaid
    )
    if post["status"] == "published":
        bg.add_task(notify_subscribers_of_post, author["id"], author["handle"], post["title"], post["content"] or "")
    log.info("posts.create author=%s post=%s status=%s", author["id"], post["id"], post["status"])
    return post_to_response(post)


@router.put("/posts/{post_id}", response_model=PostResponse)
async def update_post(
    post_id: int,
    req: UpdatePostRequest,
    bg: BackgroundTasks,
    author: dict = Depends(get_current_profile),
):
    existing = posts.get_post(post_id)
    if existing is None or existing["author_id"] != author["id"]:
        raise HTTPException(status_code=404, detail={"reason": "post_not_found"})

    publishing = req.status == "published" and existing["status"] == "draft"
    if publishing:
        limited = _rate_limited(author["id"])
        if limited is not None:
            return limited

    fields = {}
    if req.title is not None:
        fields["title"] = req.title
    if req.content is not None:
        fields["content"] = req.content
    if req.status is not None:
        fields["status"] = req.status
    if req.isPaid is not None:
        fields["is_paid"] = req.isPaid
    fields["vibe_theme"] = (req.vibe or existing["vibe_theme"]) if author["plan"] == "pro" else "neutral"
    if publishing:
        fields["published_at"] = utc_iso()

    post = posts.update_post(post_id, fields)
    if post is None:
        raise HTTPException(status_code=404, detail={"reason": "post_not_found"})
    if publishing:
        bg.add_task(notify_subscribers_of_post, author["id"], author["handle"], post["title"], post["content"] or "")
    return post_to_response(post)


@router.delete("/posts/{post_id}")
async def delete_post(post_id: int, author: dict = Depends(get_current_profile)):
    existing = posts.get_post(post_id)
    if existing is None or existing["author_id"] != author["id"]:
        raise HTTPException(status_code=404, detail={"reason": "post_not_found"})
    posts.delete_post(post_id)
    return {"ok": True}
