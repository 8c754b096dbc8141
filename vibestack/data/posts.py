import datetime as dt
import re
import secrets
import string
from typing import Optional

from sqlalchemy import text

from vibestack.db import engine, utc_iso

_COLS = "id, author_id, title, slug, content, vibe_theme, status, is_paid, published_at, created_at"
_SLUG_ALPHABET = string.ascii_lowercase + string.digits


def make_slug(title: str) -> str:
    base = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-") or "post"
    suffix = "".join(secrets.choice(_SLUG_ALPHABET) for _ in range(6))
    return f"{base}-{suffix}"


def _row_to_post(row) -> dict:
    m = dict(row._mapping)
    m["is_paid"] = bool(m.get("is_paid"))
    return m


def get_post(post_id: int) -> Optional[dict]:
    with engine.begin() as conn:
        row = conn.execute(
            text(f"SELECT {_COLS} FROM posts WHERE id = :id LIMIT 1"), {"id": post_id}
        ).first()
    return _row_to_post(row) if row else None


def create_post(
    author_id: str,
    title: str,
    content: str,
    status: str = "draft",
    vibe_theme: str = "default",
    is_paid: bool = False,
    now: Optional[dt.datetime] = None,
) -> dict:
    params = {
        "author_id": author_id,
        "title": title,
        "slug": make_slug(title),
        "content": content,
        "vibe_theme": vibe_theme,
        "status": status,
        "is_paid": 1 if is_paid else 0,
        "published_at": utc_iso(now) if status == "published" else None,
        "created_at": utc_iso(now),
    }
    with engine.begin() as conn:
        row = conn.execute(
            text(
                "INSERT INTO posts (author_id, title, slug, content, vibe_theme, status, is_paid, published_at, created_at) "
                "VALUES (:author_id, :title, :slug, :content, :vibe_theme, :status, :is_paid, :published_at, :created_at) "
                f"RETURNING {_COLS}"
            ),
            params,
        ).first()
    return _row_to_post(row)


def update_post(post_id: int, fields: dict) -> Optional[dict]:
    """Update the given columns (already validated by the caller)."""
    allowed = {"title", "content", "vibe_theme", "status", "is_paid", "published_at"}
    sets = {k: v for k, v in fields.items() if k in allowed}
    if "is_paid" in sets:
        sets["is_paid"] = 1 if sets["is_paid"] else 0
    if not sets:
        return get_post(post_id)
    assignments = ", ".join(f"{k} = :{k}" for k in sets)
    with engine.begin() as conn:
        row = conn.execute(
            text(f"UPDATE posts SET {assignments} WHERE id = :id RETURNING {_COLS}"),
            {**sets, "id": post_id},
        ).first()
    return _row_to_post(row) if row else None


def delete_post(post_id: int) -> bool:
    with engine.begin() as conn:
        res = conn.execute(text("DELETE FROM posts WHERE id = :id"), {"id": post_id})
        return (res.rowcount or 0) > 0


def count_published_since(author_id: str, since: dt.datetime) -> int:
    with engine.begin() as conn:
        res = conn.execute(
            text(
                "SELECT COUNT(1) FROM posts "
                "WHERE author_id = :aid AND status = 'published' AND published_at >= :since"
            ),
            {"aid": author_id, "since": utc_iso(since)},
        )
        return int(res.scalar() or 0)


def list_published(author_id: str, limit: int = 12, offset: int = 0) -> list[dict]:
    with engine.begin() as conn:
        rows = conn.execute(
            text(
                f"SELECT {_COLS} FROM posts WHERE author_id = :aid AND status = 'published' "
                "ORDER BY published_at DESC LIMIT :limit OFFSET :offset"
            ),
            {"aid": author_id, "limit": limit, "offset": offset},
        ).all()
    return [_row_to_post(r) for r in rows]


def get_published_by_slug(author_id: str, slug: str) -> Optional[dict]:
    with engine.begin() as conn:
        row = conn.execute(
            text(
                f"SELECT {_COLS} FROM posts "
                "WHERE author_id = :aid AND slug = :slug AND status = 'published' LIMIT 1"
            ),
            {"aid": author_id, "slug": slug},
        ).first()
    return _row_to_post(row) if row else None


def teaser(content: str, paragraphs: int = 2, max_chars: int = 350) -> str:
    """Leading paragraphs of a post body, cut at max_chars."""
    blocks = re.split(r"\n\s*\n", (content or "").strip())
    head = "\n\n".join(b for b in blocks[:paragraphs] if b)
    if len(head) > max_chars:
        head = head[:max_chars].rstrip() + "…"
    return head
