from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from vibestack.core.config import get_settings
from vibestack.core.logging import setup_logging
from vibestack.routes import ai, authors, billing, posts
from vibestack.routes import unsubscribe as unsubscribe_routes
from vibestack.db import init_db

import logging
from starlette.middleware.gzip import GZipMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from vibestack.core.auth import get_current_profile
from vibestack.data.usage import get_ai_usage
from vibestack.services.plans import audience_summary
from vibestack.db import engine

setup_logging()
init_db()
cfg = get_settings()
app = FastAPI(
    title="VibeStack",
    version="1.0",
    docs_url="/docs" if cfg.ENABLE_SWAGGER else None,
    redoc_url="/redoc" if cfg.ENABLE_SWAGGER else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cfg.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
    expose_headers=["X-AI-Usage-Calls", "X-AI-Usage-Limit", "X-AI-Usage-Reset"],
)
app.add_middleware(GZipMiddleware, minimum_size=500)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("X-Frame-Options", "DENY")
        if get_settings().ENABLE_HSTS:
            response.headers.setdefault(
                "Strict-Transport-Security",
                "max-age=63072000; includeSubDomains; preload",
            )
        return response


app.add_middleware(SecurityHeadersMiddleware)


@app.get("/api/me")
async def me(profile=Depends(get_current_profile)):
    usage = get_ai_usage(profile["id"], profile["plan"])
    logging.getLogger(__name__).info("/api/me user=%s plan=%s", profile["id"], profile["plan"])
    return {
        "userId": profile["id"],
        "email": profile["email"],
        "handle": profile["handle"],
        "plan": profile["plan"],
        "aiUsage": usage.as_body(),
        "audience": audience_summary(profile["id"], profile["plan"]),
    }


@app.get("/healthz")
async def healthz():
    return {"ok": True}


app.include_router(billing.router)
app.include_router(authors.router)
app.include_router(posts.router)
app.include_router(ai.router)
app.include_router(unsubscribe_routes.router)


@app.get("/api/_db/health")
async def db_health(request: Request):
    """Lightweight DB probe. Optionally protected by X-Health-Token when HEALTH_TOKEN is set."""
    required = get_settings().HEALTH_TOKEN
    if required:
        provided = request.headers.get("x-health-token")
        if not provided or provided != required:
            return JSONResponse({"ok": False}, status_code=401)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"ok": True}
    except Exception:
        logging.getLogger(__name__).exception("db.health failed")
        return JSONResponse({"ok": False}, status_code=500)
