import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from vibestack.adapters.llm import (
    Adapter,
    LLMResult,
    OpenAIAdapter,
    colors_prompt,
    parse_color_scheme,
    rewrite_prompt,
    summarize_prompt,
)
from vibestack.core.auth import get_current_profile
from vibestack.core.config import Settings, get_settings
from vibestack.core.types import (
    AiColorsRequest,
    AiRewriteRequest,
    AiSummarizeRequest,
    AiTextResponse,
    ColorScheme,
    UsageResponse,
)
from vibestack.data.usage import UsageResult, consume_ai_call, get_ai_usage
from vibestack.services.plans import get_ai_text_limit

router = APIRouter(prefix="/api/ai")
log = logging.getLogger(__name__)


def get_adapter(cfg: Settings = Depends(get_settings)) -> Adapter:
    if not cfg.OPENAI_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"reason": "ai_not_configured"},
        )
    return OpenAIAdapter(api_key=cfg.OPENAI_API_KEY, model=cfg.AI_MODEL)


def _check_text_length(profile: dict, *texts: Optional[str]) -> None:
    # Checked before metering so an oversized request costs nothing
    limit = get_ai_text_limit(profile["plan"])
    size = sum(len(t or "") for t in texts)
    if size > limit:
        raise HTTPException(
            status_code=413,
            detail={"reason": "text_too_long", "limit": limit, "length": size},
        )


def _quota_exceeded(usage: UsageResult) -> JSONResponse:
    return JSONResponse(
        usage.as_body(),
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        headers=usage.as_headers(),
    )


async def _generate(adapter: Adapter, prompt: str, cfg: Settings, profile: dict, op: str) -> LLMResult:
    # The call is already metered; a failed provider call is not refunded
    try:
        result = await adapter.generate(prompt, cfg.AI_MAX_OUTPUT_TOKENS)
    except Exception:
        log.exception("ai.%s provider_failed user=%s", op, profile["id"])
        raise HTTPException(status_code=502, detail={"reason": "ai_provider_failed"})
    if not (result.text or "").strip():
        log.warning("ai.%s empty_output user=%s model=%s", op, profile["id"], result.model)
        raise HTTPException(status_code=502, detail={"reason": "ai_empty_output"})
    log.info(
        "ai.%s user=%s model=%s latency_ms=%d tokens_in=%d tokens_out=%d",
        op,
        profile["id"],
        result.model,
        result.latency_ms,
        result.prompt_tokens,
        result.completion_tokens,
    )
    return result


@router.post("/rewrite", response_model=AiTextResponse)
async def rewrite(
    req: AiRewriteRequest,
    cfg: Settings = Depends(get_settings),
    adapter: Adapter = Depends(get_adapter),
    profile: dict = Depends(get_current_profile),
):
    _check_text_length(profile, req.text)
    usage = consume_ai_call(profile["id"], profile["plan"])
    if not usage.allowed:
        return _quota_exceeded(usage)
    result = await _generate(adapter, rewrite_prompt(req.text, req.vibe), cfg, profile, "rewrite")
    return JSONResponse(
        {"text": result.text.strip(), "model": result.model}, headers=usage.as_headers()
    )


@router.post("/summarize", response_model=AiTextResponse)
async def summarize(
    req: AiSummarizeRequest,
    cfg: Settings = Depends(get_settings),
    adapter: Adapter = Depends(get_adapter),
    profile: dict = Depends(get_current_profile),
):
    _check_text_length(profile, req.text)
    usage = consume_ai_call(profile["id"], profile["plan"])
    if not usage.allowed:
        return _quota_exceeded(usage)
    result = await _generate(adapter, summarize_prompt(req.text), cfg, profile, "summarize")
    return JSONResponse(
        {"text": result.text.strip(), "model": result.model}, headers=usage.as_headers()
    )


@router.post("/colors", response_model=ColorScheme)
async def colors(
    req: AiColorsRequest,
    cfg: Settings = Depends(get_settings),
    adapter: Adapter = Depends(get_adapter),
    profile: dict = Depends(get_current_profile),
):
    _check_text_length(profile, req.title, req.content)
    usage = consume_ai_call(profile["id"], profile["plan"])
    if not usage.allowed:
        return _quota_exceeded(usage)
    result = await _generate(adapter, colors_prompt(req.vibe, req.title, req.content), cfg, profile, "colors")
    scheme = parse_color_scheme(result.text)
    if scheme is None:
        log.warning("ai.colors unparseable user=%s raw=%r", profile["id"], result.text[:200])
        raise HTTPException(status_code=502, detail={"reason": "ai_invalid_colors"})
    return JSONResponse(scheme, headers=usage.as_headers())


@router.get("/usage", response_model=UsageResponse)
async def usage(profile: dict = Depends(get_current_profile)):
    current = get_ai_usage(profile["id"], profile["plan"])
    return JSONResponse(current.as_body(), headers=current.as_headers())
