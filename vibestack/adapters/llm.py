import json
import re
import time
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from openai import AsyncOpenAI, BadRequestError

log = logging.getLogger("adapter")


@dataclass
class LLMResult:
    text: str
    model: str
    response_id: Optional[str]
    prompt_tokens: int
    completion_tokens: int
    latency_ms: int
    retry_count: int


class Adapter(Protocol):
    async def generate(self, prompt: str, max_tokens: int) -> LLMResult: ...


def _is_reasoning_model(model: str) -> bool:
    return model.startswith("gpt-5") or re.match(r"^o\d", model) is not None


def _extract_text(resp_obj) -> str:
    """Text from a Responses API result: output_text first, then message blocks."""
    t = getattr(resp_obj, "output_text", None)
    if isinstance(t, str) and t.strip():
        return t
    fragments = []
    for item in getattr(resp_obj, "output", None) or []:
        if getattr(item, "type", None) == "reasoning":
            continue
        for block in getattr(item, "content", None) or []:
            s = getattr(block, "text", None)
            if isinstance(s, str) and s.strip():
                fragments.append(s.strip())
    return "\n".join(fragments)


def _gi(obj, *names) -> int:
    for n in names:
        v = getattr(obj, n, None)
        if isinstance(v, (int, float)):
            return int(v)
    return 0


class OpenAIAdapter:
    def __init__(self, client: Optional[AsyncOpenAI] = None, api_key: Optional[str] = None, model: str = "gpt-5-mini"):
        # Prefer an injected client (useful for tests); otherwise construct here.
        if client is not None:
            self._client = client
        else:
            self._client = AsyncOpenAI(api_key=api_key) if api_key else AsyncOpenAI()
        self.model = model

    async def generate(self, prompt: str, max_tokens: int) -> LLMResult:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "input": prompt,
            "max_output_tokens": max_tokens,
        }
        if _is_reasoning_model(self.model):
            kwargs["reasoning"] = {"effort": "low"}

        t0 = time.perf_counter()
        retry_count = 0
        try:
            resp = await self._client.responses.create(**kwargs)
        except BadRequestError as e:
            # Strip the reasoning knob once for models that reject it
            msg = str(e)
            if "reasoning" in kwargs and ("reasoning" in msg or "effort" in msg):
                kwargs.pop("reasoning", None)
                retry_count = 1
                resp = await self._client.responses.create(**kwargs)
            else:
                raise

        text = _extract_text(resp)
        if not text:
            log.warning("adapter.extract_text.empty model=%s", self.model)
        u = getattr(resp, "usage", None)
        return LLMResult(
            text=text,
            model=self.model,
            response_id=getattr(resp, "id", None),
            prompt_tokens=_gi(u, "input_tokens", "prompt_tokens") if u else 0,
            completion_tokens=_gi(u, "output_tokens", "completion_tokens") if u else 0,
            latency_ms=int((time.perf_counter() - t0) * 1000),
            retry_count=retry_count,
        )


# --- Prompts -----------------------------------------------------------------


def rewrite_prompt(text: str, vibe: str) -> str:
    return (
        f'You are an elite copywriter. Rewrite the following text to perfectly match a "{vibe}" tone.\n'
        "Keep the core message intact, but adapt the vocabulary, pacing, and aesthetic to fit the mood.\n"
        "Return ONLY the rewritten text, no conversational filler.\n\n"
        f"Original Text:\n{text}"
    )


def summarize_prompt(text: str) -> str:
    return (
        "Summarize the following text into a punchy, highly engaging TL;DR.\n"
        "Keep it concise (1-2 sentences maximum). Return ONLY the summary.\n\n"
        f"Text to summarize:\n{text}"
    )


def colors_prompt(vibe: str, title: str | None, content: str | None) -> str:
    context = (content or "")[:500] or "General newsletter"
    return (
        "Generate a 3-color scheme (background, main text, and primary accent) that captures a "
        f'"{vibe}" vibe for a newsletter post titled "{title or "Untitled"}". Post context: "{context}".\n'
        "Ensure the text has high contrast against the background. Reply with JSON only, shaped as "
        '{"background": "#rrggbb", "text": "#rrggbb", "primary": "#rrggbb"}.'
    )


_HEX = re.compile(r"^#[0-9a-fA-F]{6}$")


def parse_color_scheme(raw: str) -> Optional[dict]:
    """Pull the first JSON object out of the reply and validate its three hex colors."""
    start, end = raw.find("{"), raw.rfind("}")
    if start < 0 or end <= start:
        return None
    try:
        obj = json.loads(raw[start : end + 1])
    except ValueError:
        return None
    if not isinstance(obj, dict):
        return None
    out = {k: obj.get(k) for k in ("background", "text", "primary")}
    if all(isinstance(v, str) and _HEX.match(v) for v in out.values()):
        return out
    return None
