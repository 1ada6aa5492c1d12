"""LLM Service - relay prompts to OpenRouter, Claude or Gemini for scene code."""

import json
import logging
import time
from typing import AsyncIterator, Optional

import httpx

from forge3d.prompts.system_prompt import SYSTEM_PROMPT
from forge3d.prompts.examples import format_few_shot
from forge3d.services.sandbox_service import extract_code
from forge3d import config

logger = logging.getLogger(__name__)

PROVIDERS = ("openrouter", "claude", "gemini")

_PROVIDER_LABELS = {
    "openrouter": "OpenRouter",
    "claude": "Anthropic",
    "gemini": "Google",
}


class RelayError(Exception):
    """Upstream model unavailable or failed. Carries the HTTP status to report."""

    def __init__(self, status_code: int, error: str, details: Optional[str] = None):
        super().__init__(error if details is None else f"{error}: {details}")
        self.status_code = status_code
        self.error = error
        self.details = details


# ── Lazy Singleton Clients (connection reuse) ─────────────────
_http_client: Optional[httpx.AsyncClient] = None
_claude_client = None
_gemini_client = None


def _get_http_client() -> httpx.AsyncClient:
    """Get or create singleton httpx.AsyncClient for OpenRouter."""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=config.RELAY_TIMEOUT_SECONDS)
        logger.info("HTTP client initialized (singleton)")
    return _http_client


def _get_claude_client():
    """Get or create singleton AsyncAnthropic client."""
    global _claude_client
    if _claude_client is None:
        import anthropic
        _claude_client = anthropic.AsyncAnthropic(api_key=config.ANTHROPIC_API_KEY)
        logger.info("Claude client initialized (singleton)")
    return _claude_client


def _get_gemini_client():
    """Get or create singleton genai.Client."""
    global _gemini_client
    if _gemini_client is None:
        from google import genai
        _gemini_client = genai.Client(api_key=config.GOOGLE_API_KEY)
        logger.info("Gemini client initialized (singleton)")
    return _gemini_client


async def close_clients() -> None:
    """Release pooled connections (called on app shutdown)."""
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


def _api_key(provider: str) -> str:
    return {
        "openrouter": config.OPENROUTER_API_KEY,
        "claude": config.ANTHROPIC_API_KEY,
        "gemini": config.GOOGLE_API_KEY,
    }[provider]


def is_configured(provider: str) -> bool:
    key = _api_key(provider)
    return bool(key) and key != config.PLACEHOLDER_API_KEY


def _require_key(provider: str) -> None:
    if not is_configured(provider):
        raise RelayError(500, f"{_PROVIDER_LABELS[provider]} API key not configured")


def _resolve(provider: Optional[str], model: Optional[str]) -> tuple[str, str]:
    provider = provider or config.DEFAULT_PROVIDER
    if provider not in PROVIDERS:
        raise RelayError(400, f"Unknown provider: {provider}")
    return provider, model or config.DEFAULT_MODELS[provider]


def _system_prompt() -> str:
    return SYSTEM_PROMPT + "\n\n## Examples\n\n" + format_few_shot()


def _user_content(message: str) -> str:
    return f"Create a 3D object: {message}"


def _openrouter_payload(message: str, model: str, stream: bool = False) -> dict:
    payload = {
        "model": config.OPENROUTER_MODELS.get(model, model),
        "messages": [
            {"role": "system", "content": _system_prompt()},
            {"role": "user", "content": _user_content(message)},
        ],
        "temperature": config.TEMPERATURE,
        "max_tokens": config.MAX_TOKENS,
    }
    if stream:
        payload["stream"] = True
    return payload


def _openrouter_headers() -> dict:
    return {
        "Authorization": f"Bearer {config.OPENROUTER_API_KEY}",
        "Content-Type": "application/json",
        "HTTP-Referer": config.OPENROUTER_REFERER,
        "X-Title": config.OPENROUTER_TITLE,
    }


# ── Providers ───────────────────────────────────────────────────


async def complete_openrouter(message: str, model: str) -> str:
    """Chat completion through OpenRouter's OpenAI-compatible endpoint."""
    client = _get_http_client()
    try:
        response = await client.post(
            config.OPENROUTER_URL,
            headers=_openrouter_headers(),
            json=_openrouter_payload(message, model),
        )
    except httpx.HTTPError as e:
        logger.error(f"OpenRouter request failed: {e}")
        raise RelayError(502, "Upstream request failed", str(e)) from e

    if response.status_code >= 400:
        logger.error(f"OpenRouter error: {response.text}")
        raise RelayError(response.status_code, "Failed to generate 3D code", response.text)

    try:
        data = response.json()
    except ValueError as e:
        raise RelayError(502, "Upstream returned invalid JSON", response.text[:500]) from e
    choices = data.get("choices") or [{}]
    return ((choices[0].get("message") or {}).get("content")) or ""


async def complete_claude(message: str, model: str) -> str:
    """Generate scene code using the Claude API."""
    import anthropic

    client = _get_claude_client()
    try:
        response = await client.messages.create(
            model=config.CLAUDE_MODELS.get(model, model),
            max_tokens=config.MAX_TOKENS,
            temperature=config.TEMPERATURE,
            system=_system_prompt(),
            messages=[{"role": "user", "content": _user_content(message)}],
        )
    except anthropic.APIStatusError as e:
        logger.error(f"Claude error: {e}")
        raise RelayError(e.status_code, "Failed to generate 3D code", str(e)) from e
    except anthropic.APIError as e:
        logger.error(f"Claude request failed: {e}")
        raise RelayError(502, "Upstream request failed", str(e)) from e

    return "".join(block.text for block in response.content if getattr(block, "type", "") == "text")


async def complete_gemini(message: str, model: str) -> str:
    """Generate scene code using the Gemini API."""
    from google.genai import errors as genai_errors

    client = _get_gemini_client()
    try:
        response = await client.aio.models.generate_content(
            model=config.GEMINI_MODELS.get(model, model),
            contents=_user_content(message),
            config={
                "system_instruction": _system_prompt(),
                "temperature": config.TEMPERATURE,
                "max_output_tokens": config.MAX_TOKENS,
            },
        )
    except genai_errors.APIError as e:
        logger.error(f"Gemini error: {e}")
        status = e.code if isinstance(e.code, int) and e.code >= 400 else 502
        raise RelayError(status, "Failed to generate 3D code", str(e)) from e
    except httpx.HTTPError as e:
        logger.error(f"Gemini request failed: {e}")
        raise RelayError(502, "Upstream request failed", str(e)) from e

    return response.text or ""


_COMPLETERS = {
    "openrouter": complete_openrouter,
    "claude": complete_claude,
    "gemini": complete_gemini,
}


async def complete(
    message: str,
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> tuple[str, dict]:
    """Send one prompt upstream. Returns (raw_text, metadata). No retries."""
    provider, model = _resolve(provider, model)
    _require_key(provider)

    t0 = time.perf_counter()
    text = await _COMPLETERS[provider](message, model)
    elapsed = time.perf_counter() - t0
    logger.info(f"{provider}/{model} answered in {elapsed:.2f}s ({len(text)} chars)")

    return text, {
        "provider": provider,
        "model": model,
        "llm_time_s": round(elapsed, 3),
    }


async def generate_code(
    message: str,
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> tuple[str, str, dict]:
    """Relay a prompt and strip fencing from the answer.

    Returns (code, raw_text, metadata).
    """
    raw, meta = await complete(message, provider, model)
    return extract_code(raw), raw, meta


# ── Streaming ───────────────────────────────────────────────────


async def stream_openrouter(message: str, model: str) -> AsyncIterator[str]:
    """Stream completion tokens from OpenRouter (server-sent events)."""
    client = _get_http_client()
    try:
        async with client.stream(
            "POST",
            config.OPENROUTER_URL,
            headers=_openrouter_headers(),
            json=_openrouter_payload(message, model, stream=True),
        ) as response:
            if response.status_code >= 400:
                body = (await response.aread()).decode("utf-8", "replace")
                raise RelayError(response.status_code, "Failed to generate 3D code", body)
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError:
                    continue
                choices = chunk.get("choices") or [{}]
                token = (choices[0].get("delta") or {}).get("content")
                if token:
                    yield token
    except httpx.HTTPError as e:
        raise RelayError(502, "Upstream request failed", str(e)) from e


async def stream_claude(message: str, model: str) -> AsyncIterator[str]:
    """Stream scene code tokens from the Claude API."""
    import anthropic

    client = _get_claude_client()
    try:
        async with client.messages.stream(
            model=config.CLAUDE_MODELS.get(model, model),
            max_tokens=config.MAX_TOKENS,
            temperature=config.TEMPERATURE,
            system=_system_prompt(),
            messages=[{"role": "user", "content": _user_content(message)}],
        ) as stream:
            async for text in stream.text_stream:
                yield text
    except anthropic.APIStatusError as e:
        raise RelayError(e.status_code, "Failed to generate 3D code", str(e)) from e
    except anthropic.APIError as e:
        raise RelayError(502, "Upstream request failed", str(e)) from e


async def stream_gemini(message: str, model: str) -> AsyncIterator[str]:
    """Stream scene code tokens from the Gemini API."""
    from google.genai import errors as genai_errors

    client = _get_gemini_client()
    try:
        async for chunk in await client.aio.models.generate_content_stream(
            model=config.GEMINI_MODELS.get(model, model),
            contents=_user_content(message),
            config={
                "system_instruction": _system_prompt(),
                "temperature": config.TEMPERATURE,
                "max_output_tokens": config.MAX_TOKENS,
            },
        ):
            if chunk.text:
                yield chunk.text
    except genai_errors.APIError as e:
        status = e.code if isinstance(e.code, int) and e.code >= 400 else 502
        raise RelayError(status, "Failed to generate 3D code", str(e)) from e
    except httpx.HTTPError as e:
        raise RelayError(502, "Upstream request failed", str(e)) from e


_STREAMERS = {
    "openrouter": stream_openrouter,
    "claude": stream_claude,
    "gemini": stream_gemini,
}


async def stream(
    message: str,
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> AsyncIterator[str]:
    """Stream raw answer text for one prompt."""
    provider, model = _resolve(provider, model)
    _require_key(provider)
    async for token in _STREAMERS[provider](message, model):
        yield token
