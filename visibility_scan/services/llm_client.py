"""
visibility_scan/services/llm_client.py

Unified async LLM client for OpenAI, Anthropic, Google Gemini (google-genai)
and Perplexity (OpenAI-compatible endpoint).

Design goals:
- Single call_llm() API used by the question generator, employer research,
  profile analysis and AI competitor extraction.
- Lazily constructed SDK clients so importing this module never needs keys.
- Return a consistent structure:
    {
      "text": "<best text output>",
      "raw": <raw provider response object>,
      "structured": <parsed JSON if the text carried a JSON blob, else None>,
      "provider": "openai" | "anthropic" | "gemini" | "perplexity",
      "model": "<model name>",
      "usage": {"input_tokens": int, "output_tokens": int}
    }

Provider adapters (services/providers.py) reuse the client initialisers and
usage helpers below but talk to the search-enabled endpoints directly.
"""

from __future__ import annotations
import asyncio
import json
import logging
import re
from typing import Any, Dict, Optional

from visibility_scan.config import cfg

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

_openai_client = None
_anthropic_client = None
_genai_client = None
_perplexity_client = None

PROVIDERS = ("openai", "anthropic", "gemini", "perplexity")

# platform name used by the dispatcher -> call_llm provider
PLATFORM_PROVIDERS = {
    "chatgpt": "openai",
    "claude": "anthropic",
    "gemini": "gemini",
    "perplexity": "perplexity",
}


def _init_openai():
    global _openai_client
    if _openai_client is not None:
        return _openai_client
    if not cfg.OPENAI_API_KEY:
        return None
    from openai import AsyncOpenAI
    _openai_client = AsyncOpenAI(api_key=cfg.OPENAI_API_KEY)
    logger.debug("OpenAI client initialized")
    return _openai_client


def _init_anthropic():
    global _anthropic_client
    if _anthropic_client is not None:
        return _anthropic_client
    if not cfg.ANTHROPIC_API_KEY:
        return None
    from anthropic import AsyncAnthropic
    _anthropic_client = AsyncAnthropic(api_key=cfg.ANTHROPIC_API_KEY)
    logger.debug("Anthropic client initialized")
    return _anthropic_client


def _init_genai():
    global _genai_client
    if _genai_client is not None:
        return _genai_client
    if not cfg.GEMINI_API_KEY:
        return None
    from google import genai
    _genai_client = genai.Client(api_key=cfg.GEMINI_API_KEY)
    logger.debug("google.genai client initialized")
    return _genai_client


def _init_perplexity():
    global _perplexity_client
    if _perplexity_client is not None:
        return _perplexity_client
    if not cfg.PERPLEXITY_API_KEY:
        return None
    from openai import AsyncOpenAI
    _perplexity_client = AsyncOpenAI(api_key=cfg.PERPLEXITY_API_KEY, base_url=cfg.PERPLEXITY_BASE_URL)
    logger.debug("Perplexity client initialized")
    return _perplexity_client


def _extract_json_from_text(text: str) -> Optional[Any]:
    """
    Try to extract a JSON object/array from the given text.
    Returns parsed JSON or None.
    """
    if not text or not isinstance(text, str):
        return None
    s = text.strip()
    # strip markdown fences
    s = re.sub(r"^```(?:json)?\s*|\s*```$", "", s)

    candidates = []
    for open_c, close_c in (("{", "}"), ("[", "]")):
        start = s.find(open_c)
        end = s.rfind(close_c)
        if start != -1 and end != -1 and end > start:
            candidates.append((start, s[start:end + 1]))
    # whichever structure opens first is the outer one
    for _, fragment in sorted(candidates, key=lambda c: c[0]):
        try:
            return json.loads(fragment)
        except ValueError:
            cleaned = re.sub(r",\s*([}\]])", r"\1", fragment)
            try:
                return json.loads(cleaned)
            except ValueError:
                continue
    return None


def usage_openai_chat(resp: Any) -> Dict[str, int]:
    usage = getattr(resp, "usage", None)
    return {
        "input_tokens": int(getattr(usage, "prompt_tokens", 0) or 0),
        "output_tokens": int(getattr(usage, "completion_tokens", 0) or 0),
    }


def usage_openai_responses(resp: Any) -> Dict[str, int]:
    usage = getattr(resp, "usage", None)
    return {
        "input_tokens": int(getattr(usage, "input_tokens", 0) or 0),
        "output_tokens": int(getattr(usage, "output_tokens", 0) or 0),
    }


def usage_anthropic(resp: Any) -> Dict[str, int]:
    usage = getattr(resp, "usage", None)
    return {
        "input_tokens": int(getattr(usage, "input_tokens", 0) or 0),
        "output_tokens": int(getattr(usage, "output_tokens", 0) or 0),
    }


def usage_gemini(resp: Any) -> Dict[str, int]:
    usage = getattr(resp, "usage_metadata", None)
    return {
        "input_tokens": int(getattr(usage, "prompt_token_count", 0) or 0),
        "output_tokens": int(getattr(usage, "candidates_token_count", 0) or 0),
    }


def anthropic_text(resp: Any) -> str:
    parts = []
    for block in getattr(resp, "content", None) or []:
        if getattr(block, "type", None) == "text":
            parts.append(getattr(block, "text", "") or "")
    return "".join(parts)


def default_model(provider: str) -> str:
    return {
        "openai": cfg.OPENAI_MODEL,
        "anthropic": cfg.ANTHROPIC_MODEL,
        "gemini": cfg.GEMINI_MODEL,
        "perplexity": cfg.PERPLEXITY_MODEL,
    }[provider]


def default_provider() -> str:
    if cfg.OPENAI_API_KEY:
        return "openai"
    if cfg.ANTHROPIC_API_KEY:
        return "anthropic"
    if cfg.GEMINI_API_KEY:
        return "gemini"
    raise RuntimeError("No LLM provider configured (set OPENAI_API_KEY, ANTHROPIC_API_KEY or GEMINI_API_KEY)")


async def call_llm(prompt: str,
                   provider: Optional[str] = None,
                   model: Optional[str] = None,
                   system: Optional[str] = None,
                   max_tokens: int = 1024,
                   temperature: float = 0.0,
                   timeout: Optional[float] = None) -> Dict[str, Any]:
    """
    Unified async LLM call (plain generation, no web search).

    Raises RuntimeError when the provider is not configured, ValueError for an
    unknown provider, asyncio.TimeoutError on timeout, and whatever the SDK
    raises on transport failures. Callers decide how to degrade.
    """
    chosen = (provider or default_provider()).lower()
    if chosen not in PROVIDERS:
        raise ValueError(f"Unsupported provider: {chosen}")
    model = model or default_model(chosen)
    result: Dict[str, Any] = {"text": "", "raw": None, "structured": None, "provider": chosen,
                              "model": model, "usage": {"input_tokens": 0, "output_tokens": 0}}

    async def _call():
        if chosen in ("openai", "perplexity"):
            client = _init_openai() if chosen == "openai" else _init_perplexity()
            if not client:
                raise RuntimeError(f"{chosen} client not available (API key missing)")
            messages = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})
            resp = await client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            result["raw"] = resp
            if resp.choices:
                result["text"] = resp.choices[0].message.content or ""
            result["usage"] = usage_openai_chat(resp)

        elif chosen == "anthropic":
            client = _init_anthropic()
            if not client:
                raise RuntimeError("anthropic client not available (API key missing)")
            kwargs: Dict[str, Any] = {
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": [{"role": "user", "content": prompt}],
            }
            if system:
                kwargs["system"] = system
            resp = await client.messages.create(**kwargs)
            result["raw"] = resp
            result["text"] = anthropic_text(resp)
            result["usage"] = usage_anthropic(resp)

        else:
            client = _init_genai()
            if not client:
                raise RuntimeError("gemini client not available (API key missing)")
            from google.genai import types
            resp = await client.aio.models.generate_content(
                model=model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    system_instruction=system,
                    max_output_tokens=max_tokens,
                    temperature=temperature,
                ),
            )
            result["raw"] = resp
            result["text"] = getattr(resp, "text", None) or ""
            result["usage"] = usage_gemini(resp)

    if timeout:
        await asyncio.wait_for(_call(), timeout)
    else:
        await _call()

    result["structured"] = _extract_json_from_text(result["text"])
    return result
