# visibility_scan/services/providers.py
"""
Provider adapters: one class per AI platform behind a uniform contract.

    answer(question, context) -> ProviderAnswer

Adapters never raise past answer(): transport, auth, parsing failures and
timeouts all come back as a ProviderAnswer with `error` set and empty text.

Per call an adapter:
- enforces its own timeout (asyncio.wait_for, so nothing leaks into the next question)
- retries blank completions up to `empty_retries` extra times with a fixed delay
- records one CostEntry per external model call
- optionally delegates to a fallback adapter when its native search path raises

Platforms:
- chatgpt    OpenAI Responses API with the web_search_preview tool
- claude     Anthropic Messages API (wrapped in SearchAugmentedAdapter for web search)
- gemini     google-genai with Google Search grounding, Tavily fallback
- perplexity sonar-pro through the OpenAI-compatible endpoint, citations as sources
"""
from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from visibility_scan.config import cfg
from visibility_scan.models import BRAND_CATEGORIES, DomainContext, ProbeQuestion, ProviderAnswer, SearchSource
from visibility_scan.services import llm_client
from visibility_scan.services.rate_limiter import allow_platform_request
from visibility_scan.services.search_client import SearchResults, format_search_context, tavily_search

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

EMPTY_RESPONSE_ERROR = "Empty response from API after retries"

SEARCH_SYSTEM_PROMPT = """You are a helpful assistant providing information based on current web search results. When users ask for recommendations or information about businesses and services:
- Be specific and mention actual company/business names when your search results include them
- Include location context when relevant
- Cite your sources when possible
- Be objective and balanced in your recommendations"""

KNOWLEDGE_SYSTEM_PROMPT = (
    "You are a helpful assistant providing information about businesses and services. "
    "When users ask for recommendations, be specific and mention actual company names when relevant. "
    "Provide balanced, informative responses."
)

# Substring in the question / business location -> approximate user location for web search
LOCATION_HINTS: Dict[str, Dict[str, str]] = {
    "sydney": {"country": "AU", "city": "Sydney", "region": "New South Wales"},
    "melbourne": {"country": "AU", "city": "Melbourne", "region": "Victoria"},
    "brisbane": {"country": "AU", "city": "Brisbane", "region": "Queensland"},
    "perth": {"country": "AU", "city": "Perth", "region": "Western Australia"},
    "adelaide": {"country": "AU", "city": "Adelaide", "region": "South Australia"},
    "gold coast": {"country": "AU", "city": "Gold Coast", "region": "Queensland"},
    "canberra": {"country": "AU", "city": "Canberra", "region": "Australian Capital Territory"},
    "australia": {"country": "AU"},
    "new york": {"country": "US", "city": "New York", "region": "New York"},
    "los angeles": {"country": "US", "city": "Los Angeles", "region": "California"},
    "london": {"country": "GB", "city": "London"},
}


def detect_user_location(text: str, fallback_location: Optional[str] = None) -> Optional[Dict[str, str]]:
    """Question text wins over the business location."""
    for candidate in (text, fallback_location):
        lowered = (candidate or "").lower()
        for key, info in LOCATION_HINTS.items():
            if key in lowered:
                return dict(info)
    return None


@dataclass
class Completion:
    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    sources: List[SearchSource] = field(default_factory=list)
    via_search: bool = False


def _dedupe_sources(sources: Iterable[SearchSource]) -> List[SearchSource]:
    seen = set()
    out = []
    for s in sources:
        if s.url and s.url not in seen:
            seen.add(s.url)
            out.append(s)
    return out


def step_label(platform: str, question: ProbeQuestion, via_search: bool = False) -> str:
    if question.category in BRAND_CATEGORIES:
        return f"brand_{question.category.value}_{platform}"
    return f"search_{platform}_tavily" if via_search else f"search_{platform}"


class ProviderAdapter:
    """
    Base adapter. Subclasses implement `_generate`, which may raise freely;
    `answer` owns the retry, timeout, fallback and cost-tracking policy.
    """

    platform: str = "unknown"

    def __init__(self,
                 ledger=None,
                 fallback: Optional["ProviderAdapter"] = None,
                 timeout_secs: Optional[float] = None,
                 empty_retries: int = 2,
                 retry_delay_secs: Optional[float] = None,
                 max_requests_per_minute: Optional[int] = None):
        self.ledger = ledger
        self.fallback = fallback
        self.timeout_secs = timeout_secs if timeout_secs is not None else cfg.PROVIDER_TIMEOUT_SECS
        self.empty_retries = empty_retries
        self.retry_delay_secs = retry_delay_secs if retry_delay_secs is not None else cfg.EMPTY_RETRY_DELAY_SECS
        self.max_requests_per_minute = (max_requests_per_minute if max_requests_per_minute is not None
                                        else cfg.PLATFORM_MAX_REQUESTS_PER_MINUTE)

    async def _generate(self, prompt: str, context: DomainContext, max_tokens: int,
                        system: Optional[str] = None) -> Completion:
        raise NotImplementedError

    def _max_tokens(self, question: ProbeQuestion) -> int:
        return cfg.BRAND_MAX_TOKENS if question.category in BRAND_CATEGORIES else cfg.ANSWER_MAX_TOKENS

    def _elapsed_ms(self, started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    def _errored(self, question: ProbeQuestion, error: str, started: float) -> ProviderAnswer:
        return ProviderAnswer(platform=self.platform, question=question, text="",
                              latency_ms=self._elapsed_ms(started), error=error)

    async def _track(self, completion: Completion, question: ProbeQuestion, context: DomainContext) -> None:
        if self.ledger is None or not context.run_id:
            return
        await self.ledger.record(
            context.run_id,
            step_label(self.platform, question, completion.via_search),
            completion.model,
            completion.input_tokens,
            completion.output_tokens,
        )

    async def _rate_limited(self) -> bool:
        if self.max_requests_per_minute <= 0:
            return False
        allowed = await asyncio.to_thread(allow_platform_request, self.platform, self.max_requests_per_minute, 60)
        return not allowed

    async def _answer_with_retries(self, question: ProbeQuestion, context: DomainContext,
                                   started: float) -> ProviderAnswer:
        max_tokens = self._max_tokens(question)
        for attempt in range(self.empty_retries + 1):
            completion = await asyncio.wait_for(
                self._generate(question.text, context, max_tokens), self.timeout_secs
            )
            await self._track(completion, question, context)
            if completion.text and completion.text.strip():
                return ProviderAnswer(
                    platform=self.platform,
                    question=question,
                    text=completion.text,
                    sources=_dedupe_sources(completion.sources),
                    latency_ms=self._elapsed_ms(started),
                )
            if attempt < self.empty_retries:
                logger.warning("[%s] empty response, retrying (%d/%d)", self.platform, attempt + 1, self.empty_retries)
                await asyncio.sleep(self.retry_delay_secs)
        logger.warning("[%s] %s", self.platform, EMPTY_RESPONSE_ERROR)
        return self._errored(question, EMPTY_RESPONSE_ERROR, started)

    async def answer(self, question: ProbeQuestion, context: DomainContext) -> ProviderAnswer:
        started = time.monotonic()
        try:
            if await self._rate_limited():
                return self._errored(question, f"Rate limit exceeded for {self.platform}", started)
            return await self._answer_with_retries(question, context, started)
        except asyncio.TimeoutError:
            logger.warning("[%s] timed out after %.1fs", self.platform, self.timeout_secs)
            return self._errored(question, f"Timed out after {self.timeout_secs}s", started)
        except Exception as e:
            if self.fallback is not None and context.web_search:
                logger.warning("[%s] native search failed (%s); using fallback", self.platform, e)
                fb = await self.fallback.answer(question, context)
                return fb.model_copy(update={
                    "platform": self.platform,
                    "used_fallback": True,
                    "latency_ms": self._elapsed_ms(started),
                })
            logger.exception("[%s] query failed: %s", self.platform, e)
            return self._errored(question, f"{type(e).__name__}: {e}", started)


def _openai_citations(resp: Any) -> List[SearchSource]:
    sources = []
    for item in getattr(resp, "output", None) or []:
        if getattr(item, "type", None) != "message":
            continue
        for part in getattr(item, "content", None) or []:
            for ann in getattr(part, "annotations", None) or []:
                if getattr(ann, "type", None) == "url_citation" and getattr(ann, "url", None):
                    sources.append(SearchSource(url=ann.url, title=getattr(ann, "title", None)))
    return sources


class ChatGPTAdapter(ProviderAdapter):
    platform = "chatgpt"

    def __init__(self, *args, client=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.client = client

    async def _generate(self, prompt, context, max_tokens, system=None) -> Completion:
        client = self.client or llm_client._init_openai()
        if client is None:
            raise RuntimeError("OpenAI API key not configured")

        if context.web_search:
            tool: Dict[str, Any] = {"type": "web_search_preview", "search_context_size": "high"}
            location = detect_user_location(prompt, context.location)
            if location:
                tool["user_location"] = {"type": "approximate", **location}
            resp = await client.responses.create(
                model=cfg.OPENAI_SEARCH_MODEL,
                instructions=system or SEARCH_SYSTEM_PROMPT,
                input=prompt,
                tools=[tool],
                max_output_tokens=max_tokens,
            )
            usage = llm_client.usage_openai_responses(resp)
            return Completion(
                text=getattr(resp, "output_text", "") or "",
                model=f"openai/{cfg.OPENAI_SEARCH_MODEL}-search",
                sources=_openai_citations(resp),
                **usage,
            )

        resp = await client.chat.completions.create(
            model=cfg.OPENAI_MODEL,
            messages=[
                {"role": "system", "content": system or KNOWLEDGE_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens,
        )
        text = resp.choices[0].message.content if resp.choices else ""
        return Completion(text=text or "", model=f"openai/{cfg.OPENAI_MODEL}",
                          **llm_client.usage_openai_chat(resp))


class ClaudeAdapter(ProviderAdapter):
    """Plain knowledge answers; web search goes through SearchAugmentedAdapter."""

    platform = "claude"

    def __init__(self, *args, client=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.client = client

    async def _generate(self, prompt, context, max_tokens, system=None) -> Completion:
        client = self.client or llm_client._init_anthropic()
        if client is None:
            raise RuntimeError("Anthropic API key not configured")
        resp = await client.messages.create(
            model=cfg.ANTHROPIC_MODEL,
            max_tokens=max_tokens,
            system=system or KNOWLEDGE_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )
        return Completion(text=llm_client.anthropic_text(resp), model=f"anthropic/{cfg.ANTHROPIC_MODEL}",
                          **llm_client.usage_anthropic(resp))


def _gemini_sources(resp: Any) -> List[SearchSource]:
    sources = []
    for cand in (getattr(resp, "candidates", None) or [])[:1]:
        meta = getattr(cand, "grounding_metadata", None)
        for chunk in getattr(meta, "grounding_chunks", None) or []:
            web = getattr(chunk, "web", None)
            if web is not None and getattr(web, "uri", None):
                sources.append(SearchSource(url=web.uri, title=getattr(web, "title", None)))
    return sources


class GeminiAdapter(ProviderAdapter):
    platform = "gemini"

    def __init__(self, *args, client=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.client = client

    async def _generate(self, prompt, context, max_tokens, system=None) -> Completion:
        client = self.client or llm_client._init_genai()
        if client is None:
            raise RuntimeError("Gemini API key not configured")
        from google.genai import types

        tools = [types.Tool(google_search=types.GoogleSearch())] if context.web_search else None
        resp = await client.aio.models.generate_content(
            model=cfg.GEMINI_MODEL,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=system or (SEARCH_SYSTEM_PROMPT if context.web_search else KNOWLEDGE_SYSTEM_PROMPT),
                max_output_tokens=max_tokens,
                tools=tools,
            ),
        )
        model = f"google/{cfg.GEMINI_MODEL}-grounded" if context.web_search else f"google/{cfg.GEMINI_MODEL}"
        return Completion(text=getattr(resp, "text", None) or "", model=model,
                          sources=_gemini_sources(resp) if context.web_search else [],
                          **llm_client.usage_gemini(resp))


class PerplexityAdapter(ProviderAdapter):
    platform = "perplexity"

    def __init__(self, *args, client=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.client = client

    async def _generate(self, prompt, context, max_tokens, system=None) -> Completion:
        client = self.client or llm_client._init_perplexity()
        if client is None:
            raise RuntimeError("Perplexity API key not configured")
        resp = await client.chat.completions.create(
            model=cfg.PERPLEXITY_MODEL,
            messages=[
                {"role": "system", "content": system or SEARCH_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens,
        )
        text = resp.choices[0].message.content if resp.choices else ""
        citations = getattr(resp, "citations", None) or []
        sources = [SearchSource(url=c) for c in citations if isinstance(c, str)]
        return Completion(text=text or "", model=f"perplexity/{cfg.PERPLEXITY_MODEL}", sources=sources,
                          **llm_client.usage_openai_chat(resp))


class SearchUnavailableError(RuntimeError):
    pass


def build_search_prompt(question: str, results: List[Dict[str, Any]]) -> str:
    return (
        "Based on these search results, answer the user's question.\n\n"
        f"SEARCH RESULTS:\n{format_search_context(results)}\n\n"
        f"USER QUESTION: {question}\n\n"
        "Provide a helpful answer based on the search results. "
        "Mention specific businesses and sources when relevant."
    )


class SearchAugmentedAdapter(ProviderAdapter):
    """
    Retrieval path: fetch top-k web results for the question, then ask the
    wrapped model to answer from that context only. Produces the same
    ProviderAnswer shape as the native path.
    """

    def __init__(self, base: ProviderAdapter, *args,
                 search: Optional[Callable[[str], Awaitable[SearchResults]]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.base = base
        self.platform = base.platform
        self.search = search or tavily_search

    async def _generate(self, prompt, context, max_tokens, system=None) -> Completion:
        plain = context.model_copy(update={"web_search": False})
        if not context.web_search:
            return await self.base._generate(prompt, plain, max_tokens, system)

        results = await self.search(prompt)
        if not results.success:
            raise SearchUnavailableError(results.error or "search failed")
        completion = await self.base._generate(build_search_prompt(prompt, results.results), plain,
                                               max_tokens, system or SEARCH_SYSTEM_PROMPT)
        completion.sources = [SearchSource(url=r["url"], title=r.get("title") or None) for r in results.results]
        completion.via_search = True
        return completion


def build_default_registry(ledger=None, platforms: Optional[Iterable[str]] = None) -> Dict[str, ProviderAdapter]:
    """
    Register an adapter for every platform whose credentials are configured.
    `platforms` restricts the result to the named platforms.
    """
    registry: Dict[str, ProviderAdapter] = {}
    has_search = bool(cfg.TAVILY_API_KEY)

    if cfg.OPENAI_API_KEY:
        registry["chatgpt"] = ChatGPTAdapter(ledger=ledger)
    if cfg.ANTHROPIC_API_KEY:
        claude = ClaudeAdapter(ledger=ledger)
        registry["claude"] = SearchAugmentedAdapter(claude, ledger=ledger) if has_search else claude
    if cfg.GEMINI_API_KEY:
        fallback = SearchAugmentedAdapter(GeminiAdapter(), ledger=ledger) if has_search else None
        registry["gemini"] = GeminiAdapter(ledger=ledger, fallback=fallback)
    if cfg.PERPLEXITY_API_KEY:
        registry["perplexity"] = PerplexityAdapter(ledger=ledger)

    if platforms is not None:
        wanted = set(platforms)
        registry = {k: v for k, v in registry.items() if k in wanted}
    if not registry:
        logger.warning("No provider adapters configured; scans will produce empty reports")
    return registry
