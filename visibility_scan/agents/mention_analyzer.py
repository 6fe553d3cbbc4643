# visibility_scan/agents/mention_analyzer.py
"""
Entity & mention analysis over raw provider answers.

Everything here is synchronous and pure except the LLMCompetitorExtractor
strategy, which is the optional AI pathway for competitor extraction.

Phrase and pattern lists below are heuristics kept as configuration data;
they are expected to misclassify some answers.
"""

from __future__ import annotations
import logging
import math
import re
from typing import Callable, List, Optional, Sequence, Tuple

from visibility_scan.config import cfg
from visibility_scan.models import (
    BRAND_CATEGORIES,
    CompetitorMention,
    MentionResult,
    Positioning,
    ProviderAnswer,
    QuestionCategory,
)
from visibility_scan.services.llm_client import _extract_json_from_text, call_llm

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Tunables
CONTEXT_RADIUS = 30
MAX_REGEX_COMPETITORS = 10
MAX_AI_COMPETITORS = 5
MIN_AI_EXTRACTION_CHARS = 50

CONFIDENCE_BASE = 50
CONFIDENCE_ATTRIBUTE_BONUS = 25
CONFIDENCE_LENGTH_BONUS = 10
CONFIDENCE_PHRASE_BONUS = 5
LONG_ANSWER_CHARS = 500
VERY_LONG_ANSWER_CHARS = 1000

UNKNOWN_PHRASES: Tuple[str, ...] = (
    "i don't have specific information",
    "i don't have specific details",
    "i don't have detailed information",
    "i'm not familiar with",
    "i don't have data about",
    "i cannot find information",
    "no specific information",
    "i'm unable to provide specific",
    "i don't have access to",
    "i don't know about",
    "i'm not aware of",
    "i couldn't find any",
    "no information available",
    "it's best to visit their official website",
    "visit their website directly",
    "contact them directly",
    "check their official website",
    "i don't have real-time",
    "i don't have current information",
    "my knowledge doesn't include",
    "i cannot provide specific details",
)

CONFIDENT_PHRASES: Tuple[str, ...] = (
    "known for",
    "specializes in",
    "recognized for",
    "expertise in",
    "leading provider",
)

# Enumeration order is the tie-break: the stronger family is checked first.
STRONGER_TEMPLATES: Tuple[str, ...] = (
    "{entity} is better",
    "{entity} excels",
    "{entity} offers more",
    "prefer {entity}",
    "recommend {entity}",
    "{entity} stands out",
)

WEAKER_TEMPLATES: Tuple[str, ...] = (
    "{competitor} is better",
    "{competitor} excels",
    "{competitor} is larger",
    "{competitor} has more",
    "recommend {competitor}",
    "{competitor} is more established",
)

COMPETITOR_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"(?:recommend|suggest|consider|try|check out|look at)\s+([A-Z][a-zA-Z0-9]+(?:\s+[A-Z][a-zA-Z0-9]+)?)"),
    re.compile(r"([A-Z][a-zA-Z0-9]+(?:\.[a-z]{2,4})?)\s+(?:is|are|offers|provides)\b"),
    re.compile(r"companies?\s+(?:like|such as)\s+([A-Z][a-zA-Z0-9]+(?:,\s*[A-Z][a-zA-Z0-9]+)*)"),
)

STOP_WORDS = frozenset({"The", "This", "That", "Some", "Many", "Here", "These"})

_TLD_RE = re.compile(r"\.[a-z]{2,}(?:\.[a-z]{2,})*$")


def _normalize_text(text: str) -> str:
    # curly apostrophes would otherwise dodge every phrase in UNKNOWN_PHRASES
    return (text or "").lower().replace("’", "'").replace("‘", "'")


def normalize_domain(domain: str) -> Tuple[str, str]:
    """
    Return (full, bare) for a domain: lowercased full domain without scheme,
    path or leading www., and the bare name with the TLD stripped.
    'https://www.Example.com.au/x' -> ('example.com.au', 'example')
    """
    d = (domain or "").strip().lower()
    d = re.sub(r"^[a-z]+://", "", d)
    d = d.split("/", 1)[0]
    if d.startswith("www."):
        d = d[4:]
    bare = _TLD_RE.sub("", d) if "." in d else d
    bare = bare.split(".")[0] if bare else bare
    return d, bare


def check_domain_mention(text: str, domain: str) -> Tuple[bool, Optional[int]]:
    """
    Case-insensitive search for the full domain, then the bare name.
    Returns (mentioned, position) where position is the third of the
    response (1..3) holding the first occurrence.
    """
    body = _normalize_text(text)
    if not body:
        return False, None
    full, bare = normalize_domain(domain)
    for variation in (full, bare):
        if not variation:
            continue
        index = body.find(variation)
        if index != -1:
            position = math.ceil((index + 1) / len(body) * 3)
            return True, min(max(position, 1), 3)
    return False, None


def contains_unknown_phrase(text: str, phrases: Sequence[str] = UNKNOWN_PHRASES) -> bool:
    body = _normalize_text(text)
    return any(p in body for p in phrases)


def check_entity_recognized(text: str, entity: Optional[str], domain: Optional[str],
                            phrases: Sequence[str] = UNKNOWN_PHRASES) -> bool:
    """The answer names the entity (or its domain) and does not deflect."""
    body = _normalize_text(text)
    names = [n.strip().lower() for n in (entity, domain) if n and n.strip()]
    if not any(n in body for n in names):
        return False
    return not contains_unknown_phrase(body, phrases)


def calculate_confidence(text: str, recognized: bool, attribute: Optional[str] = None,
                         phrases: Sequence[str] = CONFIDENT_PHRASES) -> int:
    if not recognized:
        return 0
    body = _normalize_text(text)
    score = CONFIDENCE_BASE
    if attribute and attribute.strip().lower() in body:
        score += CONFIDENCE_ATTRIBUTE_BONUS
    if len(text) > LONG_ANSWER_CHARS:
        score += CONFIDENCE_LENGTH_BONUS
    if len(text) > VERY_LONG_ANSWER_CHARS:
        score += CONFIDENCE_LENGTH_BONUS
    score += CONFIDENCE_PHRASE_BONUS * sum(1 for p in phrases if p in body)
    return max(0, min(100, score))


def analyze_positioning(text: str, entity: Optional[str], competitor: Optional[str]) -> Positioning:
    if not entity or not competitor:
        return Positioning.NOT_COMPARED
    body = _normalize_text(text)
    e = entity.strip().lower()
    c = competitor.strip().lower()

    if any(t.format(entity=e) in body for t in STRONGER_TEMPLATES):
        return Positioning.STRONGER
    if any(t.format(competitor=c) in body for t in WEAKER_TEMPLATES):
        return Positioning.WEAKER
    if e in body and c in body:
        return Positioning.EQUAL
    return Positioning.NOT_COMPARED


def _context_for(text: str, name: str) -> str:
    idx = text.find(name)
    if idx == -1:
        idx = text.lower().find(name.lower())
    if idx == -1:
        return ""
    start = max(0, idx - CONTEXT_RADIUS)
    end = min(len(text), idx + len(name) + CONTEXT_RADIUS)
    return f"...{text[start:end]}..."


def _accept_name(name: str, domain_base: str) -> bool:
    if not name or name in STOP_WORDS:
        return False
    if domain_base and domain_base in name.lower():
        return False
    return True


def extract_competitors(text: str, domain: str, limit: int = MAX_REGEX_COMPETITORS) -> List[CompetitorMention]:
    """
    Regex-based competitor extraction. Patterns are applied in order; names
    are deduplicated case-insensitively and capped at `limit`.
    """
    if not text:
        return []
    _, domain_base = normalize_domain(domain)
    found: List[CompetitorMention] = []
    seen = set()

    for pattern in COMPETITOR_PATTERNS:
        for match in pattern.finditer(text):
            # "companies like X, Y" yields several names in one capture
            for raw in match.group(1).split(","):
                name = raw.strip()
                key = name.lower()
                if not _accept_name(name, domain_base) or key in seen:
                    continue
                seen.add(key)
                found.append(CompetitorMention(name=name, context=_context_for(text, name)))
    return found[:limit]


class RegexCompetitorExtractor:
    """Default strategy: local regex heuristics."""

    limit = MAX_REGEX_COMPETITORS

    async def extract(self, text: str, domain: str) -> List[CompetitorMention]:
        return extract_competitors(text, domain, self.limit)


def _build_competitor_prompt(text: str, domain: str) -> str:
    return f"""Extract the names of businesses or brands that are recommended or mentioned as options in the answer below.
Do not include {domain} itself, generic words, or platforms such as Google or Yelp.

Return ONLY a JSON array of strings, for example ["Acme Plumbing", "Best Pipes"]. Return [] if there are none.

ANSWER:
\"\"\"{text[:4000]}\"\"\"
"""


class LLMCompetitorExtractor:
    """
    AI pathway: ask a small model for the competitor list. Narrower than the
    regex strategy (cap 5) and skipped for very short answers.
    """

    limit = MAX_AI_COMPETITORS
    step = "competitors_search"

    def __init__(self, llm: Optional[Callable] = None, ledger=None, run_id: Optional[str] = None,
                 provider: str = "openai", model: Optional[str] = None):
        self.llm = llm or call_llm
        self.ledger = ledger
        self.run_id = run_id
        self.provider = provider
        self.model = model or cfg.OPENAI_MINI_MODEL

    async def extract(self, text: str, domain: str) -> List[CompetitorMention]:
        if not text or len(text) < MIN_AI_EXTRACTION_CHARS:
            return []
        try:
            resp = await self.llm(_build_competitor_prompt(text, domain), provider=self.provider,
                                  model=self.model, max_tokens=200, temperature=0.0)
        except Exception as e:
            logger.exception("AI competitor extraction failed: %s", e)
            return []

        if self.ledger is not None and self.run_id:
            usage = resp.get("usage") or {}
            await self.ledger.record(self.run_id, self.step, f"{self.provider}/{self.model}",
                                     usage.get("input_tokens", 0), usage.get("output_tokens", 0))

        parsed = resp.get("structured")
        if parsed is None:
            parsed = _extract_json_from_text(resp.get("text", ""))
        if not isinstance(parsed, list):
            logger.warning("AI competitor extraction returned no array")
            return []

        _, domain_base = normalize_domain(domain)
        out: List[CompetitorMention] = []
        seen = set()
        for item in parsed:
            if not isinstance(item, str):
                continue
            name = item.strip()
            if not _accept_name(name, domain_base) or name.lower() in seen:
                continue
            seen.add(name.lower())
            out.append(CompetitorMention(name=name, context=_context_for(text, name)))
            if len(out) >= self.limit:
                break
        return out


def analyze_answer(answer: ProviderAnswer, domain: str,
                   competitors: Optional[List[CompetitorMention]] = None) -> Optional[MentionResult]:
    """
    Turn one ProviderAnswer into a MentionResult. Errored or blank answers
    carry no signal and yield None. `competitors` lets the caller supply the
    output of an async extraction strategy; regex extraction is used otherwise.
    """
    if not answer.ok:
        return None

    text = answer.text
    question = answer.question
    mentioned, position = check_domain_mention(text, domain)
    if competitors is None:
        competitors = extract_competitors(text, domain)

    recognized = False
    attribute_mentioned = False
    confidence = 0
    positioning = Positioning.NOT_COMPARED

    if question.category in BRAND_CATEGORIES:
        entity = question.tested_entity or question.tested_domain or domain
        recognized = check_entity_recognized(text, entity, question.tested_domain or domain)
        attribute = question.tested_attribute
        if attribute:
            attribute_mentioned = attribute.strip().lower() in _normalize_text(text)
        confidence = calculate_confidence(text, recognized, attribute)
        if question.category == QuestionCategory.COMPETITOR_COMPARE:
            positioning = analyze_positioning(text, entity, question.compared_to)

    return MentionResult(
        platform=answer.platform,
        question=question,
        mentioned=mentioned,
        position=position,
        competitors=competitors,
        entity_recognized=recognized,
        attribute_mentioned=attribute_mentioned,
        confidence_score=confidence,
        positioning=positioning,
    )
