"""
visibility_scan/agents/question_generator.py

Probe question generation for visibility scans.

Behavior:
- One guarded LLM call proposes 10 natural customer questions for the business.
- The response is parsed into a tagged result: ParseSuccess(questions) or
  ParseFailure(reason). Any failure (LLM error, no JSON, no usable items)
  falls back to a deterministic template set with no external call, which
  always yields exactly 10 questions.
- Location enforcement: when the profile knows a location, every
  general/service/comparison/recommendation question carries a location
  string; with several service locations each one appears in at least two
  questions.
- Brand-awareness variant: direct recall, service checks, competitor compare.
"""

from __future__ import annotations
import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Union

from visibility_scan.models import (
    LOCATION_BOUND_CATEGORIES,
    BusinessProfile,
    ProbeQuestion,
    QuestionCategory,
)
from visibility_scan.services.llm_client import _extract_json_from_text, call_llm

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

QUESTION_COUNT = 10
MIN_QUESTIONS_PER_LOCATION = 2
MAX_SERVICE_CHECKS = 3
GENERATION_MAX_TOKENS = 1500
GENERATION_STEP = "generate_prompts"

GENERATED_CATEGORIES = (
    QuestionCategory.GENERAL,
    QuestionCategory.LOCATION,
    QuestionCategory.SERVICE,
    QuestionCategory.COMPARISON,
    QuestionCategory.RECOMMENDATION,
)


@dataclass
class ParseSuccess:
    questions: List[ProbeQuestion]


@dataclass
class ParseFailure:
    reason: str


ParseResult = Union[ParseSuccess, ParseFailure]


# (category, text with location, category without location, text without location)
# {where} expands to " in <location>" or "" so every located variant embeds the location.
FALLBACK_TEMPLATES = [
    (QuestionCategory.GENERAL, "What companies offer {business_type} services{where}?",
     QuestionCategory.GENERAL, "What companies offer {business_type} services?"),
    (QuestionCategory.RECOMMENDATION, "Can you recommend a good {business_type}{where}?",
     QuestionCategory.RECOMMENDATION, "Can you recommend a good {business_type}?"),
    (QuestionCategory.SERVICE, "I'm looking for {service} help{where}. Who should I contact?",
     QuestionCategory.SERVICE, "I'm looking for {service} help. Who should I contact?"),
    (QuestionCategory.COMPARISON, "What are the best {business_type} companies{where}?",
     QuestionCategory.COMPARISON, "What are the best {business_type} companies?"),
    (QuestionCategory.SERVICE, "Who provides {service} services{where}?",
     QuestionCategory.SERVICE, "Who provides {service} services?"),
    (QuestionCategory.LOCATION, "Who is the best {business_type} in {location}?",
     QuestionCategory.GENERAL, "Which {business_type} has the best reviews?"),
    (QuestionCategory.LOCATION, "Can you recommend {service} providers in {location}?",
     QuestionCategory.RECOMMENDATION, "Can you recommend {service} providers near me?"),
    (QuestionCategory.LOCATION, "I need a {business_type} near {location}",
     QuestionCategory.SERVICE, "I have a problem that needs {service}. Where do I start?"),
    (QuestionCategory.GENERAL, "What should I look for when choosing a {business_type}{where}?",
     QuestionCategory.GENERAL, "What should I look for when choosing a {business_type}?"),
    (QuestionCategory.RECOMMENDATION, "How do I find a reliable {service} provider{where}?",
     QuestionCategory.RECOMMENDATION, "How do I find a reliable {service} provider?"),
]

# replaces the plain comparison template when a competitor is known
COMPETITOR_TEMPLATE = "Are there better {business_type} options than {competitor}{where}?"
COMPARISON_SLOT = 3

LOCATION_TOP_UP_TEMPLATES = [
    "Who is the best {business_type} in {location}?",
    "Can you recommend {service} providers in {location}?",
    "I need a {business_type} near {location}",
]


def _slots(profile: BusinessProfile) -> dict:
    business_type = (profile.business_type or "").strip() or "business"
    service = profile.services[0] if profile.services else business_type
    return {"business_type": business_type, "service": service}


def fallback_questions(profile: BusinessProfile, top_competitor: Optional[str] = None) -> List[ProbeQuestion]:
    """
    Deterministic template set: exactly QUESTION_COUNT questions built from
    business_type / first service / location substitution. Locations rotate
    across questions when the profile lists several.
    """
    slots = _slots(profile)
    locations = profile.all_locations()
    questions: List[ProbeQuestion] = []

    for i, (cat, located, plain_cat, plain) in enumerate(FALLBACK_TEMPLATES[:QUESTION_COUNT]):
        if locations:
            location = locations[i % len(locations)]
            values = dict(slots, location=location, where=f" in {location}")
            template, category = located, cat
        else:
            values = dict(slots, location="", where="")
            template, category = plain, plain_cat
        if top_competitor and i == COMPARISON_SLOT:
            template, category = COMPETITOR_TEMPLATE, QuestionCategory.COMPARISON
            values["competitor"] = top_competitor
        questions.append(ProbeQuestion(text=template.format(**values), category=category))
    return questions


def _mentions_any(text: str, locations: List[str]) -> bool:
    # verbatim: "sydney, australia" does not count for "Sydney, Australia"
    return any(loc in text for loc in locations)


def _append_location(text: str, location: str) -> str:
    m = re.match(r"^(.*?)([?.!]*)$", text.strip(), re.S)
    body, punct = (m.group(1), m.group(2)) if m else (text.strip(), "")
    return f"{body} in {location}{punct}"


def enforce_locations(questions: List[ProbeQuestion], profile: BusinessProfile) -> List[ProbeQuestion]:
    """
    Guarantee location coverage on generated questions:
    - location-bound categories without any location get the primary location appended
    - with multiple locations, top up so each appears in at least two questions
    """
    locations = profile.all_locations()
    if not locations:
        return list(questions)

    out: List[ProbeQuestion] = []
    for q in questions:
        if q.category in LOCATION_BOUND_CATEGORIES and not _mentions_any(q.text, locations):
            q = q.model_copy(update={"text": _append_location(q.text, locations[0])})
        out.append(q)

    if len(locations) > 1:
        slots = _slots(profile)
        for location in locations:
            count = sum(1 for q in out if location in q.text)
            i = 0
            while count < MIN_QUESTIONS_PER_LOCATION:
                template = LOCATION_TOP_UP_TEMPLATES[i % len(LOCATION_TOP_UP_TEMPLATES)]
                out.append(ProbeQuestion(text=template.format(location=location, **slots),
                                         category=QuestionCategory.LOCATION))
                count += 1
                i += 1
    return out


def _build_llm_prompt(profile: BusinessProfile, domain: str, top_competitor: Optional[str]) -> str:
    locations = profile.all_locations()
    location_text = ", ".join(locations) if locations else "Not specified"
    prompt = f"""
You are helping generate search prompts to test if AI assistants (ChatGPT, Claude, Gemini, Perplexity) will recommend a specific business.

Business Details:
- Name: {profile.business_name or domain}
- Type: {profile.business_type}
- Services: {", ".join(profile.services) or "Not specified"}
- Location(s): {location_text}
- Target Audience: {profile.target_audience or "Not specified"}
- Industry: {profile.industry}
- Key Phrases: {", ".join(profile.key_phrases) or "None"}
- Main competitor: {top_competitor or "Unknown"}

Generate exactly {QUESTION_COUNT} prompts that a potential customer might ask an AI assistant when looking for this type of business.
The prompts should be natural questions someone would ask. Never mention the business name itself.

Categories to cover:
1. General discovery (2-3 prompts): "What companies offer X?"
2. Location-specific (2-3 prompts): "Who provides X in [location]?"
3. Service-specific (2-3 prompts): "I need help with [specific service]"
4. Comparison (1-2 prompts): "What are the best [business type] companies?"
5. Recommendation (1-2 prompts): "Can you recommend a [business type]?"

Rules:
- If a location is known, EVERY prompt must include one of the locations verbatim.
- If several locations are listed, use each one in at least two prompts.
- Focus on problems the business solves and vary the phrasing.

Respond ONLY with a JSON array of objects, each with:
- "text": the prompt text
- "category": one of "general", "location", "service", "comparison", "recommendation"
"""
    return prompt.strip()


def _coerce_category(value: Any) -> QuestionCategory:
    try:
        category = QuestionCategory(str(value).strip().lower())
    except ValueError:
        return QuestionCategory.GENERAL
    return category if category in GENERATED_CATEGORIES else QuestionCategory.GENERAL


def parse_generated_questions(text: str) -> ParseResult:
    """
    Parse LLM output into ParseSuccess / ParseFailure. Accepts a bare array
    or an object wrapping it under "prompts" / "questions".
    """
    parsed = _extract_json_from_text(text)
    if parsed is None:
        return ParseFailure("no JSON found in response")
    if isinstance(parsed, dict):
        parsed = parsed.get("prompts") or parsed.get("questions")
    if not isinstance(parsed, list):
        return ParseFailure("response JSON is not a list of prompts")

    questions: List[ProbeQuestion] = []
    seen = set()
    for item in parsed:
        if isinstance(item, str):
            item = {"text": item}
        if not isinstance(item, dict):
            continue
        q_text = str(item.get("text") or "").strip()
        if not q_text or q_text.lower() in seen:
            continue
        seen.add(q_text.lower())
        questions.append(ProbeQuestion(text=q_text, category=_coerce_category(item.get("category"))))
        if len(questions) >= QUESTION_COUNT:
            break

    if not questions:
        return ParseFailure("no usable prompts in response")
    return ParseSuccess(questions)


async def generate_probe_questions(profile: BusinessProfile,
                                   domain: str,
                                   top_competitor: Optional[str] = None,
                                   *,
                                   llm: Optional[Callable] = None,
                                   provider: Optional[str] = None,
                                   ledger=None,
                                   run_id: Optional[str] = None,
                                   timeout_secs: float = 30.0) -> List[ProbeQuestion]:
    """
    Generate probe questions for a visibility scan. Never raises for LLM
    trouble; the deterministic template set is the recovery branch.
    """
    llm = llm or call_llm
    prompt = _build_llm_prompt(profile, domain, top_competitor)

    try:
        resp = await llm(prompt, provider=provider, max_tokens=GENERATION_MAX_TOKENS,
                         temperature=0.7, timeout=timeout_secs)
    except Exception as e:
        logger.exception("Question generation LLM call failed: %s", e)
        result: ParseResult = ParseFailure(f"llm_error: {e}")
    else:
        if ledger is not None and run_id:
            usage = resp.get("usage") or {}
            await ledger.record(run_id, GENERATION_STEP, f"{resp.get('provider')}/{resp.get('model')}",
                                usage.get("input_tokens", 0), usage.get("output_tokens", 0))
        result = parse_generated_questions(resp.get("text", ""))

    if isinstance(result, ParseFailure):
        logger.warning("Falling back to template questions: %s", result.reason)
        questions = fallback_questions(profile, top_competitor)
    else:
        questions = enforce_locations(result.questions, profile)

    logger.info("Generated %d probe questions for %s", len(questions), domain)
    return questions


def brand_awareness_questions(profile: BusinessProfile, domain: str,
                              top_competitor: Optional[str] = None) -> List[ProbeQuestion]:
    """
    Direct recognition probes: one brand recall (name and domain both
    embedded), up to three service checks, one competitor comparison.
    """
    name = (profile.business_name or "").strip()
    identifier = f"{name} ({domain})" if name else domain
    entity = name or domain

    questions = [ProbeQuestion(
        text=(f"What do you know about {identifier}? What services do they offer and where are they located? "
              f"Please include any information you have about their website at {domain}."),
        category=QuestionCategory.BRAND_RECALL,
        tested_entity=entity,
        tested_domain=domain,
    )]

    for service in profile.services[:MAX_SERVICE_CHECKS]:
        questions.append(ProbeQuestion(
            text=(f"I found {identifier} online. Based on your knowledge, does this specific company offer "
                  f"\"{service}\" as one of their services? I'm specifically asking about {entity} at {domain}, "
                  f"not about {service} in general."),
            category=QuestionCategory.SERVICE_CHECK,
            tested_entity=entity,
            tested_domain=domain,
            tested_attribute=service,
        ))

    if top_competitor:
        questions.append(ProbeQuestion(
            text=(f"I'm looking for {profile.business_type} in {profile.location or 'my area'}. "
                  f"How would you compare {identifier} to {top_competitor}? "
                  f"What are the strengths and weaknesses of each?"),
            category=QuestionCategory.COMPETITOR_COMPARE,
            tested_entity=entity,
            tested_domain=domain,
            compared_to=top_competitor,
        ))
    return questions


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Generate probe questions for a business profile")
    parser.add_argument("domain", help="Target domain, e.g. example.com.au")
    parser.add_argument("--type", dest="business_type", default="business")
    parser.add_argument("--service", action="append", default=[])
    parser.add_argument("--location", default=None)
    parser.add_argument("--competitor", default=None)
    parser.add_argument("--no-llm", action="store_true", help="Use the deterministic templates only")
    parser.add_argument("--brand", action="store_true", help="Print brand-awareness questions instead")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    prof = BusinessProfile(business_type=args.business_type, services=args.service, location=args.location)
    if args.brand:
        out = brand_awareness_questions(prof, args.domain, args.competitor)
    elif args.no_llm:
        out = fallback_questions(prof, args.competitor)
    else:
        out = asyncio.run(generate_probe_questions(prof, args.domain, args.competitor))
    print(json.dumps([q.model_dump(mode="json") for q in out], indent=2))
