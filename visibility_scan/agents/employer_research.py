# visibility_scan/agents/employer_research.py
"""
Employer-research question generation.

Several platforms are asked independently for (a) employers competing for the
same talent and (b) questions a job seeker would put to an AI assistant. The
first platform runs alone so later platforms can reuse its competitor names in
comparison questions; the rest run concurrently. All candidate questions are
merged through dedupe_and_rank_questions, so questions proposed by several
platforms rank first.

research_employer_questions(profile, domain, platforms, job_families=None, ...)
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from visibility_scan.agents.dedupe_rank import (
    CandidateQuestion,
    RankedQuestion,
    dedupe_and_rank_questions,
    dedupe_competitors,
)
from visibility_scan.agents.question_generator import enforce_locations
from visibility_scan.models import BusinessProfile, JobFamily, ProbeQuestion, QuestionCategory
from visibility_scan.services.llm_client import PLATFORM_PROVIDERS, _extract_json_from_text, call_llm

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

RESEARCH_MAX_TOKENS = 1500
RESEARCH_TIMEOUT_SECS = 45.0
DEFAULT_RESEARCH_PLATFORMS = ("chatgpt", "claude", "gemini")

EMPLOYER_CATEGORIES = (
    "reputation", "culture", "compensation", "growth", "comparison",
    "industry", "balance", "leadership", "role_insights",
)

# employer category -> probe category
CATEGORY_MAP = {
    "comparison": QuestionCategory.COMPARISON,
    "industry": QuestionCategory.RECOMMENDATION,
    "role_insights": QuestionCategory.ROLE_INSIGHT,
}

JOB_FAMILY_LABELS = {
    JobFamily.ENGINEERING: "engineering roles like software engineers and data scientists",
    JobFamily.BUSINESS: "business roles like sales and product management",
    JobFamily.OPERATIONS: "operations and supply chain roles",
    JobFamily.CREATIVE: "creative roles like designers and content creators",
    JobFamily.CORPORATE: "corporate roles like finance and HR",
}


@dataclass
class EmployerResearchResult:
    competitors: List[str] = field(default_factory=list)
    questions: List[ProbeQuestion] = field(default_factory=list)


def validate_category(category: Any) -> str:
    normalized = "".join(ch for ch in str(category or "").lower() if ch.isalpha() or ch == "_")
    return normalized if normalized in EMPLOYER_CATEGORIES else "reputation"


def _company_name(profile: BusinessProfile, domain: str) -> str:
    return (profile.business_name or "").strip() or domain


def _build_research_prompt(profile: BusinessProfile, domain: str, known_competitors: Sequence[str]) -> str:
    company = _company_name(profile, domain)
    location = profile.location or "their main market"
    known = ", ".join(known_competitors) if known_competitors else "none yet"
    prompt = f"""
You're helping job seekers research an employer.

## Company Details
- Name: {company}
- Website: {domain}
- Industry: {profile.industry}
- Location: {location}
- Common roles hired: {", ".join(profile.services) or "Not specified"}
- Culture keywords: {", ".join(profile.key_phrases) or "Not specified"}
- Competitor employers already identified: {known}

## Task 1: Identify Competitor Employers (for talent)
List 3-5 separate, independent companies that compete for the SAME TALENT as {company}
(similar industry, location, roles and size). Do NOT list {company}'s own products,
brands, subsidiaries or acquisitions.

## Task 2: Generate Job Seeker Questions
Generate 10 questions a job seeker would ask an AI assistant when researching {company}:
- 3x reputation, 2x culture, 1x compensation, 1x growth
- 2x comparison (use real competitor names)
- 1x industry ("Best {profile.industry} companies to work for in {location}")
Questions must lead the AI to NAME specific employers, not give generic advice.

Return ONLY valid JSON:
{{
  "competitors": [{{"name": "Company Name", "domain": "company.com", "reason": "competes for ... talent"}}],
  "questions": [{{"question": "What's it like to work at {company}?", "category": "reputation"}}]
}}
"""
    return prompt.strip()


async def research_on_platform(profile: BusinessProfile, domain: str, platform: str, *,
                               known_competitors: Sequence[str] = (),
                               llm: Optional[Callable] = None,
                               ledger=None,
                               run_id: Optional[str] = None) -> Dict[str, Any]:
    """
    One research round on one platform. Returns {"competitors": [...names], "questions": [CandidateQuestion]};
    empty lists when the platform fails or returns unusable output.
    """
    llm = llm or call_llm
    provider = PLATFORM_PROVIDERS.get(platform, platform)
    empty: Dict[str, Any] = {"competitors": [], "questions": []}
    try:
        resp = await llm(_build_research_prompt(profile, domain, known_competitors), provider=provider,
                         max_tokens=RESEARCH_MAX_TOKENS, temperature=0.7, timeout=RESEARCH_TIMEOUT_SECS)
    except Exception as e:
        logger.exception("Employer research failed on %s: %s", platform, e)
        return empty

    if ledger is not None and run_id:
        usage = resp.get("usage") or {}
        await ledger.record(run_id, f"employer_research_{platform}", f"{resp.get('provider')}/{resp.get('model')}",
                            usage.get("input_tokens", 0), usage.get("output_tokens", 0))

    parsed = resp.get("structured")
    if parsed is None:
        parsed = _extract_json_from_text(resp.get("text", ""))
    if not isinstance(parsed, dict):
        logger.warning("Employer research on %s returned no JSON object", platform)
        return empty

    competitors = [c.get("name", "") if isinstance(c, dict) else str(c) for c in parsed.get("competitors") or []]
    questions = []
    for q in parsed.get("questions") or []:
        if isinstance(q, dict) and str(q.get("question") or "").strip():
            questions.append(CandidateQuestion(text=str(q["question"]).strip(),
                                               category=validate_category(q.get("category")),
                                               provider=platform))
    logger.info("Employer research on %s: %d competitors, %d questions", platform, len(competitors), len(questions))
    return {"competitors": [c for c in competitors if c], "questions": questions}


def role_family_questions(profile: BusinessProfile, domain: str,
                          job_families: Sequence[JobFamily]) -> List[ProbeQuestion]:
    company = _company_name(profile, domain)
    out = []
    for family in job_families:
        family = JobFamily(family)
        if family == JobFamily.GENERAL:
            continue
        out.append(ProbeQuestion(
            text=f"How is {company} for {JOB_FAMILY_LABELS[family]}? What's the reputation, culture, and compensation like?",
            category=QuestionCategory.ROLE_INSIGHT,
            job_family=family,
            tested_entity=company,
            tested_domain=domain,
            relevance_score=10,
        ))
    return out


def fallback_employer_questions(profile: BusinessProfile, domain: str,
                                competitors: Sequence[str] = ()) -> List[RankedQuestion]:
    company = _company_name(profile, domain)
    competitor = competitors[0] if competitors else "competitors"
    questions = [
        RankedQuestion(f"What's it like to work at {company}?", "reputation", [], 5),
        RankedQuestion(f"Is {company} a good place to work?", "reputation", [], 5),
        RankedQuestion(f"{company} employee reviews", "reputation", [], 4),
        RankedQuestion(f"What is the culture like at {company}?", "culture", [], 4),
        RankedQuestion(f"How is the work environment at {company}?", "culture", [], 3),
        RankedQuestion(f"Does {company} pay well?", "compensation", [], 4),
        RankedQuestion(f"Are there good career opportunities at {company}?", "growth", [], 4),
        RankedQuestion(f"Is {company} or {competitor} a better place to work?", "comparison", [], 4),
        RankedQuestion(f"Compare working at {company} vs {competitor}", "comparison", [], 3),
    ]
    if profile.industry and profile.location:
        questions.append(RankedQuestion(
            f"Best {profile.industry} companies to work for in {profile.location}", "industry", [], 4))
    return questions[:10]


def _to_probe_question(r: RankedQuestion, company: str, domain: str) -> ProbeQuestion:
    return ProbeQuestion(
        text=r.text,
        category=CATEGORY_MAP.get(r.category, QuestionCategory.GENERAL),
        tested_entity=company,
        tested_domain=domain,
        suggested_by=list(r.suggested_by),
        relevance_score=r.relevance_score,
    )


async def research_employer_questions(profile: BusinessProfile,
                                      domain: str,
                                      platforms: Sequence[str] = DEFAULT_RESEARCH_PLATFORMS,
                                      job_families: Optional[Sequence[JobFamily]] = None,
                                      *,
                                      llm: Optional[Callable] = None,
                                      ledger=None,
                                      run_id: Optional[str] = None,
                                      limit: int = 10) -> EmployerResearchResult:
    platforms = list(platforms)
    all_competitors: List[str] = []
    candidates: List[CandidateQuestion] = []

    if platforms:
        first = await research_on_platform(profile, domain, platforms[0], llm=llm, ledger=ledger, run_id=run_id)
        all_competitors.extend(first["competitors"])
        candidates.extend(first["questions"])

        known = dedupe_competitors(all_competitors)
        rest = await asyncio.gather(*[
            research_on_platform(profile, domain, p, known_competitors=known, llm=llm, ledger=ledger, run_id=run_id)
            for p in platforms[1:]
        ])
        for r in rest:
            all_competitors.extend(r["competitors"])
            candidates.extend(r["questions"])

    competitors = dedupe_competitors(all_competitors)
    ranked = dedupe_and_rank_questions(candidates, limit=limit)
    if not ranked:
        logger.warning("Employer research produced no questions; using fallback set")
        ranked = fallback_employer_questions(profile, domain, competitors)

    company = _company_name(profile, domain)
    questions = [_to_probe_question(r, company, domain) for r in ranked]
    questions = enforce_locations(questions, profile)
    questions.extend(role_family_questions(profile, domain, job_families or []))
    return EmployerResearchResult(competitors=competitors, questions=questions)
