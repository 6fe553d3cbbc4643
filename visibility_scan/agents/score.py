# visibility_scan/agents/score.py
"""
Visibility scoring module.

Purpose:
Reduce the MentionResult set of a run into a VisibilityReport: overall and
per-platform visibility scores, a competitor frequency table, knowledge gaps
and, for brand-awareness runs, a recognition summary. Pure and synchronous;
the report is always rebuilt from the full result set, never patched.
"""

from __future__ import annotations
import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence

from visibility_scan.models import (
    BRAND_CATEGORIES,
    BrandAwarenessSummary,
    CompetitorCount,
    MentionResult,
    PlatformScore,
    Positioning,
    ProbeQuestion,
    ProviderAnswer,
    QuestionCategory,
    ServiceKnowledge,
    VisibilityReport,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

TOP_COMPETITORS = 10


def _percent(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    # half-up, not banker's rounding
    return int(math.floor(100.0 * part / whole + 0.5))


def platform_scores(mentions: Sequence[MentionResult],
                    platforms: Optional[Iterable[str]] = None) -> Dict[str, PlatformScore]:
    """Per-platform mentions / probes; listed platforms with no probes report 0."""
    totals: Dict[str, List[int]] = {p: [0, 0] for p in (platforms or [])}
    for m in mentions:
        t = totals.setdefault(m.platform, [0, 0])
        t[1] += 1
        if m.mentioned:
            t[0] += 1
    return {p: PlatformScore(score=_percent(hit, n), mentions=hit, total=n) for p, (hit, n) in totals.items()}


def overall_score(mentions: Sequence[MentionResult]) -> int:
    return _percent(sum(1 for m in mentions if m.mentioned), len(mentions))


def rank_competitors(mentions: Sequence[MentionResult], limit: int = TOP_COMPETITORS) -> List[CompetitorCount]:
    """
    Count competitor names across all answers. Names are merged
    case-insensitively and keep the first-seen spelling; sorted by count
    descending with first-seen order breaking ties.
    """
    counts: Dict[str, int] = {}
    display: Dict[str, str] = {}
    for m in mentions:
        for c in m.competitors:
            key = c.name.strip().lower()
            if not key:
                continue
            display.setdefault(key, c.name.strip())
            counts[key] = counts.get(key, 0) + 1
    # dicts keep insertion order and sorted() is stable
    ordered = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    return [CompetitorCount(name=display[k], count=n) for k, n in ordered[:limit]]


def _is_service_check(question: ProbeQuestion) -> bool:
    return question.category == QuestionCategory.SERVICE_CHECK and bool(question.tested_attribute)


def service_knowledge(mentions: Sequence[MentionResult],
                      questions: Iterable[ProbeQuestion] = (),
                      failed_answers: Iterable[ProviderAnswer] = ()) -> List[ServiceKnowledge]:
    """
    Per-service confirmation table. Services are seeded from the run's
    service-check questions so a service nobody answered still shows up;
    platforms whose probe errored count as not knowing the service.
    """
    by_service: Dict[str, ServiceKnowledge] = {}
    for q in questions:
        if _is_service_check(q):
            by_service.setdefault(q.tested_attribute, ServiceKnowledge(service=q.tested_attribute))
    for m in mentions:
        if not _is_service_check(m.question):
            continue
        service = m.question.tested_attribute
        sk = by_service.setdefault(service, ServiceKnowledge(service=service))
        (sk.known_by if m.attribute_mentioned else sk.unknown_by).append(m.platform)
    for a in failed_answers:
        if not _is_service_check(a.question):
            continue
        service = a.question.tested_attribute
        sk = by_service.setdefault(service, ServiceKnowledge(service=service))
        if a.platform not in sk.unknown_by:
            sk.unknown_by.append(a.platform)
    return list(by_service.values())


def knowledge_gaps(mentions: Sequence[MentionResult],
                   questions: Iterable[ProbeQuestion] = (),
                   failed_answers: Iterable[ProviderAnswer] = ()) -> List[str]:
    """Services that no platform confirmed across their service-check results."""
    return [sk.service for sk in service_knowledge(mentions, questions, failed_answers) if not sk.known_by]


def summarize_brand_awareness(mentions: Sequence[MentionResult],
                              questions: Iterable[ProbeQuestion] = (),
                              failed_answers: Iterable[ProviderAnswer] = ()) -> Optional[BrandAwarenessSummary]:
    questions = list(questions)
    brand = [m for m in mentions if m.question.category in BRAND_CATEGORIES]
    if not brand and not any(q.category in BRAND_CATEGORIES for q in questions):
        return None

    recall = [m for m in brand if m.question.category == QuestionCategory.BRAND_RECALL]
    knowledge = service_knowledge(brand, questions, failed_answers)

    compare = [m for m in brand if m.question.category == QuestionCategory.COMPETITOR_COMPARE]
    positioning: Dict[str, Positioning] = {}
    for m in compare:
        positioning[m.platform] = m.positioning

    return BrandAwarenessSummary(
        overall_recognition=_percent(sum(1 for m in recall if m.entity_recognized), len(recall)),
        service_knowledge=knowledge,
        knowledge_gaps=[sk.service for sk in knowledge if not sk.known_by],
        compared_to=compare[0].question.compared_to if compare else None,
        competitor_positioning=positioning,
    )


def build_visibility_report(mentions: Sequence[MentionResult],
                            platforms: Optional[Iterable[str]] = None,
                            failed_probes: int = 0,
                            questions: Optional[Iterable[ProbeQuestion]] = None,
                            failed_answers: Optional[Iterable[ProviderAnswer]] = None) -> VisibilityReport:
    mentions = list(mentions)
    questions = list(questions or [])
    failed_answers = list(failed_answers or [])
    total_mentions = sum(1 for m in mentions if m.mentioned)
    report = VisibilityReport(
        overall_score=overall_score(mentions),
        platform_scores=platform_scores(mentions, platforms),
        total_probes=len(mentions),
        total_mentions=total_mentions,
        failed_probes=failed_probes,
        competitors=rank_competitors(mentions),
        knowledge_gaps=knowledge_gaps(mentions, questions, failed_answers),
        brand_awareness=summarize_brand_awareness(mentions, questions, failed_answers),
    )
    logger.info("Report: overall=%d%% probes=%d mentions=%d failed=%d competitors=%d",
                report.overall_score, report.total_probes, total_mentions, failed_probes, len(report.competitors))
    return report
