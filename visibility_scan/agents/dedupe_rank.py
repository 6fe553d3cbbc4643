# visibility_scan/agents/dedupe_rank.py
"""
Dedupe & ranking utilities for candidate probe questions.

Strategy:
1) Group near-duplicate questions by word-Jaccard similarity against each
   group's representative (its first member).
2) Pick one representative text per group, preferring medium-length phrasing.
3) Rank groups by how many distinct providers proposed something in the group.
4) Enforce category diversity (cap ceil(limit/3) per category), then backfill.

APIs:
- question_similarity(a, b) -> float
- group_similar_questions(candidates, threshold=0.5) -> list of groups
- dedupe_and_rank_questions(candidates, limit=10) -> list of RankedQuestion
- dedupe_competitors(names, limit=5) -> list of names
"""

from __future__ import annotations
import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

SIMILARITY_THRESHOLD = 0.5
MIN_TOKEN_LENGTH = 3
PREFERRED_MIN_CHARS = 30
PREFERRED_MAX_CHARS = 80
MAX_COMPETITORS = 5


@dataclass
class CandidateQuestion:
    text: str
    category: str
    provider: str


@dataclass
class RankedQuestion:
    text: str
    category: str
    suggested_by: List[str] = field(default_factory=list)
    relevance_score: int = 0


def _tokens(text: str) -> set:
    return {w for w in text.lower().split() if len(w) >= MIN_TOKEN_LENGTH}


def question_similarity(a: str, b: str) -> float:
    """Jaccard similarity over lowercase whitespace tokens longer than 2 chars."""
    ta, tb = _tokens(a), _tokens(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


def group_similar_questions(candidates: Iterable[CandidateQuestion],
                            threshold: float = SIMILARITY_THRESHOLD) -> List[List[CandidateQuestion]]:
    groups: List[List[CandidateQuestion]] = []
    for cand in candidates:
        for group in groups:
            if question_similarity(cand.text, group[0].text) >= threshold:
                group.append(cand)
                break
        else:
            groups.append([cand])
    return groups


def _length_score(text: str) -> int:
    return 1 if PREFERRED_MIN_CHARS <= len(text) <= PREFERRED_MAX_CHARS else 0


def pick_representative(group: List[CandidateQuestion]) -> CandidateQuestion:
    """First member whose length is in the preferred range, else the first member."""
    best = group[0]
    for cand in group[1:]:
        if _length_score(cand.text) > _length_score(best.text):
            best = cand
    return best


def _most_common_category(group: List[CandidateQuestion]) -> str:
    # Counter preserves first-seen order for equal counts
    return Counter(c.category for c in group).most_common(1)[0][0]


def dedupe_and_rank_questions(candidates: Iterable[CandidateQuestion], limit: int = 10,
                              threshold: float = SIMILARITY_THRESHOLD) -> List[RankedQuestion]:
    candidates = [c for c in candidates if c.text and c.text.strip()]
    if not candidates or limit <= 0:
        return []

    ranked: List[RankedQuestion] = []
    for group in group_similar_questions(candidates, threshold):
        providers = list(dict.fromkeys(c.provider for c in group))
        ranked.append(RankedQuestion(
            text=pick_representative(group).text,
            category=_most_common_category(group),
            suggested_by=providers,
            relevance_score=len(providers) * 10,
        ))

    # stable: equal agreement keeps discovery order
    ranked.sort(key=lambda r: r.relevance_score, reverse=True)

    max_per_category = math.ceil(limit / 3)
    selected: List[RankedQuestion] = []
    per_category: Dict[str, int] = {}
    for r in ranked:
        if len(selected) >= limit:
            break
        if per_category.get(r.category, 0) < max_per_category:
            selected.append(r)
            per_category[r.category] = per_category.get(r.category, 0) + 1

    for r in ranked:
        if len(selected) >= limit:
            break
        if not any(s is r for s in selected):
            selected.append(r)

    logger.info("Dedupe: %d candidates -> %d groups -> %d selected", len(candidates), len(ranked), len(selected))
    return selected


def _competitor_key(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


def dedupe_competitors(names: Iterable[str], limit: int = MAX_COMPETITORS) -> List[str]:
    seen: Dict[str, str] = {}
    for name in names:
        if not name or not name.strip():
            continue
        key = _competitor_key(name)
        if key and key not in seen:
            seen[key] = name.strip()
    return list(seen.values())[:limit]
