from __future__ import annotations

import time
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_SERVICES = 10
MAX_KEY_PHRASES = 10


class QuestionCategory(str, Enum):
    GENERAL = "general"
    LOCATION = "location"
    SERVICE = "service"
    COMPARISON = "comparison"
    RECOMMENDATION = "recommendation"
    BRAND_RECALL = "brand_recall"
    SERVICE_CHECK = "service_check"
    COMPETITOR_COMPARE = "competitor_compare"
    ROLE_INSIGHT = "role_insight"


# Categories that must carry a location string when the profile has one
LOCATION_BOUND_CATEGORIES = (
    QuestionCategory.GENERAL,
    QuestionCategory.SERVICE,
    QuestionCategory.COMPARISON,
    QuestionCategory.RECOMMENDATION,
)

BRAND_CATEGORIES = (
    QuestionCategory.BRAND_RECALL,
    QuestionCategory.SERVICE_CHECK,
    QuestionCategory.COMPETITOR_COMPARE,
)


class JobFamily(str, Enum):
    ENGINEERING = "engineering"
    BUSINESS = "business"
    OPERATIONS = "operations"
    CREATIVE = "creative"
    CORPORATE = "corporate"
    GENERAL = "general"


class Positioning(str, Enum):
    STRONGER = "stronger"
    WEAKER = "weaker"
    EQUAL = "equal"
    NOT_COMPARED = "not_compared"


class BusinessProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    business_name: Optional[str] = None
    business_type: str = "Unknown business type"
    services: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    locations: List[str] = Field(default_factory=list)
    target_audience: Optional[str] = None
    industry: str = "General"
    key_phrases: List[str] = Field(default_factory=list)

    @field_validator("services")
    @classmethod
    def _cap_services(cls, v: List[str]) -> List[str]:
        return [s.strip() for s in v if s and s.strip()][:MAX_SERVICES]

    @field_validator("key_phrases")
    @classmethod
    def _cap_key_phrases(cls, v: List[str]) -> List[str]:
        return [s.strip() for s in v if s and s.strip()][:MAX_KEY_PHRASES]

    def all_locations(self) -> List[str]:
        """Primary location first, then additional service locations, without blanks or repeats."""
        out: List[str] = []
        seen = set()
        for loc in [self.location or ""] + list(self.locations):
            loc = loc.strip()
            if loc and loc.lower() not in seen:
                seen.add(loc.lower())
                out.append(loc)
        return out


class ProbeQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    category: QuestionCategory = QuestionCategory.GENERAL
    job_family: Optional[JobFamily] = None
    # brand-awareness metadata
    tested_entity: Optional[str] = None
    tested_domain: Optional[str] = None
    tested_attribute: Optional[str] = None
    compared_to: Optional[str] = None
    # research metadata
    suggested_by: List[str] = Field(default_factory=list)
    relevance_score: int = 0


class SearchSource(BaseModel):
    url: str
    title: Optional[str] = None


class DomainContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    domain: str
    location: Optional[str] = None
    web_search: bool = True


class ProviderAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    platform: str
    question: ProbeQuestion
    text: str = ""
    sources: List[SearchSource] = Field(default_factory=list)
    latency_ms: int = 0
    error: Optional[str] = None
    used_fallback: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.text.strip())


class CompetitorMention(BaseModel):
    name: str
    context: str = ""


class MentionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    platform: str
    question: ProbeQuestion
    mentioned: bool = False
    position: Optional[int] = None
    competitors: List[CompetitorMention] = Field(default_factory=list)
    entity_recognized: bool = False
    attribute_mentioned: bool = False
    confidence_score: int = 0
    positioning: Positioning = Positioning.NOT_COMPARED

    @model_validator(mode="after")
    def _check_invariants(self) -> "MentionResult":
        if not self.mentioned and self.position is not None:
            raise ValueError("position must be None when the domain is not mentioned")
        if self.mentioned and (self.position is None or not 1 <= self.position <= 3):
            raise ValueError("a mention must carry a position between 1 and 3")
        if not self.entity_recognized and self.confidence_score != 0:
            raise ValueError("confidence_score must be 0 when the entity is not recognized")
        if not 0 <= self.confidence_score <= 100:
            raise ValueError("confidence_score must be within [0, 100]")
        return self


class PlatformScore(BaseModel):
    score: int = 0
    mentions: int = 0
    total: int = 0


class CompetitorCount(BaseModel):
    name: str
    count: int


class ServiceKnowledge(BaseModel):
    service: str
    known_by: List[str] = Field(default_factory=list)
    unknown_by: List[str] = Field(default_factory=list)


class BrandAwarenessSummary(BaseModel):
    overall_recognition: int = 0
    service_knowledge: List[ServiceKnowledge] = Field(default_factory=list)
    knowledge_gaps: List[str] = Field(default_factory=list)
    compared_to: Optional[str] = None
    competitor_positioning: Dict[str, Positioning] = Field(default_factory=dict)


class VisibilityReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    overall_score: int = 0
    platform_scores: Dict[str, PlatformScore] = Field(default_factory=dict)
    total_probes: int = 0
    total_mentions: int = 0
    failed_probes: int = 0
    competitors: List[CompetitorCount] = Field(default_factory=list)
    knowledge_gaps: List[str] = Field(default_factory=list)
    brand_awareness: Optional[BrandAwarenessSummary] = None


class CostEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    step: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost_usd: float = 0.0
    created_at: float = Field(default_factory=time.time)


class ScanResult(BaseModel):
    run_id: str
    domain: str
    profile: BusinessProfile
    questions: List[ProbeQuestion] = Field(default_factory=list)
    answers: List[ProviderAnswer] = Field(default_factory=list)
    mentions: List[MentionResult] = Field(default_factory=list)
    report: VisibilityReport = Field(default_factory=VisibilityReport)
    cost_entries: List[CostEntry] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    duration: float = 0.0
