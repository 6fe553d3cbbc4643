# visibility_scan/agents/analyze.py
"""
Business profile analysis from crawled site content.

analyze_website(content) asks an LLM to describe the business and returns a
BusinessProfile. It never raises: any LLM or parsing problem yields the
documented default profile ("Business website" / "General").
"""
from __future__ import annotations
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from visibility_scan.models import BusinessProfile
from visibility_scan.services.llm_client import _extract_json_from_text, call_llm

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

MAX_CONTENT_CHARS = 8000
ANALYSIS_STEP = "analyze_website"

DEFAULT_PROFILE = BusinessProfile(business_name=None, business_type="Business website", industry="General")


def _build_analysis_prompt(content: str) -> str:
    return f"""You are a business analyst. Analyze the following website content and extract key information about what this business does.

Website Content:
{content[:MAX_CONTENT_CHARS]}

---

Respond with a JSON object containing:
- businessName: The name of the business (or null if not clear)
- businessType: A short description of what kind of business this is (e.g., "SEO consultancy", "plumbing services", "SaaS platform")
- services: An array of specific services or products offered (max 10)
- location: Geographic location if mentioned (e.g., "Sydney, Australia") or null
- locations: Other service locations mentioned, as an array (may be empty)
- targetAudience: Who the business serves (e.g., "small businesses", "homeowners")
- keyPhrases: Important phrases that describe what they do (max 10)
- industry: The broader industry category (e.g., "Marketing", "Home Services", "Technology")

Return ONLY valid JSON, no other text."""


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


def profile_from_json(data: Dict[str, Any]) -> BusinessProfile:
    return BusinessProfile(
        business_name=data.get("businessName") or None,
        business_type=data.get("businessType") or "Unknown business type",
        services=_str_list(data.get("services")),
        location=data.get("location") or None,
        locations=_str_list(data.get("locations")),
        target_audience=data.get("targetAudience") or None,
        industry=data.get("industry") or "General",
        key_phrases=_str_list(data.get("keyPhrases")),
    )


async def analyze_website(content: str, *, llm: Optional[Callable] = None, provider: Optional[str] = None,
                          ledger=None, run_id: Optional[str] = None) -> BusinessProfile:
    if not content or not content.strip():
        logger.warning("No site content to analyze; using default profile")
        return DEFAULT_PROFILE

    llm = llm or call_llm
    try:
        resp = await llm(_build_analysis_prompt(content), provider=provider, max_tokens=1000, temperature=0.0)
        if ledger is not None and run_id:
            usage = resp.get("usage") or {}
            await ledger.record(run_id, ANALYSIS_STEP, f"{resp.get('provider')}/{resp.get('model')}",
                                usage.get("input_tokens", 0), usage.get("output_tokens", 0))
        data = _extract_json_from_text(resp.get("text", ""))
        if not isinstance(data, dict):
            raise ValueError("No JSON object found in analysis response")
        return profile_from_json(data)
    except (ValueError, ValidationError) as e:
        logger.warning("Website analysis returned unusable output: %s", e)
    except Exception as e:
        logger.exception("Website analysis failed: %s", e)
    return DEFAULT_PROFILE
