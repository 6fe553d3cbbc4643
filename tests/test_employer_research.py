import json

import pytest

from visibility_scan.agents.employer_research import (
    fallback_employer_questions,
    research_employer_questions,
    research_on_platform,
    role_family_questions,
    validate_category,
)
from visibility_scan.models import BusinessProfile, JobFamily, QuestionCategory
from visibility_scan.services.cost_ledger import CostLedger

RESEARCH_JSON = json.dumps({
    "competitors": [{"name": "Bar Inc", "domain": "bar.com", "reason": "same engineers"}],
    "questions": [
        {"question": "Is Foo Corp a good place to work?", "category": "reputation"},
        {"question": "How does Foo Corp compare with Bar Inc for engineers?", "category": "comparison"},
    ],
})


@pytest.fixture
def employer():
    return BusinessProfile(business_name="Foo Corp", business_type="software company",
                           services=["software engineer"], industry="Technology")


class TestValidateCategory:
    """Test employer category normalization"""

    def test_known(self):
        """Test known employer categories are kept"""
        assert validate_category("Culture!") == "culture"
        assert validate_category("role_insights") == "role_insights"

    def test_unknown_defaults_to_reputation(self):
        """Test unknown categories default to reputation"""
        assert validate_category("vibes") == "reputation"
        assert validate_category(None) == "reputation"


class TestResearchOnPlatform:
    """Test one research round"""

    @pytest.mark.asyncio
    async def test_parses_and_records_cost(self, employer):
        """Test research output is parsed and billed"""
        async def fake_llm(prompt, **kwargs):
            assert kwargs["provider"] == "anthropic"
            return {"text": RESEARCH_JSON, "structured": None, "provider": "anthropic",
                    "model": "claude-sonnet-4-20250514", "usage": {"input_tokens": 500, "output_tokens": 200}}

        ledger = CostLedger()
        out = await research_on_platform(employer, "foo.com", "claude", llm=fake_llm, ledger=ledger, run_id="run-1")
        assert out["competitors"] == ["Bar Inc"]
        assert [q.category for q in out["questions"]] == ["reputation", "comparison"]
        assert all(q.provider == "claude" for q in out["questions"])
        assert ledger.entries("run-1")[0].step == "employer_research_claude"

    @pytest.mark.asyncio
    async def test_failure_is_empty(self, employer):
        """Test a failed research call yields nothing"""
        async def failing_llm(prompt, **kwargs):
            raise RuntimeError("no key")

        out = await research_on_platform(employer, "foo.com", "gemini", llm=failing_llm)
        assert out == {"competitors": [], "questions": []}

    @pytest.mark.asyncio
    async def test_non_object_json_is_empty(self, employer):
        """Test non-object JSON yields nothing"""
        async def list_llm(prompt, **kwargs):
            return {"text": '["just", "a", "list"]', "usage": {}}

        out = await research_on_platform(employer, "foo.com", "chatgpt", llm=list_llm)
        assert out["questions"] == []


class TestResearchEmployerQuestions:
    """Test the multi-platform research merge"""

    @pytest.mark.asyncio
    async def test_agreement_and_known_competitors(self, employer):
        """Test platform agreement and known competitors"""
        prompts = []

        async def fake_llm(prompt, **kwargs):
            prompts.append(prompt)
            return {"text": RESEARCH_JSON, "provider": kwargs["provider"], "model": "m", "usage": {}}

        result = await research_employer_questions(
            employer, "foo.com", platforms=("chatgpt", "claude"),
            job_families=[JobFamily.ENGINEERING, JobFamily.GENERAL], llm=fake_llm,
        )
        assert result.competitors == ["Bar Inc"]
        assert "already identified: none yet" in prompts[0]
        assert "already identified: Bar Inc" in prompts[1]

        assert len(result.questions) == 3
        first, second, role = result.questions
        assert first.suggested_by == ["chatgpt", "claude"]
        assert first.relevance_score == 20
        assert first.category == QuestionCategory.GENERAL
        assert second.category == QuestionCategory.COMPARISON
        assert role.category == QuestionCategory.ROLE_INSIGHT
        assert role.job_family == JobFamily.ENGINEERING

    @pytest.mark.asyncio
    async def test_fallback_when_no_platform_answers(self, employer):
        """Test fallback questions when no platform answers"""
        async def failing_llm(prompt, **kwargs):
            raise RuntimeError("down")

        result = await research_employer_questions(employer, "foo.com", llm=failing_llm)
        assert result.competitors == []
        assert len(result.questions) == 9
        assert all(q.tested_entity == "Foo Corp" for q in result.questions)

    @pytest.mark.asyncio
    async def test_location_enforced(self):
        """Test location is enforced on researched questions"""
        profile = BusinessProfile(business_name="Foo Corp", industry="Technology", location="Sydney")

        async def failing_llm(prompt, **kwargs):
            raise RuntimeError("down")

        result = await research_employer_questions(profile, "foo.com", llm=failing_llm)
        assert len(result.questions) == 10
        assert all("Sydney" in q.text for q in result.questions)


class TestFallbackAndRoles:
    """Test deterministic employer question sets"""

    def test_fallback_uses_competitor(self, employer):
        """Test fallback questions use the top competitor"""
        texts = [q.text for q in fallback_employer_questions(employer, "foo.com", ["Bar Inc"])]
        assert "Is Foo Corp or Bar Inc a better place to work?" in texts

    def test_role_questions_skip_general(self, employer):
        """Test role questions skip the general set"""
        out = role_family_questions(employer, "foo.com", [JobFamily.GENERAL, JobFamily.CREATIVE])
        assert len(out) == 1
        assert "designers" in out[0].text
