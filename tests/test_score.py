import pytest

from visibility_scan.agents.score import (
    _percent,
    build_visibility_report,
    knowledge_gaps,
    overall_score,
    platform_scores,
    rank_competitors,
    summarize_brand_awareness,
)
from visibility_scan.models import (
    CompetitorMention,
    MentionResult,
    Positioning,
    ProbeQuestion,
    ProviderAnswer,
    QuestionCategory,
)


def mention(platform, mentioned=False, competitors=(), category=QuestionCategory.GENERAL, **kwargs):
    q_fields = {k: kwargs.pop(k) for k in ("tested_attribute", "compared_to") if k in kwargs}
    question = ProbeQuestion(text="Who fixes pipes?", category=category, **q_fields)
    return MentionResult(
        platform=platform,
        question=question,
        mentioned=mentioned,
        position=1 if mentioned else None,
        competitors=[CompetitorMention(name=n) for n in competitors],
        **kwargs,
    )


class TestPercent:
    """Test integer percentage rounding"""

    def test_half_up(self):
        """Test half-up rounding"""
        assert _percent(1, 8) == 13     # 12.5
        assert _percent(2, 3) == 67
        assert _percent(1, 3) == 33

    def test_zero_denominator(self):
        """Test zero denominator"""
        assert _percent(0, 0) == 0


class TestPlatformScores:
    """Test per-platform and overall scoring"""

    def test_mixed_platforms(self):
        """Test scores across mixed platforms"""
        mentions = [
            mention("chatgpt", True),
            mention("chatgpt", True),
            mention("claude"),
            mention("claude"),
            mention("gemini", True),
            mention("gemini", True),
        ]
        scores = platform_scores(mentions)
        assert {p: s.score for p, s in scores.items()} == {"chatgpt": 100, "claude": 0, "gemini": 100}
        assert overall_score(mentions) == 67

    def test_platform_without_questions_reports_zero(self):
        """Test a platform without questions scores zero"""
        scores = platform_scores([mention("chatgpt", True)], platforms=["chatgpt", "perplexity"])
        assert scores["perplexity"].score == 0
        assert scores["perplexity"].total == 0

    def test_no_results(self):
        """Test overall score with no results"""
        assert overall_score([]) == 0


class TestRankCompetitors:
    """Test competitor frequency ranking"""

    def test_counts_and_case_merge(self):
        """Test counting with case-insensitive merge"""
        mentions = [
            mention("chatgpt", competitors=["Acme", "Bolt"]),
            mention("claude", competitors=["acme", "Crane"]),
            mention("gemini", competitors=["ACME", "Bolt"]),
        ]
        ranked = rank_competitors(mentions)
        assert [(c.name, c.count) for c in ranked] == [("Acme", 3), ("Bolt", 2), ("Crane", 1)]

    def test_ties_keep_first_seen_order(self):
        """Test ties keep first-seen order"""
        mentions = [mention("chatgpt", competitors=["Zeta", "Alpha", "Mid"])]
        assert [c.name for c in rank_competitors(mentions)] == ["Zeta", "Alpha", "Mid"]

    def test_deterministic(self):
        """Test ranking is deterministic"""
        mentions = [mention("chatgpt", competitors=[f"C{i % 4}" for i in range(20)])]
        assert rank_competitors(mentions) == rank_competitors(list(mentions))

    def test_top_ten(self):
        """Test only the top ten are kept"""
        mentions = [mention("chatgpt", competitors=[f"Brand{i}" for i in range(15)])]
        assert len(rank_competitors(mentions)) == 10


class TestBrandAwareness:
    """Test knowledge gaps and the recognition summary"""

    def brand_mentions(self):
        return [
            mention("chatgpt", category=QuestionCategory.BRAND_RECALL,
                    entity_recognized=True, confidence_score=60),
            mention("claude", category=QuestionCategory.BRAND_RECALL),
            mention("chatgpt", category=QuestionCategory.SERVICE_CHECK, tested_attribute="pipe repair",
                    entity_recognized=True, attribute_mentioned=True, confidence_score=75),
            mention("claude", category=QuestionCategory.SERVICE_CHECK, tested_attribute="pipe repair"),
            mention("chatgpt", category=QuestionCategory.SERVICE_CHECK, tested_attribute="gas fitting"),
            mention("claude", category=QuestionCategory.SERVICE_CHECK, tested_attribute="gas fitting"),
            mention("chatgpt", category=QuestionCategory.COMPETITOR_COMPARE, compared_to="Acme",
                    positioning=Positioning.STRONGER),
        ]

    def test_knowledge_gaps(self):
        """Test knowledge gaps from service checks"""
        assert knowledge_gaps(self.brand_mentions()) == ["gas fitting"]

    def test_summary(self):
        """Test the brand awareness summary"""
        summary = summarize_brand_awareness(self.brand_mentions())
        assert summary.overall_recognition == 50
        assert summary.compared_to == "Acme"
        assert summary.competitor_positioning == {"chatgpt": Positioning.STRONGER}
        pipe = summary.service_knowledge[0]
        assert pipe.service == "pipe repair"
        assert pipe.known_by == ["chatgpt"]
        assert pipe.unknown_by == ["claude"]

    def test_no_brand_results(self):
        """Test no summary without brand results"""
        assert summarize_brand_awareness([mention("chatgpt")]) is None


class TestBuildVisibilityReport:
    """Test full report assembly"""

    def test_report(self):
        """Test report assembly"""
        mentions = [
            mention("chatgpt", True, competitors=["Acme"]),
            mention("claude", False, competitors=["Acme", "Bolt"]),
        ]
        report = build_visibility_report(mentions, platforms=["chatgpt", "claude", "gemini"], failed_probes=1)
        assert report.overall_score == 50
        assert report.total_probes == 2
        assert report.total_mentions == 1
        assert report.failed_probes == 1
        assert report.platform_scores["gemini"].score == 0
        assert report.competitors[0].name == "Acme"
        assert report.brand_awareness is None

    def test_empty_report(self):
        """Test an empty report"""
        report = build_visibility_report([], platforms=["chatgpt"])
        assert report.overall_score == 0
        assert report.total_probes == 0
        assert report.competitors == []


class TestMentionResultInvariants:
    """Test model-level invariants"""

    def test_position_without_mention_rejected(self):
        """Test a position without a mention is rejected"""
        with pytest.raises(ValueError):
            MentionResult(platform="chatgpt", question=ProbeQuestion(text="q"), mentioned=False, position=2)

    def test_confidence_without_recognition_rejected(self):
        """Test confidence without recognition is rejected"""
        with pytest.raises(ValueError):
            MentionResult(platform="chatgpt", question=ProbeQuestion(text="q"), confidence_score=40)


class TestErroredServiceChecks:
    """Test knowledge gaps when service-check probes error"""

    def test_gap_seeded_from_questions(self):
        """Test a service with only errored answers is a gap"""
        question = ProbeQuestion(text="Does Foo offer gas fitting?", category=QuestionCategory.SERVICE_CHECK,
                                 tested_attribute="gas fitting")
        failed = [ProviderAnswer(platform="gemini", question=question, error="Timed out after 60s")]
        assert knowledge_gaps([], questions=[question], failed_answers=failed) == ["gas fitting"]

    def test_errored_platform_listed_as_unknown(self):
        """Test errored platforms are listed as unknown"""
        question = ProbeQuestion(text="Does Foo offer pipe repair?", category=QuestionCategory.SERVICE_CHECK,
                                 tested_attribute="pipe repair")
        ok = mention("chatgpt", category=QuestionCategory.SERVICE_CHECK, tested_attribute="pipe repair",
                     entity_recognized=True, attribute_mentioned=True, confidence_score=75)
        failed = [ProviderAnswer(platform="claude", question=question, error="RuntimeError: 503")]
        report = build_visibility_report([ok], platforms=["chatgpt", "claude"], failed_probes=1,
                                         questions=[question], failed_answers=failed)
        pipe = report.brand_awareness.service_knowledge[0]
        assert pipe.known_by == ["chatgpt"]
        assert pipe.unknown_by == ["claude"]
        assert report.knowledge_gaps == []

    def test_visibility_questions_do_not_create_summary(self):
        """Test non-brand runs have no brand summary"""
        question = ProbeQuestion(text="Who fixes pipes?")
        failed = [ProviderAnswer(platform="claude", question=question, error="boom")]
        report = build_visibility_report([], questions=[question], failed_answers=failed)
        assert report.brand_awareness is None
        assert report.knowledge_gaps == []
