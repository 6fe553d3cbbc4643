import pytest

from visibility_scan.agents.dedupe_rank import (
    CandidateQuestion,
    SIMILARITY_THRESHOLD,
    dedupe_and_rank_questions,
    dedupe_competitors,
    group_similar_questions,
    pick_representative,
    question_similarity,
)


def cq(text, category="reputation", provider="chatgpt"):
    return CandidateQuestion(text=text, category=category, provider=provider)


class TestQuestionSimilarity:
    """Test word-Jaccard similarity"""

    def test_identical(self):
        """Test similarity of identical texts"""
        assert question_similarity("What is it like to work at Foo", "what is it like to work at foo") == 1.0

    def test_short_words_ignored(self):
        """Test short words are ignored in similarity"""
        # only tokens longer than 2 chars count: {"work", "foo"} vs {"work", "bar"}
        assert question_similarity("is it work at foo", "is it work at bar") == pytest.approx(1 / 3)

    def test_empty(self):
        """Test similarity when only short words remain"""
        assert question_similarity("a b", "what now") == 0.0


class TestGrouping:
    """Test near-duplicate collapse"""

    def test_similar_questions_collapse(self):
        """Test similar questions collapse into one group"""
        a = "What is it like to work at Foo Corp?"
        b = "What is it like working at Foo Corp?"
        assert question_similarity(a, b) >= SIMILARITY_THRESHOLD
        groups = group_similar_questions([cq(a), cq(b, provider="claude")])
        assert len(groups) == 1

    def test_dissimilar_questions_kept(self):
        """Test dissimilar questions stay separate"""
        a = "Does Foo Corp pay well compared to rivals?"
        b = "What is the culture like at Foo Corp?"
        assert question_similarity(a, b) < SIMILARITY_THRESHOLD
        groups = group_similar_questions([cq(a), cq(b)])
        assert len(groups) == 2

    def test_compares_against_group_representative(self):
        """Test grouping compares against the group representative"""
        groups = group_similar_questions([
            cq("alpha beta gamma delta"),
            cq("alpha beta gamma epsilon"),      # 3/5 vs rep -> joins
            cq("gamma epsilon zeta theta"),      # 1/7 vs rep -> new group
        ])
        assert [len(g) for g in groups] == [2, 1]


class TestRepresentative:
    """Test representative selection"""

    def test_prefers_medium_length(self):
        """Test medium-length wording is preferred"""
        group = [cq("Foo pay?"), cq("Does Foo Corp pay its engineers well?"), cq("Is Foo Corp pay good for staff?")]
        assert pick_representative(group).text == "Does Foo Corp pay its engineers well?"

    def test_first_when_none_in_range(self):
        """Test first wording wins when none is medium length"""
        group = [cq("Foo pay?"), cq("Foo wage?")]
        assert pick_representative(group).text == "Foo pay?"


class TestDedupeAndRank:
    """Test ranking by provider agreement and category diversity"""

    def test_agreement_ranks_first(self):
        """Test questions suggested by more platforms rank first"""
        candidates = [
            cq("Is Foo Corp a good place to work overall?", provider="chatgpt"),
            cq("How does Foo Corp compare with Bar Inc for staff?", "comparison", provider="chatgpt"),
            cq("How does Foo Corp compare with Bar Inc for staff pay?", "comparison", provider="claude"),
        ]
        ranked = dedupe_and_rank_questions(candidates, limit=10)
        assert len(ranked) == 2
        assert ranked[0].category == "comparison"
        assert ranked[0].suggested_by == ["chatgpt", "claude"]
        assert ranked[0].relevance_score == 20
        assert ranked[1].relevance_score == 10

    def test_category_cap_then_backfill(self):
        """Test per-category cap with backfill"""
        candidates = [
            cq("alpha1 alpha2 alpha3", "reputation"),
            cq("beta1 beta2 beta3", "reputation"),
            cq("gamma1 gamma2 gamma3", "reputation"),
            cq("delta1 delta2 delta3", "comparison"),
        ]
        ranked = dedupe_and_rank_questions(candidates, limit=3)
        # cap is ceil(3/3) == 1 per category before backfilling
        assert [r.text for r in ranked] == ["alpha1 alpha2 alpha3", "delta1 delta2 delta3", "beta1 beta2 beta3"]

    def test_cap_of_two_for_limit_four(self):
        """Test category cap of two for a limit of four"""
        candidates = [cq(f"{w} {w}x {w}y {w}z", "culture") for w in ["one", "two", "six", "ten", "red"]]
        candidates.append(cq("growth path options", "growth"))
        ranked = dedupe_and_rank_questions(candidates, limit=4)
        assert [r.category for r in ranked] == ["culture", "culture", "growth", "culture"]
        assert ranked[3].text.startswith("six")

    def test_most_common_category(self):
        """Test the most common category is chosen"""
        candidates = [
            cq("What is the culture like at Foo Corp?", "culture", "chatgpt"),
            cq("What is the culture like at Foo Corp today?", "reputation", "claude"),
            cq("What is the culture really like at Foo Corp?", "reputation", "gemini"),
        ]
        ranked = dedupe_and_rank_questions(candidates)
        assert len(ranked) == 1
        assert ranked[0].category == "reputation"

    def test_empty(self):
        """Test ranking an empty list"""
        assert dedupe_and_rank_questions([]) == []


class TestDedupeCompetitors:
    """Test employer competitor dedupe"""

    def test_normalized_key(self):
        """Test competitors merge on a normalized key"""
        assert dedupe_competitors(["Bar Inc", "bar inc.", "BAR-INC", "Baz"]) == ["Bar Inc", "Baz"]

    def test_cap(self):
        """Test competitor list is capped"""
        assert len(dedupe_competitors([f"C{i}" for i in range(9)])) == 5
