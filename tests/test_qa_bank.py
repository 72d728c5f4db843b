"""
Tests for storage/qa_bank.py
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from storage.qa_bank import QABank, cosine_similarity, text_similarity

WHY_US = "Why do you want to work at our company?"


@pytest.fixture
def bank(tmp_path):
    return QABank(path=tmp_path / "qa_bank.json")


# ============ Similarity Tests ============

class TestSimilarity:
    """Tests for text and embedding similarity."""

    def test_jaccard(self):
        """Should score word overlap, ignoring short words and punctuation."""
        assert text_similarity("Why this company?", "why THIS company") == 1.0
        assert text_similarity("why this company", "why that company") == pytest.approx(0.5)
        assert text_similarity("a an", "a an") == 0.0

    def test_cosine(self):
        """Should score vector direction."""
        assert cosine_similarity([1, 0], [2, 0]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [0, 1]) == 0.0
        assert cosine_similarity([1, 0], [1, 0, 0]) == 0.0

    def test_embeddings_take_precedence(self, bank):
        """Should use cosine when both sides have embeddings."""
        bank.create("Totally unrelated wording here", "Answer", embedding=[1.0, 0.0])
        match = bank.find_similar(WHY_US, embedding=[1.0, 0.0])
        assert match is not None
        assert match[1] == pytest.approx(1.0)

    def test_falls_back_to_words_without_embedding(self, bank):
        """Should use word overlap when the entry has no embedding."""
        bank.create(WHY_US, "Because")
        assert bank.find_similar(WHY_US, embedding=[1.0, 0.0])[1] == pytest.approx(1.0)


# ============ CRUD Tests ============

class TestCrud:
    """Tests for create, update, delete and listing."""

    def test_create_and_get(self, bank):
        """Should persist a new entry."""
        entry = bank.create(" Why us? ", "Because", tags=["motivation"])
        stored = QABank(path=bank.path).get(entry.id)
        assert stored.question_text == "Why us?"
        assert stored.tags == ["motivation"]
        assert stored.use_count == 0
        assert not stored.auto_saved

    def test_create_rejects_blank(self, bank):
        """Should reject empty question or answer."""
        with pytest.raises(ValueError):
            bank.create(" ", "x")

    def test_update(self, bank):
        """Should change the answer and clear a stale embedding when the question changes."""
        entry = bank.create("Old question", "Old", embedding=[1.0])
        updated = bank.update(entry.id, question_text="New question", answer_text="New")
        assert updated.answer_text == "New"
        assert updated.question_embedding is None
        assert bank.update("missing", answer_text="x") is None

    def test_delete(self, bank):
        """Should remove the entry once."""
        entry = bank.create("Q one", "A")
        assert bank.delete(entry.id)
        assert not bank.delete(entry.id)
        assert bank.list_answers() == []

    def test_list_order(self, bank):
        """Should list most used first."""
        first = bank.create("Question one", "A")
        second = bank.create("Question two", "B")
        bank.record_usage(second.id)
        assert [e.id for e in bank.list_answers()] == [second.id, first.id]


# ============ Search Tests ============

class TestSearch:
    """Tests for find_similar and find_similar_answers."""

    def test_find_similar_records_usage(self, bank):
        """Should return the match and count the use."""
        entry = bank.create(WHY_US, "Because")
        found, score = bank.find_similar("why do you want to work at our company")
        assert found.id == entry.id
        assert score >= 0.75
        assert found.use_count == 1
        assert bank.get(entry.id).last_used_at is not None

    def test_find_similar_below_threshold(self, bank):
        """Should return None under 0.75."""
        bank.create(WHY_US, "Because")
        assert bank.find_similar("Describe your biggest weakness") is None

    def test_suggestions_top_three(self, bank):
        """Should return at most three suggestions at or above 0.5, best first."""
        bank.create("why want work company", "1")
        bank.create("why want work company today", "2")
        bank.create("why want work company here today", "3")
        bank.create("why want work company here today please", "4")
        bank.create("unrelated question entirely", "5")

        results = bank.find_similar_answers("why want work company")
        assert [e.answer_text for e, _ in results] == ["1", "2", "3"]
        assert all(score >= 0.5 for _, score in results)

    def test_suggestions_do_not_count_usage(self, bank):
        """Should not change use counts."""
        entry = bank.create(WHY_US, "Because")
        bank.find_similar_answers(WHY_US)
        assert bank.get(entry.id).use_count == 0
