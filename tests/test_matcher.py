"""
Tests for matcher.py

Precedence: exact, then containment, then token overlap.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from autofill.matcher import exact_option, match_option, match_option_value, option_exists
from autofill.models import FieldOption


# ============ Tier Tests ============

class TestExactTier:
    """Tests for exact matching."""

    def test_exact_value_case_insensitive(self):
        """Should match an option value regardless of case."""
        options = [{"value": "US", "text": "United States"}]
        assert match_option("us", options).text == "United States"

    def test_exact_text(self):
        """Should match display text."""
        options = [{"value": "1", "text": "Male"}, {"value": "2", "text": "Female"}]
        assert match_option("female", options).value == "2"

    def test_exact_beats_earlier_containment(self):
        """Should prefer a later exact match over an earlier substring match."""
        options = [{"value": "a", "text": "Yes, definitely"}, {"value": "b", "text": "Yes"}]
        assert match_option("yes", options).value == "b"


class TestContainmentTier:
    """Tests for substring matching."""

    def test_option_contains_target(self):
        """Should match bangalore to Bangalore."""
        options = [{"value": "blr", "text": "Bangalore"}]
        assert match_option_value("bangalore", options) == "blr"

    def test_partial_city_name(self):
        """Should match a city against a longer option label."""
        options = [{"value": "mum", "text": "Mumbai"}, {"value": "blr", "text": "Bangalore Urban"}]
        assert match_option_value("bangalore", options) == "blr"

    def test_option_inside_target(self):
        """Should match when the target contains the option text."""
        options = [{"value": "sf", "text": "San Francisco"}, {"value": "ny", "text": "New York"}]
        assert match_option("New York, NY", options).value == "ny"

    def test_first_in_list_order(self):
        """Should return the first containing option."""
        options = [{"value": "1", "text": "Engineering Manager"}, {"value": "2", "text": "Engineering"}]
        assert match_option("engineer", options).value == "1"

    def test_empty_option_text_never_contains(self):
        """Should skip empty value/text instead of matching everything."""
        options = [{"value": "", "text": ""}, {"value": "x", "text": "Remote"}]
        assert match_option("remote", options).value == "x"


class TestTokenTier:
    """Tests for token overlap scoring."""

    def test_best_overlap_wins(self):
        """Should pick the option sharing the longest tokens."""
        options = [
            {"value": "1", "text": "Bachelor of Arts"},
            {"value": "2", "text": "Bachelor of Technology"},
        ]
        assert match_option("B.Tech Computer Science Technology", options).value == "2"

    def test_low_score_is_no_match(self):
        """Should reject a best score of 3 or less."""
        options = [{"value": "1", "text": "abc def"}]
        assert match_option("xyz abcq", options) is None

    def test_short_tokens_ignored(self):
        """Should ignore tokens of two characters."""
        options = [{"value": "1", "text": "at of in"}]
        assert match_option("of in at on", options) is None

    def test_no_options(self):
        """Should return None for empty input."""
        assert match_option("x", []) is None
        assert match_option("", [{"value": "a", "text": "a"}]) is None
        assert match_option(None, [{"value": "a", "text": "a"}]) is None


# ============ Helper Tests ============

class TestOptionHelpers:
    """Tests for exact_option and option_exists."""

    def test_accepts_mixed_option_shapes(self):
        """Should accept dicts, strings and FieldOptions."""
        options = ["Yes", FieldOption("n", "No"), {"value": "m", "text": "Maybe"}]
        assert match_option("yes", options).value == "Yes"
        assert exact_option("no", options).value == "n"

    def test_value_before_text(self):
        """Should prefer an exact value match."""
        options = [{"value": "b", "text": "a"}, {"value": "a", "text": "b"}]
        assert exact_option("a", options).value == "a"

    def test_option_exists(self):
        """Should only accept literal options."""
        options = [{"value": "blr", "text": "Bangalore"}]
        assert option_exists("blr", options)
        assert option_exists("BANGALORE", options)
        assert not option_exists("bangalore city", options)
