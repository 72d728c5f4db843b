"""
Tests for ats_detector.py

URL glob matching and first-match platform selection.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from autofill.ats_detector import detect_platform, glob_to_regex, url_matches
from autofill.platforms import parse_platforms


def _platforms(*entries):
    return parse_platforms({"platforms": {
        pid: {"urls": urls, "inputSelectors": []} for pid, urls in entries
    }})


# ============ Glob Tests ============

class TestUrlMatches:
    """Tests for glob patterns."""

    def test_star_matches_subdomain_and_path(self):
        """Should match a naukri apply page."""
        assert url_matches("https://www.naukri.com/apply/123", "*.naukri.com/*")

    def test_other_tld_does_not_match(self):
        """Should not match naukri.org."""
        assert not url_matches("https://naukri.org/apply", "*.naukri.com/*")

    def test_star_matches_empty(self):
        """Should let * match an empty run."""
        assert url_matches("https://jobs.lever.co/", "*://jobs.lever.co/*")

    def test_question_mark_matches_exactly_one_char(self):
        """Should treat ? as a single character."""
        assert url_matches("https://a.com/job1", "https://a.com/job?")
        assert not url_matches("https://a.com/job12", "https://a.com/job?")
        assert not url_matches("https://a.com/job", "https://a.com/job?")

    def test_regex_characters_are_literal(self):
        """Should escape dots, plus signs and brackets."""
        assert not url_matches("https://aXcom/x", "https://a.com/*")
        assert url_matches("https://a.com/c++/[1]", "https://a.com/c++/[1]")

    def test_pattern_is_anchored(self):
        """Should require the whole URL to match."""
        assert not url_matches("https://evil.com/?next=https://jobs.lever.co/x", "https://jobs.lever.co/*")

    def test_compiled_pattern_is_cached(self):
        """Should reuse the compiled regex."""
        assert glob_to_regex("*://x/*") is glob_to_regex("*://x/*")


# ============ Detection Tests ============

class TestDetectPlatform:
    """Tests for detect_platform."""

    def test_first_matching_platform_wins(self):
        """Should return the first platform in config order."""
        platforms = _platforms(
            ("generic", ["*://*/*"]),
            ("lever", ["*://jobs.lever.co/*"]),
        )
        assert detect_platform("https://jobs.lever.co/acme/1", platforms) == "generic"

    def test_later_pattern_of_same_platform(self):
        """Should try every pattern of a platform."""
        platforms = _platforms(("workday", ["*://*.myworkday.com/*", "*://*.myworkdayjobs.com/*"]))
        assert detect_platform("https://acme.wd5.myworkdayjobs.com/en-US/job/1", platforms) == "workday"

    def test_no_match_returns_none(self):
        """Should route unknown sites to the generic path."""
        platforms = _platforms(("lever", ["*://jobs.lever.co/*"]))
        assert detect_platform("https://careers.example.com/apply", platforms) is None

    def test_empty_url(self):
        """Should return None for an empty URL."""
        assert detect_platform("", _platforms(("any", ["*"]))) is None

    def test_bundled_configs(self):
        """Should detect the bundled platforms."""
        assert detect_platform("https://boards.greenhouse.io/acme/jobs/123") == "greenhouse"
        assert detect_platform("https://jobs.lever.co/acme/abc/apply") == "lever"
        assert detect_platform("https://www.naukri.com/job-listings-123") == "naukri"
        assert detect_platform("https://docs.google.com/forms/d/e/abc/viewform") == "google_forms"
        assert detect_platform("https://acme.typeform.com/to/AbC123") == "typeform"
        assert detect_platform("https://example.org/careers") is None
