"""
Tests for hybrid.py

End-to-end runs of the orchestrator against the in-memory DOM:
config first, fallback for what the config left, cache reuse, cancellation.
"""

import sys
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from autofill.config import EngineSettings
from autofill.errors import UpstreamAgentError
from autofill.hybrid import HybridAutofill
from autofill.models import FillDecision, FormFieldDescriptor
from autofill.platforms import parse_platform
from autofill.profile import Profile
from autofill.session import RunGuard, default_guard
from storage.mapping_cache import MappingCache
from storage.qa_bank import QABank
from fake_dom import aria_listbox, aria_radio_group, page, select, text_input, textarea

ACME_URL = "https://acme.test/jobs/42/apply"
GENERIC_URL = "https://careers.example.com/apply"

# (config field name, label) in form order
FIELDS = [
    ("first_name", "First Name"),
    ("last_name", "Last Name"),
    ("email", "Email"),
    ("phone", "Phone"),
    ("current_location", "Current Location"),
    ("current_company", "Current Company"),
    ("job_title", "Job Title"),
    ("linkedin", "LinkedIn Profile"),
    ("github", "GitHub"),
    ("portfolio", "Portfolio Website"),
]

PLATFORMS = {
    "acme": parse_platform("acme", {
        "urls": ["https://acme.test/*"],
        "inputSelectors": [[name, [{"path": f"//{name}"}]] for name, _ in FIELDS],
    }),
}


# ============ Fixtures ============

@pytest.fixture
def profile():
    return Profile({
        "first_name": "Asha",
        "last_name": "Rao",
        "email": "asha@example.com",
        "phone_number": "9845000000",
        "current_location": "Bangalore",
        "current_company": "Acme Labs",
        "job_title": "Data Engineer",
        "linkedin_url": "https://linkedin.com/in/asha",
        "github_url": "https://github.com/asha",
        "portfolio_url": "https://asha.dev",
    })


@pytest.fixture
def cache(tmp_path):
    return MappingCache(path=tmp_path / "mapping_cache.json")


@pytest.fixture
def no_agent():
    agent = MagicMock()
    agent.available = False
    return agent


def _settings(**kwargs):
    kwargs.setdefault("poll_interval", 0.01)
    return EngineSettings(**kwargs)


def _hybrid(cache, agent, **kwargs):
    kwargs.setdefault("settings", _settings())
    return HybridAutofill(platforms=PLATFORMS, agent=agent, cache=cache, **kwargs)


def _acme_form(registered):
    """The ten-field form, with config paths for the first `registered` fields."""
    nodes = {name: text_input(name, label=label) for name, label in FIELDS}
    doc = page(*nodes.values(), url=ACME_URL)
    for name, _ in FIELDS[:registered]:
        doc.register(f"//{name}", nodes[name])
    return doc, nodes


def _generic_form():
    nodes = {
        "email": text_input("email", label="Email"),
        "phone": text_input("phone", label="Phone"),
        "city": text_input("city", label="City"),
    }
    return page(*nodes.values(), url=GENERIC_URL), nodes


# ============ Config Path Tests ============

class TestConfigPath:
    """Platform config runs first."""

    def test_config_suffices(self, cache, no_agent, profile):
        """Should stop after the config when 7 of 10 fields are filled."""
        doc, nodes = _acme_form(registered=7)
        cache = MagicMock()

        report = _hybrid(cache, no_agent).run(doc, profile)

        assert report.method == "config"
        assert report.platform == "acme"
        assert (report.filled_count, report.total_count) == (7, 10)
        cache.get_or_compute.assert_not_called()
        assert nodes["linkedin"].writes == []

    def test_partial_config_falls_back(self, cache, no_agent, profile):
        """Should fall back on only the 4 fields a 6 of 10 config run left empty."""
        doc, nodes = _acme_form(registered=6)

        report = _hybrid(cache, no_agent).run(doc, profile)

        assert report.method == "hybrid"
        assert (report.filled_count, report.total_count) == (10, 10)
        assert {d.source_field for d in report.decisions} == {
            "job_title", "linkedin_url", "github_url", "portfolio_url",
        }
        assert nodes["email"].writes == [("native", "asha@example.com")]
        assert nodes["github"].value() == "https://github.com/asha"


# ============ Generic Path Tests ============

class TestGenericPath:
    """Pages without a platform config."""

    def test_heuristic_fill(self, cache, no_agent, profile):
        """Should fill by heuristics when no platform and no AI."""
        doc, nodes = _generic_form()

        report = _hybrid(cache, no_agent).run(doc, profile)

        assert report.method == "heuristic"
        assert report.platform is None
        assert (report.filled_count, report.total_count) == (3, 3)
        assert nodes["city"].value() == "Bangalore"
        assert report.page_signature.startswith("form_")

    def test_prefilled_fields_left_alone(self, cache, no_agent, profile):
        """Should not touch fields that already hold a value."""
        doc, nodes = _generic_form()
        nodes["email"]._value = "other@example.com"

        report = _hybrid(cache, no_agent).run(doc, profile)

        assert nodes["email"].writes == []
        assert report.total_count == 2

    def test_ai_decisions(self, cache, profile):
        """Should use the AI service and drop decisions for unknown fields."""
        doc, nodes = _generic_form()
        agent = MagicMock()
        agent.available = True
        agent.fill_fields.return_value = [
            FillDecision("field_0", "fill", "asha@example.com", 0.9, "Email"),
            FillDecision("field_99", "fill", "x", 0.9, "Ghost"),
        ]

        report = _hybrid(cache, agent).run(doc, profile)

        assert report.method == "ai"
        assert "field_99" not in {d.field_id for d in report.decisions}
        assert nodes["email"].value() == "asha@example.com"
        # the heuristic pass completes the fields the AI skipped
        assert nodes["phone"].value() == "9845000000"

    def test_ai_failure_uses_heuristics(self, cache, profile):
        """Should degrade to heuristics when the AI service fails."""
        doc, _ = _generic_form()
        agent = MagicMock()
        agent.available = True
        agent.fill_fields.side_effect = UpstreamAgentError("503")

        report = _hybrid(cache, agent).run(doc, profile)

        assert report.method == "heuristic"
        assert report.filled_count == 3

    def test_aria_controls(self, cache, no_agent):
        """Should fill role-based radio groups and listboxes by clicking them."""
        email = text_input("email", label="Email")
        relocate = aria_radio_group("Are you willing to relocate?", ["Yes", "No"])
        notice = aria_listbox("Notice period", ["Immediate", "30 days", "90 days"])
        profile = Profile({"email": "asha@example.com", "willing_to_relocate": True, "notice_period_days": 30})

        report = _hybrid(cache, no_agent).run(page(email, relocate, notice, url=GENERIC_URL), profile)

        assert (report.filled_count, report.total_count) == (3, 3)
        yes, no = relocate.children()
        assert yes.is_checked() and not no.is_checked()
        picked = [o for o in notice.children()[0].children() if o.clicks]
        assert [o.text for o in picked] == ["30 days"]

    def test_invalid_profile_date(self, cache, no_agent):
        """Should fill what it can when a profile date is not a real date."""
        email = text_input("email", label="Email")
        years = select("years", options=["1-3", "3-5"], label="Years of experience")
        profile = Profile({"email": "asha@example.com", "employment_history": [{"start_date": "2019-02-30"}]})

        report = _hybrid(cache, no_agent).run(page(email, years, url=GENERIC_URL), profile)

        assert (report.filled_count, report.total_count) == (1, 2)
        assert email.value() == "asha@example.com"
        assert years.writes == []

    def test_empty_page(self, cache, no_agent, profile):
        """Should report nothing to do on a page without fields."""
        report = _hybrid(cache, no_agent).run(page(url=GENERIC_URL), profile)
        assert (report.filled_count, report.total_count) == (0, 0)
        assert not report.cancelled


# ============ Validation Tests ============

class TestValidate:
    """Tests for AI decision clean-up."""

    DESCRIPTORS = [
        FormFieldDescriptor(field_id="field_0", element_type="select", label="Country",
                            options=[{"value": "IN", "text": "India"}, {"value": "US", "text": "United States"}]),
        FormFieldDescriptor(field_id="field_1", element_type="checkbox", label="Terms"),
    ]

    def test_exact_option_text(self, cache, no_agent):
        """Should move an exact option text onto its value without penalty."""
        decisions = _hybrid(cache, no_agent).validate(
            [FillDecision("field_0", "select", "United States", 0.9, "Country")], self.DESCRIPTORS)
        assert decisions[0].value == "US"
        assert decisions[0].confidence == 0.9

    def test_repaired_option_capped(self, cache, no_agent):
        """Should cap the confidence of a fuzzy-repaired option at 0.7."""
        decisions = _hybrid(cache, no_agent).validate(
            [FillDecision("field_0", "select", "Republic of India", 0.95, "Country")], self.DESCRIPTORS)
        assert decisions[0].value == "IN"
        assert decisions[0].confidence == pytest.approx(0.7)
        assert "Matched to closest option: India" in decisions[0].reasoning

    def test_drops_unknown_and_duplicate_ids(self, cache, no_agent):
        """Should keep the first decision per known field."""
        decisions = _hybrid(cache, no_agent).validate([
            FillDecision("field_7", "fill", "x", 0.9),
            FillDecision("field_1", "fill", "yes", 0.9),
            FillDecision("field_1", "fill", "no", 0.9),
        ], self.DESCRIPTORS)
        assert len(decisions) == 1
        assert decisions[0].action == "check"
        assert decisions[0].value is True

    def test_skip_passes_through(self, cache, no_agent):
        """Should keep skip decisions as they are."""
        decisions = _hybrid(cache, no_agent).validate(
            [FillDecision("field_0", "skip", "", 0.0, "Not sure")], self.DESCRIPTORS)
        assert decisions[0].action == "skip"


# ============ Cache Tests ============

class TestMappingCacheUse:
    """Reuse and confirmation of learned mappings."""

    def test_auto_confirm(self, cache, no_agent, profile):
        """Should confirm a successful fill into the cache."""
        doc, _ = _generic_form()
        report = _hybrid(cache, no_agent).run(doc, profile)
        assert cache.get(report.page_signature).confirmation_rate == pytest.approx(0.65)

    def test_no_auto_confirm(self, cache, no_agent, profile):
        """Should leave the rate alone when auto-confirm is off."""
        doc, _ = _generic_form()
        report = _hybrid(cache, no_agent, settings=_settings(auto_confirm=False)).run(doc, profile)
        assert cache.get(report.page_signature).confirmation_rate == 0.5

    def test_trusted_mapping_reused_with_current_profile(self, cache, no_agent, profile):
        """Should reuse a trusted mapping and fill it from the current profile."""
        hybrid = _hybrid(cache, no_agent)
        for _ in range(3):
            doc, _ = _generic_form()
            hybrid.run(doc, profile)

        doc, nodes = _generic_form()
        updated = Profile(dict(profile.to_dict(), email="new@example.com"))
        with patch.object(hybrid.mapper, "map_fields") as map_fields:
            report = hybrid.run(doc, updated)

        map_fields.assert_not_called()
        assert report.cached
        assert nodes["email"].value() == "new@example.com"

    def test_cache_holds_no_personal_values(self, cache, no_agent, profile):
        """Should store attribute names, not the profile's text values."""
        doc, _ = _generic_form()
        report = _hybrid(cache, no_agent).run(doc, profile)
        mappings = cache.get(report.page_signature).mappings
        assert {m["canonical"] for m in mappings} == {"email", "phone_number", "current_location"}
        assert all("value" not in m for m in mappings)


# ============ Q&A Bank Tests ============

class TestSavedAnswers:
    """Q&A bank lookups and auto-saving."""

    def test_saved_answer_fills_question(self, cache, no_agent, profile, tmp_path):
        """Should answer a free-text question from the bank."""
        bank = QABank(path=tmp_path / "qa_bank.json")
        bank.create("Why do you want to join us?", "I like the team.")
        box = textarea("why", label="Why do you want to join us?")

        report = _hybrid(cache, no_agent, qa_bank=bank).run(page(box, url=GENERIC_URL), profile)

        assert box.value() == "I like the team."
        assert report.filled_count == 1
        assert bank.list_answers()[0].use_count == 1

    def test_ai_answers_auto_saved(self, cache, profile, tmp_path):
        """Should keep new free-text AI answers when auto-save is on."""
        bank = QABank(path=tmp_path / "qa_bank.json")
        agent = MagicMock()
        agent.available = True
        agent.fill_fields.return_value = [
            FillDecision("field_0", "fill", "A streaming pipeline.", 0.8, "From experience"),
        ]
        box = textarea("project", label="Describe a project you are proud of")
        hybrid = _hybrid(cache, agent, qa_bank=bank, settings=_settings(auto_save_answers=True))

        hybrid.run(page(box, url=GENERIC_URL), profile)

        saved = bank.list_answers()
        assert len(saved) == 1
        assert saved[0].answer_text == "A streaming pipeline."
        assert saved[0].auto_saved
        assert saved[0].tags == ["auto"]


# ============ Concurrency Tests ============

class TestRunLifecycle:
    """Cancellation and re-entrancy."""

    def test_navigation_cancels_run(self, cache, no_agent, profile):
        """Should stop a waiting run when the page navigates away."""
        config = parse_platform("acme", {
            "urls": ["https://acme.test/*"],
            "inputSelectors": [["email", [{"actions": [
                {"op": "set_value", "path": "//never", "time": 10000},
            ]}]]],
        })
        doc = page(text_input("email"), url=ACME_URL)
        hybrid = HybridAutofill(platforms={"acme": config}, agent=no_agent, cache=cache, settings=_settings())
        threading.Timer(0.1, doc.navigate).start()

        report = hybrid.run(doc, profile)

        assert report.cancelled
        assert report.filled_count == 0
        assert doc.teardown_callbacks == []

    def test_busy_when_run_in_progress(self, cache, no_agent, profile):
        """Should refuse a second run on the same document."""
        guard = RunGuard()
        doc, nodes = _generic_form()
        hybrid = _hybrid(cache, no_agent, guard=guard)

        with guard.acquire(doc.key):
            report = hybrid.run(doc, profile)

        assert report.busy
        assert nodes["email"].writes == []
        assert not guard.is_active(doc.key)

    def test_orchestrators_share_default_guard(self, cache, no_agent, profile):
        """Should keep a second orchestrator off a page another one is filling."""
        doc, nodes = _generic_form()
        first = _hybrid(cache, no_agent)
        second = _hybrid(cache, no_agent)
        assert first.guard is second.guard is default_guard

        with first.guard.acquire(doc.key):
            report = second.run(doc, profile)

        assert report.busy
        assert nodes["email"].writes == []
        assert second.run(doc, profile).filled_count == 3
