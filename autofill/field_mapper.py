"""
Heuristic field mapper - regex/keyword fallback when no platform config
and no AI answer is available.

Each field's identifying text is checked against an ordered rule table;
the first rule that matches names the profile attribute to use. Specific
patterns come before generic ones ("first name" before "name", "current
location" before "location"). Every rule carries a fixed confidence.

Fields the profile has no value for, or with no matching rule, get no
decision at all.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .matcher import match_option
from .models import (
    ACTION_CHECK,
    ACTION_FILL,
    ACTION_SELECT,
    FieldOption,
    FillDecision,
    FormFieldDescriptor,
    as_bool,
    as_text,
)
from .profile import Profile, is_empty

logger = logging.getLogger(__name__)

RULE_PLAIN = "plain"
RULE_NOTICE = "notice"
RULE_EXPERIENCE = "experience"

LOCATION_DROPDOWN_CONFIDENCE = 0.7
LOCATION_DROPDOWN_PATTERN = re.compile(r"location|\bcity\b|\bstate\b|country", re.I)


@dataclass(frozen=True)
class FieldRule:
    canonical: str
    pattern: re.Pattern
    confidence: float
    reasoning: str
    kind: str = RULE_PLAIN
    exact: tuple = ()   # whole identifiers that match on their own ("name")

    def matches(self, text: str, parts: Sequence[str] = ()) -> bool:
        if self.pattern.search(text):
            return True
        return any(p.strip().lower() in self.exact for p in parts if p)


def _rule(canonical, pattern, confidence, reasoning, kind=RULE_PLAIN, exact=()):
    return FieldRule(canonical, re.compile(pattern, re.I), confidence, reasoning, kind, tuple(exact))


FIELD_RULES: List[FieldRule] = [
    # Name
    _rule("first_name", r"first[\s_-]?name|fname|given[\s_-]?name", 0.9, "First name field"),
    _rule("last_name", r"last[\s_-]?name|lname|surname|family[\s_-]?name", 0.9, "Last name field"),
    _rule("full_name", r"full[\s_-]?name|candidate[\s_-]?name|your[\s_-]?name", 0.9, "Full name field",
          exact=("name",)),
    # Contact
    _rule("email", r"email|e-mail", 0.95, "Email field"),
    _rule("phone_number", r"phone|mobile|contact|cell|\btel", 0.9, "Phone field"),
    # Yes/no questions that mention locations or work
    _rule("willing_to_relocate", r"relocat", 0.75, "Relocation question"),
    _rule("requires_sponsorship", r"sponsorship", 0.75, "Sponsorship question"),
    _rule("work_authorization", r"work[\s_-]?(authori[sz]ation|permit)|authori[sz]ed[\s_-]?to[\s_-]?work|legally[\s_-]?authori[sz]ed",
          0.75, "Work authorization question"),
    # Address
    _rule("address_line_1", r"address[\s_-]?line[\s_-]?1|street[\s_-]?address", 0.8, "Address line 1"),
    _rule("address_line_2", r"address[\s_-]?line[\s_-]?2", 0.7, "Address line 2"),
    _rule("address", r"address", 0.85, "Address field"),
    # Notice period, salary and experience questions often mention a role,
    # company or location, so they are tested before those fields
    _rule("notice_period_days", r"notice[\s_-]?period", 0.8, "Notice period", kind=RULE_NOTICE),
    _rule("current_ctc", r"current[\s_-]?(ctc|salary|compensation|package)", 0.85, "Current CTC"),
    _rule("expected_ctc", r"expected[\s_-]?(ctc|salary|compensation|package)", 0.85, "Expected CTC"),
    _rule("desired_salary", r"desired[\s_-]?(salary|ctc)", 0.8, "Desired salary"),
    # Work history first: its patterns mention "experience"
    _rule("work_history", r"work[\s_-]?history|employment[\s_-]?history|experience[\s_-]?details", 0.75, "Work history"),
    _rule("total_experience_years", r"experience|years[\s_-]?of[\s_-]?experience", 0.8, "Experience years",
          kind=RULE_EXPERIENCE),
    # Location
    _rule("current_location", r"current[\s_-]?(location|city)", 0.85, "Current location"),
    _rule("preferred_location", r"preferred[\s_-]?(location|city)", 0.85, "Preferred location"),
    _rule("current_location", r"location|\bcity\b", 0.7, "Location field"),
    # Employment
    _rule("current_company", r"current[\s_-]?(company|employer|organi[sz]ation)", 0.85, "Current company"),
    _rule("current_company", r"company|employer|organi[sz]ation", 0.7, "Company field"),
    _rule("job_title", r"designation|position|\broles?\b|job[\s_-]?title|title", 0.85, "Job title field"),
    _rule("skills", r"skills|technologies|tech[\s_-]?stack", 0.85, "Skills field"),
    # Education
    _rule("degree", r"education|qualification|degree", 0.75, "Education/degree field"),
    _rule("institution", r"college|university|institution", 0.75, "Institution field"),
    # URLs
    _rule("linkedin_url", r"linkedin", 0.9, "LinkedIn URL"),
    _rule("portfolio_url", r"portfolio|personal[\s_-]?(website|site)", 0.9, "Portfolio URL"),
    _rule("github_url", r"github", 0.9, "GitHub URL"),
    # Free text
    _rule("cover_letter", r"cover[\s_-]?letter|motivation|statement", 0.8, "Cover letter"),
    # Demographics
    _rule("gender", r"\bgender\b|\bsex\b", 0.7, "Gender"),
    _rule("date_of_birth", r"(date|day)[\s_-]?of[\s_-]?birth|\bdob\b|birth[\s_-]?date", 0.7, "Date of birth"),
    _rule("nationality", r"nationality|citizenship", 0.7, "Nationality"),
    _rule("ethnicity", r"ethnicity|\brace\b", 0.7, "Ethnicity"),
    _rule("veteran_status", r"veteran|military[\s_-]?service", 0.7, "Veteran status"),
    _rule("disability_status", r"disabilit", 0.7, "Disability status"),
    _rule("availability_date", r"available[\s_-]?from|start[\s_-]?date|joining[\s_-]?date", 0.7, "Availability date"),
    _rule("hear_about_us", r"hear[\s_-]?about|how[\s_-]?did[\s_-]?you[\s_-]?(hear|find)", 0.7, "Referral source"),
]

RULES_BY_CANONICAL: Dict[str, FieldRule] = {}
for _r in FIELD_RULES:
    RULES_BY_CANONICAL.setdefault(_r.canonical, _r)


# ============ Numeric range matching ============

NOTICE_BANDS = [
    (7, re.compile(r"immediate|\b0\b|(?<!not )available|\bnow\b", re.I)),
    (20, re.compile(r"15|two[\s_-]?week", re.I)),
    (45, re.compile(r"30|one[\s_-]?month|1[\s_-]?month", re.I)),
    (75, re.compile(r"60|two[\s_-]?month|2[\s_-]?month", re.I)),
    (None, re.compile(r"90|three[\s_-]?month|3[\s_-]?month", re.I)),
]
NOTICE_TOLERANCE_DAYS = 15
EXPERIENCE_TOLERANCE_YEARS = 1


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = re.search(r"\d+(?:\.\d+)?", str(value or ""))
    return float(match.group()) if match else None


def match_notice_period(days: Any, options: Iterable[Any]) -> Optional[FieldOption]:
    """
    Pick the option for a notice period of `days`.

    The day count falls into one of five bands (<=7, <=20, <=45, <=75, more),
    each with a text pattern. If no option matches the band, accept the first
    option whose number is within NOTICE_TOLERANCE_DAYS.
    """
    days = _to_number(days)
    if days is None:
        return None
    opts = [FieldOption.coerce(o) for o in options]

    pattern = next(p for limit, p in NOTICE_BANDS if limit is None or days <= limit)
    for opt in opts:
        if pattern.search(opt.text) or pattern.search(opt.value):
            return opt

    for opt in opts:
        number = re.search(r"(\d+)", opt.text)
        if number and abs(int(number.group(1)) - days) <= NOTICE_TOLERANCE_DAYS:
            return opt
    return None


def match_experience(years: Any, options: Iterable[Any]) -> Optional[FieldOption]:
    """
    Pick the option for `years` of experience.

    Per option, in list order: "N-M" range containing years, "N+" with
    years >= N, or "N year(s)" within EXPERIENCE_TOLERANCE_YEARS.
    """
    years = _to_number(years)
    if years is None:
        return None
    for opt in (FieldOption.coerce(o) for o in options):
        range_match = re.search(r"(\d+)\s*-\s*(\d+)", opt.text)
        if range_match and int(range_match.group(1)) <= years <= int(range_match.group(2)):
            return opt

        plus_match = re.search(r"(\d+)\+", opt.text)
        if plus_match and years >= int(plus_match.group(1)):
            return opt

        exact_match = re.match(r"^(\d+)\s*year", opt.text, re.I)
        if exact_match and abs(int(exact_match.group(1)) - years) <= EXPERIENCE_TOLERANCE_YEARS:
            return opt
    return None


# ============ Mapper ============

class HeuristicMapper:
    """Maps field descriptors to profile values with fixed-confidence rules."""

    def __init__(self, rules: Optional[List[FieldRule]] = None):
        self.rules = list(rules if rules is not None else FIELD_RULES)

    def classify(self, descriptor: FormFieldDescriptor) -> Optional[FieldRule]:
        """First rule matching the field. Context text is only consulted when the field's own text matches nothing."""
        parts = [descriptor.name, descriptor.id, descriptor.placeholder, descriptor.label, descriptor.aria_label]
        own_text = descriptor.search_text(include_context=False)
        for rule in self.rules:
            if rule.matches(own_text, parts):
                return rule

        context_text = " ".join(p for p in (descriptor.surrounding_text, descriptor.section_title) if p).lower()
        if context_text:
            for rule in self.rules:
                if rule.matches(context_text):
                    return rule
        return None

    def decide(self, descriptor: FormFieldDescriptor, profile: Profile) -> Optional[FillDecision]:
        """Decision for one field, or None when nothing fits."""
        rule = self.classify(descriptor)
        decision = None
        if rule is not None:
            decision = self.decide_for(descriptor, rule.canonical, profile, rule.confidence, rule.reasoning, rule.kind)
        if decision is None and descriptor.element_type == "select":
            decision = self._location_dropdown(descriptor, profile)
        return decision

    def decide_for(self, descriptor: FormFieldDescriptor, canonical: str, profile: Profile,
                   confidence: Optional[float] = None, reasoning: str = "",
                   kind: Optional[str] = None) -> Optional[FillDecision]:
        """Resolve a known canonical attribute into a decision for this field."""
        known = RULES_BY_CANONICAL.get(canonical)
        if kind is None:
            kind = known.kind if known else RULE_PLAIN
        if confidence is None:
            confidence = known.confidence if known else 0.7
        if not reasoning:
            reasoning = known.reasoning if known else f"Profile attribute {canonical}"

        value = profile.value(canonical)
        if is_empty(value):
            return None

        if descriptor.is_enumerable:
            if not descriptor.options:
                return None
            if kind == RULE_NOTICE:
                option = match_notice_period(value, descriptor.options)
                reasoning = f"Notice period: {as_text(value)} days"
            elif kind == RULE_EXPERIENCE:
                option = match_experience(value, descriptor.options)
                reasoning = f"Experience: {as_text(value)} years"
            else:
                option = match_option(as_text(value), descriptor.options)
            if option is None:
                return None
            return FillDecision(descriptor.field_id, ACTION_SELECT, option.value, confidence, reasoning, canonical)

        if descriptor.element_type == "checkbox":
            state = as_bool(value)
            if state is None:
                return None
            return FillDecision(descriptor.field_id, ACTION_CHECK, state, confidence, reasoning, canonical)

        return FillDecision(descriptor.field_id, ACTION_FILL, as_text(value), confidence, reasoning, canonical)

    def _location_dropdown(self, descriptor: FormFieldDescriptor, profile: Profile) -> Optional[FillDecision]:
        if not descriptor.options or not LOCATION_DROPDOWN_PATTERN.search(descriptor.search_text()):
            return None
        location = profile.value("current_location") or profile.value("preferred_location")
        if is_empty(location):
            return None
        option = match_option(as_text(location), descriptor.options)
        if option is None:
            return None
        return FillDecision(
            descriptor.field_id, ACTION_SELECT, option.value, LOCATION_DROPDOWN_CONFIDENCE,
            f"Location dropdown: matched {as_text(location)}", "current_location",
        )

    def map_fields(self, descriptors: Iterable[FormFieldDescriptor], profile: Profile) -> List[FillDecision]:
        """Decisions for every field that has one, in descriptor order."""
        descriptors = list(descriptors)
        decisions = []
        for descriptor in descriptors:
            decision = self.decide(descriptor, profile)
            if decision is not None:
                decisions.append(decision)
        logger.info(f"[Heuristic] {len(decisions)} decisions for {len(descriptors)} fields")
        return decisions

    def guess_mappings(self, descriptors: Iterable[FormFieldDescriptor]) -> List[Dict[str, Any]]:
        """Profile-independent field -> canonical attribute guesses."""
        guesses = []
        for descriptor in descriptors:
            rule = self.classify(descriptor)
            if rule is None:
                continue
            guesses.append({
                "field_id": descriptor.field_id,
                "canonical": rule.canonical,
                "confidence": rule.confidence,
                "reasoning": rule.reasoning,
            })
        return guesses
