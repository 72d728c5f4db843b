"""
Profile provider for form filling.

Wraps the candidate's profile (a flat attribute bag keyed by canonical
names, plus employment_history[] and education[] lists) and handles:
- aliases used by platform configs (phone -> phone_number, ...)
- nested lookups ('education.0.degree')
- attributes derived from others (full_name, total_experience_years, ...)
- reverse lookup from a value to the attribute holding it
"""

import json
import logging
import re
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import DEFAULT_PROFILE_PATH

logger = logging.getLogger(__name__)

# Field names used in platform configs -> profile attribute
FIELD_ALIASES = {
    "phone": "phone_number",
    "phone_stripped": "phone_number",
    "mobile": "phone_number",
    "name": "full_name",
    "linkedin": "linkedin_url",
    "github": "github_url",
    "portfolio": "portfolio_url",
    "website": "portfolio_url",
    "coverLetter": "cover_letter",
    "resume": "resume_url",
    "address_1": "address_line_1",
    "address_2": "address_line_2",
    "city": "current_location",
    "location": "current_location",
    "postal_code": "zip_code",
    "zip": "zip_code",
    "work_auth": "work_authorization",
    "sponsorship": "requires_sponsorship",
    "disability_v2": "disability_status",
    "veteran_v2": "veteran_status",
    "veteran": "veteran_status",
    "disability": "disability_status",
    "company": "current_company",
    "title": "job_title",
    "notice_period": "notice_period_days",
    "experience": "total_experience_years",
    "salary": "expected_ctc",
    "school": "institution",
    "relocate": "willing_to_relocate",
    "start_date": "availability_date",
}

# Attributes considered when turning a value back into an attribute name
REVERSE_LOOKUP_ATTRIBUTES = [
    "email", "phone_number", "first_name", "last_name", "full_name",
    "current_location", "preferred_location", "address", "address_line_1", "address_line_2",
    "current_company", "job_title", "notice_period_days", "current_ctc", "expected_ctc",
    "desired_salary", "total_experience_years", "skills", "degree", "institution",
    "field_of_study", "linkedin_url", "github_url", "portfolio_url", "gender",
    "nationality", "citizenship", "work_authorization", "requires_sponsorship", "visa_status",
    "ethnicity", "veteran_status", "disability_status", "willing_to_relocate",
    "availability_date", "date_of_birth", "hear_about_us", "zip_code",
]


def is_empty(value: Any) -> bool:
    """None, blank strings and empty collections are absent. 0 and False are values."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _parse_date(raw: Any) -> Optional[date]:
    if not raw or not isinstance(raw, str):
        return None
    match = re.match(r"(\d{4})(?:-(\d{1,2}))?(?:-(\d{1,2}))?", raw.strip())
    if not match:
        return None
    year, month, day = match.groups()
    try:
        return date(int(year), int(month or 1), int(day or 1))
    except ValueError:
        logger.debug(f"[Profile] Ignoring invalid date {raw!r}")
        return None


class Profile:
    """Read-only view of the candidate profile."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = dict(data or {})

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Profile":
        """Load a profile from a JSON file."""
        path = Path(path or DEFAULT_PROFILE_PATH)
        with path.open("r", encoding="utf-8") as f:
            return cls(json.load(f))

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.data)

    @staticmethod
    def attribute_for(field_name: str) -> str:
        """Translate a config/canonical field name to a profile attribute name."""
        return FIELD_ALIASES.get(field_name, field_name)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a raw value by key (supports nested keys like 'education.0.degree')."""
        value: Any = self.data
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
            elif isinstance(value, list) and k.isdigit():
                index = int(k)
                value = value[index] if index < len(value) else None
            else:
                return default
            if value is None:
                return default
        return value

    def value(self, field_name: str) -> Any:
        """
        Value for a canonical field, derived from related attributes when
        the profile has no direct value. None when absent.
        """
        attribute = self.attribute_for(field_name)
        direct = self.get(attribute)
        if not is_empty(direct):
            return direct
        derive = getattr(self, f"_derive_{attribute}", None)
        if derive is None:
            return None
        derived = derive()
        return None if is_empty(derived) else derived

    def has(self, field_name: str) -> bool:
        return not is_empty(self.value(field_name))

    def find_attribute(self, value: Any) -> Optional[str]:
        """Name of the attribute whose value equals value (case-insensitive), if any."""
        if is_empty(value):
            return None
        target = str(value).strip().lower()
        for attribute in REVERSE_LOOKUP_ATTRIBUTES:
            candidate = self.value(attribute)
            if is_empty(candidate) or isinstance(candidate, bool):
                continue
            if isinstance(candidate, (list, tuple)):
                candidate = ", ".join(str(c) for c in candidate)
            if isinstance(candidate, float) and candidate.is_integer():
                candidate = int(candidate)
            if str(candidate).strip().lower() == target:
                return attribute
        return None

    # ============ Derived attributes ============

    def _entries(self, key: str) -> List[Dict[str, Any]]:
        """List entries under key, ignoring anything that is not an object."""
        entries = self.get(key)
        if not isinstance(entries, list):
            return []
        return [e for e in entries if isinstance(e, dict)]

    def _address(self) -> Optional[str]:
        address = self.get("address")
        return address if isinstance(address, str) and address.strip() else None

    def _current_job(self) -> Dict[str, Any]:
        history = self._entries("employment_history")
        for job in history:
            if job.get("current"):
                return job
        return history[0] if history else {}

    def _first_education(self) -> Dict[str, Any]:
        education = self._entries("education")
        return education[0] if education else {}

    def _name_parts(self) -> List[str]:
        return str(self.get("full_name") or "").split()

    def _derive_full_name(self):
        return " ".join(str(p) for p in (self.get("first_name"), self.get("last_name")) if p)

    def _derive_first_name(self):
        parts = self._name_parts()
        return parts[0] if parts else None

    def _derive_last_name(self):
        parts = self._name_parts()
        return parts[-1] if parts else None

    def _derive_address_line_1(self):
        address = self._address()
        if not address:
            return None
        return re.split(r"[,\n]", address)[0].strip()

    def _derive_address_line_2(self):
        address = self._address()
        if not address:
            return None
        return ", ".join(p.strip() for p in re.split(r"[,\n]", address)[1:] if p.strip())

    def _derive_current_location(self):
        return self.get("preferred_location")

    def _derive_expected_ctc(self):
        return self.get("desired_salary")

    def _derive_desired_salary(self):
        return self.get("expected_ctc")

    def _derive_current_company(self):
        return self._current_job().get("company")

    def _derive_job_title(self):
        return self._current_job().get("title")

    def _derive_degree(self):
        return self._first_education().get("degree")

    def _derive_institution(self):
        return self._first_education().get("institution")

    def _derive_field_of_study(self):
        return self._first_education().get("field_of_study")

    def _derive_total_experience_years(self):
        months = 0
        today = date.today()
        for job in self._entries("employment_history"):
            start = _parse_date(job.get("start_date"))
            if start is None:
                continue
            end = today if job.get("current") else (_parse_date(job.get("end_date")) or today)
            months += max(0, (end.year - start.year) * 12 + end.month - start.month)
        if not months:
            return None
        return round(months / 12, 1)

    def _derive_work_history(self):
        entries = []
        for job in self._entries("employment_history"):
            end = "Present" if job.get("current") else (job.get("end_date") or "N/A")
            entry = f"{job.get('title', '')} at {job.get('company', '')} ({job.get('start_date', '')} - {end})"
            if job.get("description"):
                entry += f"\n{job['description']}"
            entries.append(entry)
        return "\n\n".join(entries)


def load_profile(path: Optional[Path] = None) -> Profile:
    """Load the profile, or an empty one when no profile file exists yet."""
    path = Path(path or DEFAULT_PROFILE_PATH)
    if not path.exists():
        return Profile()
    return Profile.load(path)
