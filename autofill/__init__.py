"""
Adaptive form-autofill engine for job applications.

Usage:
    from autofill.client import BrowserClient
    from autofill.profile import load_profile

    with BrowserClient(headless=True) as browser:
        browser.open_page("https://boards.greenhouse.io/acme/jobs/123")
        report = browser.autofill(load_profile())
        print(report.method, report.filled_count, report.total_count)
"""

from .ats_detector import detect_platform
from .config import EngineSettings
from .errors import AutofillError, ConfigError
from .matcher import match_option
from .models import FillDecision, FillReport, FormFieldDescriptor
from .profile import Profile, load_profile

__all__ = [
    "detect_platform",
    "match_option",
    "EngineSettings",
    "AutofillError",
    "ConfigError",
    "FillDecision",
    "FillReport",
    "FormFieldDescriptor",
    "Profile",
    "load_profile",
]
