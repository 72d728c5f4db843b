#!/usr/bin/env python3
"""
Auto-fill an application form - non-interactive.
Prints a JSON result instead of waiting for user input.

Usage:
    python -m autofill.auto_fill <url> --profile data/profile.json [--headless] [--dry-run]
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .ats_detector import detect_platform
from .client import BrowserClient
from .config import DEFAULT_PROFILE_PATH
from .profile import load_profile


def auto_fill(url: str, profile_path: Optional[Path] = None, headless: bool = True,
              dry_run: bool = False) -> Dict[str, Any]:
    """
    Open the page and fill it from the profile.

    With dry_run the page is only inspected: detected platform and the
    collected field descriptors, nothing is written.
    """
    result: Dict[str, Any] = {
        "success": False,
        "url": url,
        "platform": detect_platform(url),
        "error": None,
    }

    profile = load_profile(profile_path)
    if not profile.data and not dry_run:
        result["error"] = f"Profile not found: {profile_path or DEFAULT_PROFILE_PATH}"
        return result

    with BrowserClient(headless=headless) as browser:
        if not browser.open_page(url):
            result["error"] = "Failed to open page"
            return result

        if dry_run:
            result["fields"] = [d.to_dict() for d in browser.describe_fields()]
        else:
            result["report"] = browser.autofill(profile).to_dict()
            result["screenshot"] = str(browser.screenshot("auto_fill_result.png"))

    result["success"] = True
    return result


def main():
    parser = argparse.ArgumentParser(description="Fill a job application form from a profile")
    parser.add_argument("url", help="Application page URL")
    parser.add_argument("--profile", type=Path, default=None, help="Profile JSON (default: data/profile.json)")
    parser.add_argument("--headless", action="store_true", help="Run the browser headless")
    parser.add_argument("--dry-run", action="store_true", help="Only detect the platform and list fields")
    parser.add_argument("--verbose", action="store_true", help="Log engine steps to stderr")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    result = auto_fill(args.url, args.profile, headless=args.headless, dry_run=args.dry_run)
    print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    sys.exit(0 if result["success"] else 1)


if __name__ == "__main__":
    main()
