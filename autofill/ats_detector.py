"""
ATS Detector - decide which platform config applies to a page URL.

Patterns are URL globs: `*` matches any run of characters (including none),
`?` matches exactly one character, everything else is literal. Platforms and
their patterns are tried in config order; the first match wins. No match
means the page goes down the generic (AI / heuristic) path.

Usage:
    python -m autofill.ats_detector https://boards.greenhouse.io/acme/jobs/1
"""
import re
from functools import lru_cache
from typing import Mapping, Optional

from .platforms import PlatformConfig, get_platforms


@lru_cache(maxsize=512)
def glob_to_regex(pattern: str) -> re.Pattern:
    """Compile a URL glob into an anchored regex."""
    parts = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


def url_matches(url: str, pattern: str) -> bool:
    return glob_to_regex(pattern).match(url) is not None


def detect_platform(url: str, platforms: Optional[Mapping[str, PlatformConfig]] = None) -> str | None:
    """
    Return the id of the first platform whose URL patterns match, or None.
    """
    if not url:
        return None
    if platforms is None:
        platforms = get_platforms()
    for platform_id, config in platforms.items():
        for pattern in config.urls:
            if url_matches(url, pattern):
                return platform_id
    return None


if __name__ == "__main__":
    import sys

    if len(sys.argv) > 1:
        for url in sys.argv[1:]:
            platform = detect_platform(url)
            if platform:
                print(f"  ✅ {url} → {platform}")
            else:
                print(f"  ❌ {url} → no platform config (generic path)")
    else:
        print("Usage:")
        print("  python -m autofill.ats_detector <url> [<url> ...]")
