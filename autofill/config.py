# Autofill engine configuration
#
# Every value can be overridden from .env at the project root (AUTOFILL_* variables).

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Directories
AUTOFILL_DIR = Path(__file__).parent
PROJECT_ROOT = AUTOFILL_DIR.parent

load_dotenv(PROJECT_ROOT / ".env")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


DATA_DIR = Path(os.getenv("AUTOFILL_DATA_DIR", str(PROJECT_ROOT / "data")))
PLATFORM_CONFIGS_PATH = Path(
    os.getenv("AUTOFILL_PLATFORM_CONFIGS", str(AUTOFILL_DIR / "configs" / "platforms.json"))
)
MAPPING_CACHE_FILE = DATA_DIR / "mapping_cache.json"
QA_BANK_FILE = DATA_DIR / "qa_bank.json"
DEFAULT_PROFILE_PATH = DATA_DIR / "profile.json"
SCREENSHOTS_DIR = PROJECT_ROOT / "screenshots"

# Timeouts (seconds)
PAGE_LOAD_TIMEOUT = 60
CLOUDFLARE_WAIT = 10
FORM_SETTLE_TIME = 2
POLL_INTERVAL = _env_float("AUTOFILL_POLL_INTERVAL", 0.1)
DEFAULT_WAIT_TIMEOUT = 3.0
AGENT_TIMEOUT = _env_float("AUTOFILL_AGENT_TIMEOUT", 30)
CACHE_TIMEOUT = 5

# Fill policy
FILL_RATIO_THRESHOLD = _env_float("AUTOFILL_FILL_RATIO", 0.7)
REPAIRED_CONFIDENCE_CAP = 0.7

# Mapping cache
CACHE_TRUST_THRESHOLD = _env_float("AUTOFILL_CACHE_TRUST", 0.8)
CONFIRMATION_ALPHA = _env_float("AUTOFILL_CONFIRMATION_ALPHA", 0.3)
INITIAL_CONFIRMATION_RATE = 0.5
CACHE_MAX_ENTRIES = 500
CACHE_RACE_RETRIES = 3

# Q&A bank
QA_MATCH_THRESHOLD = 0.75
QA_SUGGEST_THRESHOLD = 0.5

# AI field-fill collaborator
AGENT_CONFIG = {
    "url": os.getenv("AUTOFILL_AGENT_URL", ""),
    "api_key": os.getenv("AUTOFILL_AGENT_API_KEY", ""),
    "timeout": AGENT_TIMEOUT,
}

# Remote mapping cache (empty = local JSON cache)
CACHE_SERVER_URL = os.getenv("AUTOFILL_CACHE_URL", "")

# Browser settings
USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"

BROWSER_ARGS = [
    '--disable-blink-features=AutomationControlled',
    '--no-sandbox',
    '--disable-dev-shm-usage',
]

# Anti-detection script
STEALTH_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });
    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en']
    });
"""


@dataclass
class EngineSettings:
    """Tunable parameters threaded through a single autofill run."""
    fill_ratio_threshold: float = FILL_RATIO_THRESHOLD
    cache_trust_threshold: float = CACHE_TRUST_THRESHOLD
    confirmation_alpha: float = CONFIRMATION_ALPHA
    poll_interval: float = POLL_INTERVAL
    default_wait_timeout: float = DEFAULT_WAIT_TIMEOUT
    qa_match_threshold: float = QA_MATCH_THRESHOLD
    auto_confirm: bool = True
    auto_save_answers: bool = False

    def __post_init__(self):
        for name in ("fill_ratio_threshold", "cache_trust_threshold", "confirmation_alpha"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
