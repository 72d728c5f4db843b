"""
Browser session for running the autofill engine on a live page.

Usage:
    from autofill.client import BrowserClient

    with BrowserClient(headless=True) as browser:
        browser.open_page("https://jobs.lever.co/acme/123/apply")
        report = browser.autofill(profile)
        browser.screenshot("after_fill.png")
"""

import logging
from pathlib import Path
from typing import List, Optional

from playwright.sync_api import sync_playwright, Page, Browser, BrowserContext
from playwright.sync_api import Error as PlaywrightError

from .config import (
    BROWSER_ARGS,
    CLOUDFLARE_WAIT,
    FORM_SETTLE_TIME,
    PAGE_LOAD_TIMEOUT,
    SCREENSHOTS_DIR,
    STEALTH_SCRIPT,
    USER_AGENT,
)
from .dom import PlaywrightDocument
from .field_collector import collect_fields
from .hybrid import HybridAutofill
from .models import FillReport, FormFieldDescriptor
from .profile import Profile

logger = logging.getLogger(__name__)


class BrowserClient:
    """Playwright browser with one page, ready for autofill runs."""

    def __init__(self, headless: bool = False, engine: Optional[HybridAutofill] = None):
        """
        Args:
            headless: Run in headless mode (default False for Cloudflare bypass)
            engine: Orchestrator to use (default: one built from the environment)
        """
        self.headless = headless
        self.engine = engine
        self.playwright = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._screenshot_counter = 0

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def start(self):
        """Start browser instance."""
        self.playwright = sync_playwright().start()
        self.browser = self.playwright.chromium.launch(
            headless=self.headless,
            args=BROWSER_ARGS,
        )
        self.context = self.browser.new_context(
            viewport={"width": 1400, "height": 900},
            user_agent=USER_AGENT,
        )
        self.page = self.context.new_page()
        self.page.add_init_script(STEALTH_SCRIPT)
        logger.info("[Browser] Started")

    def close(self):
        """Close browser and cleanup."""
        if self.browser:
            self.browser.close()
        if self.playwright:
            self.playwright.stop()
        logger.info("[Browser] Closed")

    def open_page(self, url: str, wait_for_cloudflare: bool = True) -> bool:
        """
        Open an application page and give its form time to render.

        Returns:
            True if the page loaded
        """
        logger.info(f"[Browser] Opening: {url}")
        try:
            self.page.goto(url, wait_until="domcontentloaded", timeout=PAGE_LOAD_TIMEOUT * 1000)
            if wait_for_cloudflare:
                title = self.page.title()
                if "Just a moment" in title or "Cloudflare" in title:
                    logger.info("[Browser] Waiting for Cloudflare...")
                    self.page.wait_for_timeout(CLOUDFLARE_WAIT * 1000)
            self.page.wait_for_timeout(FORM_SETTLE_TIME * 1000)
        except PlaywrightError as e:
            logger.error(f"[Browser] Error opening page: {e}")
            return False
        logger.info(f"[Browser] Page title: {self.page.title()}")
        return True

    def document(self) -> PlaywrightDocument:
        return PlaywrightDocument(self.page)

    def autofill(self, profile: Profile) -> FillReport:
        """Run the hybrid orchestrator on the current page."""
        if self.engine is None:
            self.engine = HybridAutofill()
        return self.engine.run(self.document(), profile)

    def describe_fields(self) -> List[FormFieldDescriptor]:
        """Descriptors of the fillable fields on the current page."""
        return [h.descriptor for h in collect_fields(self.document().root())]

    def screenshot(self, name: Optional[str] = None, full_page: bool = False) -> Path:
        """Save a screenshot under screenshots/ and return its path."""
        if name is None:
            self._screenshot_counter += 1
            name = f"screenshot_{self._screenshot_counter}.png"
        if not name.endswith(".png"):
            name += ".png"

        SCREENSHOTS_DIR.mkdir(parents=True, exist_ok=True)
        path = SCREENSHOTS_DIR / name
        self.page.screenshot(path=str(path), full_page=full_page)
        logger.info(f"[Browser] Screenshot saved: {path}")
        return path
