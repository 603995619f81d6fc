"""Headless Chromium rendering via Playwright.

The page is loaded until network idle (or render.timeout_ms) so that markup
produced by scripts is captured. Network activity during the load is reported
as a fraction of responses received over requests issued, capped at 0.95 until
the load finishes.
"""

import logging
from typing import Optional

from .base import BaseRenderer, RenderProgress, RenderResult

logger = logging.getLogger("site_mirror")

TRACKED_RESOURCE_TYPES = ("stylesheet", "script", "image", "font")
PROGRESS_CAP = 0.95


class BrowserRenderer(BaseRenderer):
    name = "browser-render"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._pl = None
        self._browser = None
        self.page = None

    def _ensure_browser(self):
        if self._browser is not None:
            return
        try:
            from playwright.sync_api import sync_playwright
        except ImportError as e:
            raise RuntimeError(
                "Playwright not installed. Run: pip install playwright && playwright install chromium"
            ) from e
        self._pl = sync_playwright().start()
        self._browser = self._pl.chromium.launch(
            headless=True, args=["--no-sandbox", "--disable-setuid-sandbox"],
        )

    def render(self, url: str, on_progress: Optional[RenderProgress] = None) -> RenderResult:
        self._ensure_browser()
        self.close_page()
        rc = self.config.render

        self.page = self._browser.new_page(
            viewport={"width": rc.viewport_width, "height": rc.viewport_height},
            user_agent=rc.user_agent or self.config.download.user_agent,
        )
        resources = []
        counts = {"requests": 0, "responses": 0}

        def on_request(request):
            if request.resource_type in TRACKED_RESOURCE_TYPES:
                resources.append(request.url)
                counts["requests"] += 1

        def on_response(_response):
            counts["responses"] += 1
            if counts["requests"] > 0 and on_progress:
                on_progress(min(counts["responses"] / counts["requests"], PROGRESS_CAP))

        self.page.on("request", on_request)
        self.page.on("response", on_response)

        if on_progress:
            on_progress(0.1)
        self.page.goto(url, wait_until=rc.wait_until, timeout=rc.timeout_ms)
        if on_progress:
            on_progress(1.0)

        html = self.page.content()
        logger.info(f"Rendered {url}: {len(html):,} chars, {len(resources)} resources observed")
        return RenderResult(html=html, resources=resources)

    def close_page(self):
        if self.page is not None:
            self.page.close()
            self.page = None

    def close(self):
        try:
            self.close_page()
            if self._browser:
                self._browser.close()
        finally:
            self._browser = None
            if self._pl:
                self._pl.stop()
                self._pl = None
