# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Browser management for FlyRecord.

This module provides the BrowserManager class which owns the Playwright
browser that acts as the playback surface. It launches the browser with
the flags unattended media capture needs (autoplay without a gesture,
auto-accepted capture prompts, no audio output device), opens one page
and tears everything down again.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from playwright.async_api import Browser, BrowserContext, Page, async_playwright

from flyrecord.exceptions import SurfaceAcquisitionError
from flyrecord.utils.logger import logger

CAPTURE_ARGS: List[str] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--autoplay-policy=no-user-gesture-required",
    "--use-fake-ui-for-media-stream",
    "--auto-select-desktop-capture-source=FlyRecord",
    "--auto-accept-this-tab-capture",
    "--enable-usermedia-screen-capturing",
    "--disable-audio-output",
]


class BrowserManager:
    """
    Manages the Playwright browser used as a capture surface.

    Attributes:
        headless: Whether browser runs without a visible window
        browser_type: Type of browser (chromium, firefox, webkit)
        viewport: Page viewport size
        launch_options: Additional Playwright launch options

    Example:
        >>> manager = BrowserManager(headless=True)
        >>> await manager.start()
        >>> await manager.page.goto("https://example.org/play/1")
        >>> await manager.stop()
    """

    def __init__(
        self,
        headless: bool = True,
        browser_type: str = "chromium",
        viewport: Optional[Dict[str, int]] = None,
        **launch_options: Any,
    ) -> None:
        self.headless = headless
        self.browser_type = browser_type
        self.viewport = viewport or {"width": 1920, "height": 1080}
        self.launch_options = launch_options
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    async def start(self) -> None:
        """
        Launch the browser and open the capture page.

        Raises:
            SurfaceAcquisitionError: If the browser fails to start or the
                browser type is unsupported
        """
        try:
            logger.info(f"[BROWSER] Starting {self.browser_type} browser (headless={self.headless})")
            self._playwright = await async_playwright().start()

            if self.browser_type == "chromium":
                browser_launcher = self._playwright.chromium
            elif self.browser_type == "firefox":
                browser_launcher = self._playwright.firefox
            elif self.browser_type == "webkit":
                browser_launcher = self._playwright.webkit
            else:
                raise SurfaceAcquisitionError(f"Unsupported browser type: {self.browser_type}")

            options = dict(self.launch_options)
            if self.browser_type == "chromium":
                options["args"] = CAPTURE_ARGS + list(options.get("args", []))

            self._browser = await browser_launcher.launch(headless=self.headless, **options)
            self._context = await self._browser.new_context(viewport=self.viewport)
            self._page = await self._context.new_page()

            logger.info("[BROWSER] Browser started successfully")
        except SurfaceAcquisitionError:
            await self.stop()
            raise
        except Exception as e:
            logger.error(f"[BROWSER] Failed to start browser: {e}")
            await self.stop()
            raise SurfaceAcquisitionError(f"Failed to start browser: {e}") from e

    async def stop(self) -> None:
        """
        Close page, context, browser and Playwright, in that order.

        Never raises: every handle is released even if an earlier one fails.
        """
        logger.info("[BROWSER] Stopping browser")
        for name, closer in (
            ("page", self._page.close if self._page else None),
            ("context", self._context.close if self._context else None),
            ("browser", self._browser.close if self._browser else None),
            ("playwright", self._playwright.stop if self._playwright else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:
                logger.warning(f"[BROWSER] Error closing {name}: {e}")

        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None

    @property
    def page(self) -> Page:
        """Get the capture page."""
        if not self._page:
            raise SurfaceAcquisitionError("No active page. Call start() first.")
        return self._page

    @property
    def is_running(self) -> bool:
        return self._page is not None

    async def __aenter__(self) -> "BrowserManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()
