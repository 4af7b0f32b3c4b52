# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for BrowserManager."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from flyrecord.core.browser import CAPTURE_ARGS, BrowserManager
from flyrecord.exceptions import SurfaceAcquisitionError


@pytest.fixture
def patched_playwright(mock_playwright):
    """Patch async_playwright() to hand out mock_playwright."""
    with patch("flyrecord.core.browser.async_playwright") as mock_pw:
        instance = MagicMock()
        instance.start = AsyncMock(return_value=mock_playwright)
        mock_pw.return_value = instance
        yield mock_playwright


class TestBrowserManagerInit:
    """Tests for BrowserManager initialization."""

    def test_default_init(self):
        """Test default initialization values."""
        manager = BrowserManager()

        assert manager.headless is True
        assert manager.browser_type == "chromium"
        assert manager.viewport == {"width": 1920, "height": 1080}
        assert manager.launch_options == {}
        assert manager.is_running is False

    def test_custom_values(self):
        manager = BrowserManager(headless=False, browser_type="firefox", slow_mo=100)

        assert manager.headless is False
        assert manager.browser_type == "firefox"
        assert manager.launch_options == {"slow_mo": 100}


class TestBrowserManagerStart:
    """Tests for BrowserManager.start()."""

    @pytest.mark.asyncio
    async def test_start_chromium_with_capture_flags(self, patched_playwright):
        """Test Chromium is launched with the flags unattended capture needs."""
        manager = BrowserManager(args=["--disable-gpu"])
        await manager.start()

        kwargs = patched_playwright.chromium.launch.await_args.kwargs
        assert kwargs["headless"] is True
        assert kwargs["args"] == CAPTURE_ARGS + ["--disable-gpu"]
        assert "--autoplay-policy=no-user-gesture-required" in kwargs["args"]
        assert manager.is_running

    @pytest.mark.asyncio
    async def test_start_firefox_without_chromium_flags(self, patched_playwright):
        manager = BrowserManager(browser_type="firefox")
        await manager.start()

        patched_playwright.firefox.launch.assert_awaited_once_with(headless=True)

    @pytest.mark.asyncio
    async def test_start_unsupported_browser(self, patched_playwright):
        """Test an unsupported browser type fails and cleans up."""
        manager = BrowserManager(browser_type="invalid")
        with pytest.raises(SurfaceAcquisitionError, match="Unsupported browser type"):
            await manager.start()

        patched_playwright.stop.assert_awaited_once()
        assert manager.is_running is False

    @pytest.mark.asyncio
    async def test_launch_failure_is_wrapped(self, patched_playwright):
        patched_playwright.chromium.launch = AsyncMock(side_effect=Exception("no display"))
        manager = BrowserManager()
        with pytest.raises(SurfaceAcquisitionError, match="no display"):
            await manager.start()

        assert manager._playwright is None


class TestBrowserManagerStop:
    """Tests for BrowserManager.stop()."""

    @pytest.mark.asyncio
    async def test_stop_closes_all_resources(self):
        """Test that stop closes page, context, browser, and playwright."""
        manager = BrowserManager()
        mock_page, mock_context, mock_browser, mock_pw = (AsyncMock() for _ in range(4))
        manager._page = mock_page
        manager._context = mock_context
        manager._browser = mock_browser
        manager._playwright = mock_pw

        await manager.stop()

        mock_page.close.assert_awaited_once()
        mock_context.close.assert_awaited_once()
        mock_browser.close.assert_awaited_once()
        mock_pw.stop.assert_awaited_once()
        assert manager.is_running is False

    @pytest.mark.asyncio
    async def test_stop_continues_after_error(self):
        """Test one failing close does not leak the remaining handles."""
        manager = BrowserManager()
        mock_page = AsyncMock()
        mock_page.close.side_effect = Exception("Close failed")
        mock_browser = AsyncMock()
        manager._page = mock_page
        manager._browser = mock_browser

        await manager.stop()

        mock_browser.close.assert_awaited_once()
        assert manager._page is None

    @pytest.mark.asyncio
    async def test_stop_handles_none_resources(self):
        manager = BrowserManager()
        await manager.stop()


class TestBrowserManagerProperties:
    """Tests for BrowserManager properties."""

    def test_page_property_raises_when_not_started(self):
        manager = BrowserManager()

        with pytest.raises(SurfaceAcquisitionError, match="No active page"):
            _ = manager.page

    def test_page_property_returns_page(self):
        manager = BrowserManager()
        mock_page = MagicMock()
        manager._page = mock_page

        assert manager.page is mock_page


class TestBrowserManagerContextManager:
    """Tests for BrowserManager async context manager."""

    @pytest.mark.asyncio
    async def test_context_manager_starts_and_stops(self, patched_playwright):
        async with BrowserManager() as manager:
            assert manager.is_running

        assert manager.is_running is False
        patched_playwright.stop.assert_awaited_once()
