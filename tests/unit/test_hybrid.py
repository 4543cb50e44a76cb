"""Unit tests for humanbrowse.browser.backends.hybrid — Firefox with a confirmed debugger port."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import make_locator

from humanbrowse.browser.backends.hybrid import FIREFOX_DEBUG_PREFS, HybridBackend
from humanbrowse.browser.cascade import Strategy
from humanbrowse.exceptions import ProtocolUnavailableError
from humanbrowse.settings.config import BrowserConfig


def _playwright_starter(page: MagicMock) -> tuple[MagicMock, MagicMock]:
    context = MagicMock(name="context")
    context.add_init_script = AsyncMock()
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()
    browser = MagicMock(name="browser")
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()
    playwright = MagicMock(name="playwright")
    playwright.firefox.launch = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock()
    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)
    return starter, playwright


class TestHybridBackend:
    def test_always_firefox(self, quiet_config: BrowserConfig) -> None:
        backend = HybridBackend(quiet_config, engine="chromium")
        assert backend.engine == "firefox"
        assert backend.name == "hybrid"

    def test_launch_args_open_debugger_server(self) -> None:
        config = BrowserConfig(humanize=False, debug_port=6000)
        args = HybridBackend(config)._launch_args()
        assert args["args"][:2] == ["-start-debugger-server", "6000"]
        assert args["firefox_user_prefs"] == FIREFOX_DEBUG_PREFS

    def test_short_cascade(self, quiet_config: BrowserConfig) -> None:
        backend = HybridBackend(quiet_config)
        assert backend.cascade("click").strategies == [
            Strategy.STRUCTURAL_LOCATOR,
            Strategy.TEXT_MATCH,
            Strategy.DOM_SCAN,
        ]

    @pytest.mark.anyio
    async def test_initialize_confirms_debug_port(self, quiet_config: BrowserConfig, mock_page: MagicMock) -> None:
        starter, playwright = _playwright_starter(mock_page)
        wait_for_port = AsyncMock()
        with (
            patch("humanbrowse.browser.backends.playwright.async_playwright", return_value=starter),
            patch("humanbrowse.browser.backends.hybrid.wait_for_port", wait_for_port),
        ):
            backend = HybridBackend(quiet_config)
            assert await backend.initialize() is True

        wait_for_port.assert_awaited_once_with("127.0.0.1", 9222, timeout_s=10.0)
        playwright.firefox.launch.assert_awaited_once()

    @pytest.mark.anyio
    async def test_unreachable_debug_port_fails_start(self, quiet_config: BrowserConfig, mock_page: MagicMock) -> None:
        starter, playwright = _playwright_starter(mock_page)
        wait_for_port = AsyncMock(side_effect=ProtocolUnavailableError("127.0.0.1", 9222, "refused"))
        with (
            patch("humanbrowse.browser.backends.playwright.async_playwright", return_value=starter),
            patch("humanbrowse.browser.backends.hybrid.wait_for_port", wait_for_port),
        ):
            backend = HybridBackend(quiet_config)
            assert await backend.initialize() is False

        assert not backend.session.initialized
        playwright.stop.assert_awaited_once()

    @pytest.mark.anyio
    async def test_text_selector_for_type_uses_placeholder(self, quiet_config: BrowserConfig, mock_page: MagicMock) -> None:
        backend = HybridBackend(quiet_config)
        backend._page = mock_page
        hit = make_locator(1)
        mock_page.locator.return_value = hit

        assert await backend._locate_text_selector("Search", "type") is hit.first
        mock_page.locator.assert_called_with('[placeholder="Search"]')

        await backend._locate_text_selector('"Buy now"', "click")
        mock_page.locator.assert_called_with('text="Buy now"')

    @pytest.mark.anyio
    async def test_script_search_returns_none_without_match(
        self, quiet_config: BrowserConfig, mock_page: MagicMock
    ) -> None:
        backend = HybridBackend(quiet_config)
        backend._page = mock_page
        handle = MagicMock()
        handle.as_element.return_value = None
        handle.dispose = AsyncMock()
        mock_page.evaluate_handle = AsyncMock(return_value=handle)

        assert await backend._locate_by_script("Checkout", "click") is None
        handle.dispose.assert_awaited_once()
        assert mock_page.evaluate_handle.call_args.args[1] == "Checkout"
