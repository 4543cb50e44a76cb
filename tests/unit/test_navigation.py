"""Unit tests for humanbrowse.browser.navigation — resilient goto / reload / history."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, call

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from humanbrowse.browser.navigation import (
    _build_fallback_chain,
    resilient_goto,
    resilient_history,
    resilient_reload,
    settle,
)
from humanbrowse.exceptions import NavigationFailedError


def _page() -> MagicMock:
    page = MagicMock()
    page.goto = AsyncMock()
    page.reload = AsyncMock()
    page.go_back = AsyncMock()
    page.go_forward = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.url = "https://example.com/"
    return page


# ---------------------------------------------------------------------------
# _build_fallback_chain
# ---------------------------------------------------------------------------


class TestBuildFallbackChain:
    """Tests for the internal fallback-chain builder."""

    def test_networkidle_produces_full_chain(self) -> None:
        assert _build_fallback_chain("networkidle") == [
            "networkidle",
            "load",
            "domcontentloaded",
        ]

    def test_load_skips_networkidle(self) -> None:
        assert _build_fallback_chain("load") == ["load", "domcontentloaded"]

    def test_domcontentloaded_is_terminal(self) -> None:
        assert _build_fallback_chain("domcontentloaded") == ["domcontentloaded"]

    def test_unknown_strategy_prepends_to_chain(self) -> None:
        chain = _build_fallback_chain("commit")
        assert chain[0] == "commit"
        assert "networkidle" in chain


# ---------------------------------------------------------------------------
# resilient_goto
# ---------------------------------------------------------------------------


class TestResilientGoto:
    @pytest.mark.anyio
    async def test_success_on_first_try(self) -> None:
        page = _page()
        sentinel = MagicMock(name="response", ok=True)
        page.goto.return_value = sentinel

        result = await resilient_goto(page, "https://example.com", timeout_ms=5000)

        assert result is sentinel
        page.goto.assert_awaited_once_with("https://example.com", wait_until="load", timeout=5000)
        page.wait_for_load_state.assert_awaited_once()

    @pytest.mark.anyio
    async def test_falls_back_on_timeout(self) -> None:
        page = _page()
        sentinel = MagicMock(name="response", ok=True)
        page.goto.side_effect = [PlaywrightTimeout("timeout"), sentinel]

        result = await resilient_goto(page, "https://slow.example.com", timeout_ms=3000)

        assert result is sentinel
        assert page.goto.await_args_list == [
            call("https://slow.example.com", wait_until="load", timeout=3000),
            call("https://slow.example.com", wait_until="domcontentloaded", timeout=3000),
        ]

    @pytest.mark.anyio
    async def test_all_strategies_exhausted(self) -> None:
        page = _page()
        page.goto.side_effect = PlaywrightTimeout("timeout")

        with pytest.raises(NavigationFailedError) as exc_info:
            await resilient_goto(page, "https://dead.example.com", timeout_ms=1000)

        assert "timed out after 1000ms" in str(exc_info.value)
        assert exc_info.value.transient is True
        assert page.goto.await_count == 2
        page.wait_for_load_state.assert_not_awaited()

    @pytest.mark.anyio
    async def test_non_retryable_error_stops_immediately(self) -> None:
        page = _page()
        page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED at https://nope.invalid")

        with pytest.raises(NavigationFailedError) as exc_info:
            await resilient_goto(page, "https://nope.invalid", wait_until="networkidle")

        assert "name not resolved" in str(exc_info.value)
        assert exc_info.value.transient is False
        page.goto.assert_awaited_once()

    @pytest.mark.anyio
    async def test_http_error_status_still_succeeds(self) -> None:
        page = _page()
        response = MagicMock(ok=False, status=404)
        page.goto.return_value = response

        assert await resilient_goto(page, "https://example.com/missing") is response

    @pytest.mark.anyio
    async def test_settle_failure_does_not_fail_navigation(self) -> None:
        page = _page()
        page.goto.return_value = None
        page.wait_for_load_state.side_effect = PlaywrightTimeout("still busy")

        assert await resilient_goto(page, "https://chatty.example.com") is None


# ---------------------------------------------------------------------------
# reload / history / settle
# ---------------------------------------------------------------------------


class TestReloadAndHistory:
    @pytest.mark.anyio
    async def test_reload_falls_back(self) -> None:
        page = _page()
        sentinel = MagicMock(name="response")
        page.reload.side_effect = [PlaywrightTimeout("timeout"), sentinel]

        assert await resilient_reload(page, timeout_ms=2000) is sentinel
        assert page.reload.await_args_list[-1] == call(wait_until="domcontentloaded", timeout=2000)

    @pytest.mark.anyio
    async def test_back_without_history(self) -> None:
        page = _page()
        page.go_back.return_value = None

        assert await resilient_history(page, -1) is False
        page.go_forward.assert_not_awaited()

    @pytest.mark.anyio
    async def test_forward_with_same_document_change(self) -> None:
        page = _page()

        async def go_forward(**kwargs: object) -> None:
            page.url = "https://example.com/#next"

        page.go_forward.side_effect = go_forward

        assert await resilient_history(page, 1) is True

    @pytest.mark.anyio
    async def test_settle_reports_outcome(self) -> None:
        page = _page()
        assert await settle(page, timeout_ms=100) is True
        page.wait_for_load_state.assert_awaited_once_with("networkidle", timeout=100)
        page.wait_for_load_state.side_effect = PlaywrightError("closed")
        assert await settle(page) is False
