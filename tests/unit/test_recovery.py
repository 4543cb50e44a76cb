"""Unit tests for humanbrowse.browser.recovery — categorisation, suggestions and retry with backoff."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from humanbrowse.browser import recovery
from humanbrowse.browser.recovery import (
    RECOVERY,
    ErrorCategory,
    ErrorTracker,
    categorize,
    is_transient,
    retry_with_backoff,
    suggestion_for,
)
from humanbrowse.exceptions import (
    ElementNotFoundError,
    EvaluationFailedError,
    HumanBrowseError,
    NavigationFailedError,
    ProtocolUnavailableError,
    TimeoutExceededError,
)


class TestCategorize:
    @pytest.mark.parametrize(
        "exc, action, expected",
        [
            (ElementNotFoundError("Sign in", "click"), "click", ErrorCategory.ELEMENT_NOT_FOUND),
            (NavigationFailedError("https://a.test", "name not resolved"), "navigate", ErrorCategory.NAVIGATION),
            (TimeoutExceededError("load", 1000), "wait", ErrorCategory.TIMEOUT),
            (TimeoutExceededError("navigation", 1000), "navigate", ErrorCategory.NAVIGATION),
            (ProtocolUnavailableError("127.0.0.1", 9222), "initialize", ErrorCategory.BROWSER),
            (EvaluationFailedError("ReferenceError: x is not defined"), "evaluate", ErrorCategory.JAVASCRIPT),
            (HumanBrowseError("401 Unauthorized"), "", ErrorCategory.AUTHENTICATION),
            (HumanBrowseError("Element is detached from the DOM"), "", ErrorCategory.PAGE_STATE),
            (HumanBrowseError("Could not apply storage state"), "", ErrorCategory.SESSION),
            (HumanBrowseError("net::ERR_CERT_AUTHORITY_INVALID"), "", ErrorCategory.NAVIGATION),
            (RuntimeError("something odd"), "", ErrorCategory.UNKNOWN),
        ],
    )
    def test_categories(self, exc: BaseException, action: str, expected: ErrorCategory) -> None:
        assert categorize(exc, action) is expected

    def test_every_category_has_a_recovery(self) -> None:
        assert set(RECOVERY) == set(ErrorCategory)


class TestSuggestions:
    @pytest.mark.parametrize(
        "action, prefix",
        [
            ("click", 'Could not find element to click: "Buy now"'),
            ("type", 'Could not find input field: "Buy now"'),
            ("extract", 'Could not find content to extract: "Buy now"'),
            ("hover", 'Could not find element: "Buy now"'),
        ],
    )
    def test_element_not_found_mentions_action_and_target(self, action: str, prefix: str) -> None:
        assert suggestion_for(ErrorCategory.ELEMENT_NOT_FOUND, action, "Buy now").startswith(prefix)

    def test_generic_suggestion(self) -> None:
        assert suggestion_for(ErrorCategory.NETWORK) == RECOVERY[ErrorCategory.NETWORK].suggestion
        assert suggestion_for(ErrorCategory.ELEMENT_NOT_FOUND) == RECOVERY[ErrorCategory.ELEMENT_NOT_FOUND].suggestion


class TestIsTransient:
    def test_navigation_timeout_is_transient(self) -> None:
        assert is_transient(NavigationFailedError("https://a.test", "timed out", transient=True))
        assert not is_transient(NavigationFailedError("https://a.test", "name not resolved"))

    def test_startup_and_wait_failures(self) -> None:
        assert is_transient(ProtocolUnavailableError("127.0.0.1", 9222))
        assert is_transient(TimeoutExceededError("load", 100))
        assert not is_transient(ElementNotFoundError("x", "click"))
        assert not is_transient(ValueError("bad config"))


class TestErrorTracker:
    def test_counts_by_category_and_action(self) -> None:
        tracker = ErrorTracker()
        tracker.record(ElementNotFoundError("#a", "click"), "click", "#a")
        tracker.record(ElementNotFoundError("#b", "type"), "type", "#b")
        report = tracker.record(NavigationFailedError("https://a.test", "refused"), "navigate", "https://a.test")

        assert tracker.stats() == {
            "total": 3,
            "categories": {"element_not_found": 2, "navigation": 1},
            "actions": {"click": 1, "type": 1, "navigate": 1},
        }
        assert tracker.last is report
        assert report.can_retry is True
        assert report.to_dict()["category"] == "navigation"

    def test_reset(self) -> None:
        tracker = ErrorTracker()
        tracker.record(RuntimeError("boom"))
        tracker.reset()
        assert tracker.stats() == {"total": 0, "categories": {}, "actions": {}}
        assert tracker.last is None


class TestRetryWithBackoff:
    @pytest.mark.anyio
    async def test_succeeds_after_transient_failures(self) -> None:
        operation = AsyncMock(
            side_effect=[ProtocolUnavailableError("127.0.0.1", 9222), TimeoutExceededError("load", 10), "ok"]
        )
        with patch.object(recovery.asyncio, "sleep", AsyncMock()) as sleep:
            assert await retry_with_backoff(operation, max_retries=3, backoff_seconds=1.0) == "ok"
        assert operation.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.anyio
    async def test_delay_is_capped(self) -> None:
        operation = AsyncMock(side_effect=[TimeoutExceededError("load", 10)] * 3 + ["ok"])
        with patch.object(recovery.asyncio, "sleep", AsyncMock()) as sleep:
            await retry_with_backoff(operation, max_retries=3, backoff_seconds=4.0, max_delay=10.0)
        assert [c.args[0] for c in sleep.await_args_list] == [4.0, 8.0, 10.0]

    @pytest.mark.anyio
    async def test_non_transient_raises_immediately(self) -> None:
        operation = AsyncMock(side_effect=NavigationFailedError("https://x.invalid", "name not resolved"))
        with pytest.raises(NavigationFailedError):
            await retry_with_backoff(operation, max_retries=3, backoff_seconds=0)
        operation.assert_awaited_once()

    @pytest.mark.anyio
    async def test_exhausted_retries_reraise_last_error(self) -> None:
        errors = [TimeoutExceededError("load", 10), TimeoutExceededError("load", 20)]
        operation = AsyncMock(side_effect=errors)
        with pytest.raises(TimeoutExceededError) as exc_info:
            await retry_with_backoff(operation, max_retries=1, backoff_seconds=0)
        assert exc_info.value is errors[1]

    @pytest.mark.anyio
    async def test_custom_predicate(self) -> None:
        operation = AsyncMock(side_effect=[KeyError("flaky"), 42])
        result = await retry_with_backoff(
            operation, max_retries=1, backoff_seconds=0, should_retry=lambda exc: isinstance(exc, KeyError)
        )
        assert result == 42
