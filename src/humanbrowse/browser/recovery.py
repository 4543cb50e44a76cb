"""Error categorisation, recovery suggestions and retry with backoff.

Failures surfaced by backends are sorted into a small set of categories.
Each category says whether retrying can help and carries a suggestion for
the operator. ``retry_with_backoff`` re-runs an awaitable factory on
transient failures, doubling the delay between attempts.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from humanbrowse.exceptions import (
    ElementNotFoundError,
    EvaluationFailedError,
    NavigationFailedError,
    ProtocolUnavailableError,
    TimeoutExceededError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DEFAULT_MAX_DELAY_SECONDS = 10.0


class ErrorCategory(str, Enum):
    ELEMENT_NOT_FOUND = "element_not_found"
    NAVIGATION = "navigation"
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    PAGE_STATE = "page_state"
    INPUT = "input"
    BROWSER = "browser"
    JAVASCRIPT = "javascript"
    NETWORK = "network"
    SESSION = "session"
    SECURITY = "security"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Recovery:
    """What can be done about one category of failure."""

    can_retry: bool
    suggestion: str


RECOVERY: dict[ErrorCategory, Recovery] = {
    ErrorCategory.ELEMENT_NOT_FOUND: Recovery(
        True, "The element could not be found. It may not exist, be hidden, or have changed."
    ),
    ErrorCategory.NAVIGATION: Recovery(
        True, "The page could not be loaded. Check the URL, network connection, or try again later."
    ),
    ErrorCategory.TIMEOUT: Recovery(
        True, "The operation timed out. Try increasing the timeout or waiting for the page to be more fully loaded."
    ),
    ErrorCategory.AUTHENTICATION: Recovery(
        False, "Authentication is required. Please check your credentials or login status."
    ),
    ErrorCategory.PAGE_STATE: Recovery(
        True, "The page structure changed during the operation. Refresh the page and try again."
    ),
    ErrorCategory.INPUT: Recovery(
        True, "There was a problem with the input. Check the value and format of your input."
    ),
    ErrorCategory.BROWSER: Recovery(
        False, "There was a problem with the browser. Try restarting the automation."
    ),
    ErrorCategory.JAVASCRIPT: Recovery(
        False, "JavaScript execution failed. The page may be blocking automation or scripts."
    ),
    ErrorCategory.NETWORK: Recovery(
        True, "A network error occurred. Check your internet connection and try again."
    ),
    ErrorCategory.SESSION: Recovery(
        False, "There was a problem with the browser session. Try restarting the browser."
    ),
    ErrorCategory.SECURITY: Recovery(
        False,
        "A security restriction prevented the operation. This may be due to CORS, certificates, or site security.",
    ),
    ErrorCategory.UNKNOWN: Recovery(
        False, "An unexpected error occurred. Check the error message for details."
    ),
}

# Checked in order; the first matching keyword wins.
_MESSAGE_KEYWORDS: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (
        ErrorCategory.ELEMENT_NOT_FOUND,
        ("element not found", "no element", "unable to find", "not visible", "not interactable", "target not found"),
    ),
    (ErrorCategory.NAVIGATION, ("navigation", "net::err", "failed to load", "page crash", "aborted")),
    (ErrorCategory.TIMEOUT, ("timeout", "timed out")),
    (
        ErrorCategory.AUTHENTICATION,
        ("authentication", "login", "permission", "access denied", "unauthorized", "forbidden"),
    ),
    (ErrorCategory.PAGE_STATE, ("detached", "stale element", "no longer attached", "removed from dom")),
    (ErrorCategory.INPUT, ("invalid input", "input", "value")),
    (ErrorCategory.BROWSER, ("browser", "chrome", "firefox", "webkit", "webdriver")),
    (ErrorCategory.JAVASCRIPT, ("execution context", "script", "evaluate", "javascript")),
    (ErrorCategory.NETWORK, ("network", "connection", "offline", "net::")),
    (ErrorCategory.SESSION, ("session", "cookie", "storage")),
    (ErrorCategory.SECURITY, ("security", "ssl", "certificate", "blocked", "cross-origin", "cors")),
)


def categorize(exc: BaseException, action: str = "") -> ErrorCategory:
    """Sort *exc* into an ``ErrorCategory``, by type first and message second."""
    if isinstance(exc, ElementNotFoundError):
        return ErrorCategory.ELEMENT_NOT_FOUND
    if isinstance(exc, NavigationFailedError):
        return ErrorCategory.NAVIGATION
    if isinstance(exc, (TimeoutExceededError, asyncio.TimeoutError)):
        return ErrorCategory.NAVIGATION if action == "navigate" else ErrorCategory.TIMEOUT
    if isinstance(exc, ProtocolUnavailableError):
        return ErrorCategory.BROWSER
    if isinstance(exc, EvaluationFailedError):
        return ErrorCategory.JAVASCRIPT

    message = str(exc).lower()
    for category, keywords in _MESSAGE_KEYWORDS:
        if any(keyword in message for keyword in keywords):
            return category
    return ErrorCategory.UNKNOWN


def suggestion_for(category: ErrorCategory, action: str = "", target: str = "") -> str:
    """Operator-facing hint for a failure of *action* on *target*."""
    if category is ErrorCategory.ELEMENT_NOT_FOUND and action:
        if action == "click":
            return (
                f'Could not find element to click: "{target}". Check if the element exists, '
                "is visible, or try using a different selector."
            )
        if action == "type":
            return f'Could not find input field: "{target}". Check the field name or try using a different selector.'
        if action == "extract":
            return f'Could not find content to extract: "{target}". The content may not exist on this page.'
        return f'Could not find element: "{target}". Check if the element exists or try using a different identifier.'
    return RECOVERY[category].suggestion


def is_transient(exc: BaseException) -> bool:
    """``True`` for failures a second attempt may get past."""
    if isinstance(exc, NavigationFailedError):
        return exc.transient
    return isinstance(exc, (TimeoutExceededError, ProtocolUnavailableError, asyncio.TimeoutError))


@dataclass
class ErrorReport:
    """One categorised failure, as recorded by ``ErrorTracker``."""

    category: ErrorCategory
    message: str
    action: str = ""
    target: str = ""
    suggestion: str = ""
    can_retry: bool = False
    screenshot: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "message": self.message,
            "action": self.action,
            "target": self.target,
            "suggestion": self.suggestion,
            "retry": self.can_retry,
            "screenshot": self.screenshot,
        }


@dataclass
class ErrorTracker:
    """Counts failures per category and per action."""

    total: int = 0
    categories: Counter = field(default_factory=Counter)
    actions: Counter = field(default_factory=Counter)
    last: ErrorReport | None = None

    def record(self, exc: BaseException, action: str = "", target: str = "") -> ErrorReport:
        category = categorize(exc, action)
        report = ErrorReport(
            category=category,
            message=str(exc),
            action=action,
            target=target,
            suggestion=suggestion_for(category, action, target),
            can_retry=RECOVERY[category].can_retry,
        )
        self.total += 1
        self.categories[category.value] += 1
        if action:
            self.actions[action] += 1
        self.last = report
        return report

    def stats(self) -> dict[str, Any]:
        return {"total": self.total, "categories": dict(self.categories), "actions": dict(self.actions)}

    def reset(self) -> None:
        self.total = 0
        self.categories.clear()
        self.actions.clear()
        self.last = None


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 2,
    backoff_seconds: float = 1.0,
    max_delay: float = _DEFAULT_MAX_DELAY_SECONDS,
    should_retry: Callable[[BaseException], bool] = is_transient,
    label: str = "",
) -> T:
    """Await ``operation()``, retrying transient failures with exponential backoff.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt.
        max_retries: Number of retry attempts after the initial call.
        backoff_seconds: Base delay between retries (doubled each attempt).
        max_delay: Cap on a single delay.
        should_retry: Predicate deciding whether a failure is worth retrying.
        label: Name used in log lines.

    Raises:
        The last exception once retries are exhausted, or the first one that
        ``should_retry`` rejects.
    """
    name = label or getattr(operation, "__name__", "operation")
    last_exc: BaseException | None = None
    for attempt in range(1, max_retries + 2):
        try:
            return await operation()
        except Exception as exc:
            last_exc = exc
            if attempt > max_retries or not should_retry(exc):
                raise
            delay = min(backoff_seconds * (2 ** (attempt - 1)), max_delay)
            logger.warning(
                "%s attempt %d/%d failed: %s, retrying in %.1fs",
                name,
                attempt,
                max_retries + 1,
                exc,
                delay,
            )
            await asyncio.sleep(delay)
    raise last_exc  # type: ignore[misc]
