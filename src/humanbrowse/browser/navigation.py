"""Resilient Playwright navigation with automatic wait-strategy fallback.

Many pages never reach ``load`` because of long-polling analytics or
never-ending media requests. Navigation first waits for ``load`` and then
falls back to ``domcontentloaded`` on timeout. A network-idle settle is
attempted afterwards on a short budget and never fails the navigation.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Literal

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Response
from playwright.async_api import TimeoutError as PlaywrightTimeout

from humanbrowse.exceptions import NavigationFailedError

logger = logging.getLogger(__name__)

# Playwright error substrings that indicate non-retryable navigation failures.
_NON_RETRYABLE_ERRORS: tuple[str, ...] = (
    "ERR_NAME_NOT_RESOLVED",
    "ERR_CONNECTION_REFUSED",
    "ERR_CONNECTION_RESET",
    "ERR_CONNECTION_CLOSED",
    "ERR_SSL_PROTOCOL_ERROR",
    "ERR_CERT_AUTHORITY_INVALID",
    "ERR_CERT_COMMON_NAME_INVALID",
    "ERR_ADDRESS_UNREACHABLE",
    "NS_ERROR_UNKNOWN_HOST",
    "NS_ERROR_CONNECTION_REFUSED",
)

WaitUntil = Literal["commit", "domcontentloaded", "load", "networkidle"]

_FALLBACK_STRATEGY: list[WaitUntil] = ["networkidle", "load", "domcontentloaded"]

SETTLE_TIMEOUT_MS = 10_000


def _non_retryable_reason(error_msg: str) -> str:
    for pattern in _NON_RETRYABLE_ERRORS:
        if pattern in error_msg:
            return pattern.replace("ERR_", "").replace("NS_ERROR_", "").replace("_", " ").lower()
    return ""


async def _with_fallback(
    url: str,
    attempt: Callable[[WaitUntil], Awaitable[Response | None]],
    wait_until: WaitUntil,
    timeout_ms: int,
) -> Response | None:
    last_error: PlaywrightTimeout | None = None
    for strategy in _build_fallback_chain(wait_until):
        try:
            logger.debug("goto %s (wait_until=%s, timeout=%dms)", url, strategy, timeout_ms)
            return await attempt(strategy)
        except PlaywrightTimeout as exc:
            logger.warning(
                "Navigation to %s timed out with wait_until=%s; retrying with weaker strategy", url, strategy
            )
            last_error = exc
        except PlaywrightError as exc:
            reason = _non_retryable_reason(str(exc)) or str(exc).splitlines()[0]
            logger.warning("Navigation to %s failed: %s", url, reason)
            raise NavigationFailedError(url, reason) from exc

    raise NavigationFailedError(url, f"timed out after {timeout_ms}ms", transient=True) from last_error


async def resilient_goto(
    page: Page,
    url: str,
    *,
    timeout_ms: int = 30_000,
    wait_until: WaitUntil = "load",
) -> Response | None:
    """Navigate to *url*, weakening the wait strategy on timeout.

    Returns:
        The main-frame ``Response`` or ``None`` (same-document navigations).

    Raises:
        NavigationFailedError: Non-retryable error, or every strategy timed out.
    """

    async def attempt(strategy: WaitUntil) -> Response | None:
        return await page.goto(url, wait_until=strategy, timeout=timeout_ms)

    response = await _with_fallback(url, attempt, wait_until, timeout_ms)
    if response is not None and not response.ok:
        logger.warning("Navigation to %s returned HTTP %s", url, response.status)
    await settle(page)
    return response


async def resilient_reload(page: Page, *, timeout_ms: int = 15_000, wait_until: WaitUntil = "load") -> Response | None:
    """Reload the current page with the same fallback logic as :func:`resilient_goto`."""

    async def attempt(strategy: WaitUntil) -> Response | None:
        return await page.reload(wait_until=strategy, timeout=timeout_ms)

    return await _with_fallback(page.url, attempt, wait_until, timeout_ms)


async def resilient_history(page: Page, delta: int, *, timeout_ms: int = 15_000) -> bool:
    """Go back (``delta < 0``) or forward; ``False`` when there is no such entry."""

    async def attempt(strategy: WaitUntil) -> Any:
        if delta < 0:
            return await page.go_back(wait_until=strategy, timeout=timeout_ms)
        return await page.go_forward(wait_until=strategy, timeout=timeout_ms)

    before = page.url
    response = await _with_fallback(before, attempt, "load", timeout_ms)
    return response is not None or page.url != before


async def settle(page: Page, timeout_ms: int = SETTLE_TIMEOUT_MS) -> bool:
    """Best-effort wait for network idle; ``False`` if the page never settled."""
    try:
        await page.wait_for_load_state("networkidle", timeout=timeout_ms)
        return True
    except PlaywrightError:
        # Network may not fully settle; that's OK
        logger.debug("Page did not reach networkidle within %dms", timeout_ms)
        return False


def _build_fallback_chain(preferred: WaitUntil) -> list[WaitUntil]:
    """Return the fallback chain starting from *preferred*.

    If *preferred* is in the default chain, returns from that point onward.
    Otherwise returns ``[preferred]`` followed by the full default chain.
    """
    if preferred in _FALLBACK_STRATEGY:
        idx = _FALLBACK_STRATEGY.index(preferred)
        return _FALLBACK_STRATEGY[idx:]
    return [preferred, *_FALLBACK_STRATEGY]
