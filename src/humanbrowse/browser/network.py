"""In-flight request tracking for network-idle waits.

The CDP backend feeds ``Network.requestWillBeSent`` /
``loadingFinished`` / ``loadingFailed`` events into a
``NetworkIdleTracker``. The page counts as idle only once the in-flight
count has been zero for a full settling window with no request starting
in between.
"""

from __future__ import annotations

import asyncio
import logging

from humanbrowse.exceptions import TimeoutExceededError

logger = logging.getLogger(__name__)


class NetworkIdleTracker:
    """Counts in-flight requests by id; completions for unknown ids are ignored."""

    def __init__(self) -> None:
        self._in_flight: set[str] = set()
        # Bumped on every request start so a waiter can tell that its quiet
        # window was interrupted even if the count is back to zero.
        self._generation = 0
        self._condition = asyncio.Condition()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def request_started(self, request_id: str) -> None:
        async with self._condition:
            self._in_flight.add(request_id)
            self._generation += 1
            self._condition.notify_all()

    async def request_finished(self, request_id: str) -> None:
        async with self._condition:
            if request_id not in self._in_flight:
                logger.debug("Ignoring completion for unknown request %s", request_id)
                return
            self._in_flight.discard(request_id)
            self._condition.notify_all()

    async def reset(self) -> None:
        """Forget every tracked request (e.g. after a top-level navigation)."""
        async with self._condition:
            self._in_flight.clear()
            self._generation += 1
            self._condition.notify_all()

    async def wait_for_idle(self, window_ms: float, timeout_ms: float) -> None:
        """Wait until the page has been quiet for *window_ms*.

        Raises:
            TimeoutExceededError: The page did not settle within *timeout_ms*.
        """
        try:
            await asyncio.wait_for(self._settle(window_ms / 1000), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise TimeoutExceededError("network-idle", timeout_ms) from None

    async def _settle(self, window_s: float) -> None:
        while True:
            async with self._condition:
                await self._condition.wait_for(lambda: not self._in_flight)
                generation = self._generation
                try:
                    # Any notification during the window is activity: start over.
                    await asyncio.wait_for(self._condition.wait(), timeout=window_s)
                except asyncio.TimeoutError:
                    if not self._in_flight and self._generation == generation:
                        return
