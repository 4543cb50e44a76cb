"""Human interaction simulator.

Pure helpers that make automated input look less mechanical: randomized
delays, curved mouse paths, keystroke plans with occasional mistakes, and a
user-agent drawn from a fixed pool.

All randomness comes from one injected ``random.Random`` so a seeded
simulator produces identical paths, delays and typing plans on every run.
"""

from __future__ import annotations

import asyncio
import logging
import random
import string
from dataclasses import dataclass
from typing import Iterable, NamedTuple

from humanbrowse.browser.stealth import ALL_USER_AGENTS, user_agents_for

logger = logging.getLogger(__name__)

# Control points are offset from the straight-line thirds by at most this.
PATH_JITTER_PX = 10.0

MISTAKE_RATE = 0.01
PAUSE_RATE = 0.005

_EDGE_KEY_DELAY_MS = (100, 200)
_MIDDLE_KEY_DELAY_MS = (30, 80)
_MISTAKE_NOTICE_MS = (300, 700)
_MISTAKE_RECOVER_MS = (200, 500)
_LONG_PAUSE_MS = (1000, 4000)

BREAK_AFTER_ACTIONS = 5
BREAK_PROBABILITY = 0.3
BREAK_DURATION_MS = (5000, 15000)
BREAK_SCROLL_PROBABILITY = 0.7


class Point(NamedTuple):
    x: float
    y: float


@dataclass(frozen=True)
class Keystroke:
    """One step of a typing plan.

    ``kind`` is ``char`` (type ``key``), ``backspace`` (delete one
    character) or ``pause`` (idle only). ``delay_ms`` is waited *before*
    the step is dispatched.
    """

    kind: str
    key: str = ""
    delay_ms: float = 0.0


def apply_keystrokes(plan: Iterable[Keystroke], initial: str = "") -> str:
    """Replay *plan* against a plain string and return the resulting value."""
    value = initial
    for stroke in plan:
        if stroke.kind == "char":
            value += stroke.key
        elif stroke.kind == "backspace":
            value = value[:-1]
    return value


def _bezier(t: float, p0: float, p1: float, p2: float, p3: float) -> float:
    u = 1 - t
    return u**3 * p0 + 3 * u**2 * t * p1 + 3 * u * t**2 * p2 + t**3 * p3


class HumanSimulator:
    """Randomized timing and motion for one backend instance.

    Args:
        rng: Random source; pass a seeded ``random.Random`` for reproducible runs.
        enabled: When ``False`` every delay is skipped, jitter is zero and
            typing plans contain no mistakes or pauses.
        jitter_bound_ms: Upper bound of the extra time added by ``jittered_ms``.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        *,
        enabled: bool = True,
        jitter_bound_ms: float = 250,
        mistake_rate: float = MISTAKE_RATE,
        pause_rate: float = PAUSE_RATE,
    ) -> None:
        self.rng = rng or random.Random()
        self.enabled = enabled
        self.jitter_bound_ms = jitter_bound_ms
        self.mistake_rate = mistake_rate
        self.pause_rate = pause_rate

    # -- timing -------------------------------------------------------------

    def sample_ms(self, min_ms: float, max_ms: float) -> float:
        """Uniform sample from ``[min_ms, max_ms]``."""
        if max_ms < min_ms:
            min_ms, max_ms = max_ms, min_ms
        return self.rng.uniform(min_ms, max_ms)

    async def delay(self, min_ms: float, max_ms: float) -> float:
        """Sleep for a uniformly sampled duration; returns the milliseconds slept."""
        if not self.enabled:
            return 0.0
        ms = self.sample_ms(min_ms, max_ms)
        await asyncio.sleep(ms / 1000)
        return ms

    def jittered_ms(self, ms: float) -> float:
        """Return *ms* plus up to ``jitter_bound_ms`` of random slack."""
        if not self.enabled or self.jitter_bound_ms <= 0:
            return float(ms)
        return ms + self.rng.uniform(0, self.jitter_bound_ms)

    # -- motion -------------------------------------------------------------

    def mouse_path(self, start: tuple[float, float], end: tuple[float, float], point_count: int = 10) -> list[Point]:
        """Return ``point_count + 2`` points along a cubic Bézier from *start* to *end*.

        The two control points sit at the thirds of the straight line, each
        nudged by up to ``PATH_JITTER_PX`` in both axes. The first and last
        points are exactly *start* and *end*.
        """
        if point_count < 0:
            raise ValueError("point_count must be >= 0")
        sx, sy = float(start[0]), float(start[1])
        ex, ey = float(end[0]), float(end[1])
        dx, dy = ex - sx, ey - sy

        def jitter() -> float:
            return self.rng.uniform(-PATH_JITTER_PX, PATH_JITTER_PX)

        c1 = (sx + dx / 3 + jitter(), sy + dy / 3 + jitter())
        c2 = (sx + 2 * dx / 3 + jitter(), sy + 2 * dy / 3 + jitter())

        points = [Point(sx, sy)]
        steps = point_count + 1
        for i in range(1, steps):
            t = i / steps
            points.append(Point(_bezier(t, sx, c1[0], c2[0], ex), _bezier(t, sy, c1[1], c2[1], ey)))
        points.append(Point(ex, ey))
        return points

    def random_point(self, width: float, height: float) -> Point:
        return Point(self.rng.uniform(0, width), self.rng.uniform(0, height))

    def near_center(self, x: float, y: float, width: float, height: float) -> Point:
        """A point within 5 px of the centre of a box, clamped inside it."""
        cx = x + width / 2 + self.rng.uniform(-5, 5)
        cy = y + height / 2 + self.rng.uniform(-5, 5)
        return Point(min(max(cx, x), x + width), min(max(cy, y), y + height))

    # -- identity -----------------------------------------------------------

    def pick_user_agent(self, engine: str = "") -> str:
        """Pick a user-agent string, optionally restricted to one engine's pool."""
        pool = user_agents_for(engine) if engine else ALL_USER_AGENTS
        return self.rng.choice(pool)

    # -- typing -------------------------------------------------------------

    def _key_delay(self, index: int, length: int) -> float:
        position = index / length
        low, high = _EDGE_KEY_DELAY_MS if position < 0.2 or position > 0.8 else _MIDDLE_KEY_DELAY_MS
        return self.sample_ms(low, high)

    def typing_plan(self, text: str) -> list[Keystroke]:
        """Build the keystroke sequence for typing *text*.

        Mistakes are a random lowercase letter followed by a backspace, so
        ``apply_keystrokes(plan) == text`` always holds.
        """
        if not self.enabled:
            return [Keystroke("char", ch) for ch in text]

        plan: list[Keystroke] = []
        for i, ch in enumerate(text):
            if self.rng.random() < self.mistake_rate:
                wrong = self.rng.choice(string.ascii_lowercase)
                plan.append(Keystroke("char", wrong, self._key_delay(i, len(text))))
                plan.append(Keystroke("backspace", "Backspace", self.sample_ms(*_MISTAKE_NOTICE_MS)))
                plan.append(Keystroke("pause", "", self.sample_ms(*_MISTAKE_RECOVER_MS)))
            if self.rng.random() < self.pause_rate:
                plan.append(Keystroke("pause", "", self.sample_ms(*_LONG_PAUSE_MS)))
            plan.append(Keystroke("char", ch, self._key_delay(i, len(text))))
        return plan

    # -- breaks -------------------------------------------------------------

    def should_take_break(self, action_count: int) -> bool:
        if not self.enabled:
            return False
        return action_count > BREAK_AFTER_ACTIONS and self.rng.random() < BREAK_PROBABILITY

    def should_scroll_during_break(self) -> bool:
        return self.rng.random() < BREAK_SCROLL_PROBABILITY

    def scroll_positions(self, page_height: float, viewport_height: float) -> list[float]:
        """2 to 6 random vertical scroll targets; empty for pages that fit the viewport."""
        if page_height <= viewport_height:
            return []
        return [self.rng.uniform(0, page_height - viewport_height) for _ in range(self.rng.randint(2, 6))]
