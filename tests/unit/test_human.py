"""Unit tests for humanbrowse.browser.human — timing, mouse paths, typing plans."""

from __future__ import annotations

import random

import pytest

from humanbrowse.browser.human import (
    BREAK_AFTER_ACTIONS,
    PATH_JITTER_PX,
    HumanSimulator,
    Keystroke,
    Point,
    apply_keystrokes,
)
from humanbrowse.browser.stealth import ALL_USER_AGENTS, USER_AGENTS


# ---------------------------------------------------------------------------
# Mouse paths
# ---------------------------------------------------------------------------


class TestMousePath:
    """Shape and determinism of humanized mouse paths."""

    @pytest.mark.parametrize("point_count", [0, 1, 10, 25])
    def test_length_is_point_count_plus_two(self, point_count: int) -> None:
        human = HumanSimulator(random.Random(1))
        path = human.mouse_path((0, 0), (300, 200), point_count)
        assert len(path) == point_count + 2

    def test_endpoints_are_exact(self) -> None:
        human = HumanSimulator(random.Random(1))
        path = human.mouse_path((12.5, 40), (640, 480), 10)
        assert path[0] == Point(12.5, 40.0)
        assert path[-1] == Point(640.0, 480.0)

    def test_deterministic_under_same_seed(self) -> None:
        a = HumanSimulator(random.Random(99)).mouse_path((0, 0), (500, 500), 10)
        b = HumanSimulator(random.Random(99)).mouse_path((0, 0), (500, 500), 10)
        assert a == b

    def test_different_seeds_differ(self) -> None:
        a = HumanSimulator(random.Random(1)).mouse_path((0, 0), (500, 500), 10)
        b = HumanSimulator(random.Random(2)).mouse_path((0, 0), (500, 500), 10)
        assert a != b

    def test_interior_stays_near_the_straight_line(self) -> None:
        """Control points deviate at most PATH_JITTER_PX, so the curve can too."""
        human = HumanSimulator(random.Random(5))
        for point in human.mouse_path((0, 0), (900, 0), 20)[1:-1]:
            assert abs(point.y) <= PATH_JITTER_PX

    def test_negative_point_count_rejected(self) -> None:
        with pytest.raises(ValueError):
            HumanSimulator().mouse_path((0, 0), (1, 1), -1)


# ---------------------------------------------------------------------------
# Typing plans
# ---------------------------------------------------------------------------


class TestTypingPlan:
    """Typing plans always reproduce the requested text."""

    TEXT = "user@example.com"

    def test_clean_plan_types_every_character(self) -> None:
        human = HumanSimulator(random.Random(3), mistake_rate=0.0, pause_rate=0.0)
        plan = human.typing_plan(self.TEXT)
        assert [s.key for s in plan] == list(self.TEXT)
        assert apply_keystrokes(plan) == self.TEXT

    def test_mistake_plan_still_produces_exact_text(self) -> None:
        human = HumanSimulator(random.Random(3), mistake_rate=1.0, pause_rate=1.0)
        plan = human.typing_plan(self.TEXT)
        assert sum(1 for s in plan if s.kind == "backspace") == len(self.TEXT)
        assert apply_keystrokes(plan) == self.TEXT

    def test_disabled_simulator_has_no_delays(self) -> None:
        human = HumanSimulator(random.Random(3), enabled=False, mistake_rate=1.0)
        plan = human.typing_plan("abc")
        assert plan == [Keystroke("char", c) for c in "abc"]

    def test_edge_keys_are_slower_than_middle_keys(self) -> None:
        human = HumanSimulator(random.Random(8), mistake_rate=0.0, pause_rate=0.0)
        plan = human.typing_plan("x" * 20)
        assert all(100 <= s.delay_ms <= 200 for s in plan[:4])
        assert all(30 <= s.delay_ms <= 80 for s in plan[5:15])
        assert all(100 <= s.delay_ms <= 200 for s in plan[17:])

    def test_apply_keystrokes_ignores_pauses(self) -> None:
        plan = [Keystroke("char", "a"), Keystroke("pause", "", 500), Keystroke("char", "b")]
        assert apply_keystrokes(plan, "x") == "xab"


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------


class TestTiming:
    """Delay sampling, jitter and break decisions."""

    def test_sample_ms_within_bounds(self, seeded_human: HumanSimulator) -> None:
        for _ in range(200):
            assert 100 <= seeded_human.sample_ms(100, 500) <= 500

    def test_sample_ms_swaps_inverted_bounds(self, seeded_human: HumanSimulator) -> None:
        assert 100 <= seeded_human.sample_ms(500, 100) <= 500

    def test_jittered_ms_bounds(self) -> None:
        human = HumanSimulator(random.Random(4), jitter_bound_ms=250)
        for _ in range(200):
            assert 500 <= human.jittered_ms(500) <= 750

    def test_jitter_disabled(self) -> None:
        assert HumanSimulator(enabled=False).jittered_ms(500) == 500
        assert HumanSimulator(jitter_bound_ms=0).jittered_ms(500) == 500

    @pytest.mark.anyio
    async def test_delay_returns_slept_ms(self, seeded_human: HumanSimulator) -> None:
        slept = await seeded_human.delay(1, 5)
        assert 1 <= slept <= 5

    @pytest.mark.anyio
    async def test_disabled_delay_is_instant(self) -> None:
        assert await HumanSimulator(enabled=False).delay(1000, 2000) == 0.0

    def test_no_break_before_threshold(self) -> None:
        human = HumanSimulator(random.Random(0))
        assert not any(human.should_take_break(BREAK_AFTER_ACTIONS) for _ in range(100))

    def test_breaks_happen_after_threshold(self) -> None:
        human = HumanSimulator(random.Random(0))
        decisions = [human.should_take_break(BREAK_AFTER_ACTIONS + 1) for _ in range(500)]
        assert 0.2 < sum(decisions) / len(decisions) < 0.4

    def test_scroll_positions_empty_for_short_pages(self, seeded_human: HumanSimulator) -> None:
        assert seeded_human.scroll_positions(600, 800) == []

    def test_scroll_positions_within_page(self, seeded_human: HumanSimulator) -> None:
        positions = seeded_human.scroll_positions(5000, 800)
        assert 2 <= len(positions) <= 6
        assert all(0 <= p <= 4200 for p in positions)


# ---------------------------------------------------------------------------
# Geometry and identity
# ---------------------------------------------------------------------------


class TestGeometryAndIdentity:
    def test_near_center_stays_inside_box(self, seeded_human: HumanSimulator) -> None:
        for _ in range(100):
            p = seeded_human.near_center(10, 20, 4, 4)
            assert 10 <= p.x <= 14
            assert 20 <= p.y <= 24

    def test_pick_user_agent_from_pool(self, seeded_human: HumanSimulator) -> None:
        ua = seeded_human.pick_user_agent()
        assert ua and ua in ALL_USER_AGENTS

    def test_pick_user_agent_for_engine(self, seeded_human: HumanSimulator) -> None:
        assert seeded_human.pick_user_agent("firefox") in USER_AGENTS["firefox"]
