"""humanbrowse test configuration — shared fixtures and backend doubles."""

from __future__ import annotations

import random
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from humanbrowse.browser.base import BrowserBackend
from humanbrowse.browser.cascade import ResolvedElement, Strategy
from humanbrowse.browser.human import HumanSimulator
from humanbrowse.exceptions import HumanBrowseError, NavigationFailedError
from humanbrowse.settings.config import BrowserConfig


# ---------------------------------------------------------------------------
# anyio
# ---------------------------------------------------------------------------


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Clear the settings LRU cache between tests."""
    from humanbrowse.settings.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def quiet_config() -> BrowserConfig:
    """A config with every humanized delay switched off."""
    return BrowserConfig(humanize=False, seed=7, timeout_ms=2000, max_retries=0)


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class FakeBackend(BrowserBackend):
    """Backend double whose "page" is a dict of descriptors to field values.

    ``fields`` maps a descriptor to its current value; ``fail_urls`` are URLs
    whose navigation fails; ``evaluate_results`` answers ``_evaluate`` by
    exact expression (``None`` for anything else, which also means "no
    CAPTCHA").
    """

    name = "fake"

    def __init__(self, config: BrowserConfig, *, fields: dict[str, str] | None = None, **kwargs: Any) -> None:
        super().__init__(config, **kwargs)
        self.fields: dict[str, str] = dict(fields or {})
        self.fail_urls: set[str] = set()
        self.evaluate_results: dict[str, Any] = {}
        self.url = ""
        self.clicked: list[str] = []
        self.keys: list[str] = []
        self.drop_chars: set[str] = set()
        self.state: dict[str, Any] = {"cookies": [], "origins": []}
        self.fail_launch = False
        self.launches = 0
        self.shutdowns = 0
        self.screenshots: list[Path] = []

    async def _launch(self) -> None:
        self.launches += 1
        if self.fail_launch:
            raise HumanBrowseError("launch failed")

    async def _shutdown(self) -> None:
        self.shutdowns += 1

    async def _goto(self, url: str) -> None:
        if url in self.fail_urls:
            raise NavigationFailedError(url, "name not resolved")
        self.url = url
        self._record_navigation(url)

    async def _history_go(self, delta: int) -> bool:
        return False

    async def _reload(self) -> None:
        self._record_navigation(self.url)

    async def _read_url(self) -> str:
        return self.url

    async def _read_title(self) -> str:
        return f"Title of {self.url}"

    async def _evaluate(self, expression: str) -> Any:
        return self.evaluate_results.get(expression)

    def _locators(self, action: str):
        return [(Strategy.STRUCTURAL_LOCATOR, self._find)]

    async def _find(self, descriptor: str) -> str | None:
        return descriptor if descriptor in self.fields else None

    async def _click_element(self, element: ResolvedElement) -> bool:
        self.clicked.append(element.descriptor)
        return True

    async def _type_into(self, element: ResolvedElement, text: str) -> bool:
        self.fields[element.handle] = ""

        async def send_char(ch: str) -> None:
            if ch not in self.drop_chars:
                self.fields[element.handle] += ch

        async def send_backspace() -> None:
            self.fields[element.handle] = self.fields[element.handle][:-1]

        await self._play_typing_plan(text, send_char, send_backspace)
        return await self._commit_value(element, text)

    async def _read_text(self, element: ResolvedElement) -> str | None:
        return self.fields[element.handle]

    async def _is_visible(self, element: ResolvedElement) -> bool:
        return True

    async def _read_value(self, element: ResolvedElement) -> str:
        return self.fields[element.handle]

    async def _force_value(self, element: ResolvedElement, text: str) -> None:
        self.fields[element.handle] = text

    async def _press_key(self, key: str) -> None:
        self.keys.append(key)

    async def _screenshot(self, path: Path) -> None:
        path.write_bytes(b"\x89PNG\r\n\x1a\n")
        self.screenshots.append(path)

    async def _wait_for_load(self, timeout_ms: float) -> None:
        return None

    async def _wait_for_network_idle(self, timeout_ms: float) -> None:
        return None

    async def _export_state(self) -> dict[str, Any]:
        return self.state

    async def _import_state(self, state: dict[str, Any]) -> None:
        self.state = state


@pytest.fixture()
def fake_backend(quiet_config: BrowserConfig) -> FakeBackend:
    return FakeBackend(quiet_config, fields={"#email": "", "#name": "", "#notice": "Welcome back"})


@pytest.fixture()
def seeded_human() -> HumanSimulator:
    return HumanSimulator(random.Random(42))


# ---------------------------------------------------------------------------
# Playwright doubles
# ---------------------------------------------------------------------------


def make_locator(count: int = 1) -> MagicMock:
    """A Playwright ``Locator`` double matching *count* elements."""
    loc = MagicMock(name="locator")
    loc.count = AsyncMock(return_value=count)
    loc.first = MagicMock(name="locator.first")
    return loc


@pytest.fixture()
def mock_page() -> MagicMock:
    """A Playwright ``Page`` double where nothing matches by default."""
    page = MagicMock(name="page")
    page.url = "about:blank"
    page.locator.return_value = make_locator(0)
    page.get_by_text.return_value = make_locator(0)
    page.get_by_role.return_value = make_locator(0)
    page.get_by_label.return_value = make_locator(0)
    page.evaluate = AsyncMock(return_value=None)
    page.title = AsyncMock(return_value="Example")
    page.wait_for_load_state = AsyncMock()
    page.goto = AsyncMock()
    page.screenshot = AsyncMock()
    page.mouse.move = AsyncMock()
    page.mouse.down = AsyncMock()
    page.mouse.up = AsyncMock()
    page.keyboard.type = AsyncMock()
    page.keyboard.press = AsyncMock()
    return page
