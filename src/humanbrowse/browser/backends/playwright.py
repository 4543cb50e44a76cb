"""High-level driver backend: Playwright over chromium, firefox or webkit.

Runs the full seven-step resolution cascade on Playwright locators, moves
the mouse along humanized paths through ``page.mouse``, types through
``page.keyboard`` and persists sessions as Playwright storage state.

Usage::

    backend = PlaywrightBackend(config, engine="firefox")
    if await backend.initialize():
        await backend.navigate("example.com")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Sequence

from playwright.async_api import Browser, BrowserContext, Dialog, Frame, Locator, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from humanbrowse.browser import navigation
from humanbrowse.browser.base import BrowserBackend
from humanbrowse.browser.cascade import (
    CLICKABLE_AT_POINT_JS,
    EDITABLE_TAGS,
    ResolvedElement,
    Strategy,
    attribute_selector,
    coordinate_hint,
    dom_scan_js,
    looks_like_selector,
    strip_quotes,
    structural_path_xpath,
)
from humanbrowse.browser.human import Point
from humanbrowse.browser.stealth import apply_stealth_scripts, build_context_args, build_launch_args
from humanbrowse.exceptions import EvaluationFailedError, HumanBrowseError, TimeoutExceededError
from humanbrowse.settings.config import BrowserConfig

logger = logging.getLogger(__name__)

ENGINES: tuple[str, ...] = ("chromium", "firefox", "webkit")

# Roles tried by the role-label strategy, per action.
_CLICK_ROLES: tuple[str, ...] = ("button", "link", "menuitem", "tab", "checkbox", "radio", "option")
_TYPE_ROLES: tuple[str, ...] = ("textbox", "searchbox", "combobox", "spinbutton")

_MOUSE_STEP_DELAY = (10, 30)
_PRE_PRESS_DELAY = (200, 500)
_PRESS_HOLD_DELAY = (20, 150)
_FOCUS_DELAY = (100, 500)


async def first_match(locator: Locator) -> Locator | None:
    """The first element of *locator*, or ``None`` when it matches nothing."""
    if await locator.count() == 0:
        return None
    return locator.first


class PlaywrightBackend(BrowserBackend):
    """Playwright-only backend; the default and the universal fallback."""

    name = "playwright"

    def __init__(self, config: BrowserConfig, *, engine: str = "chromium", **kwargs: Any) -> None:
        if engine not in ENGINES:
            raise ValueError(f"Unknown Playwright engine {engine!r}; expected one of {', '.join(ENGINES)}")
        self._engine = engine
        super().__init__(config, **kwargs)
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._mouse = Point(0.0, 0.0)

    @property
    def engine(self) -> str:
        return self._engine

    @property
    def page(self) -> Page:
        if self._page is None:
            raise HumanBrowseError("No active page")
        return self._page

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _launch_args(self) -> dict[str, Any]:
        return build_launch_args(self.config, engine=self._engine)

    async def _launch(self) -> None:
        self._playwright = await async_playwright().start()
        browser_type = getattr(self._playwright, self._engine)
        launch_args = self._launch_args()
        logger.info("Launching %s (headless=%s)", self._engine, self.config.headless)
        self._browser = await browser_type.launch(**launch_args)
        await self._open_context()
        await self._after_launch()

    async def _after_launch(self) -> None:
        """Hook for subclasses that need extra checks once the page is open."""

    async def _open_context(self, storage_state: dict[str, Any] | None = None) -> None:
        """(Re)create the isolated context and its single page."""
        assert self._browser is not None
        ctx_args = build_context_args(self.config, self.user_agent)
        if storage_state is not None:
            ctx_args["storage_state"] = storage_state
        self._context = await self._browser.new_context(**ctx_args)
        self._context.set_default_timeout(self.config.timeout_ms)
        if self.config.stealth:
            await apply_stealth_scripts(self._context)
        self._page = await self._context.new_page()
        self._page.on("dialog", self._on_dialog)
        self._page.on("framenavigated", self._on_frame_navigated)
        vp = self.config.viewport
        self._mouse = self.human.random_point(vp.width, vp.height)

    async def _shutdown(self) -> None:
        for closer, label in ((self._context, "context"), (self._browser, "browser")):
            if closer is None:
                continue
            try:
                await closer.close()
            except PlaywrightError as e:
                logger.warning("Error closing %s: %s", label, e)
        if self._playwright is not None:
            await self._playwright.stop()
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    # ------------------------------------------------------------------
    # Event listeners
    # ------------------------------------------------------------------

    async def _on_dialog(self, dialog: Dialog) -> None:
        accept = self._record_dialog(dialog.type, dialog.message)
        try:
            if accept:
                await dialog.accept()
            else:
                await dialog.dismiss()
        except PlaywrightError as e:
            logger.debug("Dialog already handled: %s", e)

    def _on_frame_navigated(self, frame: Frame) -> None:
        if self._page is not None and frame == self._page.main_frame:
            self._record_navigation(frame.url)

    # ------------------------------------------------------------------
    # Navigation primitives
    # ------------------------------------------------------------------

    async def _goto(self, url: str) -> None:
        await navigation.resilient_goto(self.page, url, timeout_ms=self.config.timeout_ms)

    async def _history_go(self, delta: int) -> bool:
        return await navigation.resilient_history(self.page, delta, timeout_ms=self.config.timeout_ms)

    async def _reload(self) -> None:
        await navigation.resilient_reload(self.page, timeout_ms=self.config.timeout_ms)

    async def _read_url(self) -> str:
        return self.page.url

    async def _read_title(self) -> str:
        try:
            return await self.page.title()
        except PlaywrightError as e:
            raise EvaluationFailedError(str(e), "document.title") from e

    async def _evaluate(self, expression: str) -> Any:
        try:
            return await self.page.evaluate(expression)
        except PlaywrightError as e:
            raise EvaluationFailedError(str(e), expression) from e

    async def _wait_for_load(self, timeout_ms: float) -> None:
        try:
            await self.page.wait_for_load_state("load", timeout=timeout_ms)
        except PlaywrightError as e:
            raise TimeoutExceededError("load", timeout_ms) from e

    async def _wait_for_network_idle(self, timeout_ms: float) -> None:
        try:
            await self.page.wait_for_load_state("networkidle", timeout=timeout_ms)
        except PlaywrightError as e:
            raise TimeoutExceededError("network-idle", timeout_ms) from e

    # ------------------------------------------------------------------
    # Cascade locators
    # ------------------------------------------------------------------

    def _locators(self, action: str) -> Sequence[tuple[Strategy, Any]]:
        return [
            (Strategy.STRUCTURAL_LOCATOR, self._locate_structural),
            (Strategy.TEXT_MATCH, self._locate_text),
            (Strategy.ROLE_LABEL, lambda d: self._locate_role(d, action)),
            (Strategy.ATTRIBUTE_SUBSTRING, lambda d: self._locate_attribute(d, action)),
            (Strategy.STRUCTURAL_PATH, self._locate_xpath),
            (Strategy.DOM_SCAN, lambda d: self._locate_dom_scan(d, action)),
            (Strategy.RAW_COORDINATE, self._locate_coordinate),
        ]

    async def _locate_structural(self, descriptor: str) -> Locator | None:
        if not looks_like_selector(descriptor):
            return None
        return await first_match(self.page.locator(descriptor))

    async def _locate_text(self, descriptor: str) -> Locator | None:
        return await first_match(self.page.get_by_text(strip_quotes(descriptor), exact=True))

    async def _locate_role(self, descriptor: str, action: str) -> Locator | None:
        name = strip_quotes(descriptor)
        roles = _TYPE_ROLES if action == "type" else _CLICK_ROLES
        for role in roles:
            found = await first_match(self.page.get_by_role(role, name=name))
            if found is not None:
                return found
        return await first_match(self.page.get_by_label(name))

    async def _locate_attribute(self, descriptor: str, action: str) -> Locator | None:
        tags = EDITABLE_TAGS if action == "type" else ("",)
        return await first_match(self.page.locator(attribute_selector(descriptor, tags)))

    async def _locate_xpath(self, descriptor: str) -> Locator | None:
        return await first_match(self.page.locator(f"xpath={structural_path_xpath(descriptor)}"))

    async def _locate_dom_scan(self, descriptor: str, action: str) -> Any:
        handle = await self.page.evaluate_handle(dom_scan_js(descriptor, editable_only=action == "type"))
        element = handle.as_element()
        if element is None:
            await handle.dispose()
        return element

    async def _locate_coordinate(self, descriptor: str) -> Point | None:
        hint = coordinate_hint(descriptor, self.config.viewport)
        if hint is None:
            return None
        if not await self.page.evaluate(CLICKABLE_AT_POINT_JS, [hint[0], hint[1]]):
            logger.debug("Nothing clickable at %s for %r", hint, descriptor)
            return None
        return Point(*hint)

    # ------------------------------------------------------------------
    # Actions on resolved elements
    # ------------------------------------------------------------------

    async def _move_and_press(self, target: Point) -> None:
        mouse = self.page.mouse
        for point in self.human.mouse_path(self._mouse, target, 10):
            await mouse.move(point.x, point.y)
            await self.human.delay(*_MOUSE_STEP_DELAY)
        self._mouse = target
        await self.human.delay(*_PRE_PRESS_DELAY)
        await mouse.down()
        await self.human.delay(*_PRESS_HOLD_DELAY)
        await mouse.up()

    async def _click_element(self, element: ResolvedElement) -> bool:
        if element.strategy is Strategy.RAW_COORDINATE:
            await self._move_and_press(element.handle)
            return True
        handle = element.handle
        await handle.scroll_into_view_if_needed(timeout=self.config.timeout_ms)
        box = await handle.bounding_box()
        if not box:
            logger.debug("Element for %r has no bounding box", element.descriptor)
            return False
        await self._move_and_press(self.human.near_center(box["x"], box["y"], box["width"], box["height"]))
        return True

    async def _type_into(self, element: ResolvedElement, text: str) -> bool:
        handle = element.handle
        await handle.fill("")
        await handle.focus()
        await self.human.delay(*_FOCUS_DELAY)
        keyboard = self.page.keyboard
        await self._play_typing_plan(text, keyboard.type, lambda: keyboard.press("Backspace"))
        return await self._commit_value(element, text)

    async def _read_value(self, element: ResolvedElement) -> str:
        try:
            return await element.handle.input_value()
        except PlaywrightError:
            # contenteditable and other non-form elements
            return await element.handle.inner_text()

    async def _force_value(self, element: ResolvedElement, text: str) -> None:
        await element.handle.fill(text)

    async def _read_text(self, element: ResolvedElement) -> str | None:
        return (await element.handle.inner_text()).strip()

    async def _is_visible(self, element: ResolvedElement) -> bool:
        return await element.handle.is_visible()

    async def _press_key(self, key: str) -> None:
        try:
            await self.page.keyboard.press(key)
        except PlaywrightError as e:
            raise HumanBrowseError(f"Key press failed for {key!r}: {e}") from e

    async def _screenshot(self, path: Path) -> None:
        try:
            await self.page.screenshot(path=str(path), type="png")
        except PlaywrightError as e:
            raise HumanBrowseError(f"Screenshot failed: {e}") from e

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    async def _export_state(self) -> dict[str, Any]:
        if self._context is None:
            raise HumanBrowseError("No active browser context")
        try:
            return await self._context.storage_state()
        except PlaywrightError as e:
            raise HumanBrowseError(f"Could not read storage state: {e}") from e

    async def _import_state(self, state: dict[str, Any]) -> None:
        """Storage state only applies to new contexts: rebuild the context and reopen the page."""
        url = self.session.current_url
        old_context = self._context
        try:
            await self._open_context(storage_state=state)
        except PlaywrightError as e:
            raise HumanBrowseError(f"Could not apply storage state: {e}") from e
        if old_context is not None:
            try:
                await old_context.close()
            except PlaywrightError as e:
                logger.debug("Error closing previous context: %s", e)
        if url:
            await self._goto(url)
