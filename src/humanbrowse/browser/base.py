"""Backend contract and the orchestration shared by every backend.

``BrowserBackend`` implements the public capability contract once
(``navigate``, ``click``, ``type``, ``wait``, ...) as template methods.
Each concrete backend only supplies the engine primitives (``_goto``,
``_evaluate``, its cascade locators, how to click a resolved node, ...).

Every page interaction follows the same order:

1. CAPTCHA check (may hand control to a human, see ``intervention``)
2. Action counting (may trigger a periodic human-like break)
3. A short randomized pre-action delay
4. The element resolution cascade
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import random
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, ClassVar, Sequence

from humanbrowse.browser.cascade import ElementCascade, Locator, ResolvedElement, Strategy
from humanbrowse.browser.content import CONTENT_SCRIPTS, PAGE_INFO_SCRIPT, assemble, normalize_kind
from humanbrowse.browser.human import HumanSimulator
from humanbrowse.browser.intervention import InterventionController, InterventionState
from humanbrowse.browser.recovery import ErrorReport, ErrorTracker, is_transient, retry_with_backoff
from humanbrowse.exceptions import (
    DialogBlockedError,
    ElementNotFoundError,
    EvaluationFailedError,
    HumanBrowseError,
    NavigationFailedError,
    TimeoutExceededError,
)
from humanbrowse.settings.config import BrowserConfig

logger = logging.getLogger(__name__)

_PROTOCOL_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_SPECIAL_SCHEMES = ("about:", "data:", "file:", "javascript:", "chrome:")

_PRE_CLICK_DELAY = (100, 500)
_PRE_TYPE_DELAY = (100, 500)
_PRE_KEY_DELAY = (300, 800)
_PRE_NAVIGATE_DELAY = (800, 2000)
_SCROLL_PAUSE = (1000, 3000)
_VISIBILITY_POLL_S = 0.25
_ENTER_NAVIGATION_TIMEOUT_MS = 5000


def normalize_url(url: str) -> str:
    """Prefix ``https://`` when *url* carries no scheme."""
    url = url.strip()
    if not url:
        raise ValueError("URL must not be empty")
    if _PROTOCOL_RE.match(url) or url.startswith(_SPECIAL_SCHEMES):
        return url
    return f"https://{url}"


@dataclass
class BrowserSession:
    """Mutable per-backend session state."""

    initialized: bool = False
    current_url: str = ""
    history: list[str] = field(default_factory=list)
    forward: list[str] = field(default_factory=list)
    action_count: int = 0
    intervention: InterventionState = field(default_factory=InterventionState)
    blocked_dialogs: list[DialogBlockedError] = field(default_factory=list)


class BrowserBackend(abc.ABC):
    """One live browser plus the session state that goes with it.

    Args:
        config: Frozen configuration for this instance.
        human: Simulator to use; by default one is built from ``config``
            (seeded with ``config.seed`` when set).
    """

    name: ClassVar[str] = "backend"

    def __init__(self, config: BrowserConfig, *, human: HumanSimulator | None = None) -> None:
        self.config = config
        self.human = human or HumanSimulator(
            random.Random(config.seed),
            enabled=config.humanize,
            jitter_bound_ms=config.jitter_bound_ms,
        )
        self.session = BrowserSession()
        self.intervention = InterventionController(
            self.session.intervention, self.human, timeout_ms=config.intervention_timeout_ms
        )
        self.user_agent = config.user_agent or self.human.pick_user_agent(self.engine)
        self.last_click_strategy: str = ""
        self.last_type_strategy: str = ""
        self.errors = ErrorTracker()
        self._navigated = asyncio.Event()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} engine={self.engine} initialized={self.session.initialized}>"

    @property
    def engine(self) -> str:
        return "chromium"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Launch the browser. Returns ``False`` (never raises) on failure."""
        if self.session.initialized:
            return True
        try:
            await retry_with_backoff(
                self._launch_once,
                max_retries=self.config.max_retries,
                backoff_seconds=self.config.retry_backoff_ms / 1000,
                should_retry=is_transient,
                label=f"{self.name} start-up",
            )
        except Exception as e:
            self.errors.record(e, "initialize")
            logger.error("Failed to initialize %s backend: %s", self.name, e)
            return False

        self.session.initialized = True
        logger.info("%s backend initialized (engine=%s, headless=%s)", self.name, self.engine, self.config.headless)
        if self.config.session_path and Path(self.config.session_path).is_file():
            await self.load_session(self.config.session_path)
        return True

    async def _launch_once(self) -> None:
        """One start-up attempt; a partial launch is torn down before re-raising."""
        try:
            await self._launch()
        except Exception:
            try:
                await self._shutdown()
            except Exception as cleanup_error:
                logger.debug("Cleanup after failed start raised: %s", cleanup_error)
            raise

    async def close(self) -> None:
        """Shut the browser down; safe to call more than once."""
        try:
            await self._shutdown()
        except Exception as e:
            logger.warning("Browser close error (non-fatal): %s", e)
        finally:
            self.session.initialized = False
        logger.info("%s backend closed", self.name)

    async def __aenter__(self) -> "BrowserBackend":
        if not await self.initialize():
            raise HumanBrowseError(f"{self.name} backend failed to initialize")
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _require_initialized(self) -> None:
        if not self.session.initialized:
            raise HumanBrowseError("Browser is not initialized. Call initialize() first.")

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def navigate(self, url: str) -> bool:
        """Load *url* (``https://`` is assumed when no scheme is given).

        On success the previous URL is pushed onto the history stack. On
        failure the session keeps its URL and history and ``False`` is returned.
        """
        self._require_initialized()
        target = normalize_url(url)
        await self._count_action()
        await self.human.delay(*_PRE_NAVIGATE_DELAY)

        previous = self.session.current_url
        logger.info("Navigating to: %s", target)
        try:
            await retry_with_backoff(
                lambda: self._goto(target),
                max_retries=self.config.max_retries,
                backoff_seconds=self.config.retry_backoff_ms / 1000,
                should_retry=is_transient,
                label=f"navigate {target}",
            )
        except NavigationFailedError as e:
            # The frame listener may already have recorded the failed target.
            self.session.current_url = previous
            await self._report_failure(e, "navigate", target)
            return False

        if previous:
            self.session.history.append(previous)
        self.session.forward.clear()
        self.session.current_url = await self._safe_read_url() or target
        logger.info("Page loaded: %s", self.session.current_url)

        await self.check_for_captcha()
        return True

    async def go_back(self) -> bool:
        """Go back one page; falls back to re-navigating to the last history entry."""
        self._require_initialized()
        current = self.session.current_url
        try:
            moved = await self._history_go(-1)
            if not moved:
                if not self.session.history:
                    logger.info("No previous page in history")
                    return False
                await self._goto(self.session.history[-1])
        except NavigationFailedError as e:
            self.session.current_url = current
            logger.warning("Back navigation failed: %s", e)
            return False

        if self.session.history:
            self.session.history.pop()
        if current:
            self.session.forward.append(current)
        self.session.current_url = await self._safe_read_url()
        logger.info("Navigated back to: %s", self.session.current_url)
        return True

    async def go_forward(self) -> bool:
        """Go forward one page (only after a ``go_back``)."""
        self._require_initialized()
        current = self.session.current_url
        try:
            moved = await self._history_go(1)
            if not moved:
                if not self.session.forward:
                    logger.info("No next page in history")
                    return False
                await self._goto(self.session.forward[-1])
        except NavigationFailedError as e:
            self.session.current_url = current
            logger.warning("Forward navigation failed: %s", e)
            return False

        if self.session.forward:
            self.session.forward.pop()
        if current:
            self.session.history.append(current)
        self.session.current_url = await self._safe_read_url()
        return True

    async def refresh(self) -> bool:
        self._require_initialized()
        current = self.session.current_url
        try:
            await self._reload()
        except NavigationFailedError as e:
            self.session.current_url = current
            logger.warning("Reload failed: %s", e)
            return False
        self.session.current_url = await self._safe_read_url() or self.session.current_url
        return True

    async def wait_for_navigation(self, timeout_ms: float | None = None) -> None:
        """Wait for the next main-frame navigation.

        Raises:
            TimeoutExceededError: No navigation happened within the timeout.
        """
        self._navigated.clear()
        await self._await_navigation(self.config.timeout_ms if timeout_ms is None else timeout_ms)

    async def _await_navigation(self, timeout_ms: float) -> None:
        try:
            await asyncio.wait_for(self._navigated.wait(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise TimeoutExceededError("navigation", timeout_ms) from None

    def _record_navigation(self, url: str) -> None:
        """Called by backends from their main-frame navigation listener."""
        if url:
            self.session.current_url = url
        self._navigated.set()

    # ------------------------------------------------------------------
    # Page interaction
    # ------------------------------------------------------------------

    def cascade(self, action: str) -> ElementCascade:
        return ElementCascade(self._locators(action))

    async def click(self, target: str) -> bool:
        """Click the element described by *target*. ``False`` if nothing could be clicked."""
        self._require_initialized()
        await self.check_for_captcha()
        await self._count_action()
        await self.human.delay(*_PRE_CLICK_DELAY)
        try:
            outcome = await self.cascade("click").run(target, "click", self._click_element)
        except ElementNotFoundError as e:
            await self._report_failure(e, "click", target)
            self.last_click_strategy = "failed"
            return False
        self.last_click_strategy = outcome.strategy.value
        return True

    async def type(self, target: str, text: str) -> bool:
        """Type *text* into the field described by *target*.

        Succeeds only when the field's value reads back as exactly *text*.
        """
        self._require_initialized()
        await self.check_for_captcha()
        await self._count_action()
        await self.human.delay(*_PRE_TYPE_DELAY)

        async def act(element: ResolvedElement) -> bool:
            return await self._type_into(element, text)

        try:
            outcome = await self.cascade("type").run(target, "type", act)
        except ElementNotFoundError as e:
            await self._report_failure(e, "type", target)
            self.last_type_strategy = "failed"
            return False
        self.last_type_strategy = outcome.strategy.value
        logger.info("Typed %s into %r", _mask_value(text), target)
        return True

    async def extract(self, target: str) -> str | None:
        """Return the visible text of the element described by *target*, or ``None``."""
        self._require_initialized()
        await self.check_for_captcha()
        try:
            outcome = await self.cascade("extract").run(target, "extract", self._read_text)
        except ElementNotFoundError as e:
            await self._report_failure(e, "extract", target)
            return None
        return outcome.value

    async def element_exists(self, target: str) -> bool:
        """``True`` when *target* resolves to a visible element."""
        self._require_initialized()
        try:
            await self.cascade("exists").run(target, "exists", self._is_visible)
        except ElementNotFoundError:
            return False
        return True

    async def press_key(self, key: str) -> bool:
        """Press a single key (``Enter``, ``Escape``, ``Tab``, ...) on the focused element."""
        self._require_initialized()
        await self._count_action()
        await self.human.delay(*_PRE_KEY_DELAY)
        self._navigated.clear()
        try:
            await self._press_key(key)
        except HumanBrowseError as e:
            logger.warning("Key press %r failed: %s", key, e)
            return False
        logger.info("Pressed key: %s", key)

        if key == "Enter":
            try:
                await self._await_navigation(_ENTER_NAVIGATION_TIMEOUT_MS)
            except TimeoutExceededError:
                logger.debug("No navigation after pressing Enter")
            await self.check_for_captcha()
        return True

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    async def wait(self, condition: float | str, timeout_ms: float | None = None) -> bool:
        """Wait for a duration (ms) or a condition.

        String conditions: ``load``, ``network-idle``, ``navigation``; any other
        string is a target descriptor and waits until it is visible. Returns
        ``False`` when the condition did not hold within the timeout.
        """
        if timeout_ms is None:
            timeout_ms = self.config.timeout_ms

        if isinstance(condition, str) and condition.strip().isdigit():
            condition = int(condition.strip())
        if isinstance(condition, (int, float)) and not isinstance(condition, bool):
            await asyncio.sleep(self.human.jittered_ms(condition) / 1000)
            return True

        self._require_initialized()
        key = condition.strip()
        lowered = key.lower()
        try:
            if lowered == "load":
                await self._wait_for_load(timeout_ms)
            elif lowered in ("network-idle", "networkidle"):
                await self._wait_for_network_idle(timeout_ms)
            elif lowered == "navigation":
                await self.wait_for_navigation(timeout_ms)
            else:
                if lowered.startswith("selector:"):
                    key = key[len("selector:"):].strip()
                await self._wait_for_visible(key, timeout_ms)
        except TimeoutExceededError as e:
            logger.warning("%s", e)
            return False
        return True

    async def _wait_for_visible(self, target: str, timeout_ms: float) -> None:
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            if await self.element_exists(target):
                return
            if time.monotonic() >= deadline:
                raise TimeoutExceededError(f"{target!r} to become visible", timeout_ms)
            await asyncio.sleep(_VISIBILITY_POLL_S)

    # ------------------------------------------------------------------
    # Scripts and content
    # ------------------------------------------------------------------

    async def evaluate(self, script: str, *args: Any) -> Any:
        """Evaluate *script* in the page and return its JSON value.

        With *args*, *script* must be a function expression; it is called
        with the JSON-encoded arguments.

        Raises:
            EvaluationFailedError: The script threw inside the page.
        """
        self._require_initialized()
        expression = f"({script})(...{json.dumps(list(args))})" if args else script
        return await self._evaluate(expression)

    async def get_current_url(self) -> str:
        self._require_initialized()
        return await self._safe_read_url() or self.session.current_url

    async def get_title(self) -> str:
        self._require_initialized()
        try:
            return await self._read_title()
        except HumanBrowseError as e:
            logger.warning("Failed to get page title: %s", e)
            return ""

    async def extract_page_content(self, kind: str = "full") -> dict[str, Any]:
        """Extract structured content of one kind (see ``content.CONTENT_KINDS``)."""
        self._require_initialized()
        kind = normalize_kind(kind)
        logger.info("Extracting content of type: %s", kind)
        try:
            page_info = await self._evaluate(PAGE_INFO_SCRIPT)
            payload = await self._evaluate(CONTENT_SCRIPTS[kind])
        except EvaluationFailedError as e:
            logger.warning("Error extracting content (%s): %s", kind, e)
            return {"type": kind, "error": str(e)}
        return assemble(kind, page_info, payload)

    async def screenshot(self, path: str | Path) -> Path | None:
        """Save a PNG screenshot, creating missing parent directories."""
        self._require_initialized()
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            await self._screenshot(path)
        except HumanBrowseError as e:
            logger.error("Screenshot failed: %s", e)
            return None
        logger.info("Screenshot saved: %s", path)
        return path

    # ------------------------------------------------------------------
    # Sessions and proxy
    # ------------------------------------------------------------------

    async def save_session(self, path: str | Path) -> bool:
        """Write cookies and storage to a JSON file at *path*."""
        self._require_initialized()
        path = Path(path)
        try:
            state = await self._export_state()
        except HumanBrowseError as e:
            logger.error("Failed to save session: %s", e)
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(state, indent=2), encoding="utf-8")
        logger.info("Session saved to %s", path)
        return True

    async def load_session(self, path: str | Path) -> bool:
        """Restore cookies and storage from a JSON file written by ``save_session``."""
        self._require_initialized()
        path = Path(path)
        try:
            state = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Failed to read session file %s: %s", path, e)
            return False
        try:
            await self._import_state(state)
        except HumanBrowseError as e:
            logger.error("Failed to load session: %s", e)
            return False
        logger.info("Session loaded from %s", path)
        return True

    async def set_proxy(self, proxy: str) -> bool:
        """Proxies are fixed at launch; changing one on a live session is unsupported."""
        logger.warning(
            "Proxy %s not applied: the proxy can only be set at construction (BrowserConfig.proxy)", proxy
        )
        return False

    # ------------------------------------------------------------------
    # Human-like behaviour and obstructions
    # ------------------------------------------------------------------

    async def check_for_captcha(self) -> bool:
        """Detect a CAPTCHA and, if present, wait for the operator to solve it."""
        return await self.intervention.check(self._evaluate, self.wait_for_navigation)

    async def _report_failure(self, exc: HumanBrowseError, action: str, target: str) -> ErrorReport:
        """Categorise and log a failed action; screenshot unresolved elements when configured."""
        report = self.errors.record(exc, action, target)
        logger.warning("[%s] %s failed: %s", report.category.value, action, exc)
        logger.info("Suggestion: %s", report.suggestion)
        if isinstance(exc, ElementNotFoundError) and self.config.error_screenshot_dir:
            saved = await self._error_screenshot(action)
            report.screenshot = str(saved) if saved else ""
        return report

    async def _error_screenshot(self, action: str) -> Path | None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        path = Path(self.config.error_screenshot_dir) / f"error-{action}-{stamp}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await self._screenshot(path)
        except (HumanBrowseError, OSError) as e:
            logger.warning("Failure screenshot not saved: %s", e)
            return None
        logger.info("Failure screenshot saved: %s", path)
        return path

    def _record_dialog(self, dialog_type: str, message: str) -> bool:
        """Record a native dialog; returns whether to accept it."""
        accept = self.config.auto_accept_dialogs
        record = DialogBlockedError(dialog_type, message, accept)
        self.session.blocked_dialogs.append(record)
        logger.info("[Browser Dialog] %s", record)
        return accept

    async def _count_action(self) -> None:
        self.session.action_count += 1
        if self.human.should_take_break(self.session.action_count):
            await self._take_break()

    async def _take_break(self) -> None:
        logger.info("Taking a short break to seem more human-like...")
        self.session.action_count = 0
        await self.human.delay(5000, 15000)
        if self.human.should_scroll_during_break():
            await self._random_scroll()
        logger.info("Break completed")

    async def _random_scroll(self) -> None:
        try:
            dims = await self._evaluate(
                "(() => ({ page: document.body ? document.body.scrollHeight : 0, view: window.innerHeight }))()"
            )
            for position in self.human.scroll_positions(dims["page"], dims["view"]):
                await self._evaluate(f"window.scrollTo({{ top: {int(position)}, behavior: 'smooth' }})")
                await self.human.delay(*_SCROLL_PAUSE)
        except (EvaluationFailedError, KeyError, TypeError) as e:
            logger.warning("Error during random scrolling: %s", e)

    async def _play_typing_plan(
        self,
        text: str,
        send_char: Callable[[str], Awaitable[Any]],
        send_backspace: Callable[[], Awaitable[Any]],
    ) -> None:
        """Dispatch *text* keystroke by keystroke, mistakes and pauses included."""
        for stroke in self.human.typing_plan(text):
            if stroke.delay_ms and self.human.enabled:
                await asyncio.sleep(stroke.delay_ms / 1000)
            if stroke.kind == "char":
                await send_char(stroke.key)
            elif stroke.kind == "backspace":
                await send_backspace()

    async def _commit_value(self, element: ResolvedElement, text: str) -> bool:
        """Read the field back and force *text* if the typed value drifted."""
        actual = await self._read_value(element)
        if actual == text:
            return True
        logger.warning("Typed value mismatch for %r: expected=%r actual=%r; correcting", element.descriptor, text, actual)
        await self._force_value(element, text)
        return await self._read_value(element) == text

    async def _safe_read_url(self) -> str:
        try:
            return await self._read_url()
        except HumanBrowseError as e:
            logger.warning("Failed to get page URL: %s", e)
            return ""

    # ------------------------------------------------------------------
    # Engine primitives
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def _launch(self) -> None:
        """Start the engine and open one page. Raise on failure."""

    @abc.abstractmethod
    async def _shutdown(self) -> None:
        """Release every engine resource; must tolerate a partial launch."""

    @abc.abstractmethod
    async def _goto(self, url: str) -> None:
        """Load *url*. Raise ``NavigationFailedError`` on failure or timeout."""

    @abc.abstractmethod
    async def _history_go(self, delta: int) -> bool:
        """Move through browser history; ``False`` when there is no such entry."""

    @abc.abstractmethod
    async def _reload(self) -> None: ...

    @abc.abstractmethod
    async def _read_url(self) -> str: ...

    @abc.abstractmethod
    async def _read_title(self) -> str: ...

    @abc.abstractmethod
    async def _evaluate(self, expression: str) -> Any:
        """Evaluate a JS expression. Raise ``EvaluationFailedError`` if it throws."""

    @abc.abstractmethod
    def _locators(self, action: str) -> Sequence[tuple[Strategy, Locator]]:
        """Cascade strategies this backend supports for *action*, in order."""

    @abc.abstractmethod
    async def _click_element(self, element: ResolvedElement) -> bool: ...

    @abc.abstractmethod
    async def _type_into(self, element: ResolvedElement, text: str) -> bool: ...

    @abc.abstractmethod
    async def _read_text(self, element: ResolvedElement) -> str | None: ...

    @abc.abstractmethod
    async def _is_visible(self, element: ResolvedElement) -> bool: ...

    @abc.abstractmethod
    async def _read_value(self, element: ResolvedElement) -> str: ...

    @abc.abstractmethod
    async def _force_value(self, element: ResolvedElement, text: str) -> None: ...

    @abc.abstractmethod
    async def _press_key(self, key: str) -> None: ...

    @abc.abstractmethod
    async def _screenshot(self, path: Path) -> None: ...

    @abc.abstractmethod
    async def _wait_for_load(self, timeout_ms: float) -> None: ...

    @abc.abstractmethod
    async def _wait_for_network_idle(self, timeout_ms: float) -> None: ...

    @abc.abstractmethod
    async def _export_state(self) -> dict[str, Any]: ...

    @abc.abstractmethod
    async def _import_state(self, state: dict[str, Any]) -> None: ...


def _mask_value(value: str) -> str:
    """Mask typed values in log output."""
    return f"{len(value)} chars"
