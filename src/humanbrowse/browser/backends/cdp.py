"""Protocol driver backend: Chrome/Chromium over the DevTools protocol.

The engine is launched as a plain subprocess with a fixed
``--remote-debugging-port``; once the port answers, zendriver attaches to it
and every interaction is expressed as raw CDP commands sent through
``tab.send(zd.cdp...)``.

NOTE ON ZENDRIVER API COMPATIBILITY:
only the generated ``zd.cdp`` command/event modules and ``Tab.send`` /
``Tab.add_handler`` are used. Element handles are Runtime remote object ids,
so nothing here depends on zendriver's higher-level ``Element`` wrapper.
"""

from __future__ import annotations

import asyncio
import base64
import json as _json
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any, Sequence

import zendriver as zd
from zendriver.core.connection import ProtocolException

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
from humanbrowse.browser.detector import detect_installed_browsers
from humanbrowse.browser.human import Point
from humanbrowse.browser.network import NetworkIdleTracker
from humanbrowse.browser.ports import fetch_version, wait_for_port
from humanbrowse.browser.stealth import CHROMIUM_STEALTH_ARGS, DEFAULT_HEADERS, STEALTH_INIT_SCRIPT
from humanbrowse.exceptions import (
    EvaluationFailedError,
    HumanBrowseError,
    NavigationFailedError,
    ProtocolUnavailableError,
    TimeoutExceededError,
)
from humanbrowse.settings.config import BrowserConfig

logger = logging.getLogger(__name__)

cdp = zd.cdp

DEBUG_PORT_TIMEOUT_S = 15.0
PROCESS_EXIT_TIMEOUT_S = 5.0

_MOUSE_STEP_DELAY = (10, 30)
_PRE_PRESS_DELAY = (200, 500)
_PRESS_HOLD_DELAY = (20, 150)
_FOCUS_DELAY = (100, 500)
_KEY_HOLD_DELAY = (20, 60)

# key -> (code, windowsVirtualKeyCode, text)
_KEY_DEFINITIONS: dict[str, tuple[str, int, str]] = {
    "Enter": ("Enter", 13, "\r"),
    "Tab": ("Tab", 9, ""),
    "Escape": ("Escape", 27, ""),
    "Backspace": ("Backspace", 8, ""),
    "Delete": ("Delete", 46, ""),
    "ArrowUp": ("ArrowUp", 38, ""),
    "ArrowDown": ("ArrowDown", 40, ""),
    "ArrowLeft": ("ArrowLeft", 37, ""),
    "ArrowRight": ("ArrowRight", 39, ""),
    "Home": ("Home", 36, ""),
    "End": ("End", 35, ""),
    "PageUp": ("PageUp", 33, ""),
    "PageDown": ("PageDown", 34, ""),
    "Space": ("Space", 32, " "),
}

_CLICK_ROLE_SELECTOR = (
    'button, a[href], input[type="button"], input[type="submit"], input[type="checkbox"], '
    'input[type="radio"], [role="button"], [role="link"], [role="menuitem"], [role="tab"], '
    '[role="checkbox"], [role="radio"], [role="option"]'
)
_TYPE_ROLE_SELECTOR = (
    'input:not([type="hidden"]):not([type="button"]):not([type="submit"]), textarea, '
    '[role="textbox"], [role="searchbox"], [role="combobox"], [role="spinbutton"]'
)

# ---------------------------------------------------------------------------
# Page-side functions (called on a resolved node via Runtime.callFunctionOn)
# ---------------------------------------------------------------------------

_CLEAR_FN = """
function() {
    if ('value' in this) { this.value = ''; } else { this.textContent = ''; }
    this.dispatchEvent(new Event('input', {bubbles: true}));
}
"""

_READ_VALUE_FN = "function() { return ('value' in this) ? String(this.value) : (this.innerText || ''); }"

_READ_TEXT_FN = "function() { return (this.innerText || this.textContent || '').trim(); }"

_FORCE_VALUE_FN = """
function(value) {
    const desc = Object.getOwnPropertyDescriptor(Object.getPrototypeOf(this), 'value');
    if ('value' in this && desc && desc.set) { desc.set.call(this, value); } else { this.textContent = value; }
    this.dispatchEvent(new Event('input', {bubbles: true}));
    this.dispatchEvent(new Event('change', {bubbles: true}));
}
"""

_IS_VISIBLE_FN = """
function() {
    const style = window.getComputedStyle(this);
    const rect = this.getBoundingClientRect();
    return style.display !== 'none' && style.visibility !== 'hidden' && rect.width > 0 && rect.height > 0;
}
"""

_LOCAL_STORAGE_JS = """
(() => {
    const items = [];
    for (let i = 0; i < window.localStorage.length; i++) {
        const name = window.localStorage.key(i);
        items.push({ name: name, value: window.localStorage.getItem(name) });
    }
    return items;
})()
"""


def _xpath_first_js(xpath: str) -> str:
    return (
        f"document.evaluate({_json.dumps(xpath)}, document, null, "
        "XPathResult.FIRST_ORDERED_NODE_TYPE, null).singleNodeValue"
    )


def _exact_text_js(text: str) -> str:
    """Innermost element whose visible text equals *text*."""
    return f"""
(() => {{
    const wanted = {_json.dumps(text)};
    let match = null;
    for (const el of document.querySelectorAll('body *')) {{
        if (el.closest('script, style, noscript')) continue;
        const text = (el.innerText || el.value || '').trim();
        if (text !== wanted) continue;
        if (!match || match.contains(el)) match = el;
    }}
    return match;
}})()
"""


def _role_label_js(name: str, selector: str) -> str:
    """Element under *selector* whose accessible name (or ``<label>``) equals *name*."""
    return f"""
(() => {{
    const wanted = {_json.dumps(name.lower())};
    const accessibleName = (el) => {{
        const labelled = el.getAttribute('aria-labelledby');
        if (labelled) {{
            const ref = document.getElementById(labelled);
            if (ref) return ref.textContent;
        }}
        if (el.labels && el.labels.length) return el.labels[0].textContent;
        return el.getAttribute('aria-label') || el.innerText || el.value || el.getAttribute('title') || '';
    }};
    for (const el of document.querySelectorAll({_json.dumps(selector)})) {{
        if (accessibleName(el).trim().toLowerCase() === wanted) return el;
    }}
    for (const label of document.querySelectorAll('label')) {{
        if (label.textContent.trim().toLowerCase() !== wanted) continue;
        const control = label.control || (label.htmlFor && document.getElementById(label.htmlFor));
        if (control) return control;
    }}
    return null;
}})()
"""


def _describe_exception(details: Any) -> str:
    exception = getattr(details, "exception", None)
    description = getattr(exception, "description", None) if exception is not None else None
    return description or getattr(details, "text", "") or "script threw"


def _cookie_param(cookie: dict[str, Any]) -> dict[str, Any]:
    """Trim a saved cookie to the fields ``Network.CookieParam`` accepts."""
    keep = ("name", "value", "url", "domain", "path", "secure", "httpOnly", "sameSite")
    param = {k: cookie[k] for k in keep if cookie.get(k) is not None}
    expires = cookie.get("expires")
    if isinstance(expires, (int, float)) and expires > 0:
        param["expires"] = expires
    return param


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


class CdpBackend(BrowserBackend):
    """Raw DevTools protocol backend for Chrome/Chromium.

    Args:
        config: Frozen configuration; ``debug_host``/``debug_port`` pick the
            debugging endpoint.
        binary: Chrome executable. Detected from the install locations when
            omitted.
    """

    name = "cdp"

    def __init__(self, config: BrowserConfig, *, binary: str | None = None, **kwargs: Any) -> None:
        super().__init__(config, **kwargs)
        self._binary = binary or ""
        self._process: asyncio.subprocess.Process | None = None
        self._profile_dir: str | None = None
        self._browser: zd.Browser | None = None
        self._tab: Any = None  # zendriver.Tab
        self._network = NetworkIdleTracker()
        self._loaded = asyncio.Event()
        self._mouse = Point(0.0, 0.0)

    @property
    def tab(self) -> Any:
        if self._tab is None:
            raise ProtocolUnavailableError(self.config.debug_host, self.config.debug_port, "no attached tab")
        return self._tab

    async def _send(self, command: Any) -> Any:
        try:
            return await self.tab.send(command)
        except (ConnectionError, OSError) as e:
            raise ProtocolUnavailableError(self.config.debug_host, self.config.debug_port, str(e)) from e

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _resolve_binary(self) -> str:
        if self._binary:
            return self._binary
        report = await asyncio.to_thread(detect_installed_browsers)
        return report.binary_for("chrome")

    def _command_line(self, binary: str) -> list[str]:
        vp = self.config.viewport
        args = [
            binary,
            f"--remote-debugging-port={self.config.debug_port}",
            f"--user-data-dir={self._profile_dir}",
            f"--window-size={vp.width},{vp.height}",
            f"--user-agent={self.user_agent}",
            "--lang=en-US",
        ]
        if self.config.headless:
            args.append("--headless=new")
        if self.config.stealth:
            args.extend(CHROMIUM_STEALTH_ARGS)
        if self.config.proxy:
            args.append(f"--proxy-server={self.config.proxy}")
            logger.info("Proxy configured: %s", self.config.proxy)
        args.extend(self.config.extra_launch_args)
        args.append("about:blank")
        return list(dict.fromkeys(args))

    async def _launch(self) -> None:
        host, port = self.config.debug_host, self.config.debug_port
        binary = await self._resolve_binary()
        if not binary:
            raise ProtocolUnavailableError(host, port, "no Chrome/Chromium executable found")

        self._profile_dir = tempfile.mkdtemp(prefix="humanbrowse-cdp-")
        logger.info("Launching %s with debugging port %s (headless=%s)", binary, port, self.config.headless)
        self._process = await asyncio.create_subprocess_exec(
            *self._command_line(binary),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )

        await wait_for_port(host, port, timeout_s=DEBUG_PORT_TIMEOUT_S)
        if self._process.returncode is not None:
            raise ProtocolUnavailableError(host, port, f"browser exited with code {self._process.returncode}")
        version = await fetch_version(host, port)
        logger.info("Attached to %s", version.get("Browser", "unknown browser"))

        self._browser = await zd.start(host=host, port=port)
        self._tab = self._browser.main_tab or await self._browser.get("about:blank")
        await self._prepare_tab()

    async def _prepare_tab(self) -> None:
        tab = self.tab
        for command in (cdp.page.enable(), cdp.dom.enable(), cdp.runtime.enable(), cdp.network.enable()):
            await tab.send(command)

        tab.add_handler(cdp.page.FrameNavigated, self._on_frame_navigated)
        tab.add_handler(cdp.page.LoadEventFired, self._on_load)
        tab.add_handler(cdp.page.JavascriptDialogOpening, self._on_dialog)
        tab.add_handler(cdp.network.RequestWillBeSent, self._on_request_started)
        tab.add_handler(cdp.network.LoadingFinished, self._on_request_finished)
        tab.add_handler(cdp.network.LoadingFailed, self._on_request_finished)

        vp = self.config.viewport
        await tab.send(
            cdp.emulation.set_device_metrics_override(
                width=vp.width, height=vp.height, device_scale_factor=1, mobile=False
            )
        )
        if self.config.stealth:
            await tab.send(cdp.page.add_script_to_evaluate_on_new_document(source=STEALTH_INIT_SCRIPT))
            await tab.send(cdp.network.set_extra_http_headers(headers=cdp.network.Headers(DEFAULT_HEADERS)))
        self._mouse = self.human.random_point(vp.width, vp.height)

    async def _shutdown(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.stop()
            except Exception as e:
                logger.warning("Browser stop error (non-fatal): %s", e)
        self._browser = None
        self._tab = None

        if self._process is not None and self._process.returncode is None:
            self._process.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=PROCESS_EXIT_TIMEOUT_S)
            except asyncio.TimeoutError:
                logger.warning("Browser process did not exit; killing it")
                self._process.kill()
                await self._process.wait()
        self._process = None

        if self._profile_dir:
            shutil.rmtree(self._profile_dir, ignore_errors=True)
            self._profile_dir = None

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_frame_navigated(self, event: Any) -> None:
        if event.frame.parent_id is None:
            self._record_navigation(event.frame.url)

    def _on_load(self, event: Any) -> None:
        self._loaded.set()

    async def _on_dialog(self, event: Any) -> None:
        dialog_type = getattr(event.type_, "value", str(event.type_))
        accept = self._record_dialog(dialog_type, event.message)
        try:
            await self.tab.send(cdp.page.handle_java_script_dialog(accept=accept))
        except ProtocolException as e:
            logger.debug("Dialog already handled: %s", e)

    async def _on_request_started(self, event: Any) -> None:
        await self._network.request_started(str(event.request_id))

    async def _on_request_finished(self, event: Any) -> None:
        await self._network.request_finished(str(event.request_id))

    # ------------------------------------------------------------------
    # Navigation primitives
    # ------------------------------------------------------------------

    async def _await_load(self, url: str) -> None:
        """Wait for ``Page.loadEventFired``; an interactive document also counts."""
        timeout_ms = self.config.timeout_ms
        try:
            await asyncio.wait_for(self._loaded.wait(), timeout=timeout_ms / 1000)
            return
        except asyncio.TimeoutError:
            pass
        try:
            state = await self._evaluate("document.readyState")
        except EvaluationFailedError:
            state = ""
        if state in ("interactive", "complete"):
            logger.warning("Load event for %s never fired; continuing with readyState=%s", url, state)
            return
        raise NavigationFailedError(url, f"timed out after {timeout_ms}ms", transient=True)

    async def _goto(self, url: str) -> None:
        await self._network.reset()
        self._loaded.clear()
        try:
            result = await self._send(cdp.page.navigate(url=url))
        except ProtocolException as e:
            raise NavigationFailedError(url, str(e)) from e
        error_text = result[2] if len(result) > 2 else None
        if error_text:
            raise NavigationFailedError(url, error_text)
        await self._await_load(url)

    async def _history_go(self, delta: int) -> bool:
        try:
            current_index, entries = await self._send(cdp.page.get_navigation_history())
        except ProtocolException as e:
            raise NavigationFailedError(self.session.current_url, str(e)) from e
        target = current_index + delta
        if not 0 <= target < len(entries):
            return False
        entry = entries[target]
        self._loaded.clear()
        try:
            await self._send(cdp.page.navigate_to_history_entry(entry_id=entry.id_))
        except ProtocolException as e:
            raise NavigationFailedError(entry.url, str(e)) from e
        await self._await_load(entry.url)
        return True

    async def _reload(self) -> None:
        self._loaded.clear()
        try:
            await self._send(cdp.page.reload())
        except ProtocolException as e:
            raise NavigationFailedError(self.session.current_url, str(e)) from e
        await self._await_load(self.session.current_url)

    async def _read_url(self) -> str:
        return await self._evaluate("window.location.href") or ""

    async def _read_title(self) -> str:
        return await self._evaluate("document.title") or ""

    async def _evaluate(self, expression: str) -> Any:
        try:
            remote, exception = await self._send(
                cdp.runtime.evaluate(expression=expression, return_by_value=True, await_promise=True)
            )
        except ProtocolException as e:
            raise EvaluationFailedError(str(e), expression) from e
        if exception is not None:
            raise EvaluationFailedError(_describe_exception(exception), expression)
        return remote.value

    async def _wait_for_load(self, timeout_ms: float) -> None:
        if await self._evaluate("document.readyState") == "complete":
            return
        try:
            await asyncio.wait_for(self._loaded.wait(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise TimeoutExceededError("load", timeout_ms) from None

    async def _wait_for_network_idle(self, timeout_ms: float) -> None:
        await self._network.wait_for_idle(self.config.network_idle_window_ms, timeout_ms)

    # ------------------------------------------------------------------
    # Remote objects
    # ------------------------------------------------------------------

    async def _object_for(self, expression: str) -> str | None:
        """Evaluate *expression* to a node and return its remote object id."""
        remote, exception = await self._send(cdp.runtime.evaluate(expression=expression, return_by_value=False))
        if exception is not None:
            raise EvaluationFailedError(_describe_exception(exception), expression)
        if remote.object_id is None or remote.subtype == "null":
            return None
        return remote.object_id

    async def _call_on(self, object_id: Any, declaration: str, *args: Any) -> Any:
        remote, exception = await self._send(
            cdp.runtime.call_function_on(
                function_declaration=declaration,
                object_id=object_id,
                arguments=[cdp.runtime.CallArgument(value=a) for a in args],
                return_by_value=True,
                await_promise=True,
            )
        )
        if exception is not None:
            raise EvaluationFailedError(_describe_exception(exception), declaration)
        return remote.value

    # ------------------------------------------------------------------
    # Cascade locators
    # ------------------------------------------------------------------

    def _locators(self, action: str) -> Sequence[tuple[Strategy, Any]]:
        return [
            (Strategy.STRUCTURAL_LOCATOR, self._locate_structural),
            (Strategy.TEXT_MATCH, lambda d: self._object_for(_exact_text_js(strip_quotes(d)))),
            (Strategy.ROLE_LABEL, lambda d: self._locate_role(d, action)),
            (Strategy.ATTRIBUTE_SUBSTRING, lambda d: self._locate_attribute(d, action)),
            (Strategy.STRUCTURAL_PATH, lambda d: self._object_for(_xpath_first_js(structural_path_xpath(d)))),
            (Strategy.DOM_SCAN, lambda d: self._object_for(dom_scan_js(d, editable_only=action == "type"))),
            (Strategy.RAW_COORDINATE, self._locate_coordinate),
        ]

    async def _locate_structural(self, descriptor: str) -> str | None:
        if not looks_like_selector(descriptor):
            return None
        d = descriptor.strip()
        if d.startswith("xpath="):
            return await self._object_for(_xpath_first_js(d[len("xpath="):]))
        if d.startswith("//"):
            return await self._object_for(_xpath_first_js(d))
        if d.startswith(("text=", "role=")):
            return None
        if d.startswith("css="):
            d = d[len("css="):]

        document = await self._send(cdp.dom.get_document(depth=0))
        node_id = await self._send(cdp.dom.query_selector(node_id=document.node_id, selector=d))
        if not node_id:
            return None
        remote = await self._send(cdp.dom.resolve_node(node_id=node_id))
        return remote.object_id

    async def _locate_role(self, descriptor: str, action: str) -> str | None:
        selector = _TYPE_ROLE_SELECTOR if action == "type" else _CLICK_ROLE_SELECTOR
        return await self._object_for(_role_label_js(strip_quotes(descriptor), selector))

    async def _locate_attribute(self, descriptor: str, action: str) -> str | None:
        tags = EDITABLE_TAGS if action == "type" else ("",)
        selector = attribute_selector(descriptor, tags)
        return await self._object_for(f"document.querySelector({_json.dumps(selector)})")

    async def _locate_coordinate(self, descriptor: str) -> Point | None:
        hint = coordinate_hint(descriptor, self.config.viewport)
        if hint is None:
            return None
        if not await self._evaluate(f"({CLICKABLE_AT_POINT_JS})({_json.dumps(list(hint))})"):
            logger.debug("Nothing clickable at %s for %r", hint, descriptor)
            return None
        return Point(*hint)

    # ------------------------------------------------------------------
    # Actions on resolved elements
    # ------------------------------------------------------------------

    async def _move_and_press(self, target: Point) -> None:
        for point in self.human.mouse_path(self._mouse, target, 10):
            await self._send(cdp.input_.dispatch_mouse_event(type_="mouseMoved", x=point.x, y=point.y))
            await self.human.delay(*_MOUSE_STEP_DELAY)
        self._mouse = target
        await self.human.delay(*_PRE_PRESS_DELAY)
        button = cdp.input_.MouseButton("left")
        await self._send(
            cdp.input_.dispatch_mouse_event(type_="mousePressed", x=target.x, y=target.y, button=button, click_count=1)
        )
        await self.human.delay(*_PRESS_HOLD_DELAY)
        await self._send(
            cdp.input_.dispatch_mouse_event(type_="mouseReleased", x=target.x, y=target.y, button=button, click_count=1)
        )

    async def _click_element(self, element: ResolvedElement) -> bool:
        if element.strategy is Strategy.RAW_COORDINATE:
            await self._move_and_press(element.handle)
            return True
        object_id = element.handle
        await self._send(cdp.dom.scroll_into_view_if_needed(object_id=object_id))
        model = await self._send(cdp.dom.get_box_model(object_id=object_id))
        quad = list(model.content)
        xs, ys = quad[0::2], quad[1::2]
        width, height = max(xs) - min(xs), max(ys) - min(ys)
        if width <= 0 or height <= 0:
            logger.debug("Element for %r has an empty box model", element.descriptor)
            return False
        await self._move_and_press(self.human.near_center(min(xs), min(ys), width, height))
        return True

    async def _dispatch_key(self, key: str, code: str = "", vk: int = 0, text: str = "") -> None:
        await self._send(
            cdp.input_.dispatch_key_event(
                type_="keyDown" if text else "rawKeyDown",
                key=key,
                code=code or None,
                text=text or None,
                windows_virtual_key_code=vk or None,
            )
        )
        await self.human.delay(*_KEY_HOLD_DELAY)
        await self._send(
            cdp.input_.dispatch_key_event(type_="keyUp", key=key, code=code or None, windows_virtual_key_code=vk or None)
        )

    async def _send_char(self, char: str) -> None:
        if char == "\n":
            await self._dispatch_key("Enter", *_KEY_DEFINITIONS["Enter"])
            return
        await self._dispatch_key(char, text=char)

    async def _send_backspace(self) -> None:
        await self._dispatch_key("Backspace", *_KEY_DEFINITIONS["Backspace"])

    async def _type_into(self, element: ResolvedElement, text: str) -> bool:
        object_id = element.handle
        await self._send(cdp.dom.scroll_into_view_if_needed(object_id=object_id))
        await self._send(cdp.dom.focus(object_id=object_id))
        await self._call_on(object_id, _CLEAR_FN)
        await self.human.delay(*_FOCUS_DELAY)
        await self._play_typing_plan(text, self._send_char, self._send_backspace)
        return await self._commit_value(element, text)

    async def _read_value(self, element: ResolvedElement) -> str:
        return await self._call_on(element.handle, _READ_VALUE_FN) or ""

    async def _force_value(self, element: ResolvedElement, text: str) -> None:
        await self._call_on(element.handle, _FORCE_VALUE_FN, text)

    async def _read_text(self, element: ResolvedElement) -> str | None:
        return await self._call_on(element.handle, _READ_TEXT_FN)

    async def _is_visible(self, element: ResolvedElement) -> bool:
        return bool(await self._call_on(element.handle, _IS_VISIBLE_FN))

    async def _press_key(self, key: str) -> None:
        code, vk, text = _KEY_DEFINITIONS.get(key, ("", 0, key if len(key) == 1 else ""))
        try:
            await self._dispatch_key(" " if key == "Space" else key, code, vk, text)
            return
        except ProtocolException as e:
            logger.debug("CDP key press failed for %r: %s; trying JS fallback", key, e)
        try:
            await self._evaluate(f"""
                (() => {{
                    const key = {_json.dumps(key)};
                    const target = document.activeElement || document.body;
                    target.dispatchEvent(new KeyboardEvent('keydown', {{key: key, bubbles: true, cancelable: true}}));
                    target.dispatchEvent(new KeyboardEvent('keyup', {{key: key, bubbles: true, cancelable: true}}));
                }})()
            """)
        except EvaluationFailedError as e:
            raise HumanBrowseError(f"Key press failed for {key!r}: {e}") from e

    async def _screenshot(self, path: Path) -> None:
        try:
            data = await self._send(cdp.page.capture_screenshot(format_="png"))
        except ProtocolException as e:
            raise HumanBrowseError(f"Screenshot failed: {e}") from e
        path.write_bytes(base64.b64decode(data))

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    async def _export_state(self) -> dict[str, Any]:
        try:
            cookies = await self._send(cdp.storage.get_cookies())
        except ProtocolException as e:
            raise HumanBrowseError(f"Could not read cookies: {e}") from e
        origins: list[dict[str, Any]] = []
        origin = await self._evaluate("window.location.origin")
        if origin and origin != "null":
            origins.append({"origin": origin, "localStorage": await self._evaluate(_LOCAL_STORAGE_JS)})
        return {"cookies": [cookie.to_json() for cookie in cookies], "origins": origins}

    async def _import_state(self, state: dict[str, Any]) -> None:
        params = [cdp.network.CookieParam.from_json(_cookie_param(c)) for c in state.get("cookies", [])]
        if params:
            try:
                await self._send(cdp.storage.set_cookies(cookies=params))
            except ProtocolException as e:
                raise HumanBrowseError(f"Could not restore cookies: {e}") from e

        origin = await self._evaluate("window.location.origin")
        for entry in state.get("origins", []):
            if entry.get("origin") != origin:
                logger.debug("Skipping localStorage for %s (current origin is %s)", entry.get("origin"), origin)
                continue
            items = {item["name"]: item["value"] for item in entry.get("localStorage", [])}
            await self._evaluate(
                f"(() => {{ for (const [k, v] of Object.entries({_json.dumps(items)})) "
                "window.localStorage.setItem(k, v); }})()"
            )
