"""Hybrid backend: Playwright-driven Firefox with its own debugger server open.

Firefox is booted through Playwright (so navigation, input and screenshots
use Playwright's reliable primitives) but is also told to start its remote
debugger server on ``config.debug_port``. Start-up fails unless that port
answers within ten seconds.

Interactions use a short three-step cascade:

1. the descriptor as a native Playwright selector
2. a Playwright ``text="..."`` locator (``[placeholder="..."]`` when typing)
3. a script search over visible elements by exact-then-partial text
   (label / name / id / placeholder when typing)
"""

from __future__ import annotations

import json as _json
import logging
from typing import Any, Sequence

from humanbrowse.browser.backends.playwright import PlaywrightBackend, first_match
from humanbrowse.browser.cascade import Strategy, css_string, strip_quotes
from humanbrowse.browser.ports import wait_for_port
from humanbrowse.settings.config import BrowserConfig

logger = logging.getLogger(__name__)

DEBUGGER_PORT_TIMEOUT_S = 10.0

FIREFOX_DEBUG_PREFS: dict[str, Any] = {
    "devtools.debugger.remote-enabled": True,
    "devtools.debugger.prompt-connection": False,
    "devtools.chrome.enabled": True,
}

_TEXT_SEARCH_JS = """
(target) => {
    const wanted = target.trim().toLowerCase();
    const visible = (el) => {
        const style = window.getComputedStyle(el);
        return style.display !== 'none' && style.visibility !== 'hidden'
            && style.opacity !== '0' && el.offsetParent !== null;
    };
    const candidates = Array.from(document.querySelectorAll(
        'a, button, input[type="button"], input[type="submit"], [role="button"], [role="link"], [onclick]'
    )).filter(visible);
    const text = (el) => (el.innerText || el.value || el.textContent || '').trim().toLowerCase();
    return candidates.find(el => text(el) === wanted)
        || candidates.find(el => text(el).includes(wanted))
        || null;
}
"""

_FIELD_SEARCH_JS = """
(target) => {
    const wanted = target.trim().toLowerCase();
    for (const label of document.querySelectorAll('label')) {
        if (label.textContent.trim().toLowerCase().includes(wanted)) {
            const input = (label.htmlFor && document.getElementById(label.htmlFor))
                || label.querySelector('input, textarea');
            if (input) return input;
        }
    }
    for (const input of document.querySelectorAll('input:not([type=hidden]), textarea')) {
        const keys = [input.name, input.id, input.placeholder].map(v => (v || '').toLowerCase());
        if (keys.some(v => v && v.includes(wanted))) return input;
    }
    return null;
}
"""


class HybridBackend(PlaywrightBackend):
    """Firefox through Playwright plus a confirmed remote-debugger port."""

    name = "hybrid"

    def __init__(self, config: BrowserConfig, **kwargs: Any) -> None:
        kwargs.pop("engine", None)
        super().__init__(config, engine="firefox", **kwargs)

    def _launch_args(self) -> dict[str, Any]:
        launch_args = super()._launch_args()
        launch_args["args"] = ["-start-debugger-server", str(self.config.debug_port), *launch_args["args"]]
        launch_args["firefox_user_prefs"] = dict(FIREFOX_DEBUG_PREFS)
        return launch_args

    async def _after_launch(self) -> None:
        await wait_for_port(self.config.debug_host, self.config.debug_port, timeout_s=DEBUGGER_PORT_TIMEOUT_S)
        logger.info("Firefox debugger server reachable on %s:%s", self.config.debug_host, self.config.debug_port)

    # ------------------------------------------------------------------
    # Cascade locators
    # ------------------------------------------------------------------

    def _locators(self, action: str) -> Sequence[tuple[Strategy, Any]]:
        return [
            (Strategy.STRUCTURAL_LOCATOR, self._locate_native),
            (Strategy.TEXT_MATCH, lambda d: self._locate_text_selector(d, action)),
            (Strategy.DOM_SCAN, lambda d: self._locate_by_script(d, action)),
        ]

    async def _locate_native(self, descriptor: str) -> Any:
        return await first_match(self.page.locator(descriptor))

    async def _locate_text_selector(self, descriptor: str, action: str) -> Any:
        value = strip_quotes(descriptor)
        if action == "type":
            return await first_match(self.page.locator(f"[placeholder={css_string(value)}]"))
        return await first_match(self.page.locator(f"text={_json.dumps(value)}"))

    async def _locate_by_script(self, descriptor: str, action: str) -> Any:
        script = _FIELD_SEARCH_JS if action == "type" else _TEXT_SEARCH_JS
        handle = await self.page.evaluate_handle(script, strip_quotes(descriptor))
        element = handle.as_element()
        if element is None:
            await handle.dispose()
        return element
