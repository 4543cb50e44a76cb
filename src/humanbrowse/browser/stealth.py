"""Browser anti-detection: user-agent pool, launch/context arguments, stealth patches.

Provides the pieces every backend uses to look less like an automated
browser:

- A versioned pool of desktop user-agent strings (Chrome, Firefox, Safari, Edge)
- ``build_context_args()`` for Playwright's ``new_context()`` call
- ``STEALTH_INIT_SCRIPT`` (hide ``navigator.webdriver``, fake plugins and
  languages, patch ``chrome.runtime`` and the WebGL vendor strings)
- ``DEFAULT_HEADERS`` sent with every navigation

Usage::

    from humanbrowse.browser.stealth import build_context_args, apply_stealth_scripts

    context = await browser.new_context(**build_context_args(config, user_agent))
    await apply_stealth_scripts(context)
"""

from __future__ import annotations

import logging
from typing import Any

from humanbrowse.settings.config import BrowserConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# User-agent pool (desktop browsers, grouped by engine)
# ---------------------------------------------------------------------------

USER_AGENTS: dict[str, list[str]] = {
    "chrome": [
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/117.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36",
    ],
    "firefox": [
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:109.0) Gecko/20100101 Firefox/119.0",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:109.0) Gecko/20100101 Firefox/118.0",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:109.0) Gecko/20100101 Firefox/119.0",
    ],
    "safari": [
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.6 Safari/605.1.15",
    ],
    "edge": [
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36 Edg/119.0.0.0",
    ],
}

ALL_USER_AGENTS: list[str] = [ua for pool in USER_AGENTS.values() for ua in pool]

# Sent with every top-level navigation.
DEFAULT_HEADERS: dict[str, str] = {
    "Accept-Language": "en-US,en;q=0.9",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Pragma": "no-cache",
    "Cache-Control": "no-cache",
}

# Stealth JavaScript, injected before any page script runs.
STEALTH_INIT_SCRIPT: str = """
// Remove navigator.webdriver flag
Object.defineProperty(navigator, 'webdriver', { get: () => false });

// Patch navigator.plugins to look like a real Chrome install
Object.defineProperty(navigator, 'plugins', {
    get: () => [
        { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer', description: 'Portable Document Format' },
        { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai', description: '' },
        { name: 'Native Client', filename: 'internal-nacl-plugin', description: '' },
    ],
});

// Patch navigator.languages
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });

// Mimic chrome.runtime (present in real Chrome)
if (window.chrome) {
    window.chrome.runtime = { id: Math.random().toString(), connect: () => {} };
    window.chrome.loadTimes = () => {};
    window.chrome.csi = () => {};
}

// WebGL vendor / renderer
if (window.WebGLRenderingContext) {
    const getParameter = WebGLRenderingContext.prototype.getParameter;
    WebGLRenderingContext.prototype.getParameter = function (parameter) {
        if (parameter === 37445) return 'Intel Inc.';
        if (parameter === 37446) return 'Intel Iris OpenGL Engine';
        return getParameter.apply(this, arguments);
    };
}

// Notifications API
if (!window.Notification) {
    window.Notification = { permission: 'default', requestPermission: async () => 'default' };
}
"""

# Flags that make Chromium-family engines quieter under automation.
CHROMIUM_STEALTH_ARGS: tuple[str, ...] = (
    "--no-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--no-first-run",
    "--no-default-browser-check",
)


def user_agents_for(engine: str) -> list[str]:
    """Return the UA strings plausible for *engine* (whole pool if unknown)."""
    key = {"chromium": "chrome", "webkit": "safari"}.get(engine, engine)
    return USER_AGENTS.get(key) or ALL_USER_AGENTS


def build_launch_args(config: BrowserConfig, *, engine: str = "chromium") -> dict[str, Any]:
    """Build keyword arguments for Playwright's ``browser_type.launch()``."""
    args: list[str] = []
    if engine == "chromium" and config.stealth:
        args.extend(CHROMIUM_STEALTH_ARGS)
    args.extend(config.extra_launch_args)

    launch_args: dict[str, Any] = {"headless": config.headless, "args": args}
    if config.proxy:
        launch_args["proxy"] = {"server": config.proxy}
        logger.debug("Using proxy: %s", config.proxy)
    return launch_args


def build_context_args(config: BrowserConfig, user_agent: str) -> dict[str, Any]:
    """Build keyword arguments for Playwright's ``browser.new_context()``.

    The context is isolated per backend instance, sized to the configured
    viewport and pinned to one user agent for its whole life.
    """
    ctx: dict[str, Any] = {
        "viewport": {"width": config.viewport.width, "height": config.viewport.height},
        "user_agent": user_agent,
        "java_script_enabled": True,
        "has_touch": False,
        "device_scale_factor": 1,
    }
    if config.stealth:
        ctx["locale"] = "en-US"
        ctx["color_scheme"] = "light"
        ctx["extra_http_headers"] = dict(DEFAULT_HEADERS)
    return ctx


async def apply_stealth_scripts(target: Any) -> None:
    """Inject stealth JavaScript into a Playwright context or page.

    Call this **before** navigating so the script runs in every frame from
    the start.
    """
    await target.add_init_script(STEALTH_INIT_SCRIPT)
    logger.debug("Stealth scripts injected")
