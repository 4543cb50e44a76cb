"""Installed-browser detection.

Searches the host for browser binaries in two passes and merges the results:

1. **Path checks** — well-known install locations per platform, with
   ``%VAR%`` (Windows) and ``~`` expansion.
2. **Shell lookups** — ``where`` / ``which`` / ``mdfind`` per platform.

If nothing is found the report still lists ``playwright``: the bundled
Playwright engines are always assumed to be runnable.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Mapping

logger = logging.getLogger(__name__)

PLAYWRIGHT = "playwright"

_BROWSER_PATHS: dict[str, dict[str, list[str]]] = {
    "win32": {
        "chrome": [
            r"%ProgramFiles%\Google\Chrome\Application\chrome.exe",
            r"%ProgramFiles(x86)%\Google\Chrome\Application\chrome.exe",
            r"%LocalAppData%\Google\Chrome\Application\chrome.exe",
        ],
        "firefox": [
            r"%ProgramFiles%\Mozilla Firefox\firefox.exe",
            r"%ProgramFiles(x86)%\Mozilla Firefox\firefox.exe",
        ],
        "edge": [
            r"%ProgramFiles%\Microsoft\Edge\Application\msedge.exe",
            r"%ProgramFiles(x86)%\Microsoft\Edge\Application\msedge.exe",
        ],
    },
    "darwin": {
        "chrome": [
            "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "~/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        ],
        "firefox": [
            "/Applications/Firefox.app/Contents/MacOS/firefox",
            "~/Applications/Firefox.app/Contents/MacOS/firefox",
        ],
        "safari": ["/Applications/Safari.app/Contents/MacOS/Safari"],
    },
    "linux": {
        "chrome": [
            "/usr/bin/google-chrome",
            "/usr/bin/google-chrome-stable",
            "/usr/bin/chromium",
            "/usr/bin/chromium-browser",
        ],
        "firefox": ["/usr/bin/firefox", "/usr/bin/firefox-esr"],
    },
}

# Executable names for ``which``/``where``; ``mdfind`` queries on macOS.
_LOOKUP_NAMES: dict[str, dict[str, list[str]]] = {
    "win32": {"chrome": ["chrome"], "firefox": ["firefox"], "edge": ["msedge"]},
    "linux": {
        "chrome": ["google-chrome", "google-chrome-stable", "chromium", "chromium-browser"],
        "firefox": ["firefox", "firefox-esr"],
    },
}

_MDFIND_BUNDLES: dict[str, str] = {
    "chrome": "com.google.Chrome",
    "firefox": "org.mozilla.firefox",
    "safari": "com.apple.Safari",
}


@dataclass(frozen=True)
class CapabilityReport:
    """Immutable result of one detection run.

    ``browsers`` holds backend identifiers in detection order; ``binaries``
    maps an identifier to the first executable path found for it (shell
    lookups that only prove existence leave no path).
    """

    browsers: tuple[str, ...] = ()
    binaries: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        object.__setattr__(self, "binaries", MappingProxyType(dict(self.binaries)))

    def __contains__(self, name: object) -> bool:
        return name in self.browsers

    @property
    def is_fallback(self) -> bool:
        """True when no real browser was found and only Playwright is listed."""
        return self.browsers == (PLAYWRIGHT,)

    def binary_for(self, name: str) -> str:
        return self.binaries.get(name, "")


def _platform_key(platform: str | None = None) -> str:
    platform = platform or sys.platform
    if platform.startswith("linux"):
        return "linux"
    return platform


def expand_path(raw: str) -> Path:
    """Expand ``%VAR%`` and a leading ``~`` in an install path."""
    expanded = re.sub(r"%([^%]+)%", lambda m: os.environ.get(m.group(1), ""), raw)
    return Path(expanded).expanduser()


def detect_by_paths(platform: str | None = None) -> dict[str, str]:
    """Return ``{browser: path}`` for browsers found at well-known locations."""
    found: dict[str, str] = {}
    for browser, candidates in _BROWSER_PATHS.get(_platform_key(platform), {}).items():
        for raw in candidates:
            path = expand_path(raw)
            if path.exists():
                found[browser] = str(path)
                break
    return found


def _mdfind(bundle_id: str) -> str:
    try:
        result = subprocess.run(
            ["mdfind", f"kMDItemCFBundleIdentifier == {bundle_id}"],
            capture_output=True,
            text=True,
            timeout=10,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("mdfind lookup for %s failed: %s", bundle_id, e)
        return ""
    return result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""


def detect_by_commands(
    platform: str | None = None,
    which: Callable[[str], str | None] = shutil.which,
) -> dict[str, str]:
    """Return ``{browser: path}`` for browsers found through shell lookups."""
    key = _platform_key(platform)
    found: dict[str, str] = {}
    if key == "darwin":
        for browser, bundle_id in _MDFIND_BUNDLES.items():
            location = _mdfind(bundle_id)
            if location:
                found[browser] = location
        return found

    for browser, names in _LOOKUP_NAMES.get(key, {}).items():
        for name in names:
            location = which(name)
            if location:
                found[browser] = location
                break
    return found


def detect_installed_browsers(platform: str | None = None) -> CapabilityReport:
    """Run both detection passes and merge them into a ``CapabilityReport``.

    Path hits come first (and win for the binary path), command hits are
    appended; duplicates are dropped. An empty result falls back to
    ``("playwright",)``.
    """
    by_paths = detect_by_paths(platform)
    by_commands = detect_by_commands(platform)

    binaries: dict[str, str] = dict(by_paths)
    for browser, location in by_commands.items():
        binaries.setdefault(browser, location)
    browsers = tuple(dict.fromkeys([*by_paths, *by_commands]))

    if not browsers:
        logger.info("No installed browsers detected; falling back to bundled Playwright engines")
        return CapabilityReport(browsers=(PLAYWRIGHT,))

    logger.info("Detected browsers: %s", ", ".join(browsers))
    return CapabilityReport(browsers=browsers, binaries=binaries)
