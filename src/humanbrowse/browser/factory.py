"""Backend factory: turns a ``BrowserConfig`` into an uninitialized backend.

Selection rules:

* ``auto`` runs the detector and takes the first available of
  protocol-primary (Chrome/Chromium/Edge), protocol-secondary (Firefox),
  driver-default. Nothing detected means driver-default.
* Explicit types map directly.
* ``use_low_level_protocol`` picks the raw protocol backend (primary) or the
  hybrid backend (secondary) instead of plain Playwright on the same engine.
"""

from __future__ import annotations

import logging
from typing import Callable

from humanbrowse.browser.backends import CdpBackend, HybridBackend, PlaywrightBackend
from humanbrowse.browser.base import BrowserBackend
from humanbrowse.browser.detector import CapabilityReport, detect_installed_browsers
from humanbrowse.browser.human import HumanSimulator
from humanbrowse.settings.config import BROWSER_TYPES, BrowserConfig, normalize_browser_type

logger = logging.getLogger(__name__)

# Detector identifiers that count as a Chromium-family install, in preference order.
CHROMIUM_FAMILY: tuple[str, ...] = ("chrome", "edge")


def resolve_browser_type(config: BrowserConfig, report: CapabilityReport | None) -> str:
    """Return the concrete browser type ``auto`` resolves to under *report*.

    Raises:
        ValueError: The configured type is not a known type or alias.
    """
    requested = normalize_browser_type(config.browser_type)
    if requested not in BROWSER_TYPES:
        raise ValueError(f"Unknown browser type: {config.browser_type!r}")
    if requested != "auto":
        return requested
    if report is None:
        return "driver-default"
    if any(name in report for name in CHROMIUM_FAMILY):
        return "protocol-primary"
    if "firefox" in report:
        return "protocol-secondary"
    return "driver-default"


def _chromium_binary(report: CapabilityReport | None) -> str:
    if report is None:
        return ""
    for name in CHROMIUM_FAMILY:
        binary = report.binary_for(name)
        if binary:
            return binary
    return ""


def create_backend(
    config: BrowserConfig,
    *,
    detect: Callable[[], CapabilityReport] = detect_installed_browsers,
    human: HumanSimulator | None = None,
) -> BrowserBackend:
    """Build (but do not initialize) the backend *config* asks for.

    Args:
        config: Frozen configuration.
        detect: Detection function; only called for ``auto`` or when the
            raw protocol backend needs a Chrome binary.
        human: Optional simulator shared with the new backend.
    """
    config = config.revalidated()
    report: CapabilityReport | None = None
    needs_report = config.browser_type == "auto" or (
        config.browser_type == "protocol-primary" and config.use_low_level_protocol
    )
    if needs_report:
        report = detect()

    browser_type = resolve_browser_type(config, report)
    logger.info(
        "Selected browser type %s (requested=%s, low_level=%s)",
        browser_type,
        config.browser_type,
        config.use_low_level_protocol,
    )

    if browser_type == "protocol-primary":
        if config.use_low_level_protocol:
            return CdpBackend(config, binary=_chromium_binary(report), human=human)
        return PlaywrightBackend(config, engine="chromium", human=human)
    if browser_type == "protocol-secondary":
        if config.use_low_level_protocol:
            return HybridBackend(config, human=human)
        return PlaywrightBackend(config, engine="firefox", human=human)
    return PlaywrightBackend(config, engine=config.engine, human=human)
