"""Concrete browser backends."""

from humanbrowse.browser.backends.cdp import CdpBackend
from humanbrowse.browser.backends.hybrid import HybridBackend
from humanbrowse.browser.backends.playwright import PlaywrightBackend

__all__ = ["CdpBackend", "HybridBackend", "PlaywrightBackend"]
