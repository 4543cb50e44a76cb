"""humanbrowse — humanized browser control over CDP and Playwright backends."""

from __future__ import annotations

try:
    from importlib.metadata import version

    __version__ = version("humanbrowse")
except Exception:
    __version__ = "0.0.0"
