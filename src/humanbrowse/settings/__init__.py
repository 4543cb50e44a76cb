"""Settings package — re-exports the cached loader and config models."""

from __future__ import annotations

from humanbrowse.settings.config import BrowserConfig, Settings, Viewport, get_settings

__all__ = ["BrowserConfig", "Settings", "Viewport", "get_settings"]
