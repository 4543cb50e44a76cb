"""Browser control: one capability contract over three backends.

``factory.create_backend`` picks a backend (raw CDP, hybrid Firefox, or
Playwright) from the configuration and the installed browsers;
``manager.BrowserManager`` keeps exactly one of them alive. Every click,
type and extract runs through the element-resolution ``cascade`` and the
``human`` behaviour simulator.
"""

from humanbrowse.browser.base import BrowserBackend, BrowserSession
from humanbrowse.browser.factory import create_backend
from humanbrowse.browser.manager import BrowserManager

__all__ = ["BrowserBackend", "BrowserManager", "BrowserSession", "create_backend"]
