"""BrowserManager: owns the single live backend of an application.

Usage::

    async with BrowserManager(config) as manager:
        await manager.backend.navigate("example.com")
        await manager.switch(config.model_copy(update={"browser_type": "protocol-secondary"}))

At most one backend is live at a time; ``switch`` closes the current one
before the replacement is started.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from humanbrowse.browser.base import BrowserBackend
from humanbrowse.browser.backends import PlaywrightBackend
from humanbrowse.browser.factory import create_backend
from humanbrowse.exceptions import HumanBrowseError
from humanbrowse.settings.config import BrowserConfig

logger = logging.getLogger(__name__)


class BrowserManager:
    """Start, switch and close the current backend.

    Args:
        config: Configuration for the first backend.
        factory: Builds an uninitialized backend from a config.
        fallback: When the selected backend fails to start, try the
            driver-default Playwright backend once. Applies to start-up
            only, never to a running session.
    """

    def __init__(
        self,
        config: BrowserConfig,
        *,
        factory: Callable[[BrowserConfig], BrowserBackend] = create_backend,
        fallback: bool = True,
    ) -> None:
        self.config = config
        self._factory = factory
        self._fallback = fallback
        self._backend: BrowserBackend | None = None

    @property
    def backend(self) -> BrowserBackend:
        if self._backend is None:
            raise HumanBrowseError("No browser is running. Call start() first.")
        return self._backend

    @property
    def running(self) -> bool:
        return self._backend is not None and self._backend.session.initialized

    async def start(self, config: BrowserConfig | None = None) -> BrowserBackend:
        """Create and initialize a backend.

        Raises:
            HumanBrowseError: Neither the selected backend nor the fallback started.
        """
        if self._backend is not None:
            raise HumanBrowseError("A browser is already running; use switch() to replace it")
        config = (config or self.config).revalidated()
        backend = self._factory(config)
        if await backend.initialize():
            self._backend = backend
            self.config = config
            return backend

        if self._fallback and type(backend) is not PlaywrightBackend:
            logger.warning("%s backend failed to start; falling back to the default Playwright backend", backend.name)
            fallback_config = config.model_copy(update={"browser_type": "driver-default"})
            backend = PlaywrightBackend(fallback_config, engine=fallback_config.engine)
            if await backend.initialize():
                self._backend = backend
                self.config = fallback_config
                return backend

        raise HumanBrowseError(f"Could not start a browser (browser_type={config.browser_type})")

    async def switch(self, config: BrowserConfig) -> BrowserBackend:
        """Close the current backend, then start one for *config*."""
        await self.close()
        logger.info("Switching browser to %s", config.browser_type)
        return await self.start(config)

    async def close(self) -> None:
        if self._backend is None:
            return
        backend, self._backend = self._backend, None
        await backend.close()

    async def __aenter__(self) -> "BrowserManager":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
