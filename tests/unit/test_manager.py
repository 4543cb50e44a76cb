"""Unit tests for humanbrowse.browser.manager — start, switch, fallback and close."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from conftest import FakeBackend

from humanbrowse.browser import manager as manager_module
from humanbrowse.browser.manager import BrowserManager
from humanbrowse.exceptions import HumanBrowseError
from humanbrowse.settings.config import BrowserConfig


class _Factory:
    """Records every backend it builds; ``fail`` makes the next ones fail to launch."""

    def __init__(self) -> None:
        self.built: list[FakeBackend] = []
        self.fail = False

    def __call__(self, config: BrowserConfig) -> FakeBackend:
        backend = FakeBackend(config)
        backend.fail_launch = self.fail
        self.built.append(backend)
        return backend


@pytest.fixture()
def factory() -> _Factory:
    return _Factory()


class TestBrowserManager:
    @pytest.mark.anyio
    async def test_start_initializes_backend(self, quiet_config: BrowserConfig, factory: _Factory) -> None:
        manager = BrowserManager(quiet_config, factory=factory)
        assert not manager.running

        backend = await manager.start()

        assert backend is manager.backend
        assert backend.session.initialized
        assert manager.running

    def test_backend_before_start_raises(self, quiet_config: BrowserConfig, factory: _Factory) -> None:
        with pytest.raises(HumanBrowseError):
            BrowserManager(quiet_config, factory=factory).backend

    @pytest.mark.anyio
    async def test_second_start_rejected(self, quiet_config: BrowserConfig, factory: _Factory) -> None:
        manager = BrowserManager(quiet_config, factory=factory)
        await manager.start()
        with pytest.raises(HumanBrowseError):
            await manager.start()
        assert len(factory.built) == 1

    @pytest.mark.anyio
    async def test_switch_closes_before_starting(self, quiet_config: BrowserConfig, factory: _Factory) -> None:
        manager = BrowserManager(quiet_config, factory=factory)
        first = await manager.start()
        new_config = quiet_config.model_copy(update={"browser_type": "protocol-secondary"})

        second = await manager.switch(new_config)

        assert first.shutdowns == 1
        assert not first.session.initialized
        assert second is manager.backend
        assert second.config.browser_type == "protocol-secondary"
        assert manager.config == new_config

    @pytest.mark.anyio
    async def test_switch_normalizes_engine_alias(self, quiet_config: BrowserConfig, factory: _Factory) -> None:
        manager = BrowserManager(quiet_config, factory=factory)
        await manager.start()

        backend = await manager.switch(quiet_config.model_copy(update={"browser_type": "firefox"}))

        assert backend.config.browser_type == "protocol-secondary"
        assert manager.config.browser_type == "protocol-secondary"

    @pytest.mark.anyio
    async def test_falls_back_to_default_backend(self, quiet_config: BrowserConfig, factory: _Factory) -> None:
        factory.fail = True
        fallback = MagicMock(side_effect=lambda config, engine: FakeBackend(config))
        config = quiet_config.model_copy(update={"browser_type": "protocol-primary"})

        with patch.object(manager_module, "PlaywrightBackend", fallback):
            manager = BrowserManager(config, factory=factory)
            backend = await manager.start()

        assert factory.built[0].shutdowns == 1
        fallback.assert_called_once()
        assert backend.config.browser_type == "driver-default"
        assert manager.config.browser_type == "driver-default"
        assert manager.running

    @pytest.mark.anyio
    async def test_no_fallback_raises(self, quiet_config: BrowserConfig, factory: _Factory) -> None:
        factory.fail = True
        manager = BrowserManager(quiet_config, factory=factory, fallback=False)
        with pytest.raises(HumanBrowseError):
            await manager.start()
        assert not manager.running

    @pytest.mark.anyio
    async def test_close_is_idempotent(self, quiet_config: BrowserConfig, factory: _Factory) -> None:
        manager = BrowserManager(quiet_config, factory=factory)
        backend = await manager.start()
        await manager.close()
        await manager.close()
        assert backend.shutdowns == 1
        assert not manager.running

    @pytest.mark.anyio
    async def test_context_manager(self, quiet_config: BrowserConfig, factory: _Factory) -> None:
        async with BrowserManager(quiet_config, factory=factory) as manager:
            backend = manager.backend
            assert await backend.navigate("example.com")
        assert backend.shutdowns == 1
        assert not manager.running
