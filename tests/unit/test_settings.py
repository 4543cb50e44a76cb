"""Unit tests for humanbrowse settings.

Covers default loading, env var overrides, browser-type aliases and the
frozen ``BrowserConfig`` handed to backends.
"""

from __future__ import annotations

import os

import pytest
from pydantic import ValidationError

from humanbrowse.settings.config import BrowserConfig, Settings, Viewport, get_settings


class TestSettings:
    """Core settings loading and override mechanics."""

    def test_default_settings_load(self, monkeypatch):
        monkeypatch.delenv("HUMANBROWSE_ENV", raising=False)
        s = get_settings()
        assert s.env == "local"
        assert s.browser.browser_type == "auto"
        assert s.browser.headless is True
        assert s.humanize.enabled is True
        assert s.logging.level == "INFO"

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("HUMANBROWSE_BROWSER__BROWSER_TYPE", "firefox")
        monkeypatch.setenv("HUMANBROWSE_BROWSER__HEADLESS", "false")
        s = Settings()
        assert s.browser.browser_type == "firefox"
        assert s.browser.headless is False

    def test_wait_env_override(self, monkeypatch):
        monkeypatch.setenv("HUMANBROWSE_WAIT__INTERVENTION_TIMEOUT_MS", "5000")
        s = Settings()
        assert s.wait.intervention_timeout_ms == 5000

    def test_paths_resolved_relative_to_project_root(self):
        s = Settings()
        assert os.path.isabs(s.session_dir)
        assert s.session_dir.endswith(os.path.join("data", "sessions"))

    def test_browser_config_merges_sections(self, monkeypatch):
        monkeypatch.setenv("HUMANBROWSE_HUMANIZE__ENABLED", "false")
        monkeypatch.setenv("HUMANBROWSE_BROWSER__VIEWPORT_WIDTH", "1920")
        config = Settings().browser_config(debug_port=9333)
        assert isinstance(config, BrowserConfig)
        assert config.humanize is False
        assert config.viewport == Viewport(width=1920, height=800)
        assert config.debug_port == 9333
        assert config.network_idle_window_ms == 500


class TestBrowserConfig:
    """Immutable configuration validation."""

    def test_defaults(self):
        config = BrowserConfig()
        assert config.browser_type == "auto"
        assert config.engine == "chromium"
        assert config.timeout_ms == 30_000
        assert config.debug_port == 9222
        assert config.extra_launch_args == ()

    def test_frozen(self):
        config = BrowserConfig()
        with pytest.raises(ValidationError):
            config.headless = False

    @pytest.mark.parametrize(
        "alias, expected",
        [
            ("chrome", "protocol-primary"),
            ("CDP", "protocol-primary"),
            ("firefox", "protocol-secondary"),
            ("playwright", "driver-default"),
            ("protocol_secondary", "protocol-secondary"),
        ],
    )
    def test_browser_type_aliases(self, alias, expected):
        assert BrowserConfig(browser_type=alias).browser_type == expected

    def test_webkit_pins_engine(self):
        config = BrowserConfig(browser_type="webkit")
        assert config.browser_type == "driver-default"
        assert config.engine == "webkit"

    def test_unknown_browser_type_rejected(self):
        with pytest.raises(ValidationError):
            BrowserConfig(browser_type="netscape")

    def test_comma_separated_launch_args(self):
        config = BrowserConfig(extra_launch_args="--mute-audio, --no-first-run,")
        assert config.extra_launch_args == ("--mute-audio", "--no-first-run")

    def test_invalid_port_rejected(self):
        with pytest.raises(ValidationError):
            BrowserConfig(debug_port=70000)

    def test_model_copy_keeps_other_fields(self):
        config = BrowserConfig(headless=False, proxy="http://p:1")
        switched = config.model_copy(update={"browser_type": "driver-default"})
        assert switched.browser_type == "driver-default"
        assert switched.headless is False
        assert switched.proxy == "http://p:1"

    def test_revalidated_normalizes_copied_aliases(self):
        config = BrowserConfig(headless=False).model_copy(update={"browser_type": "webkit"})
        assert config.browser_type == "webkit"
        fixed = config.revalidated()
        assert fixed.browser_type == "driver-default"
        assert fixed.engine == "webkit"
        assert fixed.headless is False

    def test_revalidated_rejects_unknown_type(self):
        config = BrowserConfig().model_copy(update={"browser_type": "netscape"})
        with pytest.raises(ValidationError):
            config.revalidated()

    def test_retry_settings_reach_config(self, monkeypatch):
        monkeypatch.setenv("HUMANBROWSE_BROWSER__MAX_RETRIES", "5")
        monkeypatch.setenv("HUMANBROWSE_BROWSER__ERROR_SCREENSHOT_DIR", "/tmp/errors")
        config = Settings().browser_config()
        assert config.max_retries == 5
        assert config.retry_backoff_ms == 1000
        assert config.error_screenshot_dir == "/tmp/errors"
