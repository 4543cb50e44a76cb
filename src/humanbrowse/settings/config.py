"""Configuration loader for humanbrowse using Pydantic settings.

Config precedence (highest wins):
  1. Explicit values passed to ``Settings(...)`` / CLI flags
  2. Environment variables (HUMANBROWSE_* with __ for nesting)
  3. settings.local.toml
  4. settings.<env>.toml
  5. settings.default.toml

Backends never read settings themselves: callers turn the resolved
``BrowserSettings`` into an immutable ``BrowserConfig`` and hand that to the
factory.
"""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = Path(os.getenv("HUMANBROWSE_PROJECT_ROOT", _THIS_DIR.parents[2]))
CONFIG_DIR = PROJECT_ROOT / "config"

ENV_VAR_NAME = "HUMANBROWSE_ENV"
DEFAULT_ENV = "local"

BrowserType = Literal["auto", "protocol-primary", "protocol-secondary", "driver-default"]
BROWSER_TYPES: tuple[str, ...] = get_args(BrowserType)
Engine = Literal["chromium", "firefox", "webkit"]

# Engine-style names accepted from older configs and the CLI.
_BROWSER_TYPE_ALIASES: dict[str, str] = {
    "chrome": "protocol-primary",
    "chromium": "protocol-primary",
    "cdp": "protocol-primary",
    "firefox": "protocol-secondary",
    "webkit": "driver-default",
    "safari": "driver-default",
    "playwright": "driver-default",
    "default": "driver-default",
}

_WEBKIT_NAMES = frozenset({"webkit", "safari"})


def _resolve_env() -> str:
    return (os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()


def _load_toml(path: Path) -> dict[str, Any]:
    if path.is_file():
        with open(path, "rb") as f:
            return tomllib.load(f)
    return {}


def normalize_browser_type(value: Any) -> Any:
    """Map engine-style aliases (``firefox``, ``chrome``, ...) onto browser types."""
    if isinstance(value, str):
        key = value.strip().lower().replace("_", "-")
        return _BROWSER_TYPE_ALIASES.get(key, key)
    return value


# ---------------------------------------------------------------------------
# Immutable runtime configuration
# ---------------------------------------------------------------------------


class Viewport(BaseModel):
    """Browser viewport in CSS pixels."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(default=1280, gt=0)
    height: int = Field(default=800, gt=0)


class BrowserConfig(BaseModel):
    """Frozen configuration handed to the factory and every backend constructor."""

    model_config = ConfigDict(frozen=True)

    browser_type: BrowserType = "auto"
    # Playwright engine used by the driver-default backend.
    engine: Engine = "chromium"
    use_low_level_protocol: bool = False
    headless: bool = True
    viewport: Viewport = Field(default_factory=Viewport)
    timeout_ms: int = Field(default=30_000, gt=0)
    extra_launch_args: tuple[str, ...] = ()

    debug_host: str = "127.0.0.1"
    debug_port: int = Field(default=9222, gt=0, lt=65536)
    proxy: str = ""
    user_agent: str = ""
    auto_accept_dialogs: bool = False
    stealth: bool = True
    session_path: str = ""

    humanize: bool = True
    jitter_bound_ms: int = Field(default=250, ge=0)
    network_idle_window_ms: int = Field(default=500, ge=0)
    intervention_timeout_ms: int = Field(default=60_000, gt=0)
    seed: int | None = None

    # Transient start-up and navigation failures are retried this many times.
    max_retries: int = Field(default=2, ge=0)
    retry_backoff_ms: int = Field(default=1000, ge=0)
    # Unresolved click/type/extract targets are screenshotted here when set.
    error_screenshot_dir: str = ""

    @model_validator(mode="before")
    @classmethod
    def _webkit_implies_engine(cls, values: Any) -> Any:
        """``webkit`` is only reachable through Playwright; pin the engine."""
        if isinstance(values, dict):
            raw = values.get("browser_type")
            if isinstance(raw, str) and raw.strip().lower() in _WEBKIT_NAMES:
                values = {**values, "engine": "webkit"}
        return values

    @field_validator("browser_type", mode="before")
    @classmethod
    def _alias_browser_type(cls, value: Any) -> Any:
        return normalize_browser_type(value)

    @field_validator("extra_launch_args", mode="before")
    @classmethod
    def _split_launch_args(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(arg.strip() for arg in value.split(",") if arg.strip())
        return value

    def revalidated(self) -> "BrowserConfig":
        """Run every validator again.

        ``model_copy(update=...)`` bypasses validation, so an update such as
        ``{"browser_type": "firefox"}`` is only normalized after this.
        """
        return type(self).model_validate(self.model_dump())


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class BrowserSettings(BaseSettings):
    """Browser backend settings (mirrors ``BrowserConfig``)."""

    model_config = SettingsConfigDict(env_prefix="HUMANBROWSE_BROWSER__")

    browser_type: str = "auto"
    engine: str = "chromium"
    use_low_level_protocol: bool = False
    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 800
    timeout_ms: int = 30_000
    extra_launch_args: list[str] = Field(default_factory=list)
    debug_host: str = "127.0.0.1"
    debug_port: int = 9222
    proxy: str = ""
    user_agent: str = ""
    auto_accept_dialogs: bool = False
    stealth: bool = True
    session_path: str = ""
    max_retries: int = 2
    retry_backoff_ms: int = 1000
    error_screenshot_dir: str = ""

    def to_config(self, **overrides: Any) -> BrowserConfig:
        """Freeze these settings (plus *overrides*) into a ``BrowserConfig``."""
        values: dict[str, Any] = self.model_dump(exclude={"viewport_width", "viewport_height"})
        values["viewport"] = Viewport(width=self.viewport_width, height=self.viewport_height)
        values.update(overrides)
        return BrowserConfig(**values)


class HumanizeSettings(BaseSettings):
    """Human-behaviour simulation settings."""

    model_config = SettingsConfigDict(env_prefix="HUMANBROWSE_HUMANIZE__")

    enabled: bool = True
    jitter_bound_ms: int = 250
    seed: int | None = None


class WaitSettings(BaseSettings):
    """Bounded-wait tuning."""

    model_config = SettingsConfigDict(env_prefix="HUMANBROWSE_WAIT__")

    network_idle_window_ms: int = 500
    intervention_timeout_ms: int = 60_000


class LoggingSettings(BaseSettings):
    """Log output configuration."""

    model_config = SettingsConfigDict(env_prefix="HUMANBROWSE_LOGGING__")

    level: str = "INFO"
    json_format: bool = False


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Root humanbrowse settings with nested sections."""

    model_config = SettingsConfigDict(
        env_prefix="HUMANBROWSE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    env: str = Field(default_factory=_resolve_env)
    project_root: Path = Field(default=PROJECT_ROOT)
    debug: bool = False
    session_dir: str = "data/sessions"

    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    humanize: HumanizeSettings = Field(default_factory=HumanizeSettings)
    wait: WaitSettings = Field(default_factory=WaitSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="before")
    @classmethod
    def _merge_toml_files(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Layer TOML config files before env var overrides."""
        defaults = _load_toml(CONFIG_DIR / "settings.default.toml")
        env_name = (values.get("env") or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()
        env_overrides = _load_toml(CONFIG_DIR / f"settings.{env_name}.toml")
        local_overrides = _load_toml(CONFIG_DIR / "settings.local.toml")

        # Merge: defaults < env-specific < local < explicit values
        merged: dict[str, Any] = {}
        for layer in (defaults, env_overrides, local_overrides, values):
            for key, val in layer.items():
                if isinstance(val, dict) and isinstance(merged.get(key), dict):
                    merged[key] = {**merged[key], **val}
                else:
                    merged[key] = val
        return merged

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Normalize relative paths against project_root."""
        if not Path(self.session_dir).is_absolute():
            self.session_dir = str(self.project_root / self.session_dir)
        return self

    def browser_config(self, **overrides: Any) -> BrowserConfig:
        """Build the immutable ``BrowserConfig`` from every relevant section."""
        values: dict[str, Any] = {
            "humanize": self.humanize.enabled,
            "jitter_bound_ms": self.humanize.jitter_bound_ms,
            "seed": self.humanize.seed,
            "network_idle_window_ms": self.wait.network_idle_window_ms,
            "intervention_timeout_ms": self.wait.intervention_timeout_ms,
        }
        values.update(overrides)
        return self.browser.to_config(**values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton settings instance (cached)."""
    return Settings()
