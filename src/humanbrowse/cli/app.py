"""Unified CLI entry point for humanbrowse.

Config precedence: settings.default.toml -> settings.local.toml -> env vars (HUMANBROWSE_* with double underscores) -> CLI flags.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from humanbrowse.cli.settings_cmd import settings_app

try:
    from importlib.metadata import version

    VERSION = version("humanbrowse")
except Exception:
    VERSION = "unknown"

APP_HELP = (
    "humanbrowse: humanized browser control over CDP and Playwright. "
    "Config precedence: settings.default.toml -> settings.local.toml -> env vars (HUMANBROWSE_* with __) -> CLI flags."
)

app = typer.Typer(add_completion=True, help=APP_HELP)
app.add_typer(settings_app, name="settings")

console = Console()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Show help when no subcommand is provided."""
    if version:
        typer.echo(f"humanbrowse {VERSION}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()

    from humanbrowse.logging_config import configure_logging
    from humanbrowse.settings import get_settings

    configure_logging(get_settings().logging, level="DEBUG" if verbose else None)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_config(browser: Optional[str], low_level: Optional[bool], headed: bool) -> Any:
    from humanbrowse.settings import get_settings

    overrides: dict[str, Any] = {}
    if browser:
        overrides["browser_type"] = browser
    if low_level is not None:
        overrides["use_low_level_protocol"] = low_level
    if headed:
        overrides["headless"] = False
    return get_settings().browser_config(**overrides)


async def _with_page(config: Any, url: str, action: Any) -> Any:
    from humanbrowse.browser import BrowserManager

    async with BrowserManager(config) as manager:
        backend = manager.backend
        if not await backend.navigate(url):
            console.print(f"[red]✗[/red] Could not load {url}")
            raise typer.Exit(code=1)
        return await action(backend)


def _run_on_page(config: Any, url: str, action: Any) -> Any:
    from humanbrowse.exceptions import HumanBrowseError

    try:
        return asyncio.run(_with_page(config, url, action))
    except HumanBrowseError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)


_BROWSER_OPTION = typer.Option(
    None, "--browser", "-b", help="auto, chrome, firefox, webkit, playwright (or a canonical browser type)."
)
_LOW_LEVEL_OPTION = typer.Option(
    None, "--low-level/--no-low-level", help="Use the raw protocol (Chrome) or hybrid (Firefox) backend."
)
_HEADED_OPTION = typer.Option(False, "--headed", help="Show the browser window.")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("detect")
def detect() -> None:
    """List the browsers installed on this machine and the backend ``auto`` would pick."""
    from humanbrowse.browser.detector import detect_installed_browsers
    from humanbrowse.browser.factory import resolve_browser_type
    from humanbrowse.settings import BrowserConfig

    report = detect_installed_browsers()
    table = Table(title="Detected browsers")
    table.add_column("Browser", style="cyan")
    table.add_column("Binary")
    for name in report.browsers:
        table.add_row(name, report.binary_for(name) or "-")
    console.print(table)
    console.print(f"auto resolves to: [bold]{resolve_browser_type(BrowserConfig(), report)}[/bold]")


@app.command("screenshot")
def screenshot(
    url: str = typer.Argument(..., help="Page to open (https:// is assumed)."),
    path: Path = typer.Argument(..., help="PNG file to write."),
    browser: Optional[str] = _BROWSER_OPTION,
    low_level: Optional[bool] = _LOW_LEVEL_OPTION,
    headed: bool = _HEADED_OPTION,
) -> None:
    """Open URL and save a PNG screenshot to PATH."""
    config = _build_config(browser, low_level, headed)

    async def take(backend: Any) -> Any:
        return await backend.screenshot(path)

    saved = _run_on_page(config, url, take)
    if saved is None:
        console.print("[red]✗[/red] Screenshot failed")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Saved {saved}")


@app.command("extract")
def extract(
    url: str = typer.Argument(..., help="Page to open (https:// is assumed)."),
    kind: str = typer.Option("full", "--kind", "-k", help="full, text, headings, links, forms or search_results."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write JSON here instead of stdout."),
    browser: Optional[str] = _BROWSER_OPTION,
    low_level: Optional[bool] = _LOW_LEVEL_OPTION,
    headed: bool = _HEADED_OPTION,
) -> None:
    """Open URL and print its structured content as JSON."""
    config = _build_config(browser, low_level, headed)

    async def read(backend: Any) -> Any:
        return await backend.extract_page_content(kind)

    content = _run_on_page(config, url, read)
    text = json.dumps(content, indent=2, default=str)
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text, encoding="utf-8")
        console.print(f"[green]✓[/green] Wrote {output}")
    else:
        console.print_json(text)
    if "error" in content:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
