"""Debugging-port checks shared by the CDP and hybrid backends."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from humanbrowse.exceptions import ProtocolUnavailableError

logger = logging.getLogger(__name__)

_POLL_INTERVAL_S = 0.25


async def wait_for_port(host: str, port: int, timeout_s: float = 10.0) -> None:
    """Poll until *host*:*port* accepts TCP connections.

    Raises:
        ProtocolUnavailableError: The port never opened within *timeout_s*.
    """
    deadline = time.monotonic() + timeout_s
    last_error = ""
    while time.monotonic() < deadline:
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=_POLL_INTERVAL_S * 4)
        except (OSError, asyncio.TimeoutError) as e:
            last_error = str(e) or type(e).__name__
            await asyncio.sleep(_POLL_INTERVAL_S)
            continue
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        logger.debug("Debugging port %s:%s is accepting connections", host, port)
        return
    raise ProtocolUnavailableError(host, port, f"not reachable after {timeout_s:.0f}s ({last_error})")


async def fetch_version(host: str, port: int, timeout_s: float = 5.0) -> dict[str, Any]:
    """Return the DevTools ``/json/version`` document of a Chromium endpoint.

    Raises:
        ProtocolUnavailableError: The endpoint did not answer with JSON.
    """
    url = f"http://{host}:{port}/json/version"
    try:
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            return resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ProtocolUnavailableError(host, port, f"{url}: {e}") from e
