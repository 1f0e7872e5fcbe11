"""Live-reload sink: tells a running livereload (tiny-lr) server which files changed."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx

logger = logging.getLogger(__name__)

DEFAULT_LIVERELOAD_PORT = 35729
DEFAULT_TIMEOUT_SECONDS = 2.0


class LiveReloadClient:
    """
    Posts changed paths to `http://<host>:<port>/changed`.

    Browsers connected to the server reload the affected assets. The server
    being down is normal during a build, so every failure is logged and
    swallowed.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = DEFAULT_LIVERELOAD_PORT,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = f"http://{host}:{port}/changed"
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport

    async def changed(self, paths: Sequence[str]) -> bool:
        """Notify the server; returns True if it accepted the notification."""
        if not paths:
            return False
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self.url, json={"files": list(paths)})
        except httpx.HTTPError as exc:
            logger.warning(f"Live reload server at {self.url} unreachable: {exc}")
            return False

        if not response.is_success:
            logger.warning(f"Live reload server returned HTTP {response.status_code}")
            return False
        logger.debug(f"Live reload notified for {len(paths)} file(s)")
        return True

    def __repr__(self) -> str:
        return f"LiveReloadClient(url={self.url!r})"
