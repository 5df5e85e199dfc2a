"""Streaming HTTP downloads."""

from __future__ import annotations

import os
import time
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Protocol

import httpx
import structlog

from cavekeeper.core.config import InstallConfig
from cavekeeper.install.errors import TransferError

logger = structlog.get_logger()


class Transport(Protocol):
    """Download a URL to a file, yielding progress fractions."""

    def download(self, url: str, dest_path: Path) -> AsyncIterator[float]:
        ...


class HttpTransport:
    """Download files over HTTP with throttled progress reporting.

    Data is written to ``<dest>.part`` and moved into place atomically once
    complete, so a file at the destination is always a finished download.

    Args:
        config: Install configuration (chunk size, progress interval)
        transport: Optional httpx transport, used by tests
    """

    def __init__(
        self,
        config: InstallConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or InstallConfig()
        self._transport = transport
        self._async_client: httpx.AsyncClient | None = None

    @property
    def async_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._async_client is None:
            self._async_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, read=None),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._async_client

    async def download(self, url: str, dest_path: Path) -> AsyncIterator[float]:
        """Download ``url`` to ``dest_path``.

        Yields:
            Fraction complete, at most once per progress interval, and 1.0
            once the file is in place. Without a Content-Length header only
            the final 1.0 is reported.

        Raises:
            TransferError: On HTTP or I/O failure
        """
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        part_path = dest_path.with_name(dest_path.name + ".part")
        last_report = 0.0

        try:
            async with self.async_client.stream("GET", url) as response:
                response.raise_for_status()
                total = int(response.headers.get("content-length", 0))
                received = 0

                with open(part_path, "wb") as f:
                    async for chunk in response.aiter_bytes(self.config.chunk_size):
                        f.write(chunk)
                        received += len(chunk)
                        now = time.monotonic()
                        if total and now - last_report >= self.config.progress_interval:
                            last_report = now
                            yield received / total

            os.replace(part_path, dest_path)
        except (httpx.HTTPError, OSError) as e:
            logger.warning("download_failed", url=url, dest=str(dest_path), error=str(e))
            part_path.unlink(missing_ok=True)
            raise TransferError(f"Download of {dest_path.name} failed: {e}") from e

        logger.debug("download_complete", dest=str(dest_path), size=received)
        yield 1.0

    async def close(self) -> None:
        """Close HTTP client."""
        if self._async_client is not None:
            await self._async_client.aclose()
            self._async_client = None
