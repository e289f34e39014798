"""Remote fetcher: streams URLs to uniquely named temp files."""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import urljoin, urlparse

import httpx
from loguru import logger

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


class FetchError(Exception):
    """Raised when a remote source cannot be downloaded."""
    pass


class FetchTimeoutError(FetchError):
    """Raised when a download exceeds the fetch timeout."""
    pass


def is_remote(ref: Optional[str]) -> bool:
    """Whether a reference is an http(s) URL."""
    return bool(ref) and ref.strip().lower().startswith(("http://", "https://"))


class RemoteFetcher:
    """Downloads remote sources into a temp directory.

    Each fetch is bounded by one overall timeout. Redirects are followed
    recursively up to max_redirects hops. On any failure the partially
    written file is removed before the error propagates.
    """

    def __init__(
        self,
        temp_dir: Path,
        timeout: float = 60.0,
        max_redirects: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.temp_dir = Path(temp_dir)
        self.timeout = timeout
        self.max_redirects = max_redirects
        self._transport = transport  # Injected in tests

    def _create_temp_file(self, url: str) -> Path:
        """Reserve a unique temp file keeping the URL's extension."""
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        suffix = Path(urlparse(url).path).suffix[:10]
        fd, name = tempfile.mkstemp(prefix="fetch_", suffix=suffix, dir=self.temp_dir)
        os.close(fd)
        return Path(name)

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove partial download {path}: {e}")

    async def fetch(self, url: str) -> Path:
        """Download url to a new temp file and return its path.

        Raises:
            FetchTimeoutError: If the download takes longer than timeout.
            FetchError: On transport errors, non-2xx responses or broken
                redirect chains.
        """
        path = self._create_temp_file(url)
        logger.info(f"Fetching {url}")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=False,
                transport=self._transport,
            ) as client:
                await asyncio.wait_for(
                    self._download(client, url, path, hops=0),
                    timeout=self.timeout,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            self._discard(path)
            raise FetchTimeoutError(
                f"Fetch timed out after {self.timeout:g}s: {url}"
            ) from None
        except httpx.HTTPError as e:
            self._discard(path)
            raise FetchError(f"Failed to fetch {url}: {e}") from e
        except BaseException:
            self._discard(path)
            raise

        logger.debug(f"Fetched {url} -> {path} ({path.stat().st_size} bytes)")
        return path

    async def _download(
        self,
        client: httpx.AsyncClient,
        url: str,
        path: Path,
        hops: int,
    ) -> None:
        async with client.stream("GET", url) as response:
            if response.status_code in REDIRECT_STATUSES:
                location = response.headers.get("location")
                if not location:
                    raise FetchError(
                        f"Redirect {response.status_code} without Location header: {url}"
                    )
                if hops >= self.max_redirects:
                    raise FetchError(
                        f"Too many redirects ({self.max_redirects}) fetching {url}"
                    )
                target = urljoin(url, location)
                logger.debug(f"Following redirect {url} -> {target}")
                redirect = (client, target, path, hops + 1)
            elif not 200 <= response.status_code < 300:
                raise FetchError(f"HTTP {response.status_code} fetching {url}")
            else:
                redirect = None
                with open(path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)

        if redirect:
            await self._download(*redirect)
