"""Tests for the remote fetcher."""

import asyncio

import httpx
import pytest

from clipex.workers.fetch import FetchError, FetchTimeoutError, RemoteFetcher, is_remote


@pytest.fixture
def temp_dir(tmp_path):
    path = tmp_path / "tmp"
    path.mkdir()
    return path


def make_fetcher(temp_dir, handler, timeout=5.0, max_redirects=5):
    return RemoteFetcher(
        temp_dir=temp_dir,
        timeout=timeout,
        max_redirects=max_redirects,
        transport=httpx.MockTransport(handler),
    )


class TestIsRemote:
    """Tests for URL detection."""

    def test_remote(self):
        assert is_remote("https://cdn.example.com/a.mp4")
        assert is_remote("HTTP://cdn.example.com/a.mp4")

    def test_not_remote(self):
        assert not is_remote("/uploads/a.mp4")
        assert not is_remote("{{a}}")
        assert not is_remote(None)
        assert not is_remote("")


class TestFetch:
    """Tests for downloading to temp files."""

    @pytest.mark.asyncio
    async def test_fetch_success(self, temp_dir):
        """Test the body lands in a temp file keeping the URL's extension."""
        def handler(request):
            return httpx.Response(200, content=b"video-bytes")

        path = await make_fetcher(temp_dir, handler).fetch("https://cdn.example.com/clips/a.mp4?sig=1")

        assert path.parent == temp_dir
        assert path.suffix == ".mp4"
        assert path.name.startswith("fetch_")
        assert path.read_bytes() == b"video-bytes"

    @pytest.mark.asyncio
    async def test_unique_files(self, temp_dir):
        """Test two fetches of the same URL never share a file."""
        def handler(request):
            return httpx.Response(200, content=b"x")

        fetcher = make_fetcher(temp_dir, handler)
        first = await fetcher.fetch("https://cdn.example.com/a.png")
        second = await fetcher.fetch("https://cdn.example.com/a.png")
        assert first != second

    @pytest.mark.asyncio
    async def test_follows_redirects(self, temp_dir):
        """Test relative and absolute redirects are followed."""
        def handler(request):
            if request.url.path == "/start":
                return httpx.Response(302, headers={"Location": "/middle"})
            if request.url.path == "/middle":
                return httpx.Response(301, headers={"Location": "https://other.example.com/final.jpg"})
            return httpx.Response(200, content=b"final")

        path = await make_fetcher(temp_dir, handler).fetch("https://cdn.example.com/start")
        assert path.read_bytes() == b"final"

    @pytest.mark.asyncio
    async def test_too_many_redirects(self, temp_dir):
        """Test a redirect loop fails and leaves no file behind."""
        def handler(request):
            return httpx.Response(302, headers={"Location": str(request.url)})

        with pytest.raises(FetchError, match="Too many redirects"):
            await make_fetcher(temp_dir, handler, max_redirects=3).fetch("https://cdn.example.com/loop")
        assert list(temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_redirect_without_location(self, temp_dir):
        def handler(request):
            return httpx.Response(302)

        with pytest.raises(FetchError, match="without Location"):
            await make_fetcher(temp_dir, handler).fetch("https://cdn.example.com/a.mp4")
        assert list(temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_http_error_status(self, temp_dir):
        """Test non-2xx responses fail and clean up."""
        def handler(request):
            return httpx.Response(404)

        with pytest.raises(FetchError, match="HTTP 404"):
            await make_fetcher(temp_dir, handler).fetch("https://cdn.example.com/missing.mp4")
        assert list(temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_transport_error(self, temp_dir):
        """Test connection failures become FetchError."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(FetchError, match="connection refused"):
            await make_fetcher(temp_dir, handler).fetch("https://cdn.example.com/a.mp4")
        assert list(temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_timeout(self, temp_dir):
        """Test a slow download times out and leaves no temp files."""
        async def handler(request):
            await asyncio.sleep(2)
            return httpx.Response(200, content=b"late")

        with pytest.raises(FetchTimeoutError, match="timed out"):
            await make_fetcher(temp_dir, handler, timeout=0.1).fetch("https://cdn.example.com/slow.mp4")
        assert list(temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_timeout_is_fetch_error(self, temp_dir):
        """Test callers catching FetchError also see timeouts."""
        async def handler(request):
            await asyncio.sleep(2)
            return httpx.Response(200)

        with pytest.raises(FetchError):
            await make_fetcher(temp_dir, handler, timeout=0.1).fetch("https://cdn.example.com/slow.mp4")
