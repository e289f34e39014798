"""Tests for source resolution and the per-job resolution cache."""

import httpx
import pytest

from clipex.models.template import Asset, Template
from clipex.services.source_resolver import SourceResolver
from clipex.workers.fetch import FetchError, RemoteFetcher


VTT = "WEBVTT\n\n00:00.000 --> 00:02.000\nHello world foo bar\n"


@pytest.fixture
def dirs(tmp_path):
    temp_dir = tmp_path / "tmp"
    uploads_dir = tmp_path / "uploads"
    temp_dir.mkdir()
    uploads_dir.mkdir()
    return temp_dir, uploads_dir


@pytest.fixture
def requests_seen():
    return []


@pytest.fixture
def fetcher(dirs, requests_seen):
    """Fetcher backed by a mock CDN that records every request."""
    temp_dir, _ = dirs

    def handler(request):
        requests_seen.append(str(request.url))
        if request.url.path.endswith(".vtt"):
            return httpx.Response(200, text=VTT)
        if request.url.path.startswith("/missing"):
            return httpx.Response(404)
        return httpx.Response(200, content=b"media")

    return RemoteFetcher(temp_dir=temp_dir, transport=httpx.MockTransport(handler))


def make_resolver(fetcher, dirs, placeholders=None, assets=None):
    _, uploads_dir = dirs
    return SourceResolver(
        fetcher=fetcher,
        assets=assets,
        placeholders=placeholders,
        uploads_dir=uploads_dir,
    )


class TestResolve:
    """Tests for resolving media references."""

    @pytest.mark.asyncio
    async def test_direct_url(self, fetcher, dirs, requests_seen):
        """Test a direct URL is fetched into a temp file."""
        resolver = make_resolver(fetcher, dirs)
        path = await resolver.resolve("https://cdn.example.com/a.mp4")

        assert path.read_bytes() == b"media"
        assert resolver.temp_files == [path]
        assert requests_seen == ["https://cdn.example.com/a.mp4"]

    @pytest.mark.asyncio
    async def test_same_reference_fetched_once(self, fetcher, dirs, requests_seen):
        """Test repeated references reuse the first download."""
        resolver = make_resolver(fetcher, dirs)
        first = await resolver.resolve("https://cdn.example.com/a.mp4")
        second = await resolver.resolve("https://cdn.example.com/a.mp4")

        assert first == second
        assert len(requests_seen) == 1

    @pytest.mark.asyncio
    async def test_placeholder_to_url(self, fetcher, dirs, requests_seen):
        """Test a placeholder whose value is a URL, shared with a direct reference."""
        resolver = make_resolver(fetcher, dirs, placeholders={"hero": "https://cdn.example.com/a.mp4"})
        via_placeholder = await resolver.resolve("{{hero}}")
        direct = await resolver.resolve("https://cdn.example.com/a.mp4")

        assert via_placeholder == direct
        assert len(requests_seen) == 1

    @pytest.mark.asyncio
    async def test_placeholder_to_local_asset(self, fetcher, dirs, requests_seen):
        """Test a placeholder naming an uploaded asset maps to the uploads directory."""
        _, uploads_dir = dirs
        (uploads_dir / "abc_clip.mp4").write_bytes(b"local")
        resolver = make_resolver(
            fetcher,
            dirs,
            placeholders={"bg": "asset-1"},
            assets=[Asset(id="asset-1", name="clip.mp4", type="video", url="/uploads/abc_clip.mp4")],
        )

        path = await resolver.resolve("{{bg}}")
        assert path == uploads_dir / "abc_clip.mp4"
        assert resolver.temp_files == []
        assert requests_seen == []

    @pytest.mark.asyncio
    async def test_placeholder_to_remote_asset(self, fetcher, dirs, requests_seen):
        """Test an asset with a remote URL is fetched."""
        resolver = make_resolver(
            fetcher,
            dirs,
            placeholders={"bg": "asset-2"},
            assets=[Asset(id="asset-2", url="https://cdn.example.com/b.png")],
        )
        path = await resolver.resolve("{{bg}}")
        assert path.read_bytes() == b"media"
        assert requests_seen == ["https://cdn.example.com/b.png"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ref,placeholders", [
        ("{{missing_key}}", {}),
        ("{{empty}}", {"empty": None}),
        ("{{ghost}}", {"ghost": "no-such-asset"}),
        ("/uploads/x.mp4", {}),
        ("plain-name", {}),
        (None, {}),
    ])
    async def test_unresolvable(self, fetcher, dirs, requests_seen, ref, placeholders):
        """Test unresolvable references yield None without network access."""
        resolver = make_resolver(fetcher, dirs, placeholders=placeholders)
        assert await resolver.resolve(ref) is None
        assert requests_seen == []

    @pytest.mark.asyncio
    async def test_missing_local_file(self, fetcher, dirs):
        """Test an asset whose upload no longer exists is unresolvable."""
        resolver = make_resolver(
            fetcher,
            dirs,
            placeholders={"bg": "asset-1"},
            assets=[Asset(id="asset-1", url="/uploads/gone.mp4")],
        )
        assert await resolver.resolve("{{bg}}") is None

    @pytest.mark.asyncio
    async def test_network_error_propagates(self, fetcher, dirs):
        """Test fetch failures are not swallowed."""
        resolver = make_resolver(fetcher, dirs)
        with pytest.raises(FetchError):
            await resolver.resolve("https://cdn.example.com/missing/a.mp4")


class TestResolveText:
    """Tests for text and subtitle resolution."""

    def test_literal_text(self, fetcher, dirs):
        resolver = make_resolver(fetcher, dirs)
        assert resolver.resolve_text("Hello") == "Hello"
        assert resolver.resolve_text("") == ""

    def test_text_placeholder(self, fetcher, dirs):
        resolver = make_resolver(fetcher, dirs, placeholders={"name": "Ada"})
        assert resolver.resolve_text("{{name}}") == "Ada"
        assert resolver.resolve_text("{{other}}") is None

    @pytest.mark.asyncio
    async def test_inline_subtitles(self, fetcher, dirs, requests_seen):
        resolver = make_resolver(fetcher, dirs)
        assert await resolver.resolve_subtitle_text(VTT) == VTT
        assert requests_seen == []

    @pytest.mark.asyncio
    async def test_subtitle_url(self, fetcher, dirs):
        resolver = make_resolver(fetcher, dirs)
        content = await resolver.resolve_subtitle_text("https://cdn.example.com/subs.vtt")
        assert "Hello world foo bar" in content

    @pytest.mark.asyncio
    async def test_subtitle_placeholder_with_content(self, fetcher, dirs):
        resolver = make_resolver(fetcher, dirs, placeholders={"captions": VTT})
        assert await resolver.resolve_subtitle_text("{{captions}}") == VTT


class TestResolveTemplate:
    """Tests for resolving a whole timeline."""

    @pytest.mark.asyncio
    async def test_shared_source_downloaded_once(self, fetcher, dirs, requests_seen):
        """Test two blocks sharing a remote source trigger exactly one download."""
        template = Template.model_validate({
            "canvas": {"width": 640, "height": 360, "fps": 25},
            "timeline": [
                {"id": "a", "type": "image", "duration": 2, "source": "https://cdn.example.com/logo.png"},
                {"id": "b", "type": "image", "duration": 2, "track": 1, "source": "https://cdn.example.com/logo.png"},
            ],
        })
        resolved = await make_resolver(fetcher, dirs).resolve_template(template)

        assert resolved.media["a"] == resolved.media["b"]
        assert requests_seen == ["https://cdn.example.com/logo.png"]

    @pytest.mark.asyncio
    async def test_captions_chunked(self, fetcher, dirs):
        """Test a captioned text block gets chunked cues."""
        template = Template.model_validate({
            "canvas": {"width": 640, "height": 360, "fps": 25},
            "timeline": [{
                "id": "t", "type": "text", "duration": 2,
                "subtitleEnabled": True, "subtitleSource": VTT,
            }],
        })
        resolved = await make_resolver(fetcher, dirs).resolve_template(template)

        cues = resolved.cues["t"]
        assert [(c.start, c.end) for c in cues] == [(0, 1), (1, 2)]
        assert [c.text for c in cues] == ["Hello world foo", "bar"]

    @pytest.mark.asyncio
    async def test_bad_subtitles_skipped(self, fetcher, dirs):
        """Test unusable subtitle content drops only the subtitle track."""
        template = Template.model_validate({
            "canvas": {"width": 640, "height": 360, "fps": 25},
            "timeline": [{
                "id": "t", "type": "text", "duration": 2, "text": "Still here",
                "subtitleEnabled": True, "subtitleSource": "{{nothing}}",
            }],
        })
        resolved = await make_resolver(fetcher, dirs).resolve_template(template)

        assert "t" not in resolved.cues
        assert resolved.texts["t"] == "Still here"

    @pytest.mark.asyncio
    async def test_inactive_blocks_not_resolved(self, fetcher, dirs, requests_seen):
        template = Template.model_validate({
            "canvas": {"width": 640, "height": 360, "fps": 25},
            "timeline": [{"id": "a", "type": "video", "duration": 0, "source": "https://cdn.example.com/a.mp4"}],
        })
        resolved = await make_resolver(fetcher, dirs).resolve_template(template)
        assert resolved.media == {}
        assert requests_seen == []


class TestCleanup:
    """Tests for temp-file cleanup."""

    @pytest.mark.asyncio
    async def test_cleanup_removes_downloads(self, fetcher, dirs):
        """Test cleanup deletes every download and tolerates missing files."""
        temp_dir, _ = dirs
        resolver = make_resolver(fetcher, dirs)
        first = await resolver.resolve("https://cdn.example.com/a.mp4")
        await resolver.resolve("https://cdn.example.com/b.mp4")
        first.unlink()  # Already gone

        assert resolver.cleanup() == 1
        assert list(temp_dir.iterdir()) == []
        assert resolver.temp_files == []

    @pytest.mark.asyncio
    async def test_cleanup_keeps_uploads(self, fetcher, dirs):
        """Test local uploads are never deleted by cleanup."""
        _, uploads_dir = dirs
        upload = uploads_dir / "keep.png"
        upload.write_bytes(b"x")
        resolver = make_resolver(
            fetcher,
            dirs,
            placeholders={"p": "a"},
            assets=[Asset(id="a", url="/uploads/keep.png")],
        )
        await resolver.resolve("{{p}}")
        resolver.cleanup()
        assert upload.exists()
