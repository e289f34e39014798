"""Source resolver: maps block references to local files and text.

One resolver exists per render job. It owns the job's resolution cache
and the ledger of temp files it downloaded, which ``cleanup`` removes.
"""

from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional
from urllib.parse import urlparse

from loguru import logger

from clipex.models.template import (
    Asset,
    AudioBlock,
    CaptionedBlock,
    ImageBlock,
    Template,
    TextBlock,
    VideoBlock,
    placeholder_key,
)
from clipex.workers.composition import ResolvedSources, active_blocks
from clipex.workers.fetch import RemoteFetcher, is_remote
from clipex.workers.subtitles import DEFAULT_MAX_WORDS, load_cues, looks_like_subtitle_content


class SourceResolver:
    """Resolves URLs, placeholders and asset references for one job."""

    def __init__(
        self,
        fetcher: RemoteFetcher,
        assets: Optional[List[Asset]] = None,
        placeholders: Optional[Dict[str, Optional[str]]] = None,
        uploads_dir: Optional[Path] = None,
    ):
        self.fetcher = fetcher
        self.assets: Dict[str, Asset] = {asset.id: asset for asset in assets or []}
        self.placeholders = placeholders or {}
        self.uploads_dir = Path(uploads_dir) if uploads_dir else None

        self.temp_files: List[Path] = []
        self._by_reference: Dict[str, Optional[Path]] = {}  # Original reference -> local path
        self._by_url: Dict[str, Path] = {}  # Fetched URL -> temp file

    async def _fetch(self, url: str) -> Path:
        cached = self._by_url.get(url)
        if cached is not None:
            logger.debug(f"Reusing download of {url}")
            return cached
        path = await self.fetcher.fetch(url)
        self.temp_files.append(path)
        self._by_url[url] = path
        return path

    def _local_upload(self, url: str) -> Optional[Path]:
        """Map a served path like /uploads/<name> onto the uploads directory."""
        if self.uploads_dir is None:
            return None
        name = PurePosixPath(urlparse(url).path).name
        if not name:
            return None
        path = self.uploads_dir / name
        if not path.exists():
            logger.warning(f"Local source file not found: {path}")
            return None
        return path

    async def _resolve_asset(self, asset_id: str) -> Optional[Path]:
        asset = self.assets.get(asset_id)
        if asset is None:
            logger.warning(f"Unknown asset id: {asset_id}")
            return None
        if is_remote(asset.url):
            return await self._fetch(asset.url)
        return self._local_upload(asset.url)

    async def resolve(self, ref: Optional[str]) -> Optional[Path]:
        """Resolve a media reference to a local path, or None if unresolvable.

        Accepted shapes, in order: an http(s) URL (fetched), a ``{{key}}``
        placeholder whose value is a URL or an asset id. Anything else is
        unresolvable. Each distinct reference is resolved at most once.

        Raises:
            FetchError: If a remote source cannot be downloaded.
        """
        if not ref:
            return None
        if ref in self._by_reference:
            logger.debug(f"Resolution cache hit: {ref}")
            return self._by_reference[ref]

        path: Optional[Path] = None
        if is_remote(ref):
            path = await self._fetch(ref.strip())
        else:
            key = placeholder_key(ref)
            value = self.placeholders.get(key) if key else None
            if key is not None and not value:
                logger.warning(f"Placeholder {{{{{key}}}}} has no value")
            elif value and is_remote(value):
                path = await self._fetch(value.strip())
            elif value:
                path = await self._resolve_asset(value)

        self._by_reference[ref] = path
        return path

    def resolve_text(self, text: Optional[str]) -> Optional[str]:
        """Literal text, or the value of a ``{{key}}`` text placeholder."""
        key = placeholder_key(text)
        if key is None:
            return text or ""
        value = self.placeholders.get(key)
        if value is None:
            logger.warning(f"Text placeholder {{{{{key}}}}} has no value")
        return value

    async def resolve_subtitle_text(self, source: Optional[str]) -> Optional[str]:
        """Subtitle content from inline text, a URL, or a placeholder.

        Raises:
            FetchError: If a remote subtitle file cannot be downloaded.
        """
        if not source or not source.strip():
            return None
        if looks_like_subtitle_content(source):
            return source

        key = placeholder_key(source)
        if key is not None:
            value = self.placeholders.get(key)
            if value and looks_like_subtitle_content(value):
                return value

        path = await self.resolve(source)
        if path is None:
            return None
        try:
            return path.read_text(encoding="utf-8-sig", errors="replace")
        except OSError as e:
            logger.warning(f"Failed to read subtitle file {path}: {e}")
            return None

    async def resolve_template(self, template: Template, max_words: int = DEFAULT_MAX_WORDS) -> ResolvedSources:
        """Materialize every source the active timeline references.

        Unresolvable media and unusable subtitle tracks are skipped with a
        warning; network errors propagate.
        """
        resolved = ResolvedSources()

        for block in active_blocks(template):
            if isinstance(block, (VideoBlock, ImageBlock, AudioBlock)):
                path = await self.resolve(block.source)
                if path is None:
                    logger.warning(f"Skipping {block.type} block {block.id}: unresolvable source {block.source!r}")
                else:
                    resolved.media[block.id] = path

            if isinstance(block, TextBlock):
                text = self.resolve_text(block.text)
                if text is not None:
                    resolved.texts[block.id] = text

            if isinstance(block, CaptionedBlock) and block.subtitle_enabled:
                content = await self.resolve_subtitle_text(block.subtitle_source)
                cues = load_cues(content, max_words=max_words) if content else []
                if cues:
                    resolved.cues[block.id] = cues
                    logger.debug(f"Block {block.id}: {len(cues)} subtitle cues")
                else:
                    logger.warning(f"Skipping subtitles on block {block.id}: no usable cues")

        logger.info(
            f"Resolved {len(resolved.media)} media sources, {len(self.temp_files)} downloads, "
            f"{len(resolved.cues)} subtitle tracks"
        )
        return resolved

    def cleanup(self) -> int:
        """Delete every temp file this resolver downloaded. Returns the count removed."""
        removed = 0
        for path in self.temp_files:
            try:
                if path.exists():
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning(f"Failed to remove temp file {path}: {e}")
        self.temp_files.clear()
        self._by_url.clear()
        self._by_reference.clear()
        return removed
