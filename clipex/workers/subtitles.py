"""Subtitle engine: WebVTT parsing and short-burst cue chunking."""

import html
import json
import math
import re
from typing import List

from loguru import logger

from clipex.models.subtitle import SubtitleCue

DEFAULT_MAX_WORDS = 3

_TAG_PATTERN = re.compile(r"<[^>]+>")
_WHITESPACE_PATTERN = re.compile(r"\s+")


def parse_timestamp(text: str) -> float:
    """Parse ``HH:MM:SS.mmm`` or ``MM:SS.mmm`` into seconds.

    Any other shape yields 0.0 so one bad timestamp never aborts a parse.
    """
    parts = (text or "").strip().split(":")
    try:
        if len(parts) == 3:
            return int(parts[0]) * 3600 + int(parts[1]) * 60 + float(parts[2])
        if len(parts) == 2:
            return int(parts[0]) * 60 + float(parts[1])
    except ValueError:
        pass
    return 0.0


def normalize_content(raw: str) -> str:
    """Undo JSON string escaping that subtitle content may have picked up.

    Handles both a full JSON string literal (``"WEBVTT\\n..."`` with quotes)
    and bare content whose newlines arrived as the two characters ``\\n``.
    """
    trimmed = raw.strip()
    if len(trimmed) >= 2 and trimmed.startswith('"') and trimmed.endswith('"'):
        try:
            decoded = json.loads(trimmed)
            if isinstance(decoded, str):
                return decoded
        except json.JSONDecodeError:
            pass

    if "\n" not in raw and "\\n" in raw:
        return raw.replace("\\r\\n", "\n").replace("\\n", "\n").replace("\\r", "\n")

    return raw


def _clean_text(lines: List[str]) -> str:
    text = " ".join(lines)
    text = _TAG_PATTERN.sub("", text)  # Remove VTT/HTML tags
    text = html.unescape(text)  # Decode entities (&amp; -> &)
    return _WHITESPACE_PATTERN.sub(" ", text).strip()


def parse_cues(content: str) -> List[SubtitleCue]:
    """Parse WebVTT content into cues.

    Skips the header block, ignores cue identifiers and cue settings,
    strips inline markup and joins multi-line text with single spaces.
    Cues whose text ends up empty, or whose end is not after their start,
    are discarded.
    """
    if not content or not content.strip():
        return []

    normalized = normalize_content(content)
    lines = normalized.replace("\r\n", "\n").replace("\r", "\n").split("\n")

    i = 0
    # Skip WEBVTT header line and any header metadata up to the first blank line
    if lines and lines[0].strip().lstrip("\ufeff").startswith("WEBVTT"):
        i = 1
        while i < len(lines) and lines[i].strip():
            i += 1

    cues: List[SubtitleCue] = []
    while i < len(lines):
        line = lines[i].strip()
        if "-->" not in line:
            # Blank line, cue identifier, NOTE/STYLE content
            i += 1
            continue

        start_part, end_part = line.split("-->", 1)
        start_tokens = start_part.split()
        end_tokens = end_part.split()  # Drop cue settings after the end timestamp
        start = parse_timestamp(start_tokens[-1] if start_tokens else "")
        end = parse_timestamp(end_tokens[0] if end_tokens else "")
        i += 1

        text_lines = []
        while i < len(lines) and lines[i].strip():
            text_lines.append(lines[i].strip())
            i += 1

        text = _clean_text(text_lines)
        if not text:
            continue
        if end <= start:
            logger.debug(f"Discarding cue with empty window {start}-{end}: {text[:40]}")
            continue
        cues.append(SubtitleCue(start=start, end=end, text=text))

    return cues


def chunk_cues(cues: List[SubtitleCue], max_words: int = DEFAULT_MAX_WORDS) -> List[SubtitleCue]:
    """Split long cues into short caption bursts.

    A cue with more than max_words words becomes ceil(words / max_words)
    equal-duration cues spanning the original window, each taking the next
    max_words words left to right. Word order and total duration are kept.
    """
    if max_words < 1:
        raise ValueError(f"max_words must be positive, got {max_words}")

    result: List[SubtitleCue] = []
    for cue in cues:
        words = cue.words
        if len(words) <= max_words:
            result.append(cue)
            continue

        count = math.ceil(len(words) / max_words)
        slice_duration = cue.duration / count
        for n in range(count):
            start = cue.start + n * slice_duration
            end = cue.end if n == count - 1 else cue.start + (n + 1) * slice_duration
            result.append(
                SubtitleCue(
                    start=start,
                    end=end,
                    text=" ".join(words[n * max_words:(n + 1) * max_words]),
                )
            )

    return result


def load_cues(content: str, max_words: int = DEFAULT_MAX_WORDS) -> List[SubtitleCue]:
    """Parse then chunk subtitle content."""
    return chunk_cues(parse_cues(content), max_words=max_words)


def looks_like_subtitle_content(value: str) -> bool:
    """Whether a subtitle source string is inline content rather than a reference."""
    stripped = value.strip().strip('"')
    return stripped.startswith("WEBVTT") or "-->" in stripped
