"""Subtitle cue model."""

from pydantic import BaseModel


class SubtitleCue(BaseModel):
    """A timed subtitle line with markup stripped."""

    start: float
    end: float
    text: str

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def words(self) -> list[str]:
        return self.text.split()

    def shifted(self, offset: float) -> "SubtitleCue":
        """Return a copy moved by offset seconds (block-relative to absolute)."""
        return self.model_copy(update={"start": self.start + offset, "end": self.end + offset})
