"""Configuration settings for the Clipex render service.

Renders timed template compositions into MP4 files with ffmpeg.
"""

import json
from pathlib import Path
from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Paths
    data_dir: Path = Path("data")

    @property
    def uploads_dir(self) -> Path:
        """Directory holding uploaded media (served under /uploads)."""
        return self.data_dir / "uploads"

    @property
    def renders_dir(self) -> Path:
        """Directory holding finished renders (served under /renders)."""
        return self.data_dir / "renders"

    @property
    def temp_dir(self) -> Path:
        """Scratch directory for fetched remote sources."""
        return self.data_dir / "tmp"

    # Render endpoint auth (empty = open endpoint)
    render_secret: str = ""
    render_secret_header: str = "x-render-secret"

    # Source fetching
    fetch_timeout: float = 60.0  # Whole-download bound in seconds
    max_redirects: int = 5

    # Job store
    job_retention_seconds: int = 3600  # Jobs are purged after 1 hour
    eviction_interval_seconds: int = 3600

    # Subtitles
    subtitle_max_words: int = 3  # Longer cues are split into bursts

    # FFmpeg settings
    ffmpeg_path: str = "ffmpeg"
    ffmpeg_preset: str = "veryfast"
    font_file: str = ""  # Optional drawtext fontfile
    export_timeout_floor: int = 600  # 10 min minimum
    export_timeout_per_second: float = 6.0  # Extra seconds per second of output

    # Uploads
    max_upload_size_mb: int = 500

    # Render record persistence (empty = disabled)
    records_url: str = ""
    records_api_key: str = ""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 3001
    debug: bool = False
    cors_origins: List[str] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse CORS origins from JSON string or list."""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not valid JSON, treat as comma-separated list
                return [origin.strip() for origin in v.split(",")]
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()

# Ensure directories exist
settings.uploads_dir.mkdir(parents=True, exist_ok=True)
settings.renders_dir.mkdir(parents=True, exist_ok=True)
settings.temp_dir.mkdir(parents=True, exist_ok=True)
