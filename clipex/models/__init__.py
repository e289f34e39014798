"""Data models for the render service."""

from .job import JobStatus, RenderJob
from .subtitle import SubtitleCue
from .template import (
    Animation,
    AnimationType,
    Asset,
    AudioBlock,
    Block,
    Canvas,
    ImageBlock,
    RenderRequest,
    RotateDirection,
    SlideDirection,
    Template,
    TemplateError,
    TextBlock,
    VideoBlock,
)

__all__ = [
    "Animation",
    "AnimationType",
    "Asset",
    "AudioBlock",
    "Block",
    "Canvas",
    "ImageBlock",
    "JobStatus",
    "RenderJob",
    "RenderRequest",
    "RotateDirection",
    "SlideDirection",
    "SubtitleCue",
    "Template",
    "TemplateError",
    "TextBlock",
    "VideoBlock",
]
