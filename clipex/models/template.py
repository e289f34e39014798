"""Template data models: canvas, timeline blocks, animations and render requests."""

import copy
import re
import uuid
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel


PLACEHOLDER_PATTERN = re.compile(r"^\{\{\s*(.+?)\s*\}\}$")


def placeholder_key(value: Optional[str]) -> Optional[str]:
    """Return the key of a ``{{key}}`` token, or None if value is not one."""
    if not value:
        return None
    match = PLACEHOLDER_PATTERN.match(value.strip())
    return match.group(1) if match else None


class TemplateError(ValueError):
    """Raised when template modifications cannot be applied."""
    pass


class CamelModel(BaseModel):
    """Base model accepting the editor's camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AnimationType(str, Enum):
    """Supported block animation types."""

    SHAKE = "shake"
    FADE_IN = "fade_in"
    FADE_OUT = "fade_out"
    SLIDE_IN = "slide_in"
    SLIDE_OUT = "slide_out"
    SCALE = "scale"
    ROTATE = "rotate"
    BOUNCE = "bounce"
    PULSE = "pulse"


class SlideDirection(str, Enum):
    """Edge a slide animation enters from or exits towards."""

    LEFT = "left"
    RIGHT = "right"
    TOP = "top"
    BOTTOM = "bottom"


class RotateDirection(str, Enum):
    """Rotation sense."""

    CW = "cw"
    CCW = "ccw"


class Animation(CamelModel):
    """A timed effect relative to the owning block's start."""

    id: Optional[str] = None
    type: AnimationType
    time: float = Field(default=0.0, description="Start offset from block start (seconds)")
    duration: float = Field(default=1.0, description="Animation length (seconds)")
    easing: Optional[str] = None  # Accepted for editor compatibility; effects are linear

    # Shared by shake, bounce and pulse (defaults depend on type)
    strength: Optional[float] = None
    frequency: Optional[float] = None

    # Slide
    direction: SlideDirection = SlideDirection.LEFT

    # Scale
    start_scale: float = 0.0
    end_scale: float = 1.0

    # Rotate
    angle: float = 360.0
    rotate_direction: RotateDirection = RotateDirection.CW


class Canvas(CamelModel):
    """Output frame geometry and timing."""

    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    fps: float = Field(..., gt=0)
    duration: Optional[float] = Field(default=None, gt=0, description="Fixed total duration (seconds)")

    @property
    def resolution(self) -> str:
        """Resolution string like "1080x1920"."""
        return f"{self.width}x{self.height}"


class BlockBase(CamelModel):
    """Fields shared by every block kind."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    start: float = Field(default=0.0, ge=0)
    duration: float = 0.0  # Blocks with duration <= 0 are inactive
    track: int = 0  # Lower tracks composite first
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    animations: List[Animation] = Field(default_factory=list)

    # API dynamic fields
    dynamic_id: Optional[str] = None
    dynamic_fields: List[str] = Field(default_factory=list)

    @property
    def end(self) -> float:
        """Global end time of the block."""
        return self.start + self.duration

    @property
    def is_active(self) -> bool:
        """Whether the block takes part in composition."""
        return self.duration > 0


class CaptionedBlock(BlockBase):
    """Block that may carry burned-in subtitles."""

    subtitle_enabled: bool = False
    subtitle_source: Optional[str] = None  # VTT content, URL to .vtt, or {{placeholder}}
    subtitle_style_id: Optional[str] = None  # Text block to borrow font/color/background from


class VideoBlock(CaptionedBlock):
    type: Literal["video"] = "video"
    source: Optional[str] = None


class ImageBlock(CaptionedBlock):
    type: Literal["image"] = "image"
    source: Optional[str] = None


class TextBlock(CaptionedBlock):
    type: Literal["text"] = "text"
    text: str = ""
    font_size: int = 24
    color: str = "white"
    background_color: Optional[str] = None


class AudioBlock(BlockBase):
    type: Literal["audio"] = "audio"
    source: Optional[str] = None
    volume: float = Field(default=100.0, ge=0, description="Volume percent (0-100)")
    loop: bool = False


Block = Annotated[
    Union[VideoBlock, ImageBlock, TextBlock, AudioBlock],
    Field(discriminator="type"),
]

_block_adapter = TypeAdapter(Block)


class Template(CamelModel):
    """A canvas plus a timeline of blocks."""

    canvas: Canvas
    timeline: List[Block] = Field(default_factory=list)

    @field_validator("timeline", mode="before")
    @classmethod
    def drop_invalid_blocks(cls, value: Any) -> Any:
        """Validate blocks one by one, skipping the malformed ones."""
        if not isinstance(value, list):
            return value

        blocks = []
        for index, raw in enumerate(value):
            try:
                blocks.append(_block_adapter.validate_python(raw))
            except ValidationError as e:
                block_id = raw.get("id") if isinstance(raw, dict) else None
                logger.warning(
                    f"Skipping malformed block #{index} ({block_id or 'no id'}): "
                    f"{e.error_count()} validation error(s)"
                )
        return blocks

    def find_block(self, block_id: Optional[str]) -> Optional[Union[VideoBlock, ImageBlock, TextBlock, AudioBlock]]:
        """Look up any block (active or not) by id."""
        if not block_id:
            return None
        for block in self.timeline:
            if block.id == block_id:
                return block
        return None


class Asset(CamelModel):
    """An uploaded or remote media asset referenced through placeholders."""

    id: str
    name: str = ""
    type: str = ""
    url: str


def apply_modifications(
    template: Dict[str, Any],
    modifications: Optional[Dict[str, Any]] = None,
    elements: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Apply ``dynamicId.property`` overrides and inject extra elements.

    Works on the raw JSON form of a template and returns a modified copy.

    Raises:
        TemplateError: If a key is malformed, targets no block, or targets
            a property the block does not mark as dynamic.
    """
    result = copy.deepcopy(template)
    timeline = result.get("timeline")
    if not isinstance(timeline, list):
        timeline = []
        result["timeline"] = timeline

    for key, value in (modifications or {}).items():
        if "." not in key:
            raise TemplateError(
                f'Invalid modification key "{key}". Expected format: "dynamicId.property"'
            )
        dynamic_id, prop = key.split(".", 1)

        target = next(
            (b for b in timeline if isinstance(b, dict) and b.get("dynamicId") == dynamic_id),
            None,
        )
        if target is None:
            raise TemplateError(f'No block found with dynamicId "{dynamic_id}"')

        dynamic_fields = target.get("dynamicFields")
        if isinstance(dynamic_fields, list) and dynamic_fields and prop not in dynamic_fields:
            raise TemplateError(
                f'Property "{prop}" on block "{dynamic_id}" is not marked as dynamic. '
                f"Dynamic fields: [{', '.join(dynamic_fields)}]"
            )
        target[prop] = value

    for element in elements or []:
        if not isinstance(element, dict) or not element.get("type") or element.get("duration") is None:
            raise TemplateError('Each element in "elements" must have at least "type" and "duration"')
        element = dict(element)
        element.setdefault("id", str(uuid.uuid4()))
        timeline.append(element)

    return result


class RenderRequest(CamelModel):
    """Body of POST /render."""

    template: Template
    assets: List[Asset] = Field(default_factory=list)
    placeholders: Dict[str, Optional[str]] = Field(default_factory=dict)

    # Correlation with the persistence layer
    user_id: Optional[str] = None
    template_id: Optional[str] = None
    project_id: Optional[str] = None
    source: Optional[str] = None  # "ui" or "api"

    # Applied to the template before validation
    modifications: Dict[str, Any] = Field(default_factory=dict)
    elements: List[Dict[str, Any]] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def apply_template_modifications(cls, data: Any) -> Any:
        """Resolve modifications/elements against the raw template."""
        if not isinstance(data, dict):
            return data
        template = data.get("template")
        if isinstance(template, dict) and (data.get("modifications") or data.get("elements")):
            data = dict(data)
            data["template"] = apply_modifications(
                template, data.get("modifications"), data.get("elements")
            )
        return data

    @property
    def wants_record(self) -> bool:
        """Whether this request should be tracked in the persistence layer."""
        return bool(self.user_id or self.template_id or self.project_id)
