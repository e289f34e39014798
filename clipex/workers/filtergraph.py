"""Typed filter-graph program for ffmpeg's -filter_complex.

The planner builds inputs and nodes; quoting and escaping happen only in
the serialize step below.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union


class Expr(str):
    """An ffmpeg expression; serialized single-quoted."""


class Text(str):
    """Literal text for drawtext; escaped then single-quoted."""


ParamValue = Union[str, int, float, Expr, Text]


def format_number(value: float) -> str:
    """Deterministic short decimal form (no exponent, no trailing zeros)."""
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    text = f"{round(value, 6):.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def _escape_expansion(text: str) -> str:
    # drawtext expands %{...} sequences and consumes one backslash level
    return text.replace("\\", "\\\\").replace("%", "\\%")


def _escape_option(text: str) -> str:
    # The option parser consumes another backslash level; ':' splits options
    return text.replace("\\", "\\\\").replace(":", "\\:")


def escape_text(text: str) -> str:
    """Escape literal drawtext content for embedding in a quoted value.

    The value is unescaped twice: once by the option parser and once by
    drawtext's text expansion. So a backslash becomes four, a percent sign
    becomes ``\\\\%`` and a colon ``\\:``. Single quotes cannot appear inside
    a quoted value and become typographic apostrophes.
    """
    flat = text.replace("'", "’").replace("\n", " ")
    return _escape_option(_escape_expansion(flat))


def _render_value(value: ParamValue) -> str:
    if isinstance(value, Text):
        return f"'{escape_text(value)}'"
    if isinstance(value, Expr):
        return f"'{value}'"
    if isinstance(value, (int, float)):
        return format_number(value)
    return str(value)


@dataclass(frozen=True)
class GraphInput:
    """One engine input (-i), either a file or a lavfi source."""

    source: str
    loop_image: bool = False  # -loop 1 for still images
    loop_stream: bool = False  # -stream_loop -1 for looping audio
    lavfi: bool = False

    def to_args(self) -> List[str]:
        args: List[str] = []
        if self.loop_image:
            args.extend(["-loop", "1"])
        if self.loop_stream:
            args.extend(["-stream_loop", "-1"])
        if self.lavfi:
            args.extend(["-f", "lavfi"])
        args.extend(["-i", self.source])
        return args


@dataclass(frozen=True)
class FilterStep:
    """A single filter with ordered key=value parameters."""

    name: str
    params: Tuple[Tuple[str, ParamValue], ...] = ()

    @classmethod
    def of(cls, name: str, **params: Optional[ParamValue]) -> "FilterStep":
        """Build a step, dropping parameters that are None."""
        return cls(name, tuple((k, v) for k, v in params.items() if v is not None))

    def param(self, key: str) -> Optional[ParamValue]:
        for k, v in self.params:
            if k == key:
                return v
        return None

    def serialize(self) -> str:
        if not self.params:
            return self.name
        rendered = ":".join(f"{k}={_render_value(v)}" for k, v in self.params)
        return f"{self.name}={rendered}"


@dataclass(frozen=True)
class FilterNode:
    """A linear filter chain from input labels to one output label."""

    inputs: Tuple[str, ...]
    steps: Tuple[FilterStep, ...]
    output: str

    def serialize(self) -> str:
        labels = "".join(f"[{label}]" for label in self.inputs)
        chain = ",".join(step.serialize() for step in self.steps)
        return f"{labels}{chain}[{self.output}]"


@dataclass
class FilterGraph:
    """Inputs plus ordered filter nodes ending in named output labels."""

    inputs: List[GraphInput] = field(default_factory=list)
    nodes: List[FilterNode] = field(default_factory=list)
    video_output: str = "vout"
    audio_output: Optional[str] = None

    def steps(self, name: Optional[str] = None) -> List[FilterStep]:
        """All steps in program order, optionally filtered by filter name."""
        return [
            step
            for node in self.nodes
            for step in node.steps
            if name is None or step.name == name
        ]

    def count(self, name: str) -> int:
        return len(self.steps(name))

    def labels(self) -> Dict[str, FilterNode]:
        return {node.output: node for node in self.nodes}

    def serialize(self) -> str:
        """Render the program in -filter_complex syntax."""
        return ";".join(node.serialize() for node in self.nodes)
