"""Composition planner: turns a resolved template into a filter-graph program.

Compositing order is the stable track-ascending order of the active
blocks. The base layer is an opaque color source sized to the canvas;
every visual block is folded onto the running composite, each step
producing the label the next one reads from.
"""

import re
from dataclasses import dataclass, field
from functools import reduce
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from loguru import logger

from clipex.models.subtitle import SubtitleCue
from clipex.models.template import (
    AudioBlock,
    Canvas,
    ImageBlock,
    Template,
    TextBlock,
    VideoBlock,
)
from clipex.workers.animations import AnimationExprs, build_animation_exprs
from clipex.workers.filtergraph import (
    Expr,
    FilterGraph,
    FilterNode,
    FilterStep,
    GraphInput,
    Text,
    format_number as num,
)

MIN_DURATION = 1.0  # Floor for derived durations
BASE_COLOR = "black"

# Captions on media blocks without a linked style block
DEFAULT_CAPTION_FONT_SIZE = 48
DEFAULT_CAPTION_COLOR = "white"
DEFAULT_CAPTION_BACKGROUND = "black@0.5"
CAPTION_BOTTOM_MARGIN_RATIO = 0.1

_RGB_FUNC = re.compile(r"^rgba?\(\s*([^)]*)\)$", re.IGNORECASE)


@dataclass
class ResolvedSources:
    """Everything the planner needs that came from source resolution."""

    media: Dict[str, Path] = field(default_factory=dict)  # block id -> local file
    texts: Dict[str, str] = field(default_factory=dict)  # text block id -> literal text
    cues: Dict[str, List[SubtitleCue]] = field(default_factory=dict)  # block id -> block-relative cues


@dataclass
class CompositionPlan:
    """A compiled program ready for the export worker."""

    graph: FilterGraph
    duration: float
    canvas: Canvas

    @property
    def inputs(self) -> List[GraphInput]:
        return self.graph.inputs

    @property
    def overlay_count(self) -> int:
        return self.graph.count("overlay")

    @property
    def drawtext_count(self) -> int:
        return self.graph.count("drawtext")

    @property
    def program(self) -> str:
        return self.graph.serialize()


@dataclass(frozen=True)
class _Fold:
    """Running state of the compositing fold."""

    label: str
    nodes: Tuple[FilterNode, ...] = ()


def to_ffmpeg_color(color: Optional[str], default: str = "white") -> str:
    """Convert editor colors (#rgb, #rrggbb[aa], rgb()/rgba(), names) to ffmpeg syntax."""
    if not color:
        return default
    value = color.strip()

    if value.lower() == "transparent":
        return "black@0"

    if value.startswith("#"):
        hex_part = value[1:]
        if len(hex_part) == 3:
            hex_part = "".join(c * 2 for c in hex_part)
        if len(hex_part) == 6:
            return f"0x{hex_part.upper()}"
        if len(hex_part) == 8:
            alpha = int(hex_part[6:8], 16) / 255
            return f"0x{hex_part[:6].upper()}@{num(round(alpha, 3))}"
        return default

    match = _RGB_FUNC.match(value)
    if match:
        parts = [p.strip() for p in match.group(1).split(",")]
        try:
            r, g, b = (int(float(p)) for p in parts[:3])
            alpha = float(parts[3]) if len(parts) > 3 else 1.0
        except (ValueError, IndexError):
            return default
        base = f"0x{r:02X}{g:02X}{b:02X}"
        return base if alpha >= 1 else f"{base}@{num(round(alpha, 3))}"

    return value


def active_blocks(template: Template) -> list:
    """Blocks with a positive duration, stable-sorted by track ascending."""
    return sorted((b for b in template.timeline if b.is_active), key=lambda b: b.track)


def composition_duration(canvas: Canvas, blocks: list) -> float:
    """Fixed canvas duration, else the latest block end (at least 1s)."""
    if canvas.duration:
        return canvas.duration
    latest = max((b.end for b in blocks), default=0.0)
    return max(latest, MIN_DURATION)


def _enable(start: float, end: float) -> Expr:
    return Expr(f"between(t,{num(start)},{num(end)})")


def _position(base: Optional[float], offset: Expr):
    origin = base or 0
    if offset == "0":
        return origin
    return Expr(f"{num(origin)}+{offset}")


class _Composer:
    """Folds blocks onto the composite; holds the per-plan lookup context."""

    def __init__(
        self,
        template: Template,
        sources: ResolvedSources,
        input_index: Dict[str, int],
        font_file: str = "",
    ):
        self.template = template
        self.canvas = template.canvas
        self.sources = sources
        self.input_index = input_index
        self.font_file = font_file

    def compose(self, state: _Fold, item: Tuple[int, object]) -> _Fold:
        index, block = item
        if isinstance(block, (VideoBlock, ImageBlock)):
            return self._compose_media(state, index, block)
        if isinstance(block, TextBlock):
            return self._compose_text(state, index, block)
        return state

    def _compose_media(self, state: _Fold, index: int, block) -> _Fold:
        path = self.sources.media.get(block.id)
        if path is None or str(path) not in self.input_index:
            logger.warning(f"Block {block.id} has no resolved source, omitting it")
            return state

        animation = build_animation_exprs(block, self.canvas.width, self.canvas.height)

        # Trim to block length and move the local origin to the block start
        steps = [
            FilterStep.of("trim", duration=block.duration),
            FilterStep.of("setpts", expr=Expr(f"PTS-STARTPTS+{num(block.start)}/TB")),
        ]
        if (block.width and block.width > 0) or (block.height and block.height > 0):
            steps.append(FilterStep.of(
                "scale",
                w=int(round(block.width)) if block.width and block.width > 0 else -1,
                h=int(round(block.height)) if block.height and block.height > 0 else -1,
            ))
        steps.extend(animation.pre_filters)

        source_label = f"{self.input_index[str(path)]}:v"
        prepared = FilterNode((source_label,), tuple(steps), f"blk{index}")

        overlay = FilterStep.of(
            "overlay",
            x=_position(block.x, animation.x_offset),
            y=_position(block.y, animation.y_offset),
            enable=_enable(block.start, block.end),
            format="auto",
        )
        output = f"layer{index}"
        composite = FilterNode(
            (state.label, prepared.output),
            (overlay, *animation.post_filters),
            output,
        )
        state = _Fold(output, state.nodes + (prepared, composite))

        cues = self.sources.cues.get(block.id)
        if cues:
            style = self._style_block(block)
            state = self._compose_captions(state, index, block, cues, style, AnimationExprs(), anchor=None)
        return state

    def _compose_text(self, state: _Fold, index: int, block: TextBlock) -> _Fold:
        animation = build_animation_exprs(block, self.canvas.width, self.canvas.height)

        cues = self.sources.cues.get(block.id)
        if cues:
            style = self._style_block(block) or block
            anchor = block if block.x is not None or block.y is not None else None
            return self._compose_captions(state, index, block, cues, style, animation, anchor)

        text = self.sources.texts.get(block.id)
        if text is None:
            logger.warning(f"Text block {block.id} has unresolved text, omitting it")
            return state

        step = self._drawtext(
            text=text,
            x=_position(block.x, animation.x_offset),
            y=_position(block.y, animation.y_offset),
            start=block.start,
            end=block.end,
            style=block,
            alpha=animation.alpha,
        )
        output = f"layer{index}"
        node = FilterNode((state.label,), (step, *animation.post_filters), output)
        return _Fold(output, state.nodes + (node,))

    def _compose_captions(
        self,
        state: _Fold,
        index: int,
        block,
        cues: List[SubtitleCue],
        style: Optional[TextBlock],
        animation: AnimationExprs,
        anchor: Optional[TextBlock],
    ) -> _Fold:
        """One drawtext overlay per cue, chained onto the composite."""
        if anchor is not None:
            x = _position(anchor.x, animation.x_offset)
            y = _position(anchor.y, animation.y_offset)
        else:
            margin = int(self.canvas.height * CAPTION_BOTTOM_MARGIN_RATIO)
            x = Expr("(w-text_w)/2")
            y = Expr(f"h-text_h-{margin}")

        for n, cue in enumerate(cues):
            shown = cue.shifted(block.start)
            end = min(shown.end, block.end)
            if end <= shown.start:
                continue
            step = self._drawtext(
                text=cue.text,
                x=x,
                y=y,
                start=shown.start,
                end=end,
                style=style,
                alpha=animation.alpha,
            )
            output = f"layer{index}_cue{n}"
            state = _Fold(output, state.nodes + (FilterNode((state.label,), (step,), output),))
        return state

    def _style_block(self, block) -> Optional[TextBlock]:
        style = self.template.find_block(block.subtitle_style_id)
        if block.subtitle_style_id and not isinstance(style, TextBlock):
            logger.warning(
                f"Block {block.id} subtitle style {block.subtitle_style_id} "
                f"is not a text block, using defaults"
            )
            return None
        return style

    def _drawtext(
        self,
        text: str,
        x,
        y,
        start: float,
        end: float,
        style: Optional[TextBlock],
        alpha: Expr,
    ) -> FilterStep:
        if style is not None:
            font_size = style.font_size
            color = to_ffmpeg_color(style.color)
            background = style.background_color
        else:
            font_size = DEFAULT_CAPTION_FONT_SIZE
            color = DEFAULT_CAPTION_COLOR
            background = DEFAULT_CAPTION_BACKGROUND

        params = dict(
            text=Text(text),
            x=x,
            y=y,
            fontsize=font_size,
            fontcolor=color,
            enable=_enable(start, end),
        )
        if alpha != "1":
            params["alpha"] = alpha
        if background:
            params["box"] = 1
            params["boxcolor"] = to_ffmpeg_color(background, default="black")
        if self.font_file:
            params["fontfile"] = Text(self.font_file)
        return FilterStep.of("drawtext", **params)


def _register_inputs(blocks: list, sources: ResolvedSources) -> Tuple[List[GraphInput], Dict[str, int]]:
    """One engine input per distinct resolved path, in first-seen order."""
    inputs: List[GraphInput] = []
    index: Dict[str, int] = {}
    for block in blocks:
        if not isinstance(block, (VideoBlock, ImageBlock, AudioBlock)):
            continue
        path = sources.media.get(block.id)
        if path is None:
            continue
        key = str(path)
        if key in index:
            continue
        index[key] = len(inputs)
        inputs.append(GraphInput(
            source=key,
            loop_image=isinstance(block, ImageBlock),
            loop_stream=isinstance(block, AudioBlock) and block.loop,
        ))
    return inputs, index


def _audio_nodes(blocks: list, sources: ResolvedSources, input_index: Dict[str, int]) -> Tuple[List[FilterNode], Optional[str]]:
    """Trim, delay and level each audio block, then mix them into one stream."""
    nodes: List[FilterNode] = []
    for index, block in enumerate(blocks):
        if not isinstance(block, AudioBlock):
            continue
        path = sources.media.get(block.id)
        if path is None:
            continue
        delay_ms = int(round(block.start * 1000))
        nodes.append(FilterNode(
            (f"{input_index[str(path)]}:a",),
            (
                FilterStep.of("atrim", duration=block.duration),
                FilterStep.of("asetpts", expr=Expr("PTS-STARTPTS")),
                FilterStep.of("volume", volume=round(block.volume / 100, 4)),
                FilterStep.of("adelay", delays=delay_ms, all=1),
            ),
            f"aud{index}",
        ))

    if not nodes:
        return [], None
    if len(nodes) == 1:
        return nodes, nodes[0].output

    mix = FilterNode(
        tuple(node.output for node in nodes),
        (FilterStep.of("amix", inputs=len(nodes), duration="longest", normalize=0),),
        "aout",
    )
    return nodes + [mix], mix.output


def plan_composition(
    template: Template,
    sources: ResolvedSources,
    font_file: str = "",
) -> CompositionPlan:
    """Compile a template plus its resolved sources into a filter graph.

    Deterministic: the same template and sources yield the same program.
    """
    canvas = template.canvas
    blocks = active_blocks(template)
    duration = composition_duration(canvas, blocks)

    inputs, input_index = _register_inputs(blocks, sources)

    base = GraphInput(
        source=f"color=c={BASE_COLOR}:s={canvas.width}x{canvas.height}:r={num(canvas.fps)}:d={num(duration)}",
        lavfi=True,
    )
    base_label = f"{len(inputs)}:v"
    inputs.append(base)

    composer = _Composer(template, sources, input_index, font_file=font_file)
    folded = reduce(composer.compose, enumerate(blocks), _Fold(base_label))

    nodes = list(folded.nodes)
    video_output = folded.label
    if not nodes:
        # Nothing to draw: pass the base layer through
        nodes.append(FilterNode((base_label,), (FilterStep("null"),), "vout"))
        video_output = "vout"

    audio, audio_output = _audio_nodes(blocks, sources, input_index)
    nodes.extend(audio)

    graph = FilterGraph(
        inputs=inputs,
        nodes=nodes,
        video_output=video_output,
        audio_output=audio_output,
    )
    logger.info(
        f"Planned composition: {len(inputs)} inputs, {graph.count('overlay')} overlays, "
        f"{graph.count('drawtext')} text overlays, {duration:.2f}s"
    )
    return CompositionPlan(graph=graph, duration=duration, canvas=canvas)
