"""Animation expression builder.

Compiles a block's timed animations into ffmpeg expressions and filter
steps. Every effect is gated on its absolute window
``[block.start + time, block.start + time + duration]``; outside that window
it contributes the neutral transform (no offset, unit zoom, no rotation,
full opacity).

``sample_animations`` evaluates the same formulas in Python, which the
editor preview and the tests use.
"""

import math
from dataclasses import dataclass, field
from typing import List, Tuple

from loguru import logger

from clipex.models.template import (
    Animation,
    AnimationType,
    RotateDirection,
    SlideDirection,
    TextBlock,
)
from clipex.workers.filtergraph import Expr, FilterStep, format_number as num

SLIDE_DISTANCE = 300  # Max slide offset in pixels
MIN_ZOOM = 0.01  # Keeps scaled frames at least one pixel wide

# (strength, frequency) defaults per type
_STRENGTH_FREQUENCY = {
    AnimationType.SHAKE: (10.0, 8.0),
    AnimationType.BOUNCE: (20.0, 3.0),
    AnimationType.PULSE: (0.2, 2.0),
}

# Types that need their own stream (a pre-overlay filter), so not text blocks
_STREAM_ONLY = {AnimationType.SCALE, AnimationType.PULSE, AnimationType.ROTATE}

# direction -> (axis, sign)
_SLIDE_AXIS = {
    SlideDirection.LEFT: ("x", -1),
    SlideDirection.RIGHT: ("x", 1),
    SlideDirection.TOP: ("y", -1),
    SlideDirection.BOTTOM: ("y", 1),
}


@dataclass(frozen=True)
class AnimationWindow:
    """Absolute time window of one animation."""

    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    def is_active(self, t: float) -> bool:
        return self.start <= t <= self.end

    def progress(self, t: float) -> float:
        """Normalized progress clamped to [0, 1]."""
        return min(max((t - self.start) / self.duration, 0.0), 1.0)

    def active_expr(self, tv: str = "t") -> str:
        return f"between({tv},{num(self.start)},{num(self.end)})"

    def progress_expr(self, tv: str = "t") -> str:
        return f"clip(({tv}-{num(self.start)})/{num(self.duration)},0,1)"


def animation_window(block_start: float, animation: Animation) -> AnimationWindow:
    """Absolute window of an animation on a block starting at block_start."""
    start = block_start + animation.time
    return AnimationWindow(start=start, end=start + animation.duration)


def strength_and_frequency(animation: Animation) -> Tuple[float, float]:
    """Resolve strength/frequency with the per-type defaults."""
    default_strength, default_frequency = _STRENGTH_FREQUENCY.get(animation.type, (0.0, 0.0))
    strength = animation.strength if animation.strength is not None else default_strength
    frequency = animation.frequency if animation.frequency is not None else default_frequency
    return strength, frequency


def slide_distance(direction: SlideDirection, canvas_width: int, canvas_height: int) -> float:
    axis, _ = _SLIDE_AXIS[direction]
    return float(min(SLIDE_DISTANCE, canvas_width if axis == "x" else canvas_height))


@dataclass
class AnimationExprs:
    """Expressions and filter stages produced for one block."""

    x_offset: Expr = Expr("0")
    y_offset: Expr = Expr("0")
    alpha: Expr = Expr("1")  # Used by drawtext; media blocks fade via pre_filters
    pre_filters: List[FilterStep] = field(default_factory=list)
    post_filters: List[FilterStep] = field(default_factory=list)

    @property
    def is_neutral(self) -> bool:
        return (
            self.x_offset == "0"
            and self.y_offset == "0"
            and self.alpha == "1"
            and not self.pre_filters
            and not self.post_filters
        )


@dataclass
class AnimationSample:
    """Combined transform of a block's animations at one instant."""

    dx: float = 0.0
    dy: float = 0.0
    alpha: float = 1.0
    zoom: float = 1.0
    angle: float = 0.0  # Radians, clockwise positive


def _gate(window: AnimationWindow, expr: str, neutral: str, tv: str = "t") -> str:
    return f"if({window.active_expr(tv)},{expr},{neutral})"


def _sum(terms: List[str]) -> Expr:
    return Expr("+".join(f"({term})" for term in terms)) if terms else Expr("0")


def _product(factors: List[str]) -> Expr:
    return Expr("*".join(f"({factor})" for factor in factors)) if factors else Expr("1")


def _usable(animations: List[Animation], is_text: bool, block_id: str) -> List[Animation]:
    usable = []
    for animation in animations:
        if animation.duration <= 0:
            continue
        if is_text and animation.type in _STREAM_ONLY:
            logger.debug(f"Block {block_id}: {animation.type.value} has no effect on text, skipping")
            continue
        usable.append(animation)
    return usable


def build_animation_exprs(block, canvas_width: int, canvas_height: int) -> AnimationExprs:
    """Compile a block's animations into offset expressions and filter steps.

    x/y contributions of all animations are summed. Fade and rotate steps
    keep declaration order; all zoom factors multiply into a single scale
    step placed after them. Pure function of its inputs.
    """
    is_text = isinstance(block, TextBlock)
    x_terms: List[str] = []
    y_terms: List[str] = []
    alpha_factors: List[str] = []
    zoom_factors: List[str] = []
    pre_filters: List[FilterStep] = []
    post_filters: List[FilterStep] = []

    for animation in _usable(block.animations, is_text, block.id):
        window = animation_window(block.start, animation)
        p = window.progress_expr()
        a = num(window.start)
        kind = animation.type

        if kind == AnimationType.SHAKE:
            strength, frequency = strength_and_frequency(animation)
            decay = f"(1-{p})"
            x_terms.append(_gate(
                window, f"{num(strength)}*sin(2*PI*{num(frequency)}*(t-{a}))*{decay}", "0"
            ))
            y_terms.append(_gate(
                window, f"{num(strength / 2)}*sin(PI*{num(frequency)}*(t-{a})+PI/2)*{decay}", "0"
            ))

        elif kind in (AnimationType.SLIDE_IN, AnimationType.SLIDE_OUT):
            axis, sign = _SLIDE_AXIS[animation.direction]
            distance = num(sign * slide_distance(animation.direction, canvas_width, canvas_height))
            amount = f"(1-{p})" if kind == AnimationType.SLIDE_IN else p
            term = _gate(window, f"{distance}*{amount}", "0")
            (x_terms if axis == "x" else y_terms).append(term)

        elif kind == AnimationType.BOUNCE:
            strength, frequency = strength_and_frequency(animation)
            y_terms.append(_gate(
                window, f"-abs(sin({p}*{num(frequency)}*PI))*{num(strength)}*(1-{p})", "0"
            ))

        elif kind in (AnimationType.FADE_IN, AnimationType.FADE_OUT):
            if is_text:
                level = p if kind == AnimationType.FADE_IN else f"1-{p}"
                alpha_factors.append(_gate(window, level, "1"))
            else:
                tp = window.progress_expr("T")
                level = tp if kind == AnimationType.FADE_IN else f"1-{tp}"
                factor = _gate(window, level, "1", tv="T")
                pre_filters.append(FilterStep.of("format", pix_fmts="rgba"))
                # Per-pixel, so only run inside the window; outside it the
                # stream passes through at full opacity
                pre_filters.append(FilterStep.of(
                    "geq",
                    r=Expr("r(X,Y)"),
                    g=Expr("g(X,Y)"),
                    b=Expr("b(X,Y)"),
                    a=Expr(f"alpha(X,Y)*({factor})"),
                    enable=Expr(window.active_expr()),
                ))

        elif kind in (AnimationType.SCALE, AnimationType.PULSE):
            if kind == AnimationType.SCALE:
                s0, s1 = animation.start_scale, animation.end_scale
                zoom = f"{num(s0)}+({num(s1 - s0)})*{p}"
            else:
                strength, frequency = strength_and_frequency(animation)
                zoom = f"1+sin({p}*{num(frequency)}*2*PI)*{num(strength)}"
            zoom_factors.append(f"max({_gate(window, zoom, '1')},{num(MIN_ZOOM)})")

        elif kind == AnimationType.ROTATE:
            sign = 1 if animation.rotate_direction == RotateDirection.CW else -1
            radians = num(math.radians(animation.angle) * sign)
            pre_filters.append(FilterStep.of("format", pix_fmts="rgba"))
            pre_filters.append(FilterStep.of(
                "rotate",
                a=Expr(_gate(window, f"{radians}*{p}", "0")),
                c="none",
            ))

    if zoom_factors:
        # One per-frame scale, last: frames change size from here on, and
        # rotate/geq fix their geometry when configured
        total = "*".join(f"({f})" for f in zoom_factors)
        pre_filters.append(FilterStep.of(
            "scale",
            w=Expr(f"max(1,iw*{total})"),
            h=Expr(f"max(1,ih*{total})"),
            eval="frame",
        ))
        # Shift so the block stays centered
        x_terms.append(f"(overlay_w/({total})-overlay_w)/2")
        y_terms.append(f"(overlay_h/({total})-overlay_h)/2")

    return AnimationExprs(
        x_offset=_sum(x_terms),
        y_offset=_sum(y_terms),
        alpha=_product(alpha_factors),
        pre_filters=pre_filters,
        post_filters=post_filters,
    )


def _sample_one(
    animation: Animation,
    window: AnimationWindow,
    t: float,
    canvas_width: int,
    canvas_height: int,
    sample: AnimationSample,
) -> None:
    if not window.is_active(t):
        return

    p = window.progress(t)
    kind = animation.type

    if kind == AnimationType.SHAKE:
        strength, frequency = strength_and_frequency(animation)
        elapsed = t - window.start
        sample.dx += strength * math.sin(2 * math.pi * frequency * elapsed) * (1 - p)
        sample.dy += (strength / 2) * math.sin(math.pi * frequency * elapsed + math.pi / 2) * (1 - p)
    elif kind in (AnimationType.SLIDE_IN, AnimationType.SLIDE_OUT):
        axis, sign = _SLIDE_AXIS[animation.direction]
        amount = (1 - p) if kind == AnimationType.SLIDE_IN else p
        offset = sign * slide_distance(animation.direction, canvas_width, canvas_height) * amount
        if axis == "x":
            sample.dx += offset
        else:
            sample.dy += offset
    elif kind == AnimationType.BOUNCE:
        strength, frequency = strength_and_frequency(animation)
        sample.dy -= abs(math.sin(p * frequency * math.pi)) * strength * (1 - p)
    elif kind == AnimationType.FADE_IN:
        sample.alpha *= p
    elif kind == AnimationType.FADE_OUT:
        sample.alpha *= 1 - p
    elif kind == AnimationType.SCALE:
        zoom = animation.start_scale + (animation.end_scale - animation.start_scale) * p
        sample.zoom *= max(zoom, MIN_ZOOM)
    elif kind == AnimationType.PULSE:
        strength, frequency = strength_and_frequency(animation)
        sample.zoom *= max(1 + math.sin(p * frequency * 2 * math.pi) * strength, MIN_ZOOM)
    elif kind == AnimationType.ROTATE:
        sign = 1 if animation.rotate_direction == RotateDirection.CW else -1
        sample.angle += math.radians(animation.angle) * p * sign


def sample_animations(
    block,
    t: float,
    canvas_width: int = 1920,
    canvas_height: int = 1080,
) -> AnimationSample:
    """Evaluate a block's combined animation transform at global time t."""
    sample = AnimationSample()
    is_text = isinstance(block, TextBlock)
    for animation in _usable(block.animations, is_text, block.id):
        window = animation_window(block.start, animation)
        _sample_one(animation, window, t, canvas_width, canvas_height, sample)
    return sample
