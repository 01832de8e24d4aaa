"""Crop and resize geometry.

Pure functions over pixel dimensions. Nothing here touches pixel data; the
results are handed to Pillow by :mod:`imageedit.imaging.operations`.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import StrEnum

from imageedit.errors import InvalidInput

_ASPECT_PATTERN = re.compile(r"^([0-9]+):([0-9]+)$")
MAX_ASPECT_COMPONENT = 10_000


class Gravity(StrEnum):
    CENTER = "center"
    NORTH = "north"
    SOUTH = "south"
    EAST = "east"
    WEST = "west"


class FitMode(StrEnum):
    COVER = "cover"
    CONTAIN = "contain"
    FILL = "fill"
    INSIDE = "inside"
    OUTSIDE = "outside"


@dataclass(frozen=True)
class ImageBounds:
    """Pixel dimensions of a decoded source image."""

    width: int
    height: int


@dataclass(frozen=True)
class Rectangle:
    """An explicit crop rectangle as supplied by the client."""

    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class AspectSpec:
    """Crop to the largest window with ratio ``ratio_w:ratio_h``."""

    ratio_w: int
    ratio_h: int
    gravity: Gravity = Gravity.CENTER


@dataclass(frozen=True)
class ResolvedRectangle:
    """Crop window in source pixel coordinates."""

    left: int
    top: int
    width: int
    height: int

    @property
    def box(self) -> tuple[int, int, int, int]:
        """Pillow-style ``(left, upper, right, lower)`` box."""
        return (self.left, self.top, self.left + self.width, self.top + self.height)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    if value < 0:
        return -math.floor(-value + 0.5)
    return math.floor(value + 0.5)


def parse_aspect(value: str, gravity: Gravity = Gravity.CENTER) -> AspectSpec:
    """Parse ``"W:H"`` into an :class:`AspectSpec`.

    Raises:
        InvalidInput: If the string is not two digit groups separated by a
            colon, or either component is zero or above
            :data:`MAX_ASPECT_COMPONENT`.
    """
    match = _ASPECT_PATTERN.match(value)
    if match is None:
        raise InvalidInput("aspect", 'Aspect must be in format "width:height" (e.g., "16:9")')
    raw_w, raw_h = (group.lstrip("0") for group in match.groups())
    if not raw_w or not raw_h:
        raise InvalidInput("aspect", "Aspect ratio components must be greater than 0")
    max_digits = len(str(MAX_ASPECT_COMPONENT))
    if len(raw_w) > max_digits or len(raw_h) > max_digits or max(int(raw_w), int(raw_h)) > MAX_ASPECT_COMPONENT:
        raise InvalidInput("aspect", f"Aspect ratio components must be at most {MAX_ASPECT_COMPONENT}")
    ratio_w, ratio_h = int(raw_w), int(raw_h)
    return AspectSpec(ratio_w=ratio_w, ratio_h=ratio_h, gravity=gravity)


def resolve_aspect_crop(aspect: AspectSpec, bounds: ImageBounds) -> ResolvedRectangle:
    """Return the largest ``aspect``-shaped window inside ``bounds``.

    One axis always spans the full source extent; gravity only positions the
    window along the other (reduced) axis. Gravity values that do not apply to
    the reduced axis fall back to centering.
    """
    if aspect.ratio_w <= 0 or aspect.ratio_h <= 0:
        raise InvalidInput("aspect", "Aspect ratio components must be greater than 0")

    target_aspect = aspect.ratio_w / aspect.ratio_h
    source_aspect = bounds.width / bounds.height

    if source_aspect > target_aspect:
        height = bounds.height
        width = min(bounds.width, max(1, round_half_up(height * target_aspect)))
        top = 0
        if aspect.gravity == Gravity.WEST:
            left = 0
        elif aspect.gravity == Gravity.EAST:
            left = bounds.width - width
        else:
            left = round_half_up((bounds.width - width) / 2)
    else:
        width = bounds.width
        height = min(bounds.height, max(1, round_half_up(width / target_aspect)))
        left = 0
        if aspect.gravity == Gravity.NORTH:
            top = 0
        elif aspect.gravity == Gravity.SOUTH:
            top = bounds.height - height
        else:
            top = round_half_up((bounds.height - height) / 2)

    return ResolvedRectangle(left=left, top=top, width=width, height=height)


def rectangle_to_resolved(rect: Rectangle) -> ResolvedRectangle:
    return ResolvedRectangle(left=rect.x, top=rect.y, width=rect.width, height=rect.height)


def resolve_resize_dimensions(
    bounds: ImageBounds,
    width: int | None,
    height: int | None,
    fit: FitMode,
) -> tuple[int, int]:
    """Compute the scaled size of the source before any crop or padding.

    For ``cover`` and ``contain`` the caller still crops or pads to the
    requested box; this returns the intermediate scaled size. When only one
    of ``width``/``height`` is given the other follows the source aspect
    ratio regardless of ``fit``.

    Raises:
        ValueError: If neither dimension is given.
    """
    if width is None:
        if height is None:
            raise ValueError("at least one of width or height is required")
        return max(1, round_half_up(bounds.width * height / bounds.height)), height
    if height is None:
        return width, max(1, round_half_up(bounds.height * width / bounds.width))

    if fit == FitMode.FILL:
        return width, height

    scale_w = width / bounds.width
    scale_h = height / bounds.height
    if fit in (FitMode.COVER, FitMode.OUTSIDE):
        scale = max(scale_w, scale_h)
    else:
        scale = min(scale_w, scale_h)

    return (
        max(1, round_half_up(bounds.width * scale)),
        max(1, round_half_up(bounds.height * scale)),
    )
