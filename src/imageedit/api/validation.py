"""Form-field parsing and validation for the /v1 endpoints.

Every function here is pure: it takes raw multipart field values (strings,
or ``None`` when the field was not sent) and either returns typed values or
raises :class:`~imageedit.errors.InvalidInput` for the first problem found.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from imageedit.errors import InvalidInput
from imageedit.imaging.geometry import AspectSpec, FitMode, Gravity, Rectangle, parse_aspect

if TYPE_CHECKING:
    from collections.abc import Iterable

_INT_PATTERN = re.compile(r"^[+-]?[0-9]+$")
_MAX_INT_DIGITS = 9
MAX_INT_VALUE = 999_999_999
_HEX_COLOR_PATTERN = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")

IMAGE_FORMATS = ("png", "jpeg", "webp")
REMOVE_BG_FORMATS = ("jpg", "jpeg", "png", "webp")
REMOVE_BG_OUTPUTS = ("image", "mask")

DEFAULT_QUALITY = 80
DEFAULT_MAX_COLORS = 3
DEFAULT_MULTICOLOR_THRESHOLD = 0.20


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------


def _present(raw: str | None) -> bool:
    return raw is not None and raw.strip() != ""


def _clean(raw: str | None) -> str | None:
    """Stripped field text, or ``None`` when the field is absent or blank."""
    if raw is None:
        return None
    text = raw.strip()
    return text or None


def parse_int(
    field: str,
    raw: str | None,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
    range_message: str | None = None,
) -> int | None:
    """Parse an optional base-10 integer field and check its bounds."""
    text = _clean(raw)
    if text is None:
        return None
    if not _INT_PATTERN.match(text):
        raise InvalidInput(field, f"{field} must be an integer")
    digits = text.lstrip("+-").lstrip("0")
    if len(digits) > _MAX_INT_DIGITS:
        # too long to convert; clamp so the range check still reports it
        value = -MAX_INT_VALUE - 1 if text.startswith("-") else MAX_INT_VALUE + 1
    else:
        value = int(digits or "0")
        if text.startswith("-"):
            value = -value
    _check_range(field, value, minimum, maximum, range_message)
    if abs(value) > MAX_INT_VALUE:
        raise InvalidInput(field, f"{field} must be at most {MAX_INT_VALUE}")
    return value


def parse_float(
    field: str,
    raw: str | None,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
    range_message: str | None = None,
) -> float | None:
    """Parse an optional decimal field and check its bounds."""
    text = _clean(raw)
    if text is None:
        return None
    try:
        value = float(text)
    except ValueError:
        raise InvalidInput(field, f"{field} must be a number") from None
    if not math.isfinite(value):
        raise InvalidInput(field, f"{field} must be a number")
    _check_range(field, value, minimum, maximum, range_message)
    return value


def _check_range(
    field: str,
    value: float,
    minimum: float | None,
    maximum: float | None,
    range_message: str | None,
) -> None:
    too_small = minimum is not None and value < minimum
    too_large = maximum is not None and value > maximum
    if not (too_small or too_large):
        return
    if range_message is not None:
        raise InvalidInput(field, range_message)
    if minimum is not None and maximum is not None:
        raise InvalidInput(field, f"{field} must be between {minimum} and {maximum}")
    if minimum is not None:
        raise InvalidInput(field, f"{field} must be at least {minimum}")
    raise InvalidInput(field, f"{field} must be at most {maximum}")


def parse_choice(field: str, raw: str | None, allowed: Iterable[str], default: str | None = None) -> str | None:
    """Check an enumerated field against ``allowed``; absent returns ``default``."""
    value = _clean(raw)
    if value is None:
        return default
    choices = tuple(allowed)
    if value not in choices:
        raise InvalidInput(field, f"Invalid {field}. Must be one of: {', '.join(choices)}")
    return value


def parse_hex_color(field: str, raw: str | None) -> str | None:
    value = _clean(raw)
    if value is None:
        return None
    if not _HEX_COLOR_PATTERN.match(value):
        raise InvalidInput(field, f"{field.capitalize()} must be a valid hex color (e.g., #ffffff)")
    return value


# ---------------------------------------------------------------------------
# Per-endpoint parameter sets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResizeParams:
    width: int | None
    height: int | None
    fit: FitMode
    format: str | None
    quality: int
    background: str | None


@dataclass(frozen=True)
class CropParams:
    mode: Rectangle | AspectSpec
    format: str | None
    quality: int


@dataclass(frozen=True)
class RemoveBackgroundParams:
    output: str
    format: str
    feather: float | None
    threshold: int | None
    background: str


@dataclass(frozen=True)
class ColorParams:
    max_colors: int
    multicolor_threshold: float


def _parse_quality(raw: str | None) -> int:
    quality = parse_int("quality", raw, minimum=1, maximum=100, range_message="Quality must be between 1 and 100")
    return DEFAULT_QUALITY if quality is None else quality


def _required_int(field: str, raw: str | None, *, minimum: int, range_message: str) -> int:
    value = parse_int(field, raw, minimum=minimum, range_message=range_message)
    if value is None:
        raise InvalidInput(field, "Rectangle crop requires all of: x, y, width, height")
    return value


def validate_resize(
    *,
    width: str | None,
    height: str | None,
    fit: str | None,
    format: str | None,  # noqa: A002
    quality: str | None,
    background: str | None,
) -> ResizeParams:
    """Validate the /v1/resize form fields."""
    parsed_width = parse_int("width", width, minimum=1, range_message="Width must be at least 1")
    parsed_height = parse_int("height", height, minimum=1, range_message="Height must be at least 1")
    if parsed_width is None and parsed_height is None:
        raise InvalidInput("width", "Either width or height must be provided")

    parsed_fit = parse_choice("fit", fit, [mode.value for mode in FitMode]) or FitMode.INSIDE.value
    return ResizeParams(
        width=parsed_width,
        height=parsed_height,
        fit=FitMode(parsed_fit),
        format=parse_choice("format", format, IMAGE_FORMATS),
        quality=_parse_quality(quality),
        background=parse_hex_color("background", background),
    )


def validate_crop(
    *,
    x: str | None,
    y: str | None,
    width: str | None,
    height: str | None,
    aspect: str | None,
    gravity: str | None,
    format: str | None,  # noqa: A002
    quality: str | None,
) -> CropParams:
    """Validate the /v1/crop form fields and pick the crop mode.

    Any rectangle field switches to rectangle mode, which then requires all
    four. Aspect fields are only looked at when no rectangle field is sent.
    """
    rect_fields = {"x": x, "y": y, "width": width, "height": height}
    has_rect = any(_present(value) for value in rect_fields.values())
    has_aspect = _present(aspect)

    if not has_rect and not has_aspect:
        raise InvalidInput(
            "aspect",
            "Either rectangle crop (x, y, width, height) or aspect crop (aspect) must be provided",
        )

    mode: Rectangle | AspectSpec
    if has_rect:
        missing = [name for name, value in rect_fields.items() if not _present(value)]
        if missing:
            raise InvalidInput(missing[0], "Rectangle crop requires all of: x, y, width, height")
        mode = Rectangle(
            x=_required_int("x", x, minimum=0, range_message="x and y must be >= 0"),
            y=_required_int("y", y, minimum=0, range_message="x and y must be >= 0"),
            width=_required_int("width", width, minimum=1, range_message="width and height must be >= 1"),
            height=_required_int("height", height, minimum=1, range_message="width and height must be >= 1"),
        )
    else:
        parsed_gravity = parse_choice("gravity", gravity, [g.value for g in Gravity]) or Gravity.CENTER.value
        mode = parse_aspect(_clean(aspect) or "", Gravity(parsed_gravity))

    return CropParams(
        mode=mode,
        format=parse_choice("format", format, IMAGE_FORMATS),
        quality=_parse_quality(quality),
    )


def validate_remove_background(
    *,
    output: str | None,
    format: str | None,  # noqa: A002
    feather: str | None,
    threshold: str | None,
    background: str | None,
) -> RemoveBackgroundParams:
    """Validate the /v1/remove-bg form fields."""
    parsed_output = parse_choice("output", output, REMOVE_BG_OUTPUTS) or "image"
    parsed_format = parse_choice("format", format, REMOVE_BG_FORMATS) or "jpg"
    parsed_feather = parse_float(
        "feather", feather, minimum=0, maximum=10, range_message="Feather must be between 0 and 10"
    )
    parsed_threshold = parse_int(
        "threshold", threshold, minimum=0, maximum=255, range_message="Threshold must be between 0 and 255"
    )
    parsed_background = parse_hex_color("background", background) or "#ffffff"
    return RemoveBackgroundParams(
        output=parsed_output,
        format=parsed_format,
        feather=parsed_feather,
        threshold=parsed_threshold,
        background=parsed_background,
    )


def validate_colors(*, max_colors: str | None, multicolor_threshold: str | None) -> ColorParams:
    """Validate the /v1/extract-colors form fields."""
    parsed_max = parse_int(
        "maxColors", max_colors, minimum=1, maximum=10, range_message="maxColors must be between 1 and 10"
    )
    parsed_threshold = parse_float(
        "multicolorThreshold",
        multicolor_threshold,
        minimum=0,
        maximum=1,
        range_message="multicolorThreshold must be between 0 and 1",
    )
    return ColorParams(
        max_colors=DEFAULT_MAX_COLORS if parsed_max is None else parsed_max,
        multicolor_threshold=DEFAULT_MULTICOLOR_THRESHOLD if parsed_threshold is None else parsed_threshold,
    )
