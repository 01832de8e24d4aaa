"""Pillow adapters: decode, resize, crop, encode.

All functions are synchronous and CPU-bound; the routes run them through
:class:`~imageedit.workers.WorkerPool`.
"""

from __future__ import annotations

import io
import logging
import warnings
from dataclasses import dataclass

from PIL import Image, ImageColor, ImageOps, UnidentifiedImageError

from imageedit.errors import ImageProcessingError, InvalidInput, PayloadTooLarge
from imageedit.imaging.geometry import (
    AspectSpec,
    FitMode,
    ImageBounds,
    Rectangle,
    rectangle_to_resolved,
    resolve_aspect_crop,
    resolve_resize_dimensions,
)

logger = logging.getLogger(__name__)

_PIL_FORMATS: dict[str, str] = {"jpeg": "JPEG", "png": "PNG", "webp": "WEBP"}


@dataclass(frozen=True)
class EncodedImage:
    """Encoded output bytes and their MIME type."""

    data: bytes
    format: str
    width: int
    height: int

    @property
    def media_type(self) -> str:
        return f"image/{self.format}"


def normalize_format(fmt: str | None) -> str:
    """Map a requested format name to a Pillow-backed one; ``None`` → jpeg."""
    if fmt is None or fmt in ("jpg", "jpeg"):
        return "jpeg"
    if fmt not in _PIL_FORMATS:
        raise ValueError(f"Unsupported output format: {fmt}")
    return fmt


def format_for_upload(requested: str | None, upload_media_type: str | None) -> str:
    """Pick the output format: the requested one, else follow the upload."""
    if requested is not None:
        return normalize_format(requested)
    media_type = (upload_media_type or "").lower()
    if "png" in media_type:
        return "png"
    if "webp" in media_type:
        return "webp"
    return "jpeg"


def decode_image(data: bytes, max_pixels: int) -> Image.Image:
    """Decode upload bytes into a fully loaded Pillow image.

    Raises:
        InvalidInput: If the bytes are not a decodable image.
        PayloadTooLarge: If the image has more than ``max_pixels`` pixels.
    """
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", Image.DecompressionBombWarning)
            image = Image.open(io.BytesIO(data))
            width, height = image.size
            if width * height > max_pixels:
                raise PayloadTooLarge(f"Image exceeds the maximum of {max_pixels} pixels")
            image.load()
    except Image.DecompressionBombError:
        raise PayloadTooLarge(f"Image exceeds the maximum of {max_pixels} pixels") from None
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        logger.info("Could not decode upload: %s", exc)
        raise InvalidInput("file", "File could not be decoded as an image") from None
    return image


def image_bounds(image: Image.Image) -> ImageBounds:
    return ImageBounds(width=image.width, height=image.height)


def _has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA", "PA") or (image.mode == "P" and "transparency" in image.info)


def flatten(image: Image.Image, background: str) -> Image.Image:
    """Composite ``image`` onto an opaque ``background`` colour, returning RGB."""
    if not _has_alpha(image):
        return image.convert("RGB") if image.mode != "L" else image
    rgba = image.convert("RGBA")
    base = Image.new("RGBA", rgba.size, ImageColor.getcolor(background, "RGBA"))
    return Image.alpha_composite(base, rgba).convert("RGB")


def encode_image(
    image: Image.Image,
    fmt: str,
    *,
    quality: int = 80,
    background: str = "#ffffff",
) -> EncodedImage:
    """Encode ``image`` as ``fmt``; JPEG output is flattened onto ``background``."""
    fmt = normalize_format(fmt)
    buffer = io.BytesIO()
    if fmt == "jpeg":
        out = flatten(image, background)
        if out.mode not in ("RGB", "L"):
            out = out.convert("RGB")
        out.save(buffer, format="JPEG", quality=quality)
    elif fmt == "webp":
        out = image if image.mode in ("RGB", "RGBA") else image.convert("RGBA" if _has_alpha(image) else "RGB")
        out.save(buffer, format="WEBP", quality=quality)
    else:
        out = image if image.mode in ("1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16") else image.convert("RGBA")
        out.save(buffer, format="PNG")
    return EncodedImage(data=buffer.getvalue(), format=fmt, width=out.width, height=out.height)


def resize_image(
    image: Image.Image,
    *,
    width: int | None,
    height: int | None,
    fit: FitMode,
    background: str | None = None,
) -> Image.Image:
    """Resize following the five fit modes; enlargement is allowed."""
    bounds = image_bounds(image)
    scaled_size = resolve_resize_dimensions(bounds, width, height, fit)

    if width is None or height is None or fit in (FitMode.FILL, FitMode.INSIDE, FitMode.OUTSIDE):
        return image.resize(scaled_size, Image.Resampling.LANCZOS)

    if fit == FitMode.COVER:
        return ImageOps.fit(image, (width, height), method=Image.Resampling.LANCZOS)

    # contain: letterbox onto the background colour
    source = image if image.mode in ("RGB", "RGBA") else image.convert("RGBA" if _has_alpha(image) else "RGB")
    fill = ImageColor.getcolor(background or "#000000", source.mode)
    return ImageOps.pad(source, (width, height), method=Image.Resampling.LANCZOS, color=fill)


def crop_image(image: Image.Image, mode: Rectangle | AspectSpec) -> Image.Image:
    """Crop to an explicit rectangle or to an aspect window.

    Raises:
        ImageProcessingError: If an explicit rectangle reaches outside the image.
    """
    bounds = image_bounds(image)
    if isinstance(mode, Rectangle):
        region = rectangle_to_resolved(mode)
        if region.left + region.width > bounds.width or region.top + region.height > bounds.height:
            raise ImageProcessingError(
                f"extract area {region.box} is outside the {bounds.width}x{bounds.height} image"
            )
    else:
        region = resolve_aspect_crop(mode, bounds)
    return image.crop(region.box)
