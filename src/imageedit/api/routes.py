"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, TypeVar

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from fastapi.responses import HTMLResponse, Response

from imageedit.api.middleware import enforce_rate_limit, verify_api_key
from imageedit.api.schemas import (
    ClassifyClothingResponse,
    ErrorResponse,
    ExtractColorsResponse,
    HealthResponse,
    PaletteInfo,
    SourceResponse,
    SwatchInfo,
)
from imageedit.api.uploads import ALLOWED_IMAGE_TYPES, check_media_type, read_upload, require_file
from imageedit.api.validation import (
    ColorParams,
    CropParams,
    ResizeParams,
    validate_colors,
    validate_crop,
    validate_remove_background,
    validate_resize,
)
from imageedit.config import LICENSE, PROJECT_NAME, VERSION
from imageedit.errors import ApiError, ProcessingFailed
from imageedit.imaging.colors import PaletteSummary, extract_colors
from imageedit.imaging.operations import (
    EncodedImage,
    crop_image,
    decode_image,
    encode_image,
    format_for_upload,
    resize_image,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from imageedit.api.validation import RemoveBackgroundParams
    from imageedit.config import Settings
    from imageedit.imaging.background import BackgroundRemover
    from imageedit.ml.classifier import ClassificationResult, ClothingClassifier
    from imageedit.workers import WorkerPool

logger = logging.getLogger(__name__)

T = TypeVar("T")

meta_router = APIRouter(dependencies=[Depends(enforce_rate_limit)])
router = APIRouter(prefix="/v1", dependencies=[Depends(enforce_rate_limit), Depends(verify_api_key)])

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": ErrorResponse},
    status.HTTP_429_TOO_MANY_REQUESTS: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
}

_IMAGE_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_200_OK: {"content": {"image/jpeg": {}, "image/png": {}, "image/webp": {}}},
    **_ERROR_RESPONSES,
}

_LANDING_PAGE = (
    '<!doctype html><html lang="en"><head><meta charset="utf-8"><title>imageedit</title></head>'
    "<body><h1>imageedit</h1></body></html>"
)

FormField = Annotated[str | None, Form()]
UploadField = Annotated[UploadFile | None, File()]


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_worker_pool(request: Request) -> WorkerPool:
    pool: WorkerPool = request.app.state.worker_pool
    return pool


async def _run_blocking(request: Request, failure_message: str, func: Callable[..., T], *args: object) -> T:
    """Run ``func`` on the worker pool; unexpected errors become 500s."""
    try:
        return await _get_worker_pool(request).run(func, *args)
    except ApiError:
        raise
    except Exception:
        logger.exception("%s (%s %s)", failure_message, request.method, request.url.path)
        raise ProcessingFailed(failure_message) from None


def _image_response(result: EncodedImage) -> Response:
    return Response(content=result.data, media_type=result.media_type)


# ---------------------------------------------------------------------------
# Blocking workers
# ---------------------------------------------------------------------------


def _resize_sync(data: bytes, params: ResizeParams, output_format: str, max_pixels: int) -> EncodedImage:
    image = decode_image(data, max_pixels)
    resized = resize_image(
        image,
        width=params.width,
        height=params.height,
        fit=params.fit,
        background=params.background,
    )
    return encode_image(resized, output_format, quality=params.quality, background=params.background or "#ffffff")


def _crop_sync(data: bytes, params: CropParams, output_format: str, max_pixels: int) -> EncodedImage:
    image = decode_image(data, max_pixels)
    cropped = crop_image(image, params.mode)
    return encode_image(cropped, output_format, quality=params.quality)


def _remove_background_sync(
    remover: BackgroundRemover, data: bytes, params: RemoveBackgroundParams, max_pixels: int
) -> EncodedImage:
    return remover.process(decode_image(data, max_pixels), params)


def _extract_colors_sync(data: bytes, params: ColorParams, max_pixels: int) -> PaletteSummary | None:
    return extract_colors(decode_image(data, max_pixels), params.max_colors, params.multicolor_threshold)


def _classify_sync(classifier: ClothingClassifier, data: bytes, max_pixels: int) -> ClassificationResult:
    return classifier.classify(decode_image(data, max_pixels))


# ---------------------------------------------------------------------------
# Meta routes
# ---------------------------------------------------------------------------


@meta_router.get("/", response_class=HTMLResponse, include_in_schema=False)
async def root() -> HTMLResponse:
    """Minimal landing page."""
    return HTMLResponse(_LANDING_PAGE)


@meta_router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    pool = _get_worker_pool(request)
    return HealthResponse(ok=True, concurrent_requests=pool.active_count, queue_depth=pool.queue_depth)


@meta_router.get("/source", response_model=SourceResponse, summary="Source code disclosure")
async def source(request: Request) -> SourceResponse:
    """Return where the source of this running service can be obtained."""
    settings = _get_settings(request)
    return SourceResponse(
        name=PROJECT_NAME,
        version=VERSION,
        commit=settings.git_commit_sha,
        source=settings.source_code_url,
        license=LICENSE,
    )


# ---------------------------------------------------------------------------
# /v1 routes
# ---------------------------------------------------------------------------


@router.post("/resize", response_class=Response, responses=_IMAGE_RESPONSES, summary="Resize an image")
async def resize(
    request: Request,
    file: UploadField = None,
    width: FormField = None,
    height: FormField = None,
    fit: FormField = None,
    format: FormField = None,  # noqa: A002
    quality: FormField = None,
    background: FormField = None,
) -> Response:
    """Resize an image with cover/contain/fill/inside/outside fit."""
    upload = require_file(file)
    params = validate_resize(
        width=width, height=height, fit=fit, format=format, quality=quality, background=background
    )
    media_type = check_media_type(upload)
    settings = _get_settings(request)
    data = await read_upload(upload, settings.max_file_size)

    output_format = format_for_upload(params.format, media_type)
    result = await _run_blocking(
        request, "Failed to process image", _resize_sync, data, params, output_format, settings.max_image_pixels
    )
    return _image_response(result)


@router.post("/crop", response_class=Response, responses=_IMAGE_RESPONSES, summary="Crop an image")
async def crop(
    request: Request,
    file: UploadField = None,
    x: FormField = None,
    y: FormField = None,
    width: FormField = None,
    height: FormField = None,
    aspect: FormField = None,
    gravity: FormField = None,
    format: FormField = None,  # noqa: A002
    quality: FormField = None,
) -> Response:
    """Crop to an explicit rectangle or to an aspect ratio anchored by gravity."""
    upload = require_file(file)
    params = validate_crop(
        x=x, y=y, width=width, height=height, aspect=aspect, gravity=gravity, format=format, quality=quality
    )
    media_type = check_media_type(upload)
    settings = _get_settings(request)
    data = await read_upload(upload, settings.max_file_size)

    output_format = format_for_upload(params.format, media_type)
    result = await _run_blocking(
        request, "Failed to process image", _crop_sync, data, params, output_format, settings.max_image_pixels
    )
    return _image_response(result)


@router.post("/remove-bg", response_class=Response, responses=_IMAGE_RESPONSES, summary="Remove the background")
async def remove_background(
    request: Request,
    file: UploadField = None,
    output: FormField = None,
    format: FormField = None,  # noqa: A002
    feather: FormField = None,
    threshold: FormField = None,
    background: FormField = None,
) -> Response:
    """Return the foreground cutout, or the segmentation mask with ``output=mask``."""
    upload = require_file(file)
    params = validate_remove_background(
        output=output, format=format, feather=feather, threshold=threshold, background=background
    )
    check_media_type(upload, ALLOWED_IMAGE_TYPES)
    settings = _get_settings(request)
    data = await read_upload(upload, settings.max_file_size)

    remover: BackgroundRemover = request.app.state.background_remover
    result = await _run_blocking(
        request,
        "Failed to remove image background",
        _remove_background_sync,
        remover,
        data,
        params,
        settings.max_image_pixels,
    )
    return _image_response(result)


@router.post(
    "/extract-colors",
    response_model=ExtractColorsResponse,
    responses=_ERROR_RESPONSES,
    summary="Extract prominent colours",
)
async def extract_colors_route(
    request: Request,
    file: UploadField = None,
    max_colors: Annotated[str | None, Form(alias="maxColors")] = None,
    multicolor_threshold: Annotated[str | None, Form(alias="multicolorThreshold")] = None,
) -> ExtractColorsResponse:
    """Return named prominent colours and the swatch breakdown."""
    upload = require_file(file)
    params = validate_colors(max_colors=max_colors, multicolor_threshold=multicolor_threshold)
    check_media_type(upload, ALLOWED_IMAGE_TYPES)
    settings = _get_settings(request)
    data = await read_upload(upload, settings.max_file_size)

    summary = await _run_blocking(
        request, "Failed to extract colors from image", _extract_colors_sync, data, params, settings.max_image_pixels
    )
    if summary is None:
        return ExtractColorsResponse(colors=[], palette=None)

    swatches = [
        SwatchInfo(
            hex=swatch.hex,
            rgb=list(swatch.rgb),
            colorName=name,
            population=swatch.population,
            percentage=percentage,
        )
        for swatch, name, percentage in zip(summary.swatches, summary.names, summary.percentages, strict=True)
    ]
    return ExtractColorsResponse(
        colors=summary.colors,
        palette=PaletteInfo(
            swatches=swatches,
            totalPopulation=summary.total_population,
            isMulticolor=summary.is_multicolor,
        ),
    )


@router.post(
    "/classify-clothing",
    response_model=ClassifyClothingResponse,
    responses=_ERROR_RESPONSES,
    summary="Classify a clothing item",
)
async def classify_clothing(request: Request, file: UploadField = None) -> ClassifyClothingResponse:
    """Classify a clothing photo as tops, bottoms, shoes, outerwear or accessories."""
    upload = require_file(file)
    check_media_type(upload, ALLOWED_IMAGE_TYPES)
    settings = _get_settings(request)
    data = await read_upload(upload, settings.max_file_size)

    classifier: ClothingClassifier = request.app.state.classifier
    result = await _run_blocking(
        request, "Failed to classify clothing item", _classify_sync, classifier, data, settings.max_image_pixels
    )
    return ClassifyClothingResponse(category=result.category, confidence=result.confidence)  # type: ignore[arg-type]
