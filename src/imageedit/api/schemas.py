"""Pydantic response schemas for the imageedit API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    ok: bool = True
    concurrent_requests: int
    queue_depth: int


class SourceResponse(BaseModel):
    """Where to obtain the running service's source code."""

    name: str
    version: str
    commit: str | None = None
    source: str
    license: str


class SwatchInfo(BaseModel):
    """One extracted colour with its share of the sampled pixels."""

    hex: str = Field(description="Hex colour, e.g. '#aa3300'")
    rgb: list[int]
    colorName: str  # noqa: N815
    population: int
    percentage: int = Field(ge=0, le=100)


class PaletteInfo(BaseModel):
    swatches: list[SwatchInfo]
    totalPopulation: int  # noqa: N815
    isMulticolor: bool  # noqa: N815


class ExtractColorsResponse(BaseModel):
    """Response for the colour extraction endpoint."""

    colors: list[str] = Field(description='Prominent colour names, e.g. ["red", "blue", "multicolor"]')
    palette: PaletteInfo | None


class ClassifyClothingResponse(BaseModel):
    """Response for the clothing classification endpoint."""

    category: Literal["tops", "bottoms", "shoes", "outerwear", "accessories"]
    confidence: float = Field(ge=0.0, le=1.0)


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: ErrorDetail
