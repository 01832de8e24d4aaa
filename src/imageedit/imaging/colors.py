"""Dominant-colour extraction and naming.

k-means over the downscaled pixels gives the swatches; each swatch is named
by its nearest entry in a small basic palette.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from PIL import Image
from sklearn.cluster import KMeans

from imageedit.imaging.geometry import round_half_up

SAMPLE_SIZE = (200, 200)
MIN_CLUSTERS = 6
MULTICOLOR_LABEL = "multicolor"

BASIC_COLORS: dict[str, tuple[int, int, int]] = {
    "black": (0, 0, 0),
    "blue": (0, 0, 255),
    "brown": (165, 42, 42),
    "gray": (128, 128, 128),
    "green": (0, 128, 0),
    "orange": (255, 165, 0),
    "pink": (255, 192, 203),
    "purple": (128, 0, 128),
    "red": (255, 0, 0),
    "white": (255, 255, 255),
    "yellow": (255, 255, 0),
}


@dataclass(frozen=True)
class Swatch:
    rgb: tuple[int, int, int]
    population: int

    @property
    def hex(self) -> str:
        return "#{:02x}{:02x}{:02x}".format(*self.rgb)


@dataclass(frozen=True)
class PaletteSummary:
    """Named colours plus per-swatch population shares."""

    colors: list[str]
    swatches: list[Swatch]
    names: list[str]
    percentages: list[int]
    total_population: int
    is_multicolor: bool


def color_name(rgb: tuple[int, int, int]) -> str:
    """Nearest basic colour name by squared RGB distance."""
    best_name = ""
    best_distance = float("inf")
    for name, value in BASIC_COLORS.items():
        distance = sum((a - b) ** 2 for a, b in zip(rgb, value, strict=True))
        if distance < best_distance:
            best_distance = distance
            best_name = name
    return best_name


def extract_swatches(image: Image.Image, max_colors: int) -> list[Swatch]:
    """Cluster the image's pixels and return the ``max_colors`` largest swatches."""
    sample = image.convert("RGB")
    sample.thumbnail(SAMPLE_SIZE)
    pixels = np.asarray(sample, dtype=np.float64).reshape(-1, 3)
    if pixels.size == 0:
        return []

    unique = np.unique(pixels, axis=0)
    n_clusters = min(max(max_colors, MIN_CLUSTERS), len(unique))
    kmeans = KMeans(n_clusters=n_clusters, random_state=42, n_init=4)
    labels = kmeans.fit_predict(pixels)
    counts = np.bincount(labels, minlength=n_clusters)

    swatches = [
        Swatch(
            rgb=tuple(int(round(channel)) for channel in np.clip(center, 0, 255)),  # type: ignore[arg-type]
            population=int(count),
        )
        for center, count in zip(kmeans.cluster_centers_, counts, strict=True)
        if count > 0
    ]
    swatches.sort(key=lambda swatch: swatch.population, reverse=True)
    return swatches[:max_colors]


def is_multicolor(populations: list[int], threshold: float) -> bool:
    """At least three swatches, each holding ``>= threshold`` of the total."""
    total = sum(populations)
    if len(populations) < 3 or total <= 0:
        return False
    return all(population / total >= threshold for population in populations)


def summarize(swatches: list[Swatch], multicolor_threshold: float) -> PaletteSummary | None:
    if not swatches:
        return None

    names = [color_name(swatch.rgb) for swatch in swatches]
    total = sum(swatch.population for swatch in swatches)
    populations = [swatch.population for swatch in swatches]
    multicolor = is_multicolor(populations, multicolor_threshold)

    colors = list(dict.fromkeys(names))
    if multicolor and MULTICOLOR_LABEL not in colors:
        colors.append(MULTICOLOR_LABEL)

    return PaletteSummary(
        colors=colors,
        swatches=swatches,
        names=names,
        percentages=[round_half_up(100 * population / total) for population in populations],
        total_population=total,
        is_multicolor=multicolor,
    )


def extract_colors(image: Image.Image, max_colors: int, multicolor_threshold: float) -> PaletteSummary | None:
    """Extract and summarize the dominant colours of ``image``."""
    return summarize(extract_swatches(image, max_colors), multicolor_threshold)
