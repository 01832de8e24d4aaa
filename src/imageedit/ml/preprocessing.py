"""Image-to-tensor preprocessing for the clothing classifier."""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from PIL import Image, ImageOps

INPUT_SIZE = 224


def image_to_tensor(image: Image.Image, size: int = INPUT_SIZE) -> NDArray[np.float32]:
    """Cover-resize to ``size``x``size`` RGB and return a ``[1, 3, H, W]`` tensor in [0, 1]."""
    rgb = ImageOps.fit(image.convert("RGB"), (size, size), method=Image.Resampling.BILINEAR)
    pixels = np.asarray(rgb, dtype=np.float32) / 255.0
    return np.ascontiguousarray(pixels.transpose(2, 0, 1)[np.newaxis, ...])


def softmax(logits: NDArray[np.floating]) -> NDArray[np.float64]:
    values = np.asarray(logits, dtype=np.float64).reshape(-1)
    exp = np.exp(values - values.max())
    return exp / exp.sum()
