"""Background removal via rembg.

The rembg session wraps an ONNX segmentation model and is expensive to build,
so :class:`BackgroundRemover` creates it once on first use and shares it
read-only across requests.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from PIL import Image, ImageFilter
from rembg import new_session, remove

from imageedit.imaging.operations import EncodedImage, encode_image

if TYPE_CHECKING:
    from rembg.sessions.base import BaseSession

    from imageedit.api.validation import RemoveBackgroundParams
    from imageedit.config import Settings

logger = logging.getLogger(__name__)


def feather_alpha(cutout: Image.Image, radius: float) -> Image.Image:
    """Blur only the alpha channel of an RGBA cutout."""
    rgba = cutout.convert("RGBA")
    red, green, blue, alpha = rgba.split()
    softened = alpha.filter(ImageFilter.GaussianBlur(radius=radius))
    return Image.merge("RGBA", (red, green, blue, softened))


def threshold_mask(mask: Image.Image, threshold: int) -> Image.Image:
    """Binarize a grayscale mask: ``>= threshold`` becomes 255, the rest 0."""
    return mask.convert("L").point(lambda value: 255 if value >= threshold else 0)


class BackgroundRemover:
    """Lazily builds one rembg session and runs cutout/mask requests on it."""

    def __init__(self, settings: Settings) -> None:
        self._model_name = settings.bg_model
        self._lock = threading.Lock()
        self._session: BaseSession | None = None

    @property
    def loaded(self) -> bool:
        return self._session is not None

    def get_session(self) -> BaseSession:
        """Return the shared session, creating it on the first call."""
        session = self._session
        if session is not None:
            return session
        with self._lock:
            if self._session is None:
                logger.info("Loading background removal model %s", self._model_name)
                self._session = new_session(self._model_name)
                logger.info("Background removal model %s ready", self._model_name)
            return self._session

    def segment(self, image: Image.Image, *, mask: bool) -> Image.Image:
        """Return the RGBA cutout, or the grayscale mask when ``mask`` is set."""
        result = remove(image, session=self.get_session(), only_mask=mask)
        if not isinstance(result, Image.Image):
            raise TypeError(f"rembg returned {type(result).__name__}, expected a PIL image")
        return result

    def process(self, image: Image.Image, params: RemoveBackgroundParams) -> EncodedImage:
        """Run segmentation and post-processing, then encode."""
        if params.output == "mask":
            result = self.segment(image, mask=True).convert("L")
            if params.threshold is not None:
                result = threshold_mask(result, params.threshold)
        else:
            result = self.segment(image, mask=False)
            if params.feather:
                result = feather_alpha(result, params.feather)

        return encode_image(result, params.format, quality=80, background=params.background)
