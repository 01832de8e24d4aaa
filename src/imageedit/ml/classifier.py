"""Clothing classification.

Two interchangeable backends run the same MobileNet-style ONNX model:

* :class:`OnnxClassifierBackend` runs it in-process with onnxruntime.
* :class:`SubprocessClassifierBackend` shells out to a Python interpreter
  that has a runtime able to load the model. It exists for models whose IR
  version the in-process runtime rejects.

:func:`probe_backend` picks one once; :class:`ClothingClassifier` runs that
probe lazily, under a lock, the first time a request needs it.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import numpy as np

from imageedit.ml.model_manager import ModelManager, is_ir_version_error
from imageedit.ml.preprocessing import image_to_tensor, softmax

if TYPE_CHECKING:
    from collections.abc import Callable

    from onnxruntime import InferenceSession
    from PIL import Image

    from imageedit.config import Settings

logger = logging.getLogger(__name__)

CATEGORIES: tuple[str, ...] = ("tops", "bottoms", "shoes", "outerwear", "accessories")

CLASSIFY_MODULE = "imageedit.ml.classify_image"


class ClassifierUnavailableError(RuntimeError):
    """No classifier backend could be set up."""


@dataclass(frozen=True)
class ClassificationResult:
    """Predicted clothing category with its softmax probability."""

    category: str
    confidence: float


def result_from_logits(logits: np.ndarray) -> ClassificationResult:
    """Softmax + argmax over the model output, mapped onto :data:`CATEGORIES`."""
    probabilities = softmax(logits)
    index = int(np.argmax(probabilities))
    if index >= len(CATEGORIES):
        raise ValueError(f"Invalid category index: {index}")
    return ClassificationResult(category=CATEGORIES[index], confidence=float(probabilities[index]))


class ClassifierBackend(Protocol):
    """Protocol for a loaded classifier."""

    @property
    def name(self) -> str:
        """Short backend identifier, e.g. ``"onnx"``."""
        ...

    def classify(self, image: Image.Image) -> ClassificationResult:
        """Classify a decoded image."""
        ...


class OnnxClassifierBackend:
    """In-process onnxruntime inference."""

    name = "onnx"

    def __init__(self, session: InferenceSession) -> None:
        self._session = session
        self._input_name = session.get_inputs()[0].name
        self._output_name = session.get_outputs()[0].name

    def classify(self, image: Image.Image) -> ClassificationResult:
        tensor = image_to_tensor(image)
        outputs = self._session.run([self._output_name], {self._input_name: tensor})
        return result_from_logits(np.asarray(outputs[0]))


class SubprocessClassifierBackend:
    """Runs one classification per request in a separate Python process."""

    name = "subprocess"

    def __init__(self, command: list[str], timeout: float) -> None:
        self._command = command
        self._timeout = timeout

    @property
    def command(self) -> list[str]:
        return list(self._command)

    def classify(self, image: Image.Image) -> ClassificationResult:
        fd, tmp_name = tempfile.mkstemp(prefix="classify-", suffix=".png")
        try:
            with os.fdopen(fd, "wb") as handle:
                image.save(handle, format="PNG")

            completed = subprocess.run(  # noqa: S603
                [*self._command, tmp_name],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        finally:
            Path(tmp_name).unlink(missing_ok=True)

        if completed.returncode != 0:
            raise RuntimeError(f"Python classification error: {completed.stderr.strip()}")

        result = json.loads(completed.stdout.strip())
        category = result.get("category")
        if category not in CATEGORIES:
            raise RuntimeError("Invalid Python classification response")
        return ClassificationResult(category=category, confidence=float(result.get("confidence", 0.0)))


# ---------------------------------------------------------------------------
# Backend selection
# ---------------------------------------------------------------------------


def resolve_python_bin(settings: Settings) -> str:
    """Configured interpreter, else a venv beside the script, else this one."""
    if settings.classifier_python_bin:
        return settings.classifier_python_bin
    if settings.classifier_script:
        venv_python = Path(settings.classifier_script).parent / "venv" / "bin" / "python3"
        if venv_python.exists():
            return str(venv_python)
    return sys.executable


def build_subprocess_backend(settings: Settings, model_path: Path) -> SubprocessClassifierBackend:
    """Check the interpreter runs and build the subprocess backend."""
    python_bin = resolve_python_bin(settings)
    if settings.classifier_script:
        script = Path(settings.classifier_script)
        if not script.exists():
            raise ClassifierUnavailableError(f'Python fallback script not found at "{script}"')
        command = [python_bin, str(script)]
    else:
        command = [python_bin, "-m", CLASSIFY_MODULE, "--model", str(model_path)]

    try:
        version = subprocess.run(  # noqa: S603
            [python_bin, "--version"],
            capture_output=True,
            text=True,
            timeout=10,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        raise ClassifierUnavailableError(f"Python fallback not available: {exc}") from exc

    logger.info("Using Python %s for subprocess classification", (version.stdout or version.stderr).strip())
    return SubprocessClassifierBackend(command, timeout=settings.classifier_timeout)


def probe_backend(settings: Settings, model_manager: ModelManager | None = None) -> ClassifierBackend:
    """Select and build a classifier backend.

    ``auto`` tries an in-process session and falls back to the subprocess
    backend only when the runtime rejects the model's IR version.

    Raises:
        ClassifierUnavailableError: If no backend can be built.
    """
    manager = model_manager or ModelManager(settings)
    try:
        model_path = manager.ensure_downloaded()
    except FileNotFoundError as exc:
        raise ClassifierUnavailableError(str(exc)) from exc

    if settings.classifier_backend == "subprocess":
        return build_subprocess_backend(settings, model_path)

    try:
        session = manager.create_session(model_path)
    except Exception as exc:
        if settings.classifier_backend == "auto" and is_ir_version_error(exc):
            logger.warning("onnxruntime cannot load %s (%s); falling back to a Python subprocess", model_path, exc)
            return build_subprocess_backend(settings, model_path)
        raise ClassifierUnavailableError(f"Failed to load classification model: {exc}") from exc

    return OnnxClassifierBackend(session)


class ClothingClassifier:
    """Holds the lazily probed backend shared by all requests."""

    def __init__(
        self,
        settings: Settings,
        probe: Callable[[Settings], ClassifierBackend] = probe_backend,
    ) -> None:
        self._settings = settings
        self._probe = probe
        self._lock = threading.Lock()
        self._backend: ClassifierBackend | None = None

    @property
    def backend_name(self) -> str | None:
        backend = self._backend
        return backend.name if backend is not None else None

    def get_backend(self) -> ClassifierBackend:
        """Return the backend, probing for it on the first call only."""
        backend = self._backend
        if backend is not None:
            return backend
        with self._lock:
            if self._backend is None:
                self._backend = self._probe(self._settings)
                logger.info("Clothing classifier ready (backend=%s)", self._backend.name)
            return self._backend

    def classify(self, image: Image.Image) -> ClassificationResult:
        return self.get_backend().classify(image)
