"""Model manager: locate, download and open the classification ONNX model.

Resolves the model file (downloading it from HuggingFace when a repo is
configured and the file is missing) and builds InferenceSessions with the
execution providers and threading options from settings.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from imageedit.config import Settings

logger = logging.getLogger(__name__)


class ModelNotFoundError(FileNotFoundError):
    """The classification model is neither on disk nor downloadable."""


def is_ir_version_error(exc: BaseException) -> bool:
    """True when onnxruntime rejected a model for its IR version."""
    return "IR version" in str(exc)


class ModelManager:
    """Resolves the classification model file and opens sessions on it."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    @property
    def providers(self) -> list[str | tuple[str, dict[str, object]]]:
        return self._providers

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self) -> Path:
        """Return the local model path, downloading it if necessary.

        Raises:
            ModelNotFoundError: If the file is missing and no repo is configured.
        """
        path = Path(self._settings.classification_model_path)
        if path.exists():
            return path

        repo_id = self._settings.classification_model_repo
        if repo_id is None:
            raise ModelNotFoundError(
                f'Classification model not found at "{path}". Add the ONNX model file, '
                "set IMAGEEDIT_CLASSIFICATION_MODEL_PATH, or set IMAGEEDIT_CLASSIFICATION_MODEL_REPO "
                "to download it."
            )

        self._models_dir.mkdir(parents=True, exist_ok=True)
        downloaded = Path(
            hf_hub_download(
                repo_id=repo_id,
                filename=self._settings.classification_model_filename,
                local_dir=str(self._models_dir),
            )
        )
        logger.info("Downloaded classification model from %s to %s", repo_id, downloaded)
        return downloaded

    def create_session(self, model_path: Path) -> InferenceSession:
        """Open an InferenceSession; raises whatever onnxruntime raises."""
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )
        logger.info("Loaded classification session from %s", model_path)
        return session

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
