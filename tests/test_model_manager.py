"""Tests for the ONNX model manager."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from imageedit.config import Settings
from imageedit.ml.model_manager import ModelManager, ModelNotFoundError, is_ir_version_error

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": "/tmp/imageedit_test_models",
        "classification_model_path": "/tmp/imageedit_test_models/absent/mobilenet-fashion-5cat.onnx",
        "classification_model_repo": None,
        "classification_model_filename": "mobilenet-fashion-5cat.onnx",
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# ModelManager tests
# ---------------------------------------------------------------------------


class TestModelManager:
    @patch("imageedit.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_skips_existing(self, mock_download: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "model.onnx"
        model_file.touch()
        mgr = ModelManager(_make_settings(classification_model_path=str(model_file), models_dir=str(tmp_path)))

        path = mgr.ensure_downloaded()

        mock_download.assert_not_called()
        assert path == model_file

    @patch("imageedit.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_calls_hf_hub_download(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "mobilenet-fashion-5cat.onnx")
        settings = _make_settings(
            models_dir=str(tmp_path),
            classification_model_path=str(tmp_path / "missing.onnx"),
            classification_model_repo="acme/fashion-classifier",
        )
        mgr = ModelManager(settings)

        path = mgr.ensure_downloaded()

        mock_download.assert_called_once_with(
            repo_id="acme/fashion-classifier",
            filename="mobilenet-fashion-5cat.onnx",
            local_dir=str(tmp_path),
        )
        assert path == tmp_path / "mobilenet-fashion-5cat.onnx"

    @patch("imageedit.ml.model_manager.hf_hub_download")
    def test_missing_without_repo_raises(self, mock_download: MagicMock) -> None:
        mgr = ModelManager(_make_settings())

        with pytest.raises(ModelNotFoundError, match="IMAGEEDIT_CLASSIFICATION_MODEL_PATH"):
            mgr.ensure_downloaded()
        mock_download.assert_not_called()

    def test_model_not_found_is_file_not_found(self) -> None:
        assert issubclass(ModelNotFoundError, FileNotFoundError)

    @patch("imageedit.ml.model_manager.InferenceSession")
    def test_create_session_uses_providers(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        mock_session = MagicMock()
        mock_session_cls.return_value = mock_session
        mgr = ModelManager(_make_settings())

        session = mgr.create_session(tmp_path / "model.onnx")

        assert session is mock_session
        args, kwargs = mock_session_cls.call_args
        assert args == (str(tmp_path / "model.onnx"),)
        assert kwargs["providers"] == ["CPUExecutionProvider"]

    @patch("imageedit.ml.model_manager.InferenceSession", side_effect=RuntimeError("bad model"))
    def test_create_session_propagates_errors(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        mgr = ModelManager(_make_settings())
        with pytest.raises(RuntimeError, match="bad model"):
            mgr.create_session(tmp_path / "model.onnx")

    def test_provider_building_cpu(self) -> None:
        mgr = ModelManager(_make_settings(device="cpu"))
        assert mgr.providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self) -> None:
        mgr = ModelManager(_make_settings(device="cuda"))
        assert len(mgr.providers) == 2
        provider_name, provider_opts = mgr.providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["device_id"] == 0
        assert mgr.providers[1] == "CPUExecutionProvider"

    def test_provider_building_openvino(self) -> None:
        mgr = ModelManager(_make_settings(device="openvino"))
        assert len(mgr.providers) == 2
        provider_name, _provider_opts = mgr.providers[0]  # type: ignore[misc]
        assert provider_name == "OpenVINOExecutionProvider"
        assert mgr.providers[1] == "CPUExecutionProvider"


class TestIrVersionError:
    def test_detects_ir_version_message(self) -> None:
        exc = RuntimeError("Unsupported model IR version: 10, max supported IR version: 9")
        assert is_ir_version_error(exc) is True

    def test_other_errors(self) -> None:
        assert is_ir_version_error(RuntimeError("Protobuf parsing failed")) is False
