"""Tests for clothing classification backends and their selection."""

from __future__ import annotations

import json
import subprocess
import sys
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from PIL import Image

from imageedit.config import Settings
from imageedit.ml import classify_image
from imageedit.ml.classifier import (
    CATEGORIES,
    CLASSIFY_MODULE,
    ClassificationResult,
    ClassifierUnavailableError,
    ClothingClassifier,
    OnnxClassifierBackend,
    SubprocessClassifierBackend,
    probe_backend,
    resolve_python_bin,
    result_from_logits,
)
from imageedit.ml.preprocessing import image_to_tensor, softmax

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(tmp_path: Path, **overrides: object) -> Settings:
    model_path = tmp_path / "model.onnx"
    model_path.write_bytes(b"onnx")
    defaults: dict[str, object] = {
        "classification_model_path": str(model_path),
        "models_dir": str(tmp_path),
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def _fake_session(logits: list[float]) -> MagicMock:
    session = MagicMock()
    session.get_inputs.return_value = [MagicMock(name="input")]
    session.get_inputs.return_value[0].name = "input"
    session.get_outputs.return_value = [MagicMock()]
    session.get_outputs.return_value[0].name = "logits"
    session.run.return_value = [np.array([logits], dtype=np.float32)]
    return session


class _IrVersionError(Exception):
    pass


# ---------------------------------------------------------------------------
# Preprocessing / postprocessing
# ---------------------------------------------------------------------------


class TestTensors:
    def test_tensor_shape_and_range(self) -> None:
        tensor = image_to_tensor(Image.new("RGBA", (640, 320), (255, 0, 0, 10)))
        assert tensor.shape == (1, 3, 224, 224)
        assert tensor.dtype == np.float32
        assert tensor[0, 0].max() == pytest.approx(1.0)
        assert tensor[0, 1].max() == pytest.approx(0.0)

    def test_softmax_sums_to_one(self) -> None:
        probabilities = softmax(np.array([1.0, 2.0, 3.0]))
        assert probabilities.sum() == pytest.approx(1.0)
        assert int(np.argmax(probabilities)) == 2

    def test_result_from_logits(self) -> None:
        result = result_from_logits(np.array([[0.1, 0.2, 5.0, 0.0, -1.0]]))
        assert result.category == "shoes"
        assert 0.9 < result.confidence <= 1.0

    def test_result_rejects_extra_classes(self) -> None:
        logits = np.zeros(len(CATEGORIES) + 1)
        logits[-1] = 10
        with pytest.raises(ValueError, match="Invalid category index"):
            result_from_logits(logits)


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class TestOnnxBackend:
    def test_classifies(self) -> None:
        session = _fake_session([0.0, 0.0, 0.0, 4.0, 0.0])
        backend = OnnxClassifierBackend(session)

        result = backend.classify(Image.new("RGB", (50, 80)))

        assert result.category == "outerwear"
        feeds = session.run.call_args.args[1]
        assert feeds["input"].shape == (1, 3, 224, 224)
        assert session.run.call_args.args[0] == ["logits"]


class TestSubprocessBackend:
    @patch("imageedit.ml.classifier.subprocess.run")
    def test_parses_stdout_and_cleans_up(self, mock_run: MagicMock) -> None:
        seen: list[Path] = []

        def _run(command: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
            image_path = Path(command[-1])
            assert image_path.exists()
            seen.append(image_path)
            return subprocess.CompletedProcess(command, 0, stdout=json.dumps({"category": "tops"}) + "\n", stderr="")

        mock_run.side_effect = _run
        backend = SubprocessClassifierBackend(["python3", "classify.py"], timeout=30)

        result = backend.classify(Image.new("RGB", (10, 10)))

        assert result == ClassificationResult(category="tops", confidence=0.0)
        assert mock_run.call_args.kwargs["timeout"] == 30
        assert not seen[0].exists()

    @patch("imageedit.ml.classifier.subprocess.run")
    def test_nonzero_exit_raises(self, mock_run: MagicMock) -> None:
        mock_run.return_value = subprocess.CompletedProcess([], 1, stdout="", stderr="boom")
        backend = SubprocessClassifierBackend(["python3", "classify.py"], timeout=30)
        with pytest.raises(RuntimeError, match="boom"):
            backend.classify(Image.new("RGB", (10, 10)))

    @patch("imageedit.ml.classifier.subprocess.run")
    def test_unknown_category_raises(self, mock_run: MagicMock) -> None:
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout='{"category": "hats"}', stderr="")
        backend = SubprocessClassifierBackend(["python3", "classify.py"], timeout=30)
        with pytest.raises(RuntimeError, match="Invalid Python classification response"):
            backend.classify(Image.new("RGB", (10, 10)))


# ---------------------------------------------------------------------------
# Backend selection
# ---------------------------------------------------------------------------


class TestProbeBackend:
    def test_missing_model_without_repo(self, tmp_path: Path) -> None:
        settings = Settings(classification_model_path=str(tmp_path / "absent.onnx"))
        with pytest.raises(ClassifierUnavailableError, match="not found"):
            probe_backend(settings)

    def test_native_session_selected(self, tmp_path: Path) -> None:
        settings = _make_settings(tmp_path)
        manager = MagicMock()
        manager.ensure_downloaded.return_value = Path(settings.classification_model_path)
        manager.create_session.return_value = _fake_session([1.0, 0, 0, 0, 0])

        backend = probe_backend(settings, manager)

        assert isinstance(backend, OnnxClassifierBackend)

    @patch("imageedit.ml.classifier.subprocess.run")
    def test_ir_version_error_falls_back(self, mock_run: MagicMock, tmp_path: Path) -> None:
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout="Python 3.12.1\n", stderr="")
        settings = _make_settings(tmp_path)
        manager = MagicMock()
        manager.ensure_downloaded.return_value = Path(settings.classification_model_path)
        manager.create_session.side_effect = _IrVersionError(
            "Unsupported model IR version: 10, max supported IR version: 9"
        )

        backend = probe_backend(settings, manager)

        assert isinstance(backend, SubprocessClassifierBackend)
        assert backend.command == [
            sys.executable,
            "-m",
            CLASSIFY_MODULE,
            "--model",
            settings.classification_model_path,
        ]

    def test_other_load_errors_are_fatal(self, tmp_path: Path) -> None:
        settings = _make_settings(tmp_path)
        manager = MagicMock()
        manager.ensure_downloaded.return_value = Path(settings.classification_model_path)
        manager.create_session.side_effect = RuntimeError("corrupt protobuf")

        with pytest.raises(ClassifierUnavailableError, match="corrupt protobuf"):
            probe_backend(settings, manager)

    def test_forced_onnx_does_not_fall_back(self, tmp_path: Path) -> None:
        settings = _make_settings(tmp_path, classifier_backend="onnx")
        manager = MagicMock()
        manager.ensure_downloaded.return_value = Path(settings.classification_model_path)
        manager.create_session.side_effect = _IrVersionError("Unsupported model IR version: 10")

        with pytest.raises(ClassifierUnavailableError):
            probe_backend(settings, manager)

    @patch("imageedit.ml.classifier.subprocess.run")
    def test_forced_subprocess_with_script(self, mock_run: MagicMock, tmp_path: Path) -> None:
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout="Python 3.12.1\n", stderr="")
        script = tmp_path / "classify_image.py"
        script.write_text("print('{}')\n")
        settings = _make_settings(
            tmp_path,
            classifier_backend="subprocess",
            classifier_script=str(script),
            classifier_python_bin="/usr/bin/python3",
        )
        manager = MagicMock()
        manager.ensure_downloaded.return_value = Path(settings.classification_model_path)

        backend = probe_backend(settings, manager)

        assert isinstance(backend, SubprocessClassifierBackend)
        assert backend.command == ["/usr/bin/python3", str(script)]
        manager.create_session.assert_not_called()

    def test_forced_subprocess_missing_script(self, tmp_path: Path) -> None:
        settings = _make_settings(
            tmp_path, classifier_backend="subprocess", classifier_script=str(tmp_path / "nope.py")
        )
        manager = MagicMock()
        manager.ensure_downloaded.return_value = Path(settings.classification_model_path)
        with pytest.raises(ClassifierUnavailableError, match="script not found"):
            probe_backend(settings, manager)

    @patch("imageedit.ml.classifier.subprocess.run", side_effect=FileNotFoundError("no python"))
    def test_missing_interpreter(self, mock_run: MagicMock, tmp_path: Path) -> None:
        settings = _make_settings(tmp_path, classifier_backend="subprocess", classifier_python_bin="/nope/python")
        manager = MagicMock()
        manager.ensure_downloaded.return_value = Path(settings.classification_model_path)
        with pytest.raises(ClassifierUnavailableError, match="Python fallback not available"):
            probe_backend(settings, manager)


class TestResolvePythonBin:
    def test_configured_wins(self, tmp_path: Path) -> None:
        settings = Settings(classifier_python_bin="/opt/python")
        assert resolve_python_bin(settings) == "/opt/python"

    def test_venv_next_to_script(self, tmp_path: Path) -> None:
        venv_python = tmp_path / "venv" / "bin" / "python3"
        venv_python.parent.mkdir(parents=True)
        venv_python.touch()
        settings = Settings(classifier_script=str(tmp_path / "classify_image.py"))
        assert resolve_python_bin(settings) == str(venv_python)

    def test_defaults_to_current_interpreter(self) -> None:
        assert resolve_python_bin(Settings()) == sys.executable


# ---------------------------------------------------------------------------
# ClothingClassifier
# ---------------------------------------------------------------------------


class _CountingBackend:
    name = "counting"

    def classify(self, image: Image.Image) -> ClassificationResult:
        return ClassificationResult(category="bottoms", confidence=0.5)


class TestClothingClassifier:
    def test_probe_is_lazy(self) -> None:
        probe = MagicMock(return_value=_CountingBackend())
        classifier = ClothingClassifier(Settings(), probe=probe)
        probe.assert_not_called()
        assert classifier.backend_name is None

        assert classifier.classify(Image.new("RGB", (4, 4))).category == "bottoms"
        assert classifier.classify(Image.new("RGB", (4, 4))).category == "bottoms"

        probe.assert_called_once()
        assert classifier.backend_name == "counting"

    def test_concurrent_first_use_probes_once(self) -> None:
        calls: list[int] = []

        def _slow_probe(_settings: Settings) -> _CountingBackend:
            calls.append(1)
            time.sleep(0.05)
            return _CountingBackend()

        classifier = ClothingClassifier(Settings(), probe=_slow_probe)
        threads = [threading.Thread(target=classifier.get_backend) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(calls) == 1

    def test_failed_probe_is_retried_next_time(self) -> None:
        probe = MagicMock(side_effect=[ClassifierUnavailableError("missing"), _CountingBackend()])
        classifier = ClothingClassifier(Settings(), probe=probe)

        with pytest.raises(ClassifierUnavailableError):
            classifier.get_backend()
        assert classifier.get_backend().name == "counting"


# ---------------------------------------------------------------------------
# classify_image CLI
# ---------------------------------------------------------------------------


class TestClassifyImageCli:
    @patch("imageedit.ml.classify_image.InferenceSession")
    def test_prints_json(
        self, mock_session_cls: MagicMock, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        mock_session_cls.return_value = _fake_session([0.0, 0.0, 0.0, 0.0, 3.0])
        image_path = tmp_path / "item.png"
        Image.new("RGB", (32, 48), (200, 10, 10)).save(image_path)

        exit_code = classify_image.main(["--model", str(tmp_path / "model.onnx"), str(image_path)])

        assert exit_code == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["category"] == "accessories"
        assert payload["confidence"] > 0.5
        mock_session_cls.assert_called_once_with(str(tmp_path / "model.onnx"), providers=["CPUExecutionProvider"])
