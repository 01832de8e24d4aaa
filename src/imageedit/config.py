"""Environment-based configuration for imageedit."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_NAME = "imageedit"
LICENSE = "AGPL-3.0-or-later"
VERSION = "0.1.0"


class Settings(BaseSettings):
    """Application settings loaded from IMAGEEDIT_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="IMAGEEDIT_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000

    # Authentication: comma-separated list. Empty rejects every /v1 request.
    api_keys: str = ""

    # Source disclosure
    source_code_url: str = "https://github.com/your-org/imageedit"
    git_commit_sha: str | None = None

    # Input limits
    max_file_size: int = Field(default=10_485_760, ge=1)
    max_image_pixels: int = Field(default=100_000_000, ge=1)

    # Rate limiting
    rate_limit_max: int = Field(default=100, ge=1)
    rate_limit_window: float = Field(default=60.0, gt=0)

    # Concurrency
    max_concurrent: int = Field(default=4, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Classification model
    models_dir: str = "models"
    classification_model_path: str = "models/mobilenet-fashion-5cat.onnx"
    classification_model_repo: str | None = None
    classification_model_filename: str = "mobilenet-fashion-5cat.onnx"
    classifier_backend: Literal["auto", "onnx", "subprocess"] = "auto"
    classifier_python_bin: str | None = None
    classifier_script: str | None = None
    classifier_timeout: float = Field(default=30.0, gt=0)

    # Background removal
    bg_model: str = "isnet-general-use"

    preload_models: bool = False

    @property
    def api_key_list(self) -> list[str]:
        """Configured API keys with whitespace and empty entries dropped."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
