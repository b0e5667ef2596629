"""Environment-based configuration for CloudSpotter."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from CLOUDSPOTTER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDSPOTTER_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000
    log_level: str = "INFO"

    # LINE channel (channel_secret None = signature check disabled)
    channel_access_token: str = ""
    channel_secret: str | None = None

    # Outbound endpoints
    content_url_template: str = "https://api-data.line.me/v2/bot/message/{content_id}/content"
    reply_url: str = "https://api.line.me/v2/bot/message/reply"
    fetch_timeout: float | None = Field(default=None, gt=0)

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency (queue timeout None = wait for a slot indefinitely)
    max_concurrent: int = Field(default=2, ge=1)
    inference_queue_timeout: float | None = Field(default=None, gt=0)

    # Model artifacts
    models_dir: str = "models"
    model_filename: str = "model.onnx"
    labels_filename: str = "labels.json"
    model_repo_id: str | None = None

    # Input limits
    image_size: int = Field(default=224, ge=1)
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=10_485_760, ge=1)

    # Reply texts
    default_prompt: str = "Send me a photo of the sky and I'll tell you which cloud it is 🌤️"
    loading_text: str = "The cloud model is still loading, please try again in a moment."
    failure_text: str = "Sorry, I couldn't analyse that image. Please try another photo."
    prediction_template: str = "Most likely cloud: {label} ({percentage:.2f}%)"

    @field_validator("prediction_template")
    @classmethod
    def _check_template(cls, value: str) -> str:
        # Placeholders: {label}, {percentage} (float, 0-100) and {percent} (pre-formatted).
        try:
            value.format(label="Cumulus", percentage=80.0, percent="80.00%")
        except (AttributeError, KeyError, IndexError, ValueError) as exc:
            raise ValueError(f"Invalid prediction_template {value!r}: {exc!r}") from exc
        return value


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
