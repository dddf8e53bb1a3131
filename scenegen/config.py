from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .errors import MissingCredential

DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image-preview"


class StudioConfig(BaseModel):
    """Settings for the Gemini client and the retry loop."""

    api_key: str = Field(..., min_length=1, description="Gemini API key")
    image_model: str = Field(default=DEFAULT_IMAGE_MODEL, min_length=1)
    max_attempts: int = Field(default=3, ge=1, le=10)
    retry_backoff_seconds: float = Field(default=2.0, ge=0.0, le=60.0)
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    log_level: str = Field(default="INFO")


def load_config(dotenv_path: str | Path | None = None) -> StudioConfig:
    """
    Load configuration from environment variables, seeded by a .env file if present.

    Raises
    ------
    MissingCredential
        If GEMINI_API_KEY is not set. Nothing else can run without it.
    RuntimeError
        If any other value fails validation.
    """
    env_path = Path(dotenv_path) if dotenv_path else Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise MissingCredential("GEMINI_API_KEY")

    data: dict[str, object] = {"api_key": api_key}
    optional = {
        "image_model": "GEMINI_IMAGE_MODEL",
        "max_attempts": "SCENE_MAX_ATTEMPTS",
        "retry_backoff_seconds": "SCENE_RETRY_BACKOFF",
        "max_upload_bytes": "SCENE_MAX_UPLOAD_BYTES",
        "log_level": "LOG_LEVEL",
    }
    for field, env_name in optional.items():
        value = os.getenv(env_name)
        if value is not None:
            data[field] = value

    try:
        return StudioConfig.model_validate(data)
    except ValidationError as exc:
        invalid = {"/".join(str(part) for part in err["loc"]) for err in exc.errors()}
        raise RuntimeError(f"Invalid configuration values: {', '.join(sorted(invalid))}") from exc
