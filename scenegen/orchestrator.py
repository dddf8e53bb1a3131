from __future__ import annotations

import logging
from typing import Any

from google import genai

from . import codec
from .config import DEFAULT_IMAGE_MODEL, StudioConfig
from .errors import GenerationFailed, NoImageInResponse

logger = logging.getLogger(__name__)


def extract_image(response: Any) -> str:
    """
    Pull the generated image out of a generate_content response.

    Returns the first inline-data part of the first candidate as a data URL.
    A response without one means the model answered with text only, which is
    raised as NoImageInResponse carrying that text.
    """
    candidates = getattr(response, "candidates", None) or []
    content = getattr(candidates[0], "content", None) if candidates else None
    parts = getattr(content, "parts", None) or []

    for part in parts:
        inline_data = getattr(part, "inline_data", None)
        if inline_data:
            return codec.encode(inline_data.mime_type, inline_data.data)

    text = getattr(response, "text", None)
    logger.error("API did not return an image. Response: %s", text)
    raise NoImageInResponse(text)


class SceneGenerator:
    """Composites a person and a product into one scene with a single Gemini call."""

    def __init__(self, client: genai.Client, model: str = DEFAULT_IMAGE_MODEL) -> None:
        self._client = client
        self.model = model

    @classmethod
    def from_config(cls, config: StudioConfig) -> "SceneGenerator":
        return cls(genai.Client(api_key=config.api_key), model=config.image_model)

    async def generate_scene(self, person_image: str, product_image: str, prompt: str) -> str:
        """
        Generate a scene from a person data URL, a product data URL and a prompt.

        Returns the generated image as a data URL. Every failure, including a
        malformed input image, is raised as GenerationFailed (or its subclass
        NoImageInResponse) with the original error kept on `cause`.
        """
        try:
            person = codec.decode(person_image)
            product = codec.decode(product_image)
            request = codec.build_request(person, product, prompt, model=self.model)

            response = await self._client.aio.models.generate_content(
                model=request.model,
                contents=request.to_contents(),
                config=request.to_config(),
            )
            return extract_image(response)
        except GenerationFailed:
            raise
        except Exception as exc:
            logger.exception("An unrecoverable error occurred during image generation.")
            raise GenerationFailed.wrap(exc) from exc
