"""Data URL codec and Gemini request builder.

Images cross the boundary between the HTTP layer and the core as data URLs
(`data:<mime>;base64,<payload>`). This module turns them into payloads,
assembles the ordered multi-part request, and converts raw uploads into data
URLs after checking with Pillow that they really are images.
"""
from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from io import BytesIO

from google.genai import types
from PIL import Image, UnidentifiedImageError

from .errors import InvalidImageFormat

DATA_URL_PATTERN = re.compile(r"data:(image/\w+);base64,(.*)", re.ASCII)

RESPONSE_MODALITIES = ("IMAGE", "TEXT")

# Pillow format name -> media type. Mirrors the upload widget's accept list.
ACCEPTED_FORMATS = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    # Multi-picture JPEG, as saved by many phone cameras.
    "MPO": "image/jpeg",
    "WEBP": "image/webp",
}


@dataclass(frozen=True, slots=True)
class ImagePayload:
    mime_type: str
    data: str

    def to_bytes(self) -> bytes:
        try:
            return base64.b64decode(self.data, validate=True)
        except (ValueError, binascii.Error) as exc:
            raise InvalidImageFormat(f"Image payload is not valid base64: {exc}") from exc


@dataclass(frozen=True, slots=True)
class ImagePart:
    payload: ImagePayload


@dataclass(frozen=True, slots=True)
class TextPart:
    text: str


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """Ordered request: person image, product image, then the instruction text."""

    model: str
    parts: tuple[ImagePart | TextPart, ...]
    response_modalities: tuple[str, ...] = RESPONSE_MODALITIES

    def to_contents(self) -> list[types.Part]:
        contents: list[types.Part] = []
        for part in self.parts:
            if isinstance(part, ImagePart):
                contents.append(
                    types.Part.from_bytes(
                        data=part.payload.to_bytes(),
                        mime_type=part.payload.mime_type,
                    )
                )
            else:
                contents.append(types.Part.from_text(text=part.text))
        return contents

    def to_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            response_modalities=list(self.response_modalities),
        )


def decode(encoded: str) -> ImagePayload:
    """Split a data URL into its media type and base64 payload.

    Raises
    ------
    InvalidImageFormat
        If the string is not an image data URL or carries an empty payload.
    """
    match = DATA_URL_PATTERN.fullmatch(encoded) if isinstance(encoded, str) else None
    if not match or not match.group(2):
        raise InvalidImageFormat()
    mime_type, data = match.groups()
    return ImagePayload(mime_type=mime_type, data=data)


def encode(mime_type: str, data: bytes | str) -> str:
    if isinstance(data, bytes):
        data = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{data}"


def build_request(
    person: ImagePayload,
    product: ImagePayload,
    prompt: str,
    model: str,
) -> GenerationRequest:
    # The model is sensitive to part order, keep person -> product -> text.
    return GenerationRequest(
        model=model,
        parts=(ImagePart(person), ImagePart(product), TextPart(prompt)),
    )


def encode_upload(raw: bytes, max_bytes: int | None = None) -> str:
    """Validate an uploaded file with Pillow and return it as a data URL."""
    if not raw:
        raise InvalidImageFormat("Uploaded file is empty.")
    if max_bytes is not None and len(raw) > max_bytes:
        raise InvalidImageFormat(
            f"Uploaded file exceeds size limit: {len(raw)} bytes (max {max_bytes})"
        )

    try:
        with Image.open(BytesIO(raw)) as image:
            image_format = image.format
            image.verify()
    except (
        UnidentifiedImageError,
        Image.DecompressionBombError,
        OSError,
        SyntaxError,
        ValueError,
    ) as exc:
        raise InvalidImageFormat(f"Uploaded file is not a readable image: {exc}") from exc

    mime_type = ACCEPTED_FORMATS.get(image_format or "")
    if mime_type is None:
        raise InvalidImageFormat(
            f"Unsupported image format: {image_format}. Use PNG, JPEG or WebP."
        )
    return encode(mime_type, raw)
