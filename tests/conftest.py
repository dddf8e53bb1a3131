"""
Pytest configuration and shared fixtures.

Tests never talk to Gemini; the API key only has to exist so config loading
and client construction succeed.
"""

import os

import pytest

os.environ.setdefault("GEMINI_API_KEY", "test-key")

from tests.helpers import make_image_bytes  # noqa: E402


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG")
