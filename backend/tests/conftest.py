"""Pytest configuration and fixtures."""

import io

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from facewarp.main import app
from facewarp.models.types import PixelBuffer

# Register pytest-asyncio plugin
pytest_plugins = ["pytest_asyncio"]


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line("markers", "slow: marks tests as slow")


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio as the async backend."""
    return "asyncio"


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def api_base_url():
    """Base URL for API endpoints."""
    return "/api/v1"


def make_gradient(width: int = 100, height: int = 100, alpha: int = 255) -> np.ndarray:
    """RGBA image whose colour changes in both directions."""
    ys, xs = np.mgrid[0:height, 0:width]
    image = np.empty((height, width, 4), dtype=np.uint8)
    image[:, :, 0] = (xs * 255 // max(1, width - 1)).astype(np.uint8)
    image[:, :, 1] = (ys * 255 // max(1, height - 1)).astype(np.uint8)
    image[:, :, 2] = ((xs + ys) * 255 // max(1, width + height - 2)).astype(np.uint8)
    image[:, :, 3] = alpha
    return image


def encode_png(array: np.ndarray) -> bytes:
    """PNG-encode an RGBA array."""
    buffer = io.BytesIO()
    Image.fromarray(array).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def gradient_factory():
    """Build gradients of arbitrary size."""
    return make_gradient


@pytest.fixture
def gradient_image():
    """100x100 RGBA gradient."""
    return make_gradient()


@pytest.fixture
def gradient_buffer(gradient_image):
    """The gradient wrapped as a flat pixel buffer."""
    return PixelBuffer.from_array(gradient_image)


@pytest.fixture
def gray_image():
    """100x100 solid mid-gray RGBA image."""
    image = np.full((100, 100, 4), 128, dtype=np.uint8)
    image[:, :, 3] = 255
    return image


@pytest.fixture
def png_encoder():
    """PNG-encode arrays inside tests."""
    return encode_png


@pytest.fixture
def gradient_png(gradient_image):
    """The gradient as PNG bytes for upload tests."""
    return encode_png(gradient_image)
