"""Shared pytest fixtures for Clearmark tests."""

import io
import shutil
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from clearmark.core.config import ClearmarkConfig
from clearmark.core.gemini import GeminiClient, ModelReply
from clearmark.core.remover import WatermarkRemover


def make_image_bytes(
    size: tuple[int, int] = (32, 32),
    color=(200, 60, 30),
    mode: str = "RGB",
    fmt: str = "PNG",
) -> bytes:
    """Return the encoded bytes of a solid-colour image."""
    image = Image.new(mode, size, color)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def make_half_transparent_png(size: tuple[int, int] = (40, 40)) -> bytes:
    """Return an RGBA PNG whose left half is fully transparent."""
    width, height = size
    image = Image.new("RGBA", size, (30, 90, 160, 255))
    image.paste((30, 90, 160, 0), (0, 0, width // 2, height))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def open_image(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> ClearmarkConfig:
    """Create a test configuration with temporary directories.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        ClearmarkConfig instance for testing
    """
    return ClearmarkConfig(
        _env_file=None,
        google_api_key="test-key",
        uploads_dir=str(temp_dir / "uploads"),
        processed_dir=str(temp_dir / "processed"),
        logs_dir=str(temp_dir / "logs"),
    )


@pytest.fixture
def cleaned_image() -> bytes:
    """A colourful image standing in for the model's watermark-free output."""
    return make_image_bytes(size=(32, 32), color=(10, 120, 200))


@pytest.fixture
def fake_model(cleaned_image: bytes) -> MagicMock:
    """A GeminiClient double that never touches the network.

    ``detect_watermark`` reports a watermark; ``remove_watermark`` returns
    a short text and :func:`cleaned_image`.
    """
    model = MagicMock(spec=GeminiClient)
    model.detect_watermark = AsyncMock(
        return_value={"hasWatermark": True, "explanation": "Logo in the bottom-right corner"}
    )
    model.remove_watermark = AsyncMock(
        return_value=ModelReply(text="Watermark removed.", image=cleaned_image)
    )
    return model


@pytest.fixture
def remover(test_config: ClearmarkConfig, fake_model: MagicMock) -> WatermarkRemover:
    return WatermarkRemover(test_config, fake_model)


@pytest.fixture
def test_client(remover: WatermarkRemover) -> Generator[TestClient, None, None]:
    """FastAPI TestClient whose remover uses :func:`fake_model`."""
    from clearmark.api.main import app

    with TestClient(app) as client:
        app.state.remover = remover
        yield client
