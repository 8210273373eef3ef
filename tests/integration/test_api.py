"""Integration tests for clearmark.api.main — FastAPI REST API endpoints.

All tests use the FastAPI TestClient with the ``fake_model`` Gemini double,
so no network access occurs.  Tests cover every endpoint:

- ``GET /`` and ``GET /api`` — HTML page serving.
- ``POST /detect-watermark`` — Watermark detection.
- ``POST /remove-watermark`` — Watermark removal.
- ``GET /health`` — Liveness check.
- Error bodies for malformed requests, oversized uploads and unexpected
  failures.
"""

from __future__ import annotations

import base64
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

import clearmark.core.gemini as gemini_module
from clearmark.core.errors import ModelServiceError
from clearmark.core.gemini import GeminiClient, ModelReply
from clearmark.core.prompts import REMOVAL_PROMPT, STRUCTURED_REMOVAL_PROMPT
from clearmark.core.remover import WatermarkRemover
from conftest import make_half_transparent_png, make_image_bytes, open_image


def _upload(data: bytes, filename: str = "photo.png", content_type: str = "image/png") -> dict:
    return {"image": (filename, data, content_type)}


@pytest.fixture
def lenient_client(remover: WatermarkRemover):
    """TestClient that returns 500 responses instead of re-raising the error."""
    from clearmark.api.main import app

    with TestClient(app, raise_server_exceptions=False) as client:
        app.state.remover = remover
        yield client


# ---------------------------------------------------------------------------
# Page tests.
# ---------------------------------------------------------------------------


class TestPages:
    """Test GET / and GET /api — static HTML pages."""

    def test_index_returns_html(self, test_client):
        resp = test_client.get("/")
        assert resp.status_code == 200
        assert "text/html" in resp.headers["content-type"]
        assert "Clearmark" in resp.text

    def test_api_docs_returns_html(self, test_client):
        resp = test_client.get("/api")
        assert resp.status_code == 200
        assert "text/html" in resp.headers["content-type"]
        assert "Clearmark API" in resp.text


class TestHealth:
    def test_health(self, test_client):
        resp = test_client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ---------------------------------------------------------------------------
# Detection endpoint tests.
# ---------------------------------------------------------------------------


class TestDetectWatermark:
    """Test POST /detect-watermark."""

    def test_detects_watermark(self, test_client, fake_model):
        data = make_image_bytes(fmt="JPEG")
        resp = test_client.post(
            "/detect-watermark", files=_upload(data, "photo.jpg", "image/jpeg")
        )

        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "hasWatermark": True,
            "explanation": "Logo in the bottom-right corner",
        }
        fake_model.detect_watermark.assert_awaited_once_with(data, "image/jpeg")

    def test_missing_image(self, test_client, fake_model):
        resp = test_client.post("/detect-watermark")

        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "No image provided"}
        fake_model.detect_watermark.assert_not_awaited()

    def test_invalid_file_type(self, test_client):
        resp = test_client.post(
            "/detect-watermark", files=_upload(b"%PDF-1.4", "doc.pdf", "application/pdf")
        )

        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error"].startswith("Invalid file type. Supported formats:")

    def test_string_verdict_is_coerced(self, test_client, fake_model):
        fake_model.detect_watermark.return_value = {
            "hasWatermark": "yes",
            "explanation": "Corner logo",
            "confidence": "high",
        }
        resp = test_client.post("/detect-watermark", files=_upload(make_image_bytes()))

        body = resp.json()
        assert body["hasWatermark"] is True
        assert body["confidence"] == "high"

    def test_model_failure(self, test_client, fake_model):
        fake_model.detect_watermark.side_effect = ModelServiceError("Gemini API error: quota")
        resp = test_client.post("/detect-watermark", files=_upload(make_image_bytes()))

        assert resp.status_code == 502
        assert resp.json() == {"success": False, "error": "Gemini API error: quota"}


# ---------------------------------------------------------------------------
# Removal endpoint tests.
# ---------------------------------------------------------------------------


class TestRemoveWatermark:
    """Test POST /remove-watermark."""

    def test_successful_removal(self, test_client, fake_model, cleaned_image):
        data = make_image_bytes(fmt="JPEG")
        resp = test_client.post(
            "/remove-watermark", files=_upload(data, "photo.jpg", "image/jpeg")
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["watermarkRemoved"] is True
        assert body["mimeType"] == "image/jpeg"
        assert body["text"] == "Watermark removed."
        assert base64.b64decode(body["image"]) == cleaned_image
        fake_model.remove_watermark.assert_awaited_once_with(data, "image/jpeg", REMOVAL_PROMPT)

    def test_result_is_stored(self, test_client, test_config):
        test_client.post("/remove-watermark", files=_upload(make_image_bytes(), "a b.png"))

        processed = list(test_config.processed_dir.iterdir())
        assert len(processed) == 1
        assert processed[0].name.startswith("processed_")
        assert processed[0].name.endswith("_a-b.png")

    def test_structured_prompt_style(self, test_client, fake_model):
        resp = test_client.post(
            "/remove-watermark",
            files=_upload(make_image_bytes()),
            data={"prompt_style": "structured"},
        )

        assert resp.status_code == 200
        assert fake_model.remove_watermark.await_args.args[2] == STRUCTURED_REMOVAL_PROMPT

    def test_custom_prompt(self, test_client, fake_model):
        resp = test_client.post(
            "/remove-watermark",
            files=_upload(make_image_bytes()),
            data={"prompt": "Erase the date stamp", "prompt_style": "structured"},
        )

        assert resp.status_code == 200
        assert fake_model.remove_watermark.await_args.args[2] == "Erase the date stamp"

    def test_blank_prompt_uses_preset(self, test_client, fake_model):
        test_client.post(
            "/remove-watermark", files=_upload(make_image_bytes()), data={"prompt": "   "}
        )
        assert fake_model.remove_watermark.await_args.args[2] == REMOVAL_PROMPT

    def test_unknown_prompt_style(self, test_client, fake_model):
        resp = test_client.post(
            "/remove-watermark",
            files=_upload(make_image_bytes()),
            data={"prompt_style": "aggressive"},
        )

        assert resp.status_code == 400
        assert resp.json() == {
            "success": False,
            "error": "prompt_style must be one of: default, structured",
        }
        fake_model.remove_watermark.assert_not_awaited()

    def test_missing_image(self, test_client):
        resp = test_client.post("/remove-watermark")
        assert resp.status_code == 400
        assert resp.json()["error"] == "No image provided"

    def test_no_image_from_model(self, test_client, fake_model):
        fake_model.remove_watermark.return_value = ModelReply(text="Sorry, I can't do that.")
        data = make_image_bytes()

        resp = test_client.post("/remove-watermark", files=_upload(data))

        body = resp.json()
        assert resp.status_code == 200
        assert body["watermarkRemoved"] is False
        assert body["text"] == "Sorry, I can't do that."
        assert base64.b64decode(body["image"]) == data

    def test_model_json_is_merged(self, test_client, fake_model, cleaned_image):
        fake_model.remove_watermark.return_value = ModelReply(
            text='{"hasWatermark": true, "explanation": "Signature"}',
            data={"hasWatermark": True, "explanation": "Signature"},
            image=cleaned_image,
        )
        resp = test_client.post("/remove-watermark", files=_upload(make_image_bytes()))

        body = resp.json()
        assert body["hasWatermark"] is True
        assert body["explanation"] == "Signature"
        assert body["watermarkRemoved"] is True

    def test_transparent_upload_returns_png(self, test_client, fake_model):
        fake_model.remove_watermark.return_value = ModelReply(
            image=make_image_bytes(size=(40, 40), color=(0, 200, 0))
        )
        resp = test_client.post(
            "/remove-watermark", files=_upload(make_half_transparent_png(), "logo.png")
        )

        body = resp.json()
        assert body["mimeType"] == "image/png"
        restored = open_image(base64.b64decode(body["image"]))
        assert restored.mode == "RGBA"
        assert restored.getpixel((5, 20))[3] == 0

    def test_undecodable_image(self, test_client):
        resp = test_client.post(
            "/remove-watermark", files=_upload(b"not an image", "broken.webp", "image/webp")
        )

        assert resp.status_code == 422
        body = resp.json()
        assert body["success"] is False
        assert body["error"].startswith("Failed to convert image:")

    def test_model_failure(self, test_client, fake_model):
        fake_model.remove_watermark.side_effect = ModelServiceError(
            "GOOGLE_API_KEY is not configured"
        )
        resp = test_client.post("/remove-watermark", files=_upload(make_image_bytes()))

        assert resp.status_code == 502
        assert resp.json() == {"success": False, "error": "GOOGLE_API_KEY is not configured"}


# ---------------------------------------------------------------------------
# Error body tests.
# ---------------------------------------------------------------------------


class TestErrorBodies:
    """Every failure answers with ``{"success": false, "error": ...}``."""

    def test_image_sent_as_text(self, test_client, fake_model):
        resp = test_client.post("/detect-watermark", data={"image": "not-a-file"})

        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error"].startswith("Invalid request:")
        assert "image" in body["error"]
        fake_model.detect_watermark.assert_not_awaited()

    def test_unexpected_error(self, lenient_client, fake_model):
        fake_model.remove_watermark.side_effect = RuntimeError("disk on fire")
        resp = lenient_client.post("/remove-watermark", files=_upload(make_image_bytes()))

        assert resp.status_code == 500
        assert resp.headers["content-type"].startswith("application/json")
        assert resp.json() == {"success": False, "error": "disk on fire"}

    def test_unmapped_network_error(self, lenient_client, fake_model):
        fake_model.remove_watermark.side_effect = httpx.ConnectError("connection refused")
        resp = lenient_client.post("/remove-watermark", files=_upload(make_image_bytes()))

        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "connection refused"}

    def test_gemini_unreachable(self, test_client, test_config, monkeypatch):
        sdk = MagicMock()
        sdk.aio.models.generate_content = AsyncMock(
            side_effect=httpx.ConnectError("connection refused")
        )
        monkeypatch.setattr(gemini_module.genai, "Client", MagicMock(return_value=sdk))
        test_client.app.state.remover = WatermarkRemover(test_config, GeminiClient(test_config))

        resp = test_client.post("/remove-watermark", files=_upload(make_image_bytes()))

        assert resp.status_code == 502
        body = resp.json()
        assert body["success"] is False
        assert body["error"].startswith("Gemini API unreachable:")

    def test_oversized_upload(self, test_client, test_config, fake_model):
        limited = test_config.model_copy(update={"max_upload_mb": 1})
        test_client.app.state.remover = WatermarkRemover(limited, fake_model)

        resp = test_client.post(
            "/remove-watermark", files=_upload(b"\0" * (1024 * 1024 + 1), "huge.png")
        )

        assert resp.status_code == 413
        assert resp.json() == {
            "success": False,
            "error": "Image exceeds the 1 MB upload limit",
        }
        fake_model.remove_watermark.assert_not_awaited()
        assert list(test_config.uploads_dir.iterdir()) == []
