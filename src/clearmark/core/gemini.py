"""Gemini API access for watermark detection and removal.

This module provides :class:`GeminiClient`, a thin wrapper over the
``google-genai`` SDK's async interface.  It owns three concerns:

- **Lazy client creation** — the SDK client is built on first use, so the
  service can start (and serve ``/health``) without an API key.
- **Request shaping** — the prompt and image are sent as two content parts;
  removal requests ask for both ``TEXT`` and ``IMAGE`` modalities.
- **Reply folding** — the multi-part reply is reduced to a
  :class:`ModelReply` holding the last text part, the last JSON object found
  in a text part, and the last inline image.

Usage
-----
::

    from clearmark.core.config import config
    from clearmark.core.gemini import GeminiClient

    client = GeminiClient(config)
    verdict = await client.detect_watermark(png_bytes, "image/png")
    reply = await client.remove_watermark(png_bytes, "image/png", prompt)
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx
from google import genai
from google.genai import errors, types

from clearmark.core.config import ClearmarkConfig
from clearmark.core.errors import ModelServiceError
from clearmark.core.prompts import DETECTION_PROMPT, REMOVAL_PROMPT

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


@dataclass
class ModelReply:
    """The useful parts of a removal reply.

    Attributes:
        text: Last text part, or ``None``.
        data: Last text part that parsed as a JSON object, or ``None``.
        image: Bytes of the last inline image part, or ``None``.
    """

    text: str | None = None
    data: dict[str, Any] | None = None
    image: bytes | None = None


def is_affirmative(text: str) -> bool:
    """Read a free-text verdict such as ``"Yes, a logo"`` as a boolean.

    Any mention of "yes" counts, as do the bare answers ``"true"`` and ``"1"``.
    """
    lowered = text.strip().lower()
    return "yes" in lowered or lowered in ("true", "1")


def parse_json_reply(text: str) -> dict[str, Any] | None:
    """Parse a model's text reply as a JSON object.

    Models frequently wrap JSON in a markdown code fence; the fence is
    stripped before parsing.

    Returns:
        The parsed object, or ``None`` if the text is not a JSON object.
    """
    candidate = text.strip()
    match = _CODE_FENCE.match(candidate)
    if match:
        candidate = match.group(1)
    try:
        value = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def parse_reply(response: Any) -> ModelReply:
    """Fold a ``GenerateContentResponse`` into a :class:`ModelReply`.

    Only the first candidate is considered.  Thought parts emitted by
    thinking models are skipped.
    """
    reply = ModelReply()
    candidates = getattr(response, "candidates", None) or []
    if not candidates or candidates[0].content is None:
        return reply

    for part in candidates[0].content.parts or []:
        if getattr(part, "thought", False):
            continue
        if part.text:
            reply.text = part.text
            data = parse_json_reply(part.text)
            if data is not None:
                reply.data = data
        elif part.inline_data is not None and part.inline_data.data:
            reply.image = part.inline_data.data
            logger.debug("Image returned from Gemini")
    return reply


class GeminiClient:
    """Async Gemini client used by :class:`~clearmark.core.remover.WatermarkRemover`.

    Attributes:
        _config (ClearmarkConfig):
            Supplies the API key and the detection/removal model names.
        _client (genai.Client | None):
            The SDK client, created on first use.
    """

    def __init__(self, config: ClearmarkConfig) -> None:
        self._config = config
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self._config.google_api_key:
                raise ModelServiceError("GOOGLE_API_KEY is not configured")
            self._client = genai.Client(api_key=self._config.google_api_key)
        return self._client

    async def _generate(
        self,
        model: str,
        prompt: str,
        data: bytes,
        mime_type: str,
        generation_config: types.GenerateContentConfig | None = None,
    ) -> Any:
        client = self._get_client()
        try:
            return await client.aio.models.generate_content(
                model=model,
                contents=[
                    prompt,
                    types.Part.from_bytes(data=data, mime_type=mime_type),
                ],
                config=generation_config,
            )
        except errors.APIError as exc:
            logger.error("Gemini request to '%s' failed: %s", model, exc)
            raise ModelServiceError(f"Gemini API error: {exc}") from exc
        except httpx.HTTPError as exc:
            # Connection failures and timeouts surface as raw httpx errors.
            logger.error("Could not reach Gemini for '%s': %s", model, exc)
            raise ModelServiceError(f"Gemini API unreachable: {exc}") from exc

    async def detect_watermark(self, data: bytes, mime_type: str) -> dict[str, Any]:
        """Ask the detection model whether the image carries a watermark.

        Args:
            data: JPEG or PNG bytes.
            mime_type: MIME type matching *data*.

        Returns:
            The model's JSON verdict, normally ``{"hasWatermark": bool,
            "explanation": str}``.  When the reply is not JSON the verdict is
            guessed from whether the text contains "yes", and the raw text is
            used as the explanation.

        Raises:
            ModelServiceError: If no API key is configured or the API fails.
        """
        response = await self._generate(
            self._config.detection_model, DETECTION_PROMPT, data, mime_type
        )
        text = response.text or ""

        result = parse_json_reply(text)
        if result is None:
            logger.error("Failed to parse AI response as JSON: %s", text)
            result = {"hasWatermark": is_affirmative(text), "explanation": text}
        return result

    async def remove_watermark(
        self,
        data: bytes,
        mime_type: str,
        prompt: str = REMOVAL_PROMPT,
    ) -> ModelReply:
        """Ask the image model for a watermark-free version of the image.

        Args:
            data: JPEG or PNG bytes.
            mime_type: MIME type matching *data*.
            prompt: Instruction sent with the image.

        Returns:
            The folded :class:`ModelReply`; ``image`` is ``None`` when the
            model answered with text only.

        Raises:
            ModelServiceError: If no API key is configured or the API fails.
        """
        response = await self._generate(
            self._config.removal_model,
            prompt,
            data,
            mime_type,
            types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
        )
        return parse_reply(response)
