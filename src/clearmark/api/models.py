"""Pydantic response models for the Clearmark API.

Field names are snake_case in Python and camelCase on the wire
(``mimeType``, ``watermarkRemoved``, ``hasWatermark``).  Detection and
removal responses allow extra keys so whatever JSON the model volunteers is
passed through to the client.

Models
------
DetectionResponse
    Body of ``POST /detect-watermark``.
RemovalResponse
    Body of ``POST /remove-watermark``.
ErrorResponse
    Body of every failed request.
HealthResponse
    Body of ``GET /health``.
"""

from __future__ import annotations

import base64
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from clearmark.core.gemini import is_affirmative
from clearmark.core.remover import RemovalResult


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _passthrough(model: type[BaseModel], data: dict[str, Any]) -> dict[str, Any]:
    """Drop keys from *data* that would collide with *model*'s own fields."""
    reserved = set()
    for name, info in model.model_fields.items():
        reserved.add(name)
        if info.alias:
            reserved.add(info.alias)
    return {key: value for key, value in data.items() if key not in reserved}


class DetectionResponse(_ApiModel):
    """Response body for ``POST /detect-watermark``.

    Attributes:
        success: Always ``True`` for this model.
        has_watermark: The model's verdict.
        explanation: The model's reasoning, or its raw reply when it did
            not answer in JSON.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    success: bool = True
    has_watermark: bool | None = Field(
        default=None,
        description="Whether the model found a watermark.",
    )
    explanation: str | None = Field(
        default=None,
        description="What watermark was detected, or why none was found.",
    )

    @field_validator("has_watermark", mode="before")
    @classmethod
    def _coerce_verdict(cls, value: Any) -> bool | None:
        if value is None or isinstance(value, bool):
            return value
        return is_affirmative(str(value))

    @field_validator("explanation", mode="before")
    @classmethod
    def _coerce_explanation(cls, value: Any) -> str | None:
        return None if value is None else str(value)

    @classmethod
    def from_verdict(cls, verdict: dict[str, Any]) -> DetectionResponse:
        return cls(
            has_watermark=verdict.get("hasWatermark"),
            explanation=verdict.get("explanation"),
            **_passthrough(cls, verdict),
        )


class RemovalResponse(_ApiModel):
    """Response body for ``POST /remove-watermark``.

    Attributes:
        success: Always ``True`` for this model.
        text: Model commentary or a status message.
        image: Base64-encoded result (or the original when removal failed).
        mime_type: MIME type of ``image``.
        watermark_removed: ``True`` only if the model produced a usable image.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    success: bool = True
    text: str = Field(..., description="Model commentary or status message.")
    image: str = Field(..., description="Base64-encoded image bytes.")
    mime_type: str = Field(..., description="MIME type of the returned image.")
    watermark_removed: bool = Field(
        ...,
        description="True if the model returned a usable watermark-free image.",
    )

    @classmethod
    def from_result(cls, result: RemovalResult) -> RemovalResponse:
        return cls(
            text=result.text,
            image=base64.b64encode(result.image).decode("ascii"),
            mime_type=result.mime_type,
            watermark_removed=result.watermark_removed,
            **_passthrough(cls, result.details),
        )


class ErrorResponse(BaseModel):
    """Response body for failed requests."""

    success: bool = False
    error: str


class HealthResponse(BaseModel):
    status: str = "ok"
