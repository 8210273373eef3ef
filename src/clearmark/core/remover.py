"""Watermark detection and removal workflows.

:class:`WatermarkRemover` ties together validation, format normalisation,
the Gemini calls and the post-processing of results.  The API layer hands it
raw upload bytes plus the client's filename and gets back plain results;
all HTTP concerns stay in :mod:`clearmark.api.main`.

Removal pipeline
----------------
1. Validate the extension and size, sanitise the filename.
2. Normalise the upload to JPEG/PNG (alpha flattened onto white).
3. Store the raw upload under ``uploads_dir``.
4. Ask the image model for a watermark-free version.
5. No image back: keep the original.
6. Image back but mostly white: keep the original (the model erased too
   much).  JPEG uploads use a stricter threshold since they rarely carry
   white backgrounds on purpose.
7. Reapply the original alpha channel if the upload was transparent.  A
   kept original is reported under its own name and MIME type; a
   processed converted or transparent upload is reported as PNG.
8. Store the result under ``processed_dir`` and report it.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from clearmark.core.config import ClearmarkConfig
from clearmark.core.errors import UnsupportedImageTypeError, UploadTooLargeError
from clearmark.core.gemini import GeminiClient
from clearmark.core.imaging import (
    JPEG_EXTENSIONS,
    PreparedImage,
    convert_to_supported_format,
    file_extension,
    is_mostly_white,
    is_valid_image_type,
    mime_type_for,
    reapply_transparency,
    upload_mime_type,
)
from clearmark.core.prompts import REMOVAL_PROMPT
from clearmark.core.storage import UploadStore, sanitize_filename, timestamp_ms

logger = logging.getLogger(__name__)

NO_IMAGE_TEXT = "The AI model couldn't process the image. The original image has been preserved."
BLANK_IMAGE_TEXT = (
    "The AI model returned a blank or mostly white image, indicating it removed "
    "too much content. The original image has been preserved."
)
DEFAULT_TEXT = "Image processed successfully"


def blank_thresholds(filename: str) -> tuple[float, float]:
    """Return ``(white_threshold, brightness_threshold)`` for an upload."""
    if file_extension(filename) in JPEG_EXTENSIONS:
        return 0.999, 0.999
    return 0.99, 0.99


@dataclass
class RemovalResult:
    """Outcome of a removal request.

    Attributes:
        text: Model commentary, or a default explaining what happened.
        image: Bytes returned to the client (processed or original).
        mime_type: MIME type reported for ``image``.
        filename: Name the result was stored under (without prefix).
        path: Where the result was written.
        watermark_removed: ``True`` only if a usable image came back.
        details: JSON object the model included in its text reply, if any.
    """

    text: str
    image: bytes
    mime_type: str
    filename: str
    path: Path
    watermark_removed: bool
    details: dict[str, Any] = field(default_factory=dict)


class WatermarkRemover:
    """Runs detection and removal requests against a :class:`GeminiClient`."""

    def __init__(
        self,
        config: ClearmarkConfig,
        model: GeminiClient,
        store: UploadStore | None = None,
    ) -> None:
        self._config = config
        self._model = model
        self._store = store or UploadStore(config)

    @property
    def store(self) -> UploadStore:
        return self._store

    @property
    def max_upload_bytes(self) -> int:
        return self._config.max_upload_bytes

    def check_upload_size(self, size: int, filename: str) -> None:
        """Raise :class:`UploadTooLargeError` if *size* is over the limit.

        The API layer calls this with the declared size before reading the
        upload, and again with the number of bytes actually read.
        """
        if size > self._config.max_upload_bytes:
            logger.error("Upload too large: %s (%d bytes)", filename, size)
            raise UploadTooLargeError(
                f"Image exceeds the {self._config.max_upload_mb} MB upload limit"
            )

    def _validate(self, data: bytes, filename: str) -> None:
        if not is_valid_image_type(filename):
            logger.error("Invalid file type: %s", filename)
            raise UnsupportedImageTypeError(filename)
        self.check_upload_size(len(data), filename)

    def _prepare(self, data: bytes, filename: str) -> PreparedImage:
        prepared = convert_to_supported_format(data, filename)
        if prepared.converted:
            logger.info(
                "Image was converted from %s to %s",
                file_extension(filename),
                file_extension(prepared.filename),
            )
        return prepared

    async def detect(self, data: bytes, filename: str) -> dict[str, Any]:
        """Report whether the uploaded image carries a watermark.

        Args:
            data: Raw upload bytes.
            filename: Client-supplied filename.

        Returns:
            The model's verdict, normally with ``hasWatermark`` and
            ``explanation`` keys.

        Raises:
            UnsupportedImageTypeError: Extension not accepted.
            UploadTooLargeError: Upload above the size limit.
            ImageConversionError: Upload could not be decoded.
            ModelServiceError: Gemini unavailable or failing.
        """
        self._validate(data, filename)
        prepared = self._prepare(data, filename)

        logger.info("Processing watermark detection for image: %s", filename)
        result = await self._model.detect_watermark(
            prepared.data, mime_type_for(prepared.filename)
        )
        logger.info("Detection result: %s", json.dumps(result))
        return result

    async def remove(
        self,
        data: bytes,
        filename: str,
        prompt: str = REMOVAL_PROMPT,
    ) -> RemovalResult:
        """Remove the watermark from an uploaded image.

        The original image is returned (with ``watermark_removed=False``)
        whenever the model produces no image or a blank one.

        Args:
            data: Raw upload bytes.
            filename: Client-supplied filename.
            prompt: Instruction sent to the image model.

        Returns:
            A :class:`RemovalResult`.

        Raises:
            UnsupportedImageTypeError: Extension not accepted.
            UploadTooLargeError: Upload above the size limit.
            ImageConversionError: Upload could not be decoded.
            ModelServiceError: Gemini unavailable or failing.
        """
        self._validate(data, filename)
        safe_name = sanitize_filename(filename)
        stamp = timestamp_ms()

        logger.info("Processing watermark removal for image: %s", filename)
        prepared = self._prepare(data, filename)
        self._store.save_upload(data, safe_name, stamp)

        reply = await self._model.remove_watermark(
            prepared.data, mime_type_for(prepared.filename), prompt
        )
        text = reply.text
        image = reply.image
        image_returned = image is not None

        if image is None:
            logger.warning("No processed image received from Gemini, using original image")
            image = data
            text = text or NO_IMAGE_TEXT
        else:
            white_threshold, brightness_threshold = blank_thresholds(filename)
            if is_mostly_white(image, white_threshold, brightness_threshold):
                logger.warning(
                    "Processed image is mostly white (threshold: %s), likely a failed "
                    "removal. Reverting to original image.",
                    white_threshold,
                )
                image = data
                image_returned = False
                text = text or BLANK_IMAGE_TEXT

        if prepared.has_transparency and image_returned and prepared.original_data:
            logger.info("Original image had transparency, reapplying to the processed image")
            image = reapply_transparency(image, prepared.original_data, prepared.original_format)

        output_name = safe_name
        if not image_returned:
            # The untouched upload goes back, so it keeps its own format.
            mime_type = upload_mime_type(safe_name)
        elif prepared.converted or prepared.has_transparency:
            output_name = f"{os.path.splitext(safe_name)[0]}.png"
            mime_type = "image/png"
            logger.debug("Setting output MIME type to %s for transparency or converted image", mime_type)
        else:
            mime_type = mime_type_for(safe_name)

        path = self._store.save_processed(image, output_name, stamp)

        logger.info("Processing completed for %s. Removed: %s", filename, image_returned)
        return RemovalResult(
            text=text or DEFAULT_TEXT,
            image=image,
            mime_type=mime_type,
            filename=output_name,
            path=path,
            watermark_removed=image_returned,
            details=reply.data or {},
        )
