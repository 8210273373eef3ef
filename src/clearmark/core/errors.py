"""Exception hierarchy for Clearmark.

Every error the service reports to a client derives from
:class:`ClearmarkError` and carries the HTTP status code the API layer
should answer with.  Route handlers never build error payloads themselves;
:mod:`clearmark.api.main` registers a single exception handler that turns
these into ``{"success": false, "error": "..."}`` responses.
"""

from __future__ import annotations

SUPPORTED_FORMATS_LABEL = "PNG, JPG, JPEG, WebP, SVG, GIF, BMP, TIFF, AVIF"


class ClearmarkError(Exception):
    """Base class for all errors reported to API clients."""

    status_code: int = 500


class BadRequestError(ClearmarkError):
    """The request is malformed."""

    status_code = 400


class MissingImageError(BadRequestError):
    """The request did not include an ``image`` form field."""

    def __init__(self, message: str = "No image provided") -> None:
        super().__init__(message)


class UnsupportedImageTypeError(BadRequestError):
    """The uploaded file's extension is not an accepted image type."""

    def __init__(self, filename: str | None = None) -> None:
        self.filename = filename
        super().__init__(f"Invalid file type. Supported formats: {SUPPORTED_FORMATS_LABEL}")


class UploadTooLargeError(ClearmarkError):
    """The uploaded file exceeds ``max_upload_mb``."""

    status_code = 413


class ImageConversionError(ClearmarkError):
    """Pillow (or CairoSVG) could not decode or re-encode the upload."""

    status_code = 422


class ModelServiceError(ClearmarkError):
    """The Gemini API is not configured or returned an error."""

    status_code = 502
