"""Clearmark — FastAPI Application.

This module defines the FastAPI ``app`` instance, all routes, and the
``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Workflows** live in :class:`~clearmark.core.remover.WatermarkRemover`,
  created during startup and stored on ``app.state.remover``.
- **Errors** derive from :class:`~clearmark.core.errors.ClearmarkError` and
  are rendered as ``{"success": false, "error": "..."}`` with the error's
  status code.  Malformed form fields answer 400 and anything unexpected
  answers 500, both with the same body.
- **HTML pages** (``index.html``, ``api.html``) are read from
  ``config.static_dir`` and returned as raw ``HTMLResponse`` objects; the
  rest of that directory is mounted at ``/static``.

Endpoints
---------
========  =====================  ========================================
Method    Path                   Purpose
========  =====================  ========================================
GET       ``/``                  Upload page
GET       ``/api``               API documentation page
POST      ``/detect-watermark``  Ask the model whether a watermark exists
POST      ``/remove-watermark``  Produce a watermark-free image
GET       ``/health``            Liveness check
========  =====================  ========================================

Usage
-----
CLI (installed entry point)::

    clearmark

Direct invocation::

    python -m clearmark.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from clearmark import __version__
from clearmark.api.models import (
    DetectionResponse,
    ErrorResponse,
    HealthResponse,
    RemovalResponse,
)
from clearmark.core.config import config
from clearmark.core.errors import BadRequestError, ClearmarkError, MissingImageError
from clearmark.core.gemini import GeminiClient
from clearmark.core.prompts import REMOVAL_PROMPTS
from clearmark.core.remover import WatermarkRemover

logger = logging.getLogger(__name__)

STATIC_DIR: Path = config.static_dir


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the remover on startup and purge stale uploads.

    The Gemini client is created lazily on the first model call, so the
    server starts even when no API key is configured.
    """
    remover = WatermarkRemover(config, GeminiClient(config))
    remover.store.purge_stale_uploads(config.upload_retention_hours)
    app.state.remover = remover
    logger.info("Watermark remover ready (removal model: %s).", config.removal_model)

    yield


app = FastAPI(
    title="Clearmark",
    description="Watermark detection and removal backed by Gemini.",
    version=__version__,
    lifespan=lifespan,
)

ERROR_RESPONSES = {
    status: {"model": ErrorResponse} for status in (400, 413, 422, 500, 502)
}

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/static", StaticFiles(directory=str(STATIC_DIR), check_dir=False), name="static")


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(),
    )


@app.exception_handler(ClearmarkError)
async def clearmark_error_handler(request: Request, exc: ClearmarkError) -> JSONResponse:
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return _error_response(exc.status_code, str(exc))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed form fields (e.g. ``image`` sent as text) as 400."""
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    )
    logger.error("%s %s rejected: %s", request.method, request.url.path, problems)
    return _error_response(400, f"Invalid request: {problems}")


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("%s %s failed unexpectedly", request.method, request.url.path)
    return _error_response(500, str(exc) or exc.__class__.__name__)


def _page(name: str) -> HTMLResponse:
    path = STATIC_DIR / name
    if path.exists():
        return HTMLResponse(content=path.read_text(encoding="utf-8"))
    raise HTTPException(status_code=404, detail=f"{name} not found")


async def _read_upload(
    image: UploadFile | None, remover: WatermarkRemover
) -> tuple[bytes, str]:
    """Read the upload without buffering more than one byte past the limit."""
    if image is None:
        raise MissingImageError()
    filename = image.filename or ""
    if image.size is not None:
        remover.check_upload_size(image.size, filename)
    data = await image.read(remover.max_upload_bytes + 1)
    remover.check_upload_size(len(data), filename)
    return data, filename


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.get("/", response_class=HTMLResponse)
async def index() -> HTMLResponse:
    """Serve the upload page."""
    return _page("index.html")


@app.get("/api", response_class=HTMLResponse)
async def api_docs() -> HTMLResponse:
    """Serve the human-readable API documentation page."""
    return _page("api.html")


@app.post("/detect-watermark", response_model=DetectionResponse, responses=ERROR_RESPONSES)
async def detect_watermark(
    request: Request,
    image: UploadFile | None = File(None),
) -> DetectionResponse:
    """Ask the detection model whether the uploaded image has a watermark.

    Args:
        image: Multipart file field named ``image``.

    Returns:
        ``success``, ``hasWatermark``, ``explanation`` and any further keys
        the model included in its JSON reply.

    Raises:
        ClearmarkError: Rendered by :func:`clearmark_error_handler`.
    """
    remover: WatermarkRemover = request.app.state.remover
    data, filename = await _read_upload(image, remover)
    verdict = await remover.detect(data, filename)
    return DetectionResponse.from_verdict(verdict)


@app.post("/remove-watermark", response_model=RemovalResponse, responses=ERROR_RESPONSES)
async def remove_watermark(
    request: Request,
    image: UploadFile | None = File(None),
    prompt: str | None = Form(None),
    prompt_style: str = Form("default"),
) -> RemovalResponse:
    """Remove the watermark from the uploaded image.

    Args:
        image: Multipart file field named ``image``.
        prompt: Optional free-text instruction replacing the preset.
        prompt_style: Preset name, ``"default"`` or ``"structured"``.  The
            structured preset asks the model for a JSON verdict as well.

    Returns:
        ``success``, ``text``, base64 ``image``, ``mimeType``,
        ``watermarkRemoved`` and any keys from the model's JSON reply.

    Raises:
        ClearmarkError: 400 for an unknown ``prompt_style``.  Rendered by
            :func:`clearmark_error_handler`.
    """
    if prompt_style not in REMOVAL_PROMPTS:
        raise BadRequestError(
            f"prompt_style must be one of: {', '.join(sorted(REMOVAL_PROMPTS))}"
        )
    instruction = (prompt or "").strip() or REMOVAL_PROMPTS[prompt_style]

    remover: WatermarkRemover = request.app.state.remover
    data, filename = await _read_upload(image, remover)
    result = await remover.remove(data, filename, instruction)
    return RemovalResponse.from_result(result)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Configure logging and launch the uvicorn ASGI server.

    Host and port come from :data:`~clearmark.core.config.config`
    (``CLEARMARK_SERVER_HOST``, and ``PORT`` or ``CLEARMARK_SERVER_PORT``).
    Registered as the ``clearmark`` console script in ``pyproject.toml``.
    """
    import uvicorn

    from clearmark.core.logging_config import setup_logging

    setup_logging(config)
    logger.info("Server is running on port %d", config.server_port)
    uvicorn.run(
        "clearmark.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
        log_config=None,
    )


if __name__ == "__main__":
    main()
