"""Raster pre- and post-processing around the Gemini calls.

Everything here is built on Pillow primitives (``convert``, ``getchannel``,
``resize``, ``ImageOps.pad``, ``alpha_composite``, ``ImageStat``).  SVG
uploads are rasterised with CairoSVG first since Pillow has no SVG decoder.

The three jobs of this module:

1. **Format normalisation** — Gemini only receives JPEG or PNG.  Anything
   else, and any PNG carrying alpha, is flattened onto white and re-encoded
   as PNG.  The original bytes are kept so transparency can be restored.
2. **Transparency reapplication** — the original alpha channel is resized to
   the model's output dimensions and joined back onto the result.
3. **Blank-result detection** — a model reply that is almost entirely white
   usually means the model erased the subject along with the watermark.
"""

from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass
from pathlib import PurePath

from PIL import Image, ImageChops, ImageOps, ImageStat

from clearmark.core.errors import ImageConversionError

logger = logging.getLogger(__name__)

VALID_EXTENSIONS = frozenset(
    {
        ".png",
        ".jpg",
        ".jpeg",
        ".webp",
        ".svg",
        ".gif",
        ".bmp",
        ".tiff",
        ".tif",
        ".avif",
    }
)
JPEG_EXTENSIONS = frozenset({".jpg", ".jpeg"})
UPLOAD_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".tiff": "image/tiff",
    ".tif": "image/tiff",
    ".avif": "image/avif",
}

WHITE = (255, 255, 255)
# A pixel is "white" when all three channels exceed this level.  Off-white
# backgrounds left behind by the model are caught as well.
WHITE_PIXEL_LEVEL = 230
# Channel stddev above ~10% of the range means the image is not uniform.
MAX_UNIFORM_STDDEV = 25


@dataclass
class PreparedImage:
    """An upload normalised into something the model accepts.

    Attributes:
        data: Bytes to send to Gemini (JPEG or PNG).
        filename: Name matching ``data``'s format (extension may have
            changed to ``.png``).
        converted: ``True`` if ``data`` differs from the upload.
        has_transparency: ``True`` if the upload carried an alpha channel.
        original_data: The untouched upload, kept only when it is needed
            to restore transparency afterwards.
        original_format: Lower-cased extension of the upload, e.g. ``".webp"``.
    """

    data: bytes
    filename: str
    converted: bool
    has_transparency: bool
    original_data: bytes | None
    original_format: str


def file_extension(filename: str) -> str:
    """Return the lower-cased extension of *filename*, including the dot."""
    return os.path.splitext(filename)[1].lower()


def is_valid_image_type(filename: str) -> bool:
    return file_extension(filename) in VALID_EXTENSIONS


def mime_type_for(filename: str) -> str:
    """Map a filename to the MIME type Gemini is told about.

    Only PNG and JPEG are ever sent, so everything that is not ``.png``
    falls back to ``image/jpeg``.
    """
    if file_extension(filename) == ".png":
        return "image/png"
    return "image/jpeg"


def upload_mime_type(filename: str) -> str:
    """MIME type of an upload in its own, unconverted format."""
    return UPLOAD_MIME_TYPES.get(file_extension(filename), "application/octet-stream")


def _open_image(data: bytes, extension: str = "") -> Image.Image:
    """Decode *data* into a fully loaded Pillow image."""
    if extension == ".svg":
        import cairosvg

        data = cairosvg.svg2png(bytestring=data)
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def _encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def _flatten_on_white(image: Image.Image) -> bytes:
    """Composite *image* over an opaque white canvas and encode as PNG."""
    rgba = image.convert("RGBA")
    canvas = Image.new("RGBA", rgba.size, WHITE + (255,))
    canvas.alpha_composite(rgba)
    return _encode_png(canvas.convert("RGB"))


def convert_to_supported_format(data: bytes, filename: str) -> PreparedImage:
    """Normalise an upload into JPEG or PNG for the model.

    - JPEG uploads pass through untouched.
    - PNG uploads pass through unless they carry alpha, in which case they
      are flattened onto white (the filename is unchanged).
    - Every other format is flattened onto white, encoded as PNG and given
      a ``.png`` filename.

    Args:
        data: Raw upload bytes.
        filename: Client-supplied filename, used to determine the format.

    Returns:
        A :class:`PreparedImage` describing what will be sent to the model.

    Raises:
        ImageConversionError: If the upload cannot be decoded or re-encoded.
    """
    extension = file_extension(filename)

    if extension in JPEG_EXTENSIONS:
        return PreparedImage(
            data=data,
            filename=filename,
            converted=False,
            has_transparency=False,
            original_data=None,
            original_format=extension,
        )

    try:
        image = _open_image(data, extension)
        has_transparency = image.has_transparency_data

        if extension == ".png":
            if not has_transparency:
                return PreparedImage(
                    data=data,
                    filename=filename,
                    converted=False,
                    has_transparency=False,
                    original_data=None,
                    original_format=extension,
                )

            logger.info("PNG with transparency detected, preserving alpha information")
            return PreparedImage(
                data=_flatten_on_white(image),
                filename=filename,
                converted=True,
                has_transparency=True,
                original_data=data,
                original_format=extension,
            )

        logger.info("Converting %s image to png format with white background", extension)
        flattened = _flatten_on_white(image)
    except Exception as exc:
        logger.error("Error converting image: %s", exc)
        raise ImageConversionError(f"Failed to convert image: {exc}") from exc

    stem = os.path.splitext(PurePath(filename).name)[0]
    return PreparedImage(
        data=flattened,
        filename=f"{stem}.png",
        converted=True,
        has_transparency=has_transparency,
        original_data=data if has_transparency else None,
        original_format=extension,
    )


def reapply_transparency(
    processed_data: bytes,
    original_data: bytes,
    original_format: str = "",
) -> bytes:
    """Restore the upload's alpha channel onto the model's output.

    The model rarely returns an image with the upload's exact dimensions, so
    the alpha channel is resized first.  How it is resized depends on how far
    apart the two aspect ratios are, measured as
    ``abs(width_ratio - height_ratio)``:

    - above 0.5: the whole RGBA original is padded ("contain") to the output
      size over a transparent canvas and its alpha taken from there;
    - above 0.2: the alpha channel alone is padded ("contain") with zeros;
    - otherwise: the alpha channel is stretched to the output size.

    This step is best-effort: on any failure the error is logged and
    *processed_data* is returned unchanged.

    Args:
        processed_data: Image bytes returned by the model.
        original_data: The untouched upload carrying the alpha channel.
        original_format: Extension of the upload (needed to decode SVG).

    Returns:
        PNG bytes with the restored alpha, or *processed_data* unchanged.
    """
    try:
        logger.info("Reapplying transparency to processed image")
        processed = _open_image(processed_data)
        original = _open_image(original_data, original_format)

        logger.debug(
            "Original dimensions: %dx%d, Processed dimensions: %dx%d",
            original.width,
            original.height,
            processed.width,
            processed.height,
        )

        if not original.has_transparency_data:
            logger.warning(
                "Original image does not have an alpha channel despite being marked as transparent"
            )
            return processed_data

        size = processed.size
        width_ratio = processed.width / original.width
        height_ratio = processed.height / original.height
        ratio_difference = abs(width_ratio - height_ratio)

        original = original.convert("RGBA")
        if ratio_difference > 0.5:
            logger.warning("Extreme aspect ratio difference detected, using composite approach")
            alpha = ImageOps.pad(original, size, color=(0, 0, 0, 0)).getchannel("A")
        elif ratio_difference > 0.2:
            logger.warning('Significant aspect ratio difference detected, using "contain" fit strategy')
            alpha = ImageOps.pad(original.getchannel("A"), size, color=0)
        else:
            alpha = original.getchannel("A").resize(size)

        result = processed.convert("RGB")
        result.putalpha(alpha)
        return _encode_png(result)
    except Exception as exc:
        logger.error("Error reapplying transparency: %s", exc)
        return processed_data


def _normalise_mode(image: Image.Image) -> Image.Image:
    if image.mode in ("L", "LA", "RGB", "RGBA"):
        return image
    return image.convert("RGBA" if image.has_transparency_data else "RGB")


def is_mostly_white(
    data: bytes,
    white_threshold: float = 0.99,
    brightness_threshold: float = 0.99,
) -> bool:
    """Decide whether *data* is a blank (mostly white) image.

    An image counts as blank when either:

    1. the share of white pixels (R, G and B all above 230) exceeds
       *white_threshold*, or
    2. the average channel brightness (0-1) exceeds *brightness_threshold*
       **and** every channel's standard deviation is at most 25.

    Args:
        data: Encoded image bytes.
        white_threshold: Maximum tolerated share of white pixels.
        brightness_threshold: Maximum tolerated average brightness for a
            near-uniform image.

    Returns:
        ``True`` if the image looks blank.  Undecodable input is logged
        and reported as ``False``.
    """
    try:
        image = _normalise_mode(_open_image(data))
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        logger.error("Error checking if image is white: %s", exc)
        return False

    stat = ImageStat.Stat(image)
    avg_brightness = sum(mean / 255 for mean in stat.mean) / len(stat.mean)
    low_variation = all(stddev <= MAX_UNIFORM_STDDEV for stddev in stat.stddev)

    rgb = image.convert("RGB")
    masks = [band.point(lambda v: 255 if v > WHITE_PIXEL_LEVEL else 0) for band in rgb.split()]
    white_mask = ImageChops.darker(ImageChops.darker(masks[0], masks[1]), masks[2])
    white_pixels = white_mask.histogram()[255]
    total_pixels = rgb.width * rgb.height
    white_ratio = white_pixels / total_pixels

    logger.debug(
        "White pixel ratio: %.4f (%d of %d pixels)", white_ratio, white_pixels, total_pixels
    )
    logger.debug("Average brightness: %.4f, Low variation: %s", avg_brightness, low_variation)

    return white_ratio > white_threshold or (
        avg_brightness > brightness_threshold and low_variation
    )
