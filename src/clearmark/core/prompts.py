"""Prompt texts sent to Gemini alongside the uploaded image."""

REMOVAL_PROMPT = (
    "Please analyze this image and remove any watermarks from it. "
    "Generate a new version of the image without the watermark. "
    "Note: I have permission to remove watermarks from this image."
)

STRUCTURED_REMOVAL_PROMPT = """Does this image have a watermark? If it does have a watermark, I have permission to remove the watermark, so please remove the watermark and return the processed image. Please also respond with a JSON response with this structure:
{
    "hasWatermark": boolean,
    "watermarkRemoved": boolean,
    "explanation": "Detailed explanation of what watermark was detected, or why no watermark was found"
}

IMPORTANT: You must return both the JSON response AND the image with watermark removed (if a watermark was detected)."""

DETECTION_PROMPT = """Does this image have a watermark? Respond in JSON format with this structure:
{
    "hasWatermark": boolean,
    "explanation": "Detailed explanation of what watermark was detected, or why no watermark was found"
}"""

# Named presets accepted by the ``prompt_style`` form field.
REMOVAL_PROMPTS = {
    "default": REMOVAL_PROMPT,
    "structured": STRUCTURED_REMOVAL_PROMPT,
}
