"""Core functionality for watermark detection and removal.

- **config**: Pydantic Settings configuration (``CLEARMARK_`` prefix)
- **logging_config**: console and daily-file logging
- **errors**: exception hierarchy mapped to HTTP status codes
- **imaging**: Pillow format normalisation, transparency and blank checks
- **gemini**: async Gemini client and reply parsing
- **storage**: upload/result directories and filename sanitising
- **remover**: the detection and removal workflows
"""

from clearmark.core.config import ClearmarkConfig, config
from clearmark.core.gemini import GeminiClient
from clearmark.core.remover import RemovalResult, WatermarkRemover

__all__ = [
    "ClearmarkConfig",
    "config",
    "GeminiClient",
    "RemovalResult",
    "WatermarkRemover",
]
