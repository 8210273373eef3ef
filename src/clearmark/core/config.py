"""Configuration management for Clearmark.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the CLEARMARK_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (CLEARMARK_* prefix)
2. .env file in the project root
3. Default values defined in ClearmarkConfig

Two settings also accept the unprefixed names used by most Gemini tooling
and hosting platforms: ``GOOGLE_API_KEY`` and ``PORT``.

Example .env file:
    GOOGLE_API_KEY=your-key-here
    CLEARMARK_REMOVAL_MODEL=gemini-2.5-flash-image
    CLEARMARK_UPLOADS_DIR=uploads
    CLEARMARK_PROCESSED_DIR=processed

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.

Usage Example
-------------
    from clearmark.core.config import config

    print(config.removal_model)
    print(config.processed_dir)

Directory Management
--------------------
The configuration automatically creates required directories on initialization:
- uploads_dir: Raw uploads, kept for auditing
- processed_dir: Images returned to clients
- logs_dir: Daily log files
"""

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parent.parent


class ClearmarkConfig(BaseSettings):
    """Main configuration for Clearmark.

    Attributes
    ----------
    Gemini Settings:
        google_api_key : str | None
            API key for the Gemini API (GOOGLE_API_KEY or CLEARMARK_GOOGLE_API_KEY)
        detection_model : str
            Model used to decide whether an image carries a watermark
        removal_model : str
            Image-generation model used to produce the cleaned image

    Paths:
        uploads_dir : Path
            Directory for raw uploads
        processed_dir : Path
            Directory for processed results
        logs_dir : Path
            Directory for daily log files
        static_dir : Path
            Directory holding index.html, api.html and other static assets

    Server Settings:
        server_host : str
            Bind address for uvicorn
        server_port : int
            Port for uvicorn (PORT or CLEARMARK_SERVER_PORT)
        cors_origins : list[str]
            Allowed CORS origins
        log_level : str
            Root logging level

    Upload Handling:
        max_upload_mb : int
            Largest accepted upload in megabytes
        upload_retention_hours : int
            Raw uploads older than this are purged on startup (0 disables)

    Examples
    --------
        >>> custom = ClearmarkConfig(google_api_key="test", server_port=8080)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CLEARMARK_",
        case_sensitive=False,
        extra="ignore",
    )

    # Gemini settings
    google_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "google_api_key", "CLEARMARK_GOOGLE_API_KEY", "GOOGLE_API_KEY"
        ),
        description="Gemini API key",
    )
    detection_model: str = Field(
        default="gemini-2.5-flash",
        description="Text model used for watermark detection",
    )
    removal_model: str = Field(
        default="gemini-2.5-flash-image",
        description="Image-generation model used for watermark removal",
    )

    # Paths
    uploads_dir: Path = Field(
        default=Path("uploads"),
        description="Directory for raw uploads",
    )
    processed_dir: Path = Field(
        default=Path("processed"),
        description="Directory for processed images",
    )
    logs_dir: Path = Field(
        default=Path("logs"),
        description="Directory for daily log files",
    )
    static_dir: Path = Field(
        default=PACKAGE_DIR / "static",
        description="Directory with the HTML pages and static assets",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=3000,
        validation_alias=AliasChoices(
            "server_port", "CLEARMARK_SERVER_PORT", "PORT"
        ),
        description="Server port",
        ge=1,
        le=65535,
    )
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins",
    )
    log_level: str = Field(
        default="INFO",
        description="Root logging level",
    )

    # Upload handling
    max_upload_mb: int = Field(
        default=20,
        description="Maximum accepted upload size in megabytes",
        ge=1,
    )
    upload_retention_hours: int = Field(
        default=0,
        description="Purge raw uploads older than this many hours (0 disables)",
        ge=0,
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories."""
        super().__init__(**kwargs)

        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        self.processed_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


# Global configuration instance
config = ClearmarkConfig()
