"""Configuration management for the Prompt Library.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the PROMPTLIB_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (PROMPTLIB_* prefix)
2. .env file in the project root
3. Default values defined in PromptLibConfig

Example .env file:
    PROMPTLIB_DATABASE_PATH=data/promptlib.db
    PROMPTLIB_ATTACHMENTS_DIR=data/attachments
    PROMPTLIB_MAX_UPLOAD_BYTES=52428800
    PROMPTLIB_URL_SIGNING_SECRET=change-me

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
This ensures a single source of truth for all configuration values across
the application.

Usage Example
-------------
    from promptlib.core.config import config

    print(config.database_path)
    print(config.allowed_image_types)

Directory Management
--------------------
The configuration automatically creates required directories on initialization:
- data_dir: Root for the SQLite database
- attachments_dir: Root for stored card images
"""

import secrets
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_IMAGE_TYPES = frozenset({"image/png", "image/jpeg", "image/gif"})
DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024


class PromptLibConfig(BaseSettings):
    """Main configuration for the Prompt Library.

    Values are loaded from environment variables with the PROMPTLIB_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Paths:
        data_dir : Path
            Directory holding the SQLite database
        database_path : Path
            SQLite database file for card records
        attachments_dir : Path
            Directory backing the local attachment store

    Upload policy:
        allowed_image_types : set[str]
            MIME types accepted for output and reference images
        max_upload_bytes : int
            Maximum accepted size for a single image

    Attachment URLs:
        signed_url_ttl_seconds : int
            Lifetime of issued read URLs
        url_signing_secret : str
            HMAC key for read URLs (random per process when unset)
        attachments_url_prefix : str
            Route prefix that serves stored objects

    Runtime:
        db_timeout_seconds : float
            SQLite busy timeout; a timed-out call is a failed call
        cleanup_workers : int
            Worker threads used for deferred attachment deletion
        server_host : str
            Server bind address
        server_port : int
            Server port (1024-65535)
        log_level : str
            Root log level used by the CLI entry point

    Notes
    -----
    - All directories are created automatically if they don't exist
    - To modify config, set environment variables and restart the application
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PROMPTLIB_",
        case_sensitive=False,
    )

    # Paths
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding the SQLite database",
    )
    database_path: Path = Field(
        default=Path("data/promptlib.db"),
        description="SQLite database file for card records",
    )
    attachments_dir: Path = Field(
        default=Path("data/attachments"),
        description="Directory backing the local attachment store",
    )

    # Upload policy
    allowed_image_types: set[str] = Field(
        default_factory=lambda: set(DEFAULT_ALLOWED_IMAGE_TYPES),
        description="MIME types accepted for card images",
    )
    max_upload_bytes: int = Field(
        default=DEFAULT_MAX_UPLOAD_BYTES,
        description="Maximum size of a single uploaded image in bytes",
        ge=1,
    )

    # Attachment URLs
    signed_url_ttl_seconds: int = Field(
        default=3600,
        description="Lifetime of signed attachment read URLs",
        ge=1,
    )
    url_signing_secret: str = Field(
        default_factory=lambda: secrets.token_hex(32),
        description="HMAC key for signed attachment URLs",
    )
    attachments_url_prefix: str = Field(
        default="/attachments",
        description="Route prefix under which stored objects are served",
    )

    # Runtime
    db_timeout_seconds: float = Field(
        default=10.0,
        description="SQLite busy timeout in seconds",
        gt=0,
    )
    cleanup_workers: int = Field(
        default=4,
        description="Worker threads for deferred attachment deletion",
        ge=1,
        le=32,
    )
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=7860,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level for the CLI entry point",
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.attachments_dir.mkdir(parents=True, exist_ok=True)


# Global configuration instance
# Loads values from environment variables (PROMPTLIB_* prefix) and .env file.
config = PromptLibConfig()
