"""
tinyapp configuration — all environment variables in one place.

Read from environment at runtime. Never hardcode credentials.
"""

from __future__ import annotations

import os


class Settings:
    """Application settings from environment variables."""

    # Remote store (Google Drive v3)
    DRIVE_API_URL: str = os.environ.get("DRIVE_API_URL", "https://www.googleapis.com/drive/v3")
    DRIVE_UPLOAD_URL: str = os.environ.get("DRIVE_UPLOAD_URL", "https://www.googleapis.com/upload/drive/v3")
    ROOT_FOLDER_NAME: str = os.environ.get("ROOT_FOLDER_NAME", "tiny-app.dev")
    REMOTE_TIMEOUT_SECONDS: float = float(os.environ.get("REMOTE_TIMEOUT_SECONDS", "30"))

    # Local cache
    CACHE_PATH: str = os.environ.get("CACHE_PATH", "~/.tinyapp/cache.json")
    APP_CACHE_MAX: int = int(os.environ.get("APP_CACHE_MAX", "4"))

    # Credentials
    TOKEN_EXPIRY_BUFFER_SECONDS: int = int(os.environ.get("TOKEN_EXPIRY_BUFFER_SECONDS", "300"))

    # Application
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")
    ENVIRONMENT: str = os.environ.get("ENVIRONMENT", "development")

    @property
    def cache_file(self) -> str:
        return os.path.expanduser(self.CACHE_PATH)


# Singleton instance
settings = Settings()

if settings.APP_CACHE_MAX < 1:
    raise RuntimeError("APP_CACHE_MAX must be at least 1")
