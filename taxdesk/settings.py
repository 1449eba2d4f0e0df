"""
taxdesk.settings
================

Configuration settings for the taxdesk application.

Module‑level constants hold deployment knobs (database file, API host,
log level) read from environment variables; the pydantic
:class:`Settings` model carries the engine tunables.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Base directories
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent

# Database settings
# ---------------------------------------------------------------------------
DB_FILE = os.environ.get("TAXDESK_DB_FILE", str(BASE_DIR / "taxdesk.db"))
DB_URL = os.environ.get("TAXDESK_DB_URL", f"sqlite:///{DB_FILE}")
DB_ECHO = os.environ.get("TAXDESK_DB_ECHO", "False").lower() == "true"
DB_TIMEOUT = float(os.environ.get("TAXDESK_DB_TIMEOUT", "5"))

# API settings
# ---------------------------------------------------------------------------
API_HOST = os.environ.get("TAXDESK_API_HOST", "127.0.0.1")
API_PORT = int(os.environ.get("TAXDESK_API_PORT", "8000"))
API_DEBUG = os.environ.get("TAXDESK_API_DEBUG", "False").lower() == "true"

# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL = os.environ.get("TAXDESK_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Install the root handler once; safe to call repeatedly."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


# ---------------------------------------------------------------------------
# Pydantic settings model for engine tunables
# ---------------------------------------------------------------------------
class Settings(BaseSettings):
    """Pydantic model for application settings, loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TAXDESK_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    deadline_window_days: int = Field(30, ge=0, description="Default look‑ahead for upcoming deadlines")
    default_page_size: int = Field(10, ge=1, description="Listing page size when none is given")
    max_page_size: int = Field(100, ge=1, description="Upper bound on a listing page size")
    cors_origins: List[str] = Field(
        default=["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:3000"],
        description="Origins allowed by the API CORS middleware",
    )


# Initialize settings
settings = Settings()
