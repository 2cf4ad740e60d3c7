"""Application configuration.

Environment variables override all defaults.
"""

import os
from pathlib import Path
from typing import List


# Load .env for local development (safe no-op if not installed)
try:
    from dotenv import load_dotenv  # type: ignore

    _BACKEND_DIR = Path(__file__).resolve().parents[2]
    load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)
except ImportError:
    pass


class Settings:
    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./optistore.db")

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Identifier generation: attempts before the timestamp fallback kicks in
    IDENTIFIER_MAX_RETRIES: int = int(os.getenv("IDENTIFIER_MAX_RETRIES", "3"))

    DEFAULT_ORDER_STATUS: str = os.getenv("DEFAULT_ORDER_STATUS", "Processing")
    HISTORY_PAGE_SIZE: int = int(os.getenv("HISTORY_PAGE_SIZE", "50"))

    # CORS (front desk terminals only)
    CORS_ORIGINS: List[str] = [
        origin.strip()
        for origin in os.getenv(
            "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        ).split(",")
        if origin.strip()
    ]


settings = Settings()
