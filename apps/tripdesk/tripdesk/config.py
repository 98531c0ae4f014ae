from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent
VAR_DIR = BASE_DIR / "var"
DEFAULT_DB_PATH = VAR_DIR / "tripdesk.sqlite3"
DEFAULT_STORAGE_DIR = VAR_DIR / "storage"


class Config:
    SECRET_KEY = os.environ.get("TRIPDESK_SECRET", "dev-secret")
    BACKEND_URL = os.environ.get("TRIPDESK_BACKEND_URL", "")
    BACKEND_KEY = os.environ.get("TRIPDESK_BACKEND_KEY", "")
    DB_PATH = os.environ.get("TRIPDESK_DB", str(DEFAULT_DB_PATH))
    STORAGE_DIR = os.environ.get("TRIPDESK_STORAGE", str(DEFAULT_STORAGE_DIR))
    DEBUG = os.environ.get("TRIPDESK_DEBUG", "").lower() in {"1", "true", "yes"}

    TRIP_NAME = "Nyandarua"
    TRIP_DATE = "2025-08-24T08:00:00"
    TRIP_COST = int(os.environ.get("TRIPDESK_TRIP_COST", "1500"))

    AVATAR_BUCKET = "participant-avatars"
    AVATAR_MAX_BYTES = 5 * 1024 * 1024
    AVATAR_SERVICE_URL = "https://ui-avatars.com/api/"
    AVATAR_SIZE = 128


def is_backend_configured(config=Config) -> bool:
    return bool(config.BACKEND_URL and config.BACKEND_KEY)
