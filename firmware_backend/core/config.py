# firmware_backend/core/config.py
import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# ================== ENV ==================

ROOT_DIR = Path(__file__).resolve().parents[2]
load_dotenv(ROOT_DIR / ".env")

def env(*names: str, default: Optional[str] = None) -> str:
    for n in names:
        v = os.environ.get(n)
        if v is not None and str(v).strip() != "":
            return v
    if default is not None:
        return default
    raise KeyError(f"Missing required env var. Tried: {', '.join(names)}")

# ================== GITHUB ==================

GITHUB_API_BASE = "https://api.github.com"
GITHUB_WEBHOOK_SECRET = os.environ.get("GITHUB_WEBHOOK_SECRET", "")

# GitHub App credentials are optional: without them assets are fetched anonymously.
GITHUB_APP_ID = os.environ.get("GITHUB_APP_ID", "")
GITHUB_APP_PRIVATE_KEY = os.environ.get("GITHUB_APP_PRIVATE_KEY", "")

USER_AGENT = os.environ.get("USER_AGENT", "Firmware OTA Updater")

def github_app_configured() -> bool:
    return bool(GITHUB_APP_ID and GITHUB_APP_PRIVATE_KEY)

# ================== FIRMWARE ==================

PUBLIC_BASE_URL = env("PUBLIC_BASE_URL", default="http://localhost:8000").rstrip("/")
FIRMWARE_STORAGE_PATH = env("FIRMWARE_STORAGE_PATH", default=str(ROOT_DIR / "firmware_data"))

# Per-fetch deadline for release manifests and binaries (seconds)
FETCH_TIMEOUT_SECONDS = float(os.environ.get("FETCH_TIMEOUT_SECONDS", "60"))

# ================== QUEUE ==================

QUEUE_WORKERS = int(os.environ.get("QUEUE_WORKERS", "1"))
QUEUE_MAX_DELIVERIES = int(os.environ.get("QUEUE_MAX_DELIVERIES", "5"))
QUEUE_RETRY_DELAY_SECONDS = float(os.environ.get("QUEUE_RETRY_DELAY_SECONDS", "5"))

# ================== SERVER ==================

CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# ================== DATABASE ==================
# SQLite for local development, MySQL when configured

DATABASE_URL = os.environ.get("DATABASE_URL", "")

def get_database_url() -> str:
    """Get database URL - supports SQLite or MySQL."""
    if DATABASE_URL:
        return DATABASE_URL

    mysql_host = os.environ.get("MYSQL_HOST")
    if mysql_host:
        mysql_port = int(os.environ.get("MYSQL_PORT", "3306"))
        mysql_user = os.environ.get("MYSQL_USER", "root")
        mysql_password = os.environ.get("MYSQL_PASSWORD", "")
        mysql_db = os.environ.get("MYSQL_DB", "firmware")
        return f"mysql+aiomysql://{mysql_user}:{mysql_password}@{mysql_host}:{mysql_port}/{mysql_db}?charset=utf8mb4"

    # Default to SQLite
    db_path = ROOT_DIR / "firmware.db"
    return f"sqlite+aiosqlite:///{db_path}"
