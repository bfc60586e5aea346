# genstudio/core/config.py
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from openai import OpenAI

# ================== ENV ==================

ROOT_DIR = Path(__file__).resolve().parents[2]
load_dotenv(ROOT_DIR / ".env", override=False)


def env(*names: str, default: Optional[str] = None) -> str:
    for n in names:
        v = os.environ.get(n)
        if v is not None and str(v).strip() != "":
            return v
    if default is not None:
        return default
    raise KeyError(f"Missing required env var. Tried: {', '.join(names)}")


# ================== OPENAI ==================

def get_openai_client() -> OpenAI:
    """
    Lazy init: the package imports without a key.
    Only the generation stages require OPENAI_API_KEY.
    """
    key = os.environ.get("OPENAI_API_KEY")
    if not key:
        raise RuntimeError("OPENAI_API_KEY not configured (.env).")
    return OpenAI(api_key=key)


TEXT_MODEL = env("OPENAI_TEXT_MODEL", default="gpt-4.1-mini")
ANALYSIS_MODEL = env("OPENAI_ANALYSIS_MODEL", default=TEXT_MODEL)
REFINEMENT_MODEL = env("OPENAI_REFINEMENT_MODEL", default=TEXT_MODEL)
VISION_MODEL = env("OPENAI_VISION_MODEL", default="gpt-4.1")
IMAGE_MODEL = env("OPENAI_IMAGE_MODEL", default="gpt-image-1")

# ================== DATABASE ==================

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
        mysql_db = os.environ.get("MYSQL_DB", "genstudio")
        return f"mysql+aiomysql://{mysql_user}:{mysql_password}@{mysql_host}:{mysql_port}/{mysql_db}?charset=utf8mb4"

    db_path = ROOT_DIR / "genstudio.db"
    return f"sqlite+aiosqlite:///{db_path}"

# ================== STORAGE ==================

STORAGE_ENDPOINT_URL = os.environ.get("STORAGE_ENDPOINT_URL", "").strip() or None
STORAGE_REGION = os.environ.get("STORAGE_REGION", "us-east-1")
STORAGE_ACCESS_KEY_ID = os.environ.get("STORAGE_ACCESS_KEY_ID", "").strip() or None
STORAGE_SECRET_ACCESS_KEY = os.environ.get("STORAGE_SECRET_ACCESS_KEY", "").strip() or None
# Public objects are served from here; falls back to <endpoint>/<bucket>/<path>
STORAGE_PUBLIC_BASE_URL = os.environ.get("STORAGE_PUBLIC_BASE_URL", "").rstrip("/")

IMAGE_BUCKET = env("IMAGE_BUCKET", default="generated-images")
CAPTION_BUCKET = env("CAPTION_BUCKET", default="generated-captions")
CAPTION_SOURCE_BUCKET = env("CAPTION_SOURCE_BUCKET", default="caption-source-images")

# ================== UPLOADS ==================

UPLOAD_MAX_ATTEMPTS = int(os.environ.get("UPLOAD_MAX_ATTEMPTS", "5"))
UPLOAD_BACKOFF_BASE_SECONDS = float(os.environ.get("UPLOAD_BACKOFF_BASE_SECONDS", "1.0"))
UPLOAD_BACKOFF_CAP_SECONDS = float(os.environ.get("UPLOAD_BACKOFF_CAP_SECONDS", "5.0"))

# Decoded image payloads below this are treated as corrupt
MIN_ARTIFACT_BYTES = int(os.environ.get("MIN_ARTIFACT_BYTES", "1000"))
MIN_BASE64_CHARS = 100

# ================== GENERATION ==================

DEFAULT_IMAGE_COUNT = 3
MAX_IMAGE_COUNT = 12
IMAGE_BATCH_SIZE = 4
DEFAULT_ASPECT_RATIO = "3:4"

# Analysis + enhancement + prompt creation, then one unit per image
IMAGE_BASE_UNITS = 3
CAPTION_UNITS = 2

# ================== LOGGING ==================

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, level or LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
