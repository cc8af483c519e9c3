"""
config.py – environment-driven settings and logging setup for the exam portal
"""

import logging
import os

# ── Paths ─────────────────────────────────────────────────────────────────────

BASE_DIR   = os.path.dirname(os.path.abspath(__file__))
STATIC_DIR = os.path.join(BASE_DIR, "static")
DB_PATH    = os.environ.get("EXAM_PORTAL_DB") or os.path.join(BASE_DIR, "exam_portal.db")

# ── Examiner sign-in ──────────────────────────────────────────────────────────

JWT_SECRET_FILE   = os.path.join(BASE_DIR, ".jwt_secret")
TOKEN_EXPIRE_DAYS = int(os.environ.get("EXAM_PORTAL_TOKEN_DAYS", "7"))

# ── Public URLs ───────────────────────────────────────────────────────────────

BASE_URL      = os.environ.get("EXAM_PORTAL_BASE_URL", "http://localhost:8000").rstrip("/")
EXTERNAL_HOST = os.environ.get("EXAM_PORTAL_EXTERNAL_HOST") or None

# ── Upload limits ─────────────────────────────────────────────────────────────

PDF_MEDIA_TYPE       = "application/pdf"
MAX_UPLOAD_BYTES     = 10 * 1024 * 1024
UPLOAD_PROGRESS_STEP = 10

# ── Logging ───────────────────────────────────────────────────────────────────

LOG_LEVEL = os.environ.get("EXAM_PORTAL_LOG_LEVEL", "INFO").upper()


def configure_logging() -> logging.Logger:
    """Configure basic logging for the service and return the app logger."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    return logging.getLogger("exam_portal")
