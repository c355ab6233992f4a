from __future__ import annotations

import os
from pathlib import Path


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


REPO_ROOT = _repo_root()

TMP_DIR = Path(os.getenv("FILEKIT_TMP_DIR", str(REPO_ROOT / "backend" / "tmp")))
FONT_DIR = Path(os.getenv("FILEKIT_FONT_DIR", str(REPO_ROOT / "backend" / "assets" / "fonts")))

LOG_LEVEL = os.getenv("FILEKIT_LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("FILEKIT_CORS_ORIGINS", "*").split(",") if o.strip()]

FETCH_TIMEOUT_S = _env_float("FILEKIT_FETCH_TIMEOUT_S", 15.0)
FETCH_MAX_BYTES = _env_int("FILEKIT_FETCH_MAX_BYTES", 10 * 1024 * 1024)
USER_AGENT = "file-conversion-toolkit/0.1 (+local)"

MATH_RENDER_URL = os.getenv("FILEKIT_MATH_RENDER_URL", "https://latex.codecogs.com/png.image?")
MERMAID_RENDER_URL = os.getenv("FILEKIT_MERMAID_RENDER_URL", "https://mermaid.ink/img/").rstrip("/") + "/"

PDF_DPI = _env_int("FILEKIT_PDF_DPI", 100)

MB = 1024 * 1024
MAX_PDF_BYTES = 50 * MB
MAX_SHEET_BYTES = 20 * MB
MAX_DOCX_BYTES = 20 * MB
MAX_IMAGE_BYTES = 25 * MB
MAX_IMAGES = 50
