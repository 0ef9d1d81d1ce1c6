from __future__ import annotations
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from invoicing.models.client import CompanyProfile

logger = logging.getLogger(__name__)

# --- Chemins de base ---
ROOT_DIR = Path(__file__).resolve().parents[1]
TEMPLATES_DIR = Path(__file__).resolve().parent / "templates" / "pdf"


def data_dir() -> Path:
    return Path(os.environ.get("INVOICING_DATA_DIR") or ROOT_DIR / "data")


def settings_path() -> Path:
    return Path(os.environ.get("INVOICING_SETTINGS") or data_dir() / "settings.json")


# ---------- Utils JSON ----------
def _load_json(path: os.PathLike | str):
    p = Path(path)
    if not p.exists():
        return None
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.warning("Lecture de %s impossible, valeurs par défaut", p)
        return None


class NumberingSettings(BaseModel):
    invoice_prefix: str = "A"
    width: int = Field(default=5, ge=1, le=12)
    strategy: Literal["unique_retry", "counter"] = "unique_retry"


class PdfSettings(BaseModel):
    wkhtmltopdf_path: Optional[str] = None


class Settings(BaseModel):
    numbering: NumberingSettings = Field(default_factory=NumberingSettings)
    max_commit_retries: int = Field(default=5, ge=1)
    default_currency: Literal["USD", "EUR", "GBP", "CAD", "AUD", "INR"] = "INR"
    company: CompanyProfile = Field(default_factory=CompanyProfile)
    customization: Dict[str, Any] = Field(default_factory=dict)
    pdf: PdfSettings = Field(default_factory=PdfSettings)


def load_settings(path: os.PathLike | str | None = None) -> Settings:
    raw = _load_json(path or settings_path()) or {}
    if not isinstance(raw, dict):
        return Settings()
    try:
        return Settings(**raw)
    except ValidationError as e:
        logger.warning("settings.json invalide (%s), valeurs par défaut", e.error_count())
        return Settings()
