# invoicing/services/pdf_service.py
from __future__ import annotations
import logging
import os
import re
from pathlib import Path
from shutil import which
from typing import Iterator, Optional

import pdfkit
from jinja2 import Environment, FileSystemLoader, select_autoescape

from invoicing.models.document import Document
from invoicing.models.template import Customization
from invoicing.settings import TEMPLATES_DIR, Settings, load_settings

logger = logging.getLogger(__name__)

# emplacements d'installation par défaut sous Windows
WINDOWS_WKHTMLTOPDF = (
    r"C:\Program Files\wkhtmltopdf\bin\wkhtmltopdf.exe",
    r"C:\Program Files (x86)\wkhtmltopdf\bin\wkhtmltopdf.exe",
)

# pages déjà dimensionnées en pt : aucune marge côté moteur
PDFKIT_OPTIONS = {
    "enable-local-file-access": None,
    "quiet": "",
    "encoding": "UTF-8",
    "page-size": "A4",
    "margin-top": "0",
    "margin-bottom": "0",
    "margin-left": "0",
    "margin-right": "0",
}


def _file_name(number: Optional[str]) -> str:
    name = re.sub(r'[\\/:*?"<>|\s]+', "_", (number or "").strip())
    return f"{name or 'invoice'}.pdf"


def _normalize_exe(raw: str) -> str:
    """Chemin tel que saisi (guillemets, 'C\\:' échappé) -> chemin propre."""
    cleaned = raw.strip().strip("\"'").replace("\\:", ":")
    return os.path.normpath(cleaned) if cleaned else ""


def _candidates(settings: Settings) -> Iterator[str]:
    for key in ("WKHTMLTOPDF", "WKHTMLTOPDF_CMD"):
        if os.environ.get(key):
            yield os.environ[key]
    if settings.pdf.wkhtmltopdf_path:
        yield settings.pdf.wkhtmltopdf_path
    yield from WINDOWS_WKHTMLTOPDF


def find_wkhtmltopdf(settings: Optional[Settings] = None) -> Optional[str]:
    """Premier wkhtmltopdf existant : env, settings.json, installations Windows, puis PATH."""
    for raw in _candidates(settings or load_settings()):
        path = _normalize_exe(raw)
        if path and Path(path).is_file():
            return path
    on_path = which("wkhtmltopdf")
    return _normalize_exe(on_path) if on_path else None


def _render_pdf_with_weasyprint(html: str, out_path: Path) -> None:
    try:
        from weasyprint import HTML
    except ImportError as e:
        raise RuntimeError(
            "Neither wkhtmltopdf nor WeasyPrint is available: install one of them "
            "(pip install weasyprint) or set WKHTMLTOPDF"
        ) from e
    HTML(string=html, base_url=str(TEMPLATES_DIR)).write_pdf(str(out_path))


# ---------- HTML ----------
_env: Optional[Environment] = None


def _environment() -> Environment:
    global _env
    if _env is None:
        _env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html", "xml"]),
        )
    return _env


def render_html(document: Document, customization: Optional[Customization] = None) -> str:
    """Une div par page, chaque texte et chaque ligne de tableau positionnés en absolu (pt)."""
    return _environment().get_template("document.html").render(
        document=document,
        custom=customization or Customization(),
    )


def export_pdf(
    document: Document,
    customization: Optional[Customization] = None,
    out_dir: Optional[str | Path] = None,
    settings: Optional[Settings] = None,
) -> str:
    """Écrit <numéro>.pdf via wkhtmltopdf (pdfkit) si présent, sinon via WeasyPrint. Retourne le chemin."""
    settings = settings or load_settings()
    html = render_html(document, customization)

    target_dir = Path(out_dir) if out_dir else Path(os.environ.get("INVOICING_EXPORTS_DIR", "exports")) / "invoices"
    target_dir.mkdir(parents=True, exist_ok=True)
    out_path = target_dir / _file_name(document.invoice_number)

    exe = find_wkhtmltopdf(settings)
    if exe:
        try:
            pdfkit.from_string(
                html,
                str(out_path),
                options=PDFKIT_OPTIONS,
                configuration=pdfkit.configuration(wkhtmltopdf=exe),
            )
            return str(out_path)
        except OSError as e:
            logger.warning("wkhtmltopdf a échoué (%s), bascule sur WeasyPrint", e)

    _render_pdf_with_weasyprint(html, out_path)
    logger.info("PDF %s généré avec WeasyPrint", out_path.name)
    return str(out_path)
