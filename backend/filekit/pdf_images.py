from __future__ import annotations

import io
import zipfile

import fitz  # PyMuPDF

from .config import PDF_DPI
from .logging_utils import get_logger

log = get_logger(__name__)


class PdfImageError(RuntimeError):
    pass


def pdf_to_png_pages(data: bytes, *, dpi: int = PDF_DPI) -> list[bytes]:
    """Rasterise every page of a PDF to PNG, in page order."""
    if not data:
        raise PdfImageError("Empty PDF")
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        raise PdfImageError(f"Could not open PDF: {e}") from e
    with doc:
        if doc.page_count == 0:
            raise PdfImageError("PDF has no pages")
        pages: list[bytes] = []
        for page in doc:
            pix = page.get_pixmap(dpi=int(dpi), alpha=False)
            pages.append(pix.tobytes("png"))
    log.info("Rendered %d page(s) at %d dpi", len(pages), dpi)
    return pages


def page_filename(index: int) -> str:
    return f"page-{index + 1}.png"


def bundle_pages_zip(pages: list[bytes]) -> bytes:
    out = io.BytesIO()
    with zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as zf:
        for i, png in enumerate(pages):
            zf.writestr(page_filename(i), png)
    return out.getvalue()
