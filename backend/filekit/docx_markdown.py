from __future__ import annotations

import io
import re
import zipfile

import mammoth
from bs4 import BeautifulSoup
from markdownify import markdownify as md

from .logging_utils import get_logger

log = get_logger(__name__)

_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


class DocxConversionError(RuntimeError):
    pass


def docx_to_html(data: bytes) -> str:
    if not data:
        raise DocxConversionError("Empty document")
    if not zipfile.is_zipfile(io.BytesIO(data)):
        raise DocxConversionError("Not a .docx file")
    try:
        result = mammoth.convert_to_html(io.BytesIO(data))
    except (KeyError, ValueError, zipfile.BadZipFile) as e:
        raise DocxConversionError(f"Could not read document: {e}") from e
    for message in result.messages:
        log.debug("mammoth: %s", message)
    return result.value or ""


def html_to_markdown(html: str) -> str:
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    body = md(str(soup), heading_style="ATX", bullets="-", strip=["span"])
    return _EXCESS_BLANK_LINES.sub("\n\n", body).strip()


def docx_to_markdown(data: bytes) -> str:
    return html_to_markdown(docx_to_html(data))
