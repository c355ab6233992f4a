"""Stamp signature images and typed signatures onto an existing PDF.

Placements arrive in normalised page coordinates (0..1, top-left origin, as a
browser preview reports them). Each page that carries placements gets an
overlay page drawn with fpdf2, which pypdf then merges onto the source page.
"""

from __future__ import annotations

import datetime as dt
import io
import re
from dataclasses import dataclass
from pathlib import Path

from fpdf import FPDF
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pypdf import PdfReader, PdfWriter, Transformation
from pypdf.errors import PdfReadError

from .config import FONT_DIR
from .fetcher import FetchError, decode_data_url
from .images_pdf import pdf_bytes
from .logging_utils import get_logger

log = get_logger(__name__)

PRODUCER = "File Conversion Toolkit - Signer"
CREATOR = "File Conversion Toolkit"
DEFAULT_FONT = "Helvetica"
DEFAULT_SIZE_PT = 18.0

FONT_FILES: dict[str, str] = {
    "Great Vibes": "GreatVibes-Regular.ttf",
    "Dancing Script": "DancingScript-Regular.ttf",
    "Pacifico": "Pacifico-Regular.ttf",
    "Caveat": "Caveat-Regular.ttf",
    "Sacramento": "Sacramento-Regular.ttf",
    "Allura": "Allura-Regular.ttf",
    "Satisfy": "Satisfy-Regular.ttf",
}

_HEX_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")
_SIGNATURE_IMAGE_TYPES = {"image/png", "image/jpeg", "image/jpg"}

_ASCII_REPLACEMENTS = {
    "\u00a0": " ",
    "\u200b": "",
    "\u2013": "-",
    "\u2014": "--",
    "\u2018": "'",
    "\u2019": "'",
    "\u201c": '"',
    "\u201d": '"',
    "\u2026": "...",
}


class SignError(RuntimeError):
    pass


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class Placement(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page_index: int = Field(alias="pageIndex", ge=0)
    x: float = 0.0
    y: float = 0.0
    width: float = 0.2
    height: float = 0.08
    data_url: str | None = Field(default=None, alias="dataUrl")
    text: str | None = None
    font_name: str | None = Field(default=None, alias="fontName")
    color: str = "#000000"
    size_pt: float = Field(default=DEFAULT_SIZE_PT, alias="sizePt", gt=0)

    @field_validator("color", mode="before")
    @classmethod
    def _normalize_color(cls, value: object) -> str:
        match = _HEX_COLOR_RE.match(str(value or "").strip())
        return f"#{match.group(1).lower()}" if match else "#000000"

    @model_validator(mode="after")
    def _clamp_rect(self) -> "Placement":
        if not self.data_url and not (self.text or "").strip():
            raise ValueError("placement needs either dataUrl or text")
        self.width = _clamp(self.width, 0.0, 1.0)
        self.height = _clamp(self.height, 0.0, 1.0)
        self.x = _clamp(self.x, 0.0, 1.0 - self.width)
        self.y = _clamp(self.y, 0.0, 1.0 - self.height)
        return self


@dataclass(frozen=True)
class PageRect:
    """Absolute rectangle in PDF points, bottom-left origin."""

    x: float
    y: float
    width: float
    height: float


def to_page_rect(placement: Placement, page_width: float, page_height: float) -> PageRect:
    return PageRect(
        x=placement.x * page_width,
        y=page_height - (placement.y + placement.height) * page_height,
        width=placement.width * page_width,
        height=placement.height * page_height,
    )


def _normalize_ascii(text: str) -> str:
    out = text
    for key, val in _ASCII_REPLACEMENTS.items():
        out = out.replace(key, val)
    return out


def _sanitize_pdf_text(text: str, *, allow_unicode: bool) -> str:
    if allow_unicode:
        return text
    cleaned = _normalize_ascii(text)
    return cleaned.encode("latin-1", "replace").decode("latin-1")


def _hex_to_rgb(color: str) -> tuple[int, int, int]:
    raw = color.lstrip("#")
    return int(raw[0:2], 16), int(raw[2:4], 16), int(raw[4:6], 16)


def _signature_image(data_url: str) -> bytes:
    try:
        media_type, data = decode_data_url(data_url)
    except FetchError as e:
        raise SignError(f"Invalid signature image: {e}") from e
    if media_type not in _SIGNATURE_IMAGE_TYPES:
        raise SignError(f"Unsupported signature image type: {media_type}")
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError) as e:
        raise SignError(f"Unreadable signature image: {e}") from e
    return data


class _OverlayBuilder:
    def __init__(self, font_dir: Path = FONT_DIR) -> None:
        self.pdf = FPDF(unit="pt")
        self.pdf.set_auto_page_break(auto=False)
        self.pdf.set_margins(0, 0, 0)
        self._font_dir = font_dir
        self._fonts: dict[str, str | None] = {}

    def _font_family(self, name: str | None) -> str | None:
        """Registered family for a script font, or ``None`` to use the core font."""
        if not name:
            return None
        if name in self._fonts:
            return self._fonts[name]
        family: str | None = None
        filename = FONT_FILES.get(name)
        path = self._font_dir / filename if filename else None
        if path is not None and path.exists():
            family = name.replace(" ", "")
            self.pdf.add_font(family, style="", fname=str(path))
        else:
            log.info("Font %r unavailable, using %s", name, DEFAULT_FONT)
        self._fonts[name] = family
        return family

    def add_page(self, width: float, height: float, placements: list[Placement]) -> None:
        self.pdf.add_page(format=(width, height))
        for placement in placements:
            rect = to_page_rect(placement, width, height)
            # fpdf2 draws from the top-left corner.
            top = height - (rect.y + rect.height)
            if placement.data_url:
                data = _signature_image(placement.data_url)
                self.pdf.image(io.BytesIO(data), x=rect.x, y=top, w=rect.width, h=rect.height)
                continue
            family = self._font_family(placement.font_name)
            self.pdf.set_font(family or DEFAULT_FONT, "", placement.size_pt)
            self.pdf.set_text_color(*_hex_to_rgb(placement.color))
            text = _sanitize_pdf_text(str(placement.text), allow_unicode=family is not None)
            self.pdf.text(rect.x, top + rect.height, text)

    def output(self) -> bytes:
        return pdf_bytes(self.pdf)


def _pdf_date(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    value = value.astimezone(dt.timezone.utc)
    return value.strftime("D:%Y%m%d%H%M%S+00'00'")


def parse_signed_at(value: str | None) -> dt.datetime:
    raw = str(value or "").strip()
    if not raw:
        return dt.datetime.now(dt.timezone.utc)
    try:
        return dt.datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as e:
        raise SignError(f"Invalid signedAt timestamp: {raw}") from e


def sign_pdf(
    data: bytes,
    placements: list[Placement],
    *,
    reason: str | None = None,
    signed_at: dt.datetime | None = None,
    font_dir: Path = FONT_DIR,
) -> bytes:
    if not data:
        raise SignError("Empty PDF")
    try:
        reader = PdfReader(io.BytesIO(data))
        page_count = len(reader.pages)
    except (PdfReadError, ValueError, OSError) as e:
        raise SignError(f"Could not read PDF: {e}") from e

    by_page: dict[int, list[Placement]] = {}
    for placement in placements:
        if placement.page_index >= page_count:
            raise SignError(f"Page index {placement.page_index} out of range (pages: {page_count})")
        by_page.setdefault(placement.page_index, []).append(placement)

    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)

    if by_page:
        overlay = _OverlayBuilder(font_dir)
        order = sorted(by_page)
        for index in order:
            box = writer.pages[index].mediabox
            overlay.add_page(float(box.width), float(box.height), by_page[index])
        overlay_pages = PdfReader(io.BytesIO(overlay.output())).pages
        for overlay_page, index in zip(overlay_pages, order):
            box = writer.pages[index].mediabox
            writer.pages[index].merge_transformed_page(
                overlay_page, Transformation().translate(float(box.left), float(box.bottom))
            )

    now = dt.datetime.now(dt.timezone.utc)
    metadata = {
        "/Producer": PRODUCER,
        "/Creator": CREATOR,
        "/CreationDate": _pdf_date(signed_at or now),
        "/ModDate": _pdf_date(now),
    }
    if reason:
        metadata["/Subject"] = f"Signed: {reason}"
    writer.add_metadata(metadata)

    out = io.BytesIO()
    writer.write(out)
    log.info("Signed PDF: %d placement(s) on %d page(s)", len(placements), len(by_page))
    return out.getvalue()
