"""Math and diagram rasterisation through remote render services.

Both renderers return PNG bytes. The math renderer returns ``b""`` when the
formula cannot be rendered; the diagram renderer never fails and returns an
error-labelled placeholder instead.
"""

from __future__ import annotations

import base64
import io
from dataclasses import dataclass, field
from typing import Awaitable, Callable
from urllib.parse import quote

import httpx
from PIL import Image, ImageDraw, ImageFont

from .config import MATH_RENDER_URL, MERMAID_RENDER_URL
from .fetcher import FetchError, fetch_image, fetch_url, normalize_image
from .logging_utils import get_logger

log = get_logger(__name__)

MATH_INLINE_SIZE = (140, 40)
MATH_DISPLAY_SIZE = (500, 120)
DIAGRAM_SIZE = (600, 400)
IMAGE_SIZE = (300, 200)

_MAX_SERVICE_URL = 2000


def placeholder_png(message: str, *, width: int = 600, height: int = 120) -> bytes:
    img = Image.new("RGB", (max(width, 1), max(height, 1)), color=(250, 250, 250))
    draw = ImageDraw.Draw(img)
    draw.rectangle([0, 0, img.width - 1, img.height - 1], outline=(200, 60, 60))
    font = ImageFont.load_default()
    draw.text((10, 10), str(message or "render failed")[:200], fill=(160, 30, 30), font=font)
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def math_render_url(latex: str, display_mode: bool) -> str:
    expr = str(latex or "").strip()
    if display_mode:
        expr = r"\displaystyle " + expr
    return MATH_RENDER_URL + quote(r"\dpi{150} " + expr)


def mermaid_render_url(source: str) -> str | None:
    encoded = base64.urlsafe_b64encode(str(source or "").encode("utf-8")).decode("ascii").rstrip("=")
    url = f"{MERMAID_RENDER_URL}{encoded}?type=png"
    return url if len(url) <= _MAX_SERVICE_URL else None


async def render_math(latex: str, display_mode: bool, *, client: httpx.AsyncClient | None = None) -> bytes:
    if not str(latex or "").strip():
        return b""
    try:
        result = await fetch_url(math_render_url(latex, display_mode), client=client)
        return normalize_image(result.content)
    except FetchError as e:
        log.warning("Math render failed for %r: %s", latex[:80], e)
        return b""


async def render_diagram(source: str, *, client: httpx.AsyncClient | None = None) -> bytes:
    url = mermaid_render_url(source)
    if not url:
        log.warning("Mermaid source too long to render (%d chars)", len(source or ""))
        return placeholder_png("Mermaid render failed: diagram too large", width=DIAGRAM_SIZE[0], height=DIAGRAM_SIZE[1])
    try:
        result = await fetch_url(url, client=client)
        return normalize_image(result.content)
    except FetchError as e:
        log.warning("Mermaid render failed: %s", e)
        return placeholder_png(f"Mermaid render failed: {e}", width=DIAGRAM_SIZE[0], height=DIAGRAM_SIZE[1])


@dataclass(frozen=True)
class RenderServices:
    """External collaborators used while building a document."""

    fetch_image: Callable[[str], Awaitable[bytes | None]] = field(default=fetch_image)
    render_math: Callable[[str, bool], Awaitable[bytes]] = field(default=render_math)
    render_diagram: Callable[[str], Awaitable[bytes]] = field(default=render_diagram)
