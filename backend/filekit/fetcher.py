from __future__ import annotations

import base64
import binascii
import io
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

import httpx
from PIL import Image, UnidentifiedImageError

from .config import FETCH_MAX_BYTES, FETCH_TIMEOUT_S, USER_AGENT
from .logging_utils import get_logger

log = get_logger(__name__)

# Formats python-docx can embed as-is; anything else Pillow can open is re-encoded to PNG.
_EMBEDDABLE_FORMATS = {"PNG", "JPEG", "GIF", "BMP"}


class FetchError(RuntimeError):
    pass


@dataclass(frozen=True)
class FetchResult:
    url: str
    final_url: str
    status: int
    content_type: str
    content: bytes
    truncated: bool


def _is_http_url(url: str) -> bool:
    try:
        u = urlparse(url)
    except Exception:
        return False
    return u.scheme in ("http", "https")


async def _read_limited(resp: httpx.Response, max_bytes: int) -> tuple[bytes, bool]:
    if max_bytes <= 0:
        raise FetchError("max_bytes must be > 0")
    buf = bytearray()
    truncated = False
    async for chunk in resp.aiter_bytes():
        if not chunk:
            continue
        remaining = max_bytes - len(buf)
        if remaining <= 0:
            truncated = True
            break
        if len(chunk) > remaining:
            buf.extend(chunk[:remaining])
            truncated = True
            break
        buf.extend(chunk)
    return bytes(buf), truncated


def decode_data_url(url: str) -> tuple[str, bytes]:
    """Split a ``data:`` URL into its media type and decoded payload."""
    raw = str(url or "").strip()
    if not raw.lower().startswith("data:") or "," not in raw:
        raise FetchError("not a data: URL")
    header, _, payload = raw[5:].partition(",")
    parts = header.split(";")
    media_type = parts[0].strip().lower() or "text/plain"
    try:
        if "base64" in (p.strip().lower() for p in parts[1:]):
            data = base64.b64decode(payload, validate=False)
        else:
            data = unquote(payload).encode("utf-8")
    except (binascii.Error, ValueError) as e:
        raise FetchError(f"Invalid data: URL payload: {e}") from e
    return media_type, data


async def fetch_url(
    url: str,
    *,
    timeout_s: float = FETCH_TIMEOUT_S,
    max_bytes: int = FETCH_MAX_BYTES,
    client: httpx.AsyncClient | None = None,
) -> FetchResult:
    if not isinstance(url, str) or not url.strip() or not _is_http_url(url):
        raise FetchError("url must be a valid http/https URL")

    headers = {"user-agent": USER_AGENT, "accept": "image/*,*/*;q=0.8"}

    own_client = client is None
    if client is None:
        client = httpx.AsyncClient(follow_redirects=True, timeout=httpx.Timeout(timeout_s))
    try:
        async with client.stream("GET", url, headers=headers) as resp:
            status = int(resp.status_code)
            content_type = str(resp.headers.get("content-type", "") or "")
            raw_type = content_type.split(";", 1)[0].strip().lower()
            if status >= 400:
                raise FetchError(f"Fetch failed ({status}) for {url}")
            data, truncated = await _read_limited(resp, max_bytes=max_bytes)
            if truncated:
                raise FetchError(f"Resource exceeds {max_bytes} bytes: {url}")
            return FetchResult(
                url=url,
                final_url=str(resp.url),
                status=status,
                content_type=raw_type or content_type,
                content=data,
                truncated=truncated,
            )
    except (httpx.TimeoutException, httpx.HTTPError) as e:
        raise FetchError(f"Fetch failed: {type(e).__name__}: {e}") from e
    except (httpx.InvalidURL, UnicodeError) as e:
        # Malformed hosts (bad IDNA labels, control characters) fail while building the request.
        raise FetchError(f"Invalid URL: {e}") from e
    finally:
        if own_client:
            await client.aclose()


def normalize_image(data: bytes) -> bytes:
    """Return image bytes python-docx can embed, converting to PNG when needed."""
    if not data:
        raise FetchError("empty image")
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = (img.format or "").upper()
            if fmt in _EMBEDDABLE_FORMATS:
                return data
            img.load()
            if img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
                img = img.convert("RGBA")
            out = io.BytesIO()
            img.save(out, format="PNG")
            return out.getvalue()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise FetchError(f"Unsupported image data: {e}") from e


async def fetch_image(url: str, *, client: httpx.AsyncClient | None = None) -> bytes | None:
    """Fetch an image by URL; ``None`` when it cannot be fetched or decoded."""
    src = str(url or "").strip()
    if not src:
        return None
    try:
        if src.lower().startswith("data:"):
            _, data = decode_data_url(src)
        else:
            data = (await fetch_url(src, client=client)).content
        return normalize_image(data)
    except FetchError as e:
        log.warning("Image fetch failed for %s: %s", src[:120], e)
        return None
