from __future__ import annotations

import io
from dataclasses import dataclass

from fpdf import FPDF
from PIL import Image, UnidentifiedImageError

from .config import MAX_IMAGE_BYTES, MAX_IMAGES
from .logging_utils import get_logger

log = get_logger(__name__)

SUPPORTED_FORMATS = {"JPEG", "PNG"}
SUPPORTED_CONTENT_TYPES = {"image/jpeg", "image/jpg", "image/pjpeg", "image/png"}


class ImagePdfError(RuntimeError):
    pass


class UnsupportedImageError(ImagePdfError):
    pass


class ImageLimitError(ImagePdfError):
    pass


@dataclass(frozen=True)
class ImageUpload:
    name: str
    content_type: str
    data: bytes


def pdf_bytes(pdf: FPDF) -> bytes:
    output = pdf.output()
    if isinstance(output, (bytes, bytearray)):
        return bytes(output)
    return str(output).encode("latin-1", "replace")


def check_image_limits(images: list[ImageUpload]) -> None:
    if not images:
        raise ImagePdfError("No images uploaded")
    if len(images) > MAX_IMAGES:
        raise ImageLimitError(f"Too many images: {len(images)} (max {MAX_IMAGES})")
    for image in images:
        ctype = (image.content_type or "").split(";", 1)[0].strip().lower()
        if ctype and ctype not in SUPPORTED_CONTENT_TYPES:
            raise UnsupportedImageError(f"Unsupported image type for {image.name}: {ctype}")
        if len(image.data) > MAX_IMAGE_BYTES:
            raise ImageLimitError(f"Image too large: {image.name}")


def probe_image(image: ImageUpload) -> tuple[int, int]:
    """Return pixel dimensions, rejecting anything that is not a JPEG or PNG."""
    try:
        with Image.open(io.BytesIO(image.data)) as img:
            fmt = (img.format or "").upper()
            size = img.size
    except (UnidentifiedImageError, OSError) as e:
        raise UnsupportedImageError(f"Unreadable image {image.name}: {e}") from e
    if fmt not in SUPPORTED_FORMATS:
        raise UnsupportedImageError(f"Unsupported image format for {image.name}: {fmt or 'unknown'}")
    return size


def images_to_pdf(images: list[ImageUpload]) -> bytes:
    """One page per image, each page exactly the image's pixel size in points."""
    check_image_limits(images)
    sizes = [probe_image(image) for image in images]

    pdf = FPDF(unit="pt")
    pdf.set_auto_page_break(auto=False)
    pdf.set_margins(0, 0, 0)
    pdf.set_creator("filekit")
    for image, (width, height) in zip(images, sizes):
        pdf.add_page(format=(width, height))
        pdf.image(io.BytesIO(image.data), x=0, y=0, w=width, h=height)
    log.info("Built PDF from %d image(s)", len(images))
    return pdf_bytes(pdf)
