import io
import zipfile

import pytest
from fpdf import FPDF
from PIL import Image
from pypdf import PdfReader

from backend.filekit.images_pdf import (
    ImageLimitError,
    ImagePdfError,
    ImageUpload,
    UnsupportedImageError,
    images_to_pdf,
)
from backend.filekit.pdf_images import PdfImageError, bundle_pages_zip, pdf_to_png_pages


def _make_pdf(pages: int = 2) -> bytes:
    pdf = FPDF()
    pdf.set_font("Helvetica", size=14)
    for i in range(pages):
        pdf.add_page()
        pdf.text(20, 20, f"Page {i + 1}")
    return bytes(pdf.output())


def _image(fmt: str, size: tuple[int, int]) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", size, color=(240, 180, 0)).save(out, format=fmt)
    return out.getvalue()


def test_pdf_pages_render_to_png_in_order():
    pages = pdf_to_png_pages(_make_pdf(2), dpi=50)
    assert len(pages) == 2
    for png in pages:
        with Image.open(io.BytesIO(png)) as img:
            assert img.format == "PNG"
            assert img.height > img.width


def test_bundle_names_pages_from_one():
    archive = zipfile.ZipFile(io.BytesIO(bundle_pages_zip([b"a", b"b", b"c"])))
    assert archive.namelist() == ["page-1.png", "page-2.png", "page-3.png"]
    assert archive.read("page-2.png") == b"b"


def test_invalid_pdf_is_rejected():
    with pytest.raises(PdfImageError):
        pdf_to_png_pages(b"%PDF-not really")
    with pytest.raises(PdfImageError):
        pdf_to_png_pages(b"")


def test_images_become_pages_sized_to_pixels():
    uploads = [
        ImageUpload(name="wide.png", content_type="image/png", data=_image("PNG", (200, 100))),
        ImageUpload(name="tall.jpg", content_type="image/jpeg", data=_image("JPEG", (50, 80))),
    ]
    reader = PdfReader(io.BytesIO(images_to_pdf(uploads)))
    sizes = [(float(p.mediabox.width), float(p.mediabox.height)) for p in reader.pages]
    assert sizes == [pytest.approx((200.0, 100.0)), pytest.approx((50.0, 80.0))]


def test_image_limits_and_types():
    with pytest.raises(ImagePdfError):
        images_to_pdf([])
    gif = ImageUpload(name="a.gif", content_type="image/gif", data=_image("GIF", (10, 10)))
    with pytest.raises(UnsupportedImageError):
        images_to_pdf([gif])
    disguised = ImageUpload(name="a.png", content_type="image/png", data=_image("GIF", (10, 10)))
    with pytest.raises(UnsupportedImageError):
        images_to_pdf([disguised])
    png = ImageUpload(name="a.png", content_type="image/png", data=_image("PNG", (4, 4)))
    with pytest.raises(ImageLimitError):
        images_to_pdf([png] * 51)
