import io
import json
import zipfile
from urllib.parse import unquote

import docx
import openpyxl
import pytest
from fastapi.testclient import TestClient
from fpdf import FPDF
from PIL import Image

from backend.filekit import main
from backend.filekit.renderers import RenderServices
from backend.filekit.storage import TempStore


def _png(size=(8, 8), fmt="PNG") -> bytes:
    out = io.BytesIO()
    Image.new("RGB", size, color=(30, 30, 30)).save(out, format=fmt)
    return out.getvalue()


def _pdf(pages: int = 1) -> bytes:
    pdf = FPDF()
    pdf.set_font("Helvetica", size=12)
    for i in range(pages):
        pdf.add_page()
        pdf.text(20, 20, f"Page {i + 1}")
    return bytes(pdf.output())


def _fake_services() -> RenderServices:
    async def fetch_image(url):
        return _png()

    async def render_math(latex, display_mode):
        return _png()

    async def render_diagram(source):
        return _png()

    return RenderServices(fetch_image=fetch_image, render_math=render_math, render_diagram=render_diagram)


@pytest.fixture
def client(tmp_path):
    store = TempStore(tmp_path / "downloads")
    main.app.dependency_overrides[main.get_render_services] = _fake_services
    main.app.dependency_overrides[main.get_store] = lambda: store
    try:
        yield TestClient(main.app)
    finally:
        main.app.dependency_overrides.clear()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_markdown_to_docx_route(client):
    resp = client.post("/api/convert-mark-to-doc", json={"markdown": "# Hello\n\nSee $x$ and ![i](http://x/i.png)"})
    assert resp.status_code == 200
    assert "converted.docx" in resp.headers["content-disposition"]
    document = docx.Document(io.BytesIO(resp.content))
    assert document.paragraphs[0].text == "Hello"


def test_markdown_to_docx_requires_markdown(client):
    resp = client.post("/api/convert-mark-to-doc", json={"markdown": "  "})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No markdown provided"


def test_docx_to_markdown_route(client):
    document = docx.Document()
    document.add_heading("Agenda", level=2)
    buf = io.BytesIO()
    document.save(buf)
    resp = client.post("/api/convert-doc-to-mark", files={"file": ("a.docx", buf.getvalue(), "application/octet-stream")})
    assert resp.status_code == 200
    assert resp.json()["markdown"].startswith("## Agenda")

    bad = client.post("/api/convert-doc-to-mark", files={"file": ("a.docx", b"nope", "application/octet-stream")})
    assert bad.status_code == 400


def test_pdf_to_images_download_is_single_use(client):
    resp = client.post("/api/convert", files={"file": ("doc.pdf", _pdf(2), "application/pdf")})
    assert resp.status_code == 200
    body = resp.json()
    assert body["pages"] == 2
    assert body["zip"] == f"/api/download/{body['id']}"

    first = client.get(body["zip"])
    assert first.status_code == 200
    assert zipfile.ZipFile(io.BytesIO(first.content)).namelist() == ["page-1.png", "page-2.png"]
    second = client.get(body["zip"])
    assert second.status_code == 404
    assert "detail" in second.json()


def test_pdf_to_images_rejects_garbage(client):
    resp = client.post("/api/convert", files={"file": ("doc.pdf", b"garbage", "application/pdf")})
    assert resp.status_code == 400


def test_images_to_pdf_route(client):
    files = [
        ("images", ("a.png", _png((30, 20)), "image/png")),
        ("images", ("b.jpg", _png((10, 40), fmt="JPEG"), "image/jpeg")),
    ]
    resp = client.post("/api/image-to-pdf", files=files)
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert resp.headers["cache-control"] == "no-store"
    assert resp.content.startswith(b"%PDF")


def test_images_to_pdf_rejects_unsupported_and_too_many(client):
    gif = [("images", ("a.gif", _png(fmt="GIF"), "image/gif"))]
    assert client.post("/api/image-to-pdf", files=gif).status_code == 415
    many = [("images", (f"{i}.png", _png(), "image/png")) for i in range(51)]
    assert client.post("/api/image-to-pdf", files=many).status_code == 413


def test_csv_excel_routes(client):
    resp = client.post("/api/csv-to-excel", files={"file": ("t.csv", b"a,b\n1,2\n", "text/csv")})
    assert resp.status_code == 200
    ws = openpyxl.load_workbook(io.BytesIO(resp.content)).active
    assert ws["B2"].value == 2

    back = client.post("/api/excel-to-csv", files={"file": ("t.xlsx", resp.content, "application/octet-stream")})
    assert back.status_code == 200
    assert back.text == "a,b\n1,2\n"

    preview = client.post("/api/sheet-preview", files={"file": ("t.csv", b"h\n1\n2\n3\n4\n5\n6\n7\n", "text/csv")})
    assert preview.status_code == 200
    assert preview.json()["total_rows"] == 8
    assert len(preview.json()["rows"]) == 6

    bad = client.post("/api/excel-to-csv", files={"file": ("t.ods", b"x", "application/octet-stream")})
    assert bad.status_code == 400


def test_sign_route(client):
    placements = [{"pageIndex": 0, "x": 0.9, "y": 0.9, "width": 0.2, "height": 0.05, "text": "Signed"}]
    resp = client.post(
        "/api/sign",
        files={"pdf": ("doc.pdf", _pdf(1), "application/pdf")},
        data={"placements": json.dumps(placements), "reason": "Approved", "signedAt": "2024-05-01T12:00:00Z"},
    )
    assert resp.status_code == 200
    assert "signed.pdf" in resp.headers["content-disposition"]
    assert resp.headers["cache-control"] == "no-store"
    meta = json.loads(unquote(resp.headers["x-signature-meta"]))
    assert meta["reason"] == "Approved"
    assert meta["signedAt"].startswith("2024-05-01T12:00:00")


def test_sign_route_rejects_bad_placements(client):
    files = {"pdf": ("doc.pdf", _pdf(1), "application/pdf")}
    assert client.post("/api/sign", files=files, data={"placements": "not json"}).status_code == 400
    out_of_range = json.dumps([{"pageIndex": 4, "text": "x"}])
    assert client.post("/api/sign", files=files, data={"placements": out_of_range}).status_code == 400
