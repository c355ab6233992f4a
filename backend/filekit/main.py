from __future__ import annotations

import json
from pathlib import PurePath
from urllib.parse import quote

from fastapi import Depends, FastAPI, File, Form, HTTPException, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import TypeAdapter, ValidationError

from .config import (
    CORS_ORIGINS,
    MATH_RENDER_URL,
    MAX_DOCX_BYTES,
    MAX_IMAGE_BYTES,
    MAX_IMAGES,
    MAX_PDF_BYTES,
    MAX_SHEET_BYTES,
    MB,
    MERMAID_RENDER_URL,
    PDF_DPI,
)
from .docx_markdown import DocxConversionError, docx_to_markdown
from .images_pdf import ImageLimitError, ImagePdfError, ImageUpload, UnsupportedImageError, images_to_pdf
from .logging_utils import get_logger
from .markdown_docx import markdown_to_docx
from .pdf_images import PdfImageError, bundle_pages_zip, pdf_to_png_pages
from .pdf_sign import Placement, SignError, parse_signed_at, sign_pdf
from .renderers import RenderServices
from .schemas import (
    ErrorResponse,
    HealthResponse,
    MarkdownResponse,
    MarkdownToDocxRequest,
    PdfImagesResponse,
    SheetPreviewResponse,
    SignatureMeta,
)
from .spreadsheets import (
    SpreadsheetError,
    csv_to_xlsx,
    parse_csv,
    preview_rows,
    read_workbook_rows,
    xlsx_to_csv,
)
from .storage import StoreError, TempStore

log = get_logger(__name__)

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

app = FastAPI(title="file-conversion-toolkit")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Signature-Meta"],
)

_placements_adapter = TypeAdapter(list[Placement])
_store = TempStore()


def get_render_services() -> RenderServices:
    return RenderServices()


def get_store() -> TempStore:
    return _store


def _attachment(
    data: bytes,
    *,
    filename: str,
    media_type: str,
    no_store: bool = False,
    extra_headers: dict[str, str] | None = None,
) -> Response:
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    if no_store:
        headers["Cache-Control"] = "no-store"
    headers.update(extra_headers or {})
    return Response(content=data, media_type=media_type, headers=headers)


async def _read_upload(upload: UploadFile | None, *, limit: int, label: str) -> bytes:
    if upload is None:
        raise HTTPException(status_code=400, detail=f"No {label} uploaded")
    data = await upload.read()
    if not data:
        raise HTTPException(status_code=400, detail=f"Uploaded {label} is empty")
    if len(data) > limit:
        raise HTTPException(status_code=413, detail=f"{label.capitalize()} too large (max {limit // MB} MB)")
    return data


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(math_render_url=MATH_RENDER_URL, mermaid_render_url=MERMAID_RENDER_URL)


@app.post("/api/convert-mark-to-doc")
async def convert_markdown_to_docx(
    req: MarkdownToDocxRequest,
    services: RenderServices = Depends(get_render_services),
) -> Response:
    if not req.markdown.strip():
        raise HTTPException(status_code=400, detail="No markdown provided")
    try:
        data = await markdown_to_docx(req.markdown, services)
    except Exception as e:
        log.exception("Markdown to DOCX conversion failed")
        raise HTTPException(status_code=500, detail=f"Conversion failed: {e}") from e
    return _attachment(data, filename="converted.docx", media_type=DOCX_MEDIA_TYPE)


@app.post("/api/convert-doc-to-mark", response_model=MarkdownResponse)
async def convert_docx_to_markdown(file: UploadFile = File(...)) -> MarkdownResponse:
    data = await _read_upload(file, limit=MAX_DOCX_BYTES, label="document")
    try:
        return MarkdownResponse(markdown=docx_to_markdown(data))
    except DocxConversionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@app.post("/api/convert", response_model=PdfImagesResponse)
async def convert_pdf_to_images(
    file: UploadFile = File(...),
    store: TempStore = Depends(get_store),
) -> PdfImagesResponse:
    data = await _read_upload(file, limit=MAX_PDF_BYTES, label="PDF")
    try:
        pages = pdf_to_png_pages(data, dpi=PDF_DPI)
    except PdfImageError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    item_id = store.put(bundle_pages_zip(pages), ".zip")
    return PdfImagesResponse(id=item_id, zip=f"/api/download/{item_id}", pages=len(pages))


@app.get("/api/download/{item_id}", responses={404: {"model": ErrorResponse}})
def download(item_id: str, store: TempStore = Depends(get_store)) -> Response:
    try:
        data = store.pop(item_id, ".zip")
    except StoreError as e:
        raise HTTPException(status_code=404, detail="File not found") from e
    return _attachment(data, filename="pdf-images.zip", media_type="application/zip")


@app.post("/api/image-to-pdf")
async def convert_images_to_pdf(images: list[UploadFile] = File(...)) -> Response:
    if not images:
        raise HTTPException(status_code=400, detail="No images uploaded")
    if len(images) > MAX_IMAGES:
        raise HTTPException(status_code=413, detail=f"Too many images (max {MAX_IMAGES})")
    uploads: list[ImageUpload] = []
    for upload in images:
        data = await _read_upload(upload, limit=MAX_IMAGE_BYTES, label="image")
        uploads.append(ImageUpload(name=upload.filename or "image", content_type=upload.content_type or "", data=data))
    try:
        pdf = images_to_pdf(uploads)
    except UnsupportedImageError as e:
        raise HTTPException(status_code=415, detail=str(e)) from e
    except ImageLimitError as e:
        raise HTTPException(status_code=413, detail=str(e)) from e
    except ImagePdfError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return _attachment(pdf, filename="images.pdf", media_type="application/pdf", no_store=True)


@app.post("/api/csv-to-excel")
async def convert_csv_to_excel(file: UploadFile = File(...)) -> Response:
    data = await _read_upload(file, limit=MAX_SHEET_BYTES, label="CSV")
    try:
        xlsx = csv_to_xlsx(data)
    except SpreadsheetError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return _attachment(xlsx, filename="converted.xlsx", media_type=XLSX_MEDIA_TYPE)


@app.post("/api/excel-to-csv")
async def convert_excel_to_csv(file: UploadFile = File(...)) -> Response:
    data = await _read_upload(file, limit=MAX_SHEET_BYTES, label="spreadsheet")
    try:
        text = xlsx_to_csv(data, filename=file.filename or "")
    except SpreadsheetError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return _attachment(text.encode("utf-8"), filename="converted.csv", media_type="text/csv; charset=utf-8")


@app.post("/api/sheet-preview", response_model=SheetPreviewResponse)
async def sheet_preview(file: UploadFile = File(...)) -> SheetPreviewResponse:
    data = await _read_upload(file, limit=MAX_SHEET_BYTES, label="spreadsheet")
    name = file.filename or ""
    try:
        if PurePath(name).suffix.lower() == ".csv":
            rows = parse_csv(data)
        else:
            rows = read_workbook_rows(data, filename=name)
    except SpreadsheetError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return SheetPreviewResponse(rows=preview_rows(rows), total_rows=len(rows))


@app.post("/api/sign")
async def sign(
    pdf: UploadFile = File(...),
    placements: str = Form(...),
    reason: str | None = Form(None),
    signedAt: str | None = Form(None),
) -> Response:
    data = await _read_upload(pdf, limit=MAX_PDF_BYTES, label="PDF")
    try:
        parsed = _placements_adapter.validate_python(json.loads(placements))
    except (json.JSONDecodeError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid placements: {e}") from e
    try:
        signed_at = parse_signed_at(signedAt)
        signed = sign_pdf(data, parsed, reason=reason, signed_at=signed_at)
    except SignError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except Exception as e:
        log.exception("Signing failed")
        raise HTTPException(status_code=500, detail=f"Signing failed: {e}") from e
    meta = SignatureMeta(reason=reason, signedAt=signed_at.isoformat())
    return _attachment(
        signed,
        filename="signed.pdf",
        media_type="application/pdf",
        no_store=True,
        extra_headers={"X-Signature-Meta": quote(json.dumps(meta.model_dump()))},
    )
