from __future__ import annotations

from pydantic import BaseModel, Field


class MarkdownToDocxRequest(BaseModel):
    markdown: str = ""


class MarkdownResponse(BaseModel):
    markdown: str


class PdfImagesResponse(BaseModel):
    id: str
    zip: str
    pages: int = Field(ge=1)


class SheetPreviewResponse(BaseModel):
    rows: list[list[str]] = Field(default_factory=list)
    total_rows: int = 0


class SignatureMeta(BaseModel):
    reason: str | None = None
    signedAt: str


class HealthResponse(BaseModel):
    status: str = "ok"
    math_render_url: str
    mermaid_render_url: str


class ErrorResponse(BaseModel):
    detail: str
