from __future__ import annotations

import argparse
import asyncio
import json
import mimetypes
import sys
from pathlib import Path

from .config import PDF_DPI
from .docx_markdown import DocxConversionError, docx_to_markdown
from .images_pdf import ImagePdfError, ImageUpload, images_to_pdf
from .markdown_docx import markdown_to_docx
from .pdf_images import PdfImageError, page_filename, pdf_to_png_pages
from .pdf_sign import Placement, SignError, parse_signed_at, sign_pdf
from .spreadsheets import SpreadsheetError, csv_to_xlsx, xlsx_to_csv

_CONVERSION_ERRORS = (
    DocxConversionError,
    ImagePdfError,
    PdfImageError,
    SignError,
    SpreadsheetError,
    ValueError,
    OSError,
)


def log(msg: str) -> None:
    print(msg, file=sys.stderr)


def _output_path(args: argparse.Namespace, suffix: str) -> Path:
    if args.output:
        return Path(args.output)
    return Path(args.input).with_suffix(suffix)


def _md2docx(args: argparse.Namespace) -> int:
    markdown = Path(args.input).read_text(encoding="utf-8")
    out = _output_path(args, ".docx")
    out.write_bytes(asyncio.run(markdown_to_docx(markdown)))
    log(f"Wrote {out}")
    return 0


def _docx2md(args: argparse.Namespace) -> int:
    out = _output_path(args, ".md")
    out.write_text(docx_to_markdown(Path(args.input).read_bytes()) + "\n", encoding="utf-8")
    log(f"Wrote {out}")
    return 0


def _pdf2png(args: argparse.Namespace) -> int:
    out_dir = Path(args.output) if args.output else Path(args.input).with_suffix("")
    out_dir.mkdir(parents=True, exist_ok=True)
    pages = pdf_to_png_pages(Path(args.input).read_bytes(), dpi=args.dpi)
    for i, png in enumerate(pages):
        (out_dir / page_filename(i)).write_bytes(png)
    log(f"Wrote {len(pages)} page(s) to {out_dir}")
    return 0


def _img2pdf(args: argparse.Namespace) -> int:
    uploads = []
    for name in args.inputs:
        path = Path(name)
        ctype = mimetypes.guess_type(path.name)[0] or ""
        uploads.append(ImageUpload(name=path.name, content_type=ctype, data=path.read_bytes()))
    out = Path(args.output)
    out.write_bytes(images_to_pdf(uploads))
    log(f"Wrote {out}")
    return 0


def _csv2xlsx(args: argparse.Namespace) -> int:
    out = _output_path(args, ".xlsx")
    out.write_bytes(csv_to_xlsx(Path(args.input).read_bytes()))
    log(f"Wrote {out}")
    return 0


def _xlsx2csv(args: argparse.Namespace) -> int:
    path = Path(args.input)
    out = _output_path(args, ".csv")
    out.write_text(xlsx_to_csv(path.read_bytes(), filename=path.name), encoding="utf-8")
    log(f"Wrote {out}")
    return 0


def _sign(args: argparse.Namespace) -> int:
    raw = json.loads(Path(args.placements).read_text(encoding="utf-8"))
    placements = [Placement.model_validate(p) for p in raw]
    out = Path(args.output) if args.output else Path(args.input).with_name(Path(args.input).stem + "-signed.pdf")
    signed = sign_pdf(
        Path(args.input).read_bytes(),
        placements,
        reason=args.reason,
        signed_at=parse_signed_at(args.signed_at),
    )
    out.write_bytes(signed)
    log(f"Wrote {out}")
    return 0


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("backend.filekit.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="filekit", description="File conversion toolkit.")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("md2docx", help="Markdown file to .docx")
    p.add_argument("input")
    p.add_argument("-o", "--output")
    p.set_defaults(func=_md2docx)

    p = sub.add_parser("docx2md", help=".docx file to Markdown")
    p.add_argument("input")
    p.add_argument("-o", "--output")
    p.set_defaults(func=_docx2md)

    p = sub.add_parser("pdf2png", help="Render PDF pages to PNG files")
    p.add_argument("input")
    p.add_argument("-o", "--output", help="Output directory (defaults to the PDF name)")
    p.add_argument("--dpi", type=int, default=PDF_DPI)
    p.set_defaults(func=_pdf2png)

    p = sub.add_parser("img2pdf", help="Combine JPEG/PNG images into one PDF")
    p.add_argument("inputs", nargs="+")
    p.add_argument("-o", "--output", default="images.pdf")
    p.set_defaults(func=_img2pdf)

    p = sub.add_parser("csv2xlsx", help="CSV file to .xlsx")
    p.add_argument("input")
    p.add_argument("-o", "--output")
    p.set_defaults(func=_csv2xlsx)

    p = sub.add_parser("xlsx2csv", help="First sheet of .xlsx/.xls to CSV")
    p.add_argument("input")
    p.add_argument("-o", "--output")
    p.set_defaults(func=_xlsx2csv)

    p = sub.add_parser("sign", help="Stamp signatures onto a PDF")
    p.add_argument("input")
    p.add_argument("--placements", required=True, help="JSON file with a list of placements")
    p.add_argument("--reason")
    p.add_argument("--signed-at", dest="signed_at")
    p.add_argument("-o", "--output")
    p.set_defaults(func=_sign)

    p = sub.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.add_argument("--reload", action="store_true")
    p.set_defaults(func=_serve)
    return ap


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return int(args.func(args))
    except _CONVERSION_ERRORS as e:
        log(f"Error: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
