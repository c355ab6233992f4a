from __future__ import annotations

import csv
import datetime as dt
import io
import re
import zipfile
from pathlib import PurePath
from typing import Any, Iterable

import openpyxl
import xlrd
from openpyxl.utils.exceptions import InvalidFileException

from .logging_utils import get_logger

log = get_logger(__name__)

DEFAULT_SHEET_TITLE = "Sheet1"
PREVIEW_ROWS = 5
_DELIMITERS = ",;\t|"
_SNIFF_BYTES = 64 * 1024

_INT_RE = re.compile(r"^-?(0|[1-9]\d*)$")
_DECIMAL_RE = re.compile(r"^-?(0|[1-9]\d*)\.\d+$")


class SpreadsheetError(RuntimeError):
    pass


def _decode_csv(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise SpreadsheetError(f"CSV is not valid UTF-8: {e}") from e


def _sniff_dialect(text: str) -> type[csv.Dialect]:
    sample = text[:_SNIFF_BYTES]
    try:
        return csv.Sniffer().sniff(sample, delimiters=_DELIMITERS)
    except csv.Error:
        return csv.excel


def parse_csv(data: bytes) -> list[list[str]]:
    text = _decode_csv(data)
    if not text.strip():
        raise SpreadsheetError("CSV is empty")
    reader = csv.reader(io.StringIO(text, newline=""), _sniff_dialect(text))
    try:
        return [row for row in reader if row]
    except csv.Error as e:
        raise SpreadsheetError(f"Malformed CSV: {e}") from e


def coerce_cell(value: str) -> Any:
    """Numbers stay numbers; values like ``007`` keep their leading zeros."""
    raw = value.strip()
    if _INT_RE.match(raw):
        return int(raw)
    if _DECIMAL_RE.match(raw):
        return float(raw)
    return value


def rows_to_xlsx(rows: Iterable[Iterable[Any]], *, sheet_title: str = DEFAULT_SHEET_TITLE) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = sheet_title
    for row in rows:
        ws.append([coerce_cell(c) if isinstance(c, str) else c for c in row])
    out = io.BytesIO()
    wb.save(out)
    return out.getvalue()


def csv_to_xlsx(data: bytes, *, sheet_title: str = DEFAULT_SHEET_TITLE) -> bytes:
    rows = parse_csv(data)
    log.info("Converting CSV with %d row(s) to xlsx", len(rows))
    return rows_to_xlsx(rows, sheet_title=sheet_title)


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    return str(value)


def _xlsx_rows(data: bytes) -> list[list[Any]]:
    try:
        wb = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise SpreadsheetError(f"Could not read workbook: {e}") from e
    try:
        if not wb.worksheets:
            raise SpreadsheetError("Workbook has no sheets")
        return [list(row) for row in wb.worksheets[0].iter_rows(values_only=True)]
    finally:
        wb.close()


def _xls_rows(data: bytes) -> list[list[Any]]:
    try:
        book = xlrd.open_workbook(file_contents=data)
    except xlrd.XLRDError as e:
        raise SpreadsheetError(f"Could not read workbook: {e}") from e
    if book.nsheets == 0:
        raise SpreadsheetError("Workbook has no sheets")
    sheet = book.sheet_by_index(0)
    rows: list[list[Any]] = []
    for r in range(sheet.nrows):
        row: list[Any] = []
        for cell in sheet.row(r):
            if cell.ctype == xlrd.XL_CELL_DATE:
                row.append(xlrd.xldate_as_datetime(cell.value, book.datemode))
            elif cell.ctype == xlrd.XL_CELL_BOOLEAN:
                row.append(bool(cell.value))
            elif cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
                row.append(None)
            else:
                row.append(cell.value)
        rows.append(row)
    return rows


def read_workbook_rows(data: bytes, *, filename: str) -> list[list[Any]]:
    if not data:
        raise SpreadsheetError("Workbook is empty")
    suffix = PurePath(filename or "").suffix.lower()
    if suffix == ".xls":
        return _xls_rows(data)
    if suffix in (".xlsx", ".xlsm"):
        return _xlsx_rows(data)
    raise SpreadsheetError(f"Unsupported spreadsheet type: {suffix or 'unknown'}")


def rows_to_csv(rows: Iterable[Iterable[Any]]) -> str:
    out = io.StringIO(newline="")
    writer = csv.writer(out, lineterminator="\n")
    for row in rows:
        writer.writerow([_cell_text(v) for v in row])
    return out.getvalue()


def xlsx_to_csv(data: bytes, *, filename: str) -> str:
    rows = read_workbook_rows(data, filename=filename)
    log.info("Converting %s with %d row(s) to csv", filename, len(rows))
    return rows_to_csv(rows)


def preview_rows(rows: list[list[Any]], limit: int = PREVIEW_ROWS) -> list[list[str]]:
    """Header row plus the first ``limit`` data rows, as display strings."""
    if not rows:
        return []
    return [[_cell_text(v) for v in row] for row in rows[: max(0, limit) + 1]]
