import io

import openpyxl
import pytest

from backend.filekit.spreadsheets import (
    SpreadsheetError,
    coerce_cell,
    csv_to_xlsx,
    parse_csv,
    preview_rows,
    xlsx_to_csv,
)


def _load(data: bytes):
    return openpyxl.load_workbook(io.BytesIO(data)).active


def _xlsx(rows) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    out = io.BytesIO()
    wb.save(out)
    return out.getvalue()


def test_coerce_cell_keeps_leading_zeros():
    assert coerce_cell("42") == 42
    assert coerce_cell("-3.5") == -3.5
    assert coerce_cell("007") == "007"
    assert coerce_cell("1e5") == "1e5"
    assert coerce_cell("abc") == "abc"


def test_csv_to_xlsx_single_sheet_with_numbers():
    ws = _load(csv_to_xlsx(b"\xef\xbb\xbfname,zip,qty\nAl,007,3\nBo,123,2.5\n"))
    assert ws.title == "Sheet1"
    assert [c.value for c in ws[1]] == ["name", "zip", "qty"]
    assert [c.value for c in ws[2]] == ["Al", "007", 3]
    assert ws["C3"].value == 2.5


def test_csv_delimiter_is_sniffed():
    assert parse_csv(b"a;b;c\n1;2;3\n4;5;6\n") == [["a", "b", "c"], ["1", "2", "3"], ["4", "5", "6"]]


def test_csv_errors():
    with pytest.raises(SpreadsheetError):
        parse_csv(b"   \n")
    with pytest.raises(SpreadsheetError):
        parse_csv(b"\xff\xfe\x00bad")


def test_xlsx_to_csv_first_sheet():
    data = _xlsx([["h1", "h2"], [1, None], [2.0, "x, y"]])
    assert xlsx_to_csv(data, filename="book.xlsx") == 'h1,h2\n1,\n2,"x, y"\n'


def test_xlsx_to_csv_rejects_unknown_types():
    with pytest.raises(SpreadsheetError):
        xlsx_to_csv(b"data", filename="book.ods")
    with pytest.raises(SpreadsheetError):
        xlsx_to_csv(b"not a workbook", filename="book.xlsx")


def test_preview_rows_header_plus_five():
    rows = [["h"]] + [[i] for i in range(10)]
    preview = preview_rows(rows)
    assert len(preview) == 6
    assert preview[0] == ["h"]
    assert preview[-1] == ["4"]
    assert preview_rows([]) == []
