import io

import openpyxl
from PIL import Image
from pypdf import PdfReader

from backend.filekit import cli


def _write_test_png(path, *, width: int, height: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", (width, height), color=(200, 10, 10)).save(path)


def test_csv2xlsx_and_back(tmp_path):
    source = tmp_path / "table.csv"
    source.write_text("id,code\n1,0042\n", encoding="utf-8")
    assert cli.main(["csv2xlsx", str(source)]) == 0
    xlsx = tmp_path / "table.xlsx"
    ws = openpyxl.load_workbook(xlsx).active
    assert ws["B2"].value == "0042"

    out = tmp_path / "again.csv"
    assert cli.main(["xlsx2csv", str(xlsx), "-o", str(out)]) == 0
    assert out.read_text(encoding="utf-8") == "id,code\n1,0042\n"


def test_img2pdf(tmp_path):
    first, second = tmp_path / "a.png", tmp_path / "b.png"
    _write_test_png(first, width=40, height=30)
    _write_test_png(second, width=20, height=20)
    out = tmp_path / "out.pdf"
    assert cli.main(["img2pdf", str(first), str(second), "-o", str(out)]) == 0
    assert len(PdfReader(io.BytesIO(out.read_bytes())).pages) == 2


def test_conversion_error_returns_one(tmp_path, capsys):
    bogus = tmp_path / "broken.xlsx"
    bogus.write_bytes(b"nope")
    assert cli.main(["xlsx2csv", str(bogus)]) == 1
    assert "Error:" in capsys.readouterr().err


def test_missing_input_returns_one(tmp_path):
    assert cli.main(["docx2md", str(tmp_path / "missing.docx")]) == 1
