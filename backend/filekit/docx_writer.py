from __future__ import annotations

import io
from xml.sax.saxutils import escape

from docx import Document
from docx.enum.text import WD_COLOR_INDEX
from docx.oxml import OxmlElement, parse_xml
from docx.oxml.ns import nsdecls, qn
from docx.shared import Emu, Pt, RGBColor, Twips
from docx.text.paragraph import Paragraph as DocxParagraph

from .doc_model import Block, Hyperlink, ImageRun, Paragraph, Run, Table, TextRun
from .logging_utils import get_logger

log = get_logger(__name__)

EMU_PER_PX = 9525
HYPERLINK_COLOR = "0563C1"
_HYPERLINK_REL = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/hyperlink"
_REL_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"

_HIGHLIGHTS = {
    "yellow": WD_COLOR_INDEX.YELLOW,
    "green": WD_COLOR_INDEX.BRIGHT_GREEN,
    "gray": WD_COLOR_INDEX.GRAY_25,
}
_LIST_STYLES = {"bullet": "List Bullet", "number": "List Number"}


def _list_style_name(kind: str, level: int) -> str:
    base = _LIST_STYLES.get(kind, "List Bullet")
    return base if level <= 0 else f"{base} {level + 1}"


def _set_style(paragraph: DocxParagraph, name: str) -> None:
    try:
        paragraph.style = name
    except KeyError:
        log.debug("Style %r missing from template", name)


def _add_text_run(paragraph: DocxParagraph, run: TextRun) -> None:
    r = paragraph.add_run(run.text)
    r.bold = run.bold or None
    r.italic = run.italic or None
    r.underline = run.underline or None
    font = r.font
    if run.strike:
        font.strike = True
    if run.superscript:
        font.superscript = True
    if run.font:
        font.name = run.font
    if run.size_pt:
        font.size = Pt(run.size_pt)
    if run.color:
        font.color.rgb = RGBColor.from_string(run.color)
    if run.highlight:
        font.highlight_color = _HIGHLIGHTS.get(run.highlight, WD_COLOR_INDEX.YELLOW)


def _hyperlink_run_xml(run: TextRun) -> str:
    props = ['<w:rStyle w:val="Hyperlink"/>', f'<w:color w:val="{run.color or HYPERLINK_COLOR}"/>']
    if run.bold:
        props.append("<w:b/>")
    if run.italic:
        props.append("<w:i/>")
    if run.strike:
        props.append("<w:strike/>")
    props.append('<w:u w:val="single"/>')
    return f'<w:r><w:rPr>{"".join(props)}</w:rPr><w:t xml:space="preserve">{escape(run.text)}</w:t></w:r>'


def _add_hyperlink(paragraph: DocxParagraph, link: Hyperlink) -> None:
    if not link.url:
        for child in link.children:
            _add_text_run(paragraph, child)
        return
    r_id = paragraph.part.relate_to(link.url, _HYPERLINK_REL, is_external=True)
    body = "".join(_hyperlink_run_xml(c) for c in link.children)
    element = parse_xml(f'<w:hyperlink {nsdecls("w")} xmlns:r="{_REL_NS}" r:id="{r_id}">{body}</w:hyperlink>')
    paragraph._element.append(element)


def _add_image(paragraph: DocxParagraph, image: ImageRun) -> None:
    try:
        paragraph.add_run().add_picture(
            io.BytesIO(image.data),
            width=Emu(image.width_px * EMU_PER_PX),
            height=Emu(image.height_px * EMU_PER_PX),
        )
    except Exception as e:  # python-docx raises several unrelated types for bad images
        log.warning("Could not embed image (%s): %s", image.alt[:60], e)
        paragraph.add_run(image.alt or "[image]").italic = True


def add_runs(paragraph: DocxParagraph, runs: list[Run]) -> None:
    for run in runs:
        if isinstance(run, TextRun):
            _add_text_run(paragraph, run)
        elif isinstance(run, Hyperlink):
            _add_hyperlink(paragraph, run)
        elif isinstance(run, ImageRun):
            _add_image(paragraph, run)


def _add_bottom_border(paragraph: DocxParagraph) -> None:
    p_pr = paragraph._element.get_or_add_pPr()
    p_pr.append(
        parse_xml(
            f'<w:pBdr {nsdecls("w")}>'
            f'<w:bottom w:val="single" w:sz="6" w:space="1" w:color="000000"/>'
            f"</w:pBdr>"
        )
    )


def _write_paragraph(doc, block: Paragraph) -> None:
    if block.heading is not None:
        p = doc.add_heading("", level=block.heading)
    else:
        p = doc.add_paragraph()
        if block.list_style:
            _set_style(p, _list_style_name(block.list_style, block.list_level))
        elif block.style:
            _set_style(p, block.style)
    add_runs(p, block.runs)
    if block.bottom_border:
        _add_bottom_border(p)


def _set_table_full_width(table) -> None:
    tbl_pr = table._tbl.tblPr
    tbl_w = tbl_pr.find(qn("w:tblW"))
    if tbl_w is None:
        tbl_w = OxmlElement("w:tblW")
        tbl_pr.append(tbl_w)
    tbl_w.set(qn("w:type"), "pct")
    tbl_w.set(qn("w:w"), "5000")


def _write_table(doc, block: Table) -> None:
    ncols = max((len(r.cells) for r in block.rows), default=0)
    if not block.rows or ncols == 0:
        return
    table = doc.add_table(rows=len(block.rows), cols=ncols)
    try:
        table.style = "Table Grid"
    except KeyError:
        pass
    _set_table_full_width(table)
    for r_idx, row in enumerate(block.rows):
        for c_idx, cell in enumerate(row.cells):
            target = table.cell(r_idx, c_idx)
            target.width = Twips(cell.width_twips)
            add_runs(target.paragraphs[0], cell.runs)


def write_docx(blocks: list[Block]) -> bytes:
    """Serialize a block list into a .docx file."""
    doc = Document()
    for block in blocks:
        if isinstance(block, Table):
            _write_table(doc, block)
        else:
            _write_paragraph(doc, block)
    out = io.BytesIO()
    doc.save(out)
    return out.getvalue()
