from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from markdown_it import MarkdownIt
from markdown_it.token import Token
from mdit_py_plugins.footnote import footnote_plugin

from .doc_model import (
    MONO_FONT,
    Block,
    FootnoteEntry,
    Hyperlink,
    ImageRun,
    ListStyle,
    Paragraph,
    Run,
    Table,
    TableCell,
    TableRow,
    TextRun,
    emphasize,
)
from .docx_writer import write_docx
from .html_fragment import IMAGE_PLACEHOLDER, HtmlFragmentWalker
from .logging_utils import get_logger
from .renderers import (
    DIAGRAM_SIZE,
    IMAGE_SIZE,
    MATH_DISPLAY_SIZE,
    MATH_INLINE_SIZE,
    RenderServices,
    placeholder_png,
)

log = get_logger(__name__)

# $$display$$ is tried before $inline$ so the doubled delimiters are not split.
_MATH_RE = re.compile(r"\$\$(.+?)\$\$|\$([^$\n]+?)\$")
_BR_RE = re.compile(r"^<br\s*/?>$", re.IGNORECASE)

MIN_HEADING_LEVEL = 1
MAX_HEADING_LEVEL = 6
MAX_LIST_LEVEL = 2
TABLE_TOTAL_WIDTH_TWIPS = 5000
CODE_SIZE_PT = 11.0
FOOTNOTES_TITLE = "Footnotes"


def _build_markdown_parser() -> MarkdownIt:
    md = MarkdownIt("commonmark", {"html": True, "breaks": False})
    md.enable("table")
    md.enable("strikethrough")
    md.use(footnote_plugin)
    return md


_MD_PARSER: MarkdownIt | None = None


def _get_markdown_parser() -> MarkdownIt:
    global _MD_PARSER
    if _MD_PARSER is None:
        _MD_PARSER = _build_markdown_parser()
    return _MD_PARSER


def tokenize(markdown: str) -> list[Token]:
    return _get_markdown_parser().parse(str(markdown or ""))


def heading_level(depth: int) -> int:
    return max(MIN_HEADING_LEVEL, min(MAX_HEADING_LEVEL, int(depth)))


def _inline_text(token: Token | None) -> str:
    if not token:
        return ""
    if token.type != "inline" or not token.children:
        return token.content or ""
    parts: list[str] = []
    for child in token.children:
        if child.type in ("text", "code_inline"):
            parts.append(child.content)
        elif child.type == "softbreak":
            parts.append(" ")
        elif child.type == "hardbreak":
            parts.append("\n")
        elif child.type == "image":
            parts.append(child.content or "")
    return "".join(parts)


def _attrs_to_dict(attrs: dict[str, Any] | None) -> dict[str, str]:
    return {str(k): str(v) for k, v in (attrs or {}).items()}


def _fence_lang(token: Token) -> str:
    info = str(token.info or "").strip()
    return info.split(None, 1)[0].lower() if info else ""


def _footnote_definitions(tokens: list[Token]) -> dict[int, str]:
    """Map footnote ids to their plain-text bodies from the trailing footnote block."""
    definitions: dict[int, str] = {}
    current: int | None = None
    parts: list[str] = []
    for tok in tokens:
        if tok.type == "footnote_open":
            current = int((tok.meta or {}).get("id", len(definitions)))
            parts = []
        elif tok.type == "footnote_close" and current is not None:
            definitions[current] = " ".join(p for p in parts if p).strip()
            current = None
        elif tok.type == "inline" and current is not None:
            parts.append(_inline_text(tok).strip())
    return definitions


@dataclass
class _BuildContext:
    services: RenderServices
    footnotes: list[FootnoteEntry]
    definitions: dict[int, str] = field(default_factory=dict)
    labels: dict[int, str] = field(default_factory=dict)


class MarkdownDocumentBuilder:
    """Turns one Markdown document into blocks; a fresh footnote list per call."""

    def __init__(self, services: RenderServices | None = None) -> None:
        self.services = services or RenderServices()
        self._html = HtmlFragmentWalker(self.services.fetch_image)

    async def build(
        self,
        markdown: str,
        footnotes: list[FootnoteEntry] | None = None,
    ) -> tuple[list[Block], list[FootnoteEntry]]:
        tokens = tokenize(markdown)
        ctx = _BuildContext(
            services=self.services,
            footnotes=[] if footnotes is None else footnotes,
            definitions=_footnote_definitions(tokens),
        )
        blocks = await self.assemble(tokens, ctx)
        return blocks, ctx.footnotes

    # -- inline --------------------------------------------------------------
    async def render_inline(self, children: list[Token], ctx: _BuildContext) -> list[Run]:
        runs: list[Run] = []
        fmt: dict[str, bool] = {"bold": False, "italic": False, "strike": False}
        link_href: str | None = None
        link_runs: list[TextRun] = []
        link_split = False

        def flush_link() -> None:
            if link_href is not None and link_runs:
                runs.append(Hyperlink(url=link_href, children=tuple(link_runs)))
                link_runs.clear()

        def emit(run: Run) -> None:
            nonlocal link_split
            if link_href is None:
                runs.append(run)
            elif isinstance(run, TextRun):
                link_runs.append(run)
            else:
                # Hyperlinks carry text only; split the link around images.
                flush_link()
                runs.append(run)
                link_split = True

        for child in children or []:
            t = child.type
            if t == "text":
                for run in await self._text_runs(child.content, fmt, ctx):
                    emit(run)
            elif t == "strong_open":
                fmt["bold"] = True
            elif t == "strong_close":
                fmt["bold"] = False
            elif t == "em_open":
                fmt["italic"] = True
            elif t == "em_close":
                fmt["italic"] = False
            elif t == "s_open":
                fmt["strike"] = True
            elif t == "s_close":
                fmt["strike"] = False
            elif t == "code_inline":
                emit(TextRun(text=child.content, font=MONO_FONT, highlight="yellow"))
            elif t == "softbreak":
                emit(TextRun(text=" ", **fmt))
            elif t == "hardbreak":
                emit(TextRun(text="\n", **fmt))
            elif t == "link_open":
                link_href = _attrs_to_dict(child.attrs).get("href", "")
                link_runs.clear()
                link_split = False
            elif t == "link_close":
                if link_href is not None and (link_runs or not link_split):
                    runs.append(Hyperlink(url=link_href, children=tuple(link_runs)))
                link_href = None
                link_runs.clear()
                link_split = False
            elif t == "image":
                emit(await self._image_run(child, ctx))
            elif t == "footnote_ref":
                emit(self._footnote_ref(child, ctx))
            elif t == "html_inline":
                if _BR_RE.match(child.content.strip()):
                    emit(TextRun(text="\n", **fmt))
        return runs

    async def _text_runs(self, text: str, fmt: dict[str, bool], ctx: _BuildContext) -> list[Run]:
        runs: list[Run] = []
        last = 0
        for match in _MATH_RE.finditer(text):
            if match.start() > last:
                runs.append(TextRun(text=text[last : match.start()], **fmt))
            display = match.group(1) is not None
            latex = match.group(1) if display else match.group(2)
            data = await ctx.services.render_math(latex, display)
            if data:
                width, height = MATH_DISPLAY_SIZE if display else MATH_INLINE_SIZE
                runs.append(ImageRun(data=data, width_px=width, height_px=height, alt=latex))
            else:
                runs.append(TextRun(text=match.group(0), **fmt))
            last = match.end()
        if last < len(text):
            runs.append(TextRun(text=text[last:], **fmt))
        return runs

    async def _image_run(self, token: Token, ctx: _BuildContext) -> Run:
        src = _attrs_to_dict(token.attrs).get("src", "")
        alt = token.content or ""
        data = await ctx.services.fetch_image(src) if src else None
        if data:
            return ImageRun(data=data, width_px=IMAGE_SIZE[0], height_px=IMAGE_SIZE[1], alt=alt)
        return TextRun(text=alt or IMAGE_PLACEHOLDER, italic=True)

    def _footnote_ref(self, token: Token, ctx: _BuildContext) -> TextRun:
        meta = token.meta or {}
        fid = meta.get("id")
        if fid is not None and fid in ctx.labels:
            return TextRun(text=f" [{ctx.labels[fid]}] ", superscript=True)
        label = str(meta.get("label") or "").strip() or str(len(ctx.footnotes) + 1)
        text = ctx.definitions.get(fid, "") if fid is not None else ""
        ctx.footnotes.append(FootnoteEntry(label=label, text=text))
        if fid is not None:
            ctx.labels[fid] = label
        return TextRun(text=f" [{label}] ", superscript=True)

    async def render_fence(self, lang: str, code: str, ctx: _BuildContext) -> Run | None:
        if lang == "math":
            data = await ctx.services.render_math(code.strip(), True)
            if not data:
                data = placeholder_png("Math render failed", width=MATH_DISPLAY_SIZE[0], height=MATH_DISPLAY_SIZE[1])
            return ImageRun(data=data, width_px=MATH_DISPLAY_SIZE[0], height_px=MATH_DISPLAY_SIZE[1], alt=code)
        if lang == "mermaid":
            data = await ctx.services.render_diagram(code)
            if not data:
                data = placeholder_png("Mermaid render failed", width=DIAGRAM_SIZE[0], height=DIAGRAM_SIZE[1])
            return ImageRun(data=data, width_px=DIAGRAM_SIZE[0], height_px=DIAGRAM_SIZE[1], alt=code)
        return None

    # -- blocks --------------------------------------------------------------
    async def assemble(self, tokens: list[Token], ctx: _BuildContext) -> list[Block]:
        out: list[Block] = []
        list_stack: list[ListStyle] = []
        item_stack: list[dict[str, Any]] = []
        quote_depth = 0

        def list_level() -> int:
            return min(MAX_LIST_LEVEL, max(0, len(list_stack) - 1))

        i = 0
        while i < len(tokens):
            tok = tokens[i]
            t = tok.type

            if t == "footnote_block_open":
                while i < len(tokens) and tokens[i].type != "footnote_block_close":
                    i += 1
                i += 1
                continue

            if t == "heading_open":
                depth = int(tok.tag[1]) if tok.tag and tok.tag[1:].isdigit() else MIN_HEADING_LEVEL
                inline = tokens[i + 1] if i + 1 < len(tokens) else None
                runs = await self.render_inline(inline.children if inline else [], ctx)
                out.append(Paragraph(runs=runs, heading=heading_level(depth)))
                i += 3
                continue

            if t in {"bullet_list_open", "ordered_list_open"}:
                list_stack.append("number" if t == "ordered_list_open" else "bullet")
                i += 1
                continue
            if t in {"bullet_list_close", "ordered_list_close"}:
                if list_stack:
                    list_stack.pop()
                i += 1
                continue
            if t == "list_item_open":
                item_stack.append({"block": None})
                i += 1
                continue
            if t == "list_item_close":
                item = item_stack.pop() if item_stack else None
                if item is not None and item["block"] is None and list_stack:
                    out.append(Paragraph(list_style=list_stack[-1], list_level=list_level()))
                i += 1
                continue

            if t == "blockquote_open":
                quote_depth += 1
                i += 1
                continue
            if t == "blockquote_close":
                quote_depth = max(0, quote_depth - 1)
                i += 1
                continue

            if t == "paragraph_open":
                inline = tokens[i + 1] if i + 1 < len(tokens) else None
                runs = await self.render_inline(inline.children if inline else [], ctx)
                if list_stack and item_stack:
                    item = item_stack[-1]
                    if item["block"] is None:
                        item["block"] = Paragraph(runs=runs, list_style=list_stack[-1], list_level=list_level())
                        out.append(item["block"])
                    else:
                        item["block"].runs.extend([TextRun(text="\n"), *runs])
                else:
                    out.append(Paragraph(runs=runs, style="Quote" if quote_depth else None))
                i += 3
                continue

            if t in {"fence", "code_block"}:
                lang = _fence_lang(tok) if t == "fence" else ""
                image = await self.render_fence(lang, tok.content or "", ctx)
                if image is not None:
                    out.append(Paragraph(runs=[image]))
                else:
                    code = (tok.content or "").rstrip("\n")
                    out.append(Paragraph(runs=[TextRun(text=code, font=MONO_FONT, size_pt=CODE_SIZE_PT)]))
                i += 1
                continue

            if t == "table_open":
                table, i = await self._table(tokens, i, ctx)
                out.append(table)
                continue

            if t == "html_block":
                out.extend(await self._html.walk(tok.content or ""))
                i += 1
                continue

            if t == "hr":
                out.append(Paragraph(bottom_border=True))
                i += 1
                continue

            i += 1

        if ctx.footnotes:
            out.append(Paragraph(runs=[TextRun(text=FOOTNOTES_TITLE)], heading=2))
            for entry in ctx.footnotes:
                out.append(
                    Paragraph(runs=[TextRun(text=f"[{entry.label}] ", bold=True), TextRun(text=entry.text)])
                )
        return out

    async def _table(self, tokens: list[Token], start_idx: int, ctx: _BuildContext) -> tuple[Table, int]:
        rows: list[tuple[list[list[Run]], bool]] = []
        current: list[list[Run]] | None = None
        is_header = False
        cell_runs: list[Run] = []
        i = start_idx + 1
        while i < len(tokens):
            tok = tokens[i]
            if tok.type == "table_close":
                break
            if tok.type == "tr_open":
                current = []
                is_header = False
            elif tok.type in {"th_open", "td_open"}:
                cell_runs = []
                if tok.type == "th_open":
                    is_header = True
            elif tok.type == "inline" and current is not None:
                cell_runs = await self.render_inline(tok.children or [], ctx)
            elif tok.type in {"th_close", "td_close"} and current is not None:
                current.append(cell_runs)
            elif tok.type == "tr_close" and current is not None:
                rows.append((current, is_header))
                current = None
            i += 1
        return build_table(rows), i + 1


def build_table(rows: list[tuple[list[list[Run]], bool]]) -> Table:
    """Equal-width cells per row; header cell runs are made bold."""
    table_rows: list[TableRow] = []
    for cells, header in rows:
        width = TABLE_TOTAL_WIDTH_TWIPS // max(1, len(cells))
        out_cells: list[TableCell] = []
        for runs in cells:
            if header:
                runs = [emphasize(r, bold=True) for r in runs]
            out_cells.append(TableCell(runs=list(runs), width_twips=width))
        table_rows.append(TableRow(cells=out_cells, header=header))
    return Table(rows=table_rows)


async def markdown_to_blocks(
    markdown: str,
    services: RenderServices | None = None,
) -> tuple[list[Block], list[FootnoteEntry]]:
    return await MarkdownDocumentBuilder(services).build(markdown)


async def markdown_to_docx(markdown: str, services: RenderServices | None = None) -> bytes:
    blocks, footnotes = await markdown_to_blocks(markdown, services)
    log.info("Built %d blocks (%d footnotes)", len(blocks), len(footnotes))
    return write_docx(blocks)
