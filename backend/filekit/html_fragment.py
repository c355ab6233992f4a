"""Walk raw HTML embedded in Markdown into paragraphs of styled runs."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from bs4.element import Doctype, ProcessingInstruction
from PIL import ImageColor

from .doc_model import Hyperlink, ImageRun, Paragraph, Run, TextRun
from .renderers import IMAGE_SIZE

StyleMap = dict[str, str]

_STYLE_KEYS = ("color", "font-weight", "font-style", "text-decoration")

# Closed dispatch: every tag not listed here is transparent.
_TAG_STYLES: dict[str, StyleMap] = {
    "strong": {"font-weight": "bold"},
    "b": {"font-weight": "bold"},
    "em": {"font-style": "italic"},
    "i": {"font-style": "italic"},
}
_IGNORED_TAGS = {"script", "style", "head", "title"}
_SKIPPED_STRINGS = (Comment, Doctype, ProcessingInstruction)

IMAGE_PLACEHOLDER = "[image]"


def parse_style(style: str | None) -> StyleMap:
    out: StyleMap = {}
    if not style:
        return out
    for chunk in str(style).split(";"):
        key, sep, value = chunk.partition(":")
        key = key.strip().lower()
        value = value.strip()
        if sep and key and value:
            out[key] = value
    return out


def merge_styles(stack: list[StyleMap]) -> StyleMap:
    """Union of a style stack ordered root-first; closer ancestors win."""
    effective: StyleMap = {}
    for style in stack:
        effective.update(style)
    return effective


def css_color_to_hex(value: str | None) -> str | None:
    raw = str(value or "").strip()
    if not raw:
        return None
    compact = raw.replace(" ", "")
    if not compact.startswith(("#", "rgb", "hsl")) and len(compact) in (3, 6):
        try:
            int(compact, 16)
            compact = f"#{compact}"
        except ValueError:
            pass
    try:
        rgb = ImageColor.getrgb(compact)
    except ValueError:
        return None
    r, g, b = rgb[:3]
    return f"{r:02X}{g:02X}{b:02X}"


def style_to_run_format(style: StyleMap) -> dict[str, Any]:
    fmt: dict[str, Any] = {}
    color = css_color_to_hex(style.get("color"))
    if color:
        fmt["color"] = color
    weight = str(style.get("font-weight") or "").strip().lower()
    if weight in ("bold", "bolder"):
        fmt["bold"] = True
    elif weight.isdigit() and int(weight) >= 600:
        fmt["bold"] = True
    if str(style.get("font-style") or "").strip().lower() in ("italic", "oblique"):
        fmt["italic"] = True
    decoration = str(style.get("text-decoration") or "").lower()
    if "underline" in decoration:
        fmt["underline"] = True
    if "line-through" in decoration:
        fmt["strike"] = True
    return fmt


def _tag_style(tag: Tag) -> StyleMap:
    name = (tag.name or "").lower()
    style = dict(_TAG_STYLES.get(name, {}))
    own = parse_style(tag.get("style"))
    style.update({k: v for k, v in own.items() if k in _STYLE_KEYS})
    return style


class HtmlFragmentWalker:
    def __init__(self, fetch_image: Callable[[str], Awaitable[bytes | None]]) -> None:
        self._fetch_image = fetch_image

    async def walk(self, html: str) -> list[Paragraph]:
        soup = BeautifulSoup(html or "", "html.parser")
        paragraphs: list[Paragraph] = []
        for node in list(soup.contents):
            runs = await self._walk_nodes([node], [])
            if _has_content(runs):
                paragraphs.append(Paragraph(runs=runs))
        return paragraphs

    async def _walk_nodes(self, nodes: list[Any], stack: list[StyleMap]) -> list[Run]:
        runs: list[Run] = []
        for node in nodes:
            if isinstance(node, _SKIPPED_STRINGS):
                continue
            if isinstance(node, NavigableString):
                text = str(node)
                if text:
                    runs.append(TextRun(text=text, **style_to_run_format(merge_styles(stack))))
                continue
            if not isinstance(node, Tag):
                continue
            name = (node.name or "").lower()
            if name in _IGNORED_TAGS:
                continue
            stack.append(_tag_style(node))
            try:
                if name == "a":
                    runs.extend(await self._link(node, stack))
                elif name == "img":
                    runs.extend(await self._image(node))
                elif name == "br":
                    runs.append(TextRun(text="\n"))
                else:
                    runs.extend(await self._walk_nodes(list(node.children), stack))
            finally:
                stack.pop()
        return runs

    async def _link(self, node: Tag, stack: list[StyleMap]) -> list[Run]:
        """Link text becomes hyperlink segments; images inside stay in place between them."""
        url = str(node.get("href") or "")
        inner = await self._walk_nodes(list(node.children), stack)
        out: list[Run] = []
        pending: list[TextRun] = []
        for run in inner:
            if isinstance(run, TextRun):
                pending.append(run)
                continue
            if pending:
                out.append(Hyperlink(url=url, children=tuple(pending)))
                pending = []
            out.append(run)
        if pending or not out:
            out.append(Hyperlink(url=url, children=tuple(pending)))
        return out

    async def _image(self, node: Tag) -> list[Run]:
        src = str(node.get("src") or node.get("data-src") or "").strip()
        alt = str(node.get("alt") or "").strip()
        if src:
            data = await self._fetch_image(src)
            if data:
                return [ImageRun(data=data, width_px=IMAGE_SIZE[0], height_px=IMAGE_SIZE[1], alt=alt)]
        if not src and not alt:
            return []
        return [TextRun(text=alt or IMAGE_PLACEHOLDER, italic=True)]


def _has_content(runs: list[Run]) -> bool:
    for run in runs:
        if isinstance(run, TextRun):
            if run.text.strip():
                return True
        else:
            return True
    return False
