"""Intermediate document tree produced by the Markdown and HTML walkers.

The walkers only ever build these objects; ``docx_writer`` maps them onto
python-docx. Runs are immutable and belong to exactly one paragraph or cell.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Literal, Union

ListStyle = Literal["bullet", "number"]

MONO_FONT = "Courier New"


@dataclass(frozen=True)
class TextRun:
    text: str
    bold: bool = False
    italic: bool = False
    underline: bool = False
    strike: bool = False
    superscript: bool = False
    color: str | None = None
    font: str | None = None
    size_pt: float | None = None
    highlight: str | None = None


@dataclass(frozen=True)
class Hyperlink:
    url: str
    children: tuple[TextRun, ...] = ()

    @property
    def text(self) -> str:
        return "".join(c.text for c in self.children)


@dataclass(frozen=True)
class ImageRun:
    data: bytes
    width_px: int
    height_px: int
    alt: str = ""


Run = Union[TextRun, Hyperlink, ImageRun]


@dataclass
class Paragraph:
    runs: list[Run] = field(default_factory=list)
    heading: int | None = None
    list_style: ListStyle | None = None
    list_level: int = 0
    style: str | None = None
    bottom_border: bool = False

    @property
    def text(self) -> str:
        return run_text(self.runs)


@dataclass
class TableCell:
    runs: list[Run]
    width_twips: int


@dataclass
class TableRow:
    cells: list[TableCell]
    header: bool = False


@dataclass
class Table:
    rows: list[TableRow]


Block = Union[Paragraph, Table]


@dataclass(frozen=True)
class FootnoteEntry:
    label: str
    text: str


def run_text(runs: list[Run]) -> str:
    parts: list[str] = []
    for run in runs:
        if isinstance(run, (TextRun, Hyperlink)):
            parts.append(run.text)
    return "".join(parts)


def emphasize(run: Run, **flags: bool) -> Run:
    """Return ``run`` with the given formatting flags switched on."""
    if isinstance(run, TextRun):
        return replace(run, **flags)
    if isinstance(run, Hyperlink):
        return replace(run, children=tuple(replace(c, **flags) for c in run.children))
    return run
