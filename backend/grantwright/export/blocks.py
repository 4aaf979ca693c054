from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Union

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

logger = logging.getLogger("grantwright.export")

RECORD_LAYOUT_MIN_COLUMNS = 5

_HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
_BOLD_TAGS = {"b", "strong"}
_ITALIC_TAGS = {"i", "em"}
_BR_PATTERN = re.compile(r"<br\s*/?>", re.IGNORECASE)
_TAG_PATTERN = re.compile(r"<[^>]*>")


@dataclass(frozen=True)
class Span:
    text: str
    bold: bool = False
    italic: bool = False
    line_break: bool = False


@dataclass(frozen=True)
class HeadingBlock:
    level: int
    text: str


@dataclass(frozen=True)
class ParagraphBlock:
    spans: tuple[Span, ...] = ()

    @property
    def text(self) -> str:
        return "".join("\n" if span.line_break else span.text for span in self.spans)


@dataclass(frozen=True)
class BulletItemBlock:
    spans: tuple[Span, ...] = ()


@dataclass(frozen=True)
class TableBlock:
    header: tuple[str, ...]
    rows: tuple[tuple[str, ...], ...]


@dataclass(frozen=True)
class RecordBlock:
    """One row of a table too wide for the page, laid out as a titled list of fields."""

    title: str
    fields: tuple[tuple[str, str], ...]


Block = Union[HeadingBlock, ParagraphBlock, BulletItemBlock, TableBlock, RecordBlock]


def parse_rich_text(html: str | None) -> list[Block]:
    """Convert an HTML-ish rich text fragment into document blocks.

    Never raises: blank input yields one empty paragraph, and a parser failure
    degrades to one plain paragraph per line of tag-stripped text.
    """
    if not html or not html.strip():
        return [ParagraphBlock()]
    try:
        blocks = _parse_html(html)
    except Exception as exc:
        logger.warning(
            "rich_text_parse_failed",
            extra={"event": "rich_text_parse_failed", "error": str(exc), "input_chars": len(html)},
        )
        return plain_text_blocks(html)
    return blocks or [ParagraphBlock()]


def plain_text_blocks(html: str) -> list[Block]:
    text = _TAG_PATTERN.sub("", _BR_PATTERN.sub("\n", html))
    lines = [line.strip() for line in text.split("\n")]
    blocks: list[Block] = [ParagraphBlock((Span(line),)) for line in lines if line]
    return blocks or [ParagraphBlock()]


def _parse_html(html: str) -> list[Block]:
    soup = BeautifulSoup(html, "html.parser")
    blocks: list[Block] = []
    for node in soup.contents:
        if isinstance(node, Comment):
            continue
        if isinstance(node, NavigableString):
            text = str(node).strip()
            if text:
                blocks.append(ParagraphBlock((Span(text),)))
            continue
        if isinstance(node, Tag):
            blocks.extend(_element_blocks(node))
    return blocks


def _element_blocks(element: Tag) -> list[Block]:
    name = element.name.lower()
    if name in _HEADING_TAGS:
        return [HeadingBlock(level=int(name[1]), text=element.get_text().strip())]
    if name == "p":
        spans = _collect_spans(element)
        return [ParagraphBlock(spans)] if spans else []
    if name in {"ul", "ol"}:
        return [BulletItemBlock(_collect_spans(item)) for item in element.find_all("li", recursive=False)]
    if name == "table":
        return _table_blocks(element)
    if element.get_text().strip():
        return [ParagraphBlock(_collect_spans(element))]
    return []


def _collect_spans(element: Tag, *, bold: bool = False, italic: bool = False) -> tuple[Span, ...]:
    spans: list[Span] = []
    for child in element.children:
        if isinstance(child, Comment):
            continue
        if isinstance(child, NavigableString):
            text = str(child)
            if text:
                spans.append(Span(text, bold=bold, italic=italic))
            continue
        if not isinstance(child, Tag):
            continue
        tag = child.name.lower()
        if tag == "br":
            spans.append(Span("", bold=bold, italic=italic, line_break=True))
            continue
        spans.extend(
            _collect_spans(
                child,
                bold=bold or tag in _BOLD_TAGS,
                italic=italic or tag in _ITALIC_TAGS,
            )
        )
    return tuple(spans)


def _cell_texts(row: Tag) -> list[str]:
    return [cell.get_text(" ", strip=True) for cell in row.find_all(["th", "td"], recursive=False)]


def _table_blocks(table: Tag) -> list[Block]:
    header: list[str] = []
    thead = table.find("thead")
    if thead is not None:
        header_row = thead.find("tr")
        if header_row is not None:
            header = _cell_texts(header_row)

    rows = [
        cells
        for row in table.find_all("tr")
        if row.find_parent("thead") is None and (cells := _cell_texts(row))
    ]

    if not header and rows:
        header = rows.pop(0)

    column_count = max(len(header), len(rows[0]) if rows else 0)
    if column_count >= RECORD_LAYOUT_MIN_COLUMNS:
        records: list[Block] = []
        for row_index, row in enumerate(rows):
            title = (row[0] if row else "") or f"Item {row_index + 1}"
            fields: list[tuple[str, str]] = []
            for column_index, value in enumerate(row[1:], start=1):
                if not value:
                    continue
                label = header[column_index] if column_index < len(header) and header[column_index] else ""
                fields.append((label or f"Column {column_index + 1}", value))
            records.append(RecordBlock(title=title, fields=tuple(fields)))
        return records

    if header:
        return [TableBlock(header=tuple(header), rows=tuple(tuple(row) for row in rows))]
    return []
