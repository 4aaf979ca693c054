from __future__ import annotations

from datetime import datetime, timezone
import io
import logging

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Inches, Pt, RGBColor
import httpx

from grantwright.export.blocks import (
    Block,
    BulletItemBlock,
    HeadingBlock,
    ParagraphBlock,
    RecordBlock,
    Span,
    TableBlock,
    parse_rich_text,
)
from grantwright.export.budget import category_total, detail_lines, format_currency, format_quantity, grand_total
from grantwright.export.policy import (
    ANNEX_GROUP_HEADINGS,
    DOCX_MEDIA_TYPE,
    ExportArtifact,
    ExportError,
    current_timestamp_ms,
    document_file_name,
    strip_leading_numbering,
    timeline_phase_label,
    work_package_heading,
)
from grantwright.models import LEGACY_SECTIONS, Annex, Proposal, humanize_key

logger = logging.getLogger("grantwright.export")

FONT_NAME = "Arial"
TITLE_SIZE = Pt(18)
HEADER_SIZE = Pt(14)
SUBHEADER_SIZE = Pt(12)
BODY_SIZE = Pt(11)
RECORD_FIELD_SIZE = Pt(10)
PRIMARY_COLOR = RGBColor(0x1F, 0x47, 0x88)
SECONDARY_COLOR = RGBColor(0x2E, 0x5C, 0x8A)
TABLE_HEADER_FILL = "E7E6E6"
BORDER_COLOR = "CCCCCC"
PAGE_MARGIN = Inches(1)
LOGO_SIZE = Pt(150)
RECORD_FIELD_INDENT = Inches(0.25)

_TBL_BORDERS_SUCCESSORS = ("w:shd", "w:tblLayout", "w:tblCellMar", "w:tblLook", "w:tblCaption", "w:tblDescription")
_TC_SHD_SUCCESSORS = ("w:noWrap", "w:tcMar", "w:textDirection", "w:tcFitText", "w:vAlign", "w:hideMark")
_P_BDR_SUCCESSORS = (
    "w:shd",
    "w:tabs",
    "w:suppressAutoHyphens",
    "w:kinsoku",
    "w:wordWrap",
    "w:overflowPunct",
    "w:topLinePunct",
    "w:autoSpaceDE",
    "w:autoSpaceDN",
    "w:bidi",
    "w:adjustRightInd",
    "w:snapToGrid",
    "w:spacing",
    "w:ind",
    "w:contextualSpacing",
    "w:mirrorIndents",
    "w:suppressOverlap",
    "w:jc",
    "w:textDirection",
    "w:textAlignment",
    "w:textboxTightWrap",
    "w:outlineLvl",
    "w:divId",
    "w:cnfStyle",
    "w:rPr",
    "w:sectPr",
    "w:pPrChange",
)


def narrative_sections(proposal: Proposal) -> list[tuple[str, str]]:
    """Narrative sections in document order as (title, rich text) pairs."""
    if proposal.dynamic_sections:
        labels: dict[str, str] = {}
        ordered_keys: list[str] = []
        if proposal.funding_scheme is not None:
            for section in proposal.funding_scheme.ordered_sections():
                labels[section.key] = strip_leading_numbering(section.label)
                if section.key in proposal.dynamic_sections:
                    ordered_keys.append(section.key)
        ordered_keys.extend(key for key in proposal.dynamic_sections if key not in ordered_keys)
        return [(labels.get(key) or humanize_key(key), proposal.dynamic_sections[key]) for key in ordered_keys]

    record = proposal.model_dump(by_alias=True)
    sections: list[tuple[str, str]] = []
    for key, title in LEGACY_SECTIONS:
        content = record.get(key)
        if key == "methodology" and not content:
            content = record.get("methods")
        if isinstance(content, str) and content.strip():
            sections.append((title, content))
    return sections


def _style_run(
    run,
    *,
    size: Pt = BODY_SIZE,
    bold: bool = False,
    italic: bool = False,
    color: RGBColor | None = None,
) -> None:
    run.font.name = FONT_NAME
    run.font.size = size
    run.font.bold = bold
    run.font.italic = italic
    if color is not None:
        run.font.color.rgb = color


def _border_element(tag: str, *, size: int):
    element = OxmlElement(tag)
    element.set(qn("w:val"), "single")
    element.set(qn("w:sz"), str(size))
    element.set(qn("w:space"), "0" if tag != "w:bottom" else "1")
    element.set(qn("w:color"), BORDER_COLOR)
    return element


def _shade_cell(cell, fill: str) -> None:
    tc_pr = cell._tc.get_or_add_tcPr()
    shading = OxmlElement("w:shd")
    shading.set(qn("w:val"), "clear")
    shading.set(qn("w:color"), "auto")
    shading.set(qn("w:fill"), fill)
    tc_pr.insert_element_before(shading, *_TC_SHD_SUCCESSORS)


def _set_table_borders(table) -> None:
    tbl_pr = table._tbl.tblPr
    borders = OxmlElement("w:tblBorders")
    for edge in ("top", "left", "bottom", "right", "insideH", "insideV"):
        borders.append(_border_element(f"w:{edge}", size=4))
    tbl_pr.insert_element_before(borders, *_TBL_BORDERS_SUCCESSORS)


def _set_bottom_border(paragraph) -> None:
    p_pr = paragraph._p.get_or_add_pPr()
    borders = OxmlElement("w:pBdr")
    borders.append(_border_element("w:bottom", size=6))
    p_pr.insert_element_before(borders, *_P_BDR_SUCCESSORS)


class ProposalDocumentComposer:
    def __init__(self, *, http_client: httpx.Client | None = None) -> None:
        self._http_client = http_client
        self._doc = Document()

    def compose(
        self,
        proposal: Proposal,
        *,
        generated_at: datetime | None = None,
        timestamp_ms: int | None = None,
    ) -> ExportArtifact:
        self._doc = Document()
        self._configure_page()
        try:
            self._title_page(proposal, generated_at or datetime.now(timezone.utc))
            if proposal.summary:
                self._section_header("Executive Summary")
                self._blocks(parse_rich_text(proposal.summary))
                self._doc.add_page_break()
            self._annexes(proposal.annexes)
            self._narrative(proposal)
            self._partners(proposal)
            self._work_packages(proposal)
            self._milestones(proposal)
            self._risks(proposal)
            self._budget(proposal)
            self._timeline(proposal)

            buffer = io.BytesIO()
            self._doc.save(buffer)
        except Exception as exc:
            logger.exception(
                "document_compose_failed",
                extra={"event": "document_compose_failed", "proposal_id": proposal.id},
            )
            raise ExportError(f"Failed to generate DOCX document: {exc}") from exc

        content = buffer.getvalue()
        file_name = document_file_name(proposal.title, timestamp_ms or current_timestamp_ms())
        logger.info(
            "document_composed",
            extra={
                "event": "document_composed",
                "proposal_id": proposal.id,
                "file_name": file_name,
                "size_bytes": len(content),
            },
        )
        return ExportArtifact(content=content, file_name=file_name, media_type=DOCX_MEDIA_TYPE)

    def _configure_page(self) -> None:
        normal = self._doc.styles["Normal"]
        normal.font.name = FONT_NAME
        normal.font.size = BODY_SIZE
        for section in self._doc.sections:
            section.top_margin = PAGE_MARGIN
            section.bottom_margin = PAGE_MARGIN
            section.left_margin = PAGE_MARGIN
            section.right_margin = PAGE_MARGIN

    def _title_page(self, proposal: Proposal, generated_at: datetime) -> None:
        spacer = self._doc.add_paragraph()
        spacer.paragraph_format.space_before = Pt(100)

        scheme = proposal.funding_scheme
        if scheme is not None and scheme.logo_url:
            self._logo(scheme.logo_url)

        title = self._doc.add_paragraph()
        title.alignment = WD_ALIGN_PARAGRAPH.CENTER
        title.paragraph_format.space_before = Pt(20)
        title.paragraph_format.space_after = Pt(10)
        _style_run(title.add_run(proposal.title or "Untitled Proposal"), size=TITLE_SIZE, bold=True, color=PRIMARY_COLOR)

        generated = self._doc.add_paragraph()
        generated.alignment = WD_ALIGN_PARAGRAPH.CENTER
        generated.paragraph_format.space_after = Pt(30)
        _style_run(generated.add_run(f"Generated on {generated_at.strftime('%d/%m/%Y')}"), italic=True)

        if scheme is not None and scheme.name:
            funding = self._doc.add_paragraph()
            funding.alignment = WD_ALIGN_PARAGRAPH.CENTER
            funding.paragraph_format.space_after = Pt(20)
            _style_run(funding.add_run(f"Funding Scheme: {scheme.name}"), bold=True, color=SECONDARY_COLOR)

        self._doc.add_page_break()

    def _logo(self, url: str) -> None:
        if self._http_client is None:
            return
        paragraph = None
        try:
            response = self._http_client.get(url)
            response.raise_for_status()
            paragraph = self._doc.add_paragraph()
            paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER
            paragraph.add_run().add_picture(io.BytesIO(response.content), width=LOGO_SIZE, height=LOGO_SIZE)
        except Exception as exc:
            if paragraph is not None:
                paragraph._p.getparent().remove(paragraph._p)
            logger.warning(
                "document_logo_skipped",
                extra={"event": "document_logo_skipped", "logo_url": url, "error": str(exc)},
            )

    def _section_header(self, text: str) -> None:
        paragraph = self._doc.add_paragraph(style="Heading 1")
        paragraph.paragraph_format.space_before = Pt(20)
        paragraph.paragraph_format.space_after = Pt(10)
        paragraph.paragraph_format.keep_with_next = True
        _style_run(paragraph.add_run(text), size=HEADER_SIZE, bold=True, color=PRIMARY_COLOR)

    def _sub_header(self, text: str) -> None:
        paragraph = self._doc.add_paragraph(style="Heading 2")
        paragraph.paragraph_format.space_before = Pt(15)
        paragraph.paragraph_format.space_after = Pt(7.5)
        paragraph.paragraph_format.keep_with_next = True
        _style_run(paragraph.add_run(text), size=SUBHEADER_SIZE, bold=True, color=SECONDARY_COLOR)

    def _paragraph(self, text: str, *, bold: bool = False, italic: bool = False) -> None:
        paragraph = self._doc.add_paragraph()
        paragraph.paragraph_format.space_before = Pt(5)
        paragraph.paragraph_format.space_after = Pt(5)
        _style_run(paragraph.add_run(text), bold=bold, italic=italic)

    def _spans(self, paragraph, spans: tuple[Span, ...]) -> None:
        for span in spans:
            run = paragraph.add_run("" if span.line_break else span.text)
            if span.line_break:
                run.add_break()
            _style_run(run, bold=span.bold, italic=span.italic)

    def _blocks(self, blocks: list[Block]) -> None:
        for block in blocks:
            if isinstance(block, HeadingBlock):
                if block.level == 1:
                    self._sub_header(block.text)
                else:
                    paragraph = self._doc.add_paragraph(style="Heading 3")
                    paragraph.paragraph_format.keep_with_next = True
                    _style_run(paragraph.add_run(block.text), bold=True, color=SECONDARY_COLOR)
            elif isinstance(block, ParagraphBlock):
                paragraph = self._doc.add_paragraph()
                paragraph.paragraph_format.space_before = Pt(5)
                paragraph.paragraph_format.space_after = Pt(5)
                self._spans(paragraph, block.spans)
            elif isinstance(block, BulletItemBlock):
                paragraph = self._doc.add_paragraph(style="List Bullet")
                self._spans(paragraph, block.spans)
            elif isinstance(block, TableBlock):
                self._table(list(block.header), [list(row) for row in block.rows])
            elif isinstance(block, RecordBlock):
                self._record(block)

    def _record(self, block: RecordBlock) -> None:
        title = self._doc.add_paragraph()
        title.paragraph_format.space_before = Pt(12)
        title.paragraph_format.space_after = Pt(6)
        title.paragraph_format.keep_with_next = True
        _set_bottom_border(title)
        _style_run(title.add_run(block.title), size=SUBHEADER_SIZE, bold=True, color=SECONDARY_COLOR)
        for label, value in block.fields:
            field = self._doc.add_paragraph()
            field.paragraph_format.left_indent = RECORD_FIELD_INDENT
            field.paragraph_format.space_after = Pt(3)
            _style_run(field.add_run(f"{label}: "), size=RECORD_FIELD_SIZE, bold=True)
            _style_run(field.add_run(value), size=RECORD_FIELD_SIZE)
        self._doc.add_paragraph().paragraph_format.space_after = Pt(10)

    def _table(self, header: list[str], rows: list[list[str]], *, emphasized_rows: set[int] | None = None) -> None:
        emphasized = emphasized_rows or set()
        column_count = max([len(header), *(len(row) for row in rows)])
        table = self._doc.add_table(rows=1, cols=column_count)
        table.style = "Table Grid"
        _set_table_borders(table)
        for index, cell in enumerate(table.rows[0].cells):
            _style_run(cell.paragraphs[0].add_run(header[index] if index < len(header) else ""), bold=True)
            _shade_cell(cell, TABLE_HEADER_FILL)
        for row_index, row in enumerate(rows):
            cells = table.add_row().cells
            for index, cell in enumerate(cells):
                text = row[index] if index < len(row) else ""
                _style_run(cell.paragraphs[0].add_run(text), bold=row_index in emphasized)
        self._doc.add_paragraph()

    def _annexes(self, annexes: list[Annex]) -> None:
        self._section_header("1. Annexes")
        for annex_type, heading, placeholder in ANNEX_GROUP_HEADINGS:
            self._sub_header(heading)
            group = [annex for annex in annexes if annex.type == annex_type]
            if not group:
                self._paragraph(placeholder, italic=True)
                continue
            for annex in group:
                partner = f" - {annex.partner_name}" if annex_type == "cv" and annex.partner_name else ""
                self._paragraph(f"• {annex.title}{partner} ({annex.file_name or 'Attached'})")

    def _narrative(self, proposal: Proposal) -> None:
        number = 2
        for title, content in narrative_sections(proposal):
            self._section_header(f"{number}. {title}")
            self._blocks(parse_rich_text(content))
            number += 1
        for custom in proposal.custom_sections:
            self._section_header(f"{number}. {custom.title or 'Additional Section'}")
            self._blocks(parse_rich_text(custom.content))
            number += 1

    def _partners(self, proposal: Proposal) -> None:
        if not proposal.partners:
            return
        self._section_header("Partners")
        rows = [[partner.name or "N/A", partner.role or "N/A"] for partner in proposal.partners]
        self._table(["Partner Name", "Role"], rows)

    def _work_packages(self, proposal: Proposal) -> None:
        if not proposal.work_packages:
            return
        self._section_header("Work Packages")
        for index, package in enumerate(proposal.work_packages):
            self._sub_header(work_package_heading(package.name or "Unnamed", index))
            self._paragraph(package.description or "No description")
            if package.deliverables:
                self._paragraph("Deliverables:")
                for deliverable in package.deliverables:
                    self._paragraph(f"  • {deliverable}")

    def _milestones(self, proposal: Proposal) -> None:
        if not proposal.milestones:
            return
        self._section_header("Milestones")
        rows = [
            [item.milestone or "N/A", item.work_package or "N/A", item.due_date or "N/A"]
            for item in proposal.milestones
        ]
        self._table(["Milestone", "Work Package", "Due Date"], rows)

    def _risks(self, proposal: Proposal) -> None:
        if not proposal.risks:
            return
        self._section_header("Risk Management")
        rows = [
            [item.risk or "N/A", item.likelihood or "N/A", item.impact or "N/A", item.mitigation or "N/A"]
            for item in proposal.risks
        ]
        self._table(["Risk", "Likelihood", "Impact", "Mitigation"], rows)

    def _budget(self, proposal: Proposal) -> None:
        if not proposal.budget:
            return
        self._section_header("Budget Summary")
        summary_rows = [[item.item or "N/A", format_currency(category_total(item))] for item in proposal.budget]
        self._table(["Budget Category", "Total Amount"], summary_rows)

        total = self._doc.add_paragraph()
        total.alignment = WD_ALIGN_PARAGRAPH.RIGHT
        total.paragraph_format.space_before = Pt(7.5)
        total.paragraph_format.space_after = Pt(15)
        total.paragraph_format.keep_with_next = True
        _style_run(
            total.add_run(f"TOTAL PROJECT BUDGET: {format_currency(grand_total(proposal.budget))}"),
            size=HEADER_SIZE,
            bold=True,
            color=PRIMARY_COLOR,
        )

        heading = self._doc.add_paragraph()
        heading.paragraph_format.space_before = Pt(20)
        heading.paragraph_format.space_after = Pt(10)
        heading.paragraph_format.keep_with_next = True
        _style_run(heading.add_run("Detailed Budget Breakdown"), size=SUBHEADER_SIZE, bold=True, color=SECONDARY_COLOR)

        rows: list[list[str]] = []
        category_rows: set[int] = set()
        for line in detail_lines(proposal.budget):
            if line.is_category:
                category_rows.add(len(rows))
                rows.append([line.label, "", "", format_currency(line.total)])
            else:
                rows.append(
                    [
                        line.label,
                        format_quantity(line.quantity or 0),
                        format_currency(line.unit_cost or 0),
                        format_currency(line.total),
                    ]
                )
        self._table(["Item / Category", "Quantity", "Unit Cost", "Total"], rows, emphasized_rows=category_rows)

    def _timeline(self, proposal: Proposal) -> None:
        if not proposal.timeline:
            return
        self._section_header("Timeline")
        for phase in proposal.timeline:
            self._sub_header(timeline_phase_label(phase.phase, phase.start_month, phase.end_month))
            for activity in phase.activities:
                self._paragraph(f"  • {activity}")


def compose_proposal_document(
    proposal: Proposal,
    *,
    http_client: httpx.Client | None = None,
    generated_at: datetime | None = None,
    timestamp_ms: int | None = None,
) -> ExportArtifact:
    composer = ProposalDocumentComposer(http_client=http_client)
    return composer.compose(proposal, generated_at=generated_at, timestamp_ms=timestamp_ms)
