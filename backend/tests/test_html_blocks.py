from __future__ import annotations

import logging

import pytest

from grantwright.export import blocks
from grantwright.export.blocks import (
    BulletItemBlock,
    HeadingBlock,
    ParagraphBlock,
    RecordBlock,
    Span,
    TableBlock,
    parse_rich_text,
)


@pytest.mark.parametrize("value", [None, "", "   \n  "])
def test_blank_input_yields_single_empty_paragraph(value) -> None:
    assert parse_rich_text(value) == [ParagraphBlock()]


def test_markup_without_text_yields_single_empty_paragraph() -> None:
    assert parse_rich_text("<div>   </div><!-- note -->") == [ParagraphBlock()]


def test_headings_and_inline_formatting_are_preserved() -> None:
    parsed = parse_rich_text("<h2>Goals</h2><p>Plain <strong>bold <em>both</em></strong><br>next</p>")

    assert parsed[0] == HeadingBlock(level=2, text="Goals")
    paragraph = parsed[1]
    assert isinstance(paragraph, ParagraphBlock)
    assert paragraph.spans == (
        Span("Plain "),
        Span("bold ", bold=True),
        Span("both", bold=True, italic=True),
        Span("", line_break=True),
        Span("next"),
    )
    assert paragraph.text == "Plain bold both\nnext"


def test_list_items_become_bullet_blocks() -> None:
    parsed = parse_rich_text("<ol><li>One</li><li><b>Two</b></li></ol>")

    assert parsed == [
        BulletItemBlock((Span("One"),)),
        BulletItemBlock((Span("Two", bold=True),)),
    ]


def test_top_level_text_and_generic_containers_become_paragraphs() -> None:
    parsed = parse_rich_text("Loose text<div>Inside a div</div>")

    assert parsed == [
        ParagraphBlock((Span("Loose text"),)),
        ParagraphBlock((Span("Inside a div"),)),
    ]


def test_narrow_table_without_thead_uses_first_row_as_header() -> None:
    parsed = parse_rich_text(
        "<table><tr><td>Partner</td><td>Country</td></tr><tr><td>Acme</td><td>IE</td></tr></table>"
    )

    assert parsed == [TableBlock(header=("Partner", "Country"), rows=(("Acme", "IE"),))]


def test_narrow_table_prefers_thead_row_as_header() -> None:
    parsed = parse_rich_text(
        "<table><thead><tr><th>Task</th><th>Owner</th></tr></thead>"
        "<tbody><tr><td>Survey</td><td>Acme</td></tr><tr><td>Report</td><td>Beta</td></tr></tbody></table>"
    )

    assert parsed == [
        TableBlock(header=("Task", "Owner"), rows=(("Survey", "Acme"), ("Report", "Beta"))),
    ]


def test_empty_leading_row_does_not_swallow_the_table() -> None:
    parsed = parse_rich_text(
        "<table><tr></tr><tr><td>Partner</td><td>Country</td></tr><tr><td>Acme</td><td>IE</td></tr></table>"
    )

    assert parsed == [TableBlock(header=("Partner", "Country"), rows=(("Acme", "IE"),))]


def test_four_column_table_stays_a_table() -> None:
    parsed = parse_rich_text(
        "<table><tr><th>Task</th><th>Owner</th><th>Start</th><th>End</th></tr>"
        "<tr><td>Survey</td><td>Acme</td><td>M1</td><td>M3</td></tr></table>"
    )

    assert parsed == [TableBlock(header=("Task", "Owner", "Start", "End"), rows=(("Survey", "Acme", "M1", "M3"),))]


def test_five_column_table_with_thead_degrades_to_records() -> None:
    parsed = parse_rich_text(
        "<table><thead><tr><th>Name</th><th>Country</th><th>Role</th><th>Budget</th><th>Months</th></tr></thead>"
        "<tbody><tr><td>Acme</td><td>IE</td><td>Lead</td><td>10</td><td>24</td></tr></tbody></table>"
    )

    assert parsed == [
        RecordBlock(
            title="Acme",
            fields=(("Country", "IE"), ("Role", "Lead"), ("Budget", "10"), ("Months", "24")),
        ),
    ]


def test_wide_table_degrades_to_one_record_per_row() -> None:
    parsed = parse_rich_text(
        "<table>"
        "<tr><th>Name</th><th>Country</th><th>Role</th><th>Budget</th><th></th></tr>"
        "<tr><td>Acme</td><td>IE</td><td>Coordinator</td><td></td><td></td></tr>"
        "<tr><td></td><td>FR</td><td>Partner</td><td>10</td><td>Yes</td></tr>"
        "</table>"
    )

    assert parsed == [
        RecordBlock(title="Acme", fields=(("Country", "IE"), ("Role", "Coordinator"))),
        RecordBlock(
            title="Item 2",
            fields=(("Country", "FR"), ("Role", "Partner"), ("Budget", "10"), ("Column 5", "Yes")),
        ),
    ]


def test_parser_failure_degrades_to_plain_text_lines(monkeypatch: pytest.MonkeyPatch, caplog) -> None:
    def broken_parser(html: str):
        raise ValueError("unexpected markup")

    monkeypatch.setattr(blocks, "_parse_html", broken_parser)

    with caplog.at_level(logging.WARNING, logger="grantwright.export"):
        parsed = parse_rich_text("<p>First line</p><br/>Second <b>line</b>")

    assert parsed == [
        ParagraphBlock((Span("First line"),)),
        ParagraphBlock((Span("Second line"),)),
    ]
    assert any(getattr(record, "event", None) == "rich_text_parse_failed" for record in caplog.records)
