# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Tests for rewriter.py: content stream rewriting onto merged fonts."""

from decimal import Decimal

import pikepdf
import pytest
from conftest import new_pdf
from font_helpers import (
    DIAMOND,
    RECTANGLE,
    TRIANGLE,
    add_text_page,
    cid_truetype_font,
    type1_font,
)
from pikepdf import Array, Dictionary, Name

from pdffontmerge.config import MergeSettings
from pdffontmerge.fonts import FontMergeSession, FontResourceLoader
from pdffontmerge.rewriter import (
    ContentStreamRewriter,
    format_operand,
    hex_string,
    literal_string,
    page_font_table,
)


def _helvetica() -> Dictionary:
    return Dictionary(Type=Name.Font, Subtype=Name.Type1, BaseFont=Name.Helvetica)


@pytest.fixture
def session() -> FontMergeSession:
    """Fresh merge session."""
    return FontMergeSession(MergeSettings())


def _first_document(session: FontMergeSession) -> ContentStreamRewriter:
    """Rewrites a first document that defines A and B at 65 and 66."""
    pdf = new_pdf()
    font = type1_font(
        pdf, {"A": RECTANGLE, "B": TRIANGLE}, "ABCDEF+TestSerif", {65: "A", 66: "B"}
    )
    page = add_text_page(pdf, {"/R11": font}, b"BT /R11 12 Tf (AB) Tj ET")
    rewriter = ContentStreamRewriter(session, FontResourceLoader(0))
    rewriter.rewrite_page(page)
    return rewriter


def _second_page(content: bytes, extra_fonts: dict | None = None) -> pikepdf.Page:
    """A page of a second document whose font uses codes 1 (A) and 2 (C)."""
    pdf = new_pdf()
    font = type1_font(
        pdf, {"A": RECTANGLE, "C": DIAMOND}, "GHIJKL+TestSerif", {1: "A", 2: "C"}
    )
    fonts = {"/R11": font}
    fonts.update(extra_fonts or {})
    return add_text_page(pdf, fonts, content)


def _rewrite_second(session: FontMergeSession, content: bytes, extra_fonts=None):
    _first_document(session)
    rewriter = ContentStreamRewriter(session, FontResourceLoader(1))
    return rewriter.rewrite_page(_second_page(content, extra_fonts))


class TestFontSelection:
    """Tests for Tf substitution."""

    def test_first_document_passes_through(self, session):
        """The first resource's text keeps its bytes; only Tf changes."""
        pdf = new_pdf()
        font = type1_font(
            pdf, {"A": RECTANGLE, "B": TRIANGLE}, "ABCDEF+TestSerif", {65: "A", 66: "B"}
        )
        page = add_text_page(pdf, {"/R11": font}, b"BT /R11 12 Tf (AB) Tj ET")
        rewriter = ContentStreamRewriter(session, FontResourceLoader(0))

        result = rewriter.rewrite_page(page)

        assert result.substitutions == {"/R11": "TestSerif_Type1"}
        assert b"/TestSerif_Type1 12 Tf" in result.content
        assert b"(AB) Tj" in result.content
        assert result.reverted_operands == 0

    def test_unmergeable_font_kept(self, session):
        """Pages using only non-embedded fonts are not rewritten."""
        pdf = new_pdf()
        page = add_text_page(pdf, {"/F1": _helvetica()}, b"BT /F1 12 Tf (Hi) Tj ET")
        rewriter = ContentStreamRewriter(session, FontResourceLoader(0))

        assert rewriter.rewrite_page(page) is None

    def test_page_without_fonts(self, session):
        """Pages without a font table are not rewritten."""
        pdf = new_pdf()
        pdf.add_blank_page()
        rewriter = ContentStreamRewriter(session, FontResourceLoader(0))

        assert rewriter.rewrite_page(pdf.pages[0]) is None

    def test_key_claimed_once_per_page(self, session):
        """A second local font with the same key keeps its own font."""
        pdf = new_pdf()
        first = type1_font(pdf, {"A": RECTANGLE}, "ABCDEF+TestSerif", {65: "A"})
        second = type1_font(pdf, {"B": TRIANGLE}, "GHIJKL+TestSerif", {66: "B"})
        page = add_text_page(
            pdf,
            {"/R11": first, "/R12": second},
            b"BT /R11 12 Tf (A) Tj /R12 12 Tf (B) Tj ET",
        )
        rewriter = ContentStreamRewriter(session, FontResourceLoader(0))

        result = rewriter.rewrite_page(page)

        assert result.substitutions == {"/R11": "TestSerif_Type1"}
        assert b"/R12 12 Tf" in result.content

    def test_inherited_font_resources(self, session):
        """Fonts inherited from the page tree are used."""
        pdf = new_pdf()
        font = type1_font(pdf, {"A": RECTANGLE}, "ABCDEF+TestSerif", {65: "A"})
        pdf.add_blank_page()
        page = pdf.pages[0]
        if Name.Resources in page.obj:
            del page.obj[Name.Resources]
        page.obj[Name.Contents] = pdf.make_stream(b"BT /R11 12 Tf (A) Tj ET")
        pdf.Root.Pages[Name.Resources] = Dictionary(Font=Dictionary({"/R11": font}))

        assert "/R11" in page_font_table(page.obj)

        result = ContentStreamRewriter(session, FontResourceLoader(0)).rewrite_page(page)

        assert result.substitutions == {"/R11": "TestSerif_Type1"}

    def test_other_resource_names_recorded(self, session):
        """Names used by other operators are reported."""
        pdf = new_pdf()
        font = type1_font(pdf, {"A": RECTANGLE}, "ABCDEF+TestSerif", {65: "A"})
        page = add_text_page(
            pdf, {"/R11": font}, b"/GS1 gs BT /R11 12 Tf (A) Tj ET /Im1 Do"
        )

        result = ContentStreamRewriter(session, FontResourceLoader(0)).rewrite_page(page)

        assert {"/GS1", "/Im1"} <= result.referenced_names


class TestTextReencoding:
    """Tests for re-encoding text operands of later documents."""

    def test_tj_reencoded(self, session):
        """Codes are mapped through glyph identities to merged codes."""
        result = _rewrite_second(session, b"BT /R11 12 Tf (\\001\\002) Tj ET")

        merged = session.get("TestSerif_Type1")
        assert merged.lookup("C") == 2
        assert b"(A\\002) Tj" in result.content

    def test_tj_array_keeps_adjustments(self, session):
        """TJ kerning numbers are kept between re-encoded strings."""
        result = _rewrite_second(
            session, b"BT /R11 12 Tf [(\\001) -250 (\\002) 12.5] TJ ET"
        )

        assert b"[(A) -250 (\\002) 12.5] TJ" in result.content

    def test_quote_operators(self, session):
        """' and \" keep their spacing operands."""
        result = _rewrite_second(
            session, b"BT /R11 12 Tf 14 TL (\\001) ' 1 2 (\\002) \" ET"
        )

        assert b"(A) '" in result.content
        assert b'1 2 (\\002) "' in result.content

    def test_undecodable_operand_reverted(self, session):
        """Operands with unknown codes keep their original bytes."""
        result = _rewrite_second(session, b"BT /R11 12 Tf (\\001\\007) Tj ET")

        assert result.reverted_operands == 1
        assert b"(\\001\\007) Tj" in result.content

    def test_graphics_state_restores_font(self, session):
        """Q restores the font context saved by q."""
        result = _rewrite_second(
            session,
            b"BT /R11 12 Tf (\\001) Tj ET "
            b"q BT /F9 10 Tf (\\001) Tj ET Q "
            b"BT (\\001) Tj ET",
            {"/F9": _helvetica()},
        )

        assert result.substitutions == {"/R11": "TestSerif_Type1"}
        assert result.content.count(b"(A) Tj") == 2
        assert result.content.count(b" Tj") == 3

    def test_cid_font_hex_output(self, session):
        """CID targets are written as 4-digit hex codes."""
        first = new_pdf()
        add_text_page(
            first,
            {
                "/F1": cid_truetype_font(
                    first, {"A": RECTANGLE, "B": TRIANGLE}, "ABCDEF+TestCID", {1: "A", 2: "B"}
                )
            },
            b"BT /F1 10 Tf <00010002> Tj ET",
        )
        ContentStreamRewriter(session, FontResourceLoader(0)).rewrite_page(first.pages[0])

        second = new_pdf()
        page = add_text_page(
            second,
            {
                "/F1": cid_truetype_font(
                    second, {"B": TRIANGLE, "A": RECTANGLE}, "GHIJKL+TestCID", {1: "B", 2: "A"}
                )
            },
            b"BT /F1 10 Tf <00010002> Tj ET",
        )
        result = ContentStreamRewriter(session, FontResourceLoader(1)).rewrite_page(page)

        assert result.substitutions == {"/F1": "TestCID_Type0"}
        assert b"<00020001> Tj" in result.content


class TestOperandFormatting:
    """Tests for operand serialization helpers."""

    def test_literal_string_escapes(self):
        """Delimiters are escaped and non-printables written in octal."""
        assert literal_string(b"a(b)c\\") == b"(a\\(b\\)c\\\\)"
        assert literal_string(b"\x00\xff") == b"(\\000\\377)"

    def test_hex_string(self):
        """Codes become uppercase 4-digit hex."""
        assert hex_string([1, 0xABCD]) == b"<0001ABCD>"

    @pytest.mark.parametrize(
        "value, expected",
        [
            (True, b"true"),
            (-250, b"-250"),
            (Decimal("12.50"), b"12.50"),
            (0.25, b"0.25"),
            (pikepdf.String(b"x"), b"(x)"),
        ],
    )
    def test_format_operand(self, value, expected):
        """Numbers, booleans and strings serialize as PDF tokens."""
        assert format_operand(value) == expected

    def test_format_name_operand(self):
        """Other objects fall back to pikepdf's serialization."""
        assert format_operand(Name.Foo) == b"/Foo"

    def test_format_array_operand(self):
        """Arrays fall back to pikepdf's serialization."""
        assert format_operand(Array([1, 2])).startswith(b"[")
