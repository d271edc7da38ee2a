# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Tests for fonts/tounicode.py: ToUnicode CMap parsing and generation."""

from pdffontmerge.fonts.tounicode import generate_tounicode_cmap, parse_tounicode_cmap

SIMPLE_CMAP = b"""/CIDInit /ProcSet findresource begin
12 dict begin
begincmap
1 begincodespacerange
<00> <FF>
endcodespacerange
2 beginbfchar
<41> <0041>
<42> <0042>
endbfchar
endcmap
"""

CID_CMAP = b"""begincmap
1 begincodespacerange
<0000> <FFFF>
endcodespacerange
1 beginbfrange
<0003> <0005> <0061>
endbfrange
1 beginbfrange
<0010> <0011> [<0066006C> <D835DC00>]
endbfrange
endcmap
"""


class TestParseToUnicode:
    """Tests for parse_tounicode_cmap."""

    def test_bfchar_entries(self):
        """bfchar entries map single codes."""
        result = parse_tounicode_cmap(SIMPLE_CMAP)

        assert result.mapping == {0x41: "A", 0x42: "B"}
        assert result.code_width == 1

    def test_bfrange_increments_destination(self):
        """An incrementing bfrange offsets the last character."""
        result = parse_tounicode_cmap(CID_CMAP)

        assert result.get(3) == "a"
        assert result.get(4) == "b"
        assert result.get(5) == "c"
        assert result.code_width == 2

    def test_bfrange_array_and_surrogates(self):
        """Array ranges keep ligatures and surrogate pairs."""
        result = parse_tounicode_cmap(CID_CMAP)

        assert result.get(0x10) == "fl"
        assert result.get(0x11) == "\U0001d400"

    def test_missing_codespace_uses_source_width(self):
        """Without codespace ranges, 4-digit sources imply 2-byte codes."""
        data = b"beginbfchar\n<0041> <0041>\nendbfchar\n"

        result = parse_tounicode_cmap(data)

        assert result.code_width == 2
        assert result.get(0x41) == "A"

    def test_unknown_code_returns_none(self):
        """Codes without an entry have no text."""
        assert parse_tounicode_cmap(SIMPLE_CMAP).get(0x43) is None


class TestGenerateToUnicode:
    """Tests for generate_tounicode_cmap."""

    def test_one_byte_codespace(self):
        """Simple fonts get an 8-bit codespace and 2-digit codes."""
        text = generate_tounicode_cmap({65: "A"}, 1).decode("ascii")

        assert "<00> <FF>" in text
        assert "<41> <0041>" in text

    def test_two_byte_codespace(self):
        """CID fonts get a 16-bit codespace and 4-digit codes."""
        text = generate_tounicode_cmap({1: "A", 2: "é"}, 2).decode("ascii")

        assert "<0000> <FFFF>" in text
        assert "<0001> <0041>" in text
        assert "<0002> <00E9>" in text

    def test_empty_text_is_skipped(self):
        """Entries without text are not written."""
        text = generate_tounicode_cmap({65: "A", 66: ""}, 1).decode("ascii")

        assert "1 beginbfchar" in text
        assert "<42>" not in text

    def test_chunks_of_one_hundred(self):
        """Large maps are split into bfchar blocks of at most 100 entries."""
        mapping = {code: chr(0x4E00 + code) for code in range(1, 251)}

        text = generate_tounicode_cmap(mapping, 2).decode("ascii")

        assert text.count("100 beginbfchar") == 2
        assert text.count("50 beginbfchar") == 1

    def test_generated_cmap_parses_back(self):
        """A generated CMap is readable by the parser."""
        mapping = {1: "A", 2: "fi", 0x300: "中"}

        parsed = parse_tounicode_cmap(generate_tounicode_cmap(mapping, 2))

        assert parsed.mapping == mapping
        assert parsed.code_width == 2
