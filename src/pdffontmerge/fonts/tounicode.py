# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""ToUnicode CMap parsing and generation."""

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_CODESPACE_PATTERN = re.compile(
    r"begincodespacerange\s*(.*?)\s*endcodespacerange", re.DOTALL
)
_BFCHAR_PATTERN = re.compile(r"beginbfchar\s*(.*?)\s*endbfchar", re.DOTALL)
_BFRANGE_PATTERN = re.compile(r"beginbfrange\s*(.*?)\s*endbfrange", re.DOTALL)
_ENTRY_PATTERN = re.compile(r"<([0-9A-Fa-f]+)>\s*<([0-9A-Fa-f]*)>")
_RANGE_INC_PATTERN = re.compile(
    r"<([0-9A-Fa-f]+)>\s*<([0-9A-Fa-f]+)>\s*<([0-9A-Fa-f]*)>"
)
_RANGE_ARRAY_PATTERN = re.compile(
    r"<([0-9A-Fa-f]+)>\s*<([0-9A-Fa-f]+)>\s*\[([^\]]*)\]"
)
_HEX_PATTERN = re.compile(r"<([0-9A-Fa-f]*)>")

# Maximum entries per bfchar block
_CHUNK_SIZE = 100


@dataclass
class ToUnicodeMap:
    """Parsed ToUnicode CMap.

    Attributes:
        mapping: Character code to Unicode text.
        code_width: Byte width of the codes declared by the codespace
            ranges (1 or 2).
    """

    mapping: dict[int, str] = field(default_factory=dict)
    code_width: int = 1

    def get(self, code: int) -> str | None:
        return self.mapping.get(code)

    def __len__(self) -> int:
        return len(self.mapping)


def _decode_unicode_hex(hex_str: str) -> str:
    """Decodes a UTF-16BE hex string from a CMap entry to text.

    Args:
        hex_str: Hex string like "0041" or "D835DC00".

    Returns:
        The decoded text (may be several characters for ligatures).
    """
    if len(hex_str) % 2:
        hex_str = "0" + hex_str
    data = bytes.fromhex(hex_str)
    if len(data) == 1:
        return chr(data[0])
    return data.decode("utf-16-be", errors="replace")


def _offset_text(text: str, offset: int) -> str:
    """Increments the last character of a range destination."""
    if not text:
        return text
    return text[:-1] + chr(ord(text[-1]) + offset)


def _parse_code_width(text: str) -> int:
    widths = set()
    for block in _CODESPACE_PATTERN.finditer(text):
        for low in _HEX_PATTERN.findall(block.group(1))[::2]:
            widths.add(max(1, len(low) // 2))
    if not widths:
        return 1
    return 2 if max(widths) >= 2 else 1


def parse_tounicode_cmap(data: bytes) -> ToUnicodeMap:
    """Parses a ToUnicode CMap stream into a code-to-text mapping.

    Extracts entries from beginbfchar/endbfchar and beginbfrange/endbfrange
    blocks, and the code width from the codespace ranges.

    Args:
        data: Raw CMap stream bytes.

    Returns:
        ToUnicodeMap with the parsed entries.
    """
    text = data.decode("latin-1")
    result = ToUnicodeMap(code_width=_parse_code_width(text))
    mapping = result.mapping
    longest_source = 0

    for block_match in _BFCHAR_PATTERN.finditer(text):
        for src_hex, dst_hex in _ENTRY_PATTERN.findall(block_match.group(1)):
            try:
                mapping[int(src_hex, 16)] = _decode_unicode_hex(dst_hex)
            except ValueError:
                continue
            longest_source = max(longest_source, len(src_hex))

    for block_match in _BFRANGE_PATTERN.finditer(text):
        block = block_match.group(1)
        for start_hex, end_hex, dst_hex in _RANGE_INC_PATTERN.findall(block):
            try:
                start_code = int(start_hex, 16)
                end_code = int(end_hex, 16)
                start_text = _decode_unicode_hex(dst_hex)
                for offset in range(end_code - start_code + 1):
                    mapping[start_code + offset] = _offset_text(start_text, offset)
            except ValueError:
                continue
            longest_source = max(longest_source, len(start_hex))
        for start_hex, end_hex, body in _RANGE_ARRAY_PATTERN.findall(block):
            try:
                start_code = int(start_hex, 16)
                end_code = int(end_hex, 16)
                elements = _HEX_PATTERN.findall(body)
                for offset, elem_hex in enumerate(
                    elements[: end_code - start_code + 1]
                ):
                    mapping[start_code + offset] = _decode_unicode_hex(elem_hex)
            except ValueError:
                continue
            longest_source = max(longest_source, len(start_hex))

    # Some producers omit the codespace; fall back to the source code width
    if not _CODESPACE_PATTERN.search(text) and longest_source >= 4:
        result.code_width = 2

    logger.debug(
        "Parsed ToUnicode CMap: %d entries, %d-byte codes",
        len(mapping),
        result.code_width,
    )
    return result


def _encode_text_hex(text: str) -> str:
    return text.encode("utf-16-be").hex().upper()


def generate_tounicode_cmap(code_to_text: dict[int, str], code_width: int) -> bytes:
    """Generates ToUnicode CMap data for a merged font.

    Args:
        code_to_text: Mapping from character codes to Unicode text.
        code_width: 1 for simple fonts, 2 for CID fonts.

    Returns:
        CMap data as bytes.
    """
    digits = code_width * 2
    high = "FF" * code_width
    low = "00" * code_width
    lines = [
        "/CIDInit /ProcSet findresource begin",
        "12 dict begin",
        "begincmap",
        "/CIDSystemInfo <<",
        "  /Registry (Adobe)",
        "  /Ordering (UCS)",
        "  /Supplement 0",
        ">> def",
        "/CMapName /Adobe-Identity-UCS def",
        "/CMapType 2 def",
        "1 begincodespacerange",
        f"<{low}> <{high}>",
        "endcodespacerange",
    ]

    sorted_codes = sorted(code for code, value in code_to_text.items() if value)
    for i in range(0, len(sorted_codes), _CHUNK_SIZE):
        chunk = sorted_codes[i : i + _CHUNK_SIZE]
        lines.append(f"{len(chunk)} beginbfchar")
        for code in chunk:
            lines.append(
                f"<{code:0{digits}X}> <{_encode_text_hex(code_to_text[code])}>"
            )
        lines.append("endbfchar")

    lines.extend(
        [
            "endcmap",
            "CMapName currentdict /CMap defineresource pop",
            "end",
            "end",
        ]
    )
    return "\n".join(lines).encode("ascii")
