# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Code-to-glyph-name tables for the standard PDF base encodings."""

from fontTools.agl import UV2AGL
from fontTools.encodings.MacRoman import MacRoman
from fontTools.encodings.StandardEncoding import StandardEncoding


def _from_name_list(names: list[str]) -> dict[int, str]:
    return {code: name for code, name in enumerate(names) if name != ".notdef"}


def _build_win_ansi_encoding() -> dict[int, str]:
    """Builds WinAnsiEncoding from the CP1252 code page."""
    encoding: dict[int, str] = {}
    for code in range(32, 256):
        try:
            char = bytes([code]).decode("cp1252")
        except UnicodeDecodeError:
            continue
        uv = ord(char)
        encoding[code] = UV2AGL.get(uv, f"uni{uv:04X}")
    # PDF names these two differently from the AGL
    encoding[0xA0] = "space"
    encoding[0xAD] = "hyphen"
    encoding.pop(0x7F, None)
    return encoding


STANDARD_ENCODING: dict[int, str] = _from_name_list(StandardEncoding)
MAC_ROMAN_ENCODING: dict[int, str] = _from_name_list(MacRoman)
WIN_ANSI_ENCODING: dict[int, str] = _build_win_ansi_encoding()

BASE_ENCODINGS: dict[str, dict[int, str]] = {
    "StandardEncoding": STANDARD_ENCODING,
    "WinAnsiEncoding": WIN_ANSI_ENCODING,
    "MacRomanEncoding": MAC_ROMAN_ENCODING,
}


def get_base_encoding(name: str) -> dict[int, str] | None:
    """Returns the code-to-glyph-name table of a named base encoding.

    Args:
        name: Encoding name without leading slash (e.g. "WinAnsiEncoding").

    Returns:
        Mapping of codes to glyph names, or None for unknown encodings.
    """
    return BASE_ENCODINGS.get(name)
