# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Parsed handles for embedded font programs.

Each handle wraps one embedded program (Type1, CFF or TrueType) and
exposes what the merge engine needs: glyph names, raw glyph data for
the similarity heuristic, units per em and the built-in encoding.
"""

import copy
import logging
import os
import re
import struct
import tempfile
from io import BytesIO

import pikepdf
from fontTools.cffLib import CFFFontSet
from fontTools.misc import eexec
from fontTools.t1Lib import T1Font
from fontTools.ttLib import TTFont
from fontTools.ttLib.tables._g_l_y_f import Glyph

from ..exceptions import UnreadableFontProgramError
from .encodings import STANDARD_ENCODING

logger = logging.getLogger(__name__)

# eexec keys for the private dictionary and for charstrings
PRIVATE_KEY = 55665
CHARSTRING_KEY = 4330

# Trailer appended when a Type1 program ships without its zero block
DEFAULT_TYPE1_TRAILER = (b"0" * 64 + b"\n") * 8 + b"cleartomark\n"

_HEX_CIPHER = re.compile(rb"[0-9A-Fa-f\s]+")
_ZERO_BLOCK = re.compile(rb"0{64}")
_WHITESPACE = b" \t\r\n\f\x00"

# Last SID of the CFF standard strings
_CFF_STANDARD_STRING_COUNT = 391

# Tables decompiled eagerly when a TrueType program is loaded
_TRUETYPE_TABLES = ("glyf", "hmtx", "hhea", "cmap")


def _pfb_segment(segment_type: int, payload: bytes) -> bytes:
    return b"\x80" + bytes([segment_type]) + struct.pack("<I", len(payload)) + payload


def split_type1_program(
    data: bytes, length1: int | None = None, length2: int | None = None
) -> tuple[bytes, bytes, bytes]:
    """Splits a Type1 font program into its three sections.

    Uses /Length1 and /Length2 when they are consistent with the data,
    otherwise locates the ``eexec`` keyword and the trailing zero block.

    Args:
        data: Decoded FontFile stream data.
        length1: Declared length of the cleartext section.
        length2: Declared length of the encrypted section.

    Returns:
        Tuple of (cleartext, binary ciphertext, trailer).

    Raises:
        UnreadableFontProgramError: If no eexec section is found.
    """
    if length1 and length2 and length1 + length2 <= len(data):
        cleartext = data[:length1]
        cipher = data[length1 : length1 + length2]
        trailer = data[length1 + length2 :]
        if cleartext.rstrip(_WHITESPACE).endswith(b"eexec"):
            return cleartext, _binary_cipher(cipher), trailer

    start = data.find(b"eexec")
    if start < 0:
        raise UnreadableFontProgramError("Type1 program has no eexec section")
    end = start + len(b"eexec")
    while end < len(data) and data[end] in b" \t\r\n":
        end += 1
    cleartext = data[:end]

    zeros = _ZERO_BLOCK.search(data, end)
    if zeros is None:
        return cleartext, _binary_cipher(data[end:]), b""
    tail = zeros.start()
    return cleartext, _binary_cipher(data[end:tail]), data[tail:]


def _binary_cipher(cipher: bytes) -> bytes:
    """Converts a hex-encoded (PFA style) eexec section to binary."""
    if len(cipher) >= 4 and _HEX_CIPHER.fullmatch(cipher[:64]):
        return bytes.fromhex(re.sub(rb"\s+", b"", cipher).decode("ascii"))
    return cipher


class Type1Program:
    """Parsed Type1 (FontFile) program.

    Attributes:
        cleartext: Cleartext section, including the ``eexec`` keyword.
        ciphertext: Binary eexec-encrypted section.
        trailer: Zero block and ``cleartomark``.
        charstrings: Glyph name to decrypted charstring bytes.
        subrs: Decrypted subroutine bytes by index.
        len_iv: Number of random bytes prefixed to each charstring.
        units_per_em: Design units derived from the FontMatrix.
        builtin_encoding: Code to glyph name from the program's Encoding.
    """

    def __init__(
        self, data: bytes, length1: int | None = None, length2: int | None = None
    ) -> None:
        self.cleartext, self.ciphertext, self.trailer = split_type1_program(
            data, length1, length2
        )
        if not self.trailer.strip(_WHITESPACE):
            self.trailer = DEFAULT_TYPE1_TRAILER
        font = self._parse()
        try:
            private = font["Private"]
            self.len_iv: int = int(private.get("lenIV", 4))
            self.subrs: list[bytes] = [s.bytecode for s in private.get("Subrs", [])]
            self.charstrings: dict[str, bytes] = {
                name: cs.bytecode for name, cs in font["CharStrings"].items()
            }
            matrix = font.get("FontMatrix", [0.001, 0, 0, 0.001, 0, 0])
            self.units_per_em = round(1 / matrix[0]) if matrix[0] else 1000
            self.builtin_encoding = _encoding_from_names(font.get("Encoding"))
        except (KeyError, TypeError, AttributeError) as e:
            raise UnreadableFontProgramError(f"Malformed Type1 program: {e}") from e

    def _parse(self) -> dict:
        cleartext = self.cleartext.rstrip(_WHITESPACE) + b"\n"
        pfb = (
            _pfb_segment(1, cleartext)
            + _pfb_segment(2, self.ciphertext)
            + _pfb_segment(1, self.trailer)
            + b"\x80\x03"
        )
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "font.pfb")
            with open(path, "wb") as f:
                f.write(pfb)
            try:
                t1 = T1Font(path)
                t1.parse()
            except Exception as e:
                raise UnreadableFontProgramError(
                    f"Cannot parse Type1 program: {e}"
                ) from e
        return t1.font

    def charstring_table(self) -> dict[str, bytes]:
        return dict(self.charstrings)

    def decrypt_private(self) -> bytes:
        """Returns the eexec-decrypted private section."""
        plain, _ = eexec.decrypt(self.ciphertext, PRIVATE_KEY)
        return plain

    def has_glyph(self, name: str) -> bool:
        return name in self.charstrings

    def glyph_bytes(self, name: str) -> bytes | None:
        return self.charstrings.get(name)


def _encoding_from_names(encoding) -> dict[int, str]:
    if isinstance(encoding, (list, tuple)):
        return {
            code: str(name)
            for code, name in enumerate(encoding)
            if name and str(name) != ".notdef"
        }
    return dict(STANDARD_ENCODING)


class CFFProgram:
    """Parsed bare CFF (FontFile3 /Type1C or /CIDFontType0C) program."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        try:
            fontset = CFFFontSet()
            fontset.decompile(file=BytesIO(data), otFont=TTFont())
            self.font_name = fontset.fontNames[0]
            self.top = fontset[self.font_name]
            self.charset: list[str] = list(self.top.charset)
            self.charstrings = self.top.CharStrings
            self._bytecodes: dict[str, bytes] = {
                name: bytes(self.charstrings[name].bytecode) for name in self.charset
            }
        except Exception as e:
            raise UnreadableFontProgramError(f"Cannot parse CFF program: {e}") from e
        matrix = getattr(self.top, "FontMatrix", None) or [0.001, 0, 0, 0.001, 0, 0]
        self.units_per_em = round(1 / matrix[0]) if matrix[0] else 1000
        self.is_cid_keyed = "ROS" in self.top.rawDict

    def charstring_table(self) -> dict[str, bytes]:
        return dict(self._bytecodes)

    @property
    def builtin_encoding(self) -> dict[int, str]:
        encoding = getattr(self.top, "Encoding", None)
        if isinstance(encoding, list):
            return _encoding_from_names(encoding)
        return dict(STANDARD_ENCODING)

    def has_glyph(self, name: str) -> bool:
        return name in self._bytecodes

    def glyph_bytes(self, name: str) -> bytes | None:
        return self._bytecodes.get(name)

    def glyph_for_cid(self, cid: int) -> str | None:
        """Returns the glyph name addressed by a CID.

        CID-keyed programs name their glyphs ``cidNNNNN``; plain programs
        used as CIDFontType0 are addressed by glyph index.
        """
        if self.is_cid_keyed:
            name = f"cid{cid:05d}"
            return name if name in self._bytecodes else None
        if 0 <= cid < len(self.charset):
            return self.charset[cid]
        return None

    # -- Raw table introspection --

    def _offset(self, key: str) -> int:
        value = self.top.rawDict.get(key, 0)
        return value if isinstance(value, int) else 0

    def encoding_format(self) -> int | None:
        """Returns the format of a custom Encoding table (0 or 1).

        Predefined encodings (Standard, Expert) return None.
        """
        offset = self._offset("Encoding")
        if offset <= 1 or offset >= len(self.data):
            return None
        return self.data[offset] & 0x7F

    def charset_format(self) -> int | None:
        """Returns the format of a custom charset table (0, 1 or 2)."""
        offset = self._offset("charset")
        if offset <= 2 or offset >= len(self.data):
            return None
        return self.data[offset]

    def first_charset_sid(self) -> int | None:
        """Returns the SID of the first glyph after .notdef."""
        offset = self._offset("charset")
        if offset <= 2:
            return 1 if len(self.charset) > 1 else None
        if offset + 3 > len(self.data) or len(self.charset) < 2:
            return None
        return struct.unpack(">H", self.data[offset + 1 : offset + 3])[0]

    def uses_standard_strings(self) -> bool:
        sid = self.first_charset_sid()
        return sid is not None and sid < _CFF_STANDARD_STRING_COUNT

    def fd_select_format(self) -> int | None:
        fd_select = getattr(self.top, "FDSelect", None)
        if fd_select is None:
            return None
        return getattr(fd_select, "format", None)


class TrueTypeProgram:
    """Parsed TrueType (FontFile2) program.

    fontTools reads tables on first access, so the tables the merge
    engine uses are decompiled here and malformed data surfaces as
    UnreadableFontProgramError at load time.
    """

    def __init__(self, data: bytes) -> None:
        try:
            self.font = TTFont(BytesIO(data))
            self.glyph_order: list[str] = self.font.getGlyphOrder()
            self.units_per_em = self.font["head"].unitsPerEm
            for tag in _TRUETYPE_TABLES:
                if tag in self.font:
                    self.font[tag]
        except Exception as e:
            raise UnreadableFontProgramError(
                f"Cannot parse TrueType program: {e}"
            ) from e
        if "glyf" not in self.font:
            raise UnreadableFontProgramError("TrueType program has no glyf table")
        self._glyph_set = set(self.glyph_order)
        self._bytes_cache: dict[str, bytes] = {}

    def has_glyph(self, name: str) -> bool:
        return name in self._glyph_set

    def glyph_name(self, gid: int) -> str | None:
        if 0 <= gid < len(self.glyph_order):
            return self.glyph_order[gid]
        return None

    def glyph_bytes(self, name: str) -> bytes | None:
        """Returns the compiled glyf record of a glyph.

        Raises:
            UnreadableFontProgramError: If the glyph record is malformed.
        """
        if name not in self._glyph_set:
            return None
        if name not in self._bytes_cache:
            glyf = self.font["glyf"]
            try:
                self._bytes_cache[name] = glyf[name].compile(glyf, recalcBBoxes=False)
            except Exception as e:
                raise UnreadableFontProgramError(
                    f"Malformed glyph {name!r}: {e}"
                ) from e
        return self._bytes_cache[name]

    def expanded_glyph(self, name: str) -> Glyph:
        """Returns an expanded copy of a glyph, safe to modify.

        Raises:
            UnreadableFontProgramError: If the glyph record is malformed.
        """
        glyf = self.font["glyf"]
        try:
            glyph = copy.deepcopy(glyf[name])
            glyph.expand(glyf)
        except Exception as e:
            raise UnreadableFontProgramError(f"Malformed glyph {name!r}: {e}") from e
        return glyph

    def cmap_subtables(self) -> list:
        if "cmap" not in self.font:
            return []
        return list(self.font["cmap"].tables)

    def cmap_lookup(self, platform_id: int, encoding_id: int, code: int) -> str | None:
        for subtable in self.cmap_subtables():
            if subtable.platformID == platform_id and subtable.platEncID == encoding_id:
                name = subtable.cmap.get(code)
                if name is not None:
                    return name
        return None

    def metrics(self, name: str) -> tuple[int, int]:
        try:
            return self.font["hmtx"][name]
        except KeyError as e:
            raise UnreadableFontProgramError(f"No metrics for glyph {name!r}") from e


FontProgram = Type1Program | CFFProgram | TrueTypeProgram


def load_font_program(
    key: str, stream: pikepdf.Stream, subtype: str | None = None
) -> FontProgram:
    """Parses an embedded font program stream.

    Args:
        key: Descriptor key the stream was found under
            ("/FontFile", "/FontFile2" or "/FontFile3").
        stream: The font program stream.
        subtype: /Subtype of a FontFile3 stream, if any.

    Returns:
        The parsed program handle.

    Raises:
        UnreadableFontProgramError: If the data cannot be decoded or parsed.
    """
    try:
        data = stream.read_bytes()
    except pikepdf.PdfError as e:
        raise UnreadableFontProgramError(f"Cannot decode font stream: {e}") from e

    if key == "/FontFile":
        length1 = stream.get("/Length1")
        length2 = stream.get("/Length2")
        return Type1Program(
            data,
            int(length1) if length1 is not None else None,
            int(length2) if length2 is not None else None,
        )
    if key == "/FontFile2":
        return TrueTypeProgram(data)
    if key == "/FontFile3":
        if subtype == "OpenType" or data[:4] in (b"OTTO", b"\x00\x01\x00\x00", b"true"):
            return _load_opentype(data)
        return CFFProgram(data)
    raise UnreadableFontProgramError(f"Unsupported font program key {key}")


def _load_opentype(data: bytes) -> FontProgram:
    try:
        font = TTFont(BytesIO(data))
    except Exception as e:
        raise UnreadableFontProgramError(f"Cannot parse OpenType program: {e}") from e
    if "CFF " in font:
        return CFFProgram(font.getTableData("CFF "))
    if "glyf" in font:
        return TrueTypeProgram(data)
    raise UnreadableFontProgramError("OpenType program has neither CFF nor glyf")
