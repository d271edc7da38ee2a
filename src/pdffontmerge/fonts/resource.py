# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Read-only view of a font resource in a source document."""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

import pikepdf
from fontTools.agl import toUnicode

from ..exceptions import MissingEncodingInfoError, UnreadableFontProgramError
from ..utils import resolve_indirect, safe_str
from .encodings import STANDARD_ENCODING, get_base_encoding
from .programs import (
    CFFProgram,
    FontProgram,
    TrueTypeProgram,
    Type1Program,
    load_font_program,
)
from .tounicode import ToUnicodeMap, parse_tounicode_cmap

logger = logging.getLogger(__name__)

SUBSET_PATTERN = re.compile(r"^[A-Z]{6}\+")

# Type0 encodings whose codes are CIDs
IDENTITY_ENCODINGS = frozenset({"Identity-H", "Identity-V"})

# Default CID width when /DW is absent
DEFAULT_CID_WIDTH = 1000

# Font descriptor flag bits
FLAG_SYMBOLIC = 1 << 2
FLAG_NONSYMBOLIC = 1 << 5


class FontKind(Enum):
    """Closed set of merged font variants."""

    TYPE1 = "Type1"
    TYPE1C = "Type1C"
    TRUETYPE = "TrueType"
    CID_CFF = "CIDFontType0"
    CID_TRUETYPE = "CIDFontType2"

    @property
    def is_cid(self) -> bool:
        return self in (FontKind.CID_CFF, FontKind.CID_TRUETYPE)

    @property
    def is_truetype(self) -> bool:
        return self in (FontKind.TRUETYPE, FontKind.CID_TRUETYPE)


@dataclass
class FontEncoding:
    """Encoding descriptor of a simple font.

    Attributes:
        base_name: Named base encoding, or None for the font's built-in one.
        differences: Code to glyph name overrides from /Differences.
        is_dictionary: True when /Encoding is a dictionary.
    """

    base_name: str | None = None
    differences: dict[int, str] = field(default_factory=dict)
    is_dictionary: bool = False


@dataclass
class FontMetrics:
    """Font descriptor values carried into the merged font."""

    flags: int = FLAG_NONSYMBOLIC
    bbox: list[float] = field(default_factory=lambda: [0, 0, 1000, 1000])
    italic_angle: float = 0
    ascent: float = 0
    descent: float = 0
    cap_height: float = 0
    stem_v: float = 0
    missing_width: float = 0


def strip_subset_tag(name: str) -> str:
    """Removes a subset tag (``ABCDEF+``) and spaces from a font name."""
    return SUBSET_PATTERN.sub("", name).replace(" ", "")


def _name_str(obj) -> str | None:
    if obj is None:
        return None
    obj = resolve_indirect(obj)
    if isinstance(obj, pikepdf.Name):
        return safe_str(obj)[1:]
    return None


def _number(obj, default: float = 0) -> float:
    try:
        return float(obj)
    except (TypeError, ValueError):
        return default


def parse_encoding(encoding) -> FontEncoding:
    """Parses the /Encoding entry of a simple font.

    Args:
        encoding: The /Encoding value (Name, Dictionary or None).

    Returns:
        Parsed FontEncoding.

    Raises:
        MissingEncodingInfoError: If the entry is malformed or names an
            unknown base encoding.
    """
    if encoding is None:
        return FontEncoding()
    encoding = resolve_indirect(encoding)
    if isinstance(encoding, pikepdf.Name):
        name = safe_str(encoding)[1:]
        if get_base_encoding(name) is None:
            raise MissingEncodingInfoError(f"Unknown base encoding {name}")
        return FontEncoding(base_name=name)
    if not isinstance(encoding, pikepdf.Dictionary):
        raise MissingEncodingInfoError(f"Unsupported /Encoding type {type(encoding)}")

    base_name = _name_str(encoding.get("/BaseEncoding"))
    if base_name is not None and get_base_encoding(base_name) is None:
        raise MissingEncodingInfoError(f"Unknown base encoding {base_name}")

    differences: dict[int, str] = {}
    diffs = encoding.get("/Differences")
    if diffs is not None:
        diffs = resolve_indirect(diffs)
        if not isinstance(diffs, pikepdf.Array):
            raise MissingEncodingInfoError("/Differences is not an array")
        code: int | None = None
        for item in diffs:
            if isinstance(item, int):
                code = item
            elif isinstance(item, pikepdf.Name):
                if code is None:
                    raise MissingEncodingInfoError(
                        "/Differences starts with a name instead of a code"
                    )
                differences[code] = safe_str(item)[1:]
                code += 1
            else:
                raise MissingEncodingInfoError(
                    f"Unexpected /Differences element {item!r}"
                )
    return FontEncoding(
        base_name=base_name, differences=differences, is_dictionary=True
    )


def _parse_cid_widths(w_array, default: float) -> dict[int, float]:
    """Parses a CIDFont /W array into a CID-to-width mapping."""
    widths: dict[int, float] = {}
    if w_array is None:
        return widths
    items = list(resolve_indirect(w_array))
    i = 0
    while i < len(items):
        first = items[i]
        if i + 1 >= len(items):
            break
        second = resolve_indirect(items[i + 1])
        if isinstance(second, pikepdf.Array):
            for offset, value in enumerate(second):
                widths[int(first) + offset] = _number(value, default)
            i += 2
        else:
            if i + 2 >= len(items):
                break
            value = _number(items[i + 2], default)
            for cid in range(int(first), int(second) + 1):
                widths[cid] = value
            i += 3
    return widths


class FontResource:
    """A font object as declared and embedded within one source document.

    Parsing of the embedded program and the ToUnicode map is deferred
    until first use.

    Attributes:
        obj: The font dictionary.
        origin: (document index, objgen) of the font dictionary, or None
            for direct objects.
        subtype: Font /Subtype without slash ("Type1", "TrueType", "Type0").
        base_name: /BaseFont without slash, or None.
    """

    def __init__(
        self,
        font_obj: pikepdf.Dictionary,
        origin: tuple[int, tuple[int, int]] | None = None,
    ) -> None:
        self.obj = font_obj
        self.origin = origin
        self.subtype = _name_str(font_obj.get("/Subtype")) or "Unknown"
        self.base_name = _name_str(font_obj.get("/BaseFont"))

        self.descendant: pikepdf.Dictionary | None = None
        self.descendant_subtype: str | None = None
        self.cmap_name: str | None = None
        if self.subtype == "Type0":
            descendants = font_obj.get("/DescendantFonts")
            if descendants is not None and len(descendants) > 0:
                self.descendant = resolve_indirect(descendants[0])
                self.descendant_subtype = _name_str(self.descendant.get("/Subtype"))
            self.cmap_name = _name_str(font_obj.get("/Encoding"))
            if self.cmap_name is None:
                encoding = resolve_indirect(font_obj.get("/Encoding"))
                if isinstance(encoding, pikepdf.Stream):
                    self.cmap_name = _name_str(encoding.get("/CMapName"))

        owner = self.descendant if self.descendant is not None else font_obj
        descriptor = owner.get("/FontDescriptor")
        self.descriptor = resolve_indirect(descriptor) if descriptor is not None else None

        self._to_unicode: ToUnicodeMap | None = None
        self._to_unicode_loaded = False
        self._program: FontProgram | None = None
        self._program_error: UnreadableFontProgramError | None = None
        self._code_to_name: dict[int, str] | None = None

        if self.is_cid:
            self._cid_default_width = _number(
                self.descendant.get("/DW") if self.descendant is not None else None,
                DEFAULT_CID_WIDTH,
            )
            self._cid_widths = (
                _parse_cid_widths(self.descendant.get("/W"), self._cid_default_width)
                if self.descendant is not None
                else {}
            )
        else:
            self._widths = [
                _number(w) for w in resolve_indirect(font_obj.get("/Widths", []))
            ]
            self._first_char = int(font_obj.get("/FirstChar", 0))
            last = font_obj.get("/LastChar")
            self._last_char = (
                int(last)
                if last is not None
                else self._first_char + max(len(self._widths) - 1, 0)
            )

    def __repr__(self) -> str:
        return f"FontResource({self.base_name!r}, {self.subtype}, origin={self.origin})"

    # -- Naming --

    @property
    def is_cid(self) -> bool:
        return self.subtype == "Type0"

    @property
    def is_subset(self) -> bool:
        return self.base_name is not None and bool(SUBSET_PATTERN.match(self.base_name))

    @property
    def stripped_name(self) -> str | None:
        if not self.base_name:
            return None
        return strip_subset_tag(self.base_name) or None

    @property
    def code_width(self) -> int:
        """Number of bytes per character code in text operands."""
        if not self.is_cid:
            return 1
        if self.cmap_name in IDENTITY_ENCODINGS:
            return 2
        to_unicode = self.to_unicode
        return to_unicode.code_width if to_unicode is not None else 2

    # -- Code range and widths --

    @property
    def first_char(self) -> int:
        if self.is_cid:
            codes = self.codes()
            return codes[0] if codes else 0
        return self._first_char

    @property
    def last_char(self) -> int:
        if self.is_cid:
            codes = self.codes()
            return codes[-1] if codes else 0
        return self._last_char

    def codes(self) -> list[int]:
        """Returns the character codes declared by this resource."""
        if self.is_cid:
            to_unicode = self.to_unicode
            return sorted(to_unicode.mapping) if to_unicode is not None else []
        return list(range(self._first_char, self._last_char + 1))

    def has_width(self, code: int) -> bool:
        if self.is_cid:
            return True
        return 0 <= code - self._first_char < len(self._widths)

    def width(self, code: int) -> float:
        """Returns the declared width of a code in text space units."""
        if self.is_cid:
            return self._cid_widths.get(code, self._cid_default_width)
        index = code - self._first_char
        if 0 <= index < len(self._widths):
            return self._widths[index]
        return self.metrics().missing_width

    def metrics(self) -> FontMetrics:
        descriptor = self.descriptor
        if descriptor is None:
            return FontMetrics()
        bbox = descriptor.get("/FontBBox")
        return FontMetrics(
            flags=int(descriptor.get("/Flags", FLAG_NONSYMBOLIC)),
            bbox=[_number(v) for v in bbox] if bbox is not None else [0, 0, 1000, 1000],
            italic_angle=_number(descriptor.get("/ItalicAngle")),
            ascent=_number(descriptor.get("/Ascent")),
            descent=_number(descriptor.get("/Descent")),
            cap_height=_number(descriptor.get("/CapHeight")),
            stem_v=_number(descriptor.get("/StemV")),
            missing_width=_number(descriptor.get("/MissingWidth")),
        )

    # -- Encoding and unicode --

    @property
    def encoding(self) -> FontEncoding:
        """Parsed /Encoding of a simple font.

        Raises:
            MissingEncodingInfoError: If the entry is malformed.
        """
        if self.is_cid:
            return FontEncoding()
        return parse_encoding(self.obj.get("/Encoding"))

    def code_to_name(self) -> dict[int, str]:
        """Returns the effective code to glyph name table.

        Combines the base encoding (the program's built-in encoding when
        none is named) with /Differences. TrueType fonts without an
        /Encoding entry have no names.

        Raises:
            MissingEncodingInfoError: If the /Encoding entry is malformed.
        """
        if self._code_to_name is not None:
            return self._code_to_name
        if self.is_cid:
            self._code_to_name = {}
            return self._code_to_name

        encoding = self.encoding
        if encoding.base_name is not None:
            table = dict(get_base_encoding(encoding.base_name) or {})
        elif self.subtype == "TrueType":
            table = dict(STANDARD_ENCODING) if encoding.is_dictionary else {}
        else:
            table = self._builtin_encoding()
        table.update(encoding.differences)
        self._code_to_name = table
        return table

    def _builtin_encoding(self) -> dict[int, str]:
        try:
            program = self.program
        except UnreadableFontProgramError:
            return dict(STANDARD_ENCODING)
        if isinstance(program, (Type1Program, CFFProgram)):
            return program.builtin_encoding
        return dict(STANDARD_ENCODING)

    @property
    def to_unicode(self) -> ToUnicodeMap | None:
        if not self._to_unicode_loaded:
            self._to_unicode_loaded = True
            stream = resolve_indirect(self.obj.get("/ToUnicode"))
            if isinstance(stream, pikepdf.Stream):
                try:
                    self._to_unicode = parse_tounicode_cmap(stream.read_bytes())
                except pikepdf.PdfError as e:
                    logger.debug("Cannot read ToUnicode of %s: %s", self.base_name, e)
        return self._to_unicode

    # -- Embedded program --

    def program_stream(self) -> tuple[str, pikepdf.Stream] | None:
        """Returns the descriptor key and stream of the embedded program."""
        if self.descriptor is None:
            return None
        for key in ("/FontFile", "/FontFile2", "/FontFile3"):
            stream = self.descriptor.get(key)
            if stream is not None:
                stream = resolve_indirect(stream)
                if isinstance(stream, pikepdf.Stream):
                    return key, stream
        return None

    @property
    def program(self) -> FontProgram:
        """Parsed embedded program.

        Raises:
            UnreadableFontProgramError: If the program is missing, malformed
                or of an unsupported kind.
        """
        if self._program is not None:
            return self._program
        if self._program_error is not None:
            raise self._program_error
        try:
            self._program = self._load_program()
        except UnreadableFontProgramError as e:
            self._program_error = e
            raise
        return self._program

    def _load_program(self) -> FontProgram:
        if self.subtype not in ("Type1", "TrueType", "Type0"):
            raise UnreadableFontProgramError(f"Unsupported font subtype {self.subtype}")
        if self.is_cid and self.cmap_name not in IDENTITY_ENCODINGS:
            raise UnreadableFontProgramError(
                f"Unsupported CMap {self.cmap_name} for {self.base_name}"
            )
        found = self.program_stream()
        if found is None:
            raise UnreadableFontProgramError(f"Font {self.base_name} is not embedded")
        key, stream = found
        program = load_font_program(key, stream, _name_str(stream.get("/Subtype")))
        logger.debug("Loaded %s program for %s", type(program).__name__, self.base_name)
        return program

    # -- Source glyph lookup --

    def cid_to_gid(self, cid: int) -> int:
        mapping = None
        if self.descendant is not None:
            mapping = resolve_indirect(self.descendant.get("/CIDToGIDMap"))
        if isinstance(mapping, pikepdf.Stream):
            data = mapping.read_bytes()
            if 2 * cid + 1 < len(data):
                return (data[2 * cid] << 8) | data[2 * cid + 1]
            return 0
        return cid

    def source_glyph(self, code: int) -> str | None:
        """Returns the program glyph name drawn for a code, if present."""
        program = self.program
        if self.is_cid:
            if isinstance(program, CFFProgram):
                return program.glyph_for_cid(code)
            if isinstance(program, TrueTypeProgram):
                gid = self.cid_to_gid(code)
                return program.glyph_name(gid) if gid > 0 else None
            return None

        if isinstance(program, TrueTypeProgram):
            return self._truetype_glyph(program, code)
        try:
            name = self.code_to_name().get(code)
        except MissingEncodingInfoError:
            return None
        if name is not None and program.has_glyph(name):
            return name
        return None

    def _truetype_glyph(self, program: TrueTypeProgram, code: int) -> str | None:
        for candidate in (code, 0xF000 | code, 0xF100 | code, 0xF200 | code):
            name = program.cmap_lookup(3, 0, candidate)
            if name is not None:
                return name
        name = program.cmap_lookup(1, 0, code)
        if name is not None:
            return name
        try:
            glyph_name = self.code_to_name().get(code)
        except MissingEncodingInfoError:
            return None
        if glyph_name is not None:
            text = toUnicode(glyph_name)
            if len(text) == 1:
                name = program.cmap_lookup(3, 1, ord(text))
                if name is not None:
                    return name
            if program.has_glyph(glyph_name):
                return glyph_name
        return None
