# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Shared helpers that synthesise fonts and font-bearing PDFs for tests."""

from io import BytesIO

import pikepdf
from fontTools.fontBuilder import FontBuilder
from fontTools.misc import eexec
from fontTools.misc.psCharStrings import T1CharString
from fontTools.pens.t2CharStringPen import T2CharStringPen
from fontTools.pens.ttGlyphPen import TTGlyphPen
from fontTools.ttLib import TTFont
from pikepdf import Array, Dictionary, Name, Pdf

from pdffontmerge.fonts.tounicode import generate_tounicode_cmap

# Glyph outlines used across the tests
RECTANGLE = [(100, 0), (400, 0), (400, 700), (100, 700)]
TRIANGLE = [(50, 0), (450, 0), (250, 700)]
DIAMOND = [(250, 0), (450, 350), (250, 700), (50, 350)]
WIDE_BAR = [(0, 300), (500, 300), (500, 400), (0, 400)]
NARROW_BAR = [(200, 0), (300, 0), (300, 700), (200, 700)]

Shapes = dict[str, list[tuple[int, int]]]


def _draw_polygon(pen, points: list[tuple[int, int]]) -> None:
    pen.moveTo(points[0])
    for point in points[1:]:
        pen.lineTo(point)
    pen.closePath()


def _glyph_names(shapes: Shapes) -> list[str]:
    return [".notdef"] + [name for name in shapes if name != ".notdef"]


# -- Font programs --


def make_truetype_data(
    shapes: Shapes,
    cmap: dict[int, str] | None = None,
    *,
    units_per_em: int = 1000,
    advance: int = 500,
) -> bytes:
    """Creates a TrueType font with one polygon per glyph.

    Args:
        shapes: Glyph name to outline points.
        cmap: Unicode cmap. Defaults to the single-letter glyph names.
        units_per_em: Design units.
        advance: Advance width of every glyph.

    Returns:
        Serialized font bytes.
    """
    names = _glyph_names(shapes)
    glyphs = {}
    for name in names:
        pen = TTGlyphPen(None)
        points = shapes.get(name)
        if points:
            _draw_polygon(pen, points)
        glyphs[name] = pen.glyph()
    if cmap is None:
        cmap = {ord(name): name for name in names if len(name) == 1}

    fb = FontBuilder(units_per_em, isTTF=True)
    fb.setupGlyphOrder(names)
    fb.setupCharacterMap(cmap)
    fb.setupGlyf(glyphs)
    fb.setupHorizontalMetrics({name: (advance, 0) for name in names})
    fb.setupHorizontalHeader(ascent=800, descent=-200)
    fb.setupNameTable({"familyName": "TestSans", "styleName": "Regular"})
    fb.setupOS2(sTypoAscender=800, sTypoDescender=-200, sCapHeight=700)
    fb.setupPost()

    buf = BytesIO()
    fb.font.save(buf)
    return buf.getvalue()


def make_cff_data(shapes: Shapes, font_name: str = "TestCFF") -> bytes:
    """Creates a bare CFF program with one polygon per glyph.

    Args:
        shapes: Glyph name to outline points.
        font_name: PostScript name of the font.

    Returns:
        CFF table data, as embedded in a FontFile3 /Type1C stream.
    """
    names = _glyph_names(shapes)
    charstrings = {}
    for name in names:
        pen = T2CharStringPen(500, None)
        points = shapes.get(name)
        if points:
            _draw_polygon(pen, points)
        charstrings[name] = pen.getCharString()

    fb = FontBuilder(1000, isTTF=False)
    fb.setupGlyphOrder(names)
    fb.setupCFF(font_name, {"FullName": font_name}, charstrings, {})
    return fb.font["CFF "].compile(fb.font)


def _type1_charstring(
    points: list[tuple[int, int]] | None, width: int, subr: int | None = None
) -> bytes:
    program: list = [0, width, "hsbw"]
    if subr is not None:
        program += [subr, "callsubr"]
    if points:
        x, y = points[0]
        program += [x, y, "rmoveto"]
        for nx, ny in points[1:]:
            program += [nx - x, ny - y, "rlineto"]
            x, y = nx, ny
        program.append("closepath")
    program.append("endchar")
    charstring = T1CharString(program=program)
    charstring.compile()
    return charstring.bytecode


def _encrypt_charstring(bytecode: bytes) -> bytes:
    encrypted, _ = eexec.encrypt(b"\x00" * 4 + bytecode, 4330)
    return encrypted


def make_type1_data(
    shapes: Shapes,
    font_name: str = "TestSerif",
    *,
    width: int = 500,
    subrs: list[list] | None = None,
    subr_calls: dict[str, int] | None = None,
) -> tuple[bytes, int, int, int]:
    """Assembles a Type1 font program with one polygon per glyph.

    Args:
        shapes: Glyph name to outline points.
        font_name: PostScript name of the font.
        width: Advance width of every glyph.
        subrs: Subroutine programs; defaults to a single ``return``.
        subr_calls: Glyph name to the subroutine its charstring calls.

    Returns:
        Tuple of (program bytes, Length1, Length2, Length3).
    """
    cleartext = (
        f"%!PS-AdobeFont-1.0: {font_name} 001.000\n"
        "11 dict begin\n"
        "/FontInfo 2 dict dup begin\n"
        f"/FullName ({font_name}) readonly def\n"
        f"/FamilyName ({font_name}) readonly def\n"
        "end readonly def\n"
        f"/FontName /{font_name} def\n"
        "/Encoding StandardEncoding def\n"
        "/PaintType 0 def\n"
        "/FontType 1 def\n"
        "/FontMatrix [0.001 0 0 0.001 0 0] readonly def\n"
        "/FontBBox {0 -200 1000 800} readonly def\n"
        "currentdict end\n"
        "currentfile eexec\n"
    ).encode("ascii")

    names = _glyph_names(shapes)
    subr_calls = subr_calls or {}
    entries = b""
    for name in names:
        bytecode = _type1_charstring(shapes.get(name), width, subr_calls.get(name))
        encrypted = _encrypt_charstring(bytecode)
        entries += b"/%s %d RD %s ND\n" % (name.encode("ascii"), len(encrypted), encrypted)

    subr_entries = b""
    for index, subr_program in enumerate(subrs or [["return"]]):
        subr_charstring = T1CharString(program=subr_program)
        subr_charstring.compile()
        subr = _encrypt_charstring(subr_charstring.bytecode)
        subr_entries += b"dup %d %d RD %s NP\n" % (index, len(subr), subr)

    private = (
        b"dup /Private 8 dict dup begin\n"
        b"/RD{string currentfile exch readstring pop}executeonly def\n"
        b"/ND{noaccess def}executeonly def\n"
        b"/NP{noaccess put}executeonly def\n"
        b"/lenIV 4 def\n"
        b"/MinFeature{16 16}def\n"
        b"/password 5839 def\n"
        + b"/Subrs %d array\n" % len(subrs or [["return"]])
        + subr_entries
        + b"ND\n"
        + b"2 index /CharStrings %d dict dup begin\n" % len(names)
        + entries
        + b"end\n"
        b"end\n"
        b"readonly put\n"
        b"noaccess put\n"
        b"dup/FontName get exch definefont pop\n"
        b"mark currentfile closefile\n"
    )
    cipher, _ = eexec.encrypt(b"\x00" * 4 + private, 55665)
    trailer = (b"0" * 64 + b"\n") * 8 + b"cleartomark\n"
    return cleartext + cipher + trailer, len(cleartext), len(cipher), len(trailer)


# -- Font dictionaries --


def _ps_name(base_font: str) -> str:
    return base_font.split("+")[-1].replace(" ", "")


def _descriptor(pdf: Pdf, base_font: str, file_key: str, stream, flags: int = 32):
    descriptor = Dictionary(
        Type=Name.FontDescriptor,
        FontName=Name(f"/{base_font}"),
        Flags=flags,
        FontBBox=Array([0, -200, 1000, 800]),
        ItalicAngle=0,
        Ascent=800,
        Descent=-200,
        CapHeight=700,
        StemV=80,
    )
    descriptor[Name(file_key)] = pdf.make_indirect(stream)
    return pdf.make_indirect(descriptor)


def type1_font(
    pdf: Pdf,
    shapes: Shapes,
    base_font: str,
    differences: dict[int, str],
    widths: dict[int, int] | None = None,
    subrs: list[list] | None = None,
    subr_calls: dict[str, int] | None = None,
) -> pikepdf.Dictionary:
    """Creates an embedded Type1 font with a /Differences encoding."""
    data, length1, length2, length3 = make_type1_data(
        shapes, _ps_name(base_font), subrs=subrs, subr_calls=subr_calls
    )
    stream = pdf.make_stream(data)
    stream[Name.Length1] = length1
    stream[Name.Length2] = length2
    stream[Name.Length3] = length3

    first, last = min(differences), max(differences)
    widths = widths or {}
    diff_array: list = []
    previous = -2
    for code in sorted(differences):
        if code != previous + 1:
            diff_array.append(code)
        diff_array.append(Name(f"/{differences[code]}"))
        previous = code

    return pdf.make_indirect(
        Dictionary(
            Type=Name.Font,
            Subtype=Name.Type1,
            BaseFont=Name(f"/{base_font}"),
            FirstChar=first,
            LastChar=last,
            Widths=Array([widths.get(code, 500) for code in range(first, last + 1)]),
            Encoding=Dictionary(Type=Name.Encoding, Differences=Array(diff_array)),
            FontDescriptor=_descriptor(pdf, base_font, "/FontFile", stream),
        )
    )


def cff_font(
    pdf: Pdf,
    shapes: Shapes,
    base_font: str,
    first: int,
    last: int,
    widths: list[int] | None = None,
    *,
    encoding: pikepdf.Object | None = Name.WinAnsiEncoding,
    to_unicode: dict[int, str] | None = None,
) -> pikepdf.Dictionary:
    """Creates an embedded Type1C font, by default using WinAnsiEncoding."""
    stream = pdf.make_stream(make_cff_data(shapes, _ps_name(base_font)))
    stream[Name.Subtype] = Name.Type1C
    font = Dictionary(
        Type=Name.Font,
        Subtype=Name.Type1,
        BaseFont=Name(f"/{base_font}"),
        FirstChar=first,
        LastChar=last,
        Widths=Array(widths or [500] * (last - first + 1)),
        FontDescriptor=_descriptor(pdf, base_font, "/FontFile3", stream),
    )
    if encoding is not None:
        font[Name.Encoding] = encoding
    if to_unicode is not None:
        font[Name.ToUnicode] = pdf.make_indirect(
            pdf.make_stream(generate_tounicode_cmap(to_unicode, 1))
        )
    return pdf.make_indirect(font)


def truetype_font(
    pdf: Pdf,
    shapes: Shapes,
    base_font: str,
    first: int,
    last: int,
    widths: list[int] | None = None,
    *,
    encoding: pikepdf.Object | None = Name.WinAnsiEncoding,
    cmap: dict[int, str] | None = None,
    units_per_em: int = 1000,
) -> pikepdf.Dictionary:
    """Creates an embedded simple TrueType font."""
    data = make_truetype_data(shapes, cmap, units_per_em=units_per_em)
    stream = pdf.make_stream(data)
    stream[Name.Length1] = len(data)
    font = Dictionary(
        Type=Name.Font,
        Subtype=Name.TrueType,
        BaseFont=Name(f"/{base_font}"),
        FirstChar=first,
        LastChar=last,
        Widths=Array(widths or [500] * (last - first + 1)),
        FontDescriptor=_descriptor(
            pdf, base_font, "/FontFile2", stream, flags=32 if encoding is not None else 4
        ),
    )
    if encoding is not None:
        font[Name.Encoding] = encoding
    return pdf.make_indirect(font)


def fill_table(data: bytes, tag: str, byte: int = 0xFF) -> bytes:
    """Overwrites one table of a TrueType program, leaving its directory intact."""
    entry = TTFont(BytesIO(data)).reader.tables[tag]
    end = entry.offset + entry.length
    return data[: entry.offset] + bytes([byte]) * entry.length + data[end:]


def cid_truetype_font(
    pdf: Pdf,
    shapes: Shapes,
    base_font: str,
    to_unicode: dict[int, str],
    w_array: list | None = None,
) -> pikepdf.Dictionary:
    """Creates an embedded Type0/CIDFontType2 font with Identity-H.

    CIDs equal glyph indices in the order of ``shapes`` (after .notdef).
    """
    data = make_truetype_data(shapes)
    stream = pdf.make_stream(data)
    stream[Name.Length1] = len(data)
    cid_font = Dictionary(
        Type=Name.Font,
        Subtype=Name.CIDFontType2,
        BaseFont=Name(f"/{base_font}"),
        CIDSystemInfo=Dictionary(
            Registry=pikepdf.String("Adobe"),
            Ordering=pikepdf.String("Identity"),
            Supplement=0,
        ),
        FontDescriptor=_descriptor(pdf, base_font, "/FontFile2", stream, flags=4),
        DW=1000,
        CIDToGIDMap=Name.Identity,
    )
    if w_array is not None:
        cid_font[Name.W] = Array(
            [Array(item) if isinstance(item, list) else item for item in w_array]
        )
    cmap_stream = pdf.make_stream(generate_tounicode_cmap(to_unicode, 2))
    return pdf.make_indirect(
        Dictionary(
            Type=Name.Font,
            Subtype=Name.Type0,
            BaseFont=Name(f"/{base_font}"),
            Encoding=Name("/Identity-H"),
            DescendantFonts=Array([pdf.make_indirect(cid_font)]),
            ToUnicode=pdf.make_indirect(cmap_stream),
        )
    )


# -- Pages and documents --


def add_text_page(pdf: Pdf, fonts: dict[str, pikepdf.Object], content: bytes) -> pikepdf.Page:
    """Appends a page showing ``content`` with the given local fonts."""
    page = pikepdf.Page(
        Dictionary(
            Type=Name.Page,
            MediaBox=Array([0, 0, 612, 792]),
            Resources=Dictionary(Font=Dictionary(fonts)),
            Contents=pdf.make_stream(content),
        )
    )
    pdf.pages.append(page)
    return pdf.pages[-1]


def reload(pdf: Pdf) -> Pdf:
    """Saves and reopens a PDF, so its objects get stable object numbers."""
    buf = BytesIO()
    pdf.save(buf)
    buf.seek(0)
    return Pdf.open(buf)
