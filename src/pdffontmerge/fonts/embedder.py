# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Writing merged fonts into the output document."""

import logging

import pikepdf
from pikepdf import Array, Dictionary, Name, Stream

from .merged import MergedFont
from .resource import DEFAULT_CID_WIDTH, FLAG_NONSYMBOLIC, FLAG_SYMBOLIC, FontKind
from .tounicode import generate_tounicode_cmap

logger = logging.getLogger(__name__)


def _pdf_number(value: float) -> int | float:
    """Returns an int for integral widths so the output stays compact."""
    if float(value).is_integer():
        return int(value)
    return round(float(value), 3)


def build_w_array(widths: dict[int, float], default: float) -> list:
    """Builds a CIDFont /W array from CID widths.

    Consecutive CIDs are grouped as ``c [w1 w2 ...]``; CIDs using the
    default width are left out.

    Args:
        widths: CID to width.
        default: The /DW value.

    Returns:
        The /W array in Python form.
    """
    result: list = []
    run: list = []
    start = previous = None
    for cid in sorted(widths):
        width = widths[cid]
        if width == default:
            continue
        if previous is not None and cid == previous + 1:
            run.append(_pdf_number(width))
        else:
            if run:
                result.extend([start, Array(run)])
            start = cid
            run = [_pdf_number(width)]
        previous = cid
    if run:
        result.extend([start, Array(run)])
    return result


def build_differences(names: dict[int, str]) -> list:
    """Builds an /Encoding /Differences array from code to glyph name."""
    differences: list = []
    previous = -2
    for code in sorted(names):
        if code != previous + 1:
            differences.append(code)
        differences.append(Name(f"/{names[code]}"))
        previous = code
    return differences


class MergedFontEmbedder:
    """Builds PDF font dictionaries for merged fonts.

    Every merged font gets a new FontDescriptor, an embedded program and a
    generated ToUnicode CMap.
    """

    def __init__(self, pdf: pikepdf.Pdf) -> None:
        self.pdf = pdf

    def build(self, font: MergedFont) -> Dictionary:
        """Creates the font dictionary of a merged font.

        Args:
            font: The merged font. Its program is serialized here.

        Returns:
            Type0 dictionary for CID fonts, simple font dictionary otherwise.
        """
        if font.kind.is_cid:
            return self._build_cid_font(font)
        return self._build_simple_font(font)

    def _font_stream(self, font: MergedFont) -> tuple[str, Stream]:
        data = font.serialize_program()
        stream = Stream(self.pdf, data)
        if font.kind is FontKind.TYPE1:
            length1, length2, length3 = font.program_lengths
            stream[Name.Length1] = length1
            stream[Name.Length2] = length2
            stream[Name.Length3] = length3
            return "/FontFile", stream
        if font.kind.is_truetype:
            stream[Name.Length1] = len(data)
            return "/FontFile2", stream
        if font.kind is FontKind.CID_CFF:
            stream[Name.Subtype] = Name.CIDFontType0C
        else:
            stream[Name.Subtype] = Name.Type1C
        return "/FontFile3", stream

    def _font_descriptor(self, font: MergedFont, flags: int) -> Dictionary:
        metrics = font.metrics
        file_key, stream = self._font_stream(font)
        descriptor = Dictionary(
            Type=Name.FontDescriptor,
            FontName=Name(f"/{font.name}"),
            Flags=flags,
            FontBBox=Array([_pdf_number(v) for v in metrics.bbox]),
            ItalicAngle=_pdf_number(metrics.italic_angle),
            Ascent=_pdf_number(metrics.ascent),
            Descent=_pdf_number(metrics.descent),
            CapHeight=_pdf_number(metrics.cap_height),
            StemV=_pdf_number(metrics.stem_v),
        )
        descriptor[Name(file_key)] = self.pdf.make_indirect(stream)
        return self.pdf.make_indirect(descriptor)

    def _to_unicode(self, font: MergedFont, code_width: int) -> Stream:
        data = generate_tounicode_cmap(font.to_unicode(), code_width)
        return self.pdf.make_indirect(Stream(self.pdf, data))

    def _build_simple_font(self, font: MergedFont) -> Dictionary:
        flags = font.metrics.flags
        if font.kind is FontKind.TRUETYPE:
            # Codes reach glyphs through the (3,0) cmap only
            flags = (flags | FLAG_SYMBOLIC) & ~FLAG_NONSYMBOLIC

        font_dict = Dictionary(
            Type=Name.Font,
            Subtype=Name.TrueType if font.kind is FontKind.TRUETYPE else Name.Type1,
            BaseFont=Name(f"/{font.name}"),
            FirstChar=font.first_char,
            LastChar=font.last_char,
            Widths=Array([_pdf_number(w) for w in font.widths()]),
            FontDescriptor=self._font_descriptor(font, flags),
            ToUnicode=self._to_unicode(font, 1),
        )
        if font.kind is not FontKind.TRUETYPE:
            names = font.encoding_differences()
            if names:
                font_dict[Name.Encoding] = self.pdf.make_indirect(
                    Dictionary(
                        Type=Name.Encoding, Differences=Array(build_differences(names))
                    )
                )
        logger.debug(
            "Built %s font %s with codes %d..%d",
            font.kind.value,
            font.name,
            font.first_char,
            font.last_char,
        )
        return font_dict

    def _build_cid_font(self, font: MergedFont) -> Dictionary:
        cid_font = Dictionary(
            Type=Name.Font,
            Subtype=Name(f"/{font.kind.value}"),
            BaseFont=Name(f"/{font.name}"),
            CIDSystemInfo=Dictionary(
                Registry=pikepdf.String("Adobe"),
                Ordering=pikepdf.String("Identity"),
                Supplement=0,
            ),
            FontDescriptor=self._font_descriptor(font, font.metrics.flags),
            DW=DEFAULT_CID_WIDTH,
            W=Array(build_w_array(font.width_map(), DEFAULT_CID_WIDTH)),
        )
        if font.kind is FontKind.CID_TRUETYPE:
            cid_font[Name.CIDToGIDMap] = Name.Identity

        logger.debug("Built CID font %s (%s)", font.name, font.kind.value)
        return Dictionary(
            Type=Name.Font,
            Subtype=Name.Type0,
            BaseFont=Name(f"/{font.name}"),
            Encoding=Name("/Identity-H"),
            DescendantFonts=Array([self.pdf.make_indirect(cid_font)]),
            ToUnicode=self._to_unicode(font, 2),
        )
