# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Merging of CFF glyph programs."""

import logging
from collections.abc import Mapping

from fontTools.fontBuilder import FontBuilder
from fontTools.misc.psCharStrings import T2CharString
from fontTools.pens.recordingPen import DecomposingRecordingPen
from fontTools.pens.t2CharStringPen import T2CharStringPen

from ..exceptions import IncompatibleGlyphDataError, UnreadableFontProgramError
from .programs import CFFProgram

logger = logging.getLogger(__name__)

NOTDEF = ".notdef"


def _empty_charstring() -> T2CharString:
    return T2CharStringPen(0, None).getCharString()


def redraw_charstring(program: CFFProgram, name: str) -> T2CharString:
    """Redraws a charstring without subroutine calls.

    The outline is replayed through a T2CharStringPen, which flattens
    local and global subroutines and accented (seac) components, so the
    result no longer depends on the source font's Private dictionary.

    Args:
        program: Source CFF program.
        name: Glyph name in the source program.

    Returns:
        A standalone Type2 charstring with an explicit advance width.
    """
    charstring = program.charstrings[name]
    recording = DecomposingRecordingPen(
        program.charstrings, skipMissingComponents=True
    )
    charstring.draw(recording)
    pen = T2CharStringPen(charstring.width, None)
    recording.replay(pen)
    return pen.getCharString()


class CFFProgramMerger:
    """Accumulates glyphs from several CFF programs into one font.

    Simple fonts keep the source glyph names, so an encoding
    /Differences array can address them. CID fonts place each merged
    code at the glyph index equal to the code.
    """

    def __init__(self, *, cid: bool, font_name: str) -> None:
        self._cid = cid
        self._font_name = font_name
        self._font_matrix: list[float] | None = None
        self._font_bbox: list[float] | None = None
        self._units_per_em = 1000
        self._charstrings: dict[str, T2CharString] = {}
        self._slots: dict[int, str] = {}

    def glyph_name(self, code: int) -> str | None:
        return self._slots.get(code)

    def ingest_program(
        self, program: CFFProgram, slots: Mapping[int, str], require_all: bool = False
    ) -> set[int]:
        """Copies the glyphs drawn by the given merged codes.

        Nothing is kept when a charstring of the program cannot be drawn.

        Args:
            program: Source CFF program.
            slots: Merged code to source glyph name.
            require_all: Reject the whole program when any glyph is missing.

        Returns:
            The merged codes that draw a glyph after this call.

        Raises:
            UnreadableFontProgramError: If a charstring cannot be drawn.
            IncompatibleGlyphDataError: If require_all is set and a glyph
                is missing.
        """
        first = self._font_matrix is None
        staged: dict[str, T2CharString] = {}
        filled: dict[int, str] = {}
        try:
            if first and program.has_glyph(NOTDEF):
                staged[NOTDEF] = redraw_charstring(program, NOTDEF)
            for code, source_name in sorted(slots.items()):
                if code in self._slots:
                    filled[code] = self._slots[code]
                    continue
                if not program.has_glyph(source_name):
                    continue
                new_name = f"g{code:05d}" if self._cid else source_name
                if new_name not in self._charstrings and new_name not in staged:
                    staged[new_name] = redraw_charstring(program, source_name)
                filled[code] = new_name
        except Exception as e:
            raise UnreadableFontProgramError(
                f"Cannot draw CFF charstrings of {program.font_name}: {e}"
            ) from e
        missing = len(slots) - len(filled)
        if require_all and missing:
            raise IncompatibleGlyphDataError(
                f"{missing} glyph(s) missing from {program.font_name}"
            )

        if first:
            self._font_matrix = list(
                getattr(program.top, "FontMatrix", None) or [0.001, 0, 0, 0.001, 0, 0]
            )
            self._font_bbox = list(getattr(program.top, "FontBBox", [0, 0, 0, 0]))
            self._units_per_em = program.units_per_em
        self._charstrings.update(staged)
        self._slots.update(filled)
        logger.debug("CFF merge: %d glyph(s) copied from %s", len(staged), program.font_name)
        return set(filled)

    def _glyph_order(self) -> list[str]:
        if not self._cid:
            return [NOTDEF] + [name for name in self._charstrings if name != NOTDEF]
        order = [NOTDEF]
        for code in range(1, max(self._slots, default=0) + 1):
            name = self._slots.get(code)
            if name is None:
                name = f"gap{code:05d}"
                self._charstrings[name] = _empty_charstring()
            order.append(name)
        return order

    def finalize_program(self) -> bytes:
        """Builds the merged bare CFF program.

        Returns:
            CFF table data suitable for a FontFile3 stream.
        """
        if NOTDEF not in self._charstrings:
            self._charstrings[NOTDEF] = _empty_charstring()
        order = self._glyph_order()

        fb = FontBuilder(self._units_per_em, isTTF=False)
        fb.setupGlyphOrder(order)
        font_info = {"FontMatrix": self._font_matrix or [0.001, 0, 0, 0.001, 0, 0]}
        if self._font_bbox:
            font_info["FontBBox"] = self._font_bbox
        fb.setupCFF(
            self._font_name,
            font_info,
            {name: self._charstrings[name] for name in order},
            {},
        )
        data = fb.font["CFF "].compile(fb.font)
        logger.debug("CFF merge: built %d glyph(s), %d bytes", len(order), len(data))
        return data
