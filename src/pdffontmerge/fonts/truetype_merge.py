# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Merging of TrueType glyph programs."""

import logging
from collections.abc import Mapping
from io import BytesIO

from fontTools.fontBuilder import FontBuilder
from fontTools.ttLib import newTable
from fontTools.ttLib.tables import ttProgram
from fontTools.ttLib.tables._c_m_a_p import CmapSubtable
from fontTools.ttLib.tables._g_l_y_f import Glyph

from ..exceptions import IncompatibleGlyphDataError, UnreadableFontProgramError
from .programs import TrueTypeProgram

logger = logging.getLogger(__name__)

# Symbolic fonts address glyphs through the (3,0) cmap at this offset
SYMBOL_CMAP_OFFSET = 0xF000

NOTDEF = ".notdef"


def _strip_instructions(glyph: Glyph) -> None:
    """Removes hinting instructions from a glyph.

    fpgm, prep and cvt are not carried into the merged font, so glyph
    instructions would reference undefined functions.
    """
    if glyph.isComposite():
        if hasattr(glyph, "program"):
            del glyph.program
    elif glyph.numberOfContours > 0:
        program = ttProgram.Program()
        program.fromBytecode(b"")
        glyph.program = program


class TrueTypeProgramMerger:
    """Accumulates glyphs from several TrueType programs into one font.

    For simple fonts every merged code is reachable through a (3,0)
    symbolic cmap entry at 0xF000 + code. For CID fonts the glyph index
    of each merged code equals the code (CIDToGIDMap /Identity).
    """

    def __init__(self, *, cid: bool) -> None:
        self._cid = cid
        self._units_per_em: int | None = None
        self._ascent = 0
        self._descent = 0
        self._glyphs: dict[str, Glyph] = {}
        self._metrics: dict[str, tuple[int, int]] = {}
        self._slots: dict[int, str] = {}
        self._copied: dict[tuple[int, str], str] = {}
        self._programs = 0
        self._components = 0

    @property
    def units_per_em(self) -> int:
        return self._units_per_em or 1000

    def glyph_name(self, code: int) -> str | None:
        return self._slots.get(code)

    def ingest_program(
        self,
        program: TrueTypeProgram,
        slots: Mapping[int, str],
        require_all: bool = False,
    ) -> set[int]:
        """Copies the glyphs drawn by the given merged codes.

        Nothing is kept when a glyph of the program cannot be read.

        Args:
            program: Source TrueType program.
            slots: Merged code to source glyph name.
            require_all: Reject the whole program when any glyph is missing.

        Returns:
            The merged codes that draw a glyph after this call.

        Raises:
            UnreadableFontProgramError: If a glyph record is malformed.
            IncompatibleGlyphDataError: If require_all is set and a glyph
                is missing.
        """
        saved = self._snapshot()
        serial = self._programs
        self._programs += 1
        try:
            copied = self._copy_glyphs(program, serial, slots)
        except UnreadableFontProgramError:
            self._restore(saved)
            raise
        filled = {code for code in slots if code in self._slots}
        if require_all and len(filled) < len(slots):
            self._restore(saved)
            raise IncompatibleGlyphDataError(
                f"{len(slots) - len(filled)} glyph(s) missing from program {serial}"
            )
        logger.debug("TrueType merge: %d glyph(s) copied from program %d", copied, serial)
        return filled

    def _copy_glyphs(
        self, program: TrueTypeProgram, serial: int, slots: Mapping[int, str]
    ) -> int:
        if self._units_per_em is None:
            self._units_per_em = program.units_per_em
            if "hhea" in program.font:
                self._ascent = program.font["hhea"].ascent
                self._descent = program.font["hhea"].descent
            if program.glyph_order:
                self._import(program, serial, program.glyph_order[0], NOTDEF)

        copied = 0
        for code, source_name in sorted(slots.items()):
            if code in self._slots or not program.has_glyph(source_name):
                continue
            new_name = f"cid{code:05d}" if self._cid else None
            self._slots[code] = self._import(program, serial, source_name, new_name)
            copied += 1
        return copied

    def _snapshot(self) -> tuple:
        return (
            self._units_per_em,
            self._ascent,
            self._descent,
            dict(self._glyphs),
            dict(self._metrics),
            dict(self._slots),
            dict(self._copied),
            self._components,
        )

    def _restore(self, saved: tuple) -> None:
        (
            self._units_per_em,
            self._ascent,
            self._descent,
            self._glyphs,
            self._metrics,
            self._slots,
            self._copied,
            self._components,
        ) = saved

    def _import(
        self,
        program: TrueTypeProgram,
        serial: int,
        source_name: str,
        new_name: str | None = None,
    ) -> str:
        key = (serial, source_name)
        if new_name is None:
            if key in self._copied:
                return self._copied[key]
            new_name = f"g{len(self._copied) + 1:05d}"
            self._copied[key] = new_name

        glyph = program.expanded_glyph(source_name)
        if glyph.isComposite():
            for component in glyph.components:
                component.glyphName = self._import_component(
                    program, serial, component.glyphName
                )
        _strip_instructions(glyph)
        self._glyphs[new_name] = glyph
        self._metrics[new_name] = program.metrics(source_name)
        return new_name

    def _import_component(
        self, program: TrueTypeProgram, serial: int, source_name: str
    ) -> str:
        key = (serial, source_name)
        if key not in self._copied:
            self._components += 1
            self._copied[key] = self._import(
                program, serial, source_name, f"comp{self._components:05d}"
            )
        return self._copied[key]

    def _glyph_order(self) -> list[str]:
        if not self._cid:
            return [NOTDEF] + [name for name in self._glyphs if name != NOTDEF]
        order = [NOTDEF]
        last = max(self._slots, default=0)
        for code in range(1, last + 1):
            name = self._slots.get(code)
            if name is None:
                name = f"gap{code:05d}"
                self._glyphs[name] = Glyph()
                self._metrics[name] = (0, 0)
            order.append(name)
        placed = set(order)
        order.extend(name for name in self._glyphs if name not in placed)
        return order

    def finalize_program(self) -> bytes:
        """Builds the merged TrueType font.

        Returns:
            The compiled font file.
        """
        if NOTDEF not in self._glyphs:
            self._glyphs[NOTDEF] = Glyph()
            self._metrics[NOTDEF] = (0, 0)
        order = self._glyph_order()

        fb = FontBuilder(self.units_per_em, isTTF=True)
        fb.setupGlyphOrder(order)
        fb.setupGlyf({name: self._glyphs[name] for name in order})
        fb.setupHorizontalMetrics({name: self._metrics[name] for name in order})
        fb.setupHorizontalHeader(ascent=self._ascent, descent=self._descent)
        fb.setupMaxp()
        fb.setupPost()
        if not self._cid:
            fb.font["cmap"] = self._symbol_cmap()

        buffer = BytesIO()
        fb.save(buffer)
        data = buffer.getvalue()
        logger.debug("TrueType merge: built %d glyph(s), %d bytes", len(order), len(data))
        return data

    def _symbol_cmap(self):
        cmap = newTable("cmap")
        cmap.tableVersion = 0
        subtable = CmapSubtable.newSubtable(4)
        subtable.platformID = 3
        subtable.platEncID = 0
        subtable.language = 0
        subtable.cmap = {
            SYMBOL_CMAP_OFFSET + code: name for code, name in self._slots.items()
        }
        cmap.tables = [subtable]
        return cmap
