# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Merging of Type1 glyph programs.

The first program ingested is kept as the base font. Glyphs that only
later programs define are encrypted again and spliced into the base
program's /CharStrings dictionary inside the eexec section.
"""

import logging
import re
from collections.abc import Mapping

from fontTools.encodings.StandardEncoding import StandardEncoding
from fontTools.misc import eexec
from fontTools.misc.psCharStrings import T1CharString

from ..exceptions import IncompatibleGlyphDataError, UnreadableFontProgramError
from .programs import CHARSTRING_KEY, PRIVATE_KEY, Type1Program

logger = logging.getLogger(__name__)

_CHARSTRINGS_HEADER = re.compile(rb"/CharStrings\s+(\d+)\s+dict\s+dup\s+begin")
_ENTRY_HEADER = re.compile(rb"\s*/[^\s/\[\]{}()<>]+\s+(\d+)\s+(\S+)\s")
_TOKEN = re.compile(rb"\s*(\S+)")


def _charstring_dependencies(bytecode: bytes) -> tuple[set[int], bool, list[str]]:
    """Lists what a Type1 charstring depends on outside itself.

    Returns:
        Tuple of (literal subroutine indices called, whether any call has
        a computed index, accented component names used by ``seac``).
    """
    charstring = T1CharString(bytecode)
    charstring.decompile()
    program = charstring.program
    subrs: set[int] = set()
    computed = False
    components: list[str] = []
    for i, token in enumerate(program):
        if token == "callsubr":
            previous = program[i - 1] if i > 0 else None
            if isinstance(previous, int):
                subrs.add(previous)
            else:
                computed = True
        elif token == "seac" and i >= 2:
            for code in program[i - 2 : i]:
                if isinstance(code, int) and 0 <= code < len(StandardEncoding):
                    components.append(StandardEncoding[code])
    return subrs, computed, components


def _subrs_match(
    base: Type1Program, program: Type1Program, subrs: set[int], computed: bool
) -> bool:
    if computed:
        return program.subrs == base.subrs
    return all(
        index < len(base.subrs)
        and index < len(program.subrs)
        and base.subrs[index] == program.subrs[index]
        for index in subrs
    )


class Type1ProgramMerger:
    """Accumulates charstrings from several Type1 programs into the first."""

    def __init__(self) -> None:
        self._base: Type1Program | None = None
        self._added: dict[str, bytes] = {}
        self._slots: dict[int, str] = {}
        self.lengths: tuple[int, int, int] = (0, 0, 0)

    def glyph_name(self, code: int) -> str | None:
        return self._slots.get(code)

    def ingest_program(
        self, program: Type1Program, slots: Mapping[int, str], require_all: bool = False
    ) -> set[int]:
        """Registers the glyphs drawn by the given merged codes.

        Nothing is kept when the program cannot be read. A glyph whose
        charstring calls subroutines that differ from the base font's is
        declined and its code is left out of the result.

        Args:
            program: Source Type1 program.
            slots: Merged code to source glyph name.
            require_all: Reject the whole program when any glyph is declined.

        Returns:
            The merged codes that draw a glyph after this call.

        Raises:
            UnreadableFontProgramError: If a charstring cannot be decoded.
            IncompatibleGlyphDataError: If require_all is set and a glyph
                was declined.
        """
        base = self._base
        if base is None:
            if _CHARSTRINGS_HEADER.search(program.decrypt_private()) is None:
                raise UnreadableFontProgramError("Type1 program has no /CharStrings")
            base = program
        staged: dict[str, bytes] = {}
        filled: dict[int, str] = {}
        for code, name in sorted(slots.items()):
            if code in self._slots or self._ensure_glyph(base, program, name, staged):
                filled[code] = self._slots.get(code, name)
        declined = len(slots) - len(filled)
        if require_all and declined:
            raise IncompatibleGlyphDataError(
                f"{declined} glyph(s) cannot be added to the base Type1 program"
            )

        self._base = base
        self._added.update(staged)
        self._slots.update(filled)
        logger.debug(
            "Type1 merge: %d of %d slot(s) filled, %d glyph(s) spliced",
            len(filled),
            len(slots),
            len(staged),
        )
        return set(filled)

    def _has_glyph(self, base: Type1Program, name: str, staged: dict[str, bytes]) -> bool:
        return base.has_glyph(name) or name in self._added or name in staged

    def _ensure_glyph(
        self,
        base: Type1Program,
        program: Type1Program,
        name: str,
        staged: dict[str, bytes],
        depth: int = 0,
    ) -> bool:
        if self._has_glyph(base, name, staged):
            return True
        bytecode = program.glyph_bytes(name)
        if bytecode is None or depth > 2:
            return False
        try:
            subrs, computed, components = _charstring_dependencies(bytecode)
        except Exception as e:
            raise UnreadableFontProgramError(
                f"Cannot decode Type1 charstring {name!r}: {e}"
            ) from e
        if not _subrs_match(base, program, subrs, computed):
            logger.debug("Type1 merge: %s uses subroutines of another font, declined", name)
            return False
        for component in components:
            if not self._ensure_glyph(base, program, component, staged, depth + 1):
                logger.debug("Type1 merge: component %s of %s missing", component, name)
                return False
        staged[name] = bytecode
        return True

    def finalize_program(self) -> bytes:
        """Builds the merged Type1 program.

        Returns:
            Cleartext, binary eexec section and trailer, concatenated.
            ``lengths`` holds the three section lengths afterwards.

        Raises:
            UnreadableFontProgramError: If nothing was ingested or the base
                program's /CharStrings dictionary cannot be located.
        """
        if self._base is None:
            raise UnreadableFontProgramError("No Type1 program was merged")
        base = self._base
        cipher = base.ciphertext
        if self._added:
            cipher = self._splice(base)
        trailer = base.trailer
        self.lengths = (len(base.cleartext), len(cipher), len(trailer))
        logger.debug(
            "Type1 merge: %d glyph(s) added to %d", len(self._added), len(base.charstrings)
        )
        return base.cleartext + cipher + trailer

    def _splice(self, base: Type1Program) -> bytes:
        private = base.decrypt_private()
        header = _CHARSTRINGS_HEADER.search(private)
        if header is None:
            raise UnreadableFontProgramError("Type1 program has no /CharStrings")
        rd_token, nd_token = self._entry_tokens(private, header.end())

        entries = []
        for name, bytecode in self._added.items():
            encrypted, _ = eexec.encrypt(b"\x00" * base.len_iv + bytecode, CHARSTRING_KEY)
            entries.append(
                b"\n/"
                + name.encode("latin-1")
                + b" %d " % len(encrypted)
                + rd_token
                + b" "
                + encrypted
                + b" "
                + nd_token
            )
        count = int(header.group(1)) + len(entries)
        patched = (
            private[: header.start(1)]
            + str(count).encode("ascii")
            + private[header.end(1) : header.end()]
            + b"".join(entries)
            + private[header.end() :]
        )
        encrypted, _ = eexec.encrypt(patched, PRIVATE_KEY)
        return encrypted

    @staticmethod
    def _entry_tokens(private: bytes, start: int) -> tuple[bytes, bytes]:
        """Reads the RD and ND procedure names used by the base font."""
        entry = _ENTRY_HEADER.match(private, start)
        if entry is None:
            return b"RD", b"ND"
        length = int(entry.group(1))
        nd = _TOKEN.match(private, entry.end() + length)
        return entry.group(2), nd.group(1) if nd else b"ND"
