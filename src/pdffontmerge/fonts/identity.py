# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Identity resolution between font resources of different documents.

Two font resources are merge candidates when they share a canonical key
(font name without subset tag, subtype and a few structural tags). A
byte-similarity heuristic over their glyph programs then rejects
resources that only share a name.
"""

import logging
from dataclasses import dataclass, field

from ..config import MergeSettings
from .codec import decode
from .programs import CFFProgram, TrueTypeProgram, Type1Program
from .resource import FontResource

logger = logging.getLogger(__name__)


@dataclass
class GlyphReference:
    """Glyph data a merged font compares new resources against.

    Attributes:
        units_per_em: Design units of the first merged program.
        glyphs: Glyph key (name or identity) to raw glyph bytes.
    """

    units_per_em: int
    glyphs: dict[str, bytes] = field(default_factory=dict)

    def extend(self, glyphs: dict[str, bytes]) -> None:
        for key, data in glyphs.items():
            self.glyphs.setdefault(key, data)


def count_mismatches(
    first: bytes, second: bytes, budget: int, from_tail: bool = True
) -> int:
    """Counts positional byte mismatches between two charstrings.

    Bytes are compared pairwise from the end (or the start) of both
    sequences over the length of the shorter one. Counting stops as soon
    as the budget is exceeded.

    Args:
        first: First charstring.
        second: Second charstring.
        budget: Mismatches tolerated before counting stops.
        from_tail: Compare from the last byte inward.

    Returns:
        Number of mismatches found, at most ``budget + 1``.
    """
    if from_tail:
        pairs = zip(reversed(first), reversed(second))
    else:
        pairs = zip(first, second)
    mismatches = 0
    for a, b in pairs:
        if a != b:
            mismatches += 1
            if mismatches > budget:
                break
    return mismatches


def charstrings_compatible(
    first: bytes, second: bytes, budget: int = 2, from_tail: bool = True
) -> bool:
    """Returns True if two charstrings are judged the same glyph."""
    return count_mismatches(first, second, budget, from_tail) <= budget


class FontIdentityResolver:
    """Computes canonical merge keys and glyph compatibility."""

    def __init__(self, settings: MergeSettings | None = None) -> None:
        self.settings = settings or MergeSettings()

    def canonical_key(self, resource: FontResource) -> str | None:
        """Builds the canonical merge key of a font resource.

        Args:
            resource: The font resource.

        Returns:
            The key, or None if the resource cannot be merged (no usable
            base name, not embedded, or an unsupported subtype).

        Raises:
            UnreadableFontProgramError: If the embedded program needed to
                compute structural tags cannot be parsed.
        """
        name = resource.stripped_name
        if name is None or resource.subtype not in ("Type1", "TrueType", "Type0"):
            return None
        if resource.program_stream() is None:
            return None
        key = f"{name}_{resource.subtype}"

        if resource.subtype == "Type0":
            if resource.descendant_subtype == "CIDFontType0":
                program = resource.program
                if (
                    isinstance(program, CFFProgram)
                    and program.is_cid_keyed
                    and program.fd_select_format() == 0
                ):
                    key += "format0"
                return key
            if (
                resource.descendant_subtype == "CIDFontType2"
                and resource.to_unicode is not None
            ):
                return key if resource.is_subset else key + "f3"
            return None

        if resource.subtype == "TrueType":
            if resource.is_subset:
                program = resource.program
                if isinstance(program, TrueTypeProgram) and _maps_code_one(program):
                    key += "cid"
            return key

        program = resource.program
        if isinstance(program, CFFProgram):
            encoding_format = program.encoding_format()
            if encoding_format == 1:
                key += "f1enc"
            elif encoding_format == 0:
                key += "f0enc"
            if program.uses_standard_strings():
                key += "stdcs"
            if program.charset_format() == 1:
                key += "f1cs"
        return key

    def glyph_data(self, resource: FontResource) -> dict[str, bytes]:
        """Collects the glyph bytes compared by the similarity heuristic.

        Type1-family simple fonts are keyed by glyph name over every
        charstring of the program. TrueType and CID fonts are keyed by
        glyph identity, since their glyph names or indices are local to
        each subset.
        """
        program = resource.program
        if not resource.is_cid and isinstance(program, (Type1Program, CFFProgram)):
            return program.charstring_table()

        glyphs: dict[str, bytes] = {}
        for code in resource.codes():
            identity = decode(resource, code)
            if identity is None or identity in glyphs:
                continue
            glyph = resource.source_glyph(code)
            if glyph is None:
                continue
            data = program.glyph_bytes(glyph)
            if data:
                glyphs[identity] = data
        return glyphs

    def reference_for(self, resource: FontResource) -> GlyphReference:
        return GlyphReference(resource.program.units_per_em, self.glyph_data(resource))

    def is_glyph_data_compatible(
        self, reference: GlyphReference, resource: FontResource
    ) -> bool:
        """Checks a candidate resource against a merged font's glyph data.

        Args:
            reference: Glyph data of the merged font.
            resource: Candidate font resource.

        Returns:
            False if the design units differ or any shared glyph exceeds
            the mismatch budget.
        """
        if resource.program.units_per_em != reference.units_per_em:
            logger.debug(
                "%s: units per em %d != %d",
                resource.base_name,
                resource.program.units_per_em,
                reference.units_per_em,
            )
            return False
        budget = self.settings.mismatch_budget
        from_tail = self.settings.compare_from_tail
        for key, data in self.glyph_data(resource).items():
            existing = reference.glyphs.get(key)
            if existing is None:
                continue
            if not charstrings_compatible(existing, data, budget, from_tail):
                logger.debug(
                    "%s: glyph %r differs beyond %d bytes",
                    resource.base_name,
                    key,
                    budget,
                )
                return False
        return True


def _maps_code_one(program: TrueTypeProgram) -> bool:
    """Returns True if any cmap subtable maps code 1 to a real glyph."""
    for subtable in program.cmap_subtables():
        name = subtable.cmap.get(1)
        if name is not None and program.font.getGlyphID(name) > 0:
            return True
    return False
