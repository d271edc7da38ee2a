# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Merged fonts: the consolidated tables behind one canonical key."""

import logging
from collections.abc import Mapping
from typing import Protocol

from ..config import MergeSettings
from ..exceptions import (
    FontMergeError,
    IncompatibleGlyphDataError,
    MissingEncodingInfoError,
    UnreadableFontProgramError,
)
from .cff_merge import CFFProgramMerger
from .codec import decode, identity_text
from .identity import FontIdentityResolver, GlyphReference
from .programs import CFFProgram, FontProgram, TrueTypeProgram, Type1Program
from .resource import FontKind, FontMetrics, FontResource
from .truetype_merge import TrueTypeProgramMerger
from .type1_merge import Type1ProgramMerger

logger = logging.getLogger(__name__)

# Highest code of a single-byte font
MAX_SIMPLE_CODE = 0xFF

# Highest CID addressable with Identity-H
MAX_CID = 0xFFFF


class ProgramMerger(Protocol):
    """Format-specific accumulator of glyph programs."""

    def ingest_program(
        self, program, slots: Mapping[int, str], require_all: bool = False
    ) -> set[int]: ...

    def finalize_program(self) -> bytes: ...

    def glyph_name(self, code: int) -> str | None: ...


_PROGRAM_TYPES: dict[FontKind, type] = {
    FontKind.TYPE1: Type1Program,
    FontKind.TYPE1C: CFFProgram,
    FontKind.CID_CFF: CFFProgram,
    FontKind.TRUETYPE: TrueTypeProgram,
    FontKind.CID_TRUETYPE: TrueTypeProgram,
}


def new_program_merger(kind: FontKind, font_name: str) -> ProgramMerger:
    """Creates the program accumulator for a font kind."""
    if kind is FontKind.TYPE1:
        return Type1ProgramMerger()
    if kind in (FontKind.TYPE1C, FontKind.CID_CFF):
        return CFFProgramMerger(cid=kind.is_cid, font_name=font_name)
    return TrueTypeProgramMerger(cid=kind.is_cid)


def kind_for(key: str, resource: FontResource) -> FontKind:
    """Chooses the merged font kind for a resource and its canonical key.

    Raises:
        UnreadableFontProgramError: If the embedded program does not match
            the declared subtype.
    """
    program = resource.program
    if resource.subtype == "Type0":
        if resource.descendant_subtype == "CIDFontType0":
            kind = FontKind.CID_CFF
        else:
            kind = FontKind.CID_TRUETYPE
    elif key.endswith("cid"):
        kind = FontKind.CID_TRUETYPE
    elif resource.subtype == "TrueType":
        kind = FontKind.TRUETYPE
    elif isinstance(program, CFFProgram):
        kind = FontKind.TYPE1C
    else:
        kind = FontKind.TYPE1
    if not isinstance(program, _PROGRAM_TYPES[kind]):
        raise UnreadableFontProgramError(
            f"{resource.base_name}: {type(program).__name__} does not match "
            f"{resource.subtype}"
        )
    return kind


class CodeAllocator:
    """Monotonic allocator of merged character codes.

    A resource keeps its own code when that slot is free. Otherwise the
    code comes from a skip counter that starts just beyond the highest
    code in use and only ever moves forward, so codes are never handed
    out twice, even when a later resource is rejected and forked.
    """

    def __init__(self, limit: int, reserved: frozenset[int] = frozenset()) -> None:
        self.limit = limit
        self._used: set[int] = set(reserved)
        self._reserved = reserved
        self._skip = 0

    def __contains__(self, code: int) -> bool:
        return code in self._used

    def is_free(self, code: int) -> bool:
        return 0 <= code <= self.limit and code not in self._used

    def begin_resource(self) -> None:
        """Moves the skip counter past the highest code in use."""
        highest = max((c for c in self._used if c not in self._reserved), default=-1)
        self._skip = max(self._skip, highest + 1)

    def claim(self, preferred: int) -> int | None:
        """Claims a code, preferring the resource's own code.

        Args:
            preferred: The code the resource uses.

        Returns:
            The claimed code, or None when the code space is exhausted.
        """
        if self.is_free(preferred):
            self._used.add(preferred)
            return preferred
        while self._skip in self._used:
            self._skip += 1
        if self._skip > self.limit:
            return None
        code = self._skip
        self._used.add(code)
        self._skip += 1
        return code

    def reserve(self, code: int) -> bool:
        """Marks a resource's own code as used without moving the counter."""
        if not self.is_free(code):
            return False
        self._used.add(code)
        return True


class MergedFont:
    """The consolidated font accumulated from compatible font resources.

    Once a glyph identity is assigned a merged code, the code never
    changes. Widths, encoding names and the program accumulator grow as
    resources are ingested.

    Attributes:
        name: Canonical (possibly disambiguated) name.
        kind: Font variant.
        metrics: Font descriptor values of the first ingested resource.
    """

    def __init__(
        self,
        name: str,
        kind: FontKind,
        settings: MergeSettings | None = None,
        resolver: FontIdentityResolver | None = None,
    ) -> None:
        self.name = name
        self.kind = kind
        self.settings = settings or MergeSettings()
        self.resolver = resolver or FontIdentityResolver(self.settings)
        self.metrics = FontMetrics()
        self._codes: dict[str, int] = {}
        self._identities: dict[int, str] = {}
        self._chars: dict[str, int] = {}
        self._widths: dict[int, float] = {}
        # Codes that draw a glyph without carrying an identity of their own
        self._aliases: set[int] = set()
        self._drawn: set[int] = set()
        if kind.is_cid:
            self._allocator = CodeAllocator(MAX_CID, reserved=frozenset({0}))
        else:
            self._allocator = CodeAllocator(MAX_SIMPLE_CODE)
        self._program: ProgramMerger = new_program_merger(kind, name)
        self._reference: GlyphReference | None = None
        self._ingested: set[tuple[int, tuple[int, int]]] = set()
        self._resource_count = 0
        self._first_resource: FontResource | None = None
        self._serialized: bytes | None = None

    def __repr__(self) -> str:
        return f"MergedFont({self.name!r}, {self.kind.name}, size={self.size})"

    # -- Ingestion --

    @property
    def size(self) -> int:
        """Number of font resources merged into this font."""
        return self._resource_count

    @property
    def is_finalized(self) -> bool:
        return self._serialized is not None

    def has_ingested(self, resource: FontResource) -> bool:
        return resource.origin is not None and resource.origin in self._ingested

    def ingest(self, resource: FontResource) -> int:
        """Folds a font resource into this merged font.

        A failed call leaves the merged font unchanged.

        Args:
            resource: The font resource to merge.

        Returns:
            Number of merged codes added by this resource.

        Raises:
            IncompatibleGlyphDataError: If the resource's glyph data differs
                from the glyphs already merged, or one of its glyphs cannot
                be added to the merged program.
            UnreadableFontProgramError: If the embedded program cannot be
                parsed or does not match this font's kind.
            FontMergeError: If the font was already serialized.
        """
        if self.is_finalized:
            raise FontMergeError(f"Merged font {self.name} is already finalized")
        program = resource.program
        if not isinstance(program, _PROGRAM_TYPES[self.kind]):
            raise UnreadableFontProgramError(
                f"{resource.base_name}: {type(program).__name__} cannot join "
                f"{self.kind.value} font {self.name}"
            )

        first = self._resource_count == 0
        if first:
            reference = self.resolver.reference_for(resource)
            metrics = resource.metrics()
        else:
            if not self.resolver.is_glyph_data_compatible(self._reference, resource):
                raise IncompatibleGlyphDataError(
                    f"{resource.base_name} is not glyph compatible with {self.name}"
                )
            glyph_data = self.resolver.glyph_data(resource)

        added = self._assign_codes(resource, program, first)
        if first:
            self._reference = reference
            self.metrics = metrics
            self._first_resource = resource
        else:
            self._reference.extend(glyph_data)
        self._resource_count += 1
        if resource.origin is not None:
            self._ingested.add(resource.origin)
        logger.debug(
            "Merged %s into %s: %d new code(s), %d total",
            resource.base_name,
            self.name,
            added,
            len(self._codes),
        )
        return added

    def _assign_codes(
        self, resource: FontResource, program: FontProgram, first: bool
    ) -> int:
        """Assigns merged codes to a resource's glyphs and merges their programs.

        Codes are planned first and published only after the program
        merger accepted the glyphs. Codes claimed by a failed call stay
        consumed in the allocator and are never handed out again.
        """
        try:
            code_to_name = resource.code_to_name()
        except MissingEncodingInfoError as e:
            logger.debug("%s: %s; widths of unnamed codes set to 0", resource.base_name, e)
            code_to_name = {}

        self._allocator.begin_resource()
        slots: dict[int, str] = {}
        planned: dict[str, int] = {}
        claims: list[tuple[str, int, float, bool]] = []
        fills: list[tuple[int, float]] = []
        aliases: list[tuple[int, float]] = []
        for code in resource.codes():
            identity = decode(resource, code)
            glyph = resource.source_glyph(code)
            merged = None
            if identity is not None:
                merged = self._codes.get(identity, planned.get(identity))
            if (
                merged is not None
                and glyph is not None
                and merged not in self._drawn
                and merged not in slots
            ):
                # Declared by an earlier resource that did not embed the glyph
                slots[merged] = glyph
                fills.append((merged, self._trusted_width(resource, code, code_to_name)))
                continue
            if identity is None or merged is not None:
                # The first resource keeps its own layout for codes that
                # cannot be shared, so its text can pass through unchanged
                if first and glyph is not None and self._allocator.reserve(code):
                    slots[code] = glyph
                    aliases.append((code, self._trusted_width(resource, code, code_to_name)))
                continue

            merged = self._allocator.claim(code)
            if merged is None:
                logger.info(
                    "%s: no free code left for %r, glyph not merged",
                    self.name,
                    identity,
                )
                continue
            planned[identity] = merged
            width = self._trusted_width(resource, code, code_to_name)
            claims.append((identity, merged, width, glyph is not None))
            if glyph is not None:
                slots[merged] = glyph

        filled = self._program.ingest_program(program, slots, require_all=not first)

        added = 0
        for identity, merged, width, has_glyph in claims:
            if has_glyph and merged not in filled:
                logger.debug("%s: glyph %r declined, left unassigned", self.name, identity)
                continue
            self._codes[identity] = merged
            self._identities[merged] = identity
            self._chars.setdefault(identity_text(identity), merged)
            self._widths[merged] = width
            if has_glyph:
                self._drawn.add(merged)
            added += 1
        for merged, width in fills:
            if merged in filled:
                self._drawn.add(merged)
                if not self._widths.get(merged):
                    self._widths[merged] = width
        for code, width in aliases:
            if code in filled:
                self._aliases.add(code)
                self._drawn.add(code)
                self._widths[code] = width
        return added

    def _trusted_width(
        self, resource: FontResource, code: int, code_to_name: dict[int, str]
    ) -> float:
        """Applies the width-trust policy to one code of a resource.

        CID widths are keyed by CID and always trusted. For simple fonts a
        width is only copied when the merged font is Type1, the resource is
        TrueType, or the code has a glyph name; ambiguous encodings must
        not advance text by a guessed amount.
        """
        if resource.is_cid:
            return resource.width(code)
        if not resource.has_width(code):
            return 0
        if (
            self.kind is FontKind.TYPE1
            or resource.subtype == "TrueType"
            or code in code_to_name
        ):
            return resource.width(code)
        return 0

    # -- Lookup --

    def lookup(self, identity: str) -> int | None:
        """Returns the merged code of a glyph identity, if assigned."""
        return self._codes.get(identity)

    def decode(self, code: int) -> str | None:
        """Returns the glyph identity of a merged code."""
        return self._identities.get(code)

    def has_char(self, char: str) -> bool:
        return char in self._chars

    def map_char(self, char: str) -> int:
        """Maps a character to a merged code, 0 when absent."""
        return self._chars.get(char, 0)

    def can_pass_through(self, resource: FontResource) -> bool:
        """Returns True if the resource's codes are valid merged codes.

        The first ingested resource keeps every code it draws at its
        original position, so its operands need no re-encoding as long as
        its code width matches the merged font's.
        """
        merged_width = 2 if self.kind.is_cid else 1
        if resource.code_width != merged_width:
            return False
        first = self._first_resource
        if first is None:
            return False
        if resource is first:
            return True
        return resource.origin is not None and resource.origin == first.origin

    # -- Tables for the output font --

    @property
    def first_char(self) -> int:
        codes = self._assigned_codes()
        return min(codes) if codes else 0

    @property
    def last_char(self) -> int:
        codes = self._assigned_codes()
        return max(codes) if codes else 0

    def _assigned_codes(self) -> set[int]:
        return set(self._identities) | self._aliases

    def widths(self) -> list[float]:
        """Returns widths over [first_char..last_char], 0 when unassigned."""
        return [
            self._widths.get(code, 0)
            for code in range(self.first_char, self.last_char + 1)
        ]

    def width_map(self) -> dict[int, float]:
        return dict(self._widths)

    def encoding_differences(self) -> dict[int, str]:
        """Returns merged code to glyph name, ordered by code."""
        names = {}
        for code in sorted(self._assigned_codes()):
            name = self._program.glyph_name(code)
            if name is not None:
                names[code] = name
        return names

    def to_unicode(self) -> dict[int, str]:
        return {
            code: identity_text(identity) for code, identity in self._identities.items()
        }

    def serialize_program(self) -> bytes:
        """Finalizes and returns the merged font program.

        The program is built once; later calls return the same bytes.
        """
        if self._serialized is None:
            self._serialized = self._program.finalize_program()
            logger.debug("Serialized %s: %d bytes", self.name, len(self._serialized))
        return self._serialized

    @property
    def program_lengths(self) -> tuple[int, int, int] | None:
        """Section lengths of a serialized Type1 program."""
        if isinstance(self._program, Type1ProgramMerger) and self.is_finalized:
            return self._program.lengths
        return None
