# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Merge session: the registry of merged fonts for one output document."""

import logging
from dataclasses import dataclass
from typing import NamedTuple

import pikepdf
from pikepdf import Dictionary, Name

from ..config import MergeSettings
from ..exceptions import FontMergeError, IncompatibleGlyphDataError
from .embedder import MergedFontEmbedder
from .identity import FontIdentityResolver
from .merged import MergedFont, kind_for
from .resource import FontResource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeDecision:
    """Outcome of offering a font resource to a candidate merged font.

    Attributes:
        resource: Description of the offered resource.
        candidate: Name of the merged font it was offered to.
        accepted: True if the resource was folded in.
        reason: Short explanation.
    """

    resource: str
    candidate: str
    accepted: bool
    reason: str


class MergeTarget(NamedTuple):
    """Where a font resource ended up.

    Attributes:
        name: Name of the merged font.
        font: The merged font; its ``map_char`` is the fallback
            character-to-code function.
    """

    name: str
    font: MergedFont


def candidate_names(key: str):
    """Yields the canonical key followed by its disambiguated forms."""
    yield key
    index = 2
    while True:
        yield f"{key}_{index}"
        index += 1


class FontMergeSession:
    """Owns every merged font created while assembling one output document.

    Attributes:
        settings: Merge settings in effect.
        decisions: Log of accept/reject decisions, in order.
    """

    def __init__(self, settings: MergeSettings | None = None) -> None:
        self.settings = settings or MergeSettings()
        self.resolver = FontIdentityResolver(self.settings)
        self.decisions: list[MergeDecision] = []
        self._fonts: dict[str, MergedFont] = {}
        self._placeholders: dict[str, Dictionary] = {}
        self._forks = 0
        self._finalized = False

    @property
    def fork_count(self) -> int:
        """Number of merged fonts created under a disambiguated name."""
        return self._forks

    def merge_or_create_font(self, key: str, resource: FontResource) -> MergeTarget:
        """Folds a resource into the merged font for its canonical key.

        A resource merged earlier returns the candidate it joined, without
        comparing glyph data again. Otherwise candidates ``key``,
        ``key_2``, ``key_3``... are tried in order and a candidate whose
        glyph data is incompatible is skipped. When no candidate accepts,
        a new merged font is created under the first unused name.

        Args:
            key: Canonical key of the resource.
            resource: The font resource.

        Returns:
            The merge target.

        Raises:
            UnreadableFontProgramError: If the resource's program cannot be
                read; the caller keeps the font standalone.
            FontMergeError: If the session was already finalized.
        """
        if self._finalized:
            raise FontMergeError("Font merge session is already finalized")

        previous = self._find_ingested(key, resource)
        if previous is not None:
            return previous

        described = repr(resource)
        for name in candidate_names(key):
            font = self._fonts.get(name)
            if font is None:
                font = MergedFont(
                    name, kind_for(key, resource), self.settings, self.resolver
                )
                font.ingest(resource)
                self._fonts[name] = font
                if name != key:
                    self._forks += 1
                self._record(described, name, True, "created")
                logger.debug("Created merged font %s (%s)", name, font.kind.value)
                return MergeTarget(name, font)

            try:
                font.ingest(resource)
            except IncompatibleGlyphDataError as e:
                self._record(described, name, False, str(e))
                logger.debug("Not merging into %s: %s", name, e)
                continue
            self._record(described, name, True, "merged")
            return MergeTarget(name, font)

    def _find_ingested(self, key: str, resource: FontResource) -> MergeTarget | None:
        """Returns the candidate that already holds the resource, if any."""
        for name in candidate_names(key):
            font = self._fonts.get(name)
            if font is None:
                return None
            if font.has_ingested(resource):
                return MergeTarget(name, font)

    def _record(self, resource: str, candidate: str, accepted: bool, reason: str) -> None:
        self.decisions.append(MergeDecision(resource, candidate, accepted, reason))

    def used_fonts(self) -> list[MergedFont]:
        """Returns the merged fonts in creation order."""
        return list(self._fonts.values())

    def get(self, name: str) -> MergedFont | None:
        return self._fonts.get(name)

    def serialized_font_programs(self) -> dict[str, bytes]:
        """Returns merged font name to serialized program bytes."""
        return {name: font.serialize_program() for name, font in self._fonts.items()}

    def font_reference(self, name: str, pdf: pikepdf.Pdf) -> Dictionary:
        """Returns the indirect placeholder font dictionary for a merged font.

        The same placeholder is returned for every page using the font. It
        is filled in by :meth:`finalize`.
        """
        placeholder = self._placeholders.get(name)
        if placeholder is None:
            placeholder = pdf.make_indirect(Dictionary(Type=Name.Font))
            self._placeholders[name] = placeholder
        return placeholder

    def finalize(self, pdf: pikepdf.Pdf) -> int:
        """Writes every referenced merged font into the output document.

        Args:
            pdf: The output document holding the placeholders.

        Returns:
            Number of font dictionaries written.
        """
        self._finalized = True
        embedder = MergedFontEmbedder(pdf)
        written = 0
        for name, placeholder in self._placeholders.items():
            font = self._fonts[name]
            built = embedder.build(font)
            for key in list(placeholder.keys()):
                del placeholder[key]
            for key, value in built.items():
                placeholder[key] = value
            written += 1
            logger.debug("Embedded merged font %s", name)
        logger.info(
            "Merged fonts: %d written, %d forked", written, self._forks
        )
        return written
