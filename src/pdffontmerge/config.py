# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Settings for a font merge run."""

from dataclasses import dataclass

# Default number of positional byte differences tolerated per glyph
DEFAULT_MISMATCH_BUDGET = 2

# Default capacity of the per-document font resource cache
DEFAULT_FONT_CACHE_CAPACITY = 10


@dataclass(frozen=True)
class MergeSettings:
    """Tunable behaviour of the font merge engine.

    Attributes:
        merge_fonts: If False, pages are copied without font rewriting.
        mismatch_budget: Maximum number of positional byte mismatches
            allowed between two charstrings of the same glyph before the
            fonts are considered different. The comparison is a heuristic:
            it can accept small coincidental differences and reject
            glyphs that are equal but encoded differently.
        compare_from_tail: Compare charstrings from the last byte inward.
            Leading bytes legitimately differ between embeddings, so
            tail-anchored comparison is the default.
        font_cache_capacity: Entries kept in the per-document font
            resource cache before it is cleared.
    """

    merge_fonts: bool = True
    mismatch_budget: int = DEFAULT_MISMATCH_BUDGET
    compare_from_tail: bool = True
    font_cache_capacity: int = DEFAULT_FONT_CACHE_CAPACITY

    def __post_init__(self) -> None:
        if self.mismatch_budget < 0:
            raise ValueError(
                f"mismatch_budget must not be negative, got {self.mismatch_budget}"
            )
        if self.font_cache_capacity < 1:
            raise ValueError(
                "font_cache_capacity must be at least 1, "
                f"got {self.font_cache_capacity}"
            )
