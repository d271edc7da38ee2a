# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Font merge engine: source font resources, merged fonts and embedding."""

# Source fonts
from .codec import decode, decode_operand, identity_text, split_codes
from .loader import ClearOnOverflowCache, FontResourceLoader, load_font_resource
from .programs import CFFProgram, TrueTypeProgram, Type1Program, load_font_program
from .resource import FontEncoding, FontKind, FontMetrics, FontResource

# Identity and merging
from .identity import FontIdentityResolver, GlyphReference, charstrings_compatible
from .merged import CodeAllocator, MergedFont, kind_for

# Session and output
from .embedder import MergedFontEmbedder
from .registry import FontMergeSession, MergeDecision, MergeTarget

__all__ = [
    "CFFProgram",
    "ClearOnOverflowCache",
    "CodeAllocator",
    "FontEncoding",
    "FontIdentityResolver",
    "FontKind",
    "FontMergeSession",
    "FontMetrics",
    "FontResource",
    "FontResourceLoader",
    "GlyphReference",
    "MergeDecision",
    "MergeTarget",
    "MergedFont",
    "MergedFontEmbedder",
    "TrueTypeProgram",
    "Type1Program",
    "charstrings_compatible",
    "decode",
    "decode_operand",
    "identity_text",
    "kind_for",
    "load_font_program",
    "load_font_resource",
    "split_codes",
]
