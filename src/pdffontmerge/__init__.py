# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""pdffontmerge - Merge PDF files while consolidating shared embedded fonts."""

from importlib.metadata import PackageNotFoundError, version

from .config import MergeSettings
from .exceptions import (
    AmbiguousGlyphIdentityError,
    FontMergeError,
    IncompatibleGlyphDataError,
    MergeError,
    MissingEncodingInfoError,
    UnreadableFontProgramError,
    UnsupportedPDFError,
)
from .merger import FontMergingAssembler, MergeResult, merge_pdfs
from .rewriter import ContentStreamRewriter, PageRewrite

try:
    __version__ = version("pdffontmerge")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = [
    "__version__",
    "merge_pdfs",
    "MergeResult",
    "MergeSettings",
    "FontMergingAssembler",
    "ContentStreamRewriter",
    "PageRewrite",
    "FontMergeError",
    "MergeError",
    "UnsupportedPDFError",
    "UnreadableFontProgramError",
    "AmbiguousGlyphIdentityError",
    "IncompatibleGlyphDataError",
    "MissingEncodingInfoError",
]
