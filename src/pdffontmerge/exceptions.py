# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Custom exceptions for pdffontmerge."""


class FontMergeError(Exception):
    """Base exception for all pdffontmerge errors."""


class MergeError(FontMergeError):
    """Error while assembling the output document."""


class UnsupportedPDFError(FontMergeError):
    """PDF format is not supported."""


class UnreadableFontProgramError(FontMergeError):
    """Embedded font program is malformed or of an unsupported subtype."""


class AmbiguousGlyphIdentityError(FontMergeError):
    """A character code cannot be decoded to a glyph identity."""


class IncompatibleGlyphDataError(FontMergeError):
    """Two font resources share a name but not their glyph outlines."""


class MissingEncodingInfoError(FontMergeError):
    """Encoding information of a font resource is missing or malformed."""
