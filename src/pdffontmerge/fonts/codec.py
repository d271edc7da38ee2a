# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Decoding of text operand codes into glyph identities.

A glyph identity is the string that stays stable for "the same glyph"
across font resources of different documents: a glyph name for simple
fonts with a dictionary encoding, a decoded character otherwise.
"""

import logging

from fontTools.agl import toUnicode

from ..exceptions import AmbiguousGlyphIdentityError, MissingEncodingInfoError
from .encodings import get_base_encoding
from .resource import FontResource

logger = logging.getLogger(__name__)


def split_codes(resource: FontResource, data: bytes) -> list[int]:
    """Splits a string operand into character codes.

    Args:
        resource: Font the operand is shown with.
        data: Raw operand bytes.

    Returns:
        List of 1-byte or 2-byte codes. A trailing odd byte of a
        2-byte font is kept as its own code.
    """
    if resource.code_width == 1:
        return list(data)
    codes = [(data[i] << 8) | data[i + 1] for i in range(0, len(data) - 1, 2)]
    if len(data) % 2:
        codes.append(data[-1])
    return codes


def identity_text(identity: str) -> str:
    """Returns the Unicode text represented by a glyph identity.

    Glyph names are resolved through the Adobe Glyph List; identities
    that are already characters are returned unchanged.
    """
    if len(identity) == 1:
        return identity
    text = toUnicode(identity)
    return text or identity


def _character(name: str | None) -> str | None:
    if name is None or name == ".notdef":
        return None
    text = toUnicode(name)
    return text or None


def decode(resource: FontResource, code: int) -> str | None:
    """Decodes a character code to a glyph identity.

    Args:
        resource: The original font resource the code belongs to.
        code: Character code (1 or 2 bytes).

    Returns:
        The glyph identity, or None if the code has no mapping.
    """
    if resource.is_cid:
        to_unicode = resource.to_unicode
        if to_unicode is None:
            return None
        return to_unicode.get(code) or None

    try:
        encoding = resource.encoding
        if encoding.is_dictionary:
            name = resource.code_to_name().get(code)
            if name is None or name == ".notdef":
                return None
            return name
        if encoding.base_name is not None:
            table = get_base_encoding(encoding.base_name) or {}
            return _character(table.get(code))
        to_unicode = resource.to_unicode
        if to_unicode is not None:
            return to_unicode.get(code) or None
        return _character(resource.code_to_name().get(code))
    except MissingEncodingInfoError as e:
        logger.debug("No encoding for code %d of %s: %s", code, resource.base_name, e)
        return None


def decode_operand(resource: FontResource, data: bytes) -> list[str]:
    """Decodes every code of a string operand.

    Args:
        resource: The original font resource.
        data: Raw operand bytes.

    Returns:
        Glyph identities, one per code.

    Raises:
        AmbiguousGlyphIdentityError: If any code cannot be decoded.
    """
    identities = []
    for code in split_codes(resource, data):
        identity = decode(resource, code)
        if identity is None:
            raise AmbiguousGlyphIdentityError(
                f"Code {code:#x} of {resource.base_name} has no glyph identity"
            )
        identities.append(identity)
    return identities
