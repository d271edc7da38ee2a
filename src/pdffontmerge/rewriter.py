# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Content stream rewriting onto merged fonts.

A page's content stream is scanned once. ``Tf`` operators switch the
active font context, which is saved and restored with the graphics
state (``q``/``Q``). Text-showing operators shown with a merged font
have their codes decoded with the original font and re-encoded with the
merged font's codes.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal

import pikepdf
from pikepdf import Name

from .exceptions import AmbiguousGlyphIdentityError, UnreadableFontProgramError
from .fonts.codec import decode_operand, identity_text
from .fonts.loader import FontResourceLoader
from .fonts.registry import FontMergeSession, MergeTarget
from .fonts.resource import FontResource
from .utils import inherited_resources, resolve_indirect

logger = logging.getLogger(__name__)

# Operators whose string operands are shown with the current font
TEXT_SHOW_OPERATORS = frozenset({"Tj", "'", '"', "TJ"})

FontTable = Mapping[str, pikepdf.Object]


@dataclass
class PageRewrite:
    """Result of rewriting one page.

    Attributes:
        content: The rewritten content stream.
        substitutions: Local font name to merged font name.
        referenced_names: Resource names used by operators passed through.
        reverted_operands: Text operands kept with their original bytes.
    """

    content: bytes
    substitutions: dict[str, str]
    referenced_names: set[str] = field(default_factory=set)
    reverted_operands: int = 0


@dataclass
class _TextContext:
    """The merged font that text operators are currently shown with."""

    local_name: str
    resource: FontResource
    target: MergeTarget
    pass_through: bool


@dataclass
class _PageState:
    context: _TextContext | None = None
    saved: list[_TextContext | None] = field(default_factory=list)
    # Local font name to its merge context; None keeps the original font
    decisions: dict[str, _TextContext | None] = field(default_factory=dict)
    claimed_keys: dict[str, str] = field(default_factory=dict)
    referenced: set[str] = field(default_factory=set)
    reverted: int = 0


def page_font_table(page_obj: pikepdf.Dictionary) -> FontTable:
    """Returns the effective /Font dictionary of a page."""
    resources = inherited_resources(page_obj)
    fonts = resources.get("/Font") if resources is not None else None
    if fonts is not None:
        fonts = resolve_indirect(fonts)
    return fonts if isinstance(fonts, pikepdf.Dictionary) else {}


def literal_string(data: bytes) -> bytes:
    """Writes bytes as a literal string, octal-escaping non-printables."""
    out = bytearray(b"(")
    for byte in data:
        if byte in b"()\\":
            out += b"\\" + bytes([byte])
        elif 0x20 <= byte < 0x7F:
            out.append(byte)
        else:
            out += b"\\%03o" % byte
    out += b")"
    return bytes(out)


def hex_string(codes: list[int]) -> bytes:
    """Writes 2-byte codes as an uppercase hex string."""
    return b"<" + "".join(f"{code:04X}" for code in codes).encode("ascii") + b">"


def format_operand(value) -> bytes:
    """Serializes a non-text operand of a text-showing operator."""
    if isinstance(value, bool):
        return b"true" if value else b"false"
    if isinstance(value, int):
        return str(value).encode("ascii")
    if isinstance(value, Decimal):
        return format(value, "f").encode("ascii")
    if isinstance(value, float):
        return (f"{value:.6f}".rstrip("0").rstrip(".") or "0").encode("ascii")
    if isinstance(value, pikepdf.String):
        return literal_string(bytes(value))
    return bytes(value.unparse())


def _unparse(instruction) -> bytes:
    return bytes(pikepdf.unparse_content_stream([instruction]))


class ContentStreamRewriter:
    """Rewrites the pages of one source document onto merged fonts.

    Args:
        session: The merge session shared by all source documents.
        loader: Font resource loader of the source document.
    """

    def __init__(self, session: FontMergeSession, loader: FontResourceLoader) -> None:
        self.session = session
        self.loader = loader

    def rewrite_page(
        self, page: pikepdf.Page | pikepdf.Dictionary, font_table: FontTable | None = None
    ) -> PageRewrite | None:
        """Rewrites a page's content stream.

        Args:
            page: Source page.
            font_table: Local font name to font dictionary. Defaults to the
                page's effective /Font resources.

        Returns:
            The rewritten page, or None if no font was substituted.
        """
        page_obj = page.obj if isinstance(page, pikepdf.Page) else page
        if font_table is None:
            font_table = page_font_table(page_obj)
        if not font_table:
            return None
        try:
            instructions = list(pikepdf.parse_content_stream(page_obj))
        except pikepdf.PdfError as e:
            logger.debug("Cannot parse content stream: %s", e)
            return None

        state = _PageState()
        chunks = [self._rewrite(state, instruction, font_table) for instruction in instructions]

        substitutions = {
            local: context.target.name
            for local, context in state.decisions.items()
            if context is not None
        }
        if not substitutions:
            return None
        return PageRewrite(
            content=b"\n".join(chunks),
            substitutions=substitutions,
            referenced_names=state.referenced,
            reverted_operands=state.reverted,
        )

    def _rewrite(self, state: _PageState, instruction, font_table: FontTable) -> bytes:
        if isinstance(instruction, pikepdf.ContentStreamInlineImage):
            return _unparse(instruction)

        operator = str(instruction.operator)
        operands = instruction.operands
        if operator == "q":
            state.saved.append(state.context)
        elif operator == "Q":
            if state.saved:
                state.context = state.saved.pop()
        elif operator == "Tf":
            return self._select_font(state, instruction, font_table)
        elif operator in TEXT_SHOW_OPERATORS:
            return self._show_text(state, operator, instruction)
        else:
            for operand in operands:
                if isinstance(operand, Name):
                    state.referenced.add(str(operand))
        return _unparse(instruction)

    # -- Font selection --

    def _select_font(self, state: _PageState, instruction, font_table: FontTable) -> bytes:
        operands = instruction.operands
        if len(operands) < 2 or not isinstance(operands[0], Name):
            state.context = None
            return _unparse(instruction)

        local = str(operands[0])
        if local not in state.decisions:
            state.decisions[local] = self._resolve(state, local, font_table)
        context = state.decisions[local]
        state.context = context
        if context is None:
            return _unparse(instruction)
        return _unparse(
            pikepdf.ContentStreamInstruction(
                [Name(f"/{context.target.name}"), operands[1]], instruction.operator
            )
        )

    def _resolve(
        self, state: _PageState, local: str, font_table: FontTable
    ) -> _TextContext | None:
        font_obj = font_table.get(local)
        if font_obj is None:
            return None
        resource = self.loader.load(font_obj)
        if resource is None:
            return None
        try:
            key = self.session.resolver.canonical_key(resource)
            if key is None:
                logger.debug("%s (%s) cannot be merged", local, resource.base_name)
                return None
            claimed = state.claimed_keys.get(key)
            if claimed is not None:
                logger.debug("%s: key %s already used by %s on this page", local, key, claimed)
                return None
            target = self.session.merge_or_create_font(key, resource)
        except UnreadableFontProgramError as e:
            logger.debug("%s kept standalone: %s", local, e)
            return None
        state.claimed_keys[key] = local
        return _TextContext(
            local_name=local,
            resource=resource,
            target=target,
            pass_through=target.font.can_pass_through(resource),
        )

    # -- Text showing --

    def _show_text(self, state: _PageState, operator: str, instruction) -> bytes:
        context = state.context
        if context is None or context.pass_through:
            return _unparse(instruction)

        operands = instruction.operands
        if operator == "TJ":
            if not operands or not isinstance(operands[0], pikepdf.Array):
                return _unparse(instruction)
            parts = [
                self._encode(state, context, bytes(item))
                if isinstance(item, pikepdf.String)
                else format_operand(item)
                for item in operands[0]
            ]
            return b"[" + b" ".join(parts) + b"] TJ"

        parts = [
            self._encode(state, context, bytes(operand))
            if isinstance(operand, pikepdf.String)
            else format_operand(operand)
            for operand in operands
        ]
        parts.append(operator.encode("latin-1"))
        return b" ".join(parts)

    def _encode(self, state: _PageState, context: _TextContext, data: bytes) -> bytes:
        """Re-encodes one string operand, falling back to its original bytes."""
        font = context.target.font
        try:
            codes = [
                self._merged_code(context.target, identity)
                for identity in decode_operand(context.resource, data)
            ]
        except AmbiguousGlyphIdentityError as e:
            logger.debug("%s: %s, original bytes kept", context.local_name, e)
            state.reverted += 1
            return literal_string(data)
        if font.kind.is_cid:
            return hex_string(codes)
        return literal_string(bytes(codes))

    @staticmethod
    def _merged_code(target: MergeTarget, identity: str) -> int:
        code = target.font.lookup(identity)
        if code is not None:
            return code
        code = target.font.map_char(identity_text(identity))
        if code:
            return code
        raise AmbiguousGlyphIdentityError(f"{identity!r} is not in {target.name}")
