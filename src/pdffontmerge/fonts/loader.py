# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Loading and caching of source font resources."""

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

import pikepdf

from ..config import DEFAULT_FONT_CACHE_CAPACITY
from ..utils import obj_key, resolve_indirect
from .resource import FontResource

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")


class ClearOnOverflowCache(Generic[K, V]):
    """Bounded cache that empties itself when full.

    Storing a new entry while the cache already holds ``capacity``
    entries clears every entry first. This is not an LRU: an overflow
    costs a burst of misses in exchange for constant bookkeeping.
    """

    def __init__(self, capacity: int = DEFAULT_FONT_CACHE_CAPACITY) -> None:
        """Initializes the cache.

        Args:
            capacity: Maximum number of entries before the cache is cleared.
        """
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._entries: dict[K, V] = {}
        self.clears = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: K) -> bool:
        return key in self._entries

    def get(self, key: K) -> V | None:
        return self._entries.get(key)

    def put(self, key: K, value: V) -> None:
        if key not in self._entries and len(self._entries) >= self.capacity:
            logger.debug("Font cache full (%d entries), clearing", len(self._entries))
            self._entries.clear()
            self.clears += 1
        self._entries[key] = value

    def get_or_load(self, key: K, loader: Callable[[], V]) -> V:
        value = self._entries.get(key)
        if value is None:
            value = loader()
            self.put(key, value)
        return value

    def clear(self) -> None:
        self._entries.clear()


def load_font_resource(
    font_obj: pikepdf.Object, origin: tuple[int, tuple[int, int]] | None = None
) -> FontResource | None:
    """Wraps a font dictionary as a FontResource.

    Returns:
        The FontResource, or None if the object is not a dictionary.
    """
    font_obj = resolve_indirect(font_obj)
    if not isinstance(font_obj, pikepdf.Dictionary):
        return None
    return FontResource(font_obj, origin)


class FontResourceLoader:
    """Resolves font dictionaries of one source document to FontResources.

    Indirect font dictionaries are memoized by object number in a
    ClearOnOverflowCache, so a font used on many pages is parsed once
    as long as it stays cached.
    """

    def __init__(
        self,
        document_index: int = 0,
        capacity: int = DEFAULT_FONT_CACHE_CAPACITY,
    ) -> None:
        self.document_index = document_index
        self.cache: ClearOnOverflowCache[tuple[int, int], FontResource] = (
            ClearOnOverflowCache(capacity)
        )

    def load(self, font_obj: pikepdf.Object) -> FontResource | None:
        """Returns the FontResource for a font dictionary.

        Args:
            font_obj: Font dictionary (direct or indirect).

        Returns:
            The FontResource, or None if the object is not a dictionary.
        """
        font_obj = resolve_indirect(font_obj)
        if not isinstance(font_obj, pikepdf.Dictionary):
            return None
        key = obj_key(font_obj)
        if key is None:
            return load_font_resource(font_obj)
        return self.cache.get_or_load(
            key, lambda: load_font_resource(font_obj, (self.document_index, key))
        )
