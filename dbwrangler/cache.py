"""Per-manager caches for catalog lookups.

Catalog queries (table listings, serial sequence discovery) are slow compared
with the statements they feed, and the schema rarely changes between calls in
a test run. Values are therefore loaded once and kept until the owner calls
``invalidate()``. Nothing invalidates them automatically: callers that change
the schema after warming the cache (for example by running fresh migrations)
must invalidate it themselves.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

LOG = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class IdSequence:
    """Identity sequence backing the ``id`` column of a table."""

    table: str
    sequence: str
    min_value: int


class CachedValue(Generic[T]):
    """Lazily loaded value shared by concurrent callers."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._lock = asyncio.Lock()
        self._value: T | None = None
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def get(self, loader: Callable[[], Awaitable[T]]) -> T:
        """Return the cached value, running ``loader`` on first use."""

        async with self._lock:
            if not self._loaded:
                value = await loader()
                self._value = value
                self._loaded = True
                LOG.debug("Cached catalog lookup", extra={"cache": self._name})
            return self._value  # type: ignore[return-value]

    def invalidate(self) -> None:
        self._value = None
        self._loaded = False


class MetadataCache:
    """Table names and id sequence descriptors for one manager instance."""

    def __init__(self) -> None:
        self.table_names: CachedValue[tuple[str, ...]] = CachedValue("table_names")
        self.id_sequences: CachedValue[tuple[IdSequence, ...]] = CachedValue("id_sequences")

    def invalidate(self) -> None:
        """Forget every cached lookup; the next operation queries the catalog again."""

        self.table_names.invalidate()
        self.id_sequences.invalidate()


__all__ = ["CachedValue", "IdSequence", "MetadataCache"]
