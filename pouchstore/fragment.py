"""In-memory index of the fragments held by a storage node.

The index is keyed by chunk id so that every fragment of a chunk can be found
quickly, for recoding or for answering proof-of-storage challenges. It is
rebuilt at startup from the on-disk fragments and kept in step with every
store and remove operation.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass


@dataclass
class FragmentMeta:
    """Record of one fragment on disk; holds no fragment data."""

    fragment_id: str
    chunk_id: str
    k: int
    size_bytes: int


class FragmentIndex:
    """Map of ``chunk_id`` to the fragment records stored for that chunk."""

    def __init__(self) -> None:
        self._by_chunk: dict[str, list[FragmentMeta]] = {}
        self._total_bytes = 0

    def insert(self, meta: FragmentMeta) -> None:
        """Register a new fragment."""
        self._total_bytes += meta.size_bytes
        self._by_chunk.setdefault(meta.chunk_id, []).append(meta)

    def remove(self, chunk_id: str, fragment_id: str) -> FragmentMeta | None:
        """Remove a fragment and return its record, or ``None`` if unknown.

        The last record of the chunk takes the removed one's place, and a
        chunk left with no fragments is dropped from the index.
        """
        entries = self._by_chunk.get(chunk_id)
        if entries is None:
            return None
        pos = next(
            (i for i, meta in enumerate(entries) if meta.fragment_id == fragment_id),
            None,
        )
        if pos is None:
            return None
        removed = entries[pos]
        last = entries.pop()
        if last is not removed:
            entries[pos] = last
        self._total_bytes = max(0, self._total_bytes - removed.size_bytes)
        if not entries:
            del self._by_chunk[chunk_id]
        return removed

    def fragments_for_chunk(self, chunk_id: str) -> list[FragmentMeta]:
        """All fragment records for ``chunk_id``; empty if none are held."""
        return list(self._by_chunk.get(chunk_id, ()))

    def chunk_ids(self) -> Iterator[str]:
        """Every chunk id with at least one fragment."""
        return iter(list(self._by_chunk))

    def fragment_count(self) -> int:
        """Total number of fragments across all chunks."""
        return sum(len(entries) for entries in self._by_chunk.values())

    def total_bytes(self) -> int:
        """Total bytes occupied by all indexed fragments."""
        return self._total_bytes

    def contains_chunk(self, chunk_id: str) -> bool:
        """Whether any fragment of ``chunk_id`` is indexed."""
        return chunk_id in self._by_chunk