"""
Memory Feed - a capped, display-only view of an agent's memories.

The memory store remains the system of record for reasoning; this feed is
derived from it (or fed directly by the simulation) and only ever shown.
"""

import uuid
from typing import Dict, List, Optional

from ..models.core import MemoryEntry
from ..utils.timestamp_utils import utc_now
from .memory_store import NODE_TYPES, MemoryStore

DEFAULT_MAX_ENTRIES = 50

_KIND_BY_NODE_TYPE: Dict[str, str] = {
    'event': 'observation',
    'thought': 'thought',
    'chat': 'dialogue',
    'source': 'citation',
}


class MemoryFeed:
    """Bounded list of display entries kept in timestamp order.

    When over capacity the least important entry is evicted, the oldest one
    among equally important entries.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError(f'max_entries must be positive, got {max_entries}')
        self.max_entries = max_entries
        self._entries: List[MemoryEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[MemoryEntry]:
        return list(self._entries)

    def push(self, entry: MemoryEntry) -> None:
        self._entries.append(entry)
        if len(self._entries) > self.max_entries:
            kept = sorted(self._entries, key=lambda e: (e.importance, e.timestamp), reverse=True)[:self.max_entries]
            self._entries = kept
        self._entries.sort(key=lambda e: e.timestamp)

    def add(self, kind: str, content: str, importance: int = 5, context: Optional[str] = None,
            timestamp=None) -> MemoryEntry:
        """Create and push an entry."""
        entry = MemoryEntry(id=f'mem_{uuid.uuid4().hex[:12]}',
                            kind=kind,
                            content=content,
                            timestamp=timestamp or utc_now(),
                            importance=importance,
                            context=context)
        self.push(entry)
        return entry

    def recent(self, count: int = 3) -> List[MemoryEntry]:
        return self._entries[-count:] if count > 0 else []


def build_memory_feed(store: MemoryStore, max_entries: int = DEFAULT_MAX_ENTRIES) -> List[MemoryEntry]:
    """Rebuild the display feed from the most recent node descriptions in a store."""
    feed = MemoryFeed(max_entries)
    for node_type in NODE_TYPES:
        for node in store.get_recent(node_type, max_entries):
            feed.push(
                MemoryEntry(id=node.id,
                            kind=_KIND_BY_NODE_TYPE[node_type],
                            content=node.description,
                            timestamp=node.created,
                            importance=node.poignancy,
                            context=node.source_id))
    return feed.entries
