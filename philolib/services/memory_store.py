"""
Memory Store - the append-only memory stream of a single agent.

Nodes are kept in four type sequences (most recent first), four keyword
indexes (most recent first within each bucket) and an id map. Embedding
vectors are cached once per literal text and shared by every node whose
``embedding_key`` is that text.
"""

from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..models.core import MemoryNode, MemoryNodeType
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import from_iso, to_iso

logger = get_logger(__name__)

NODE_TYPES: Tuple[MemoryNodeType, ...] = ('event', 'thought', 'chat', 'source')

EmbeddingPair = Tuple[str, Optional[List[float]]]


class MemoryStoreError(Exception):
    """Custom exception for memory store errors."""
    pass


def _node_number(node_id: str) -> int:
    prefix, _, number = node_id.partition('_')
    if prefix != 'node' or not number.isdigit():
        raise MemoryStoreError(f'Malformed node id: {node_id!r}')
    return int(number)


class MemoryStore:
    """Indexed memory stream for one agent."""

    def __init__(self):
        self._id_to_node: Dict[str, MemoryNode] = {}
        self._embeddings: Dict[str, List[float]] = {}
        self._sequences: Dict[str, List[MemoryNode]] = {node_type: [] for node_type in NODE_TYPES}
        self._keyword_index: Dict[str, Dict[str, List[MemoryNode]]] = {node_type: {} for node_type in NODE_TYPES}
        self._keyword_strength: Dict[str, Dict[str, int]] = {'event': {}, 'thought': {}}

    def __len__(self) -> int:
        return len(self._id_to_node)

    # ------------------ additions ------------------

    def add_event(self, created, expiration, subject: str, predicate: str, object: str, description: str,
                  keywords: Iterable[str], poignancy: int, embedding_pair: EmbeddingPair,
                  evidence: Optional[List[str]] = None) -> MemoryNode:
        """Append an observation."""
        return self._add('event', created, expiration, subject, predicate, object, description, keywords, poignancy,
                         embedding_pair, evidence, depth=0)

    def add_thought(self, created, expiration, subject: str, predicate: str, object: str, description: str,
                    keywords: Iterable[str], poignancy: int, embedding_pair: EmbeddingPair,
                    evidence: Optional[List[str]] = None) -> MemoryNode:
        """Append a thought; depth is one more than the deepest cited node.

        Raises:
            ValueError: If evidence cites an id the store does not hold
        """
        evidence = list(evidence or [])
        depth = 1
        if evidence:
            depth = 1 + max(self._evidence_node(node_id).depth for node_id in evidence)
        return self._add('thought', created, expiration, subject, predicate, object, description, keywords, poignancy,
                         embedding_pair, evidence, depth=depth)

    def add_chat(self, created, expiration, subject: str, predicate: str, object: str, description: str,
                 keywords: Iterable[str], poignancy: int, embedding_pair: EmbeddingPair,
                 evidence: Optional[List[str]] = None) -> MemoryNode:
        """Append a conversation record."""
        return self._add('chat', created, expiration, subject, predicate, object, description, keywords, poignancy,
                         embedding_pair, evidence, depth=0)

    def add_source(self, created, source_id: str, source_passage: str, subject: str, predicate: str, object: str,
                   description: str, keywords: Iterable[str], poignancy: int,
                   embedding_pair: EmbeddingPair) -> MemoryNode:
        """Append a corpus citation. Source nodes never expire and cite nothing."""
        return self._add('source', created, None, subject, predicate, object, description, keywords, poignancy,
                         embedding_pair, [], depth=0, source_id=source_id, source_passage=source_passage)

    def _evidence_node(self, node_id: str) -> MemoryNode:
        node = self._id_to_node.get(node_id)
        if node is None:
            raise ValueError(f'Evidence references unknown node {node_id!r}')
        return node

    def _add(self, node_type: MemoryNodeType, created, expiration, subject: str, predicate: str, object: str,
             description: str, keywords: Iterable[str], poignancy: int, embedding_pair: EmbeddingPair,
             evidence: Optional[List[str]], depth: int, source_id: Optional[str] = None,
             source_passage: Optional[str] = None) -> MemoryNode:
        if isinstance(poignancy, bool) or not isinstance(poignancy, int) or not 1 <= poignancy <= 10:
            raise ValueError(f'Poignancy must be an integer in [1, 10], got {poignancy!r}')

        evidence = list(evidence or [])
        for node_id in evidence:
            self._evidence_node(node_id)

        node_count = len(self._id_to_node) + 1
        sequence = self._sequences[node_type]
        embedding_key, embedding = embedding_pair
        normalized_keywords: Set[str] = {kw.strip().lower() for kw in keywords if kw and kw.strip()}

        node = MemoryNode(id=f'node_{node_count}',
                          node_count=node_count,
                          type_count=len(sequence) + 1,
                          type=node_type,
                          depth=depth,
                          created=created,
                          expiration=expiration,
                          last_accessed=created,
                          subject=subject,
                          predicate=predicate,
                          object=object,
                          description=description,
                          embedding_key=embedding_key,
                          poignancy=poignancy,
                          keywords=normalized_keywords,
                          evidence=evidence,
                          source_id=source_id,
                          source_passage=source_passage)

        sequence.insert(0, node)
        index = self._keyword_index[node_type]
        for kw in normalized_keywords:
            index.setdefault(kw, []).insert(0, node)
        self._id_to_node[node.id] = node

        strength = self._keyword_strength.get(node_type)
        if strength is not None and f'{predicate} {object}' != 'is idle':
            for kw in normalized_keywords:
                strength[kw] = strength.get(kw, 0) + 1

        if embedding:
            self._embeddings[embedding_key] = list(embedding)

        logger.debug(f'Added {node_type} {node.id} (depth={depth}, poignancy={poignancy})')
        return node

    # ------------------ lookups ------------------

    def get_node(self, node_id: str) -> Optional[MemoryNode]:
        return self._id_to_node.get(node_id)

    def get_embedding(self, embedding_key: str) -> Optional[List[float]]:
        return self._embeddings.get(embedding_key)

    def get_all_memories(self) -> List[MemoryNode]:
        """Events and thoughts: the candidate pool for reflection-time retrieval."""
        return self._sequences['event'] + self._sequences['thought']

    def get_all_memories_with_sources(self) -> List[MemoryNode]:
        """Events, thoughts and source citations: the candidate pool for dialogue retrieval."""
        return self._sequences['event'] + self._sequences['thought'] + self._sequences['source']

    def get_recent_events(self, count: int) -> List[MemoryNode]:
        return self._sequences['event'][:max(count, 0)]

    def get_recent_thoughts(self, count: int) -> List[MemoryNode]:
        return self._sequences['thought'][:max(count, 0)]

    def get_recent(self, node_type: MemoryNodeType, count: int) -> List[MemoryNode]:
        return self._sequences[node_type][:max(count, 0)]

    def get_by_keyword(self, keyword: str, node_type: Optional[MemoryNodeType] = None) -> List[MemoryNode]:
        """Case-insensitive exact keyword match, optionally restricted to one node type."""
        kw = keyword.strip().lower()
        types = (node_type,) if node_type else NODE_TYPES
        results: List[MemoryNode] = []
        for t in types:
            results.extend(self._keyword_index[t].get(kw, []))
        return results

    def get_last_chat(self, person_name: str) -> Optional[MemoryNode]:
        chats = self._keyword_index['chat'].get(person_name.strip().lower())
        return chats[0] if chats else None

    def touch_node(self, node_id: str, time) -> None:
        node = self._id_to_node.get(node_id)
        if node is not None:
            node.last_accessed = time

    def get_summarized_latest_events(self, count: int) -> Set[Tuple[str, str, str]]:
        return {node.spo for node in self.get_recent_events(count)}

    def get_sources_for_topic(self, keywords: Iterable[str]) -> List[MemoryNode]:
        """Source nodes matching any keyword, deduplicated, in first-match order."""
        seen: Set[str] = set()
        sources: List[MemoryNode] = []
        for kw in keywords:
            for node in self._keyword_index['source'].get(kw.strip().lower(), []):
                if node.id not in seen:
                    seen.add(node.id)
                    sources.append(node)
        return sources

    def get_keyword_strength(self, keyword: str, node_type: MemoryNodeType = 'event') -> int:
        return self._keyword_strength.get(node_type, {}).get(keyword.strip().lower(), 0)

    # ------------------ persistence ------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a flat, JSON-compatible representation."""
        nodes = {}
        for node_id, node in self._id_to_node.items():
            nodes[node_id] = {
                'node_count': node.node_count,
                'type_count': node.type_count,
                'type': node.type,
                'depth': node.depth,
                'created': to_iso(node.created),
                'expiration': to_iso(node.expiration),
                'last_accessed': to_iso(node.last_accessed),
                'subject': node.subject,
                'predicate': node.predicate,
                'object': node.object,
                'description': node.description,
                'embedding_key': node.embedding_key,
                'poignancy': node.poignancy,
                'keywords': sorted(node.keywords),
                'evidence': list(node.evidence),
                'source_id': node.source_id,
                'source_passage': node.source_passage,
            }

        return {
            'nodes': nodes,
            'embeddings': {key: list(vector) for key, vector in self._embeddings.items()},
            'kw_strength_event': dict(self._keyword_strength['event']),
            'kw_strength_thought': dict(self._keyword_strength['thought']),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MemoryStore':
        """Rebuild a store by replaying additions in ascending id order.

        Raises:
            MemoryStoreError: If the saved data is malformed
        """
        if not isinstance(data, dict):
            raise MemoryStoreError(f'Saved memory must be a mapping, got {type(data).__name__}')
        for key in ('nodes', 'embeddings', 'kw_strength_event', 'kw_strength_thought'):
            if not isinstance(data.get(key), dict):
                raise MemoryStoreError(f'Saved memory is missing mapping {key!r}')

        store = cls()
        embeddings = data['embeddings']
        for key, vector in embeddings.items():
            if not isinstance(vector, list):
                raise MemoryStoreError(f'Embedding for {key!r} must be a list')
            store._embeddings[key] = list(vector)

        for node_id in sorted(data['nodes'], key=_node_number):
            raw = data['nodes'][node_id]
            try:
                store._replay(node_id, raw, embeddings)
            except MemoryStoreError:
                raise
            except (KeyError, TypeError, ValueError) as e:
                raise MemoryStoreError(f'Malformed saved node {node_id}: {e}')

        # Persisted counters are authoritative over replay
        store._keyword_strength['event'] = {k: int(v) for k, v in data['kw_strength_event'].items()}
        store._keyword_strength['thought'] = {k: int(v) for k, v in data['kw_strength_thought'].items()}

        logger.debug(f'Restored memory store with {len(store)} nodes')
        return store

    def _replay(self, node_id: str, raw: Dict[str, Any], embeddings: Dict[str, List[float]]) -> None:
        node_type = raw['type']
        if node_type not in NODE_TYPES:
            raise MemoryStoreError(f'Unknown node type {node_type!r} for {node_id}')

        expected_id = f'node_{len(self) + 1}'
        if node_id != expected_id:
            raise MemoryStoreError(f'Saved node ids are not contiguous: expected {expected_id}, found {node_id}')

        created = from_iso(raw['created'])
        common = dict(subject=raw['subject'],
                      predicate=raw['predicate'],
                      object=raw['object'],
                      description=raw['description'],
                      keywords=raw['keywords'],
                      poignancy=raw['poignancy'],
                      embedding_pair=(raw['embedding_key'], embeddings.get(raw['embedding_key'])))

        if node_type == 'source':
            node = self.add_source(created, raw.get('source_id') or '', raw.get('source_passage') or '', **common)
        else:
            add = {'event': self.add_event, 'thought': self.add_thought, 'chat': self.add_chat}[node_type]
            node = add(created, from_iso(raw.get('expiration')), evidence=raw.get('evidence') or [], **common)

        node.last_accessed = from_iso(raw.get('last_accessed')) or created
