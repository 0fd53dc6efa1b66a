"""
Retrieval Engine - ranks memories by recency, relevance and importance.

Each signal is min-max normalized independently, combined with the agent's
weights, and the top results are touched so that frequently retrieved
memories stay recent.
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from ..models.core import AgentScratch, MemoryNode, ScoredMemoryNode
from ..models.gateways import EmbeddingModel
from ..utils.config import RetrievalConfig
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import utc_now
from .memory_store import MemoryStore

logger = get_logger(__name__)

T = TypeVar('T')


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0 when either has zero magnitude.

    Raises:
        ValueError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise ValueError(f'Vectors must have same length ({len(a)} != {len(b)})')

    dot = sum(x * y for x, y in zip(a, b))
    magnitude = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if magnitude == 0:
        return 0.0
    return dot / magnitude


def normalize_scores(scores: Dict[str, float], target_min: float = 0.0, target_max: float = 1.0) -> Dict[str, float]:
    """Min-max normalize values into [target_min, target_max].

    When every value is equal each key gets the midpoint of the target range.
    """
    if not scores:
        return {}

    min_val = min(scores.values())
    max_val = max(scores.values())
    spread = max_val - min_val

    if spread == 0:
        midpoint = (target_min + target_max) / 2
        return {key: midpoint for key in scores}

    return {key: (val - min_val) * (target_max - target_min) / spread + target_min for key, val in scores.items()}


def config_for_agent(scratch: AgentScratch, base: Optional[RetrievalConfig] = None,
                     max_results: Optional[int] = None) -> RetrievalConfig:
    """Retrieval settings using the agent's own weights and decay."""
    base = base or RetrievalConfig()
    return replace(base,
                   recency_weight=scratch.recency_w,
                   relevance_weight=scratch.relevance_w,
                   importance_weight=scratch.importance_w,
                   recency_decay=scratch.recency_decay,
                   max_results=base.max_results if max_results is None else max_results)


def top_n(items: Dict[str, T], n: int, get_value: Callable[[T], float]) -> Dict[str, T]:
    ranked = sorted(items.items(), key=lambda item: get_value(item[1]), reverse=True)
    return dict(ranked[:n])


def extract_recency(nodes: Iterable[MemoryNode], recency_decay: float) -> Dict[str, float]:
    """Score decay ** rank by last access, rank 0 being the most recently accessed node."""
    ranked = sorted(nodes, key=lambda node: node.last_accessed, reverse=True)
    return {node.id: recency_decay**rank for rank, node in enumerate(ranked)}


def extract_importance(nodes: Iterable[MemoryNode]) -> Dict[str, float]:
    return {node.id: float(node.poignancy) for node in nodes}


def extract_relevance(nodes: Iterable[MemoryNode], focal_embedding: Optional[Sequence[float]],
                      store: MemoryStore) -> Dict[str, float]:
    """Cosine similarity to the focal embedding; nodes without a cached vector score 0."""
    scores = {}
    for node in nodes:
        node_embedding = store.get_embedding(node.embedding_key)
        if focal_embedding and node_embedding:
            scores[node.id] = cosine_similarity(node_embedding, focal_embedding)
        else:
            scores[node.id] = 0.0
    return scores


async def _embed_focal_point(embedder: EmbeddingModel, focal_point: str) -> Optional[List[float]]:
    try:
        return await embedder.embed(focal_point)
    except Exception as e:
        logger.error(f'Embedding failed for focal point {focal_point[:50]!r}, relevance disabled: {e}')
        return None


def score_nodes(nodes: List[MemoryNode], focal_embedding: Optional[Sequence[float]], store: MemoryStore,
                config: RetrievalConfig) -> Dict[str, ScoredMemoryNode]:
    """Score candidates against one focal embedding, keyed by node id."""
    recency = normalize_scores(extract_recency(nodes, config.recency_decay))
    importance = normalize_scores(extract_importance(nodes))
    relevance = normalize_scores(extract_relevance(nodes, focal_embedding, store))

    scored = {}
    for node in nodes:
        total = (config.recency_weight * recency[node.id] + config.relevance_weight * relevance[node.id] +
                 config.importance_weight * importance[node.id])
        scored[node.id] = ScoredMemoryNode(node=node,
                                           recency_score=recency[node.id],
                                           relevance_score=relevance[node.id],
                                           importance_score=importance[node.id],
                                           total_score=total)
    return scored


async def retrieve(store: MemoryStore,
                   focal_points: List[str],
                   embedder: EmbeddingModel,
                   config: Optional[RetrievalConfig] = None,
                   now: Optional[datetime] = None,
                   include_sources: bool = True) -> Dict[str, List[ScoredMemoryNode]]:
    """Retrieve the highest scoring memories for each focal point.

    Args:
        store: The agent's memory store
        focal_points: Questions, topics or names driving one retrieval pass each
        embedder: Embedding gateway for the focal points
        config: Weights, decay and result limit (defaults when None)
        now: Access time stamped on every returned node (wall clock when None)
        include_sources: Include source citations in the candidate pool

    Returns:
        Mapping of focal point to scored nodes, best first

    Raises:
        ValueError: If recency_decay is outside (0, 1)
    """
    config = config or RetrievalConfig()
    if not 0 < config.recency_decay < 1:
        raise ValueError(f'recency_decay must be in (0, 1), got {config.recency_decay}')

    results: Dict[str, List[ScoredMemoryNode]] = {}

    for focal_point in focal_points:
        pool = store.get_all_memories_with_sources() if include_sources else store.get_all_memories()
        candidates = [node for node in pool if not node.is_idle]

        if not candidates:
            results[focal_point] = []
            continue

        focal_embedding = await _embed_focal_point(embedder, focal_point)
        scores = score_nodes(candidates, focal_embedding, store, config)
        top_nodes = list(top_n(scores, config.max_results, lambda s: s.total_score).values())

        accessed = now or utc_now()
        for scored in top_nodes:
            store.touch_node(scored.node.id, accessed)

        logger.debug(f'Retrieved {len(top_nodes)}/{len(candidates)} memories for {focal_point[:50]!r}')
        results[focal_point] = top_nodes

    return results


@dataclass
class DialogueRetrieval:
    """Dialogue-time retrieval partitioned by purpose."""
    topical: List[ScoredMemoryNode]
    relationship: List[ScoredMemoryNode]
    sources: List[ScoredMemoryNode]


async def retrieve_for_dialogue(store: MemoryStore,
                                topic: str,
                                other_participant: str,
                                embedder: EmbeddingModel,
                                config: Optional[RetrievalConfig] = None,
                                now: Optional[datetime] = None) -> DialogueRetrieval:
    """Retrieve topical, relationship and citation memories for a conversation."""
    config = config or RetrievalConfig()

    topical = (await retrieve(store, [topic], embedder, config, now=now)).get(topic, [])
    relationship_config = replace(config, max_results=config.relationship_max_results)
    relationship = (await retrieve(store, [other_participant], embedder, relationship_config, now=now)).get(
        other_participant, [])

    return DialogueRetrieval(topical=[s for s in topical if s.node.type != 'source'],
                             relationship=relationship,
                             sources=[s for s in topical if s.node.type == 'source'])


def retrieve_by_keywords(store: MemoryStore, subject: str, predicate: str,
                         object: str) -> Tuple[List[MemoryNode], List[MemoryNode]]:
    """Keyword-only lookup of events and thoughts for a triple, no embeddings needed.

    Returns:
        Tuple of (events, thoughts), each deduplicated by node id
    """
    events: Dict[str, MemoryNode] = {}
    thoughts: Dict[str, MemoryNode] = {}

    for kw in (subject, predicate, object):
        if not kw:
            continue
        for node in store.get_by_keyword(kw, 'event'):
            events.setdefault(node.id, node)
        for node in store.get_by_keyword(kw, 'thought'):
            thoughts.setdefault(node.id, node)

    return list(events.values()), list(thoughts.values())
