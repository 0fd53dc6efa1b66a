"""
Reflection Service - synthesizes higher-order thoughts from accumulated memories.

One cycle: focal questions from recent experience, evidence retrieval per
question, insights citing that evidence by position, and a thought node per
insight. Every model call degrades to a documented fallback instead of
aborting the cycle.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from ..models.core import IDLE_MARKER, AgentScratch, MemoryNode, PhilosopherIdentity, ScoredMemoryNode
from ..models.gateways import EmbeddingModel, LanguageModel
from ..utils.config import ReflectionConfig, RetrievalConfig
from ..utils.logging_config import get_logger
from ..utils.text_parsing import clean_response, parse_index_list, parse_numbered_list, parse_rating, parse_triple
from ..utils.timestamp_utils import days_after
from .memory_store import MemoryStore
from .retrieval import retrieve

logger = get_logger(__name__)

THOUGHT_EXPIRATION_DAYS = 30

_INSIGHT_SPLIT = re.compile(r'INSIGHT\s*:', re.IGNORECASE)
_INSIGHT_TEXT = re.compile(r'^(.*?)(?=GROUNDING\s*:|EVIDENCE\s*:|$)', re.IGNORECASE | re.DOTALL)
_GROUNDING = re.compile(r'GROUNDING\s*:\s*(.*?)(?=EVIDENCE\s*:|$)', re.IGNORECASE | re.DOTALL)
_EVIDENCE = re.compile(r'EVIDENCE\s*:\s*([^\n]*)', re.IGNORECASE)
_TRAILING_NUMBER = re.compile(r'\s*\d+\s*[.)]\s*$')

_KIND_LABELS = {
    'event': 'observation or action',
    'thought': 'thought or reflection',
    'chat': 'conversation',
    'source': 'source citation',
}


@dataclass
class InsightWithEvidence:
    """An insight and the ids of the memory nodes it cites."""
    insight: str
    grounding: Optional[str] = None
    evidence_node_ids: List[str] = field(default_factory=list)


def should_reflect(scratch: AgentScratch) -> bool:
    """True once the importance budget has been spent."""
    return scratch.importance_trigger_curr <= 0


def update_reflection_counter(scratch: AgentScratch, poignancy: int) -> None:
    scratch.importance_trigger_curr -= poignancy
    scratch.importance_ele_n += 1


def reset_reflection_counter(scratch: AgentScratch) -> None:
    scratch.importance_trigger_curr = scratch.importance_trigger_max
    scratch.importance_ele_n = 0


def _clean_block_text(text: str) -> str:
    return ' '.join(_TRAILING_NUMBER.sub('', text).split())


def parse_insight_blocks(response: str) -> List[Tuple[str, Optional[str], str]]:
    """Split an INSIGHT/GROUNDING/EVIDENCE response into raw blocks.

    Returns:
        List of (insight, grounding, evidence_text); blocks without insight text are dropped
    """
    blocks = []
    for chunk in _INSIGHT_SPLIT.split(clean_response(response or ''))[1:]:
        insight = _clean_block_text(_INSIGHT_TEXT.match(chunk).group(1))
        if not insight:
            continue
        grounding_match = _GROUNDING.search(chunk)
        grounding = _clean_block_text(grounding_match.group(1)) if grounding_match else None
        evidence_match = _EVIDENCE.search(chunk)
        blocks.append((insight, grounding or None, evidence_match.group(1) if evidence_match else ''))
    return blocks


class ReflectionService:
    """Turns an agent's recent memories into cited thought nodes."""

    def __init__(self,
                 llm: LanguageModel,
                 embedder: EmbeddingModel,
                 config: Optional[ReflectionConfig] = None,
                 thought_expiration_days: int = THOUGHT_EXPIRATION_DAYS):
        """
        Initialize the reflection service.

        Args:
            llm: Language-model gateway
            embedder: Embedding gateway
            config: Focal point and insight limits
            thought_expiration_days: Lifetime of generated thoughts
        """
        self.llm = llm
        self.embedder = embedder
        self.config = config or ReflectionConfig()
        self.thought_expiration_days = thought_expiration_days

    async def _complete(self, system_prompt: str, user_content: str) -> str:
        try:
            return (await self.llm.complete(system_prompt, user_content)).strip()
        except Exception as e:
            logger.error(f'Language model call failed, using empty response: {e}')
            return ''

    async def _embed(self, text: str) -> Optional[List[float]]:
        try:
            return await self.embedder.embed(text)
        except Exception as e:
            logger.error(f'Embedding failed for {text[:50]!r}, storing node without vector: {e}')
            return None

    @staticmethod
    def _persona(identity: PhilosopherIdentity) -> str:
        return (f'You are simulating the inner life of {identity.name} ({identity.birth_year}-{identity.death_year}), '
                f'a {identity.archetype_label} of the {identity.era} period. '
                f'Intellectual style: {identity.intellectual_style}')

    async def generate_focal_points(self, identity: PhilosopherIdentity, scratch: AgentScratch,
                                    store: MemoryStore) -> List[str]:
        """Ask for the most salient questions raised by memories added since the last reset.

        Returns:
            Up to max_focal_points questions; fewer when the model returns fewer
        """
        recent = store.get_recent_events(scratch.importance_ele_n) + store.get_recent_thoughts(scratch.importance_ele_n)
        if not recent:
            logger.debug(f'No recent memories for {identity.name}, skipping focal points')
            return []

        statements = '\n'.join(node.embedding_key for node in recent)
        limit = self.config.max_focal_points
        user_content = f"""{identity.name} has been observing and thinking about the following:

{statements}

Given only the information above, what are the {limit} most salient high-level questions that {identity.name} can answer about their recent observations and thoughts?
Respond with a numbered list, one question per line."""

        response = await self._complete(self._persona(identity), user_content)
        focal_points = parse_numbered_list(response, limit=limit)
        if not focal_points:
            logger.warning(f'No focal points parsed for {identity.name}')
        return focal_points

    async def generate_insights(self, identity: PhilosopherIdentity,
                                scored_nodes: Sequence[ScoredMemoryNode]) -> List[InsightWithEvidence]:
        """Ask for insights over a numbered evidence list and map cited indices to node ids.

        The numbered list sent to the model and the list indices are resolved
        against are the same object.
        """
        if not scored_nodes:
            return []

        evidence = list(scored_nodes)
        statements = '\n'.join(f'{i}. {scored.node.embedding_key}' for i, scored in enumerate(evidence))
        user_content = f"""{identity.name}, a {identity.archetype_label} of the {identity.era} period, has been contemplating the following:

{statements}

As {identity.name}, what philosophical insights arise from these contemplations? Consider:
- How do these observations relate to your core beliefs?
- What tensions or contradictions emerge?
- What synthesis might resolve apparent conflicts?
- How might your sources (texts you have written or studied) illuminate these matters?

Provide 3-{self.config.max_insights} insights, each grounded in {identity.name}'s intellectual tradition.

Format each as:
INSIGHT: [the philosophical insight]
GROUNDING: [how this connects to {identity.name}'s documented thought]
EVIDENCE: [comma-separated list of statement numbers]"""

        response = await self._complete(self._persona(identity), user_content)

        insights = []
        for insight, grounding, evidence_text in parse_insight_blocks(response):
            indices = parse_index_list(evidence_text, len(evidence))
            insights.append(
                InsightWithEvidence(insight=insight,
                                    grounding=grounding,
                                    evidence_node_ids=[evidence[i].node.id for i in indices]))

        if not insights:
            logger.warning(f'No insights parsed for {identity.name}')
        return insights[:self.config.max_insights]

    async def generate_triple(self, description: str) -> Tuple[str, str, str]:
        """Summarize a statement as (subject, predicate, object), falling back per field."""
        system_prompt = 'You convert statements into simple subject-predicate-object triples.'
        user_content = f"""Convert this statement into a simple Subject-Predicate-Object triple:

Statement: "{description}"

Respond in this exact format:
Subject: [subject]
Predicate: [predicate/verb]
Object: [object]"""

        response = await self._complete(system_prompt, user_content)
        return parse_triple(response, description)

    async def generate_poignancy(self, identity: PhilosopherIdentity, description: str, kind: str = 'event') -> int:
        """Rate importance 1-10; idle descriptions score 1 without a model call."""
        if IDLE_MARKER in description:
            return 1

        label = _KIND_LABELS.get(kind, 'observation or action')
        user_content = f"""On the scale of 1 to 10, where 1 is purely mundane (e.g., walking around) and 10 is extremely profound (e.g., a major philosophical breakthrough), rate the likely importance of the following {label} to {identity.name}, a {identity.archetype_label}:

"{description}"

Rating (respond with just a number 1-10):"""

        response = await self._complete(self._persona(identity), user_content)
        return parse_rating(response)

    async def _write_thought(self, identity: PhilosopherIdentity, scratch: AgentScratch, store: MemoryStore,
                             description: str, evidence: List[str]) -> MemoryNode:
        subject, predicate, object = await self.generate_triple(description)
        poignancy = await self.generate_poignancy(identity, description, 'thought')
        embedding = await self._embed(description)

        created = scratch.curr_time
        return store.add_thought(created,
                                 days_after(created, self.thought_expiration_days),
                                 subject,
                                 predicate,
                                 object,
                                 description, {subject, predicate, object},
                                 poignancy, (description, embedding),
                                 evidence=evidence)

    async def run_reflection(self,
                             identity: PhilosopherIdentity,
                             scratch: AgentScratch,
                             store: MemoryStore,
                             retrieval_config: Optional[RetrievalConfig] = None) -> List[MemoryNode]:
        """Run one full reflection cycle.

        Evidence for every focal point is retrieved before any thought is
        written, so new thoughts only cite nodes that predate the cycle.

        Args:
            identity: The reflecting philosopher
            scratch: Scratch state supplying the time and element count
            store: The agent's memory store
            retrieval_config: Weights for evidence retrieval

        Returns:
            Newly created thought nodes
        """
        focal_points = await self.generate_focal_points(identity, scratch, store)
        if not focal_points:
            return []

        retrieved = await retrieve(store,
                                   focal_points,
                                   self.embedder,
                                   retrieval_config,
                                   now=scratch.curr_time,
                                   include_sources=False)

        new_thoughts = []
        for focal_point, scored_nodes in retrieved.items():
            if not scored_nodes:
                continue
            for insight in await self.generate_insights(identity, scored_nodes):
                node = await self._write_thought(identity, scratch, store, insight.insight, insight.evidence_node_ids)
                new_thoughts.append(node)

        logger.info(f'{identity.name} reflected on {len(focal_points)} focal points, {len(new_thoughts)} new thoughts')
        return new_thoughts

    async def reflect_on_conversation(self, identity: PhilosopherIdentity, scratch: AgentScratch, store: MemoryStore,
                                      turns: Sequence[Tuple[str, str]],
                                      other_participant: str) -> Tuple[MemoryNode, MemoryNode]:
        """Write a planning thought and a one-sentence memo about a finished conversation.

        Both cite the most recent chat node with the other participant, when one exists.

        Returns:
            Tuple of (planning_thought, memo)
        """
        transcript = '\n'.join(f'{speaker}: {utterance}' for speaker, utterance in turns)
        last_chat = store.get_last_chat(other_participant)
        evidence = [last_chat.id] if last_chat else []
        persona = self._persona(identity)

        planning = await self._complete(
            persona, f"""{identity.name} just had the following conversation:

{transcript}

What is {identity.name}'s main takeaway from this conversation that will influence their future thinking and actions?

Provide a single planning thought that captures {identity.name}'s intellectual response to the exchange.""")
        planning_thought = await self._write_thought(identity, scratch, store,
                                                     f"For {identity.name}'s planning: {planning}", evidence)

        memo = await self._complete(
            persona, f"""{identity.name} just had the following conversation:

{transcript}

Summarize this conversation from {identity.name}'s perspective in a single sentence, capturing the key philosophical points discussed and any agreements or disagreements.""")
        memo_thought = await self._write_thought(identity, scratch, store, f'{identity.name} {memo}', evidence)

        return planning_thought, memo_thought
