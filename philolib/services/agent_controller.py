"""
Agent Controller - the stateful facade a simulation loop drives for one philosopher.

The controller owns one scratch state and one memory store. Callers must
serialize operations against the same controller; distinct controllers share
no state and may be driven concurrently.
"""

from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..models.core import AgentScratch, MemoryEntry, MemoryNode, PhilosopherAgent, PhilosopherIdentity, ScoredMemoryNode
from ..models.gateways import EmbeddingModel, LanguageModel
from ..utils.config import AppConfig, config as default_config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import days_after, from_iso, to_iso, utc_now
from .memory_feed import build_memory_feed
from .memory_store import MemoryStore
from .reflection import ReflectionService, reset_reflection_counter, should_reflect, update_reflection_counter
from .retrieval import DialogueRetrieval, config_for_agent, retrieve, retrieve_for_dialogue

logger = get_logger(__name__)

CORE_BELIEF_POIGNANCY = 9

PHILOSOPHER_IDENTITIES: Dict[str, PhilosopherIdentity] = {
    'drebbel':
        PhilosopherIdentity(
            name='Cornelius Drebbel',
            archetype='alchemist',
            era='1572-1633',
            birth_year=1572,
            death_year=1633,
            author_id='drebbel',
            key_works=['on-the-fifth-essence'],
            core_beliefs=[
                'The quinta essentia pervades all matter',
                'Nature can be understood through practical experiment',
                'The philosopher must be both thinker and craftsman',
                'Fire and air are the active principles of transformation',
            ],
            intellectual_style=('Practical and inventive, preferring demonstration to disputation. '
                                'Speaks from experience rather than authority.'),
            known_associations=['Rudolf II', 'James I', 'Constantijn Huygens']),
    'ficino':
        PhilosopherIdentity(
            name='Marsilio Ficino',
            archetype='hermetic_philosopher',
            era='1433-1499',
            birth_year=1433,
            death_year=1499,
            author_id='ficino',
            key_works=['de-mysteriis', 'theologia-platonica'],
            core_beliefs=[
                'The soul is immortal and can ascend to divine union',
                'Platonic philosophy and Christian theology are harmonious',
                'Love is the cosmic force that binds all things',
                'Ancient wisdom (prisca theologia) flows from Hermes to Plato to Christ',
            ],
            intellectual_style=('Contemplative and syncretic, weaving together Plato, Plotinus, and the Hermetic texts. '
                                'Seeks harmony between traditions.'),
            known_associations=["Cosimo de' Medici", 'Pico della Mirandola', "Lorenzo de' Medici"]),
    'boehme':
        PhilosopherIdentity(
            name='Jacob Böhme',
            archetype='mystic',
            era='1575-1624',
            birth_year=1575,
            death_year=1624,
            author_id='boehme',
            key_works=['aurora'],
            core_beliefs=[
                'God reveals himself through nature as through a mirror',
                'Opposition and strife are necessary for manifestation',
                'The Ungrund (abyss) is the source of all being',
                'Divine wisdom (Sophia) mediates between God and creation',
            ],
            intellectual_style=('Visionary and paradoxical, speaking in dense symbolic language. '
                                'Draws from direct spiritual experience.'),
            known_associations=['Karl von Ender', 'Balthasar Walther']),
    'paracelsus':
        PhilosopherIdentity(
            name='Paracelsus',
            archetype='physician_sage',
            era='1493-1541',
            birth_year=1493,
            death_year=1541,
            author_id='paracelsus',
            key_works=['archidoxis'],
            core_beliefs=[
                'The physician must learn from nature, not ancient books',
                'Like cures like - the doctrine of signatures',
                'Three principles: salt, sulfur, and mercury',
                'The microcosm (human) reflects the macrocosm (universe)',
            ],
            intellectual_style=('Polemical and iconoclastic, challenging established authorities. '
                                'Combines empirical observation with theosophical speculation.'),
            known_associations=['Oporinus', 'Erasmus', 'Frobenius']),
    'maier':
        PhilosopherIdentity(
            name='Michael Maier',
            archetype='rosicrucian',
            era='1568-1622',
            birth_year=1568,
            death_year=1622,
            author_id='maier',
            key_works=['silentium-post-clamores', 'atalanta-fugiens'],
            core_beliefs=[
                'Alchemy is both physical and spiritual transformation',
                'Hidden knowledge can be encoded in emblems and music',
                'The Rosicrucian brotherhood represents true philosophy',
                'Egypt is the source of hermetic wisdom',
            ],
            intellectual_style=('Allegorical and artistic, expressing ideas through emblem, myth, and music. '
                                'Defends the hermetic tradition against critics.'),
            known_associations=['Rudolf II', 'Robert Fludd', 'Moritz of Hesse-Kassel']),
}


def _default_scratch(initial_time: datetime, app_config: AppConfig) -> AgentScratch:
    trigger_max = app_config.reflection.importance_trigger_max
    return AgentScratch(curr_time=initial_time,
                        importance_trigger_max=trigger_max,
                        importance_trigger_curr=trigger_max,
                        recency_w=app_config.retrieval.recency_weight,
                        relevance_w=app_config.retrieval.relevance_weight,
                        importance_w=app_config.retrieval.importance_weight,
                        recency_decay=app_config.retrieval.recency_decay)


def create_philosopher_agent(agent_id: str,
                             identity_key: str,
                             sprite_character_id: str = '',
                             initial_time: Optional[datetime] = None,
                             app_config: Optional[AppConfig] = None) -> Tuple[PhilosopherAgent, MemoryStore]:
    """Create a fresh agent with an empty memory store.

    Raises:
        ValueError: If identity_key names no built-in philosopher
    """
    identity = PHILOSOPHER_IDENTITIES.get(identity_key)
    if identity is None:
        raise ValueError(f'Unknown philosopher {identity_key!r}, expected one of {sorted(PHILOSOPHER_IDENTITIES)}')

    agent = PhilosopherAgent(id=agent_id,
                             identity=identity,
                             scratch=_default_scratch(initial_time or utc_now(), app_config or default_config),
                             sprite_character_id=sprite_character_id)
    return agent, MemoryStore()


def agent_to_dict(agent: PhilosopherAgent) -> Dict[str, Any]:
    scratch = asdict(agent.scratch)
    scratch['curr_time'] = to_iso(agent.scratch.curr_time)
    scratch['chatting_end_time'] = to_iso(agent.scratch.chatting_end_time)
    scratch['position'] = list(agent.scratch.position)
    scratch['chat'] = [list(line) for line in agent.scratch.chat]

    return {
        'id': agent.id,
        'identity': asdict(agent.identity),
        'scratch': scratch,
        'sprite_character_id': agent.sprite_character_id,
    }


def load_philosopher_agent(agent_data: Dict[str, Any], memory_data: Dict[str, Any]) -> Tuple[PhilosopherAgent, MemoryStore]:
    """Restore an agent and its memory store from their saved dictionaries."""
    scratch_data = dict(agent_data['scratch'])
    scratch_data['curr_time'] = from_iso(scratch_data['curr_time'])
    scratch_data['chatting_end_time'] = from_iso(scratch_data.get('chatting_end_time'))
    scratch_data['position'] = tuple(scratch_data.get('position', (0.0, 0.0)))
    scratch_data['chat'] = [tuple(line) for line in scratch_data.get('chat', [])]

    agent = PhilosopherAgent(id=agent_data['id'],
                             identity=PhilosopherIdentity(**agent_data['identity']),
                             scratch=AgentScratch(**scratch_data),
                             sprite_character_id=agent_data.get('sprite_character_id', ''))
    return agent, MemoryStore.from_dict(memory_data)


class AgentController:
    """Drives one philosopher agent: observation, citation, retrieval, reflection and conversation."""

    def __init__(self,
                 agent: PhilosopherAgent,
                 store: MemoryStore,
                 llm: LanguageModel,
                 embedder: EmbeddingModel,
                 app_config: Optional[AppConfig] = None):
        """
        Initialize the controller.

        Args:
            agent: Agent identity and scratch state
            store: The agent's memory store
            llm: Language-model gateway
            embedder: Embedding gateway
            app_config: Expiration horizons, retrieval and reflection limits
        """
        self.agent = agent
        self.store = store
        self.llm = llm
        self.embedder = embedder
        self.config = app_config or default_config
        self.reflection = ReflectionService(llm,
                                            embedder,
                                            self.config.reflection,
                                            thought_expiration_days=self.config.memory.thought_expiration_days)

    @property
    def id(self) -> str:
        return self.agent.id

    @property
    def name(self) -> str:
        return self.agent.identity.name

    @property
    def identity(self) -> PhilosopherIdentity:
        return self.agent.identity

    @property
    def scratch(self) -> AgentScratch:
        return self.agent.scratch

    @property
    def position(self) -> Tuple[float, float]:
        return self.agent.scratch.position

    @property
    def is_in_conversation(self) -> bool:
        return self.agent.scratch.chatting_with is not None

    @property
    def should_reflect(self) -> bool:
        return should_reflect(self.agent.scratch)

    async def embed(self, text: str) -> Optional[List[float]]:
        """Embed text, returning None when the gateway fails."""
        try:
            return await self.embedder.embed(text)
        except Exception as e:
            logger.error(f'{self.name}: embedding failed for {text[:50]!r}: {e}')
            return None

    async def observe(self, description: str) -> MemoryNode:
        """Record an observation as an event and spend its poignancy from the reflection budget."""
        created = self.scratch.curr_time
        subject, predicate, object = await self.reflection.generate_triple(description)
        poignancy = await self.reflection.generate_poignancy(self.identity, description, 'event')
        embedding = await self.embed(description)

        node = self.store.add_event(created, days_after(created, self.config.memory.event_expiration_days), subject,
                                    predicate, object, description, {subject, predicate, object}, poignancy,
                                    (description, embedding))

        update_reflection_counter(self.scratch, poignancy)
        logger.debug(f'{self.name} observed {node.id} (poignancy={poignancy}, '
                     f'budget={self.scratch.importance_trigger_curr})')
        return node

    async def cite_source(self, source_id: str, passage: str, interpretation: str) -> MemoryNode:
        """Record a corpus citation. Citations never expire and do not spend the reflection budget."""
        subject, predicate, object = await self.reflection.generate_triple(interpretation)
        poignancy = await self.reflection.generate_poignancy(self.identity, interpretation, 'thought')
        embedding = await self.embed(interpretation)

        return self.store.add_source(self.scratch.curr_time, source_id, passage, subject, predicate, object,
                                     interpretation, {subject, predicate, object}, poignancy,
                                     (interpretation, embedding))

    async def retrieve_for_topic(self, topic: str, max_results: Optional[int] = None) -> List[ScoredMemoryNode]:
        retrieval_config = config_for_agent(self.scratch, self.config.retrieval, max_results)
        results = await retrieve(self.store, [topic], self.embedder, retrieval_config, now=self.scratch.curr_time)
        return results.get(topic, [])

    async def retrieve_for_dialogue(self, topic: str, other_participant: str) -> DialogueRetrieval:
        retrieval_config = config_for_agent(self.scratch, self.config.retrieval)
        return await retrieve_for_dialogue(self.store,
                                           topic,
                                           other_participant,
                                           self.embedder,
                                           retrieval_config,
                                           now=self.scratch.curr_time)

    async def maybe_reflect(self) -> List[MemoryNode]:
        """Run a reflection cycle if the importance budget is spent.

        The budget is reset after every cycle that runs, including cycles
        that produce no thoughts or fail.

        Returns:
            New thought nodes, empty when not triggered
        """
        if not self.should_reflect:
            return []

        try:
            new_thoughts = await self.reflection.run_reflection(self.identity, self.scratch, self.store,
                                                                config_for_agent(self.scratch, self.config.retrieval))
        finally:
            reset_reflection_counter(self.scratch)

        if new_thoughts:
            newest_first = [node.description for node in reversed(new_thoughts)]
            self.scratch.recent_insights = newest_first[:self.config.reflection.recent_insights]
        return new_thoughts

    def start_conversation(self, other_name: str, end_time: datetime, topic: Optional[str] = None) -> None:
        self.scratch.chatting_with = other_name
        self.scratch.chatting_end_time = end_time
        self.scratch.chat = []
        if topic:
            self.scratch.current_focus = topic

    def add_utterance(self, speaker: str, utterance: str) -> None:
        self.scratch.chat.append((speaker, utterance))

    async def end_conversation(self) -> Optional[Tuple[MemoryNode, MemoryNode]]:
        """Record the finished conversation and reflect on it.

        Writes a chat node, then a planning thought and a memo that both cite
        it. Conversation state is cleared even if reflection fails.

        Returns:
            Tuple of (planning_thought, memo), or None when not conversing
        """
        other = self.scratch.chatting_with
        if other is None:
            return None

        turns = list(self.scratch.chat)
        try:
            description = f'Conversation with {other} about {self.scratch.current_focus or "philosophical matters"}'
            created = self.scratch.curr_time
            embedding = await self.embed(description)
            poignancy = await self.reflection.generate_poignancy(self.identity, description, 'chat')

            self.store.add_chat(created, days_after(created, self.config.memory.chat_expiration_days), self.name,
                                'conversed with', other, description, {self.name, other}, poignancy,
                                (description, embedding))

            return await self.reflection.reflect_on_conversation(self.identity, self.scratch, self.store, turns, other)
        finally:
            self.scratch.chatting_with = None
            self.scratch.chatting_end_time = None
            self.scratch.chat = []

    def move_to(self, x: float, y: float) -> None:
        self.scratch.position = (x, y)

    def tick(self, new_time: datetime) -> None:
        self.scratch.curr_time = new_time

    def memory_feed(self, max_entries: Optional[int] = None) -> List[MemoryEntry]:
        """Bounded display view over the most recent memories."""
        return build_memory_feed(self.store, max_entries or self.config.memory.feed_max_entries)

    def to_dict(self) -> Dict[str, Any]:
        return {'agent': agent_to_dict(self.agent), 'memory': self.store.to_dict()}


async def initialize_core_memories(controller: AgentController) -> List[MemoryNode]:
    """Seed an agent's core beliefs as non-expiring, highly poignant thoughts."""
    identity = controller.identity
    nodes = []
    for belief in identity.core_beliefs:
        embedding = await controller.embed(belief)
        first_word = belief.split()[0] if belief.split() else belief
        node = controller.store.add_thought(controller.scratch.curr_time,
                                            None,
                                            identity.name,
                                            'believes',
                                            belief,
                                            f'{identity.name} holds that: {belief}', {identity.name, 'believes', first_word},
                                            CORE_BELIEF_POIGNANCY, (belief, embedding),
                                            evidence=[])
        nodes.append(node)

    logger.info(f'Seeded {len(nodes)} core beliefs for {identity.name}')
    return nodes
