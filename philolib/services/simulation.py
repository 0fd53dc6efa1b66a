"""
Simulation - two decoupled cadences over a set of philosopher agents.

The fast path only advances simulated time and never awaits. The slow path
schedules model-backed work (grounded thoughts, reflection, dialogue turns)
as background tasks, with at most one task in flight per agent and per
dialogue. A trigger that fires while its task is still running is dropped
for that tick.
"""

import asyncio
import random
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Set

from ..models.core import Dialogue, DialogueStyle, DialogueTurn, MemoryNode
from ..models.gateways import EmbeddingModel, LanguageModel
from ..utils.config import AppConfig, config as default_config
from ..utils.logging_config import get_logger
from ..utils.source_library import SourceLibraryClient
from ..utils.timestamp_utils import from_iso, to_iso, utc_now
from .agent_controller import (PHILOSOPHER_IDENTITIES, AgentController, create_philosopher_agent, initialize_core_memories,
                               load_philosopher_agent)
from .dialogue import (FALLBACK_TOPICS, DialogueError, DialogueManager, dialogue_to_dict, next_speaker_id,
                       should_end_conversation)
from .memory_feed import MemoryFeed

logger = get_logger(__name__)


class Simulation:
    """Drives a group of agents and their dialogues."""

    def __init__(self,
                 controllers: Sequence[AgentController],
                 llm: LanguageModel,
                 embedder: EmbeddingModel,
                 source_library: Optional[SourceLibraryClient] = None,
                 app_config: Optional[AppConfig] = None,
                 start_time: Optional[datetime] = None,
                 rng: Optional[random.Random] = None):
        """
        Initialize the simulation.

        Args:
            controllers: One controller per agent
            llm: Language-model gateway
            embedder: Embedding gateway
            source_library: Corpus client for grounding (no passages if None)
            app_config: Cadence, dialogue and feed settings
            start_time: Simulated start time (latest agent time if None)
            rng: Random source for topic choice
        """
        self.config = app_config or default_config
        self.llm = llm
        self.embedder = embedder
        self.source_library = source_library
        self.rng = rng or random.Random()
        self.controllers: Dict[str, AgentController] = {c.id: c for c in controllers}
        self.dialogues = DialogueManager(llm, self.config.dialogue, self.rng)
        self.feeds: Dict[str, MemoryFeed] = {c.id: MemoryFeed(self.config.memory.feed_max_entries) for c in controllers}
        self.history: List[Dialogue] = []

        if start_time is None:
            start_time = max((c.scratch.curr_time for c in controllers), default=None) or utc_now()
        self.clock = start_time
        self._last_thought: Dict[str, datetime] = {}

        self._agents_in_flight: Set[str] = set()
        self._dialogues_in_flight: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    def controller(self, agent_id: str) -> AgentController:
        """
        Raises:
            ValueError: If no agent has this id
        """
        controller = self.controllers.get(agent_id)
        if controller is None:
            raise ValueError(f'Unknown agent {agent_id!r}')
        return controller

    # ------------------ fast path ------------------

    def advance(self, delta: timedelta) -> datetime:
        """Advance simulated time for every agent."""
        self.clock = self.clock + delta
        for controller in self.controllers.values():
            controller.tick(self.clock)
        return self.clock

    # ------------------ slow path ------------------

    def _thought_due(self, controller: AgentController) -> bool:
        last = self._last_thought.get(controller.id)
        if last is None:
            return True
        return (self.clock - last).total_seconds() >= self.config.simulation.thought_interval_seconds

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def run_slow_path(self) -> List[asyncio.Task]:
        """Schedule background work that is due. Must be called from a running event loop.

        Returns:
            Tasks scheduled this tick
        """
        scheduled = []

        for dialogue in self.dialogues.active_dialogues:
            if dialogue.id in self._dialogues_in_flight:
                continue
            # a participant still finishing a thought or reflection holds the dialogue back
            if any(pid in self._agents_in_flight for pid in dialogue.participants):
                continue
            self._dialogues_in_flight.add(dialogue.id)
            self._agents_in_flight.update(dialogue.participants)
            scheduled.append(self._spawn(self._dialogue_task(dialogue.id, list(dialogue.participants))))

        for controller in self.controllers.values():
            if controller.id in self._agents_in_flight or controller.is_in_conversation:
                continue
            if not self._thought_due(controller):
                continue
            self._agents_in_flight.add(controller.id)
            self._last_thought[controller.id] = self.clock
            scheduled.append(self._spawn(self._agent_task(controller)))

        return scheduled

    async def wait_idle(self) -> None:
        """Wait for every in-flight slow-path task."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _passages(self, controller: AgentController, topic: str):
        if self.source_library is None:
            return []
        return await self.source_library.passages_for(controller.id,
                                                      topic,
                                                      self.config.simulation.passages_per_thought,
                                                      book_ids=controller.identity.key_works)

    async def generate_thought(self, controller: AgentController) -> Optional[MemoryNode]:
        """Generate one grounded inner thought and record it as an observation.

        Returns:
            The event node, or None when the model produced nothing
        """
        identity = controller.identity
        topic = controller.scratch.current_focus or self.rng.choice(FALLBACK_TOPICS)
        passages = await self._passages(controller, topic)

        beliefs = '\n'.join(f'- {belief}' for belief in identity.core_beliefs)
        recent = '\n'.join(f'- {entry.content}' for entry in self.feeds[controller.id].recent(3))
        memory_block = f'\nYour recent thoughts:\n{recent}\n' if recent else ''
        source_block = ''
        if passages:
            quoted = '\n'.join(f'[{p.citation or p.book_title}] {p.display_text[:400]}' for p in passages)
            source_block = f'\nPassages from your own writings:\n{quoted}\n'

        system_prompt = f"""You are {identity.name}, a {identity.archetype_label}.

Your core beliefs:
{beliefs}

Current situation: {controller.scratch.current_activity} in the {controller.scratch.current_location}, thinking about {topic}.
{memory_block}{source_block}
You are a historical philosopher in a mystical library. Generate a single brief thought (1-2 sentences) that reflects your philosophical perspective. This is part of your continuous inner monologue.

Write in first person. Be authentic to your historical beliefs and writing style. Keep it concise but meaningful."""

        try:
            thought = (await self.llm.complete(system_prompt, 'What crosses your mind right now?')).strip()
        except Exception as e:
            logger.error(f'Thought generation failed for {controller.name}: {e}')
            return None
        if not thought:
            return None

        node = await controller.observe(thought)
        context = passages[0].citation if passages else controller.scratch.current_location
        self.feeds[controller.id].add('thought', thought, node.poignancy, context, timestamp=self.clock)
        return node

    async def _agent_task(self, controller: AgentController) -> None:
        try:
            await self.generate_thought(controller)
            for node in await controller.maybe_reflect():
                self.feeds[controller.id].add('reflection', node.description, node.poignancy, timestamp=self.clock)
        except Exception as e:
            logger.error(f'Slow path failed for {controller.name}: {e}')
        finally:
            self._agents_in_flight.discard(controller.id)

    async def step_dialogue(self, dialogue_id: str) -> Optional[DialogueTurn]:
        """Advance a dialogue by one turn, or close it once it has enough turns.

        Returns:
            The new turn, or None when the dialogue was closed or no utterance came back
        """
        dialogue = self.dialogues.get_dialogue(dialogue_id)
        participants = self.dialogues.get_participants(dialogue_id)
        if dialogue is None or participants is None:
            return None

        if should_end_conversation(dialogue, self.config.dialogue.max_turns):
            await self.close_dialogue(dialogue_id)
            return None

        speaker_id = next_speaker_id(dialogue)
        speaker = next(c for c in participants if c.id == speaker_id)
        other = next((c for c in participants if c.id != speaker_id), participants[0])

        retrieval = await speaker.retrieve_for_dialogue(dialogue.topic, other.name)
        seen = {scored.node.id for scored in retrieval.topical}
        memories = retrieval.topical + [r for r in retrieval.relationship if r.node.id not in seen]
        passages = await self._passages(speaker, dialogue.topic)

        turn = await self.dialogues.generate_turn(dialogue_id, speaker, memories, passages)
        if turn is not None:
            self.feeds[speaker.id].add('dialogue', turn.utterance, 6, f'with {other.name}', timestamp=self.clock)
        return turn

    async def close_dialogue(self, dialogue_id: str) -> Dialogue:
        """End a dialogue and let both participants record and reflect on it."""
        participants = self.dialogues.get_participants(dialogue_id) or ()
        dialogue = await self.dialogues.end_dialogue(dialogue_id, end_time=self.clock)

        for controller in participants:
            reflections = await controller.end_conversation()
            if reflections:
                for node in reflections:
                    self.feeds[controller.id].add('reflection', node.description, node.poignancy, timestamp=self.clock)

        self.history.append(dialogue)
        return dialogue

    async def _dialogue_task(self, dialogue_id: str, participant_ids: List[str]) -> None:
        try:
            await self.step_dialogue(dialogue_id)
        except Exception as e:
            logger.error(f'Slow path failed for dialogue {dialogue_id}: {e}')
        finally:
            self._dialogues_in_flight.discard(dialogue_id)
            self._agents_in_flight.difference_update(participant_ids)

    async def propose_dialogue(self,
                               initiator_id: str,
                               target_id: str,
                               style: DialogueStyle = 'free',
                               topic: Optional[str] = None) -> Optional[Dialogue]:
        """Start a dialogue if the initiator wants one.

        Returns:
            The new dialogue, or None when the initiator declines or either agent is busy
        """
        initiator = self.controller(initiator_id)
        target = self.controller(target_id)

        memories = await initiator.retrieve_for_topic(target.name, self.config.retrieval.relationship_max_results)
        should_converse, reason = await self.dialogues.should_initiate_dialogue(initiator, target, memories)
        if not should_converse:
            logger.info(f'{initiator.name} declined to converse with {target.name}: {reason}')
            return None

        try:
            return await self.dialogues.start_dialogue(initiator, target, style, topic)
        except DialogueError as e:
            logger.info(f'Dialogue between {initiator.name} and {target.name} not started: {e}')
            return None

    async def run_dialogue(self, dialogue_id: str) -> Optional[Dialogue]:
        """Drive a dialogue to completion in the foreground.

        Turns that come back empty still count toward an attempt limit, so a
        silent model cannot keep the dialogue open.
        """
        max_attempts = self.config.dialogue.max_turns * 2
        for _ in range(max_attempts):
            dialogue = self.dialogues.get_dialogue(dialogue_id)
            if dialogue is None:
                break
            if should_end_conversation(dialogue, self.config.dialogue.max_turns):
                return await self.close_dialogue(dialogue_id)
            await self.step_dialogue(dialogue_id)

        if self.dialogues.get_dialogue(dialogue_id) is not None:
            return await self.close_dialogue(dialogue_id)
        return next((d for d in self.history if d.id == dialogue_id), None)

    # ------------------ persistence ------------------

    def save(self) -> Dict[str, Any]:
        """Agents and memory stores as plain dictionaries. Active dialogues are not saved."""
        return {
            'clock': to_iso(self.clock),
            'agents': {agent_id: controller.to_dict() for agent_id, controller in self.controllers.items()},
            'history': [dialogue_to_dict(d) for d in self.history],
        }

    @classmethod
    def restore(cls,
                data: Dict[str, Any],
                llm: LanguageModel,
                embedder: EmbeddingModel,
                source_library: Optional[SourceLibraryClient] = None,
                app_config: Optional[AppConfig] = None,
                rng: Optional[random.Random] = None) -> 'Simulation':
        """Rebuild a simulation from save(). Agents saved mid-conversation come back idle."""
        app_config = app_config or default_config
        controllers = []
        for saved in data['agents'].values():
            agent, store = load_philosopher_agent(saved['agent'], saved['memory'])
            if agent.scratch.chatting_with is not None:
                logger.warning(f'{agent.identity.name} was saved mid-conversation, clearing conversation state')
                agent.scratch.chatting_with = None
                agent.scratch.chatting_end_time = None
                agent.scratch.chat = []
            controllers.append(AgentController(agent, store, llm, embedder, app_config))

        return cls(controllers,
                   llm,
                   embedder,
                   source_library,
                   app_config,
                   start_time=from_iso(data.get('clock')),
                   rng=rng)


async def build_simulation(llm: LanguageModel,
                           embedder: EmbeddingModel,
                           source_library: Optional[SourceLibraryClient] = None,
                           app_config: Optional[AppConfig] = None,
                           identity_keys: Optional[Sequence[str]] = None,
                           start_time: Optional[datetime] = None,
                           seed_beliefs: bool = True) -> Simulation:
    """Create agents for the given philosophers (all built-in ones if None) and seed their core beliefs."""
    app_config = app_config or default_config
    start_time = start_time or utc_now()
    controllers = []
    for key in identity_keys or list(PHILOSOPHER_IDENTITIES):
        agent, store = create_philosopher_agent(key, key, sprite_character_id=key, initial_time=start_time,
                                                app_config=app_config)
        controller = AgentController(agent, store, llm, embedder, app_config)
        if seed_beliefs:
            await initialize_core_memories(controller)
        controllers.append(controller)

    return Simulation(controllers, llm, embedder, source_library, app_config, start_time=start_time)
