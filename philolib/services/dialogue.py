"""
Dialogue Manager - orchestrates philosophical conversations between two agents.

The manager owns the active dialogue records and the participants of each,
independent of any single agent's memory.
"""

import json
import random
import uuid
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from ..models.core import Citation, Dialogue, DialogueStyle, DialogueTurn, RhetoricalMove, ScoredMemoryNode, SourcePassage
from ..models.gateways import LanguageModel
from ..utils.config import DialogueConfig
from ..utils.logging_config import get_logger
from ..utils.source_library import format_passages_for_context
from ..utils.text_parsing import parse_sections
from ..utils.timestamp_utils import from_iso, to_iso, utc_now
from .agent_controller import AgentController

logger = get_logger(__name__)

MAX_CONVERSATION_TURNS = 6

RHETORICAL_MOVES: Tuple[RhetoricalMove, ...] = ('thesis', 'antithesis', 'synthesis', 'question', 'objection',
                                                'clarification', 'evidence', 'concession')
DEFAULT_MOVE: RhetoricalMove = 'clarification'
# 'thesis' is a substring of 'antithesis' and 'synthesis'
_MOVE_MATCH_ORDER: Tuple[RhetoricalMove, ...] = ('antithesis', 'synthesis', 'thesis', 'question', 'objection',
                                                 'clarification', 'evidence', 'concession')

# Fixed relevance label on turn citations
CITATION_RELEVANCE = 'supporting context'

FALLBACK_TOPICS: List[str] = [
    'the nature of the soul',
    'the transmutation of matter',
    'the relationship between microcosm and macrocosm',
    'the source of divine wisdom',
    'the role of fire in transformation',
    'the hidden properties of nature',
    'the path to illumination',
    'the unity of all things',
]

SHARED_INTEREST_TERMS: List[str] = [
    'soul', 'nature', 'divine', 'wisdom', 'truth', 'knowledge', 'transformation', 'unity', 'spirit', 'matter', 'light',
    'microcosm', 'macrocosm', 'philosophy', 'alchemy', 'hermes'
]

SUMMARY_SECTIONS = ('KEY INSIGHTS', 'UNRESOLVED', 'SOURCES')

_STYLES: Dict[str, Tuple[str, str]] = {
    'socratic': ('Socratic dialogue - questions leading to insight',
                 'Ask probing questions that lead your interlocutor to examine their assumptions'),
    'disputatio': ('formal academic disputation - thesis, objections, replies',
                   'Present clear arguments with premises and conclusions, or raise formal objections'),
    'commentary': ('shared commentary on a text - interpretation and analysis',
                   'Focus on interpreting and explicating the meaning of texts'),
    'epistle': ('epistolary exchange - as if writing letters',
                'Write with the measured formality of scholarly correspondence'),
    'free': ('free philosophical conversation', 'Engage naturally while maintaining philosophical depth'),
}


class DialogueError(Exception):
    """Custom exception for dialogue errors."""
    pass


def should_end_conversation(dialogue: Dialogue, max_turns: int = MAX_CONVERSATION_TURNS) -> bool:
    return len(dialogue.turns) >= max_turns


def next_speaker_id(dialogue: Dialogue) -> str:
    """The initiator opens; afterwards speakers alternate."""
    if not dialogue.turns:
        return dialogue.participants[0]
    last_speaker = dialogue.turns[-1].speaker_id
    return next((pid for pid in dialogue.participants if pid != last_speaker), dialogue.participants[0])


def parse_rhetorical_move(response: str) -> RhetoricalMove:
    """First move whose name appears anywhere in the response, else 'clarification'."""
    text = (response or '').lower()
    for move in _MOVE_MATCH_ORDER:
        if move in text:
            return move
    return DEFAULT_MOVE


def find_shared_interests(beliefs1: Sequence[str], beliefs2: Sequence[str]) -> List[str]:
    terms1 = {word for belief in beliefs1 for word in belief.lower().split()}
    terms2 = {word for belief in beliefs2 for word in belief.lower().split()}
    return [term for term in SHARED_INTEREST_TERMS if term in terms1 and term in terms2]


def format_transcript(turns: Sequence[DialogueTurn]) -> str:
    return '\n\n'.join(f'{turn.speaker_name}: {turn.utterance}' for turn in turns)


class DialogueManager:
    """Runs dialogue lifecycles: initiation, topic, turns and summary."""

    def __init__(self, llm: LanguageModel, config: Optional[DialogueConfig] = None, rng: Optional[random.Random] = None):
        """
        Initialize the dialogue manager.

        Args:
            llm: Language-model gateway
            config: Turn limits, context sizes and citation limits
            rng: Random source for the fallback topic
        """
        self.llm = llm
        self.config = config or DialogueConfig()
        self.rng = rng or random.Random()
        self._active: Dict[str, Dialogue] = {}
        self._controllers: Dict[str, Tuple[AgentController, AgentController]] = {}

    @property
    def active_dialogues(self) -> List[Dialogue]:
        return list(self._active.values())

    async def _complete(self, system_prompt: str, user_content: str) -> str:
        try:
            return (await self.llm.complete(system_prompt, user_content)).strip()
        except Exception as e:
            logger.error(f'Language model call failed, using empty response: {e}')
            return ''

    def get_dialogue(self, dialogue_id: str) -> Optional[Dialogue]:
        return self._active.get(dialogue_id)

    def get_participants(self, dialogue_id: str) -> Optional[Tuple[AgentController, AgentController]]:
        return self._controllers.get(dialogue_id)

    def _require(self, dialogue_id: str) -> Dialogue:
        dialogue = self._active.get(dialogue_id)
        if dialogue is None:
            raise DialogueError(f'Dialogue {dialogue_id} not found')
        return dialogue

    async def should_initiate_dialogue(self, initiator: AgentController, target: AgentController,
                                       initiator_memories: Sequence[ScoredMemoryNode]) -> Tuple[bool, str]:
        """Ask whether the initiator would start a conversation with the target.

        Returns:
            Tuple of (should_converse, reason)
        """
        if initiator.is_in_conversation or target.is_in_conversation:
            return False, 'One or both agents are busy'

        target_key = target.name.lower()
        shared = [m.node.description for m in initiator_memories if target_key in m.node.keywords][:5]
        system_prompt = f'You are simulating the social judgement of {initiator.name}, a {initiator.identity.archetype_label}.'

        relationship = ''
        if shared:
            numbered = '\n'.join(f'{i + 1}. {memory}' for i, memory in enumerate(shared))
            relationship = await self._complete(
                system_prompt, f"""Based on the following memories, summarize the intellectual relationship between {initiator.name} and {target.name}:

{numbered}

Summarize in 2-3 sentences focusing on their philosophical agreements, disagreements, and shared interests.""")
        if not relationship:
            relationship = f'{initiator.name} and {target.name} have not interacted before.'

        response = await self._complete(
            system_prompt, f"""{initiator.name} is currently {initiator.scratch.current_activity} when they encounter {target.name} in the library.

Context about their relationship:
{relationship}

Should {initiator.name} initiate a philosophical conversation with {target.name}? Consider:
- Their intellectual interests and how they might intersect
- Their historical relationship (if any)
- The appropriateness of the moment

Respond with either:
YES: [brief reason for initiating conversation]
NO: [brief reason for not conversing]""")

        should_converse = response.upper().startswith('YES')
        _, sep, after = response.partition(':')
        reason = after.strip() if sep and after.strip() else response
        return should_converse, reason

    async def _generate_topic(self, initiator: AgentController, target: AgentController) -> str:
        recent = '\n'.join(f'{i + 1}. {t}' for i, t in enumerate(initiator.scratch.recent_insights))
        shared = ', '.join(find_shared_interests(initiator.identity.core_beliefs, target.identity.core_beliefs))

        topic = await self._complete(
            f'You are {initiator.name}, a {initiator.identity.archetype_label}.',
            f"""{initiator.name} is about to begin a philosophical dialogue with {target.name}.

{initiator.name}'s recent contemplations:
{recent or 'None yet.'}

Areas of shared intellectual interest:
{shared or 'None identified.'}

What philosophical question or topic should {initiator.name} raise to begin the dialogue? The topic should:
- Connect to {initiator.name}'s recent thinking
- Be potentially engaging for {target.name}
- Be substantive enough for genuine dialectic

Propose a single topic or question in one sentence.""")

        if not topic:
            topic = self.rng.choice(FALLBACK_TOPICS)
            logger.warning(f'No topic generated for {initiator.name} and {target.name}, using {topic!r}')
        return topic

    async def start_dialogue(self,
                             initiator: AgentController,
                             target: AgentController,
                             style: DialogueStyle = 'free',
                             topic: Optional[str] = None) -> Dialogue:
        """Create a dialogue and mark both agents as conversing until a shared end time.

        Raises:
            DialogueError: If either agent is already in a conversation
        """
        topic = (topic or '').strip() or await self._generate_topic(initiator, target)
        if initiator.is_in_conversation or target.is_in_conversation:
            raise DialogueError(f'{initiator.name} or {target.name} is already in a conversation')
        start_time = initiator.scratch.curr_time

        dialogue = Dialogue(id=f'dialogue_{uuid.uuid4().hex[:12]}',
                            participants=[initiator.id, target.id],
                            style=style,
                            topic=topic,
                            start_time=start_time)

        estimated_end = start_time + timedelta(minutes=self.config.duration_minutes)
        initiator.start_conversation(target.name, estimated_end, topic)
        target.start_conversation(initiator.name, estimated_end, topic)

        self._active[dialogue.id] = dialogue
        self._controllers[dialogue.id] = (initiator, target)
        logger.info(f'Started {style} dialogue {dialogue.id} between {initiator.name} and {target.name}: {topic}')
        return dialogue

    async def generate_turn(self, dialogue_id: str, speaker: AgentController,
                            relevant_memories: Sequence[ScoredMemoryNode],
                            source_passages: Sequence[SourcePassage]) -> Optional[DialogueTurn]:
        """Generate and record the speaker's next utterance.

        The utterance and its rhetorical move are separate model calls; the
        dialogue is only changed once both have returned.

        Returns:
            The new turn, or None when the model produced no utterance

        Raises:
            DialogueError: If the dialogue is not active
        """
        dialogue = self._require(dialogue_id)
        identity = speaker.identity

        transcript = format_transcript(dialogue.turns)
        memories = '\n'.join(f'- {m.node.description}' for m in relevant_memories[:self.config.memory_context])
        source_context = format_passages_for_context(source_passages, self.config.source_context_chars)
        style_description, style_guidance = _STYLES.get(dialogue.style, _STYLES['free'])
        beliefs = '\n'.join(f'- {belief}' for belief in identity.core_beliefs)

        conversation_block = f'The conversation so far:\n{transcript}\n' if transcript else 'You are beginning this dialogue.'
        source_block = f'Relevant passages from your works:\n{source_context}\n' if source_context else ''

        system_prompt = f"""You are {identity.name}, a {identity.archetype_label} ({identity.era}).

Your core beliefs:
{beliefs}

Your intellectual style: {identity.intellectual_style}"""

        utterance = await self._complete(
            system_prompt, f"""The current dialogue with another philosopher concerns: {dialogue.topic}

{conversation_block}
Your relevant memories and thoughts:
{memories or 'None.'}

{source_block}
In the style of {style_description}, compose your next utterance. You should:
- Stay in character as {identity.name}
- Ground your response in your documented thought where possible
- Engage substantively with the topic and any arguments raised
- {style_guidance}

Keep your response to 2-4 sentences. If citing your own works, note the reference naturally.""")

        if not utterance:
            logger.warning(f'No utterance generated for {speaker.name} in {dialogue_id}')
            return None

        move_response = await self._complete(
            'You classify rhetorical moves in philosophical dialogue.', f"""Given this utterance in a philosophical dialogue:
"{utterance}"

Context:
{transcript or 'Opening statement.'}

Classify the rhetorical move as one of:
- thesis: Stating a position
- antithesis: Opposing a position
- synthesis: Reconciling opposing views
- question: Asking for clarification or probing
- objection: Raising a specific counter-argument
- clarification: Explaining or elaborating
- evidence: Providing support from texts or reasoning
- concession: Acknowledging a point from the other side

Respond with just the single word classification.""")

        turn = DialogueTurn(id=f'turn_{uuid.uuid4().hex[:12]}',
                            speaker_id=speaker.id,
                            speaker_name=speaker.name,
                            timestamp=speaker.scratch.curr_time,
                            utterance=utterance,
                            citations=[
                                Citation(source_id=p.book_id,
                                         passage=p.text[:self.config.citation_chars],
                                         relevance=CITATION_RELEVANCE)
                                for p in source_passages[:self.config.citation_count]
                            ],
                            rhetoric_move=parse_rhetorical_move(move_response),
                            informing_memories=[m.node.id for m in relevant_memories[:5]])

        dialogue.turns.append(turn)
        for controller in self._controllers.get(dialogue_id, (speaker,)):
            controller.add_utterance(speaker.name, utterance)

        logger.debug(f'{speaker.name} turn {len(dialogue.turns)} in {dialogue_id} ({turn.rhetoric_move})')
        return turn

    async def end_dialogue(self, dialogue_id: str, end_time: Optional[datetime] = None) -> Dialogue:
        """Stamp the end time, summarize any turns and evict the dialogue.

        Raises:
            DialogueError: If the dialogue is not active
        """
        dialogue = self._require(dialogue_id)
        dialogue.end_time = end_time or utc_now()

        if dialogue.turns:
            summary = await self._complete(
                'You summarize philosophical dialogues.', f"""Summarize the following philosophical dialogue on "{dialogue.topic}":

{format_transcript(dialogue.turns)}

Provide:
1. KEY INSIGHTS: 2-3 significant philosophical insights that emerged
2. UNRESOLVED: 1-2 questions or tensions that remain unresolved
3. SOURCES: Notable texts or ideas referenced

Format your response with these exact headers.""")

            sections = parse_sections(summary, SUMMARY_SECTIONS)
            dialogue.key_insights = sections['KEY INSIGHTS']
            dialogue.unresolved_questions = sections['UNRESOLVED']
            dialogue.sources_discussed = sections['SOURCES']

        del self._active[dialogue_id]
        self._controllers.pop(dialogue_id, None)
        logger.info(f'Ended dialogue {dialogue_id} after {len(dialogue.turns)} turns')
        return dialogue


def dialogue_to_dict(dialogue: Dialogue) -> Dict:
    data = asdict(dialogue)
    data['start_time'] = to_iso(dialogue.start_time)
    data['end_time'] = to_iso(dialogue.end_time)
    for turn_data, turn in zip(data['turns'], dialogue.turns):
        turn_data['timestamp'] = to_iso(turn.timestamp)
    return data


def serialize_dialogue(dialogue: Dialogue) -> str:
    return json.dumps(dialogue_to_dict(dialogue))


def deserialize_dialogue(payload: str) -> Dialogue:
    data = json.loads(payload)
    turns = []
    for turn in data.get('turns', []):
        turns.append(
            DialogueTurn(id=turn['id'],
                         speaker_id=turn['speaker_id'],
                         speaker_name=turn['speaker_name'],
                         timestamp=from_iso(turn['timestamp']),
                         utterance=turn['utterance'],
                         citations=[Citation(**c) for c in turn.get('citations', [])],
                         rhetoric_move=turn['rhetoric_move'],
                         informing_memories=list(turn.get('informing_memories', []))))

    return Dialogue(id=data['id'],
                    participants=list(data['participants']),
                    style=data['style'],
                    topic=data['topic'],
                    start_time=from_iso(data['start_time']),
                    end_time=from_iso(data.get('end_time')),
                    turns=turns,
                    key_insights=list(data.get('key_insights', [])),
                    unresolved_questions=list(data.get('unresolved_questions', [])),
                    sources_discussed=list(data.get('sources_discussed', [])))
