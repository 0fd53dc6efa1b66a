"""
Core data models for the philosopher agent memory system.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal, Optional, Set, Tuple

MemoryNodeType = Literal['event', 'thought', 'chat', 'source']

DialogueStyle = Literal['socratic', 'disputatio', 'commentary', 'epistle', 'free']

RhetoricalMove = Literal['thesis', 'antithesis', 'synthesis', 'question', 'objection', 'clarification', 'evidence',
                         'concession']

# Degenerate observation excluded from retrieval and scored 1 without a model call
IDLE_MARKER = 'is idle'


@dataclass
class MemoryNode:
    """A node in an agent's memory stream.

    Nodes are never edited after creation except for ``last_accessed``, which
    moves every time retrieval returns the node. The vector for
    ``embedding_key`` is cached by the owning store, not on the node.
    """
    id: str  # node_<n>, unique within the owning store
    node_count: int
    type_count: int  # position within the node's type sequence
    type: MemoryNodeType
    depth: int  # 0 for ground-level nodes, 1 + max(evidence depth) for thoughts
    created: datetime
    expiration: Optional[datetime]
    last_accessed: datetime
    subject: str
    predicate: str
    object: str
    description: str
    embedding_key: str
    poignancy: int  # 1-10
    keywords: Set[str]
    evidence: List[str] = field(default_factory=list)
    source_id: Optional[str] = None  # corpus book id, source nodes only
    source_passage: Optional[str] = None  # quoted corpus text, source nodes only

    @property
    def spo(self) -> Tuple[str, str, str]:
        return self.subject, self.predicate, self.object

    @property
    def is_idle(self) -> bool:
        return IDLE_MARKER in self.description


@dataclass
class ScoredMemoryNode:
    """Per-retrieval scoring of a memory node; never persisted."""
    node: MemoryNode
    recency_score: float
    relevance_score: float
    importance_score: float
    total_score: float


@dataclass
class PhilosopherIdentity:
    """Core identity and traits for a philosopher agent."""
    name: str
    archetype: str
    era: str
    birth_year: int
    death_year: int
    author_id: str  # corpus author id
    key_works: List[str]  # corpus book ids
    core_beliefs: List[str]
    intellectual_style: str
    known_associations: List[str] = field(default_factory=list)

    @property
    def archetype_label(self) -> str:
        return self.archetype.replace('_', ' ')


@dataclass
class AgentScratch:
    """Mutable working state of one agent."""
    curr_time: datetime
    position: Tuple[float, float] = (0.0, 0.0)
    current_activity: str = 'contemplating'
    current_location: str = 'library'

    chatting_with: Optional[str] = None
    chatting_end_time: Optional[datetime] = None
    chat: List[Tuple[str, str]] = field(default_factory=list)  # (speaker, utterance)

    importance_trigger_max: int = 150
    importance_trigger_curr: int = 150
    importance_ele_n: int = 0

    recency_w: float = 0.5
    relevance_w: float = 3.0
    importance_w: float = 2.0
    recency_decay: float = 0.99

    current_focus: Optional[str] = None
    recent_insights: List[str] = field(default_factory=list)


@dataclass
class PhilosopherAgent:
    """A philosopher in the simulation: identity plus scratch state."""
    id: str
    identity: PhilosopherIdentity
    scratch: AgentScratch
    sprite_character_id: str = ''


@dataclass
class Citation:
    """A corpus passage attached to a dialogue turn."""
    source_id: str
    passage: str
    relevance: str


@dataclass
class DialogueTurn:
    """A single utterance in a dialogue."""
    id: str
    speaker_id: str
    speaker_name: str
    timestamp: datetime
    utterance: str
    citations: List[Citation]
    rhetoric_move: RhetoricalMove
    informing_memories: List[str]  # memory node ids


@dataclass
class Dialogue:
    """A conversation between two philosopher agents."""
    id: str
    participants: List[str]  # agent ids, initiator first
    style: DialogueStyle
    topic: str
    start_time: datetime
    end_time: Optional[datetime] = None
    turns: List[DialogueTurn] = field(default_factory=list)

    # Populated at dialogue end
    key_insights: List[str] = field(default_factory=list)
    unresolved_questions: List[str] = field(default_factory=list)
    sources_discussed: List[str] = field(default_factory=list)


@dataclass
class SourcePassage:
    """A passage retrieved from the external corpus."""
    book_id: str
    book_title: str
    author: str
    text: str
    page_number: Optional[int] = None
    translated_text: Optional[str] = None
    citation: str = ''
    relevance_score: Optional[float] = None

    @property
    def display_text(self) -> str:
        return self.translated_text or self.text


@dataclass
class MemoryEntry:
    """Display-only memory item shown in the capped per-agent feed."""
    id: str
    kind: str
    content: str
    timestamp: datetime
    importance: int
    context: Optional[str] = None
