"""Test configuration and fixtures."""

import re
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from philolib.services.agent_controller import AgentController, create_philosopher_agent
from philolib.services.memory_store import MemoryStore
from philolib.utils.config import load_config

BASE_TIME = datetime(1610, 3, 1, 9, 0, tzinfo=timezone.utc)

EMBED_DIM = 16


class FakeLLM:
    """Language model that answers by recognizing which prompt it was given.

    ``responses`` maps a prompt marker to a reply and overrides the defaults;
    ``failures`` lists markers whose calls raise.
    """

    DEFAULTS: Dict[str, str] = {
        'Subject-Predicate-Object': 'Subject: Drebbel\nPredicate: reads\nObject: quintessence',
        'On the scale of 1 to 10': '6',
        'most salient high-level questions': ('1. What is the fifth essence made of?\n'
                                              '2. How does fire transform matter?\n'
                                              '3. Is experiment above authority?'),
        'philosophical insights arise': ('1. INSIGHT: The fifth essence is found through fire.\n'
                                         'GROUNDING: On the Fifth Essence\n'
                                         'EVIDENCE: 0, 1, 99, x\n'
                                         '2. INSIGHT: Experiment reveals what books conceal.\n'
                                         'GROUNDING: Practical inventions\n'
                                         'EVIDENCE: 2'),
        "main takeaway": 'Test the quintessence by distillation.',
        'in a single sentence': 'discussed the fifth essence and agreed on the role of fire.',
        'summarize the intellectual relationship': 'They have debated fire before.',
        'initiate a philosophical conversation': 'YES: They share an interest in fire',
        'Propose a single topic': 'Is fire the soul of matter?',
        'compose your next utterance': 'Fire is the hidden craftsman of nature.',
        'Classify the rhetorical move': 'thesis',
        'Summarize the following philosophical dialogue': ('KEY INSIGHTS:\n- Fire transforms matter\n- Spirit moves in nature\n'
                                                          'UNRESOLVED:\n- Whether fire is itself alive\n'
                                                          'SOURCES:\n- Aurora\n- On the Fifth Essence'),
        'What crosses your mind right now?': 'The quintessence hides in every drop of dew.',
    }

    def __init__(self, responses: Optional[Dict[str, str]] = None, failures: Optional[List[str]] = None):
        self.responses = dict(self.DEFAULTS)
        self.responses.update(responses or {})
        self.failures = list(failures or [])
        self.calls: List[Tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_content: str) -> str:
        self.calls.append((system_prompt, user_content))
        prompt = f'{system_prompt}\n{user_content}'
        for marker in self.failures:
            if marker in prompt:
                raise RuntimeError(f'scripted failure for {marker!r}')
        for marker, response in self.responses.items():
            if marker in prompt:
                return response
        return ''

    def count(self, marker: str) -> int:
        return sum(1 for system, user in self.calls if marker in f'{system}\n{user}')


class FakeEmbedder:
    """Deterministic bag-of-words embedding."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError('embedding service unavailable')
        return vectorize(text)


def vectorize(text: str) -> List[float]:
    vector = [0.0] * EMBED_DIM
    for word in re.findall(r'[a-z]+', text.lower()):
        vector[sum(ord(ch) for ch in word) % EMBED_DIM] += 1.0
    return vector


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def app_config():
    return load_config()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


def make_controller(identity_key: str, llm, embedder, app_config, start_time: datetime = BASE_TIME) -> AgentController:
    agent, memory = create_philosopher_agent(identity_key, identity_key, initial_time=start_time, app_config=app_config)
    return AgentController(agent, memory, llm, embedder, app_config)


@pytest.fixture
def drebbel(fake_llm, fake_embedder, app_config) -> AgentController:
    return make_controller('drebbel', fake_llm, fake_embedder, app_config)


@pytest.fixture
def boehme(fake_llm, fake_embedder, app_config) -> AgentController:
    return make_controller('boehme', fake_llm, fake_embedder, app_config)
