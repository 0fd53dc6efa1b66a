"""Tests for the agent controller."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from philolib.services.agent_controller import (CORE_BELIEF_POIGNANCY, PHILOSOPHER_IDENTITIES, AgentController,
                                                create_philosopher_agent, initialize_core_memories,
                                                load_philosopher_agent)
from tests.conftest import BASE_TIME, FakeEmbedder, FakeLLM, make_controller


class TestCreateAgent:

    def test_unknown_philosopher(self, app_config):
        with pytest.raises(ValueError):
            create_philosopher_agent('plato', 'plato', app_config=app_config)

    def test_defaults_from_config(self, app_config):
        agent, store = create_philosopher_agent('ficino', 'ficino', 'sprite_3', BASE_TIME, app_config)

        assert agent.identity is PHILOSOPHER_IDENTITIES['ficino']
        assert agent.sprite_character_id == 'sprite_3'
        assert agent.scratch.curr_time == BASE_TIME
        assert agent.scratch.importance_trigger_curr == app_config.reflection.importance_trigger_max
        assert agent.scratch.recency_w == app_config.retrieval.recency_weight
        assert len(store) == 0

    def test_every_identity_is_complete(self):
        for key, identity in PHILOSOPHER_IDENTITIES.items():
            assert identity.author_id == key
            assert identity.key_works
            assert len(identity.core_beliefs) == 4


class TestObserveAndCite:

    @pytest.mark.asyncio
    async def test_observe_records_event_and_spends_budget(self, drebbel):
        node = await drebbel.observe('Drebbel watches the dew evaporate')

        assert node.type == 'event'
        assert node.poignancy == 6
        assert node.spo == ('Drebbel', 'reads', 'quintessence')
        assert node.expiration == BASE_TIME + timedelta(days=1)
        assert drebbel.scratch.importance_trigger_curr == 144
        assert drebbel.scratch.importance_ele_n == 1
        assert drebbel.store.get_embedding('Drebbel watches the dew evaporate') is not None

    @pytest.mark.asyncio
    async def test_idle_observation_skips_poignancy_call(self, drebbel, fake_llm):
        node = await drebbel.observe('Cornelius Drebbel is idle')
        assert node.poignancy == 1
        assert fake_llm.count('On the scale of 1 to 10') == 0

    @pytest.mark.asyncio
    async def test_observe_survives_embedding_failure(self, fake_llm, app_config):
        controller = make_controller('drebbel', fake_llm, FakeEmbedder(fail=True), app_config)
        node = await controller.observe('Drebbel tests a thermostat')
        assert controller.store.get_node(node.id) is node

    @pytest.mark.asyncio
    async def test_cite_source_does_not_spend_budget(self, drebbel):
        node = await drebbel.cite_source('on-the-fifth-essence', 'quinta essentia', 'The essence hides in all things')

        assert node.type == 'source'
        assert node.expiration is None
        assert node.source_id == 'on-the-fifth-essence'
        assert drebbel.scratch.importance_trigger_curr == drebbel.scratch.importance_trigger_max

    @pytest.mark.asyncio
    async def test_reflection_triggers_at_budget(self, drebbel):
        for i in range(24):
            await drebbel.observe(f'Drebbel grinds lens number {i}')
            assert not drebbel.should_reflect
        await drebbel.observe('Drebbel grinds the last lens')
        assert drebbel.should_reflect


class TestReflection:

    @pytest.mark.asyncio
    async def test_not_due_makes_no_calls(self, drebbel, fake_llm):
        assert await drebbel.maybe_reflect() == []
        assert fake_llm.calls == []

    @pytest.mark.asyncio
    async def test_reflection_scenario(self, drebbel):
        while not drebbel.should_reflect:
            await drebbel.observe('Cornelius Drebbel reads a passage on quintessence')
        before = {node.id for node in drebbel.store.get_all_memories()}

        thoughts = await drebbel.maybe_reflect()

        assert thoughts
        assert all(set(t.evidence) <= before for t in thoughts)
        assert drebbel.scratch.importance_trigger_curr == drebbel.scratch.importance_trigger_max
        assert drebbel.scratch.importance_ele_n == 0
        assert drebbel.scratch.recent_insights == [t.description for t in reversed(thoughts)][:3]

    @pytest.mark.asyncio
    async def test_counter_reset_when_no_insights(self, fake_embedder, app_config):
        controller = make_controller('drebbel', FakeLLM({'philosophical insights arise': 'No insights.'}),
                                     fake_embedder, app_config)
        controller.scratch.recent_insights = ['kept']
        while not controller.should_reflect:
            await controller.observe('Drebbel tends the furnace')

        assert await controller.maybe_reflect() == []
        assert controller.scratch.importance_trigger_curr == controller.scratch.importance_trigger_max
        assert controller.scratch.importance_ele_n == 0
        assert controller.scratch.recent_insights == ['kept']


class TestConversation:

    @pytest.mark.asyncio
    async def test_end_conversation_records_chat_and_reflections(self, drebbel):
        end = BASE_TIME + timedelta(minutes=10)
        drebbel.start_conversation('Jacob Böhme', end, 'Is fire alive?')
        drebbel.add_utterance('Cornelius Drebbel', 'Fire is a craftsman.')
        drebbel.add_utterance('Jacob Böhme', 'Fire is the wrath of God.')

        assert drebbel.is_in_conversation
        assert drebbel.scratch.current_focus == 'Is fire alive?'

        planning, memo = await drebbel.end_conversation()
        chat = drebbel.store.get_last_chat('Jacob Böhme')

        assert chat.description == 'Conversation with Jacob Böhme about Is fire alive?'
        assert chat.expiration == BASE_TIME + timedelta(days=7)
        assert planning.evidence == [chat.id]
        assert memo.evidence == [chat.id]
        assert not drebbel.is_in_conversation
        assert drebbel.scratch.chat == []
        assert drebbel.scratch.chatting_end_time is None

    @pytest.mark.asyncio
    async def test_end_conversation_when_idle(self, drebbel):
        assert await drebbel.end_conversation() is None
        assert len(drebbel.store) == 0

    @pytest.mark.asyncio
    async def test_state_cleared_when_reflection_fails(self, drebbel):
        drebbel.start_conversation('Jacob Böhme', BASE_TIME)

        with patch.object(drebbel.store, 'add_chat', side_effect=RuntimeError('disk full')):
            with pytest.raises(RuntimeError):
                await drebbel.end_conversation()
        assert not drebbel.is_in_conversation


class TestRetrievalAndState:

    @pytest.mark.asyncio
    async def test_retrieve_for_topic_respects_limit(self, drebbel):
        for i in range(4):
            await drebbel.observe(f'Drebbel studies magnet {i}')
        results = await drebbel.retrieve_for_topic('magnet', max_results=2)

        assert len(results) == 2
        assert all(r.node.last_accessed == drebbel.scratch.curr_time for r in results)

    def test_tick_and_move(self, drebbel):
        later = BASE_TIME + timedelta(hours=1)
        drebbel.tick(later)
        drebbel.move_to(3.0, 4.5)
        assert drebbel.scratch.curr_time == later
        assert drebbel.position == (3.0, 4.5)

    @pytest.mark.asyncio
    async def test_core_memories(self, drebbel):
        nodes = await initialize_core_memories(drebbel)

        assert [n.object for n in nodes] == PHILOSOPHER_IDENTITIES['drebbel'].core_beliefs
        assert all(n.type == 'thought' and n.expiration is None for n in nodes)
        assert all(n.poignancy == CORE_BELIEF_POIGNANCY for n in nodes)
        assert 'believes' in nodes[0].keywords
        assert drebbel.scratch.importance_ele_n == 0

    @pytest.mark.asyncio
    async def test_memory_feed(self, drebbel):
        await drebbel.observe('Drebbel polishes a lens')
        await drebbel.cite_source('on-the-fifth-essence', 'text', 'The essence is subtle')

        feed = drebbel.memory_feed()
        assert {entry.kind for entry in feed} == {'observation', 'citation'}
        assert len(drebbel.memory_feed(max_entries=1)) == 1

    @pytest.mark.asyncio
    async def test_save_and_load(self, drebbel, fake_llm, fake_embedder, app_config):
        await initialize_core_memories(drebbel)
        await drebbel.observe('Drebbel polishes a lens')
        drebbel.move_to(1.0, 2.0)

        data = drebbel.to_dict()
        agent, store = load_philosopher_agent(data['agent'], data['memory'])
        restored = AgentController(agent, store, fake_llm, fake_embedder, app_config)

        assert restored.identity == drebbel.identity
        assert restored.scratch == drebbel.scratch
        assert restored.store.to_dict() == drebbel.store.to_dict()
