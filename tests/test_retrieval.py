"""Tests for recency/relevance/importance retrieval."""

from datetime import timedelta

import pytest

from philolib.models.core import AgentScratch
from philolib.services.retrieval import (config_for_agent, cosine_similarity, extract_importance, extract_recency,
                                         normalize_scores, retrieve, retrieve_by_keywords, retrieve_for_dialogue, top_n)
from philolib.utils.config import RetrievalConfig
from tests.conftest import BASE_TIME, FakeEmbedder, vectorize

NOW = BASE_TIME + timedelta(days=2)


def add_event(store, description, poignancy=5, minutes=0, keywords=None):
    created = BASE_TIME + timedelta(minutes=minutes)
    words = description.split()
    return store.add_event(created, created + timedelta(days=1), words[0], words[1], ' '.join(words[2:]), description,
                           keywords or {words[0]}, poignancy, (description, vectorize(description)))


class TestScoringPrimitives:

    def test_cosine_similarity(self):
        assert cosine_similarity([1.0, 2.0], [2.0, 4.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 3.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_cosine_similarity_length_mismatch(self):
        with pytest.raises(ValueError):
            cosine_similarity([1.0], [1.0, 2.0])

    def test_normalize_scores(self):
        assert normalize_scores({'a': 2.0, 'b': 4.0, 'c': 3.0}) == {'a': 0.0, 'b': 1.0, 'c': 0.5}
        assert normalize_scores({'a': 7.0, 'b': 7.0}) == {'a': 0.5, 'b': 0.5}
        assert normalize_scores({}) == {}

    def test_top_n(self):
        scores = {'a': 0.2, 'b': 0.9, 'c': 0.5, 'd': 0.1}
        assert top_n(scores, 2, lambda value: value) == {'b': 0.9, 'c': 0.5}
        assert list(top_n(scores, 10, lambda value: -value)) == ['d', 'a', 'c', 'b']
        assert top_n({}, 3, lambda value: value) == {}

    def test_recency_strictly_decreasing_from_one(self, store):
        nodes = [add_event(store, f'Drebbel stirs pot {i}', minutes=i) for i in range(5)]
        recency = extract_recency(nodes, 0.99)

        ordered = [recency[node.id] for node in reversed(nodes)]
        assert ordered[0] == 1.0
        assert all(a > b for a, b in zip(ordered, ordered[1:]))

    def test_equal_poignancy_normalizes_to_midpoint(self, store):
        nodes = [add_event(store, f'Drebbel stirs pot {i}', poignancy=4) for i in range(3)]
        assert set(normalize_scores(extract_importance(nodes)).values()) == {0.5}

    def test_config_for_agent_uses_scratch_weights(self):
        scratch = AgentScratch(curr_time=BASE_TIME, recency_w=1.0, relevance_w=2.0, importance_w=0.5,
                               recency_decay=0.9)
        config = config_for_agent(scratch, RetrievalConfig(max_results=30), max_results=4)

        assert (config.recency_weight, config.relevance_weight, config.importance_weight) == (1.0, 2.0, 0.5)
        assert config.recency_decay == 0.9
        assert config.max_results == 4


class TestRetrieve:

    @pytest.mark.asyncio
    async def test_top_results_sorted_and_touched(self, store, fake_embedder):
        for i in range(30):
            add_event(store, f'Drebbel observes sample {i}', poignancy=1 + i % 10, minutes=i)

        results = await retrieve(store, ['sample'], fake_embedder, RetrievalConfig(max_results=5), now=NOW)
        scored = results['sample']

        assert len(scored) == 5
        totals = [s.total_score for s in scored]
        assert totals == sorted(totals, reverse=True)
        assert all(s.node.last_accessed == NOW for s in scored)
        untouched = [n for n in store.get_all_memories() if n.id not in {s.node.id for s in scored}]
        assert all(n.last_accessed != NOW for n in untouched)

    @pytest.mark.asyncio
    async def test_relevance_favors_matching_text(self, store, fake_embedder):
        add_event(store, 'Böhme contemplates the abyss', minutes=2)
        match = add_event(store, 'Drebbel distills quintessence', minutes=0)

        results = await retrieve(store, ['distills quintessence'], fake_embedder, now=NOW)
        assert results['distills quintessence'][0].node is match
        assert results['distills quintessence'][0].relevance_score == 1.0

    @pytest.mark.asyncio
    async def test_idle_nodes_excluded(self, store, fake_embedder):
        add_event(store, 'Drebbel is idle')
        active = add_event(store, 'Drebbel grinds lenses')

        results = await retrieve(store, ['lenses'], fake_embedder, now=NOW)
        assert [s.node for s in results['lenses']] == [active]

    @pytest.mark.asyncio
    async def test_only_idle_nodes_yields_empty(self, store, fake_embedder):
        add_event(store, 'Drebbel is idle')
        results = await retrieve(store, ['anything'], fake_embedder, now=NOW)
        assert results == {'anything': []}
        assert fake_embedder.calls == []

    @pytest.mark.asyncio
    async def test_sources_excluded_on_request(self, store, fake_embedder):
        add_event(store, 'Drebbel reads Aurora')
        store.add_source(BASE_TIME, 'aurora', 'text', 'Böhme', 'writes', 'dawn', 'Dawn is light', {'dawn'}, 6,
                         ('Dawn is light', vectorize('Dawn is light')))

        with_sources = await retrieve(store, ['dawn'], fake_embedder, now=NOW)
        without_sources = await retrieve(store, ['dawn'], fake_embedder, now=NOW, include_sources=False)

        assert {s.node.type for s in with_sources['dawn']} == {'event', 'source'}
        assert {s.node.type for s in without_sources['dawn']} == {'event'}

    @pytest.mark.asyncio
    async def test_embedding_failure_disables_relevance(self, store):
        add_event(store, 'Drebbel builds a submarine', poignancy=3)
        add_event(store, 'Drebbel tests a thermostat', poignancy=8)

        results = await retrieve(store, ['submarine'], FakeEmbedder(fail=True), now=NOW)
        scored = results['submarine']

        assert len(scored) == 2
        assert all(s.relevance_score == 0.5 for s in scored)
        assert scored[0].node.poignancy == 8

    @pytest.mark.asyncio
    async def test_invalid_decay_rejected(self, store, fake_embedder):
        add_event(store, 'Drebbel lights a lamp')
        with pytest.raises(ValueError):
            await retrieve(store, ['lamp'], fake_embedder, RetrievalConfig(recency_decay=1.0))

    @pytest.mark.asyncio
    async def test_one_result_list_per_focal_point(self, store, fake_embedder):
        add_event(store, 'Drebbel lights a lamp')
        results = await retrieve(store, ['lamp', 'fire'], fake_embedder, now=NOW)
        assert list(results) == ['lamp', 'fire']


class TestDialogueRetrieval:

    @pytest.mark.asyncio
    async def test_partitions_topical_relationship_and_sources(self, store, fake_embedder):
        add_event(store, 'Drebbel discusses fire', keywords={'drebbel'})
        source = store.add_source(BASE_TIME, 'aurora', 'text', 'Böhme', 'writes', 'fire', 'Fire reveals God', {'fire'},
                                  7, ('Fire reveals God', vectorize('Fire reveals God')))

        result = await retrieve_for_dialogue(store, 'fire', 'Cornelius Drebbel', fake_embedder,
                                             RetrievalConfig(relationship_max_results=1), now=NOW)

        assert [s.node for s in result.sources] == [source]
        assert all(s.node.type != 'source' for s in result.topical)
        assert len(result.relationship) == 1


class TestKeywordRetrieval:

    def test_events_and_thoughts_deduplicated(self, store):
        event = add_event(store, 'Drebbel heats salt', keywords={'drebbel', 'salt'})
        thought = store.add_thought(BASE_TIME, None, 'Drebbel', 'thinks', 'salt', 'Salt is fixed', {'salt'}, 5,
                                    ('Salt is fixed', None), evidence=[event.id])

        events, thoughts = retrieve_by_keywords(store, 'Drebbel', 'heats', 'salt')
        assert events == [event]
        assert thoughts == [thought]
