"""Tests for the memory store."""

import json
from datetime import timedelta

import pytest

from philolib.services.memory_store import MemoryStore, MemoryStoreError
from tests.conftest import BASE_TIME


def add_event(store, description, poignancy=5, keywords=None, minutes=0, embedding=(1.0, 0.0)):
    created = BASE_TIME + timedelta(minutes=minutes)
    words = description.split()
    return store.add_event(created, created + timedelta(days=1), words[0], words[1], ' '.join(words[2:]), description,
                           keywords or set(words[:2]), poignancy, (description, list(embedding)))


class TestAdditions:

    def test_ids_are_unique_and_resolvable(self, store):
        nodes = [add_event(store, f'Drebbel tests furnace {i}') for i in range(5)]
        nodes.append(store.add_chat(BASE_TIME, None, 'Drebbel', 'conversed with', 'Böhme', 'A chat', {'böhme'}, 4,
                                    ('A chat', None)))

        assert len({node.id for node in nodes}) == len(nodes)
        assert [node.node_count for node in nodes] == list(range(1, 7))
        for node in nodes:
            assert store.get_node(node.id) is node
        assert len(store) == 6

    def test_type_count_is_per_type(self, store):
        add_event(store, 'Drebbel lights furnace')
        chat = store.add_chat(BASE_TIME, None, 'Drebbel', 'conversed with', 'Maier', 'Chat', {'maier'}, 3,
                              ('Chat', None))
        second = add_event(store, 'Drebbel cools glass')

        assert chat.type_count == 1
        assert second.type_count == 2

    def test_thought_depth_follows_evidence(self, store):
        event = add_event(store, 'Drebbel observes dew')
        first = store.add_thought(BASE_TIME, None, 'Drebbel', 'thinks', 'dew', 'Dew holds spirit', {'dew'}, 6,
                                  ('Dew holds spirit', None), evidence=[event.id])
        second = store.add_thought(BASE_TIME, None, 'Drebbel', 'thinks', 'spirit', 'Spirit pervades all', {'spirit'},
                                   7, ('Spirit pervades all', None), evidence=[first.id])
        third = store.add_thought(BASE_TIME, None, 'Drebbel', 'thinks', 'nature', 'Nature is alive', {'nature'}, 8,
                                  ('Nature is alive', None), evidence=[event.id, second.id])

        assert event.depth == 0
        assert first.depth == 1
        assert second.depth == 2
        assert third.depth == 3

    def test_thought_without_evidence_has_depth_one(self, store):
        thought = store.add_thought(BASE_TIME, None, 'Ficino', 'believes', 'love', 'Love binds', {'love'}, 9,
                                    ('Love binds', None))
        assert thought.depth == 1
        assert thought.evidence == []

    def test_unknown_evidence_rejected(self, store):
        with pytest.raises(ValueError):
            store.add_thought(BASE_TIME, None, 'Ficino', 'thinks', 'x', 'x', {'x'}, 5, ('x', None),
                              evidence=['node_99'])
        assert len(store) == 0

    @pytest.mark.parametrize('poignancy', [0, 11, 5.5, True])
    def test_poignancy_out_of_range_rejected(self, store, poignancy):
        with pytest.raises(ValueError):
            add_event(store, 'Drebbel drops flask', poignancy=poignancy)

    def test_source_never_expires(self, store):
        node = store.add_source(BASE_TIME, 'aurora', 'The morning redness', 'Böhme', 'writes', 'dawn',
                                'Dawn is the birth of light', {'dawn'}, 7, ('Dawn is the birth of light', None))
        assert node.type == 'source'
        assert node.expiration is None
        assert node.source_id == 'aurora'
        assert node.source_passage == 'The morning redness'

    def test_last_accessed_starts_at_created(self, store):
        node = add_event(store, 'Drebbel reads Paracelsus', minutes=5)
        assert node.last_accessed == node.created


class TestLookups:

    def test_recent_events_newest_first(self, store):
        nodes = [add_event(store, f'Drebbel stirs pot {i}', minutes=i) for i in range(4)]
        assert store.get_recent_events(2) == [nodes[3], nodes[2]]
        assert store.get_recent_events(0) == []

    def test_keywords_case_insensitive(self, store):
        node = add_event(store, 'Drebbel watches Mercury', keywords={'Mercury', ' Fire '})
        assert node.keywords == {'mercury', 'fire'}
        assert store.get_by_keyword('MERCURY') == [node]
        assert store.get_by_keyword('fire', 'thought') == []

    def test_keyword_strength(self, store):
        add_event(store, 'Drebbel heats salt', keywords={'salt'})
        add_event(store, 'Drebbel grinds salt', keywords={'salt'})
        store.add_chat(BASE_TIME, None, 'Drebbel', 'conversed with', 'Maier', 'Chat', {'salt'}, 3, ('Chat', None))

        assert store.get_keyword_strength('salt') == 2
        assert store.get_keyword_strength('salt', 'chat') == 0

    def test_idle_events_do_not_strengthen_keywords(self, store):
        store.add_event(BASE_TIME, None, 'Drebbel', 'is', 'idle', 'Drebbel is idle', {'drebbel'}, 1,
                        ('Drebbel is idle', None))
        assert store.get_keyword_strength('drebbel') == 0

    def test_embedding_cache_shared_by_text(self, store):
        first = add_event(store, 'Drebbel sees light', embedding=(1.0, 0.0))
        second = add_event(store, 'Drebbel sees light', embedding=(0.0, 1.0))

        assert first.embedding_key == second.embedding_key
        assert store.get_embedding('Drebbel sees light') == [0.0, 1.0]

    def test_missing_embedding_not_cached(self, store):
        store.add_chat(BASE_TIME, None, 'a', 'b', 'c', 'Silent chat', set(), 2, ('Silent chat', None))
        assert store.get_embedding('Silent chat') is None

    def test_last_chat(self, store):
        assert store.get_last_chat('Böhme') is None
        store.add_chat(BASE_TIME, None, 'Drebbel', 'conversed with', 'Böhme', 'First', {'Böhme'}, 4, ('First', None))
        latest = store.add_chat(BASE_TIME, None, 'Drebbel', 'conversed with', 'Böhme', 'Second', {'Böhme'}, 4,
                                ('Second', None))
        assert store.get_last_chat('böhme') is latest

    def test_summarized_latest_events(self, store):
        add_event(store, 'Drebbel tends fire')
        add_event(store, 'Drebbel tends fire')
        assert store.get_summarized_latest_events(5) == {('Drebbel', 'tends', 'fire')}

    def test_sources_for_topic_deduplicated(self, store):
        source = store.add_source(BASE_TIME, 'aurora', 'text', 'Böhme', 'writes', 'light', 'Light', {'light', 'dawn'},
                                  6, ('Light', None))
        assert store.get_sources_for_topic(['light', 'dawn', 'salt']) == [source]

    def test_lookup_misses(self, store):
        assert store.get_node('node_1') is None
        assert store.get_by_keyword('nothing') == []
        store.touch_node('node_404', BASE_TIME)


class TestPersistence:

    def build_store(self):
        store = MemoryStore()
        event = add_event(store, 'Drebbel observes dew', keywords={'dew'})
        add_event(store, 'Drebbel is idle', poignancy=1)
        thought = store.add_thought(BASE_TIME, BASE_TIME + timedelta(days=30), 'Drebbel', 'thinks', 'dew',
                                    'Dew holds spirit', {'dew', 'spirit'}, 6, ('Dew holds spirit', [0.5, 0.5]),
                                    evidence=[event.id])
        store.add_chat(BASE_TIME, BASE_TIME + timedelta(days=7), 'Drebbel', 'conversed with', 'Böhme', 'Chat',
                       {'böhme'}, 4, ('Chat', [0.2, 0.8]))
        store.add_source(BASE_TIME, 'on-the-fifth-essence', 'quinta essentia', 'Drebbel', 'cites', 'essence',
                         'The essence is hidden', {'essence'}, 7, ('The essence is hidden', [0.9, 0.1]))
        store.touch_node(thought.id, BASE_TIME + timedelta(hours=2))
        return store

    def test_round_trip_preserves_everything(self):
        store = self.build_store()
        data = json.loads(json.dumps(store.to_dict()))
        restored = MemoryStore.from_dict(data)

        assert len(restored) == len(store)
        for node_id in ('node_1', 'node_2', 'node_3', 'node_4', 'node_5'):
            assert restored.get_node(node_id) == store.get_node(node_id)
        assert restored.get_embedding('Dew holds spirit') == [0.5, 0.5]
        assert restored.get_keyword_strength('dew') == store.get_keyword_strength('dew')
        assert restored.get_keyword_strength('spirit', 'thought') == 1
        assert [n.id for n in restored.get_recent_events(5)] == [n.id for n in store.get_recent_events(5)]
        assert restored.get_last_chat('Böhme').id == 'node_4'
        assert restored.to_dict() == store.to_dict()

    def test_missing_section_rejected(self):
        data = self.build_store().to_dict()
        del data['embeddings']
        with pytest.raises(MemoryStoreError):
            MemoryStore.from_dict(data)

    def test_non_contiguous_ids_rejected(self):
        data = self.build_store().to_dict()
        data['nodes']['node_9'] = data['nodes'].pop('node_5')
        with pytest.raises(MemoryStoreError):
            MemoryStore.from_dict(data)

    def test_unknown_type_rejected(self):
        data = self.build_store().to_dict()
        data['nodes']['node_2']['type'] = 'dream'
        with pytest.raises(MemoryStoreError):
            MemoryStore.from_dict(data)

    def test_missing_field_rejected(self):
        data = self.build_store().to_dict()
        del data['nodes']['node_1']['description']
        with pytest.raises(MemoryStoreError):
            MemoryStore.from_dict(data)
