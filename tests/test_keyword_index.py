"""
Tests for the BM25 keyword index and its lifecycle manager.
"""

import asyncio
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import InMemoryRecordingStore, make_recording
from core.errors import IndexNotReadyError
from search.keyword_index import (
    IndexManager, KeywordIndex, find_matched_fields, recording_to_document,
)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def index(sample_recordings):
    index = KeywordIndex()
    index.build_index(sample_recordings)
    return index


class TestDocumentText:
    """Tests for recording to document conversion."""

    def test_title_repeated_and_fields_ordered(self):
        """Test title appears twice before the other fields."""
        recording = make_recording(
            'r', title='Title', summary='Summary', context='Context',
            tags=['a', 'b'], transcript='Transcript',
        )

        assert recording_to_document(recording) == 'Title\nTitle\nSummary\nContext\na b\nTranscript'

    def test_empty_fields_skipped(self):
        """Test missing fields leave no blank lines."""
        assert recording_to_document(make_recording('r', transcript='Only words')) == 'Only words'

    def test_matched_fields(self, sample_recordings):
        """Test case-insensitive field attribution."""
        standup = sample_recordings[0]

        assert find_matched_fields(standup, 'ROADMAP') == frozenset({'summary', 'transcript'})
        assert find_matched_fields(standup, 'standup work') == frozenset({'title', 'tags'})
        assert find_matched_fields(standup, 'zebra') == frozenset()


class TestKeywordIndex:
    """Tests for KeywordIndex."""

    def test_search_before_build_raises(self):
        """Test an unbuilt index refuses to search."""
        index = KeywordIndex()

        assert not index.is_built
        assert index.needs_rebuild
        with pytest.raises(IndexNotReadyError):
            index.search('anything')

    def test_finds_transcript_terms(self, index):
        """Test a transcript word finds its recording."""
        matches = index.search('groceries')

        assert [m.recording_id for m in matches] == ['rec-groceries']
        assert matches[0].rank == 0
        assert matches[0].bm25_score > 0
        assert 'transcript' in matches[0].matched_fields

    def test_tags_are_searchable(self, index):
        """Test tag text is part of the document."""
        matches = index.search('errands')

        assert [m.recording_id for m in matches] == ['rec-groceries']
        assert matches[0].matched_fields == frozenset({'tags'})

    def test_title_weighted_above_transcript(self):
        """Test a title hit outranks the same word in a transcript."""
        index = KeywordIndex()
        index.build_index([
            make_recording('rec-body', title='Weekly notes', transcript='We talked about budget things.'),
            make_recording('rec-title', title='Budget review', transcript='We talked about things.'),
        ])

        matches = index.search('budget')

        assert [m.recording_id for m in matches] == ['rec-title', 'rec-body']
        assert matches[0].bm25_score > matches[1].bm25_score
        assert [m.rank for m in matches] == [0, 1]

    def test_limit(self):
        """Test limit caps the result count."""
        index = KeywordIndex()
        index.build_index([
            make_recording(f'rec-{i}', transcript=f'Note number {i} about coffee.') for i in range(5)
        ])

        assert len(index.search('coffee', limit=2)) == 2
        assert len(index.search('coffee', limit=50)) == 5
        assert index.search('coffee', limit=0) == []

    def test_empty_and_unknown_queries(self, index):
        """Test queries that cannot match return nothing."""
        assert index.search('') == []
        assert index.search('   ') == []
        assert index.search('the and of') == []
        assert index.search('xylophone') == []

    def test_empty_corpus(self):
        """Test an empty build is ready but matches nothing."""
        index = KeywordIndex()
        index.build_index([])

        assert index.is_built
        assert index.index_size == 0
        assert index.search('anything') == []

    def test_rebuild_replaces_corpus(self, index):
        """Test a new build drops removed recordings."""
        index.build_index([make_recording('rec-new', transcript='Fresh groceries tomorrow.')])

        assert index.index_size == 1
        assert [m.recording_id for m in index.search('groceries')] == ['rec-new']

    def test_stale_build_discarded(self, index):
        """Test a build whose inputs went stale keeps the current index."""
        swapped = index.build_index(
            [make_recording('rec-stale', transcript='Stale groceries.')],
            is_current=lambda: False,
        )

        assert swapped is False
        assert index.index_size == 3
        assert [m.recording_id for m in index.search('groceries')] == ['rec-groceries']

    def test_clear(self, index):
        """Test clear returns to the unbuilt state."""
        index.clear()

        assert not index.is_built
        assert index.index_size == 0
        with pytest.raises(IndexNotReadyError):
            index.search('groceries')


class TestIndexManager:
    """Tests for IndexManager lifecycle."""

    def test_first_search_builds(self, recording_store):
        """Test search builds the index on demand."""
        manager = IndexManager(KeywordIndex(), recording_store)
        assert manager.needs_rebuild

        matches = run(manager.search('marathon'))

        assert [m.recording_id for m in matches] == ['rec-running']
        assert not manager.needs_rebuild
        assert manager.last_built is not None
        assert recording_store.list_calls == 1

    def test_built_index_is_reused(self, recording_store):
        """Test later searches do not rebuild."""
        manager = IndexManager(KeywordIndex(), recording_store)

        async def search_twice():
            await manager.search('milk')
            await manager.search('eggs')

        run(search_twice())

        assert recording_store.list_calls == 1

    def test_concurrent_rebuilds_share_one_build(self, recording_store):
        """Test many concurrent rebuild requests run one build."""
        manager = IndexManager(KeywordIndex(), recording_store)

        async def rebuild_many():
            await asyncio.gather(*(manager.rebuild_index() for _ in range(10)))

        run(rebuild_many())

        assert recording_store.list_calls == 1
        assert not manager.is_building
        assert manager.index.index_size == 3

    def test_concurrent_searches_share_one_build(self, recording_store):
        """Test concurrent first searches trigger a single build."""
        manager = IndexManager(KeywordIndex(), recording_store)

        async def search_many():
            return await asyncio.gather(*(manager.search('roadmap') for _ in range(5)))

        results = run(search_many())

        assert recording_store.list_calls == 1
        assert all([m.recording_id for m in r] == ['rec-standup'] for r in results)

    def test_failed_build_keeps_needs_rebuild(self, recording_store):
        """Test a failed build propagates and can be retried."""
        manager = IndexManager(KeywordIndex(), recording_store)
        recording_store.fail_listing = True

        with pytest.raises(OSError):
            run(manager.rebuild_index())

        assert manager.needs_rebuild
        assert not manager.is_building

        recording_store.fail_listing = False
        run(manager.ensure_index_ready())
        assert not manager.needs_rebuild

    def test_concurrent_waiters_share_failure(self, recording_store):
        """Test every waiter sees the shared build's error."""
        manager = IndexManager(KeywordIndex(), recording_store)
        recording_store.fail_listing = True

        async def rebuild_many():
            return await asyncio.gather(
                *(manager.rebuild_index() for _ in range(3)), return_exceptions=True
            )

        outcomes = run(rebuild_many())

        assert all(isinstance(o, OSError) for o in outcomes)
        assert recording_store.list_calls == 1

    def test_invalidate(self, recording_store):
        """Test invalidate forces a rebuild that sees new data."""
        manager = IndexManager(KeywordIndex(), recording_store)
        run(manager.ensure_index_ready())

        recording_store.put(make_recording('rec-new', transcript='Booked flights to Lisbon.'))
        assert run(manager.search('lisbon')) == []

        manager.invalidate()
        assert manager.needs_rebuild
        assert not manager.index.is_built

        matches = run(manager.search('lisbon'))
        assert [m.recording_id for m in matches] == ['rec-new']
        assert recording_store.list_calls == 2

    def test_invalidate_during_build_triggers_another(self, sample_recordings):
        """Test an invalidation racing a build is not lost."""
        manager = None

        class InvalidatingStore(InMemoryRecordingStore):
            def list_recordings(self):
                recordings = super().list_recordings()
                if self.list_calls == 1:
                    manager.invalidate()
                return recordings

        store = InvalidatingStore(sample_recordings)
        manager = IndexManager(KeywordIndex(), store)

        run(manager.rebuild_index())
        assert manager.needs_rebuild
        assert not manager.index.is_built
        assert manager.get_stats()['index_size'] == 0

        run(manager.ensure_index_ready())
        assert manager.index.index_size == 3
        assert not manager.needs_rebuild
        assert store.list_calls == 2

    def test_stats(self, recording_store):
        """Test stats reflect lifecycle state."""
        manager = IndexManager(KeywordIndex(), recording_store)

        before = manager.get_stats()
        assert before == {'is_built': False, 'is_building': False, 'index_size': 0, 'last_built': None}

        run(manager.ensure_index_ready())
        after = manager.get_stats()

        assert after['is_built'] is True
        assert after['index_size'] == 3
        assert after['last_built'] is not None
