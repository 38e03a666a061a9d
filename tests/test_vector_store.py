"""
Tests for the SQLite vector store.
"""

import pytest
import numpy as np
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import DIMENSIONS
from core.errors import DimensionMismatchError, VectorStoreError
from database.vector_store import SqliteVectorStore
from search.models import IndexedChunk


def unit(index: int) -> np.ndarray:
    vec = np.zeros(DIMENSIONS)
    vec[index] = 1.0
    return vec


def chunk(recording_id: str, embedding, field: str = 'transcript', chunk_index: int = 0, text: str = None):
    return IndexedChunk(
        recording_id=recording_id,
        field=field,
        chunk_index=chunk_index,
        chunk_text=text or f'{recording_id} {field} {chunk_index}',
        embedding=embedding,
    )


@pytest.fixture
def store(tmp_path):
    store = SqliteVectorStore(tmp_path / 'vectors.db')
    store.initialize()
    yield store
    store.close()


class TestAddAndSearch:
    """Tests for writing chunks and similarity search."""

    def test_search_orders_by_similarity(self, store):
        """Test closest chunks come first."""
        store.add_chunks([
            chunk('rec-a', unit(0)),
            chunk('rec-b', unit(0) + unit(1)),
            chunk('rec-c', unit(2)),
        ])

        results = store.search(unit(0), top_k=10)

        assert [r.recording_id for r in results] == ['rec-a', 'rec-b', 'rec-c']
        assert results[0].score == pytest.approx(1.0, abs=1e-6)
        assert results[1].score == pytest.approx(1 / np.sqrt(2), abs=1e-6)
        assert results[2].score == 0.0

    def test_scores_clamped_to_unit_interval(self, store):
        """Test negative cosine is reported as 0."""
        store.add_chunks([chunk('rec-a', -unit(0))])

        results = store.search(unit(0))

        assert results[0].score == 0.0

    def test_top_k_and_min_score(self, store):
        """Test result count and score floor."""
        store.add_chunks([chunk(f'rec-{i}', unit(0) + i * unit(1)) for i in range(5)])

        assert len(store.search(unit(0), top_k=2)) == 2
        assert len(store.search(unit(0), top_k=0)) == 0
        above = store.search(unit(0), top_k=10, min_score=0.9)
        assert [r.recording_id for r in above] == ['rec-0']

    def test_empty_store(self, store):
        """Test search on an empty store."""
        assert store.search(unit(0)) == []

    def test_result_fields(self, store):
        """Test results carry chunk identity and text."""
        store.add_chunks([chunk('rec-a', unit(0), field='summary', text='Weekly summary')])

        result = store.search(unit(0))[0]

        assert result.field == 'summary'
        assert result.chunk_index == 0
        assert result.chunk_text == 'Weekly summary'
        assert result.chunk_id is not None

    def test_query_is_normalised(self, store):
        """Test query length does not change scores."""
        store.add_chunks([chunk('rec-a', unit(0))])

        assert store.search(unit(0) * 7.5)[0].score == pytest.approx(1.0, abs=1e-6)


class TestReplacement:
    """Tests for re-adding and replacing recordings."""

    def test_re_add_replaces_previous_chunks(self, store):
        """Test re-adding a recording removes stale chunks."""
        store.add_chunks([
            chunk('rec-a', unit(0), chunk_index=0),
            chunk('rec-a', unit(1), chunk_index=1),
            chunk('rec-a', unit(2), chunk_index=2),
        ])
        store.add_chunks([chunk('rec-a', unit(3), chunk_index=0)])

        stored = store.get_chunks_for_recording('rec-a')

        assert len(stored) == 1
        assert stored[0].embedding[3] == pytest.approx(1.0)

    def test_add_is_idempotent(self, store):
        """Test adding the same chunks twice keeps one copy."""
        chunks = [chunk('rec-a', unit(0)), chunk('rec-a', unit(1), field='title')]

        store.add_chunks(chunks)
        store.add_chunks(chunks)

        assert store.get_stats()['total_chunks'] == 2

    def test_other_recordings_untouched(self, store):
        """Test replacement is scoped to one recording."""
        store.add_chunks([chunk('rec-a', unit(0)), chunk('rec-b', unit(1))])
        store.add_chunks([chunk('rec-a', unit(2))])

        assert store.is_indexed('rec-b')
        assert len(store.get_chunks_for_recording('rec-b')) == 1

    def test_replace_recording_writes_manifest(self, store):
        """Test chunks and manifest are written together."""
        store.replace_recording('rec-a', [chunk('rec-a', unit(0))], 'hash-1')

        entry = store.get_manifest_entry('rec-a')
        assert entry['content_hash'] == 'hash-1'
        assert entry['chunk_count'] == 1
        assert store.get_content_hash('rec-a') == 'hash-1'

    def test_replace_rolls_back_on_bad_chunk(self, store):
        """Test a failed replacement keeps the previous chunks and hash."""
        store.replace_recording('rec-a', [chunk('rec-a', unit(0))], 'hash-1')
        bad = chunk('rec-a', unit(1))
        bad.embedding = np.zeros(DIMENSIONS + 1)

        with pytest.raises(DimensionMismatchError):
            store.replace_recording('rec-a', [chunk('rec-a', unit(2), field='title'), bad], 'hash-2')

        assert store.get_content_hash('rec-a') == 'hash-1'
        stored = store.get_chunks_for_recording('rec-a')
        assert len(stored) == 1
        assert stored[0].field == 'transcript'

    def test_replace_rejects_foreign_chunks(self, store):
        """Test chunks must belong to the recording being replaced."""
        with pytest.raises(ValueError):
            store.replace_recording('rec-a', [chunk('rec-b', unit(0))], 'hash')

    def test_replace_with_no_chunks(self, store):
        """Test an empty recording still gets a manifest entry."""
        store.replace_recording('rec-empty', [], 'hash-empty')

        assert not store.is_indexed('rec-empty')
        assert store.get_content_hash('rec-empty') == 'hash-empty'
        assert 'rec-empty' in store.get_indexed_recording_ids()


class TestDeleteAndManifest:
    """Tests for deletion, manifest and bookkeeping."""

    def test_delete_returns_whether_anything_existed(self, store):
        """Test delete reports removal."""
        store.replace_recording('rec-a', [chunk('rec-a', unit(0))], 'hash')

        assert store.delete_chunks_for_recording('rec-a') is True
        assert store.delete_chunks_for_recording('rec-a') is False
        assert not store.is_indexed('rec-a')
        assert store.get_content_hash('rec-a') is None

    def test_update_manifest_overwrites(self, store):
        """Test manifest entries are upserted."""
        store.update_manifest('rec-a', 'old', 1)
        store.update_manifest('rec-a', 'new', 3)

        assert store.get_content_hash('rec-a') == 'new'
        assert store.get_manifest_entry('rec-a')['chunk_count'] == 3

    def test_missing_manifest(self, store):
        """Test unknown recordings have no hash."""
        assert store.get_content_hash('nope') is None
        assert store.get_manifest_entry('nope') is None

    def test_indexed_ids_union(self, store):
        """Test IDs come from chunks and manifest."""
        store.add_chunks([chunk('rec-chunks-only', unit(0))])
        store.update_manifest('rec-manifest-only', 'hash', 0)

        assert store.get_indexed_recording_ids() == ['rec-chunks-only', 'rec-manifest-only']

    def test_stats(self, store):
        """Test chunk and recording counts."""
        store.add_chunks([
            chunk('rec-a', unit(0)),
            chunk('rec-a', unit(1), field='title'),
            chunk('rec-b', unit(2)),
        ])

        stats = store.get_stats()

        assert stats['total_chunks'] == 3
        assert stats['total_recordings'] == 2
        assert stats['total_size'] > 0

    def test_clear(self, store):
        """Test clear removes everything."""
        store.replace_recording('rec-a', [chunk('rec-a', unit(0))], 'hash')

        store.clear()

        assert store.get_stats()['total_chunks'] == 0
        assert store.get_indexed_recording_ids() == []

    def test_persists_across_connections(self, tmp_path):
        """Test data survives close and reopen."""
        path = tmp_path / 'persist.db'
        first = SqliteVectorStore(path)
        first.replace_recording('rec-a', [chunk('rec-a', unit(0))], 'hash')
        first.close()

        second = SqliteVectorStore(path)
        try:
            assert second.get_content_hash('rec-a') == 'hash'
            assert second.search(unit(0))[0].recording_id == 'rec-a'
        finally:
            second.close()


class TestValidation:
    """Tests for dimension checks and corrupt data."""

    def test_query_dimension_mismatch(self, store):
        """Test wrong-sized queries are rejected."""
        with pytest.raises(DimensionMismatchError):
            store.search(np.ones(DIMENSIONS - 1))

    def test_corrupt_rows_skipped(self, store):
        """Test malformed BLOBs are skipped, not fatal."""
        store.add_chunks([chunk('rec-good', unit(0))])
        store._conn.execute(
            'INSERT INTO chunks (recording_id, field, chunk_index, chunk_text, embedding, created_at) '
            'VALUES (?, ?, ?, ?, ?, ?)',
            ('rec-bad', 'transcript', 0, 'broken', b'\x00\x01\x02', '2024-01-01T00:00:00')
        )
        store._conn.commit()

        results = store.search(unit(0))

        assert [r.recording_id for r in results] == ['rec-good']

    def insert_raw(self, store, recording_id, chunk_index, embedding, created_at='2024-01-01T00:00:00'):
        store._conn.execute(
            'INSERT INTO chunks (recording_id, field, chunk_index, chunk_text, embedding, created_at) '
            'VALUES (?, ?, ?, ?, ?, ?)',
            (recording_id, 'transcript', chunk_index, 'broken', embedding, created_at)
        )
        store._conn.commit()

    def test_corrupt_rows_skipped_when_loading_recording(self, store):
        """Test one bad row does not break loading a recording's chunks."""
        store.add_chunks([chunk('rec-a', unit(0), text='good')])
        self.insert_raw(store, 'rec-a', 1, b'\x00\x01\x02')
        self.insert_raw(store, 'rec-a', 2, unit(1).astype('<f4').tobytes(), created_at='not a date')

        chunks = store.get_chunks_for_recording('rec-a')

        assert [c.chunk_text for c in chunks] == ['good']

    def test_non_finite_rows_skipped(self, store):
        """Test NaN embeddings never surface as results."""
        store.add_chunks([chunk('rec-good', unit(0))])
        nan_vector = np.full(DIMENSIONS, np.nan).astype('<f4').tobytes()
        self.insert_raw(store, 'rec-nan', 0, nan_vector)

        results = store.search(unit(0))

        assert [r.recording_id for r in results] == ['rec-good']
        assert all(0.0 <= r.score <= 1.0 for r in results)
        assert store.get_chunks_for_recording('rec-nan') == []

    def test_custom_dimensions(self, tmp_path):
        """Test stores can use a different dimension."""
        store = SqliteVectorStore(tmp_path / 'small.db', dimensions=8)
        vec = np.zeros(8)
        vec[0] = 1.0
        small_chunk = IndexedChunk(
            recording_id='rec', field='title', chunk_index=0,
            chunk_text='t', embedding=vec, dimensions=8,
        )

        store.add_chunks([small_chunk])

        assert store.search(vec)[0].recording_id == 'rec'
        store.close()

    def test_unwritable_path(self, tmp_path):
        """Test storage errors surface as VectorStoreError."""
        blocker = tmp_path / 'blocker'
        blocker.write_text('not a directory')
        store = SqliteVectorStore(blocker / 'nested' / 'vectors.db')

        with pytest.raises((VectorStoreError, OSError)):
            store.initialize()
