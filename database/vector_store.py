"""
Vector Store for Chunk Embeddings

Persists IndexedChunks and answers top-K cosine similarity queries.
Also keeps the index manifest: the content hash each recording had when
it was last indexed, used for change detection.

Storage:
- chunks: one row per (recording_id, field, chunk_index), embedding as
  a little-endian float32 BLOB, unit-normalised before storage
- index_manifest: recording_id -> content_hash, indexed_at, chunk_count

Search is a brute-force numpy dot product over all stored vectors, which
is fast enough for a personal journal (tens of thousands of chunks).

Usage:
    from database.vector_store import SqliteVectorStore

    store = SqliteVectorStore("data/vector_index.db")
    store.initialize()
    store.add_chunks(chunks)
    hits = store.search(query_embedding, top_k=20)
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

import numpy as np

from core.errors import DimensionMismatchError, VectorStoreError
from search.models import EMBEDDING_DIMENSIONS, IndexedChunk, VectorSearchResult

logger = logging.getLogger(__name__)

BLOB_DTYPE = np.dtype('<f4')


# =============================================================================
# Schema
# =============================================================================

SCHEMA = '''
-- One row per chunk; a recording's chunks are always replaced together
CREATE TABLE IF NOT EXISTS chunks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    recording_id TEXT NOT NULL,
    field TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    chunk_text TEXT NOT NULL,
    embedding BLOB NOT NULL,  -- float32 little-endian
    created_at TEXT NOT NULL,
    UNIQUE(recording_id, field, chunk_index)
);

CREATE INDEX IF NOT EXISTS idx_chunks_recording ON chunks(recording_id);

-- Content hash per indexed recording
CREATE TABLE IF NOT EXISTS index_manifest (
    recording_id TEXT PRIMARY KEY,
    content_hash TEXT NOT NULL,
    indexed_at TEXT NOT NULL,
    chunk_count INTEGER NOT NULL
);
'''


# =============================================================================
# Contract
# =============================================================================

class VectorStore(ABC):
    """Storage and similarity search over chunk embeddings."""

    @abstractmethod
    def initialize(self) -> None:
        """Open storage and create the schema if needed."""

    @abstractmethod
    def add_chunks(self, chunks: List[IndexedChunk]) -> None:
        """Upsert chunks; each recording's previous chunks are replaced atomically."""

    @abstractmethod
    def replace_recording(self, recording_id: str, chunks: List[IndexedChunk], content_hash: str) -> None:
        """Replace one recording's chunks and manifest entry in one transaction."""

    @abstractmethod
    def delete_chunks_for_recording(self, recording_id: str) -> bool:
        """Remove a recording's chunks and manifest entry. True if anything existed."""

    @abstractmethod
    def search(
        self,
        query_embedding: Sequence[float],
        top_k: int = 20,
        min_score: float = 0.0
    ) -> List[VectorSearchResult]:
        """Chunks by descending cosine similarity, scores clamped to [0, 1]."""

    @abstractmethod
    def is_indexed(self, recording_id: str) -> bool:
        """True if the recording has chunks."""

    @abstractmethod
    def get_content_hash(self, recording_id: str) -> Optional[str]:
        """Hash recorded in the manifest, or None."""

    @abstractmethod
    def update_manifest(self, recording_id: str, content_hash: str, chunk_count: int) -> None:
        """Record the content hash a recording was indexed with."""

    @abstractmethod
    def get_indexed_recording_ids(self) -> List[str]:
        """Recording IDs with chunks or a manifest entry."""

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        """total_chunks, total_recordings, total_size (bytes)."""

    @abstractmethod
    def clear(self) -> None:
        """Delete all chunks and manifest entries."""

    @abstractmethod
    def close(self) -> None:
        """Release storage resources."""


# =============================================================================
# SQLite Implementation
# =============================================================================

class SqliteVectorStore(VectorStore):
    """
    SQLite-backed vector store with numpy similarity search.

    A single connection is shared; writes are serialised with a lock.
    """

    def __init__(self, db_path: Union[str, Path], dimensions: int = EMBEDDING_DIMENSIONS):
        """
        Initialize the store.

        Args:
            db_path: Path to the SQLite file (':memory:' for a private in-memory db)
            dimensions: Embedding dimension every stored vector must have
        """
        self.db_path = str(db_path)
        self.dimensions = dimensions
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def initialize(self) -> None:
        with self._lock:
            if self._conn is not None:
                return

            if self.db_path != ':memory:':
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            try:
                conn = sqlite3.connect(self.db_path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.executescript(SCHEMA)
            except sqlite3.Error as e:
                raise VectorStoreError(
                    f"Failed to open vector store: {e}", original_error=e, path=self.db_path
                ) from e

            self._conn = conn
            logger.info(f"Vector store ready at {self.db_path}")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements in one transaction; roll back on any error."""
        self.initialize()
        with self._lock:
            conn = self._conn
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise VectorStoreError(f"Vector store write failed: {e}", original_error=e) from e
            except Exception:
                conn.rollback()
                raise

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        self.initialize()
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise VectorStoreError(f"Vector store query failed: {e}", original_error=e) from e

    # =========================================================================
    # Writes
    # =========================================================================

    def add_chunks(self, chunks: List[IndexedChunk]) -> None:
        if not chunks:
            return

        recording_ids = list(dict.fromkeys(c.recording_id for c in chunks))
        with self._transaction() as conn:
            for recording_id in recording_ids:
                conn.execute('DELETE FROM chunks WHERE recording_id = ?', (recording_id,))
            self._insert_chunks(conn, chunks)

        logger.debug(f"Stored {len(chunks)} chunks for {len(recording_ids)} recordings")

    def replace_recording(self, recording_id: str, chunks: List[IndexedChunk], content_hash: str) -> None:
        for chunk in chunks:
            if chunk.recording_id != recording_id:
                raise ValueError(
                    f"Chunk belongs to {chunk.recording_id}, not {recording_id}"
                )

        with self._transaction() as conn:
            conn.execute('DELETE FROM chunks WHERE recording_id = ?', (recording_id,))
            self._insert_chunks(conn, chunks)
            self._write_manifest(conn, recording_id, content_hash, len(chunks))

    def _insert_chunks(self, conn: sqlite3.Connection, chunks: List[IndexedChunk]) -> None:
        rows = []
        for chunk in chunks:
            embedding = self._check_dimensions(chunk.embedding)
            rows.append((
                chunk.recording_id,
                chunk.field,
                chunk.chunk_index,
                chunk.chunk_text,
                self._to_blob(embedding),
                chunk.created_at.isoformat(),
            ))

        conn.executemany('''
            INSERT OR REPLACE INTO chunks
                (recording_id, field, chunk_index, chunk_text, embedding, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        ''', rows)

    def delete_chunks_for_recording(self, recording_id: str) -> bool:
        with self._transaction() as conn:
            chunks_deleted = conn.execute(
                'DELETE FROM chunks WHERE recording_id = ?', (recording_id,)
            ).rowcount
            manifest_deleted = conn.execute(
                'DELETE FROM index_manifest WHERE recording_id = ?', (recording_id,)
            ).rowcount

        return (chunks_deleted + manifest_deleted) > 0

    def update_manifest(self, recording_id: str, content_hash: str, chunk_count: int) -> None:
        with self._transaction() as conn:
            self._write_manifest(conn, recording_id, content_hash, chunk_count)

    def _write_manifest(self, conn, recording_id, content_hash, chunk_count) -> None:
        conn.execute('''
            INSERT OR REPLACE INTO index_manifest
                (recording_id, content_hash, indexed_at, chunk_count)
            VALUES (?, ?, ?, ?)
        ''', (recording_id, content_hash, datetime.now().isoformat(), chunk_count))

    def clear(self) -> None:
        with self._transaction() as conn:
            conn.execute('DELETE FROM chunks')
            conn.execute('DELETE FROM index_manifest')
        logger.info("Vector store cleared")

    # =========================================================================
    # Reads
    # =========================================================================

    def search(
        self,
        query_embedding: Sequence[float],
        top_k: int = 20,
        min_score: float = 0.0
    ) -> List[VectorSearchResult]:
        """
        Brute-force cosine search.

        Args:
            query_embedding: Query vector of the store's dimension
            top_k: Maximum number of chunks to return
            min_score: Drop chunks scoring below this

        Returns:
            VectorSearchResults sorted by score descending
        """
        query = self._normalize(self._check_dimensions(query_embedding))
        if top_k <= 0:
            return []

        rows = self._query(
            'SELECT id, recording_id, field, chunk_index, chunk_text, embedding FROM chunks'
        )

        valid_rows = []
        vectors = []
        for row in rows:
            vector = self._decode_embedding(row)
            if vector is None:
                continue
            valid_rows.append(row)
            vectors.append(vector)

        if not vectors:
            return []

        # Stored vectors are unit length, so the dot product is the cosine
        scores = np.clip(np.vstack(vectors).astype(np.float64) @ query, 0.0, 1.0)
        order = np.argsort(-scores, kind='stable')

        results = []
        for idx in order:
            score = float(scores[idx])
            if score < min_score:
                break
            row = valid_rows[idx]
            results.append(VectorSearchResult(
                chunk_id=row['id'],
                recording_id=row['recording_id'],
                field=row['field'],
                chunk_index=row['chunk_index'],
                chunk_text=row['chunk_text'],
                score=score,
            ))
            if len(results) >= top_k:
                break

        return results

    def is_indexed(self, recording_id: str) -> bool:
        rows = self._query('SELECT 1 FROM chunks WHERE recording_id = ? LIMIT 1', (recording_id,))
        return bool(rows)

    def get_content_hash(self, recording_id: str) -> Optional[str]:
        rows = self._query(
            'SELECT content_hash FROM index_manifest WHERE recording_id = ?', (recording_id,)
        )
        return rows[0]['content_hash'] if rows else None

    def get_manifest_entry(self, recording_id: str) -> Optional[Dict[str, Any]]:
        rows = self._query(
            'SELECT recording_id, content_hash, indexed_at, chunk_count '
            'FROM index_manifest WHERE recording_id = ?',
            (recording_id,)
        )
        return dict(rows[0]) if rows else None

    def get_indexed_recording_ids(self) -> List[str]:
        rows = self._query('''
            SELECT recording_id FROM chunks
            UNION
            SELECT recording_id FROM index_manifest
            ORDER BY recording_id
        ''')
        return [row['recording_id'] for row in rows]

    def get_chunks_for_recording(self, recording_id: str) -> List[IndexedChunk]:
        rows = self._query('''
            SELECT id, recording_id, field, chunk_index, chunk_text, embedding, created_at
            FROM chunks WHERE recording_id = ?
            ORDER BY field, chunk_index
        ''', (recording_id,))

        chunks = []
        for row in rows:
            embedding = self._decode_embedding(row)
            if embedding is None:
                continue
            try:
                chunks.append(IndexedChunk(
                    id=row['id'],
                    recording_id=row['recording_id'],
                    field=row['field'],
                    chunk_index=row['chunk_index'],
                    chunk_text=row['chunk_text'],
                    embedding=embedding,
                    created_at=datetime.fromisoformat(row['created_at']),
                    dimensions=self.dimensions,
                ))
            except (ValueError, TypeError) as e:
                # InvalidInputError and DimensionMismatchError are ValueErrors
                logger.warning(
                    f"Skipping corrupt chunk {row['id']}: {e}",
                    extra={'recording_id': row['recording_id']}
                )

        return chunks

    def get_stats(self) -> Dict[str, Any]:
        row = self._query(
            'SELECT COUNT(*) AS total_chunks, COUNT(DISTINCT recording_id) AS total_recordings '
            'FROM chunks'
        )[0]

        total_size = 0
        if self.db_path != ':memory:' and Path(self.db_path).exists():
            total_size = Path(self.db_path).stat().st_size

        return {
            'total_chunks': row['total_chunks'],
            'total_recordings': row['total_recordings'],
            'total_size': total_size,
        }

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # =========================================================================
    # Vector Helpers
    # =========================================================================

    def _check_dimensions(self, vector: Sequence[float]) -> np.ndarray:
        vec = np.asarray(vector, dtype=np.float64)
        if vec.ndim != 1 or vec.shape[0] != self.dimensions:
            raise DimensionMismatchError(
                f"Expected {self.dimensions}-dimensional vector, got shape {vec.shape}"
            )
        return vec

    def _decode_embedding(self, row: sqlite3.Row) -> Optional[np.ndarray]:
        """Stored vector for a row, or None (with a warning) if it is unusable."""
        blob = row['embedding']
        if blob is None or len(blob) != self.dimensions * BLOB_DTYPE.itemsize:
            logger.warning(
                f"Skipping chunk {row['id']} with malformed embedding",
                extra={'recording_id': row['recording_id']}
            )
            return None

        vector = np.frombuffer(blob, dtype=BLOB_DTYPE)
        if not np.isfinite(vector).all():
            logger.warning(
                f"Skipping chunk {row['id']} with non-finite embedding",
                extra={'recording_id': row['recording_id']}
            )
            return None

        return vector

    @staticmethod
    def _normalize(vec: np.ndarray) -> np.ndarray:
        norm = np.linalg.norm(vec)
        return vec if norm == 0 else vec / norm

    def _to_blob(self, embedding: np.ndarray) -> bytes:
        return self._normalize(embedding).astype(BLOB_DTYPE).tobytes()
