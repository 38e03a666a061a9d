"""
Search Index Synchronisation

Keeps the vector store and the keyword index in step with the recording
store.

A sync:
1. Fingerprints every recording and compares it with the manifest hash
2. Re-indexes new and modified recordings (chunk, embed, store)
3. Drops chunks of recordings that no longer exist
4. Rebuilds the keyword index

A recording that fails to index is logged and skipped; the sync carries
on with the rest and the failed recording is retried on the next sync.

Usage:
    from search.indexer import build_services

    searcher, indexer = build_services(load_config())
    await indexer.sync_indexes()
    results = await searcher.search("morning run")
"""

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from core.logging_config import log_performance
from .content_hasher import ContentHasher
from .keyword_index import IndexManager
from .models import Recording
from .recording_chunker import RecordingChunker

if TYPE_CHECKING:
    from core.config import SearchConfig
    from database.recording_store import RecordingStore
    from database.vector_store import VectorStore
    from .embeddings import EmbeddingProvider
    from .hybrid_search import HybridSearcher

logger = logging.getLogger(__name__)


class IndexingStatus(Enum):
    """What the indexer is currently doing."""
    IDLE = "idle"
    SYNCING = "syncing"        # comparing hashes
    INDEXING = "indexing"      # chunking and storing
    ERROR = "error"


class SearchIndexer:
    """
    Orchestrates change detection and index maintenance.

    Only one sync runs at a time; concurrent callers wait for the sync
    in flight and share its outcome.
    """

    def __init__(
        self,
        vector_store: 'VectorStore',
        index_manager: IndexManager,
        chunker: RecordingChunker,
        recording_store: 'RecordingStore',
        hasher: Optional[ContentHasher] = None
    ):
        self.vector_store = vector_store
        self.index_manager = index_manager
        self.chunker = chunker
        self.recording_store = recording_store
        self.hasher = hasher or ContentHasher()

        self.status = IndexingStatus.IDLE
        self.error_message: Optional[str] = None
        self.total_to_index = 0
        self.indexed_count = 0
        self.failed_ids: List[str] = []

        self._sync_task: Optional[asyncio.Task] = None
        self._listeners: List[Callable[['SearchIndexer'], None]] = []

    @property
    def progress(self) -> float:
        return self.indexed_count / self.total_to_index if self.total_to_index else 0.0

    @property
    def is_syncing(self) -> bool:
        return self._sync_task is not None

    # =========================================================================
    # Sync
    # =========================================================================

    async def sync_indexes(self) -> None:
        """Bring both indexes up to date, joining any sync in flight."""
        if self._sync_task is None:
            self._sync_task = asyncio.get_running_loop().create_task(self._run_sync())
        else:
            logger.debug("Sync already in progress, waiting")

        await asyncio.shield(self._sync_task)

    async def _run_sync(self) -> None:
        try:
            await self._sync()
        except Exception as e:
            self._set_status(IndexingStatus.ERROR, error=str(e))
            raise
        finally:
            self._sync_task = None

    @log_performance('search.indexer')
    async def _sync(self) -> None:
        self._set_status(IndexingStatus.SYNCING)

        recordings = self.recording_store.list_recordings()
        to_index, to_remove = self._diff(recordings)

        logger.info(f"Changes detected: {len(to_index)} to index, {len(to_remove)} to remove")

        self.total_to_index = len(to_index) + len(to_remove)
        self.indexed_count = 0
        self.failed_ids = []
        self._set_status(IndexingStatus.INDEXING)

        for recording_id in to_remove:
            self.vector_store.delete_chunks_for_recording(recording_id)
            self.indexed_count += 1
            self._notify_listeners()

        for recording in to_index:
            try:
                await self._index_recording(recording)
            except Exception as e:
                logger.error(
                    f"Error indexing recording: {e}",
                    extra={'recording_id': recording.id}
                )
                self.failed_ids.append(recording.id)
                continue
            self.indexed_count += 1
            self._notify_listeners()

        await self.index_manager.rebuild_index()

        self._set_status(IndexingStatus.IDLE)
        logger.info(
            f"Sync complete. Indexed: {len(to_index) - len(self.failed_ids)}, "
            f"Removed: {len(to_remove)}, Failed: {len(self.failed_ids)}"
        )

    def _diff(self, recordings: List[Recording]) -> Tuple[List[Recording], List[str]]:
        """Recordings needing (re)indexing, and indexed IDs no longer in the store."""
        current_ids = {r.id for r in recordings}

        to_index = []
        for recording in recordings:
            stored_hash = self.vector_store.get_content_hash(recording.id)
            if stored_hash is None:
                to_index.append(recording)
            elif stored_hash != self.hasher.compute_hash(recording):
                logger.debug("Modified recording", extra={'recording_id': recording.id})
                to_index.append(recording)

        to_remove = [
            recording_id for recording_id in self.vector_store.get_indexed_recording_ids()
            if recording_id not in current_ids
        ]

        return to_index, to_remove

    # =========================================================================
    # Single-recording Hooks
    # =========================================================================

    async def index_recording(self, recording: Recording) -> int:
        """
        (Re)index one recording after it was created or edited.

        Returns:
            Number of chunks stored
        """
        count = await self._index_recording(recording)
        self.index_manager.invalidate()
        return count

    async def _index_recording(self, recording: Recording) -> int:
        # Embedding happens before any write, so a failure leaves old chunks intact
        chunks = await self.chunker.chunk_recording(recording)
        content_hash = self.hasher.compute_hash(recording)

        if not chunks:
            logger.warning("No chunks generated", extra={'recording_id': recording.id})

        self.vector_store.replace_recording(recording.id, chunks, content_hash)

        logger.debug(
            f"Indexed recording: {len(chunks)} chunks",
            extra={'recording_id': recording.id}
        )
        return len(chunks)

    async def remove_recording(self, recording_id: str) -> bool:
        """Drop a deleted recording from both indexes."""
        removed = self.vector_store.delete_chunks_for_recording(recording_id)
        self.index_manager.invalidate()
        return removed

    async def force_full_reindex(self) -> None:
        """Discard everything and index all recordings from scratch."""
        logger.info("Forcing full reindex")
        self.vector_store.clear()
        self.index_manager.invalidate()
        await self.sync_indexes()

    def get_stats(self) -> Dict[str, Any]:
        return {
            'vector_store': self.vector_store.get_stats(),
            'keyword_index': self.index_manager.get_stats(),
            'status': self.status.value,
            'progress': self.progress,
            'failed': list(self.failed_ids),
            'error': self.error_message,
        }

    # =========================================================================
    # Status Listeners
    # =========================================================================

    def add_listener(self, listener: Callable[['SearchIndexer'], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[['SearchIndexer'], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set_status(self, status: IndexingStatus, error: Optional[str] = None) -> None:
        self.status = status
        self.error_message = error
        self._notify_listeners()

    def _notify_listeners(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.warning(f"Status listener failed: {e}")

    def dispose(self) -> None:
        self._listeners.clear()
        self.vector_store.close()


# =============================================================================
# Wiring
# =============================================================================

def build_services(
    config: 'SearchConfig',
    recording_store: Optional['RecordingStore'] = None,
    embedder: Optional['EmbeddingProvider'] = None,
) -> Tuple['HybridSearcher', SearchIndexer]:
    """
    Assemble a searcher and indexer sharing one set of stores.

    Args:
        config: Search configuration
        recording_store: Defaults to a JSONL store at config.recordings_path
        embedder: Defaults to a sentence-transformers embedder from config
    """
    from database.recording_store import JsonlRecordingStore
    from database.vector_store import SqliteVectorStore
    from .embeddings import SentenceTransformerEmbedder
    from .hybrid_search import HybridSearcher
    from .keyword_index import KeywordIndex

    if recording_store is None:
        recording_store = JsonlRecordingStore(config.recordings_path)
    if embedder is None:
        embedder = SentenceTransformerEmbedder(
            model_name=config.embedding_model,
            dimensions=config.embedding_dimensions,
        )

    vector_store = SqliteVectorStore(config.vector_db_path, dimensions=embedder.dimensions)
    vector_store.initialize()

    index_manager = IndexManager(KeywordIndex(), recording_store)
    chunker = RecordingChunker(
        embedder,
        similarity_threshold=config.similarity_threshold,
        max_chunk_tokens=config.max_chunk_tokens,
    )

    searcher = HybridSearcher(
        embedder, vector_store, index_manager, recording_store, rrf_k=config.rrf_k
    )
    indexer = SearchIndexer(vector_store, index_manager, chunker, recording_store)
    return searcher, indexer


# =============================================================================
# CLI
# =============================================================================

if __name__ == '__main__':
    import argparse
    import json
    from pathlib import Path

    from core.config import load_config
    from core.logging_config import setup_logging

    parser = argparse.ArgumentParser(description="Sync the search index with the recording store")
    parser.add_argument('--config', '-c', type=Path, help="Config YAML")
    parser.add_argument('--full', action='store_true', help="Discard the index and rebuild everything")
    parser.add_argument('--stats', action='store_true', help="Print index statistics afterwards")

    args = parser.parse_args()
    config = load_config(args.config)
    setup_logging(config.log_level, json_format=config.log_json)

    async def main():
        _, indexer = build_services(config)
        try:
            if args.full:
                await indexer.force_full_reindex()
            else:
                await indexer.sync_indexes()
            return indexer.get_stats()
        finally:
            indexer.dispose()

    stats = asyncio.run(main())
    if args.stats:
        print(json.dumps(stats, indent=2))
