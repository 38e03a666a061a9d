"""
BM25 Keyword Index

In-memory BM25 index over whole recordings, built with bm25s.

Each recording becomes one document:
    title (twice, for extra weight), summary, context, tags, transcript

The index is never patched; it is rebuilt wholesale from the recording
store whenever it has been invalidated. IndexManager owns that lifecycle
and guarantees a single build at a time.

Usage:
    from search.keyword_index import KeywordIndex, IndexManager

    manager = IndexManager(KeywordIndex(), recording_store)
    matches = await manager.search("project alpha", limit=20)
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional

import bm25s

from core.errors import IndexNotReadyError
from core.logging_config import log_performance
from .models import KeywordMatch, Recording

logger = logging.getLogger(__name__)

STOPWORDS = "en"


@dataclass(frozen=True)
class _IndexSnapshot:
    """An immutable built index; swapped in as a single reference."""
    retriever: Optional[bm25s.BM25]
    recordings: List[Recording]


def recording_to_document(recording: Recording) -> str:
    """Searchable text for one recording; empty parts are skipped."""
    parts = []

    if recording.title:
        parts.extend([recording.title, recording.title])
    if recording.summary:
        parts.append(recording.summary)
    if recording.context:
        parts.append(recording.context)
    if recording.tags:
        parts.append(' '.join(recording.tags))
    if recording.transcript:
        parts.append(recording.transcript)

    return '\n'.join(parts)


def find_matched_fields(recording: Recording, query: str) -> FrozenSet[str]:
    """Fields containing any query term (case-insensitive substring match)."""
    matched = set()

    for term in query.lower().split():
        if term in recording.title.lower():
            matched.add('title')
        if term in recording.summary.lower():
            matched.add('summary')
        if term in recording.context.lower():
            matched.add('context')
        if term in recording.transcript.lower():
            matched.add('transcript')
        if any(term in tag.lower() for tag in recording.tags):
            matched.add('tags')

    return frozenset(matched)


# =============================================================================
# Keyword Index
# =============================================================================

class KeywordIndex:
    """
    BM25 index over recordings.

    Searching before the first build (or after clear) raises
    IndexNotReadyError. A build replaces the whole index atomically, so
    concurrent searches see either the old or the new index.
    """

    def __init__(self):
        self._snapshot: Optional[_IndexSnapshot] = None
        self._lock = threading.Lock()

    @property
    def is_built(self) -> bool:
        return self._snapshot is not None

    @property
    def needs_rebuild(self) -> bool:
        return self._snapshot is None

    @property
    def index_size(self) -> int:
        snapshot = self._snapshot
        return len(snapshot.recordings) if snapshot else 0

    @log_performance('search.keyword_index')
    def build_index(
        self,
        recordings: List[Recording],
        is_current: Optional[Callable[[], bool]] = None
    ) -> bool:
        """
        Build a new index from recordings and swap it in.

        Args:
            recordings: Full recording corpus (may be empty)
            is_current: Checked under the swap lock; if it returns False
                        the new index is discarded

        Returns:
            True if the new index was swapped in
        """
        recordings = list(recordings)
        documents = [recording_to_document(r) for r in recordings]
        retriever = None

        if any(doc.strip() for doc in documents):
            corpus_tokens = bm25s.tokenize(
                documents,
                stopwords=STOPWORDS,
                return_ids=False,
                show_progress=False,
            )
            if any(token for tokens in corpus_tokens for token in tokens):
                retriever = bm25s.BM25()
                retriever.index(corpus_tokens, show_progress=False)

        with self._lock:
            if is_current is not None and not is_current():
                logger.info("Discarding keyword index built from stale recordings")
                return False
            self._snapshot = _IndexSnapshot(retriever=retriever, recordings=recordings)

        logger.info(f"Keyword index built ({len(recordings)} recordings)")
        return True

    def search(self, query: str, limit: int = 20) -> List[KeywordMatch]:
        """
        Rank recordings by BM25 score.

        Args:
            query: Free-text query
            limit: Maximum number of matches

        Returns:
            KeywordMatches with descending scores and 0-based ranks

        Raises:
            IndexNotReadyError: If the index has not been built
        """
        snapshot = self._snapshot
        if snapshot is None:
            raise IndexNotReadyError("Keyword index not built. Call build_index() first.")

        if not query.strip() or snapshot.retriever is None or limit <= 0:
            return []

        retriever = snapshot.retriever
        query_tokens = bm25s.tokenize(
            [query], stopwords=STOPWORDS, return_ids=False, show_progress=False
        )[0]
        query_tokens = [t for t in query_tokens if t and t in retriever.vocab_dict]
        if not query_tokens:
            return []

        k = min(limit, len(snapshot.recordings))
        doc_ids, scores = retriever.retrieve([query_tokens], k=k, show_progress=False)

        matches = []
        for i in range(doc_ids.shape[1]):
            idx = int(doc_ids[0, i])
            score = float(scores[0, i])
            if score <= 0 or not 0 <= idx < len(snapshot.recordings):
                continue
            recording = snapshot.recordings[idx]
            matches.append(KeywordMatch(
                recording=recording,
                bm25_score=score,
                rank=len(matches),
                matched_fields=find_matched_fields(recording, query),
            ))

        logger.debug(f"Keyword search found {len(matches)} matches")
        return matches

    def clear(self) -> None:
        with self._lock:
            self._snapshot = None


# =============================================================================
# Index Lifecycle
# =============================================================================

class IndexManager:
    """
    Build/rebuild/invalidate lifecycle for a KeywordIndex.

    At most one build runs at a time. Callers that ask for a rebuild while
    one is in flight wait for that build and share its outcome.
    """

    def __init__(self, index: KeywordIndex, recording_store):
        """
        Args:
            index: The keyword index to manage
            recording_store: Anything with list_recordings() -> List[Recording]
        """
        self.index = index
        self.recording_store = recording_store
        self.last_built: Optional[datetime] = None
        self._needs_rebuild = True
        self._generation = 0
        self._build_task: Optional[asyncio.Task] = None

    @property
    def needs_rebuild(self) -> bool:
        return self._needs_rebuild

    @property
    def is_building(self) -> bool:
        return self._build_task is not None

    async def ensure_index_ready(self) -> None:
        """Build the index if it has never been built or was invalidated."""
        while self._needs_rebuild:
            await self.rebuild_index()

    async def rebuild_index(self) -> None:
        """
        Rebuild from the recording store, joining any build in flight.

        Raises:
            Whatever the recording store or index build raised; the index
            then still needs a rebuild.
        """
        if self._build_task is None:
            self._build_task = asyncio.get_running_loop().create_task(self._run_build())
        else:
            logger.debug("Keyword index build in progress, waiting")

        # Shielded so a cancelled waiter does not cancel the shared build
        await asyncio.shield(self._build_task)

    async def _run_build(self) -> None:
        generation = self._generation
        try:
            count = await asyncio.to_thread(self._load_and_build, generation)
        except Exception as e:
            logger.error(f"Keyword index rebuild failed: {e}")
            raise
        finally:
            self._build_task = None

        if generation == self._generation:
            self._needs_rebuild = False
            self.last_built = datetime.now()
        else:
            logger.info("Keyword index invalidated during rebuild; another rebuild is needed")

        logger.info(f"Keyword index rebuilt ({count} recordings)")

    def _load_and_build(self, generation: int) -> int:
        recordings = list(self.recording_store.list_recordings())
        self.index.build_index(recordings, is_current=lambda: generation == self._generation)
        return len(recordings)

    def invalidate(self) -> None:
        """Drop the current index; the next search triggers a rebuild."""
        self._generation += 1
        self._needs_rebuild = True
        self.index.clear()
        self.last_built = None
        logger.debug("Keyword index invalidated")

    async def search(self, query: str, limit: int = 20) -> List[KeywordMatch]:
        """Ensure the index is ready, then search it."""
        await self.ensure_index_ready()
        return self.index.search(query, limit=limit)

    def get_stats(self) -> Dict[str, Any]:
        return {
            'is_built': not self._needs_rebuild,
            'is_building': self.is_building,
            'index_size': self.index.index_size,
            'last_built': self.last_built.isoformat() if self.last_built else None,
        }
