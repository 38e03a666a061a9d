"""
Hybrid Search for Journal Recall

Combines BM25 keyword search and semantic vector search over recording
chunks. Uses Reciprocal Rank Fusion (RRF) to merge the two rankings.

Features:
- Concurrent keyword and vector retrieval
- Falls back to one path when the other fails
- Per-recording fusion with the best matching chunk kept for display

Usage:
    from search.hybrid_search import HybridSearcher

    searcher = HybridSearcher(embedder, vector_store, index_manager, recording_store)
    results = await searcher.search("project alpha timeline", limit=10)

    for result in results:
        print(f"{result.rrf_score:.4f} - {result.recording.title}")
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional

from core.errors import SearchError
from .embeddings import EmbeddingProvider, normalize
from .keyword_index import IndexManager
from .models import FULL_RECORDING_FIELD, KeywordMatch, SearchResult, VectorSearchResult

if TYPE_CHECKING:
    from database.recording_store import RecordingStore
    from database.vector_store import VectorStore

logger = logging.getLogger(__name__)

DEFAULT_RRF_K = 60.0


@dataclass
class FusedHit:
    """RRF score for one recording plus the entries that produced it."""
    recording_id: str
    rrf_score: float = 0.0
    vector_hit: Optional[VectorSearchResult] = None
    vector_rank: Optional[int] = None
    keyword_match: Optional[KeywordMatch] = None
    keyword_rank: Optional[int] = None


def reciprocal_rank_fusion(
    vector_results: List[VectorSearchResult],
    keyword_results: List[KeywordMatch],
    k: float = DEFAULT_RRF_K
) -> List[FusedHit]:
    """
    Merge two rankings with Reciprocal Rank Fusion.

    RRF score = sum(1 / (k + rank)) over the lists containing a recording,
    with 0-based ranks. A recording's rank in the vector list is the
    position of its first (best) chunk; later chunks of the same
    recording add nothing.

    Args:
        vector_results: Chunks sorted by cosine score descending
        keyword_results: Recordings sorted by BM25 score descending
        k: RRF constant (higher = flatter distribution)

    Returns:
        FusedHits sorted by RRF score descending
    """
    hits: Dict[str, FusedHit] = {}

    for rank, result in enumerate(vector_results):
        hit = hits.get(result.recording_id)
        if hit is None:
            hit = hits[result.recording_id] = FusedHit(recording_id=result.recording_id)
        if hit.vector_hit is not None:
            continue
        hit.vector_hit = result
        hit.vector_rank = rank
        hit.rrf_score += 1.0 / (k + rank)

    for rank, match in enumerate(keyword_results):
        hit = hits.get(match.recording_id)
        if hit is None:
            hit = hits[match.recording_id] = FusedHit(recording_id=match.recording_id)
        if hit.keyword_match is not None:
            continue
        hit.keyword_match = match
        hit.keyword_rank = rank
        hit.rrf_score += 1.0 / (k + rank)

    return sorted(hits.values(), key=lambda h: h.rrf_score, reverse=True)


class HybridSearcher:
    """
    Hybrid search combining BM25 and semantic search.

    Each path fetches twice the requested limit so fusion has enough
    candidates from both sides.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_store: 'VectorStore',
        index_manager: IndexManager,
        recording_store: 'RecordingStore',
        rrf_k: float = DEFAULT_RRF_K
    ):
        """
        Initialize hybrid searcher.

        Args:
            embedder: Embeds the query for vector search
            vector_store: Chunk store searched by cosine similarity
            index_manager: Owns the BM25 keyword index
            recording_store: Resolves recording IDs for the results
            rrf_k: RRF constant
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.index_manager = index_manager
        self.recording_store = recording_store
        self.rrf_k = rrf_k

    async def search(self, query: str, limit: int = 20) -> List[SearchResult]:
        """
        Search using hybrid keyword + semantic approach.

        Args:
            query: Search query
            limit: Maximum results to return

        Returns:
            List of SearchResult objects sorted by RRF score

        Raises:
            SearchError: If both retrieval paths fail
        """
        if not query or not query.strip() or limit <= 0:
            return []

        fetch_limit = limit * 2
        vector_outcome, keyword_outcome = await asyncio.gather(
            self._vector_search(query, fetch_limit),
            self.index_manager.search(query, limit=fetch_limit),
            return_exceptions=True,
        )

        for outcome in (vector_outcome, keyword_outcome):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome

        vector_failed = isinstance(vector_outcome, Exception)
        keyword_failed = isinstance(keyword_outcome, Exception)

        if vector_failed and keyword_failed:
            raise SearchError(
                "Both vector and keyword search failed",
                vector_error=str(vector_outcome),
                keyword_error=str(keyword_outcome)
            ) from keyword_outcome

        if vector_failed:
            logger.warning(f"Vector search failed, using keyword results only: {vector_outcome}")
            vector_outcome = []
        if keyword_failed:
            logger.warning(f"Keyword search failed, using vector results only: {keyword_outcome}")
            keyword_outcome = []

        fused = reciprocal_rank_fusion(vector_outcome, keyword_outcome, k=self.rrf_k)
        results = self._build_results(fused, limit)

        logger.info(
            f"Hybrid search returned {len(results)} results",
            extra={
                'vector_hits': len(vector_outcome),
                'keyword_hits': len(keyword_outcome),
            }
        )
        return results

    async def _vector_search(self, query: str, limit: int) -> List[VectorSearchResult]:
        query_vec = normalize(await self.embedder.embed(query))
        return self.vector_store.search(query_vec, top_k=limit)

    def _build_results(self, fused: List[FusedHit], limit: int) -> List[SearchResult]:
        results = []

        for hit in fused:
            recording = self.recording_store.get_recording(hit.recording_id)
            if recording is None:
                logger.warning(
                    "Search hit for missing recording, skipping",
                    extra={'recording_id': hit.recording_id}
                )
                continue

            vector_hit = hit.vector_hit
            keyword_match = hit.keyword_match

            results.append(SearchResult(
                recording=recording,
                matched_field=vector_hit.field if vector_hit else FULL_RECORDING_FIELD,
                matched_chunk=vector_hit.chunk_text if vector_hit else None,
                matched_fields=keyword_match.matched_fields if keyword_match else frozenset(),
                rrf_score=hit.rrf_score,
                vector_score=vector_hit.score if vector_hit else None,
                vector_rank=hit.vector_rank,
                keyword_score=keyword_match.bm25_score if keyword_match else None,
                keyword_rank=hit.keyword_rank,
            ))

            if len(results) >= limit:
                break

        return results


# =============================================================================
# CLI
# =============================================================================

if __name__ == '__main__':
    import argparse
    import json
    from pathlib import Path

    from core.config import load_config
    from core.logging_config import setup_logging
    from .indexer import build_services

    parser = argparse.ArgumentParser(description="Hybrid search over journal recordings")
    parser.add_argument('query', help="Search query")
    parser.add_argument('--config', '-c', type=Path, help="Config YAML")
    parser.add_argument('--limit', '-n', type=int, help="Maximum results")
    parser.add_argument('--sync', action='store_true', help="Sync the vector index first")
    parser.add_argument('--json', action='store_true', help="Print results as JSON")

    args = parser.parse_args()
    config = load_config(args.config)
    setup_logging(config.log_level, json_format=config.log_json)

    async def main():
        searcher, indexer = build_services(config)
        try:
            if args.sync:
                await indexer.sync_indexes()
            return await searcher.search(args.query, limit=args.limit or config.default_limit)
        finally:
            indexer.dispose()

    results = asyncio.run(main())

    if args.json:
        print(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        for result in results:
            print(f"{result.rrf_score:.4f}  [{result.relevance_label}]  {result.recording.title or result.recording.id}")
            print(f"        {result.get_snippet(120)}")
