"""
Search System for Journal Recall

Provides:
- Sentence splitting and semantic chunking of transcripts
- Local embeddings for semantic search
- BM25 keyword index with managed rebuilds
- Hybrid search combining both with Reciprocal Rank Fusion
- Index synchronisation driven by content hashes

Usage:
    from search import build_services

    searcher, indexer = build_services(config)
    await indexer.sync_indexes()
    results = await searcher.search("dentist appointment", limit=10)
"""

from .content_hasher import ContentHasher
from .embeddings import EmbeddingProvider, ModelCache, SentenceTransformerEmbedder
from .hybrid_search import HybridSearcher, reciprocal_rank_fusion
from .indexer import IndexingStatus, SearchIndexer, build_services
from .keyword_index import IndexManager, KeywordIndex
from .models import (
    Chunk, IndexedChunk, KeywordMatch, Recording, SearchResult, VectorSearchResult,
)
from .recording_chunker import RecordingChunker
from .semantic_chunker import SemanticChunker
from .sentence_splitter import SentenceSplitter

__all__ = [
    'ContentHasher',
    'EmbeddingProvider',
    'ModelCache',
    'SentenceTransformerEmbedder',
    'HybridSearcher',
    'reciprocal_rank_fusion',
    'IndexingStatus',
    'SearchIndexer',
    'build_services',
    'IndexManager',
    'KeywordIndex',
    'Chunk',
    'IndexedChunk',
    'KeywordMatch',
    'Recording',
    'SearchResult',
    'VectorSearchResult',
    'RecordingChunker',
    'SemanticChunker',
    'SentenceSplitter',
]
