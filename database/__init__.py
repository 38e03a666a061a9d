"""
Storage Layer for Journal Recall

SQLite-based chunk storage and a JSONL-backed recording store.

Features:
- Chunk embeddings stored as float32 BLOBs
- Index manifest for hash-based change detection
- Transactional per-recording replacement

Usage:
    from database import SqliteVectorStore

    store = SqliteVectorStore("data/vector_index.db")
    store.initialize()
    hits = store.search(query_embedding, top_k=20)
"""

from .recording_store import JsonlRecordingStore, RecordingStore
from .vector_store import SqliteVectorStore, VectorStore

__all__ = [
    'JsonlRecordingStore',
    'RecordingStore',
    'SqliteVectorStore',
    'VectorStore',
]
