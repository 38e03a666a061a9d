"""
Content hashing for change detection.

A recording is re-indexed only when the SHA-256 fingerprint of its
searchable fields differs from the one stored in the index manifest.
File timestamps are not used because sync rewrites files without
changing their content.
"""

import hashlib
from typing import Iterable

from .models import Recording


class ContentHasher:
    """Fingerprint a recording's searchable content."""

    def compute_hash(self, recording: Recording) -> str:
        """
        SHA-256 hex digest of title, summary, context, tags and transcript.

        Fields are joined with newlines and tags with commas, in that order.
        """
        return self.compute_hash_from_fields(
            title=recording.title,
            summary=recording.summary,
            context=recording.context,
            tags=recording.tags,
            transcript=recording.transcript,
        )

    def compute_hash_from_fields(
        self,
        title: str,
        summary: str = '',
        context: str = '',
        tags: Iterable[str] = (),
        transcript: str = '',
    ) -> str:
        """Same digest as compute_hash, for callers without a Recording."""
        content = '\n'.join([title, summary, context, ','.join(tags), transcript])
        return hashlib.sha256(content.encode('utf-8')).hexdigest()
