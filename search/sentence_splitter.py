"""
Sentence Splitter

Rule-based sentence segmentation tuned for voice transcripts.

Handles:
- Abbreviations (Dr., Mrs., e.g., p.m.)
- Decimal numbers (3.14)
- URLs and email addresses
- Runs of terminal punctuation ("What?!")

URLs and emails come back as the literal markers [URL] and [EMAIL];
their original text is not restored.

Usage:
    from search.sentence_splitter import SentenceSplitter

    splitter = SentenceSplitter()
    splitter.split("Dr. Smith is here. He is a doctor.")
    # ['Dr. Smith is here.', 'He is a doctor.']
"""

import logging
import re
from typing import List, Optional

logger = logging.getLogger(__name__)

ABBREVIATIONS = frozenset({
    'dr', 'mr', 'mrs', 'ms', 'prof', 'sr', 'jr', 'phd', 'md',
    'inc', 'corp', 'ltd', 'etc', 'e.g', 'i.e', 'vs', 'p.m', 'a.m',
})

SENTENCE_END = frozenset('.!?')
CLOSING_MARKS = frozenset('"\')]')

URL_PATTERN = re.compile(r'https?://\S+|www\.\S+')
EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')

URL_PLACEHOLDER = re.compile(r'__URL_\d+__')
EMAIL_PLACEHOLDER = re.compile(r'__EMAIL_\d+__')


class SentenceSplitter:
    """Split text into trimmed, non-empty sentences."""

    def split(self, text: str) -> List[str]:
        """
        Split text into sentences.

        Args:
            text: Input text (any length, may be empty)

        Returns:
            Sentences in order, whitespace trimmed, empties removed
        """
        if not text:
            return []

        protected = self._protect_urls(text)
        sentences = [self._restore_urls(s) for s in self._split_on_punctuation(protected)]

        logger.debug(f"Split {len(text)} chars into {len(sentences)} sentences")
        return sentences

    # -------------------------------------------------------------------------
    # URL / email protection
    # -------------------------------------------------------------------------

    def _protect_urls(self, text: str) -> str:
        counter = iter(range(len(text)))
        text = URL_PATTERN.sub(lambda m: f'__URL_{next(counter)}__', text)
        return EMAIL_PATTERN.sub(lambda m: f'__EMAIL_{next(counter)}__', text)

    def _restore_urls(self, sentence: str) -> str:
        sentence = URL_PLACEHOLDER.sub('[URL]', sentence)
        return EMAIL_PLACEHOLDER.sub('[EMAIL]', sentence)

    # -------------------------------------------------------------------------
    # Boundary detection
    # -------------------------------------------------------------------------

    def _split_on_punctuation(self, text: str) -> List[str]:
        sentences = []
        start = 0

        for i, char in enumerate(text):
            if char in SENTENCE_END and self._is_real_boundary(text, i):
                sentence = text[start:i + 1].strip()
                if sentence:
                    sentences.append(sentence)
                start = i + 1

        tail = text[start:].strip()
        if tail:
            sentences.append(tail)

        return sentences

    def _is_real_boundary(self, text: str, index: int) -> bool:
        if self._is_abbreviation(text, index) or self._is_decimal(text, index):
            return False

        next_char = self._next_non_whitespace(text, index)
        if next_char is not None:
            if next_char in CLOSING_MARKS:
                return False
            # Lowercase continuation means the sentence has not ended
            if 'a' <= next_char <= 'z':
                return False

        # "?!" collapses into one boundary at the last mark
        if index + 1 < len(text) and text[index + 1] in SENTENCE_END:
            return False

        return True

    def _is_abbreviation(self, text: str, index: int) -> bool:
        if text[index] != '.':
            return False

        start = index - 1
        while start >= 0 and not text[start].isspace():
            start -= 1

        return text[start + 1:index].lower() in ABBREVIATIONS

    def _is_decimal(self, text: str, index: int) -> bool:
        if text[index] != '.':
            return False
        return (
            0 < index < len(text) - 1
            and text[index - 1].isdigit()
            and text[index + 1].isdigit()
        )

    def _next_non_whitespace(self, text: str, index: int) -> Optional[str]:
        for i in range(index + 1, len(text)):
            if not text[i].isspace():
                return text[i]
        return None
