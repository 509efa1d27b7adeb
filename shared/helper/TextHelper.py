"""Text utilities shared by chunking, caching, scoring and history analysis."""

import hashlib
import math
import re

_WHITESPACE_RE = re.compile(r"\s+")
_TERM_SPLIT_RE = re.compile(r"[\s\.,;:!\?\-\(\)\[\]\{\}\"'/\\]+")

STOP_WORDS: frozenset[str] = frozenset({
    # english
    "the", "and", "for", "are", "but", "not", "you", "all", "any", "can", "had", "her", "was", "one",
    "our", "out", "has", "have", "his", "how", "its", "may", "new", "now", "see", "two", "who", "did",
    "get", "use", "way", "she", "too", "what", "when", "where", "which", "with", "this", "that", "from",
    "they", "them", "then", "than", "there", "their", "these", "those", "will", "would", "could", "should",
    "about", "into", "your", "been", "were", "does", "just", "some", "more", "also", "very", "tell",
    # german
    "der", "die", "das", "und", "ist", "ein", "eine", "einer", "eines", "einem", "einen", "den", "dem",
    "des", "mit", "von", "auf", "für", "aus", "bei", "nach", "wie", "was", "wer", "wo", "sich", "nicht",
    "auch", "noch", "nur", "über", "unter", "oder", "aber", "wenn", "dass", "sind", "wird", "werden",
    "kann", "können", "hat", "haben", "war", "mir", "mich", "dir", "ich", "sie", "wir", "ihr", "mehr",
    "bitte", "gibt", "zum", "zur", "im", "am", "um",
})


class TextHelper:
    """Stateless text helpers."""

    @staticmethod
    def normalize_whitespace(text: str) -> str:
        """Collapse whitespace runs to a single space and strip both ends. Case is preserved."""
        return _WHITESPACE_RE.sub(" ", text).strip()

    @staticmethod
    def content_hash(text: str) -> str:
        """Return the sha256 hex digest of the whitespace-normalised text."""
        return hashlib.sha256(TextHelper.normalize_whitespace(text).encode("utf-8")).hexdigest()

    @staticmethod
    def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
        """Coarse token estimate: characters divided by chars_per_token, rounded up."""
        if not text:
            return 0
        return math.ceil(len(text) / chars_per_token)

    @staticmethod
    def word_count(text: str) -> int:
        return len(text.split())

    @staticmethod
    def tokenize(text: str) -> list[str]:
        """Lowercase the text and split it on whitespace and punctuation."""
        return [t for t in _TERM_SPLIT_RE.split(text.lower()) if t]

    @staticmethod
    def meaningful_terms(text: str, min_length: int = 3) -> list[str]:
        """Return distinct non stop-word terms of at least min_length characters, in order of appearance."""
        terms: list[str] = []
        for term in TextHelper.tokenize(text):
            if len(term) < min_length or term in STOP_WORDS or term in terms:
                continue
            terms.append(term)
        return terms

    @staticmethod
    def lexical_score(query: str, content: str) -> float:
        """Score how well content covers the meaningful terms of query.

        Exact word matches count 2, substring-only matches count 1. The sum is
        normalised by 2 * number of terms and capped at 1.0.

        Args:
            query (str): The search query.
            content (str): The candidate segment text.

        Returns:
            float: Coverage score between 0.0 and 1.0.
        """
        terms = TextHelper.meaningful_terms(query)
        if not terms or not content:
            return 0.0
        content_lower = content.lower()
        content_words = set(TextHelper.tokenize(content))
        points = 0
        for term in terms:
            if term in content_words:
                points += 2
            elif term in content_lower:
                points += 1
        return min(1.0, points / (len(terms) * 2))
