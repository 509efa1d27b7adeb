"""Chunker: splits extracted document text into overlapping, position-ordered segments.

Sizes are measured in characters. Every segment after the first starts with
the trailing `overlap` characters of the previous one, so concatenating the
non-overlapping interiors of all segments reproduces the input exactly.
"""

import re
from collections.abc import Iterator
from typing import NamedTuple

from shared.helper.HelperConfig import HelperConfig
from shared.models.config import ChunkingConfig
from shared.models.errors import InvalidConfiguration

_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")
_SENTENCE_END_RE = re.compile(r"[\.\!\?][\"'\)\]]*\s")
_WHITESPACE_RE = re.compile(r"\s")


class ChunkSpan(NamedTuple):
    """Character positions of one segment.

    Attributes:
        start:       First character of the segment, including the overlap.
        fresh_start: First character not shared with the previous segment.
        end:         Exclusive end of the segment.
    """

    start: int
    fresh_start: int
    end: int


class ChunkSequence:
    """Lazy, finite and restartable sequence of segment texts.

    Each iteration walks the text again; nothing is materialised up front.
    """

    def __init__(self, text: str, target_size: int, overlap: int, boundary_tolerance: int):
        self._text = text
        self._target_size = target_size
        self._overlap = overlap
        self._tolerance = boundary_tolerance

    def __iter__(self) -> Iterator[str]:
        for span in self.spans():
            yield self._text[span.start:span.end]

    def spans(self) -> Iterator[ChunkSpan]:
        text = self._text
        length = len(text)
        if not text.strip():
            return
        if length <= self._target_size:
            yield ChunkSpan(0, 0, length)
            return

        fresh_start = 0
        start = 0
        while fresh_start < length:
            if length - start <= self._target_size:
                end = length
            else:
                end = self._find_break(start, fresh_start)
            yield ChunkSpan(start, fresh_start, end)
            if end >= length:
                return
            fresh_start = end
            start = max(0, end - self._overlap)

    def _find_break(self, start: int, fresh_start: int) -> int:
        """Pick the end of the segment starting at start.

        Searches the tolerance window before the hard limit for a paragraph
        break, then a sentence end, then any whitespace. Falls back to a hard
        cut at the target size.
        """
        hard_end = start + self._target_size
        window_start = max(hard_end - self._tolerance, fresh_start + 1)
        window = self._text[window_start:hard_end]

        for pattern in (_PARAGRAPH_BREAK_RE, _SENTENCE_END_RE, _WHITESPACE_RE):
            last_match = None
            for match in pattern.finditer(window):
                last_match = match
            if last_match is not None:
                return window_start + last_match.end()
        return hard_end


class Chunker:
    """Splits text into overlapping segments at natural boundaries."""

    def __init__(self, helper_config: HelperConfig, config: ChunkingConfig):
        self.logging = helper_config.get_logger()
        self._config = config

    def split(self, text: str | None, target_size: int | None = None, overlap: int | None = None) -> ChunkSequence:
        """Split text into overlapping segments.

        Args:
            text (str | None): The extracted document text. Empty or blank text yields no segments.
            target_size (int | None): Maximum segment length in characters. Defaults to the configured value.
            overlap (int | None): Characters repeated from the previous segment. Defaults to the configured value.

        Returns:
            ChunkSequence: The segments, produced lazily on iteration.

        Raises:
            InvalidConfiguration: If target_size is not positive, overlap is negative or overlap >= target_size.
        """
        target_size = self._config.target_size if target_size is None else target_size
        overlap = self._config.overlap if overlap is None else overlap
        self.validate(target_size, overlap)

        # the tolerance window may never reach back into the overlap
        tolerance = min(self._config.boundary_tolerance, target_size - overlap - 1)
        text = text or ""
        self.logging.debug("Splitting %d characters into segments of %d with overlap %d", len(text), target_size, overlap)
        return ChunkSequence(text, target_size, overlap, max(0, tolerance))

    @staticmethod
    def validate(target_size: int, overlap: int) -> None:
        if target_size <= 0:
            raise InvalidConfiguration(f"Chunk target size must be positive, got {target_size}.")
        if overlap < 0:
            raise InvalidConfiguration(f"Chunk overlap must not be negative, got {overlap}.")
        if overlap >= target_size:
            raise InvalidConfiguration(f"Chunk overlap ({overlap}) must be smaller than the target size ({target_size}).")
