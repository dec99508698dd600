"""Base chunker interface and the segment type chunkers produce."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

_WORD_RE = re.compile(r"\S+")


@dataclass(frozen=True)
class Segment:
    """A verbatim slice of the normalized text.

    Attributes:
        text: ``source[start:end]``, never rewritten.
        start: Offset of the first character in the normalized text.
        end: Offset one past the last character.
        token_estimate: Approximate token count (see ``count_tokens``).
    """

    text: str
    start: int
    end: int
    token_estimate: int


@dataclass(frozen=True)
class DocumentMetadata:
    """What the annotator is told about the document a segment came from."""

    name: str
    type: str = "text"
    description: str | None = None


class BaseChunker(ABC):
    """Abstract base for chunkers.

    Subclasses implement ``chunk()`` and may use ``_word_windows()`` for the
    fixed-size fallback path.

    Token counting uses a 4-chars-per-token approximation; no external
    tokenizer dependency is required.
    """

    def __init__(self, chunk_size: int = 256) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.chunk_size = chunk_size

    @abstractmethod
    def chunk(self, text: str) -> list[Segment]:
        """Split normalized *text* into ordered segments.

        Returns:
            Segments in document order; ``[]`` for blank input.
        """

    @staticmethod
    def count_tokens(text: str) -> int:
        """Approximate token count: 4 characters ≈ 1 token (minimum 1)."""
        return max(1, len(text) // 4)

    def _segment(self, text: str, start: int, end: int) -> Segment:
        piece = text[start:end]
        return Segment(text=piece, start=start, end=end, token_estimate=self.count_tokens(piece))

    def _word_windows(self, text: str, base: int = 0, limit: int | None = None) -> list[Segment]:
        """Group the words of ``text[base:limit]`` into windows of ``chunk_size`` tokens.

        A window closes when the next word would push it past the target; a
        single word larger than the target becomes its own window. Offsets
        are absolute positions in *text*.
        """
        end_limit = len(text) if limit is None else limit
        windows: list[Segment] = []
        win_start: int | None = None
        win_end = 0

        for match in _WORD_RE.finditer(text, base, end_limit):
            if win_start is None:
                win_start, win_end = match.start(), match.end()
                continue
            if self.count_tokens(text[win_start:match.end()]) > self.chunk_size:
                windows.append(self._segment(text, win_start, win_end))
                win_start = match.start()
            win_end = match.end()

        if win_start is not None:
            windows.append(self._segment(text, win_start, win_end))
        return windows
