"""Sentence-respecting semantic chunker.

Segments are built from whole sentences: sentences accumulate until adding
the next one would push the segment past ``chunk_size`` tokens, then the
segment closes and the next starts fresh (no overlap). Every segment is a
verbatim slice of the input, so joining the segments in order gives back the
input minus the whitespace between them.

Text without any terminal punctuation (lists, logs, scraped menus) has no
sentences to respect and is cut into word windows of the same size instead.
"""

from __future__ import annotations

import re

from ragline.ingest.base import BaseChunker, Segment

# Terminal punctuation, optionally followed by closing quotes/brackets, then
# whitespace. Whether that whitespace really ends a sentence is decided in
# _is_boundary().
_TERMINAL_RE = re.compile(r"[.!?]+[\"'”’)\]]*(?=\s)")
_ANY_TERMINAL_RE = re.compile(r"[.!?]")
_PARAGRAPH_RE = re.compile(r"\n[ \t]*\n\s*")

_OPENERS = "\"'(“‘["

_ABBREVIATIONS: frozenset[str] = frozenset(
    [
        "mr.", "mrs.", "ms.", "dr.", "prof.", "sr.", "jr.", "st.", "mt.",
        "gen.", "col.", "lt.", "sgt.", "capt.", "rev.", "hon.",
        "inc.", "ltd.", "co.", "corp.", "dept.", "univ.",
        "e.g.", "i.e.", "etc.", "vs.", "viz.", "cf.", "al.", "approx.",
        "no.", "fig.", "vol.", "p.", "pp.", "ch.", "sec.", "ed.",
        "jan.", "feb.", "mar.", "apr.", "jun.", "jul.", "aug.", "sep.",
        "sept.", "oct.", "nov.", "dec.",
        "u.s.", "u.k.", "a.m.", "p.m.",
    ]
)
_INITIAL_RE = re.compile(r"^[A-Za-z]\.$")


class SemanticChunker(BaseChunker):
    """Split normalized text into sentence-aligned segments of ≈ ``chunk_size`` tokens.

    Args:
        chunk_size: Target segment size in estimated tokens (default 256).
    """

    def __init__(self, chunk_size: int = 256) -> None:
        super().__init__(chunk_size=chunk_size)

    def chunk(self, text: str) -> list[Segment]:
        if not text or not text.strip():
            return []
        if not _ANY_TERMINAL_RE.search(text):
            return self._word_windows(text)

        segments: list[Segment] = []
        seg_start: int | None = None
        seg_end = 0

        for start, end in self.sentence_spans(text):
            if seg_start is None:
                seg_start, seg_end = start, end
                continue
            if self.count_tokens(text[seg_start:end]) > self.chunk_size:
                segments.append(self._segment(text, seg_start, seg_end))
                seg_start = start
            seg_end = end

        if seg_start is not None:
            segments.append(self._segment(text, seg_start, seg_end))
        return segments

    # ------------------------------------------------------------------
    # Sentence detection
    # ------------------------------------------------------------------

    @classmethod
    def sentence_spans(cls, text: str) -> list[tuple[int, int]]:
        """Return ``(start, end)`` offsets of every sentence, whitespace excluded.

        Paragraph breaks (blank lines) always end a sentence.
        """
        spans: list[tuple[int, int]] = []
        for para_start, para_end in _paragraph_spans(text):
            pos = para_start
            for match in _TERMINAL_RE.finditer(text, para_start, para_end):
                if not cls._is_boundary(text, match.start(), match.end(), para_end):
                    continue
                _append_trimmed(spans, text, pos, match.end())
                pos = match.end()
            _append_trimmed(spans, text, pos, para_end)
        return spans

    @staticmethod
    def _is_boundary(text: str, punct_start: int, punct_end: int, limit: int) -> bool:
        nxt = punct_end
        while nxt < limit and text[nxt].isspace():
            nxt += 1
        if nxt >= limit:
            return True
        following = text[nxt]
        if not (following.isupper() or following.isdigit() or following in _OPENERS):
            return False

        # Only a single "." can belong to an abbreviation ("etc." yes, "etc.!" no).
        if text[punct_start:punct_end].rstrip("\"'”’)]") != ".":
            return True
        word_start = punct_start
        while word_start > 0 and not text[word_start - 1].isspace():
            word_start -= 1
        word = text[word_start:punct_start + 1].lstrip(_OPENERS)
        if word.lower() in _ABBREVIATIONS or _INITIAL_RE.match(word):
            return False
        return True


def _paragraph_spans(text: str) -> list[tuple[int, int]]:
    spans: list[tuple[int, int]] = []
    pos = 0
    for match in _PARAGRAPH_RE.finditer(text):
        spans.append((pos, match.start()))
        pos = match.end()
    spans.append((pos, len(text)))
    return spans


def _append_trimmed(spans: list[tuple[int, int]], text: str, start: int, end: int) -> None:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if start < end:
        spans.append((start, end))
