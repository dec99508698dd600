"""Text normalization ahead of chunking."""

from __future__ import annotations

import re

from ragline.errors import EmptyContent

# C0 controls and DEL, except tab (\x09) and newline (\x0a).
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
_TRAILING_WS_RE = re.compile(r"[ \t]+$", re.MULTILINE)
_BLANK_RUN_RE = re.compile(r"\n{3,}")


class TextNormalizer:
    """Clean extracted or pasted text and reject near-empty input.

    Normalization never rewrites words: it only fixes line endings, drops
    control characters, trims trailing whitespace on each line and collapses
    runs of blank lines. The chunker slices its segments out of the returned
    string verbatim.

    Args:
        min_chars: Minimum length of the normalized text. Shorter input raises
            :class:`~ragline.errors.EmptyContent`.
    """

    def __init__(self, min_chars: int = 1) -> None:
        if min_chars < 1:
            raise ValueError("min_chars must be >= 1")
        self.min_chars = min_chars

    def normalize(self, raw: str | None) -> str:
        """Return the normalized form of *raw*.

        Raises:
            EmptyContent: If nothing (or fewer than ``min_chars`` characters)
                remains after normalization.
        """
        if raw is None:
            raise EmptyContent()

        text = raw.replace("\r\n", "\n").replace("\r", "\n")
        text = _CONTROL_RE.sub("", text)
        text = _TRAILING_WS_RE.sub("", text)
        text = _BLANK_RUN_RE.sub("\n\n", text)
        text = text.strip()

        if len(text) < self.min_chars:
            raise EmptyContent()
        return text
