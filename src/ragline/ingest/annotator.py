"""Situating-context generation for chunks (contextual retrieval).

Each segment is sent to a completion model together with the document name
and a bounded window of its neighbours; the model answers with one or two
sentences that make the segment understandable on its own. The pipeline
embeds ``context + "\\n" + content`` instead of the bare segment.
"""

from __future__ import annotations

import logging

from ragline.errors import AnnotationFailure
from ragline.ingest.base import DocumentMetadata, Segment
from ragline.rag import llm_client

logger = logging.getLogger(__name__)

_CONTEXT_PROMPT = """\
You are helping to improve document retrieval. Below is a chunk taken from a \
document, together with the text around it. Write 1-2 sentences that let the \
chunk be understood out of context: name its subject, resolve pronouns and \
mention the key entities or facts it covers.

Document: {name} ({type}){description}

Surrounding text:
{window}

Chunk:
{chunk}

Answer with the context sentences only, no other text.

Context:"""

_DEFAULT_MODEL = "openai/gpt-4o-mini"


class ContextAnnotator:
    """Produce a short situating context for one segment of a document.

    Args:
        model:            LiteLLM model string for context generation.
        window:           Number of neighbouring segments on each side.
        max_window_chars: Upper bound on the surrounding-text part of the prompt.
        max_tokens:       Maximum tokens in the generated context.
        temperature:      Sampling temperature.
        timeout:          Per-call timeout in seconds.
    """

    def __init__(
        self,
        model: str = _DEFAULT_MODEL,
        window: int = 2,
        max_window_chars: int = 6000,
        max_tokens: int = 100,
        temperature: float = 0.3,
        timeout: float = 30.0,
    ) -> None:
        if window < 0:
            raise ValueError("window must be >= 0")
        self.model = model
        self.window = window
        self.max_window_chars = max_window_chars
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout

    def annotate(
        self, metadata: DocumentMetadata, segments: list[Segment], index: int
    ) -> str:
        """Return the context for ``segments[index]``, or ``""`` on provider failure.

        A failed call only costs this segment its context; it never aborts
        the surrounding ingestion run.
        """
        if not 0 <= index < len(segments):
            raise IndexError(f"segment index {index} out of range (0..{len(segments) - 1})")

        prompt = self.build_prompt(metadata, segments, index)
        try:
            return llm_client.complete(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                timeout=self.timeout,
            )
        except Exception as exc:
            failure = AnnotationFailure(
                f"Context generation failed for segment {index} of '{metadata.name}': {exc}"
            )
            logger.warning("%s", failure)
            return ""

    def build_prompt(
        self, metadata: DocumentMetadata, segments: list[Segment], index: int
    ) -> str:
        description = f"\n{metadata.description}" if metadata.description else ""
        return _CONTEXT_PROMPT.format(
            name=metadata.name,
            type=metadata.type,
            description=description,
            window=self._window_text(segments, index),
            chunk=segments[index].text,
        )

    def _window_text(self, segments: list[Segment], index: int) -> str:
        """Neighbouring segments, nearest first, clipped to ``max_window_chars``.

        Neighbours are added in order of distance from the target, so when the
        budget runs out it is the far ends of the window that are dropped. A
        side stops growing at the first neighbour that does not fit, so the
        window is always contiguous with the target.
        """
        before: list[str] = []
        after: list[str] = []
        budget = self.max_window_chars
        open_sides = {"before", "after"}
        for distance in range(1, self.window + 1):
            for side, pos, bucket in (
                ("before", index - distance, before),
                ("after", index + distance, after),
            ):
                if side not in open_sides or not 0 <= pos < len(segments):
                    continue
                text = segments[pos].text
                if len(text) > budget:
                    open_sides.discard(side)
                    continue
                budget -= len(text)
                if bucket is before:
                    bucket.insert(0, text)
                else:
                    bucket.append(text)
        parts = before + ["[...chunk...]"] + after
        return "\n\n".join(parts)
