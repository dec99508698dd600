"""Tests for SemanticChunker and the BaseChunker helpers."""

from __future__ import annotations

import pytest

from ragline.ingest.base import BaseChunker
from ragline.ingest.chunker import SemanticChunker


def _sentences(n: int, words: int = 10) -> str:
    return " ".join(
        "Sentence {} ".format(i) + " ".join(["word"] * words) + "." for i in range(n)
    )


# ------------------------------------------------------------------
# count_tokens
# ------------------------------------------------------------------

def test_count_tokens_four_chars_per_token():
    assert BaseChunker.count_tokens("a" * 40) == 10


def test_count_tokens_minimum_one():
    assert BaseChunker.count_tokens("") == 1
    assert BaseChunker.count_tokens("ab") == 1


def test_chunk_size_must_be_positive():
    with pytest.raises(ValueError):
        SemanticChunker(chunk_size=0)


# ------------------------------------------------------------------
# Basic behaviour
# ------------------------------------------------------------------

@pytest.mark.parametrize("text", ["", "   ", "\n\n"])
def test_blank_text_returns_empty(text):
    assert SemanticChunker().chunk(text) == []


def test_short_text_single_segment():
    text = "Our store opens at nine. We close at five."
    segments = SemanticChunker().chunk(text)
    assert len(segments) == 1
    assert segments[0].text == text
    assert (segments[0].start, segments[0].end) == (0, len(text))


def test_segments_are_verbatim_slices():
    text = _sentences(40)
    for seg in SemanticChunker(chunk_size=50).chunk(text):
        assert text[seg.start:seg.end] == seg.text
        assert seg.token_estimate == BaseChunker.count_tokens(seg.text)


def test_segments_cover_text_in_order():
    text = _sentences(40)
    segments = SemanticChunker(chunk_size=50).chunk(text)
    assert len(segments) > 1
    assert "".join(s.text for s in segments).replace(" ", "") == text.replace(" ", "")
    for prev, nxt in zip(segments, segments[1:]):
        assert prev.end <= nxt.start


def test_segments_respect_chunk_size():
    text = _sentences(60)
    for seg in SemanticChunker(chunk_size=64).chunk(text):
        assert seg.token_estimate <= 64


def test_segments_end_on_sentence_boundary():
    text = _sentences(30)
    for seg in SemanticChunker(chunk_size=40).chunk(text):
        assert seg.text.endswith(".")
        assert seg.text.startswith("Sentence")


def test_oversized_sentence_kept_whole():
    long_sentence = "Alpha " + "beta " * 200 + "gamma."
    text = f"Short one. {long_sentence} Short two."
    segments = SemanticChunker(chunk_size=20).chunk(text)
    assert any(s.text == long_sentence for s in segments)


# ------------------------------------------------------------------
# Sentence detection
# ------------------------------------------------------------------

def test_sentence_spans_basic():
    text = "Hello there! How are you? Fine."
    spans = SemanticChunker.sentence_spans(text)
    assert [text[s:e] for s, e in spans] == ["Hello there!", "How are you?", "Fine."]


@pytest.mark.parametrize("text", [
    "Talk to Dr. Smith about it.",
    "Bring tools, e.g. Hammers and nails.",
    "Written by J. Doe in spring.",
    "Compare apples vs. Oranges today.",
])
def test_abbreviations_do_not_split(text):
    assert len(SemanticChunker.sentence_spans(text)) == 1


def test_lowercase_after_period_does_not_split():
    text = "Version 2.0 is out. see the notes for details."
    assert len(SemanticChunker.sentence_spans(text)) == 1


def test_quote_after_terminal_stays_with_sentence():
    text = 'He said "Stop." Then he left.'
    spans = SemanticChunker.sentence_spans(text)
    assert [text[s:e] for s, e in spans] == ['He said "Stop."', "Then he left."]


def test_paragraph_break_ends_sentence():
    text = "Shipping\n\nRefunds take 5 days"
    spans = SemanticChunker.sentence_spans(text)
    assert [text[s:e] for s, e in spans] == ["Shipping", "Refunds take 5 days"]


def test_digit_after_period_splits():
    text = "See step one. 2 more steps follow."
    assert len(SemanticChunker.sentence_spans(text)) == 2


# ------------------------------------------------------------------
# Fallback word windows
# ------------------------------------------------------------------

def test_no_punctuation_uses_word_windows():
    text = " ".join(f"item{i}" for i in range(200))
    segments = SemanticChunker(chunk_size=20).chunk(text)
    assert len(segments) > 1
    for seg in segments:
        assert seg.token_estimate <= 20
        assert text[seg.start:seg.end] == seg.text
        assert not seg.text.startswith(" ") and not seg.text.endswith(" ")


def test_word_windows_single_huge_word():
    text = "x" * 500
    segments = SemanticChunker(chunk_size=10).chunk(text)
    assert len(segments) == 1
    assert segments[0].text == text
