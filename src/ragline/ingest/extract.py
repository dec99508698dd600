"""Text extraction for uploaded sources (plain text decode, PDF via pypdf)."""

from __future__ import annotations

import io
from pathlib import Path

import pypdf
from pypdf.errors import PyPdfError

from ragline.db.models import SourceOrigin
from ragline.errors import ExtractionFailure

# A PDF yielding fewer characters than this is treated as scanned/image-only.
_MIN_PDF_CHARS = 10

_SCANNED_PDF_MSG = "PDF contains no extractable text. Scanned PDFs are not supported."


def extract_text(source: str | Path | bytes, origin: SourceOrigin | str) -> str:
    """Return the text of *source*.

    Args:
        source: Path to the file on disk, or its raw bytes.
        origin: ``text``/``file`` are decoded as UTF-8 (undecodable bytes are
            replaced); ``pdf`` is read page by page with pypdf.

    Raises:
        ExtractionFailure: Missing file, unreadable PDF, or a PDF without a
            text layer.
    """
    origin = SourceOrigin(origin)
    data = _read_bytes(source)
    if origin is SourceOrigin.PDF:
        return _extract_pdf(data)
    return data.decode("utf-8", errors="replace")


def pdf_page_count(source: str | Path | bytes) -> int | None:
    """Return the number of pages in a PDF, or None if it cannot be parsed."""
    try:
        return len(pypdf.PdfReader(io.BytesIO(_read_bytes(source))).pages)
    except (ExtractionFailure, PyPdfError, ValueError, OSError):
        return None


def _read_bytes(source: str | Path | bytes) -> bytes:
    if isinstance(source, bytes):
        return source
    path = Path(source)
    try:
        return path.read_bytes()
    except OSError as exc:
        raise ExtractionFailure(f"Could not read '{path.name}': {exc.strerror or exc}") from exc


def _extract_pdf(data: bytes) -> str:
    """Extract all page text, pages separated by a blank line."""
    try:
        reader = pypdf.PdfReader(io.BytesIO(data))
        parts: list[str] = []
        for page in reader.pages:
            page_text = (page.extract_text() or "").strip()
            if page_text:
                parts.append(page_text)
    except (PyPdfError, ValueError, KeyError, OSError) as exc:
        raise ExtractionFailure(f"Could not read PDF: {exc}") from exc

    text = "\n\n".join(parts)
    if len("".join(text.split())) < _MIN_PDF_CHARS:
        raise ExtractionFailure(_SCANNED_PDF_MSG)
    return text
