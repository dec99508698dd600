"""Domain models for the ragline database layer."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Union


class SourceStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class SourceOrigin(str, Enum):
    TEXT = "text"
    FILE = "file"
    PDF = "pdf"


# ------------------------------------------------------------------
# Typed metadata (tagged union on ``kind``, versioned)
# ------------------------------------------------------------------

METADATA_VERSION = 1


@dataclass(frozen=True)
class TextSourceMeta:
    kind: str = "text"
    version: int = METADATA_VERSION


@dataclass(frozen=True)
class FileSourceMeta:
    filename: str = ""
    mime_type: str = "text/plain"
    size_bytes: int = 0
    kind: str = "file"
    version: int = METADATA_VERSION


@dataclass(frozen=True)
class PdfSourceMeta:
    filename: str = ""
    size_bytes: int = 0
    page_count: int | None = None
    kind: str = "pdf"
    version: int = METADATA_VERSION


SourceMeta = Union[TextSourceMeta, FileSourceMeta, PdfSourceMeta]

_META_TYPES: dict[str, type] = {
    "text": TextSourceMeta,
    "file": FileSourceMeta,
    "pdf": PdfSourceMeta,
}


def dump_source_meta(meta: SourceMeta) -> str:
    return json.dumps(asdict(meta), sort_keys=True)


def load_source_meta(raw: str) -> SourceMeta:
    """Parse a serialized source metadata blob.

    Raises:
        ValueError: If ``kind`` is unknown or ``version`` is newer than this
            code understands.
    """
    data = json.loads(raw or "{}")
    kind = data.get("kind", "text")
    cls = _META_TYPES.get(kind)
    if cls is None:
        raise ValueError(f"Unknown source metadata kind: {kind!r}")
    version = int(data.get("version", METADATA_VERSION))
    if version > METADATA_VERSION:
        raise ValueError(
            f"Source metadata version {version} is newer than supported ({METADATA_VERSION})"
        )
    known = set(cls.__dataclass_fields__)
    return cls(**{k: v for k, v in data.items() if k in known})


def default_meta_for(origin: SourceOrigin) -> SourceMeta:
    return _META_TYPES[origin.value]()


@dataclass(frozen=True)
class ChunkMeta:
    ordinal: int
    token_estimate: int
    start_char: int
    end_char: int
    version: int = METADATA_VERSION

    def dumps(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def loads(cls, raw: str) -> "ChunkMeta":
        data = json.loads(raw)
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})


# ------------------------------------------------------------------
# Rows
# ------------------------------------------------------------------


@dataclass
class KnowledgeSource:
    id: str
    project_id: str
    name: str
    origin: SourceOrigin
    status: SourceStatus = SourceStatus.PENDING
    content: str | None = None
    file_path: str | None = None
    metadata: SourceMeta = field(default_factory=TextSourceMeta)
    chunk_count: int | None = None
    error: str | None = None
    error_kind: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class StoredChunk:
    source_id: str
    chunk_index: int
    content: str
    context: str = ""
    token_estimate: int = 0
    metadata: str = field(default_factory=lambda: "{}")
    created_at: str | None = None
    rowid: int | None = None  # set after insert; None for unsaved chunks

    @property
    def meta(self) -> ChunkMeta:
        return ChunkMeta.loads(self.metadata)


@dataclass
class Message:
    project_id: str
    content: str
    conversation_id: str = ""
    sender_type: str = "customer"
    created_at: str | None = None
