"""
Core data model: chunks, chunk sets, and parsed generation results.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping

from langchain_core.documents import Document
from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidRequestError

DOCUMENT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def validate_document_id(document_id: Any) -> str:
    """Returns the id unchanged or raises InvalidRequestError; ids double as directory names."""
    value = str(document_id or "").strip()
    if not value or not DOCUMENT_ID_RE.fullmatch(value) or ".." in value:
        raise InvalidRequestError(f"Invalid document id: {document_id!r}")
    return value


def _safe_metadata(metadata: Mapping[str, Any] | None) -> dict[str, Any]:
    safe: dict[str, Any] = {}
    for key, value in dict(metadata or {}).items():
        if isinstance(value, (str, int, float, bool)) or value is None:
            safe[str(key)] = value
        else:
            safe[str(key)] = str(value)
    return safe


@dataclass(frozen=True)
class Chunk:
    """A contiguous slice of document text; the unit of retrieval."""

    text: str
    sequence_index: int
    source_metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "text", str(self.text or ""))
        object.__setattr__(self, "sequence_index", int(self.sequence_index))
        object.__setattr__(self, "source_metadata", MappingProxyType(_safe_metadata(self.source_metadata)))

    @classmethod
    def from_document(cls, doc: Document, sequence_index: int) -> "Chunk":
        return cls(
            text=str(getattr(doc, "page_content", "") or ""),
            sequence_index=sequence_index,
            source_metadata=dict(getattr(doc, "metadata", {}) or {}),
        )

    def to_document(self) -> Document:
        metadata = dict(self.source_metadata)
        metadata["sequence_index"] = self.sequence_index
        return Document(page_content=self.text, metadata=metadata)

    def to_payload(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "sequence_index": self.sequence_index,
            "source_metadata": dict(self.source_metadata),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Chunk":
        return cls(
            text=payload["text"],
            sequence_index=payload["sequence_index"],
            source_metadata=payload.get("source_metadata") or {},
        )


@dataclass(frozen=True)
class ChunkSet:
    """
    The complete ordered chunk sequence of one document.
    Sequence indices are always 0..n-1 in order; a chunk set is never mutated.
    """

    document_id: str
    chunks: tuple[Chunk, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "document_id", validate_document_id(self.document_id))
        chunks = tuple(self.chunks)
        for expected, chunk in enumerate(chunks):
            if chunk.sequence_index != expected:
                raise InvalidRequestError(
                    f"Chunk sequence for '{self.document_id}' is not contiguous: "
                    f"expected index {expected}, found {chunk.sequence_index}",
                    document_id=self.document_id,
                )
        object.__setattr__(self, "chunks", chunks)

    @classmethod
    def from_raw(cls, document_id: str, raw_chunks: Iterable[Chunk | Document | str]) -> "ChunkSet":
        """
        Builds a chunk set from parser output.
        Chunk inputs keep their relative order by sequence_index; Documents and
        strings are numbered in iteration order.
        """
        items = list(raw_chunks or [])
        if items and all(isinstance(item, Chunk) for item in items):
            ordered = sorted(items, key=lambda c: c.sequence_index)
            seen = [c.sequence_index for c in ordered]
            if len(set(seen)) != len(seen):
                raise InvalidRequestError("Duplicate chunk sequence indices", document_id=str(document_id))
            chunks = [Chunk(c.text, idx, c.source_metadata) for idx, c in enumerate(ordered)]
            return cls(document_id=document_id, chunks=tuple(chunks))

        chunks = []
        for idx, item in enumerate(items):
            if isinstance(item, Chunk):
                chunks.append(Chunk(item.text, idx, item.source_metadata))
            elif isinstance(item, Document):
                chunks.append(Chunk.from_document(item, idx))
            elif isinstance(item, str):
                chunks.append(Chunk(item, idx))
            else:
                raise InvalidRequestError(
                    f"Unsupported chunk type: {type(item).__name__}",
                    document_id=str(document_id),
                )
        return cls(document_id=document_id, chunks=tuple(chunks))

    def __len__(self) -> int:
        return len(self.chunks)

    def __iter__(self) -> Iterator[Chunk]:
        return iter(self.chunks)

    def __getitem__(self, sequence_index: int) -> Chunk:
        return self.chunks[sequence_index]

    def texts(self) -> list[str]:
        return [chunk.text for chunk in self.chunks]

    def full_text(self, separator: str = "\n\n") -> str:
        return separator.join(self.texts())


class QAPair(BaseModel):
    """A question/answer pair; used for both generated Q&A and flashcards."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, frozen=True)

    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)
