# /docmind/chunk_store.py
"""
Persists the ordered chunk sequence of each document, one JSON artifact per
document id, replaced wholesale on every write.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable

from langchain_core.documents import Document

from .errors import NotFoundError, StorageError
from .models import Chunk, ChunkSet, validate_document_id
from .observability import get_logger
from .storage_provider import ArtifactStorageProvider, LocalArtifactStorageProvider

CHUNKS_FILE_NAME = "chunks.json"
CHUNK_STORE_FORMAT_VERSION = 1
logger = get_logger(__name__)


class ChunkStore:
    """Durable chunk sequences keyed by document id."""

    def __init__(self, root: Path, storage_provider: ArtifactStorageProvider | None = None):
        self.storage: ArtifactStorageProvider = storage_provider or LocalArtifactStorageProvider(Path(root))
        self.root = Path(root)

    def artifact_path(self, document_id: str) -> Path:
        return self.root / validate_document_id(document_id) / CHUNKS_FILE_NAME

    def exists(self, document_id: str) -> bool:
        return self.storage.exists(self.artifact_path(document_id))

    def write(self, document_id: str, chunks: ChunkSet | Iterable[Chunk | Document | str]) -> Path:
        """Persists the sequence, replacing any prior one; durable before returning."""
        if isinstance(chunks, ChunkSet):
            if chunks.document_id != document_id:
                raise StorageError(
                    f"Chunk set belongs to '{chunks.document_id}', not '{document_id}'",
                    document_id=document_id,
                )
            chunk_set = chunks
        else:
            chunk_set = ChunkSet.from_raw(document_id, chunks)

        payload = {
            "format_version": CHUNK_STORE_FORMAT_VERSION,
            "document_id": chunk_set.document_id,
            "chunks": [chunk.to_payload() for chunk in chunk_set],
        }
        path = self.artifact_path(chunk_set.document_id)
        try:
            data = json.dumps(payload, ensure_ascii=True).encode("utf-8")
            self.storage.write_bytes(path, data)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("chunk_store_write_failed", document_id=chunk_set.document_id, error=str(exc))
            raise StorageError(
                f"Failed to write chunks for '{chunk_set.document_id}': {exc}",
                document_id=chunk_set.document_id,
            ) from exc
        logger.info("chunk_store_written", document_id=chunk_set.document_id, chunks=len(chunk_set), path=str(path))
        return path

    def read(self, document_id: str) -> ChunkSet:
        path = self.artifact_path(document_id)
        if not self.storage.exists(path):
            raise NotFoundError(f"No stored chunks for document '{document_id}'", document_id=document_id)
        try:
            payload = json.loads(self.storage.read_bytes(path).decode("utf-8"))
        except FileNotFoundError as exc:
            raise NotFoundError(f"No stored chunks for document '{document_id}'", document_id=document_id) from exc
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            raise StorageError(f"Unreadable chunk artifact for '{document_id}': {exc}", document_id=document_id) from exc

        if not isinstance(payload, dict) or not isinstance(payload.get("chunks"), list):
            raise StorageError(f"Malformed chunk artifact for '{document_id}'", document_id=document_id)
        if int(payload.get("format_version", -1)) != CHUNK_STORE_FORMAT_VERSION:
            raise StorageError(
                f"Unsupported chunk artifact version for '{document_id}': {payload.get('format_version')}",
                document_id=document_id,
            )
        if str(payload.get("document_id", "")) != document_id:
            raise StorageError(
                f"Chunk artifact at {path} belongs to '{payload.get('document_id')}'",
                document_id=document_id,
            )
        try:
            chunks = tuple(Chunk.from_payload(item) for item in payload["chunks"])
            return ChunkSet(document_id=document_id, chunks=chunks)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"Corrupt chunk entries for '{document_id}': {exc}", document_id=document_id) from exc

    def delete(self, document_id: str):
        path = self.artifact_path(document_id)
        try:
            self.storage.remove_tree(path)
        except OSError as exc:
            raise StorageError(f"Failed to delete chunks for '{document_id}': {exc}", document_id=document_id) from exc
