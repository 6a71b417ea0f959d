# /docmind/record_store.py
"""
Durable DocumentRecords: a chunk set and its vector index stored as one unit.

Commit protocol:
    1. write chunks.json and the vector index files into .staging/<token>/<document_id>/
    2. write COMMIT.json (a digest of every staged file) last
    3. rename any previous record into .trash/<token>/, rename the staged record
       into records/, delete the trash

A record without COMMIT.json, or whose artifacts do not match the digests it
lists, is never loaded. `recover()` cleans up after a crash at any step.
"""
from __future__ import annotations

import hashlib
import json
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from langchain_core.embeddings import Embeddings

from .chunk_store import CHUNKS_FILE_NAME, ChunkStore
from .errors import KnowledgeBaseError, NotFoundError, StorageError
from .models import ChunkSet, validate_document_id
from .observability import get_logger
from .storage_provider import ArtifactStorageProvider, LocalArtifactStorageProvider
from .vector_index import INDEX_META_FILE_NAME, ChunkVectorIndex, VectorIndexStore

COMMIT_FILE_NAME = "COMMIT.json"
RECORDS_DIR_NAME = "records"
STAGING_DIR_NAME = ".staging"
TRASH_DIR_NAME = ".trash"
REQUIRED_ARTIFACTS = (CHUNKS_FILE_NAME, INDEX_META_FILE_NAME)
logger = get_logger(__name__)


@dataclass(frozen=True)
class DocumentRecord:
    document_id: str
    chunk_set: ChunkSet
    vector_index: ChunkVectorIndex


class DocumentRecordStore:
    def __init__(self, root: Path, storage_provider: ArtifactStorageProvider | None = None, recover: bool = True):
        self.root = Path(root)
        self.storage: ArtifactStorageProvider = storage_provider or LocalArtifactStorageProvider(self.root)
        self.storage.ensure_ready()
        self.records_dir = self.root / RECORDS_DIR_NAME
        self.staging_dir = self.root / STAGING_DIR_NAME
        self.trash_dir = self.root / TRASH_DIR_NAME
        self.records_dir.mkdir(parents=True, exist_ok=True)
        self.chunk_store = ChunkStore(self.records_dir, self.storage)
        self.index_store = VectorIndexStore(self.records_dir, self.storage)
        self._write_lock = threading.Lock()
        if recover:
            self.recover()

    def record_dir(self, document_id: str) -> Path:
        return self.records_dir / validate_document_id(document_id)

    def _digest(self, path: Path) -> str:
        return hashlib.sha256(self.storage.read_bytes(path)).hexdigest()

    def exists(self, document_id: str) -> bool:
        return self.storage.exists(self.record_dir(document_id) / COMMIT_FILE_NAME)

    def list_document_ids(self) -> list[str]:
        return sorted(
            entry.name
            for entry in self.storage.list_dir(self.records_dir)
            if self.storage.exists(entry / COMMIT_FILE_NAME)
        )

    def commit(self, chunk_set: ChunkSet, index: ChunkVectorIndex) -> Path:
        """Durably stores chunks and index together; on failure the previous record is untouched."""
        document_id = chunk_set.document_id
        index.verify_against(chunk_set)
        token = uuid.uuid4().hex
        staging_root = self.staging_dir / token
        staged = staging_root / document_id
        destination = self.record_dir(document_id)

        with self._write_lock:
            try:
                ChunkStore(staging_root, self.storage).write(document_id, chunk_set)
                VectorIndexStore(staging_root, self.storage).persist(index, document_id)
                marker = {
                    "document_id": document_id,
                    "chunk_count": len(chunk_set),
                    "fingerprint": index.fingerprint,
                    "artifacts": {entry.name: self._digest(entry) for entry in self.storage.list_dir(staged)},
                    "committed_at": datetime.now(timezone.utc).isoformat(),
                }
                self.storage.write_bytes(
                    staged / COMMIT_FILE_NAME,
                    json.dumps(marker, ensure_ascii=True, indent=2).encode("utf-8"),
                )
                self.storage.promote_directory(staged, destination, self.trash_dir / token / document_id)
                self._discard(self.trash_dir / token)
            except KnowledgeBaseError:
                logger.error("record_commit_failed", document_id=document_id, stage="write")
                raise
            except OSError as exc:
                logger.error("record_commit_failed", document_id=document_id, stage="promote", error=str(exc))
                raise StorageError(f"Failed to commit record for '{document_id}': {exc}", document_id=document_id) from exc
            finally:
                self._discard(staging_root)

        logger.info("record_committed", document_id=document_id, chunks=len(chunk_set), path=str(destination))
        return destination

    def load(self, document_id: str, embeddings: Embeddings) -> DocumentRecord:
        """Loads a committed record after verifying every artifact against its marker."""
        record_dir = self.record_dir(document_id)
        marker_path = record_dir / COMMIT_FILE_NAME
        if not self.storage.exists(marker_path):
            raise NotFoundError(f"No committed record for document '{document_id}'", document_id=document_id)
        try:
            marker = json.loads(self.storage.read_bytes(marker_path).decode("utf-8"))
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            raise StorageError(f"Unreadable commit marker for '{document_id}': {exc}", document_id=document_id) from exc
        artifacts = marker.get("artifacts") if isinstance(marker, dict) else None
        if not isinstance(artifacts, dict) or not all(name in artifacts for name in REQUIRED_ARTIFACTS):
            raise StorageError(f"Malformed commit marker for '{document_id}'", document_id=document_id)

        for name in sorted(artifacts):
            path = record_dir / name
            if not self.storage.exists(path):
                raise NotFoundError(f"Record for '{document_id}' is missing {name}", document_id=document_id)
            try:
                actual = self._digest(path)
            except OSError as exc:
                raise StorageError(f"Unreadable artifact {name} for '{document_id}': {exc}", document_id=document_id) from exc
            if actual != artifacts.get(name):
                logger.error("record_digest_mismatch", document_id=document_id, artifact=name)
                raise StorageError(f"Artifact {name} for '{document_id}' does not match its commit marker", document_id=document_id)

        chunk_set = self.chunk_store.read(document_id)
        index = self.index_store.load(document_id, embeddings)
        index.verify_against(chunk_set)
        if int(marker.get("chunk_count", -1)) != len(chunk_set):
            raise StorageError(f"Chunk count for '{document_id}' does not match its commit marker", document_id=document_id)
        logger.info("record_loaded", document_id=document_id, chunks=len(chunk_set))
        return DocumentRecord(document_id=document_id, chunk_set=chunk_set, vector_index=index)

    def delete(self, document_id: str):
        record_dir = self.record_dir(document_id)
        if not self.storage.exists(record_dir):
            raise NotFoundError(f"No record for document '{document_id}'", document_id=document_id)
        trash = self.trash_dir / uuid.uuid4().hex
        with self._write_lock:
            try:
                self.storage.rename(record_dir, trash / document_id)
                self.storage.remove_tree(trash)
            except OSError as exc:
                raise StorageError(f"Failed to delete record for '{document_id}': {exc}", document_id=document_id) from exc
        logger.info("record_deleted", document_id=document_id)

    def recover(self) -> dict[str, int]:
        """Removes abandoned staging data and restores records stranded in the trash."""
        stats = {"staging_removed": 0, "restored": 0, "trash_removed": 0}
        with self._write_lock:
            for entry in self.storage.list_dir(self.staging_dir):
                self._discard(entry)
                stats["staging_removed"] += 1
            for token_dir in self.storage.list_dir(self.trash_dir):
                for trashed in self.storage.list_dir(token_dir):
                    destination = self.records_dir / trashed.name
                    if not self.storage.exists(destination) and self.storage.exists(trashed / COMMIT_FILE_NAME):
                        self.storage.rename(trashed, destination)
                        stats["restored"] += 1
                        logger.warning("record_restored_from_trash", document_id=trashed.name)
                self._discard(token_dir)
                stats["trash_removed"] += 1
        if any(stats.values()):
            logger.info("record_store_recovered", **stats)
        return stats

    def _discard(self, path: Path):
        try:
            self.storage.remove_tree(path)
        except OSError as exc:
            logger.warning("record_store_cleanup_failed", path=str(path), error=str(exc))
