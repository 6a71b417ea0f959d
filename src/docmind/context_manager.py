# /docmind/context_manager.py
"""
Active-document cache.

One manager owns one ActiveContext slot: at most one document's chunk set and
vector index are queryable at a time. The slot holds an immutable snapshot, so
a reader sees either the old document or the new one, never a mix.

States:
    EMPTY -> LOADING -> ACTIVE(document_id)
    ACTIVE(a) -> LOADING -> ACTIVE(b)      activation of a different id
    ACTIVE(a) -> ACTIVE(a)                 re-activation of the same id (no-op)
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings

from .config import KEEP_PREVIOUS_CONTEXT_ON_FAILURE
from .errors import InvalidRequestError, KnowledgeBaseError, NoActiveDocumentError
from .models import Chunk, ChunkSet, validate_document_id
from .observability import get_logger
from .record_store import DocumentRecordStore
from .vector_index import ChunkVectorIndex

logger = get_logger(__name__)


class ContextState(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    ACTIVE = "active"


@dataclass(frozen=True)
class ActiveContext:
    """The queryable document: its id, index and chunks, always loaded together."""

    document_id: str
    vector_index: ChunkVectorIndex
    chunk_set: ChunkSet

    def __iter__(self):
        return iter((self.vector_index, self.chunk_set, self.document_id))


class DocumentContextManager:
    def __init__(
        self,
        record_store: DocumentRecordStore,
        embeddings: Embeddings,
        keep_previous_on_failure: bool = KEEP_PREVIOUS_CONTEXT_ON_FAILURE,
    ):
        self.record_store = record_store
        self.embeddings = embeddings
        self.keep_previous_on_failure = bool(keep_previous_on_failure)
        self._active: ActiveContext | None = None
        self._loading = False
        # Activation lock serializes LOADING transitions; state lock guards the slot.
        self._activation_lock = threading.Lock()
        self._state_lock = threading.Lock()

    @property
    def state(self) -> ContextState:
        with self._state_lock:
            if self._loading:
                return ContextState.LOADING
            return ContextState.ACTIVE if self._active is not None else ContextState.EMPTY

    def get_active_document_id(self) -> str | None:
        with self._state_lock:
            return self._active.document_id if self._active is not None else None

    def require_active(self) -> ActiveContext:
        """Returns the active context or raises NoActiveDocumentError."""
        with self._state_lock:
            active = self._active
        if active is None:
            raise NoActiveDocumentError()
        return active

    def deactivate(self):
        with self._activation_lock:
            with self._state_lock:
                previous = self._active
                self._active = None
        if previous is not None:
            logger.info("document_deactivated", document_id=previous.document_id)

    def activate_from_upload(
        self,
        document_id: str,
        chunks: ChunkSet | Iterable[Chunk | Document | str],
    ) -> ActiveContext:
        """
        Builds an index over the chunks, commits chunks and index as one record,
        then activates it. A failure leaves the slot and storage as they were.
        """
        document_id = validate_document_id(document_id)
        if isinstance(chunks, ChunkSet):
            if chunks.document_id != document_id:
                raise InvalidRequestError(
                    f"Chunk set belongs to '{chunks.document_id}', not '{document_id}'",
                    document_id=document_id,
                )
            chunk_set = chunks
        else:
            chunk_set = ChunkSet.from_raw(document_id, chunks)

        with self._activation_lock:
            self._begin_loading(document_id, source="upload")
            try:
                index = ChunkVectorIndex.build(chunk_set, self.embeddings)
                self.record_store.commit(chunk_set, index)
            except KnowledgeBaseError as exc:
                # A freshly uploaded record never replaces the active one on failure.
                self._finish_loading(None, failed=True, keep_previous=True)
                logger.error("document_activation_failed", document_id=document_id, source="upload", kind=exc.kind)
                raise
            except BaseException:
                self._finish_loading(None, failed=True, keep_previous=True)
                raise
            context = ActiveContext(document_id=document_id, vector_index=index, chunk_set=chunk_set)
            self._finish_loading(context)
        logger.info("document_activated", document_id=document_id, source="upload", chunks=len(chunk_set))
        return context

    def activate_from_storage(self, document_id: str) -> ActiveContext:
        """
        Loads a committed record and makes it active. Re-activating the active id
        returns immediately without touching storage.
        """
        document_id = validate_document_id(document_id)
        with self._activation_lock:
            with self._state_lock:
                current = self._active
            if current is not None and current.document_id == document_id:
                logger.info("document_already_active", document_id=document_id)
                return current

            self._begin_loading(document_id, source="storage")
            try:
                record = self.record_store.load(document_id, self.embeddings)
            except KnowledgeBaseError as exc:
                self._finish_loading(None, failed=True, keep_previous=self.keep_previous_on_failure)
                logger.error(
                    "document_activation_failed",
                    document_id=document_id,
                    source="storage",
                    kind=exc.kind,
                    kept_previous=self.keep_previous_on_failure,
                )
                raise
            except BaseException:
                self._finish_loading(None, failed=True, keep_previous=self.keep_previous_on_failure)
                raise
            context = ActiveContext(
                document_id=document_id,
                vector_index=record.vector_index,
                chunk_set=record.chunk_set,
            )
            self._finish_loading(context)
        logger.info("document_activated", document_id=document_id, source="storage", chunks=len(context.chunk_set))
        return context

    def _begin_loading(self, document_id: str, source: str):
        with self._state_lock:
            self._loading = True
            previous = self._active.document_id if self._active is not None else None
        logger.info("document_loading", document_id=document_id, source=source, previous=previous)

    def _finish_loading(self, context: ActiveContext | None, failed: bool = False, keep_previous: bool = True):
        with self._state_lock:
            self._loading = False
            if not failed:
                self._active = context
            elif not keep_previous:
                self._active = None
