# /docmind/service.py
"""
Knowledge-base service facade.
Wires the record store, context manager, query service and whole-document
operations around one embedding provider and one generation provider. One
instance owns one active-document slot; create one per session for isolation.
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable

from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings

from .config import KNOWLEDGE_BASE_DIR, RETRIEVAL_TOP_K
from .context_manager import DocumentContextManager
from .document_ops import GeneratedArtifacts, WholeDocumentOperations
from .errors import KnowledgeBaseError
from .execution import CancellationToken
from .generation import GenerationProvider
from .ingestion import load_pdf_chunks
from .metrics import MetricsCollector
from .models import Chunk, ChunkSet, QAPair, validate_document_id
from .observability import get_logger
from .query_service import RetrievalQueryService
from .record_store import DocumentRecordStore

logger = get_logger(__name__)


class KnowledgeBaseService:
    def __init__(
        self,
        embeddings: Embeddings,
        generator: GenerationProvider,
        knowledge_base_dir: Path = KNOWLEDGE_BASE_DIR,
        metrics: MetricsCollector | None = None,
        top_k: int = RETRIEVAL_TOP_K,
        keep_previous_on_failure: bool | None = None,
        record_store: DocumentRecordStore | None = None,
    ):
        self.record_store = record_store or DocumentRecordStore(Path(knowledge_base_dir))
        manager_kwargs = {}
        if keep_previous_on_failure is not None:
            manager_kwargs["keep_previous_on_failure"] = keep_previous_on_failure
        self.context_manager = DocumentContextManager(self.record_store, embeddings, **manager_kwargs)
        self.query_service = RetrievalQueryService(self.context_manager, generator, top_k=top_k)
        self.document_ops = WholeDocumentOperations(self.context_manager, generator)
        self.metrics = metrics or MetricsCollector()

    @classmethod
    def from_config(cls) -> "KnowledgeBaseService":
        """Production wiring: local HuggingFace embeddings and the configured LLM."""
        from .embeddings import get_embeddings
        from .generation import LLMGenerationProvider

        return cls(embeddings=get_embeddings(), generator=LLMGenerationProvider())

    @contextmanager
    def _timed(self, operation: str, document_id: str | None = None):
        start = time.perf_counter()
        try:
            yield
        except KnowledgeBaseError as exc:
            self.metrics.record_operation(
                operation,
                (time.perf_counter() - start) * 1000.0,
                success=False,
                error_kind=exc.kind,
                document_id=document_id or exc.document_id,
            )
            raise
        except Exception as exc:
            self.metrics.record_operation(
                operation,
                (time.perf_counter() - start) * 1000.0,
                success=False,
                error_kind=type(exc).__name__,
                document_id=document_id,
            )
            raise
        self.metrics.record_operation(
            operation,
            (time.perf_counter() - start) * 1000.0,
            success=True,
            document_id=document_id or self.active_document_id(),
        )

    # --- Inbound operations ---

    def upload(self, document_id: str, raw_chunks: ChunkSet | Iterable[Chunk | Document | str]) -> int:
        """Indexes and stores the chunks under document_id and makes it active; returns the chunk count."""
        with self._timed("upload", document_id):
            context = self.context_manager.activate_from_upload(document_id, raw_chunks)
            self.document_ops.forget(context.document_id)
            return len(context.chunk_set)

    def upload_file(self, document_id: str, path: Path, delete_after: bool = False) -> int:
        try:
            document_id = validate_document_id(document_id)
            with self._timed("ingest", document_id):
                chunks = load_pdf_chunks(Path(path))
            return self.upload(document_id, chunks)
        finally:
            if delete_after:
                try:
                    Path(path).unlink(missing_ok=True)
                except OSError as exc:
                    logger.warning("upload_cleanup_failed", path=str(path), error=str(exc))

    def load_context(self, document_id: str) -> str:
        with self._timed("load_context", document_id):
            return self.context_manager.activate_from_storage(document_id).document_id

    def ask(self, question: str, cancel_token: CancellationToken | None = None) -> str:
        with self._timed("ask"):
            return self.query_service.answer(question, cancel_token=cancel_token)

    def summary(self, cancel_token: CancellationToken | None = None) -> str:
        with self._timed("summary"):
            return self.document_ops.summarize(cancel_token=cancel_token)

    def key_concepts(self, cancel_token: CancellationToken | None = None) -> list[str]:
        with self._timed("key_concepts"):
            return self.document_ops.extract_key_concepts(cancel_token=cancel_token)

    def generate_qa(self, cancel_token: CancellationToken | None = None) -> list[QAPair]:
        with self._timed("generate_qa"):
            return self.document_ops.generate_qa_pairs(cancel_token=cancel_token)

    def flashcards(self, cancel_token: CancellationToken | None = None) -> list[QAPair]:
        with self._timed("flashcards"):
            return self.document_ops.generate_flashcards(cancel_token=cancel_token)

    # --- Inspection ---

    def list_documents(self) -> list[str]:
        return self.record_store.list_document_ids()

    def active_document_id(self) -> str | None:
        return self.context_manager.get_active_document_id()

    def latest_artifacts(self) -> GeneratedArtifacts:
        return self.document_ops.latest_artifacts()

    def close(self):
        self.context_manager.deactivate()
        logger.info("service_closed")
