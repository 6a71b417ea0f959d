"""Retrieval-augmented question answering over the active document."""
from __future__ import annotations

from dataclasses import dataclass

from .config import RETRIEVAL_TOP_K
from .context_manager import DocumentContextManager
from .errors import InvalidRequestError
from .execution import CancellationToken
from .generation import GenerationProvider, call_generation
from .models import Chunk
from .observability import get_logger
from .prompts import answer_prompt

CONTEXT_SEPARATOR = "\n\n"
logger = get_logger(__name__)


@dataclass(frozen=True)
class RetrievedContext:
    document_id: str
    chunks: tuple[Chunk, ...]
    distances: tuple[float, ...]

    @property
    def text(self) -> str:
        return CONTEXT_SEPARATOR.join(chunk.text for chunk in self.chunks)


class RetrievalQueryService:
    """
    Owns per-request query wiring: the context manager supplies the active
    document, the generation provider produces the answer.
    """

    def __init__(
        self,
        context_manager: DocumentContextManager,
        generator: GenerationProvider,
        top_k: int = RETRIEVAL_TOP_K,
    ):
        self.context_manager = context_manager
        self.generator = generator
        self.top_k = int(top_k)

    def retrieve(
        self,
        question: str,
        k: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RetrievedContext:
        """Returns the k nearest chunks of the active document, nearest first."""
        text = str(question or "").strip()
        if not text:
            raise InvalidRequestError("Question is required.")
        active = self.context_manager.require_active()
        hits = active.vector_index.search(
            text,
            self.top_k if k is None else k,
            embeddings=self.context_manager.embeddings,
            cancel_token=cancel_token,
        )
        chunks = tuple(active.chunk_set[hit.sequence_index] for hit in hits)
        return RetrievedContext(
            document_id=active.document_id,
            chunks=chunks,
            distances=tuple(hit.distance for hit in hits),
        )

    def answer(
        self,
        question: str,
        k: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        retrieved = self.retrieve(question, k=k, cancel_token=cancel_token)
        logger.info(
            "question_context_retrieved",
            document_id=retrieved.document_id,
            chunks=[chunk.sequence_index for chunk in retrieved.chunks],
        )
        return call_generation(
            self.generator,
            answer_prompt(question),
            retrieved.text,
            operation="answer",
            cancel_token=cancel_token,
            document_id=retrieved.document_id,
        )
