# /docmind/document_ops.py
"""
Whole-document operations: summary, key concepts, Q&A pairs, flashcards.
Each sends the entire chunk set of the active document as context, in
sequence order, and validates structured output before returning it.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from .config import FLASHCARD_COUNT, KEY_CONCEPT_LIMIT, MAX_DOCUMENT_CONTEXT_CHARS, QA_PAIR_COUNT
from .context_manager import ActiveContext, DocumentContextManager
from .errors import GenerationFormatError
from .execution import CancellationToken
from .generation import GenerationProvider, call_generation
from .models import ChunkSet, QAPair
from .observability import get_logger
from .output_parsing import parse_key_concepts, parse_qa_pairs
from .prompts import flashcards_prompt, key_concepts_prompt, qa_pairs_prompt, summary_prompt

CONTEXT_SEPARATOR = "\n\n"
logger = get_logger(__name__)


@dataclass(frozen=True)
class GeneratedArtifacts:
    """Latest successful result of each operation for one document; None means not generated yet."""

    document_id: str
    summary: str | None = None
    key_concepts: tuple[str, ...] | None = None
    qa_pairs: tuple[QAPair, ...] | None = None
    flashcards: tuple[QAPair, ...] | None = None
    updated_at: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "summary": self.summary,
            "key_concepts": list(self.key_concepts) if self.key_concepts is not None else None,
            "qa_pairs": [pair.model_dump() for pair in self.qa_pairs] if self.qa_pairs is not None else None,
            "flashcards": [card.model_dump() for card in self.flashcards] if self.flashcards is not None else None,
            "updated_at": dict(self.updated_at),
        }


def document_context_text(chunk_set: ChunkSet, max_chars: int = MAX_DOCUMENT_CONTEXT_CHARS) -> str:
    """Joins chunks in order; with max_chars > 0 stops at the last chunk that fits."""
    if max_chars <= 0:
        return chunk_set.full_text(CONTEXT_SEPARATOR)
    parts: list[str] = []
    used = 0
    for chunk in chunk_set:
        extra = len(chunk.text) + (len(CONTEXT_SEPARATOR) if parts else 0)
        if parts and used + extra > max_chars:
            logger.warning(
                "document_context_truncated",
                document_id=chunk_set.document_id,
                chunks_used=len(parts),
                chunks_total=len(chunk_set),
                max_chars=max_chars,
            )
            break
        parts.append(chunk.text)
        used += extra
    return CONTEXT_SEPARATOR.join(parts)


class WholeDocumentOperations:
    def __init__(
        self,
        context_manager: DocumentContextManager,
        generator: GenerationProvider,
        max_context_chars: int = MAX_DOCUMENT_CONTEXT_CHARS,
        key_concept_limit: int = KEY_CONCEPT_LIMIT,
        qa_pair_count: int = QA_PAIR_COUNT,
        flashcard_count: int = FLASHCARD_COUNT,
    ):
        self.context_manager = context_manager
        self.generator = generator
        self.max_context_chars = int(max_context_chars)
        self.key_concept_limit = int(key_concept_limit)
        self.qa_pair_count = int(qa_pair_count)
        self.flashcard_count = int(flashcard_count)
        self._artifacts: dict[str, GeneratedArtifacts] = {}
        self._artifacts_lock = threading.Lock()

    def _generate(
        self,
        active: ActiveContext,
        prompt: str,
        operation: str,
        cancel_token: CancellationToken | None,
    ) -> str | None:
        """Returns None for an empty document so callers can skip the provider."""
        if len(active.chunk_set) == 0:
            logger.info("document_operation_skipped_empty", operation=operation, document_id=active.document_id)
            return None
        return call_generation(
            self.generator,
            prompt,
            document_context_text(active.chunk_set, self.max_context_chars),
            operation=operation,
            cancel_token=cancel_token,
            document_id=active.document_id,
        )

    def _remember(self, document_id: str, **values):
        stamp = datetime.now(timezone.utc).isoformat()
        with self._artifacts_lock:
            current = self._artifacts.get(document_id) or GeneratedArtifacts(document_id=document_id)
            updated_at = dict(current.updated_at)
            updated_at.update({name: stamp for name in values})
            self._artifacts[document_id] = replace(current, updated_at=updated_at, **values)

    def summarize(self, cancel_token: CancellationToken | None = None) -> str:
        active = self.context_manager.require_active()
        raw = self._generate(active, summary_prompt(), "summary", cancel_token)
        summary = (raw or "").strip()
        self._remember(active.document_id, summary=summary)
        return summary

    def extract_key_concepts(self, cancel_token: CancellationToken | None = None) -> list[str]:
        active = self.context_manager.require_active()
        raw = self._generate(active, key_concepts_prompt(self.key_concept_limit), "key_concepts", cancel_token)
        concepts = [] if raw is None else self._parse(active, "key_concepts", parse_key_concepts, raw, self.key_concept_limit)
        self._remember(active.document_id, key_concepts=tuple(concepts))
        return concepts

    def generate_qa_pairs(self, cancel_token: CancellationToken | None = None) -> list[QAPair]:
        active = self.context_manager.require_active()
        raw = self._generate(active, qa_pairs_prompt(self.qa_pair_count), "qa_pairs", cancel_token)
        pairs = [] if raw is None else self._parse(active, "qa_pairs", parse_qa_pairs, raw)
        self._remember(active.document_id, qa_pairs=tuple(pairs))
        return pairs

    def generate_flashcards(self, cancel_token: CancellationToken | None = None) -> list[QAPair]:
        active = self.context_manager.require_active()
        raw = self._generate(active, flashcards_prompt(self.flashcard_count), "flashcards", cancel_token)
        cards = [] if raw is None else self._parse(active, "flashcards", parse_qa_pairs, raw)
        self._remember(active.document_id, flashcards=tuple(cards))
        return cards

    @staticmethod
    def _parse(active: ActiveContext, operation: str, parser, raw: str, *args):
        try:
            return parser(raw, *args)
        except GenerationFormatError as exc:
            exc.document_id = active.document_id
            logger.error(
                "generation_output_rejected",
                operation=operation,
                document_id=active.document_id,
                error=exc.message,
                raw_preview=raw[:200],
            )
            raise

    def latest_artifacts(self, document_id: str | None = None) -> GeneratedArtifacts:
        """
        Latest results for a document (the active one by default). A document that
        has generated nothing yet yields an empty record, not an error.
        """
        if document_id is None:
            document_id = self.context_manager.require_active().document_id
        with self._artifacts_lock:
            return self._artifacts.get(document_id) or GeneratedArtifacts(document_id=document_id)

    def forget(self, document_id: str):
        with self._artifacts_lock:
            self._artifacts.pop(document_id, None)
