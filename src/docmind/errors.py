"""
Typed errors for the document knowledge base.

Hierarchy:
    KnowledgeBaseError
    ├── NotFoundError            - no durable record for a document id
    ├── NoActiveDocumentError    - query issued before any activation succeeded
    ├── EmbeddingError           - embedding provider failed (build or query)
    ├── GenerationError          - generation provider failed
    ├── GenerationFormatError    - provider output could not be parsed
    ├── StorageError             - persistence failure or corrupt artifact
    │   └── IndexCompatibilityError - index built by a different embedding provider
    ├── OperationCancelledError  - caller abandoned a query
    └── InvalidRequestError      - malformed caller input (also a ValueError)
        └── UploadTooLargeError  - upload exceeds MAX_UPLOAD_BYTES
"""
from __future__ import annotations

from typing import Any


class KnowledgeBaseError(Exception):
    """Base class for every error surfaced by the knowledge base."""

    kind = "knowledge_base_error"

    def __init__(self, message: str, *, document_id: str | None = None):
        super().__init__(message)
        self.message = str(message)
        self.document_id = document_id

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "error": self.message}
        if self.document_id is not None:
            payload["document_id"] = self.document_id
        if self.__cause__ is not None:
            payload["cause"] = repr(self.__cause__)
        return payload


class NotFoundError(KnowledgeBaseError):
    kind = "not_found"


class NoActiveDocumentError(KnowledgeBaseError):
    kind = "no_active_document"

    def __init__(self, message: str = "No document knowledge base loaded. Upload or load a document first."):
        super().__init__(message)


class EmbeddingError(KnowledgeBaseError):
    kind = "embedding_error"


class GenerationError(KnowledgeBaseError):
    kind = "generation_error"


class GenerationFormatError(KnowledgeBaseError):
    """Provider succeeded but its output did not match the expected structure."""

    kind = "generation_format_error"

    def __init__(self, message: str, *, raw_output: str = "", document_id: str | None = None):
        super().__init__(message, document_id=document_id)
        self.raw_output = str(raw_output or "")


class StorageError(KnowledgeBaseError):
    kind = "storage_error"


class IndexCompatibilityError(StorageError):
    kind = "index_incompatible"


class OperationCancelledError(KnowledgeBaseError):
    kind = "cancelled"


class InvalidRequestError(KnowledgeBaseError, ValueError):
    kind = "invalid_request"


class UploadTooLargeError(InvalidRequestError):
    kind = "upload_too_large"
