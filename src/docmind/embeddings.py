"""
Embedding provider adapter.
The provider is any LangChain `Embeddings`; production uses a local
HuggingFace sentence-transformer. Every call is time boxed and its output is
validated before it reaches an index.
"""
from __future__ import annotations

from typing import Any

import numpy as np
from langchain_core.embeddings import Embeddings
from langchain_huggingface import HuggingFaceEmbeddings

from .config import (
    EMBED_BATCH_SIZE,
    EMBED_TIMEOUT_S,
    EMBEDDING_MODEL_NAME,
    QUERY_EMBED_TIMEOUT_S,
    get_model_kwargs,
)
from .errors import EmbeddingError, KnowledgeBaseError
from .execution import CancellationToken, run_time_boxed
from .observability import get_logger

logger = get_logger(__name__)
_EMBEDDING_MODEL = None


def get_embeddings() -> Embeddings:
    global _EMBEDDING_MODEL
    if _EMBEDDING_MODEL is None:
        _EMBEDDING_MODEL = HuggingFaceEmbeddings(
            model_name=EMBEDDING_MODEL_NAME,
            model_kwargs=get_model_kwargs(),
        )
    return _EMBEDDING_MODEL


def unload_embeddings():
    """Drops the cached embedding model reference."""
    global _EMBEDDING_MODEL
    _EMBEDDING_MODEL = None


def embedding_fingerprint(embeddings: Embeddings, dimension: int) -> dict[str, Any]:
    """Identifies the provider an index was built with: class, model name, vector size."""
    cls = type(embeddings)
    model = getattr(embeddings, "model_name", None) or getattr(embeddings, "model", None) or ""
    return {
        "provider": f"{cls.__module__}.{cls.__qualname__}",
        "model": str(model),
        "dimension": int(dimension),
    }


def _as_matrix(vectors: Any, expected_rows: int, operation: str) -> np.ndarray:
    try:
        matrix = np.asarray(vectors, dtype=np.float32)
    except (TypeError, ValueError) as exc:
        raise EmbeddingError(f"{operation}: provider returned ragged or non-numeric vectors") from exc
    if matrix.ndim != 2 or matrix.shape[0] != expected_rows:
        raise EmbeddingError(
            f"{operation}: expected {expected_rows} vectors, provider returned shape {tuple(matrix.shape)}"
        )
    if expected_rows and matrix.shape[1] == 0:
        raise EmbeddingError(f"{operation}: provider returned zero-length vectors")
    if not np.all(np.isfinite(matrix)):
        raise EmbeddingError(f"{operation}: provider returned non-finite values")
    return matrix


def embed_texts(
    embeddings: Embeddings,
    texts: list[str],
    *,
    batch_size: int = EMBED_BATCH_SIZE,
    timeout_s: float = EMBED_TIMEOUT_S,
) -> np.ndarray:
    """Embeds texts in order; any provider failure fails the whole call."""
    if not texts:
        return np.zeros((0, 0), dtype=np.float32)

    batches: list[np.ndarray] = []
    step = max(1, int(batch_size))
    for start in range(0, len(texts), step):
        batch = [str(text) for text in texts[start:start + step]]
        try:
            raw = run_time_boxed(
                embeddings.embed_documents,
                batch,
                timeout_s=timeout_s,
                operation="embed_documents",
            )
        except TimeoutError as exc:
            raise EmbeddingError(f"Embedding batch at offset {start} timed out") from exc
        except KnowledgeBaseError:
            raise
        except Exception as exc:
            logger.error("embed_documents_failed", offset=start, batch=len(batch), error=str(exc))
            raise EmbeddingError(f"Embedding provider failed at offset {start}: {exc}") from exc
        batches.append(_as_matrix(raw, len(batch), "embed_documents"))

    dimensions = {batch.shape[1] for batch in batches}
    if len(dimensions) != 1:
        raise EmbeddingError(f"Embedding provider returned inconsistent dimensions: {sorted(dimensions)}")
    return np.vstack(batches)


def embed_query(
    embeddings: Embeddings,
    text: str,
    *,
    timeout_s: float = QUERY_EMBED_TIMEOUT_S,
    cancel_token: CancellationToken | None = None,
) -> np.ndarray:
    try:
        raw = run_time_boxed(
            embeddings.embed_query,
            str(text),
            timeout_s=timeout_s,
            cancel_token=cancel_token,
            operation="embed_query",
        )
    except TimeoutError as exc:
        raise EmbeddingError("Query embedding timed out") from exc
    except KnowledgeBaseError:
        raise
    except Exception as exc:
        logger.error("embed_query_failed", error=str(exc))
        raise EmbeddingError(f"Embedding provider failed for query: {exc}") from exc
    return _as_matrix([raw], 1, "embed_query")[0]
