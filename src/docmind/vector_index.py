# /docmind/vector_index.py
"""
Nearest-neighbour index over chunk embeddings, plus its on-disk store.

Vectors live in a LangChain FAISS store (flat index, exact search). One row
per chunk in sequence order; each row remembers which chunk it embeds
(sequence index + text digest) so an index can be checked against the chunk
set it claims to cover.
"""
from __future__ import annotations

import hashlib
import json
import math
import pickle
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np
from langchain_community.vectorstores import FAISS
from langchain_community.vectorstores.utils import DistanceStrategy
from langchain_core.embeddings import Embeddings

from .config import ENFORCE_EMBEDDING_FINGERPRINT, VECTOR_DISTANCE
from .embeddings import embed_query, embed_texts, embedding_fingerprint
from .errors import IndexCompatibilityError, InvalidRequestError, NotFoundError, StorageError
from .execution import CancellationToken
from .models import ChunkSet, validate_document_id
from .observability import get_logger
from .storage_provider import ArtifactStorageProvider, LocalArtifactStorageProvider

FAISS_INDEX_NAME = "index"
INDEX_FAISS_FILE_NAME = f"{FAISS_INDEX_NAME}.faiss"
INDEX_DOCSTORE_FILE_NAME = f"{FAISS_INDEX_NAME}.pkl"
INDEX_META_FILE_NAME = "index.json"
VECTOR_INDEX_FORMAT_VERSION = 2

# cosine rows are stored unit-length and searched by inner product.
DISTANCE_STRATEGIES = {
    "cosine": DistanceStrategy.MAX_INNER_PRODUCT,
    "l2": DistanceStrategy.EUCLIDEAN_DISTANCE,
}
SUPPORTED_METRICS = tuple(DISTANCE_STRATEGIES)
logger = get_logger(__name__)


def text_digest(text: str) -> str:
    return hashlib.sha1(str(text).encode("utf-8")).hexdigest()


def _file_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _prepare_vectors(vectors: np.ndarray, metric: str) -> np.ndarray:
    vectors = np.asarray(vectors, dtype=np.float32)
    if metric != "cosine":
        return vectors
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    return np.divide(vectors, norms, out=np.zeros_like(vectors), where=norms > 0)


@dataclass(frozen=True)
class SearchHit:
    """Reference to one chunk returned by a search, with its distance to the query."""

    sequence_index: int
    distance: float


@dataclass(frozen=True)
class RowRef:
    sequence_index: int
    text_sha1: str


class ChunkVectorIndex:
    """FAISS store bound to the provider that will embed queries."""

    def __init__(
        self,
        store: FAISS | None,
        row_refs: list[RowRef],
        fingerprint: dict[str, Any],
        metric: str = VECTOR_DISTANCE,
        embeddings: Embeddings | None = None,
    ):
        if metric not in SUPPORTED_METRICS:
            raise InvalidRequestError(f"Unsupported vector distance: {metric!r}")
        row_refs = list(row_refs)
        if store is None and row_refs:
            raise StorageError(f"Vector index has {len(row_refs)} row references but no vectors")
        if store is not None:
            if store.index.ntotal != len(row_refs):
                raise StorageError(
                    f"Vector store holds {store.index.ntotal} vectors but {len(row_refs)} row references"
                )
            stored_ids = [store.index_to_docstore_id.get(row) for row in range(len(row_refs))]
            if stored_ids != [str(ref.sequence_index) for ref in row_refs]:
                raise StorageError("Vector store rows are not in chunk sequence order")
        self.store = store
        self.row_refs = row_refs
        self.fingerprint = dict(fingerprint)
        self.metric = metric
        self.embeddings = embeddings

    @classmethod
    def build(
        cls,
        chunk_set: ChunkSet,
        embeddings: Embeddings,
        metric: str = VECTOR_DISTANCE,
    ) -> "ChunkVectorIndex":
        """
        Embeds every chunk in order. Either all chunks are embedded or the build
        raises EmbeddingError; an empty chunk set never reaches the provider.
        """
        if metric not in SUPPORTED_METRICS:
            raise InvalidRequestError(f"Unsupported vector distance: {metric!r}")
        texts = chunk_set.texts()
        matrix = embed_texts(embeddings, texts)
        row_refs = [RowRef(chunk.sequence_index, text_digest(chunk.text)) for chunk in chunk_set]
        store = None
        if row_refs:
            rows = _prepare_vectors(matrix, metric)
            store = FAISS.from_embeddings(
                text_embeddings=list(zip(texts, rows.tolist())),
                embedding=embeddings,
                metadatas=[{"sequence_index": ref.sequence_index, "text_sha1": ref.text_sha1} for ref in row_refs],
                ids=[str(ref.sequence_index) for ref in row_refs],
                distance_strategy=DISTANCE_STRATEGIES[metric],
            )
        index = cls(
            store=store,
            row_refs=row_refs,
            fingerprint=embedding_fingerprint(embeddings, matrix.shape[1] if len(texts) else 0),
            metric=metric,
            embeddings=embeddings,
        )
        logger.info(
            "vector_index_built",
            document_id=chunk_set.document_id,
            rows=index.size,
            dimension=index.dimension,
            metric=metric,
        )
        return index

    @property
    def size(self) -> int:
        return len(self.row_refs)

    @property
    def dimension(self) -> int:
        return int(self.store.index.d) if self.store is not None else 0

    def verify_against(self, chunk_set: ChunkSet):
        """Raises StorageError unless every row embeds exactly one chunk and every chunk has a row."""
        if self.size != len(chunk_set):
            raise StorageError(
                f"Index has {self.size} rows but chunk set has {len(chunk_set)} chunks",
                document_id=chunk_set.document_id,
            )
        for ref, chunk in zip(self.row_refs, chunk_set):
            if ref.sequence_index != chunk.sequence_index or ref.text_sha1 != text_digest(chunk.text):
                raise StorageError(
                    f"Index row for chunk {chunk.sequence_index} does not match the stored chunk text",
                    document_id=chunk_set.document_id,
                )

    def _distance(self, score: float) -> float:
        # FAISS reports inner product for cosine rows and squared L2 otherwise.
        if self.metric == "cosine":
            return max(0.0, 1.0 - float(score))
        return math.sqrt(max(0.0, float(score)))

    def search(
        self,
        query_text: str,
        k: int,
        embeddings: Embeddings | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> list[SearchHit]:
        """Returns up to k hits ordered nearest-first; ties resolve by sequence order."""
        if int(k) < 1:
            raise InvalidRequestError(f"k must be at least 1, got {k}")
        if self.store is None:
            return []
        provider = embeddings or self.embeddings
        if provider is None:
            raise IndexCompatibilityError("Vector index is not bound to an embedding provider")

        query = embed_query(provider, query_text, cancel_token=cancel_token)
        if query.shape[0] != self.dimension:
            raise IndexCompatibilityError(
                f"Query vector has dimension {query.shape[0]}, index expects {self.dimension}"
            )
        vector = _prepare_vectors(query[None, :], self.metric)[0]
        # Score every row so equal distances can be ordered by sequence index.
        scored = self.store.similarity_search_with_score_by_vector(vector.tolist(), k=self.size)
        hits = sorted(
            (
                SearchHit(sequence_index=int(doc.metadata["sequence_index"]), distance=self._distance(score))
                for doc, score in scored
            ),
            key=lambda hit: (hit.distance, hit.sequence_index),
        )
        return hits[: int(k)]


class VectorIndexStore:
    """
    Persists one index per document id: FAISS's `save_local` files plus a JSON
    manifest holding row references, metric, fingerprint and file digests.
    The FAISS files are written by the library into the document directory, so
    the root must be a local path; the record store points it at staging.
    """

    def __init__(self, root: Path, storage_provider: ArtifactStorageProvider | None = None):
        self.storage: ArtifactStorageProvider = storage_provider or LocalArtifactStorageProvider(Path(root))
        self.root = Path(root)

    def _base(self, document_id: str) -> Path:
        return self.root / validate_document_id(document_id)

    def persist(self, index: ChunkVectorIndex, document_id: str) -> list[Path]:
        """Writes the FAISS files first and the manifest (which names their digests) last."""
        base = self._base(document_id)
        meta_path = base / INDEX_META_FILE_NAME
        written: list[Path] = []
        try:
            artifacts: dict[str, str] = {}
            if index.store is not None:
                index.store.save_local(str(base), index_name=FAISS_INDEX_NAME)
                for name in (INDEX_FAISS_FILE_NAME, INDEX_DOCSTORE_FILE_NAME):
                    artifacts[name] = _file_digest(self.storage.read_bytes(base / name))
                    written.append(base / name)
            payload = {
                "format_version": VECTOR_INDEX_FORMAT_VERSION,
                "document_id": document_id,
                "metric": index.metric,
                "fingerprint": index.fingerprint,
                "rows": [
                    {"sequence_index": ref.sequence_index, "text_sha1": ref.text_sha1}
                    for ref in index.row_refs
                ],
                "artifacts": artifacts,
            }
            self.storage.write_bytes(meta_path, json.dumps(payload, ensure_ascii=True).encode("utf-8"))
            written.append(meta_path)
        except (OSError, RuntimeError, TypeError, ValueError, pickle.PicklingError) as exc:
            logger.error("vector_index_persist_failed", document_id=document_id, error=str(exc))
            raise StorageError(f"Failed to persist vector index for '{document_id}': {exc}", document_id=document_id) from exc
        logger.info("vector_index_persisted", document_id=document_id, rows=index.size, path=str(base))
        return written

    def load(
        self,
        document_id: str,
        embeddings: Embeddings,
        enforce_fingerprint: bool = ENFORCE_EMBEDDING_FINGERPRINT,
    ) -> ChunkVectorIndex:
        base = self._base(document_id)
        meta_path = base / INDEX_META_FILE_NAME
        if not self.storage.exists(meta_path):
            raise NotFoundError(f"No stored vector index for document '{document_id}'", document_id=document_id)
        try:
            payload = json.loads(self.storage.read_bytes(meta_path).decode("utf-8"))
        except FileNotFoundError as exc:
            raise NotFoundError(f"No stored vector index for document '{document_id}'", document_id=document_id) from exc
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            raise StorageError(f"Unreadable vector index for '{document_id}': {exc}", document_id=document_id) from exc

        if not isinstance(payload, dict) or not isinstance(payload.get("rows"), list):
            raise StorageError(f"Malformed vector index manifest for '{document_id}'", document_id=document_id)
        if int(payload.get("format_version", -1)) != VECTOR_INDEX_FORMAT_VERSION:
            raise StorageError(
                f"Unsupported vector index version for '{document_id}': {payload.get('format_version')}",
                document_id=document_id,
            )
        fingerprint = dict(payload.get("fingerprint") or {})
        if enforce_fingerprint:
            self._check_fingerprint(document_id, fingerprint, embeddings)

        try:
            row_refs = [RowRef(int(row["sequence_index"]), str(row["text_sha1"])) for row in payload["rows"]]
            metric = str(payload.get("metric", VECTOR_DISTANCE))
            store = self._load_store(document_id, base, payload, metric, embeddings) if row_refs else None
            index = ChunkVectorIndex(
                store=store,
                row_refs=row_refs,
                fingerprint=fingerprint,
                metric=metric,
                embeddings=embeddings,
            )
        except (StorageError, NotFoundError):
            raise
        except (KeyError, TypeError, ValueError, InvalidRequestError) as exc:
            raise StorageError(f"Corrupt vector index for '{document_id}': {exc}", document_id=document_id) from exc

        logger.info("vector_index_loaded", document_id=document_id, rows=index.size, dimension=index.dimension)
        return index

    def _load_store(
        self,
        document_id: str,
        base: Path,
        payload: dict[str, Any],
        metric: str,
        embeddings: Embeddings,
    ) -> FAISS:
        artifacts = payload.get("artifacts")
        if not isinstance(artifacts, dict):
            raise StorageError(f"Vector index manifest for '{document_id}' lists no artifacts", document_id=document_id)
        # Only files matching the digests written alongside them are unpickled.
        for name in (INDEX_FAISS_FILE_NAME, INDEX_DOCSTORE_FILE_NAME):
            path = base / name
            if not self.storage.exists(path):
                raise NotFoundError(f"Vector index for '{document_id}' is missing {name}", document_id=document_id)
            try:
                actual = _file_digest(self.storage.read_bytes(path))
            except OSError as exc:
                raise StorageError(f"Unreadable vector index file {name} for '{document_id}': {exc}", document_id=document_id) from exc
            if actual != artifacts.get(name):
                raise StorageError(f"Vector index file {name} digest mismatch for '{document_id}'", document_id=document_id)
        if metric not in DISTANCE_STRATEGIES:
            raise StorageError(f"Unsupported vector distance {metric!r} for '{document_id}'", document_id=document_id)
        try:
            return FAISS.load_local(
                str(base),
                embeddings,
                index_name=FAISS_INDEX_NAME,
                allow_dangerous_deserialization=True,
                distance_strategy=DISTANCE_STRATEGIES[metric],
            )
        except (OSError, RuntimeError, EOFError, AttributeError, pickle.UnpicklingError) as exc:
            raise StorageError(f"Corrupt vector store for '{document_id}': {exc}", document_id=document_id) from exc

    @staticmethod
    def _check_fingerprint(document_id: str, stored: dict[str, Any], embeddings: Embeddings):
        live = embedding_fingerprint(embeddings, int(stored.get("dimension", 0) or 0))
        mismatched = [key for key in ("provider", "model") if str(stored.get(key, "")) != live[key]]
        if mismatched:
            logger.warning(
                "vector_index_fingerprint_mismatch",
                document_id=document_id,
                stored=stored,
                live=live,
                fields=mismatched,
            )
            raise IndexCompatibilityError(
                f"Vector index for '{document_id}' was built with {stored.get('provider')}:{stored.get('model')}, "
                f"live provider is {live['provider']}:{live['model']}",
                document_id=document_id,
            )
