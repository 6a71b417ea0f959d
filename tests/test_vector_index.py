import tempfile
import unittest
from pathlib import Path

from langchain_community.vectorstores import FAISS

from docmind.errors import (
    EmbeddingError,
    IndexCompatibilityError,
    InvalidRequestError,
    NotFoundError,
    StorageError,
)
from docmind.models import ChunkSet
from docmind.vector_index import INDEX_FAISS_FILE_NAME, INDEX_META_FILE_NAME, ChunkVectorIndex, VectorIndexStore

from _fakes import KeywordEmbeddings, OtherKeywordEmbeddings, RaggedEmbeddings

TEXTS = ["alpha intro", "beta detail", "gamma conclusion"]


class TestChunkVectorIndex(unittest.TestCase):
    def setUp(self):
        self.embeddings = KeywordEmbeddings()
        self.chunk_set = ChunkSet.from_raw("doc", TEXTS)
        self.index = ChunkVectorIndex.build(self.chunk_set, self.embeddings, metric="cosine")

    def test_build_embeds_every_chunk_in_order(self):
        self.assertEqual(self.index.size, 3)
        self.assertEqual(self.index.dimension, len(self.embeddings.vocabulary))
        self.assertEqual([ref.sequence_index for ref in self.index.row_refs], [0, 1, 2])
        self.index.verify_against(self.chunk_set)

    def test_k_larger_than_index_returns_every_chunk_once_nearest_first(self):
        hits = self.index.search("gamma conclusion", 10)
        self.assertEqual(len(hits), 3)
        self.assertEqual(sorted(hit.sequence_index for hit in hits), [0, 1, 2])
        self.assertEqual(hits[0].sequence_index, 2)
        distances = [hit.distance for hit in hits]
        self.assertEqual(distances, sorted(distances))

    def test_k_one_returns_single_hit(self):
        hits = self.index.search("what is in the conclusion?", 1)
        self.assertEqual(len(hits), 1)
        self.assertEqual(hits[0].sequence_index, 2)

    def test_k_below_one_is_invalid(self):
        with self.assertRaises(InvalidRequestError):
            self.index.search("alpha", 0)

    def test_ties_resolve_by_sequence_order(self):
        chunk_set = ChunkSet.from_raw("tie", ["alpha", "alpha", "alpha"])
        index = ChunkVectorIndex.build(chunk_set, self.embeddings)
        self.assertEqual([hit.sequence_index for hit in index.search("alpha", 3)], [0, 1, 2])

    def test_search_is_deterministic(self):
        first = self.index.search("beta detail gamma", 3)
        second = self.index.search("beta detail gamma", 3)
        self.assertEqual(first, second)

    def test_l2_metric(self):
        index = ChunkVectorIndex.build(self.chunk_set, self.embeddings, metric="l2")
        hits = index.search("beta detail", 2)
        self.assertEqual(hits[0].sequence_index, 1)
        self.assertAlmostEqual(hits[0].distance, 0.0)

    def test_empty_chunk_set_never_calls_provider(self):
        embeddings = KeywordEmbeddings()
        index = ChunkVectorIndex.build(ChunkSet.from_raw("empty", []), embeddings)
        self.assertEqual(index.size, 0)
        self.assertEqual(index.search("anything", 4), [])
        self.assertEqual(embeddings.document_calls, 0)
        self.assertEqual(embeddings.query_calls, 0)

    def test_provider_failure_fails_the_whole_build(self):
        embeddings = KeywordEmbeddings()
        embeddings.fail_documents = True
        with self.assertRaises(EmbeddingError):
            ChunkVectorIndex.build(self.chunk_set, embeddings)

    def test_ragged_provider_output_is_rejected(self):
        with self.assertRaises(EmbeddingError):
            ChunkVectorIndex.build(self.chunk_set, RaggedEmbeddings())

    def test_query_dimension_mismatch(self):
        narrower = KeywordEmbeddings(vocabulary=("alpha", "beta"))
        with self.assertRaises(IndexCompatibilityError):
            self.index.search("alpha", 1, embeddings=narrower)

    def test_vectors_are_held_in_a_faiss_store(self):
        self.assertIsInstance(self.index.store, FAISS)
        self.assertEqual(self.index.store.index.ntotal, 3)
        self.assertEqual(self.index.store.index_to_docstore_id, {0: "0", 1: "1", 2: "2"})

    def test_zero_query_is_equally_far_from_every_chunk(self):
        hits = self.index.search("nothing in the vocabulary", 3)
        self.assertEqual([hit.sequence_index for hit in hits], [0, 1, 2])
        for hit in hits:
            self.assertAlmostEqual(hit.distance, 1.0)

    def test_rows_out_of_sequence_order_are_rejected(self):
        with self.assertRaises(StorageError):
            ChunkVectorIndex(
                store=self.index.store,
                row_refs=list(reversed(self.index.row_refs)),
                fingerprint=self.index.fingerprint,
            )

    def test_verify_against_detects_changed_text(self):
        other = ChunkSet.from_raw("doc", ["alpha intro", "beta detail", "gamma changed"])
        with self.assertRaises(StorageError):
            self.index.verify_against(other)


class TestVectorIndexStore(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = VectorIndexStore(Path(self.tmp.name))
        self.embeddings = KeywordEmbeddings()
        self.chunk_set = ChunkSet.from_raw("doc", TEXTS)
        self.index = ChunkVectorIndex.build(self.chunk_set, self.embeddings)

    def tearDown(self):
        self.tmp.cleanup()

    def test_persisted_index_answers_like_the_original(self):
        self.store.persist(self.index, "doc")
        loaded = self.store.load("doc", self.embeddings)
        loaded.verify_against(self.chunk_set)
        self.assertEqual(loaded.search("beta", 3), self.index.search("beta", 3))
        self.assertEqual(loaded.fingerprint, self.index.fingerprint)

    def test_missing_index_is_not_found(self):
        with self.assertRaises(NotFoundError):
            self.store.load("doc", self.embeddings)

    def test_persist_writes_faiss_files_and_manifest(self):
        written = self.store.persist(self.index, "doc")
        self.assertEqual([path.name for path in written], ["index.faiss", "index.pkl", INDEX_META_FILE_NAME])
        for path in written:
            self.assertTrue(path.exists())

    def test_missing_faiss_file_is_not_found(self):
        self.store.persist(self.index, "doc")
        (Path(self.tmp.name) / "doc" / INDEX_FAISS_FILE_NAME).unlink()
        with self.assertRaises(NotFoundError):
            self.store.load("doc", self.embeddings)

    def test_empty_index_round_trips_without_faiss_files(self):
        empty = ChunkVectorIndex.build(ChunkSet.from_raw("empty", []), self.embeddings)
        written = self.store.persist(empty, "empty")
        self.assertEqual([path.name for path in written], [INDEX_META_FILE_NAME])
        loaded = self.store.load("empty", self.embeddings)
        self.assertEqual(loaded.size, 0)
        self.assertEqual(loaded.search("alpha", 2), [])

    def test_tampered_faiss_file_is_a_storage_error(self):
        faiss_path = self.store.persist(self.index, "doc")[0]
        with faiss_path.open("ab") as handle:
            handle.write(b"\x00")
        with self.assertRaises(StorageError):
            self.store.load("doc", self.embeddings)

    def test_different_embedding_model_is_rejected(self):
        self.store.persist(self.index, "doc")
        with self.assertRaises(IndexCompatibilityError):
            self.store.load("doc", OtherKeywordEmbeddings())

    def test_fingerprint_check_can_be_disabled(self):
        self.store.persist(self.index, "doc")
        loaded = self.store.load("doc", OtherKeywordEmbeddings(), enforce_fingerprint=False)
        self.assertEqual(loaded.size, 3)


if __name__ == "__main__":
    unittest.main()
