import unittest

from langchain_core.documents import Document
from pydantic import ValidationError

from docmind.errors import InvalidRequestError
from docmind.models import Chunk, ChunkSet, QAPair, validate_document_id


class TestDocumentIds(unittest.TestCase):
    def test_accepts_plain_ids(self):
        for document_id in ("doc1", "report-2024.v2", "A_b-c.d"):
            self.assertEqual(validate_document_id(document_id), document_id)

    def test_rejects_ids_that_are_not_safe_directory_names(self):
        for document_id in ("", "   ", "../etc", "a/b", ".hidden", "a..b", "x" * 200, None):
            with self.assertRaises(InvalidRequestError):
                validate_document_id(document_id)

    def test_invalid_request_is_also_a_value_error(self):
        with self.assertRaises(ValueError):
            validate_document_id("no spaces allowed")


class TestChunkSet(unittest.TestCase):
    def test_strings_are_numbered_in_order(self):
        chunk_set = ChunkSet.from_raw("doc", ["one", "two", "three"])
        self.assertEqual([c.sequence_index for c in chunk_set], [0, 1, 2])
        self.assertEqual(chunk_set.texts(), ["one", "two", "three"])
        self.assertEqual(chunk_set.full_text(), "one\n\ntwo\n\nthree")

    def test_documents_keep_metadata(self):
        docs = [
            Document(page_content="first", metadata={"page": 0, "start_index": 0}),
            Document(page_content="second", metadata={"page": 1, "tags": ["a", "b"]}),
        ]
        chunk_set = ChunkSet.from_raw("doc", docs)
        self.assertEqual(chunk_set[0].source_metadata["page"], 0)
        # Non-primitive metadata is stored as text so it survives JSON persistence.
        self.assertEqual(chunk_set[1].source_metadata["tags"], "['a', 'b']")
        self.assertEqual(chunk_set[1].to_document().metadata["sequence_index"], 1)

    def test_chunks_are_ordered_by_sequence_index(self):
        raw = [Chunk("c", 7), Chunk("a", 2), Chunk("b", 5)]
        chunk_set = ChunkSet.from_raw("doc", raw)
        self.assertEqual(chunk_set.texts(), ["a", "b", "c"])
        self.assertEqual([c.sequence_index for c in chunk_set], [0, 1, 2])

    def test_duplicate_sequence_indices_are_rejected(self):
        with self.assertRaises(InvalidRequestError):
            ChunkSet.from_raw("doc", [Chunk("a", 1), Chunk("b", 1)])

    def test_direct_construction_requires_contiguous_indices(self):
        with self.assertRaises(InvalidRequestError):
            ChunkSet("doc", (Chunk("a", 0), Chunk("b", 2)))

    def test_unsupported_chunk_type_is_rejected(self):
        with self.assertRaises(InvalidRequestError):
            ChunkSet.from_raw("doc", [b"bytes"])

    def test_chunks_are_immutable(self):
        chunk = Chunk("text", 0, {"page": 3})
        with self.assertRaises(AttributeError):
            chunk.text = "other"
        with self.assertRaises(TypeError):
            chunk.source_metadata["page"] = 4

    def test_payload_restores_equal_chunk(self):
        chunk = Chunk("text", 4, {"source": "a.pdf", "page": 1})
        self.assertEqual(Chunk.from_payload(chunk.to_payload()), chunk)


class TestQAPair(unittest.TestCase):
    def test_strips_whitespace_and_ignores_extra_keys(self):
        pair = QAPair.model_validate({"question": "  Why? ", "answer": " Because. ", "difficulty": "easy"})
        self.assertEqual(pair.question, "Why?")
        self.assertEqual(pair.answer, "Because.")

    def test_rejects_blank_fields(self):
        with self.assertRaises(ValidationError):
            QAPair.model_validate({"question": "   ", "answer": "x"})
        with self.assertRaises(ValidationError):
            QAPair.model_validate({"question": "q"})


if __name__ == "__main__":
    unittest.main()
