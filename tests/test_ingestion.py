import tempfile
import unittest
from pathlib import Path

from docmind.errors import InvalidRequestError, UploadTooLargeError
from docmind.ingestion import load_pdf_chunks, validate_upload

from _fakes import write_pdf


class TestIngestion(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_pdf_is_split_into_ordered_chunks_with_metadata(self):
        path = write_pdf(self.root / "notes.pdf", ["alpha intro", "beta detail", "gamma conclusion"])
        chunks = load_pdf_chunks(path)
        self.assertEqual([c.sequence_index for c in chunks], list(range(len(chunks))))
        self.assertEqual([c.text.strip() for c in chunks], ["alpha intro", "beta detail", "gamma conclusion"])
        self.assertEqual([c.source_metadata["page"] for c in chunks], [0, 1, 2])
        self.assertEqual(chunks[0].source_metadata["source"], "notes.pdf")
        self.assertIn("start_index", chunks[0].source_metadata)

    def test_long_page_produces_several_chunks(self):
        lines = "\n".join(" ".join(f"word{row}{col}" for col in range(8)) for row in range(4))
        path = write_pdf(self.root / "long.pdf", [lines])
        chunks = load_pdf_chunks(path, chunk_size=120, chunk_overlap=20)
        self.assertGreater(len(chunks), 1)

    def test_non_pdf_suffix_is_rejected(self):
        path = self.root / "notes.txt"
        path.write_text("%PDF-1.7 pretend", encoding="utf-8")
        with self.assertRaises(InvalidRequestError):
            validate_upload(path)

    def test_missing_signature_is_rejected(self):
        path = self.root / "fake.pdf"
        path.write_text("just text", encoding="utf-8")
        with self.assertRaises(InvalidRequestError):
            validate_upload(path)

    def test_oversized_upload_is_rejected(self):
        path = write_pdf(self.root / "big.pdf", ["alpha"])
        with self.assertRaises(UploadTooLargeError):
            validate_upload(path, max_bytes=10)

    def test_missing_file_is_rejected(self):
        with self.assertRaises(InvalidRequestError):
            validate_upload(self.root / "absent.pdf")


if __name__ == "__main__":
    unittest.main()
