import tempfile
import threading
import unittest
from pathlib import Path

from docmind.context_manager import DocumentContextManager
from docmind.errors import (
    GenerationError,
    InvalidRequestError,
    NoActiveDocumentError,
    OperationCancelledError,
)
from docmind.execution import CancellationToken
from docmind.query_service import RetrievalQueryService
from docmind.record_store import DocumentRecordStore

from _fakes import FailingGenerator, KeywordEmbeddings, RecordingGenerator, SlowGenerator

DOC = ["alpha intro", "beta detail", "gamma conclusion"]


class TestRetrievalQueryService(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.manager = DocumentContextManager(DocumentRecordStore(Path(self.tmp.name)), KeywordEmbeddings())
        self.generator = RecordingGenerator("The conclusion is gamma.")

    def tearDown(self):
        self.tmp.cleanup()

    def _service(self, generator=None, top_k=4):
        return RetrievalQueryService(self.manager, generator or self.generator, top_k=top_k)

    def test_top_one_answer_uses_only_the_nearest_chunk(self):
        self.manager.activate_from_upload("doc", DOC)
        answer = self._service(top_k=1).answer("what is in the conclusion?")
        self.assertEqual(answer, "The conclusion is gamma.")
        self.assertEqual(len(self.generator.calls), 1)
        prompt, context_text = self.generator.calls[0]
        self.assertEqual(context_text, "gamma conclusion")
        self.assertIn("what is in the conclusion?", prompt)

    def test_context_is_joined_nearest_first(self):
        self.manager.activate_from_upload("doc", DOC)
        retrieved = self._service().retrieve("gamma conclusion", k=3)
        self.assertEqual(retrieved.text, "gamma conclusion\n\nalpha intro\n\nbeta detail")
        self.assertEqual(retrieved.document_id, "doc")

    def test_answer_is_returned_verbatim(self):
        self.manager.activate_from_upload("doc", DOC)
        raw = "  <b>Keep</b> spacing\n"
        self.assertEqual(self._service(RecordingGenerator(raw)).answer("beta"), raw)

    def test_question_without_active_document(self):
        with self.assertRaises(NoActiveDocumentError):
            self._service().answer("anything")
        self.assertEqual(self.generator.calls, [])

    def test_blank_question_is_invalid(self):
        self.manager.activate_from_upload("doc", DOC)
        with self.assertRaises(InvalidRequestError):
            self._service().answer("   ")

    def test_explicit_k_of_zero_is_invalid(self):
        self.manager.activate_from_upload("doc", DOC)
        generator = RecordingGenerator("unused")
        with self.assertRaises(InvalidRequestError):
            self._service(generator).retrieve("alpha", k=0)
        self.assertEqual(generator.calls, [])

    def test_generation_failure_is_typed(self):
        self.manager.activate_from_upload("doc", DOC)
        with self.assertRaises(GenerationError) as ctx:
            self._service(FailingGenerator()).answer("alpha")
        self.assertIsInstance(ctx.exception.__cause__, ConnectionError)
        self.assertEqual(ctx.exception.document_id, "doc")

    def test_non_text_generation_result_is_rejected(self):
        self.manager.activate_from_upload("doc", DOC)
        with self.assertRaises(GenerationError):
            self._service(RecordingGenerator(["not", "text"])).answer("alpha")

    def test_cancelled_question_aborts_without_touching_context(self):
        self.manager.activate_from_upload("doc", DOC)
        before = self.manager.require_active()
        generator = SlowGenerator(delay_s=5)
        token = CancellationToken()
        canceller = threading.Thread(target=lambda: (generator.started.wait(5), token.cancel()))
        canceller.start()
        try:
            with self.assertRaises(OperationCancelledError):
                self._service(generator).answer("alpha", cancel_token=token)
        finally:
            generator.release.set()
            canceller.join(5)
        self.assertIs(self.manager.require_active(), before)


if __name__ == "__main__":
    unittest.main()
