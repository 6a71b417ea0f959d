import threading
import time
import unittest

from langchain_core.language_models.fake import FakeListLLM

from docmind.embeddings import embed_texts, embedding_fingerprint
from docmind.errors import GenerationError, OperationCancelledError
from docmind.execution import CancellationToken, run_time_boxed
from docmind.generation import LLMGenerationProvider, call_generation

from _fakes import KeywordEmbeddings, RecordingGenerator, SlowGenerator, slow_call


class TestRunTimeBoxed(unittest.TestCase):
    def test_returns_result(self):
        self.assertEqual(run_time_boxed(slow_call, 0.0, value=42, timeout_s=5), 42)

    def test_provider_exception_propagates_unchanged(self):
        def boom():
            raise ValueError("bad input")

        with self.assertRaises(ValueError):
            run_time_boxed(boom, timeout_s=5)

    def test_provider_timeout_error_is_not_mistaken_for_waiting(self):
        def raises_timeout():
            raise TimeoutError("socket timed out")

        start = time.monotonic()
        with self.assertRaises(TimeoutError):
            run_time_boxed(raises_timeout, timeout_s=5)
        self.assertLess(time.monotonic() - start, 2)

    def test_expired_time_box_raises_timeout(self):
        start = time.monotonic()
        with self.assertRaises(TimeoutError):
            run_time_boxed(slow_call, 0.5, timeout_s=0.05, poll_interval_s=0.01)
        self.assertLess(time.monotonic() - start, 0.4)

    def test_cancelled_token_aborts_wait(self):
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel)
        timer.start()
        try:
            with self.assertRaises(OperationCancelledError):
                run_time_boxed(slow_call, 0.5, cancel_token=token, poll_interval_s=0.01)
        finally:
            timer.cancel()

    def test_pre_cancelled_token_never_calls_provider(self):
        token = CancellationToken()
        token.cancel()
        calls = []
        with self.assertRaises(OperationCancelledError):
            run_time_boxed(calls.append, 1, cancel_token=token)
        self.assertEqual(calls, [])


class TestCallGeneration(unittest.TestCase):
    def test_returns_text(self):
        generator = RecordingGenerator("hello")
        self.assertEqual(call_generation(generator, "prompt", "context"), "hello")
        self.assertEqual(generator.calls, [("prompt", "context")])

    def test_timeout_becomes_generation_error(self):
        generator = SlowGenerator(delay_s=0.5)
        try:
            with self.assertRaises(GenerationError) as ctx:
                call_generation(generator, "prompt", "context", timeout_s=0.05)
            self.assertIsInstance(ctx.exception.__cause__, TimeoutError)
        finally:
            generator.release.set()

    def test_llm_provider_runs_prompt_through_chain(self):
        provider = LLMGenerationProvider(llm=FakeListLLM(responses=["chain output"]))
        self.assertEqual(call_generation(provider, "Summarize.", "alpha intro"), "chain output")


class TestEmbeddingAdapter(unittest.TestCase):
    def test_fingerprint_names_provider_model_and_dimension(self):
        fingerprint = embedding_fingerprint(KeywordEmbeddings(), 6)
        self.assertEqual(fingerprint["provider"], "_fakes.KeywordEmbeddings")
        self.assertEqual(fingerprint["model"], "keyword-test")
        self.assertEqual(fingerprint["dimension"], 6)

    def test_embed_texts_batches_and_keeps_order(self):
        embeddings = KeywordEmbeddings()
        matrix = embed_texts(embeddings, ["alpha", "beta", "gamma"], batch_size=2)
        self.assertEqual(matrix.shape, (3, len(embeddings.vocabulary)))
        self.assertEqual(embeddings.document_calls, 2)
        self.assertEqual(int(matrix[2].argmax()), embeddings.vocabulary.index("gamma"))


if __name__ == "__main__":
    unittest.main()
