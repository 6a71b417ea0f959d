import re
import threading
import time
from pathlib import Path

import fitz
from langchain_core.embeddings import Embeddings

VOCABULARY = ("alpha", "beta", "gamma", "intro", "detail", "conclusion")
_TOKEN_RE = re.compile(r"[a-z]+")


class KeywordEmbeddings(Embeddings):
    """Counts vocabulary words; deterministic and easy to reason about."""

    model_name = "keyword-test"

    def __init__(self, vocabulary=VOCABULARY):
        self.vocabulary = tuple(vocabulary)
        self.fail_documents = False
        self.document_calls = 0
        self.query_calls = 0
        self._lock = threading.Lock()

    def _vector(self, text):
        tokens = _TOKEN_RE.findall(str(text).lower())
        return [float(tokens.count(word)) for word in self.vocabulary]

    def embed_documents(self, texts):
        with self._lock:
            self.document_calls += 1
        if self.fail_documents:
            raise RuntimeError("embedding backend unavailable")
        return [self._vector(text) for text in texts]

    def embed_query(self, text):
        with self._lock:
            self.query_calls += 1
        return self._vector(text)


class OtherKeywordEmbeddings(KeywordEmbeddings):
    model_name = "another-model"


class RaggedEmbeddings(KeywordEmbeddings):
    def embed_documents(self, texts):
        return [[1.0] * (idx + 1) for idx, _ in enumerate(texts)]


class BlockingEmbeddings(KeywordEmbeddings):
    """Blocks embed_documents until released; signals when a call starts."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def embed_documents(self, texts):
        self.started.set()
        self.release.wait(5)
        return super().embed_documents(texts)


class RecordingGenerator:
    """Returns scripted responses in order (the last one repeats) and records calls."""

    def __init__(self, *responses):
        self.responses = list(responses) or ["generated answer"]
        self.calls = []
        self._lock = threading.Lock()

    def generate(self, prompt, context_text):
        with self._lock:
            self.calls.append((prompt, context_text))
            idx = min(len(self.calls) - 1, len(self.responses) - 1)
            return self.responses[idx]


class FailingGenerator:
    def __init__(self, exc=None):
        self.exc = exc or ConnectionError("model server down")
        self.calls = 0

    def generate(self, prompt, context_text):
        self.calls += 1
        raise self.exc


class SlowGenerator:
    """Waits until released (or for `delay_s`) before answering."""

    def __init__(self, delay_s=2.0, response="late answer"):
        self.delay_s = delay_s
        self.response = response
        self.started = threading.Event()
        self.release = threading.Event()

    def generate(self, prompt, context_text):
        self.started.set()
        self.release.wait(self.delay_s)
        return self.response


def slow_call(delay_s, value="done"):
    time.sleep(delay_s)
    return value


def write_pdf(path, pages):
    """Writes a small PDF with one text page per entry."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    doc.save(str(path))
    doc.close()
    return Path(path)
