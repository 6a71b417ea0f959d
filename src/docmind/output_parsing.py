# /docmind/output_parsing.py
"""
Validation of structured generation output.

Provider text is untrusted. The envelope is handled leniently (reasoning tags,
Markdown fences, prose around the JSON, a single-key wrapper object); the items
themselves are validated strictly. Anything that does not yield a valid array
raises GenerationFormatError with the raw text attached.
"""
from __future__ import annotations

import json
import re
from typing import Annotated, Any

from pydantic import StringConstraints, TypeAdapter, ValidationError

from .config import KEY_CONCEPT_LIMIT
from .errors import GenerationFormatError
from .models import QAPair

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*(.*?)```", re.DOTALL)

ConceptText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
_CONCEPTS_ADAPTER = TypeAdapter(list[ConceptText])
_QA_ADAPTER = TypeAdapter(list[QAPair])


def _strip_envelope(raw: str) -> str:
    text = _THINK_RE.sub("", raw or "").strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    return text


def _decode_first_json(text: str) -> Any:
    """Decodes the text as JSON, or the first array/object embedded in it."""
    try:
        return json.loads(text)
    except ValueError:
        pass
    decoder = json.JSONDecoder()
    for match in re.finditer(r"[\[{]", text):
        try:
            value, _ = decoder.raw_decode(text, match.start())
        except ValueError:
            continue
        if isinstance(value, (list, dict)):
            return value
    raise ValueError("no JSON array found")


def extract_json_array(raw: str) -> list[Any]:
    text = _strip_envelope(raw)
    try:
        value = _decode_first_json(text)
    except ValueError as exc:
        raise GenerationFormatError(f"Output is not JSON: {exc}", raw_output=raw) from exc
    if isinstance(value, dict) and len(value) == 1:
        value = next(iter(value.values()))
    if not isinstance(value, list):
        raise GenerationFormatError(
            f"Expected a JSON array, got {type(value).__name__}",
            raw_output=raw,
        )
    return value


def parse_key_concepts(raw: str, limit: int = KEY_CONCEPT_LIMIT) -> list[str]:
    items = extract_json_array(raw)
    try:
        concepts = _CONCEPTS_ADAPTER.validate_python(items, strict=True)
    except ValidationError as exc:
        raise GenerationFormatError(f"Invalid key concepts: {exc.error_count()} bad item(s)", raw_output=raw) from exc
    unique: list[str] = []
    for concept in concepts:
        if concept not in unique:
            unique.append(concept)
    return unique[: max(1, int(limit))]


def parse_qa_pairs(raw: str) -> list[QAPair]:
    """Used for both Q&A pairs and flashcards."""
    items = extract_json_array(raw)
    try:
        return _QA_ADAPTER.validate_python(items)
    except ValidationError as exc:
        raise GenerationFormatError(f"Invalid question/answer items: {exc.error_count()} bad item(s)", raw_output=raw) from exc
