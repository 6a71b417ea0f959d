# /docmind/prompts.py
"""Instruction text for each generation operation."""
from __future__ import annotations

GENERATION_TEMPLATE = """{instructions}

CONTEXT:
{context}
"""

ANSWER_INSTRUCTIONS = """You are a grounded AI assistant answering questions about a single document.
Use only the provided context. Do not invent facts.
If the context is insufficient, say which part of the question it does not cover.

QUESTION:
{question}"""

SUMMARY_INSTRUCTIONS = """Summarize the document below in a few clear paragraphs.
Cover its purpose, main points, and conclusions. Use only the provided context."""

KEY_CONCEPTS_INSTRUCTIONS = """Extract up to {limit} key concepts from the document below.
Respond with a JSON array of short strings and nothing else, for example:
["concept one", "concept two"]"""

QA_PAIRS_INSTRUCTIONS = """Write {count} question and answer pairs that test understanding of the document below.
Respond with a JSON array of objects with "question" and "answer" keys and nothing else, for example:
[{{"question": "...", "answer": "..."}}]"""

FLASHCARDS_INSTRUCTIONS = """Create {count} study flashcards from the document below.
Each flashcard has a short prompt on the front ("question") and a concise answer on the back ("answer").
Respond with a JSON array of objects with "question" and "answer" keys and nothing else, for example:
[{{"question": "...", "answer": "..."}}]"""


def answer_prompt(question: str) -> str:
    return ANSWER_INSTRUCTIONS.format(question=str(question).strip())


def summary_prompt() -> str:
    return SUMMARY_INSTRUCTIONS


def key_concepts_prompt(limit: int) -> str:
    return KEY_CONCEPTS_INSTRUCTIONS.format(limit=int(limit))


def qa_pairs_prompt(count: int) -> str:
    return QA_PAIRS_INSTRUCTIONS.format(count=int(count))


def flashcards_prompt(count: int) -> str:
    return FLASHCARDS_INSTRUCTIONS.format(count=int(count))
