# /docmind/generation.py
"""
Generation provider adapter.
A provider turns (instructions, context text) into text. The production
provider is a LangChain chain over Groq or a local Ollama model.
"""
from __future__ import annotations

import os
from typing import Protocol

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_ollama import OllamaLLM

from .config import (
    API_MODEL_NAME,
    GENERATION_TIMEOUT_S,
    GROQ_API_AVAILABLE,
    LOCAL_MODEL_NAME,
    USE_API_LLM,
    console,
)
from .errors import GenerationError, KnowledgeBaseError
from .execution import CancellationToken, run_time_boxed
from .observability import get_logger
from .prompts import GENERATION_TEMPLATE

logger = get_logger(__name__)

LLM_OPTIONS = {
    "temperature": 0.4,
    "top_p": 0.95,
    "num_predict": 1200,
    "repeat_penalty": 1.15,
}


class GenerationProvider(Protocol):
    def generate(self, prompt: str, context_text: str) -> str:
        ...


def initialize_llm():
    """Initializes the LLM based on global configuration."""
    if USE_API_LLM:
        if not GROQ_API_AVAILABLE or not os.getenv("GROQ_API_KEY"):
            raise GenerationError("USE_API_LLM is set but the Groq library or GROQ_API_KEY is missing")
        from langchain_groq import ChatGroq

        console.print(f"[green]Using API Model: {API_MODEL_NAME}[/green]")
        return ChatGroq(
            model_name=API_MODEL_NAME,
            temperature=LLM_OPTIONS["temperature"],
            top_p=LLM_OPTIONS["top_p"],
            max_tokens=LLM_OPTIONS["num_predict"],
            groq_api_key=os.getenv("GROQ_API_KEY"),
        )
    console.print(f"[green]Using Local Model: {LOCAL_MODEL_NAME}[/green]")
    return OllamaLLM(
        model=LOCAL_MODEL_NAME,
        temperature=LLM_OPTIONS["temperature"],
        top_p=LLM_OPTIONS["top_p"],
        num_predict=LLM_OPTIONS["num_predict"],
        repeat_penalty=LLM_OPTIONS["repeat_penalty"],
    )


class LLMGenerationProvider:
    """Runs instructions + context through `prompt | llm | StrOutputParser`."""

    def __init__(self, llm=None):
        self.llm = llm if llm is not None else initialize_llm()
        self.chain = ChatPromptTemplate.from_template(GENERATION_TEMPLATE) | self.llm | StrOutputParser()

    def generate(self, prompt: str, context_text: str) -> str:
        return self.chain.invoke({"instructions": prompt, "context": context_text})


def call_generation(
    provider: GenerationProvider,
    prompt: str,
    context_text: str,
    *,
    operation: str = "generate",
    timeout_s: float = GENERATION_TIMEOUT_S,
    cancel_token: CancellationToken | None = None,
    document_id: str | None = None,
) -> str:
    """Single call site for generation: time boxed, cancellable, failures typed."""
    try:
        result = run_time_boxed(
            provider.generate,
            prompt,
            context_text,
            timeout_s=timeout_s,
            cancel_token=cancel_token,
            operation=operation,
        )
    except TimeoutError as exc:
        raise GenerationError(f"{operation} timed out after {timeout_s:.1f}s", document_id=document_id) from exc
    except KnowledgeBaseError:
        raise
    except Exception as exc:
        logger.error("generation_failed", operation=operation, document_id=document_id, error=str(exc))
        raise GenerationError(f"Generation provider failed during {operation}: {exc}", document_id=document_id) from exc

    if not isinstance(result, str):
        raise GenerationError(
            f"Generation provider returned {type(result).__name__} during {operation}, expected text",
            document_id=document_id,
        )
    logger.info("generation_completed", operation=operation, document_id=document_id, chars=len(result))
    return result
