"""
FastAPI service layer for the docmind knowledge base.

Thin HTTP adapter over KnowledgeBaseService; blocking calls run on a thread
pool, and question/generation requests are cancelled when the client goes away.

Run with:
    uvicorn docmind.api_server:app --host 0.0.0.0 --port 8000
"""
from __future__ import annotations

import asyncio
import functools
import re
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import API_THREAD_POOL_WORKERS, DISCONNECT_POLL_INTERVAL_S, MAX_UPLOAD_BYTES, UPLOAD_DIR
from .errors import (
    IndexCompatibilityError,
    InvalidRequestError,
    KnowledgeBaseError,
    NoActiveDocumentError,
    NotFoundError,
    OperationCancelledError,
    StorageError,
    UploadTooLargeError,
)
from .execution import CancellationToken
from .models import QAPair, validate_document_id
from .observability import get_logger
from .service import KnowledgeBaseService

logger = get_logger(__name__)
_UPLOAD_READ_BYTES = 1024 * 1024
_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")

# Most specific classes first.
_STATUS_BY_ERROR: list[tuple[type[KnowledgeBaseError], int]] = [
    (UploadTooLargeError, 413),
    (InvalidRequestError, 400),
    (NoActiveDocumentError, 400),
    (NotFoundError, 404),
    (IndexCompatibilityError, 409),
    (StorageError, 500),
    (OperationCancelledError, 499),
]


def status_for_error(exc: KnowledgeBaseError) -> int:
    for error_cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status
    # Embedding, generation and output-format failures are upstream provider faults.
    return 502


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoadContextRequest(_Body):
    document_id: str = Field(..., alias="documentId", min_length=1)


class AskRequest(_Body):
    question: str = Field(..., min_length=1)


class MessageResponse(_Body):
    message: str
    document_id: str = Field(..., alias="documentId")
    chunks: int | None = None


class AnswerResponse(_Body):
    answer: str


class SummaryResponse(_Body):
    summary: str


class ConceptsResponse(_Body):
    concepts: list[str]


class QAPairsResponse(_Body):
    qa_pairs: list[QAPair]


class FlashcardsResponse(_Body):
    flashcards: list[QAPair]


class DocumentsResponse(_Body):
    documents: list[str]
    active_document_id: str | None = Field(None, alias="activeDocumentId")


def _error_response(status: int, message: str, kind: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message, "kind": kind})


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    service_factory: Callable[[], KnowledgeBaseService] | None = None,
    upload_dir: Path = UPLOAD_DIR,
    max_upload_bytes: int = MAX_UPLOAD_BYTES,
) -> FastAPI:
    factory = service_factory or KnowledgeBaseService.from_config
    upload_dir = Path(upload_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build the service once at startup; release it on shutdown."""
        upload_dir.mkdir(parents=True, exist_ok=True)
        app.state.service = factory()
        app.state.executor = ThreadPoolExecutor(
            max_workers=API_THREAD_POOL_WORKERS, thread_name_prefix="docmind-api"
        )
        logger.info("api_started", documents=len(app.state.service.list_documents()))

        yield  # Application is running.

        app.state.service.close()
        app.state.executor.shutdown(wait=False)
        logger.info("api_stopped")

    app = FastAPI(
        title="docmind API",
        description="Document knowledge base: upload a PDF, ask questions, generate study material",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(KnowledgeBaseError)
    async def knowledge_base_error_handler(request: Request, exc: KnowledgeBaseError):
        status = status_for_error(exc)
        log = logger.warning if status < 500 else logger.error
        log("api_request_failed", path=request.url.path, status=status, kind=exc.kind, error=exc.message)
        return _error_response(status, exc.message, exc.kind)

    def _service(request: Request) -> KnowledgeBaseService:
        return request.app.state.service

    async def _run(request: Request, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(request.app.state.executor, functools.partial(fn, *args))

    async def _run_cancellable(request: Request, fn: Callable[..., Any], *args: Any) -> Any:
        """Runs fn with a cancel token that is set if the client disconnects first."""
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(
            request.app.state.executor, functools.partial(fn, *args, cancel_token=token)
        )
        while not future.done():
            await asyncio.wait({future}, timeout=DISCONNECT_POLL_INTERVAL_S)
            if not future.done() and await request.is_disconnected():
                logger.info("api_client_disconnected", path=request.url.path)
                token.cancel()
                break
        return await future

    async def _save_upload(document: UploadFile) -> Path:
        original = Path(document.filename or "upload.pdf").name
        target = upload_dir / f"{uuid.uuid4().hex}-{_SAFE_NAME_RE.sub('_', original)}"
        written = 0
        try:
            with target.open("wb") as handle:
                while True:
                    block = await document.read(_UPLOAD_READ_BYTES)
                    if not block:
                        break
                    written += len(block)
                    if written > max_upload_bytes:
                        raise UploadTooLargeError(f"File too large: exceeds the {max_upload_bytes}-byte limit")
                    handle.write(block)
        except BaseException:
            target.unlink(missing_ok=True)
            raise
        return target

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------

    @app.post("/api/upload", response_model=MessageResponse, response_model_by_alias=True)
    async def upload_endpoint(
        request: Request,
        document: UploadFile | None = File(None),
        document_id: str | None = Form(None, alias="documentId"),
    ):
        if document is None:
            return _error_response(400, "No PDF file uploaded.", InvalidRequestError.kind)
        if not document_id:
            return _error_response(400, "documentId is required for upload.", InvalidRequestError.kind)
        document_id = validate_document_id(document_id)
        path = await _save_upload(document)
        chunks = await _run(request, _service(request).upload_file, document_id, path, True)
        return MessageResponse(
            message="Document processed and knowledge base updated successfully!",
            document_id=document_id,
            chunks=chunks,
        )

    @app.post("/api/load-context", response_model=MessageResponse, response_model_by_alias=True)
    async def load_context_endpoint(request: Request, body: LoadContextRequest):
        document_id = await _run(request, _service(request).load_context, body.document_id)
        return MessageResponse(
            message=f"Document context for ID {document_id} loaded successfully.",
            document_id=document_id,
        )

    @app.post("/api/ask", response_model=AnswerResponse)
    async def ask_endpoint(request: Request, body: AskRequest):
        answer = await _run_cancellable(request, _service(request).ask, body.question)
        return AnswerResponse(answer=answer)

    @app.post("/api/summary", response_model=SummaryResponse)
    async def summary_endpoint(request: Request):
        return SummaryResponse(summary=await _run_cancellable(request, _service(request).summary))

    @app.post("/api/key-concepts", response_model=ConceptsResponse)
    async def key_concepts_endpoint(request: Request):
        return ConceptsResponse(concepts=await _run_cancellable(request, _service(request).key_concepts))

    @app.post("/api/generate-qa", response_model=QAPairsResponse)
    async def generate_qa_endpoint(request: Request):
        return QAPairsResponse(qa_pairs=await _run_cancellable(request, _service(request).generate_qa))

    @app.post("/api/flashcards", response_model=FlashcardsResponse)
    async def flashcards_endpoint(request: Request):
        return FlashcardsResponse(flashcards=await _run_cancellable(request, _service(request).flashcards))

    @app.get("/api/documents", response_model=DocumentsResponse, response_model_by_alias=True)
    async def documents_endpoint(request: Request):
        service = _service(request)
        documents = await _run(request, service.list_documents)
        return DocumentsResponse(documents=documents, active_document_id=service.active_document_id())

    @app.get("/health")
    async def health_endpoint(request: Request):
        manager = _service(request).context_manager
        return {
            "status": "ok",
            "state": manager.state.value,
            "activeDocumentId": manager.get_active_document_id(),
        }

    @app.get("/metrics")
    async def metrics_endpoint(request: Request):
        """Return aggregated service metrics."""
        return _service(request).metrics.get_summary()

    return app


app = create_app()
