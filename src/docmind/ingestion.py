# /docmind/ingestion.py
"""
PDF ingestion: upload validation, page text extraction, and chunking.
"""
from __future__ import annotations

import time
from contextlib import closing
from pathlib import Path

import fitz
from langchain_core.documents import Document
from langchain_text_splitters import RecursiveCharacterTextSplitter

from .config import CHUNK_OVERLAP, CHUNK_SIZE, MAX_UPLOAD_BYTES
from .errors import InvalidRequestError, UploadTooLargeError
from .models import Chunk
from .observability import get_logger

PDF_SIGNATURE = b"%PDF-"
logger = get_logger(__name__)


def validate_upload(path: Path, max_bytes: int = MAX_UPLOAD_BYTES) -> Path:
    """Accepts only regular .pdf files that start with the PDF signature and fit the size limit."""
    path = Path(path)
    if not path.is_file():
        raise InvalidRequestError(f"Upload not found: {path.name}")
    if path.suffix.lower() != ".pdf":
        raise InvalidRequestError("Only PDF files are allowed!")
    size = path.stat().st_size
    if size > max_bytes:
        raise UploadTooLargeError(f"File too large: {size} bytes exceeds the {max_bytes}-byte limit")
    with path.open("rb") as handle:
        if handle.read(len(PDF_SIGNATURE)) != PDF_SIGNATURE:
            raise InvalidRequestError(f"{path.name} is not a valid PDF file")
    return path


def load_pdf_pages(path: Path) -> list[Document]:
    docs = []
    with closing(fitz.open(str(path))) as pdf_doc:
        for pdf_page in pdf_doc:
            docs.append(
                Document(
                    page_content=pdf_page.get_text("text"),
                    metadata={"source": Path(path).name, "page": int(pdf_page.number)},
                )
            )
    return docs


def load_pdf_chunks(
    path: Path,
    chunk_size: int = CHUNK_SIZE,
    chunk_overlap: int = CHUNK_OVERLAP,
) -> list[Chunk]:
    """Validates, reads and splits a PDF into ordered chunks."""
    path = validate_upload(path)
    split_start = time.perf_counter()
    try:
        pages = load_pdf_pages(path)
    except (RuntimeError, ValueError) as exc:
        # PyMuPDF raises FileDataError (a RuntimeError) for damaged files.
        raise InvalidRequestError(f"Could not read PDF {path.name}: {exc}") from exc
    text_splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        add_start_index=True,
    )
    split_docs = [doc for doc in text_splitter.split_documents(pages) if doc.page_content.strip()]
    chunks = [Chunk.from_document(doc, idx) for idx, doc in enumerate(split_docs)]
    logger.info(
        "pdf_chunked",
        source=path.name,
        pages=len(pages),
        chunks=len(chunks),
        elapsed_ms=round((time.perf_counter() - split_start) * 1000.0, 1),
    )
    return chunks
