# /docmind/config.py
"""
Centralized configuration for the document knowledge base.
Includes model names, storage paths, retrieval/generation tuning, time boxes,
policy switches, and hardware detection.
"""
import functools
import os
from pathlib import Path
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from .observability import configure_logging

# ==============================================================================
# CONSOLE & ENVIRONMENT
# ==============================================================================
console = Console()
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        value = int(raw)
    except ValueError:
        return int(default)
    return max(minimum, value)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        value = float(raw)
    except ValueError:
        return float(default)
    return max(float(minimum), value)


def _env_choice(name: str, default: str, choices: set[str]) -> str:
    raw = str(os.getenv(name, default) or "").strip().lower()
    return raw if raw in choices else default

# ==============================================================================
# GPU DETECTION & SETUP
# ==============================================================================
def _load_torch():
    try:
        import torch  # Imported lazily; only the local embedding model needs it.
        return torch
    except ImportError:
        return None


@functools.cache
def detect_gpu_setup():
    """Detects and prints GPU information on first access only."""
    torch = _load_torch()
    if torch is not None and torch.cuda.is_available():
        device_name = torch.cuda.get_device_name(0)
        memory_gb = torch.cuda.get_device_properties(0).total_memory / (1024**3)
        console.print(Panel(
            f"[bold green]GPU Detected![/bold green]\n"
            f"Device: {device_name}\n"
            f"Memory: {memory_gb:.1f} GB",
            title="GPU Configuration",
            border_style="green"
        ))
        return {'device': 'cuda', 'name': device_name}
    else:
        console.print("[yellow]No GPU detected. Using CPU instead.[/yellow]")
        return {'device': 'cpu', 'name': 'cpu'}


@functools.cache
def get_model_kwargs() -> dict[str, str]:
    return {'device': detect_gpu_setup()['device']}


# ==============================================================================
# GLOBAL CONFIGURATION
# ==============================================================================
# --- Model Selection ---
USE_API_LLM = _env_bool("USE_API_LLM", False)              # True for Groq API, False for local Ollama
LOCAL_MODEL_NAME = os.getenv("LOCAL_MODEL_NAME", "granite3.3:2b")
API_MODEL_NAME = os.getenv("API_MODEL_NAME", "gemma2-9b-it")
EMBEDDING_MODEL_NAME = os.getenv("EMBEDDING_MODEL_NAME", "sentence-transformers/all-MiniLM-L6-v2")

# --- Path Configuration ---
# Data directory is at ../../data relative to this file (src/docmind/config.py)
_BASE_DIR = Path(__file__).resolve().parent.parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(_BASE_DIR / "data")))

KNOWLEDGE_BASE_DIR = Path(os.getenv("KNOWLEDGE_BASE_DIR", str(DATA_DIR / "knowledge_base")))
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(DATA_DIR / "uploads")))
CACHE_DIR = Path(os.getenv("CACHE_DIR", str(DATA_DIR / "runtime_cache")))
METRICS_DIR = Path(os.getenv("METRICS_DIR", str(CACHE_DIR / "metrics")))

# --- Ingestion Configuration ---
CHUNK_SIZE = _env_int("CHUNK_SIZE", 1000, minimum=128)
CHUNK_OVERLAP = _env_int("CHUNK_OVERLAP", 200, minimum=0)
if CHUNK_OVERLAP >= CHUNK_SIZE:
    CHUNK_OVERLAP = max(0, CHUNK_SIZE // 4)
MAX_UPLOAD_BYTES = _env_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024, minimum=1024)

# --- Retrieval Tuning ---
RETRIEVAL_TOP_K = _env_int("RETRIEVAL_TOP_K", 4, minimum=1)
VECTOR_DISTANCE = _env_choice("VECTOR_DISTANCE", "cosine", {"cosine", "l2"})
EMBED_BATCH_SIZE = _env_int("EMBED_BATCH_SIZE", 64, minimum=1)

# --- Provider Time Boxes ---
# A timeout of 0 disables the time box for that call.
EMBED_TIMEOUT_S = _env_float("EMBED_TIMEOUT_S", 120.0, minimum=0.0)
QUERY_EMBED_TIMEOUT_S = _env_float("QUERY_EMBED_TIMEOUT_S", 30.0, minimum=0.0)
GENERATION_TIMEOUT_S = _env_float("GENERATION_TIMEOUT_S", 180.0, minimum=0.0)
PROVIDER_POLL_INTERVAL_S = _env_float("PROVIDER_POLL_INTERVAL_S", 0.20, minimum=0.01)
PROVIDER_MAX_WORKERS = _env_int("PROVIDER_MAX_WORKERS", 4, minimum=1)

# --- Consistency Policies ---
ENFORCE_EMBEDDING_FINGERPRINT = _env_bool("ENFORCE_EMBEDDING_FINGERPRINT", True)
KEEP_PREVIOUS_CONTEXT_ON_FAILURE = _env_bool("KEEP_PREVIOUS_CONTEXT_ON_FAILURE", True)

# --- Whole-Document Generation ---
# Set to 0 to always send the entire chunk set.
MAX_DOCUMENT_CONTEXT_CHARS = _env_int("MAX_DOCUMENT_CONTEXT_CHARS", 0, minimum=0)
KEY_CONCEPT_LIMIT = _env_int("KEY_CONCEPT_LIMIT", 10, minimum=1)
QA_PAIR_COUNT = _env_int("QA_PAIR_COUNT", 5, minimum=1)
FLASHCARD_COUNT = _env_int("FLASHCARD_COUNT", 10, minimum=1)

# --- API Service ---
API_THREAD_POOL_WORKERS = _env_int("API_THREAD_POOL_WORKERS", 8, minimum=1)
DISCONNECT_POLL_INTERVAL_S = _env_float("DISCONNECT_POLL_INTERVAL_S", 0.25, minimum=0.01)

# --- Create necessary directories ---
KNOWLEDGE_BASE_DIR.mkdir(parents=True, exist_ok=True)
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
CACHE_DIR.mkdir(parents=True, exist_ok=True)
LOG_PATH = Path(os.getenv("LOG_PATH", str(CACHE_DIR / "app.log")))
LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
configure_logging(LOG_PATH)

# --- Optional Dependency Flags ---
try:
    import langchain_groq
    GROQ_API_AVAILABLE = True
except ImportError:
    GROQ_API_AVAILABLE = False
