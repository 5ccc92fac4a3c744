"""Application configuration with sensible defaults.

Module-level constants are read from the environment once at import.
Components never read them directly: they receive a ``Settings`` snapshot
through their constructor so tests can substitute their own values.
"""
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("RAGLINE_DATA_DIR", str(BASE_DIR / "data")))

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gemma3:12b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "bge-m3:latest")
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "0")) or None  # 0 = detect
NORMALIZE_EMBEDDINGS = os.getenv("NORMALIZE_EMBEDDINGS", "true").lower() == "true"
TOKENIZER_NAME = os.getenv("TOKENIZER_NAME") or None  # HF tokenizer, else word counts
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "60.0"))

# Vector index
INDEX_NAME = os.getenv("INDEX_NAME", "ragline-bge-m3")
INDEX_METRIC = os.getenv("INDEX_METRIC", "cosine")

# Chunking: unit is one of "word", "char", "sentence"
CHUNK_UNIT = os.getenv("CHUNK_UNIT", "word")
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "500"))            # words / chars / tokens
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "50"))       # words, or sentences

# Batching
EMBED_BATCH_SIZE = int(os.getenv("EMBED_BATCH_SIZE", "16"))
UPSERT_BATCH_SIZE = int(os.getenv("UPSERT_BATCH_SIZE", "100"))

# Retrieval and answer synthesis
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "3"))
PREVIEW_CHARS = int(os.getenv("PREVIEW_CHARS", "300"))
MAX_CONTEXT_CHARS = int(os.getenv("MAX_CONTEXT_CHARS", "6000"))
GENERATION_MAX_TOKENS = int(os.getenv("GENERATION_MAX_TOKENS", "512"))
GENERATION_TEMPERATURE = float(os.getenv("GENERATION_TEMPERATURE", "0.0"))

NO_ANSWER_MESSAGE = (
    "I could not find any relevant information in the indexed documents "
    "to answer this question."
)


@dataclass(frozen=True)
class Settings:
    """Snapshot of the configuration handed to every component."""

    data_dir: Path = field(default_factory=lambda: DATA_DIR)
    ollama_base_url: str = OLLAMA_BASE_URL
    chat_model: str = CHAT_MODEL
    embedding_model: str = EMBEDDING_MODEL
    embedding_dimension: Optional[int] = EMBEDDING_DIMENSION
    normalize_embeddings: bool = NORMALIZE_EMBEDDINGS
    tokenizer_name: Optional[str] = TOKENIZER_NAME
    request_timeout: float = REQUEST_TIMEOUT

    index_name: str = INDEX_NAME
    index_metric: str = INDEX_METRIC

    chunk_unit: str = CHUNK_UNIT
    chunk_size: int = CHUNK_SIZE
    chunk_overlap: int = CHUNK_OVERLAP

    embed_batch_size: int = EMBED_BATCH_SIZE
    upsert_batch_size: int = UPSERT_BATCH_SIZE

    retrieval_top_k: int = RETRIEVAL_TOP_K
    preview_chars: int = PREVIEW_CHARS
    max_context_chars: int = MAX_CONTEXT_CHARS
    generation_max_tokens: int = GENERATION_MAX_TOKENS
    generation_temperature: float = GENERATION_TEMPERATURE
    no_answer_message: str = NO_ANSWER_MESSAGE

    def with_overrides(self, **changes) -> "Settings":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


def load_settings() -> Settings:
    """Build settings from the environment-derived defaults."""
    return Settings()
