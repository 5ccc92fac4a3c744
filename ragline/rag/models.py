"""Data model shared by the pipeline stages."""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np
from pydantic import BaseModel, Field

from ragline.config import Settings
from ragline.errors import ConfigurationError


@dataclass(frozen=True)
class Chunk:
    """A contiguous, possibly overlapping span of source text."""

    id: str
    text: str
    start_offset: int
    word_count: int
    char_count: int

    @classmethod
    def create(cls, chunk_id: str, text: str, start_offset: int) -> "Chunk":
        return cls(
            id=chunk_id,
            text=text,
            start_offset=start_offset,
            word_count=len(text.split()),
            char_count=len(text),
        )


@dataclass(frozen=True)
class FixedWordPolicy:
    """Sliding window of ``window`` words advancing by ``window - overlap``."""

    window: int
    overlap: int = 0
    unit: str = field(default="word", init=False)

    def __post_init__(self):
        if self.window < 1:
            raise ConfigurationError(f"Word window must be >= 1, got {self.window}")
        if self.overlap < 0 or self.overlap >= self.window:
            raise ConfigurationError(
                f"Overlap ({self.overlap}) must be in [0, window) "
                f"for window {self.window}"
            )


@dataclass(frozen=True)
class FixedCharPolicy:
    """Non-overlapping windows of ``window`` characters."""

    window: int
    unit: str = field(default="char", init=False)

    def __post_init__(self):
        if self.window < 1:
            raise ConfigurationError(f"Char window must be >= 1, got {self.window}")


@dataclass(frozen=True)
class SentenceTokenPolicy:
    """Greedy sentence packing under a token budget, with sentence overlap."""

    max_tokens: int
    overlap_sentences: int = 0
    unit: str = field(default="sentence", init=False)

    def __post_init__(self):
        if self.max_tokens < 1:
            raise ConfigurationError(
                f"Token budget must be >= 1, got {self.max_tokens}"
            )
        if self.overlap_sentences < 0:
            raise ConfigurationError(
                f"Sentence overlap must be >= 0, got {self.overlap_sentences}"
            )


ChunkingPolicy = Union[FixedWordPolicy, FixedCharPolicy, SentenceTokenPolicy]


def make_policy(unit: str, size: int, overlap: int = 0) -> ChunkingPolicy:
    """Build a chunking policy from its unit name and sizes."""
    if unit == "word":
        return FixedWordPolicy(window=size, overlap=overlap)
    if unit == "char":
        return FixedCharPolicy(window=size)
    if unit == "sentence":
        return SentenceTokenPolicy(max_tokens=size, overlap_sentences=overlap)
    raise ConfigurationError(
        f"Unknown chunk unit '{unit}' (expected word, char or sentence)"
    )


def policy_from_settings(settings: Settings) -> ChunkingPolicy:
    return make_policy(settings.chunk_unit, settings.chunk_size, settings.chunk_overlap)


@dataclass
class IndexRecord:
    """The persisted unit: id, vector and enough metadata to render a hit."""

    id: str
    vector: np.ndarray
    metadata: Dict[str, Any]


@dataclass
class RetrievalMatch:
    """A single ranked hit returned for a query."""

    id: str
    score: float
    metadata: Dict[str, Any]

    @property
    def text(self) -> str:
        return self.metadata.get("text", "")


@dataclass
class ProgressEvent:
    """Progress notification emitted while a stage runs."""

    stage: str
    current: int
    total: int
    detail: Optional[str] = None


ProgressCallback = Callable[[ProgressEvent], None]


class IngestReport(BaseModel):
    chunk_count: int
    records_written: int = 0
    batch_count: int = 0
    index_name: str
    source: Optional[str] = None


class SourceRef(BaseModel):
    id: str
    similarity: float
    preview: str
    full_text: str


class AnswerResult(BaseModel):
    answer: str
    sources: List[SourceRef] = Field(default_factory=list)
    found: bool = True
