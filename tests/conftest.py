"""Shared fixtures and in-memory fakes for the pipeline tests."""
import re
from typing import Dict, List, Optional

import numpy as np
import pytest

from ragline.config import Settings
from ragline.rag.models import ProgressEvent
from ragline.rag.pipeline import RAGPipeline
from ragline.rag.store_faiss import FAISSVectorStore


class FakeEmbedder:
    """Bag-of-words embedder: each new word gets its own dimension."""

    def __init__(self, dimension: int = 64, error: Optional[Exception] = None):
        self.dimension = dimension
        self.error = error
        self.vocab: Dict[str, int] = {}
        self.batch_calls = 0
        self.query_calls = 0

    def count_tokens(self, text: str) -> int:
        return len(text.split())

    def _vector(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for word in re.findall(r"[a-z]+", text.lower()):
            slot = self.vocab.setdefault(word, len(self.vocab) % self.dimension)
            vector[slot] += 1.0
        norm = np.linalg.norm(vector)
        return vector / norm if norm else vector

    async def embed_batch(self, texts, progress_callback=None) -> List[np.ndarray]:
        self.batch_calls += 1
        if self.error:
            raise self.error
        return [self._vector(t) for t in texts]

    async def embed_one(self, text: str) -> np.ndarray:
        self.query_calls += 1
        if self.error:
            raise self.error
        return self._vector(text)

    async def get_dimension(self) -> int:
        return self.dimension


class FakeLLMClient:
    """Records chat calls and returns a canned answer."""

    def __init__(self, answer: str = "Cats are mammals.", error: Optional[Exception] = None):
        self.answer = answer
        self.error = error
        self.calls: List[dict] = []
        self.closed = False

    async def chat(self, messages, model, temperature=None, max_tokens=None):
        self.calls.append(
            {
                "messages": messages,
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if self.error:
            raise self.error
        return {"message": {"role": "assistant", "content": self.answer}}

    async def list_models(self):
        return ["gemma3:12b", "bge-m3:latest"]

    async def aclose(self):
        self.closed = True


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=tmp_path / "data",
        index_name="test-index",
        index_metric="cosine",
        embedding_dimension=None,
        chunk_unit="word",
        chunk_size=5,
        chunk_overlap=0,
        upsert_batch_size=100,
        retrieval_top_k=3,
        request_timeout=5.0,
    )


@pytest.fixture
def store(settings) -> FAISSVectorStore:
    return FAISSVectorStore(settings.data_dir)


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def fake_llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def pipeline(settings, store, fake_embedder, fake_llm) -> RAGPipeline:
    return RAGPipeline(
        settings,
        llm_client=fake_llm,
        embedder=fake_embedder,
        store=store,
    )


@pytest.fixture
def events() -> List[ProgressEvent]:
    return []
