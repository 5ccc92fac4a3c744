"""Unit tests for the EmbeddingAdapter over a mocked Ollama transport."""
import json

import httpx
import numpy as np
import pytest

from ragline.errors import ConfigurationError, UpstreamCallFailure
from ragline.llm_client import OllamaClient
from ragline.rag.embedder import (
    EmbeddingAdapter,
    HuggingFaceTokenCounter,
    WordTokenCounter,
    make_token_counter,
)
from ragline.rag.pipeline import RAGPipeline


# ── Helpers ──


def _length_vector(text: str, dim: int = 3) -> list:
    """Deterministic vector whose direction depends on the text length."""
    return [float(len(text)), 1.0] + [0.0] * (dim - 2)


def _make_adapter(settings, handler, **overrides) -> EmbeddingAdapter:
    client = OllamaClient(
        "http://ollama.test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return EmbeddingAdapter(client, settings.with_overrides(**overrides))


def _embed_handler(requests: list, dim: int = 3):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append(body)
        return httpx.Response(
            200, json={"embeddings": [_length_vector(t, dim) for t in body["input"]]}
        )

    return handler


# ── Tests ──


@pytest.mark.asyncio
async def test_embed_batch_preserves_order_and_normalizes(settings):
    requests = []
    adapter = _make_adapter(settings, _embed_handler(requests), embed_batch_size=2)
    texts = ["a", "bbb", "cc", "dddd", "e"]

    vectors = await adapter.embed_batch(texts)

    assert len(vectors) == len(texts)
    assert [len(r["input"]) for r in requests] == [2, 2, 1]
    assert requests[0]["model"] == settings.embedding_model
    for text, vector in zip(texts, vectors):
        expected = np.array(_length_vector(text), dtype=np.float32)
        expected /= np.linalg.norm(expected)
        np.testing.assert_allclose(vector, expected, rtol=1e-6)
        assert np.linalg.norm(vector) == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_embed_one_matches_batch_vector(settings):
    adapter = _make_adapter(settings, _embed_handler([]))

    single = await adapter.embed_one("hello")
    batch = await adapter.embed_batch(["hello"])

    np.testing.assert_allclose(single, batch[0])


@pytest.mark.asyncio
async def test_embed_batch_without_normalization(settings):
    adapter = _make_adapter(settings, _embed_handler([]), normalize_embeddings=False)

    vectors = await adapter.embed_batch(["abcd"])

    np.testing.assert_allclose(vectors[0], [4.0, 1.0, 0.0])


@pytest.mark.asyncio
async def test_embed_batch_empty_input_makes_no_call(settings):
    requests = []
    adapter = _make_adapter(settings, _embed_handler(requests))

    assert await adapter.embed_batch([]) == []
    assert requests == []


@pytest.mark.asyncio
async def test_http_error_aborts_batch_with_item_context(settings):
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 2:
            return httpx.Response(500, json={"error": "model crashed"})
        body = json.loads(request.content)
        return httpx.Response(200, json={"embeddings": [_length_vector(t) for t in body["input"]]})

    adapter = _make_adapter(settings, handler, embed_batch_size=2)

    with pytest.raises(UpstreamCallFailure) as exc_info:
        await adapter.embed_batch(["a", "b", "c", "d", "e"])

    assert exc_info.value.stage == "embedding"
    assert exc_info.value.item == 2
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_missing_vectors_fail_the_batch(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"embeddings": [[1.0, 0.0, 0.0]]})

    adapter = _make_adapter(settings, handler)

    with pytest.raises(UpstreamCallFailure, match="returned 1 vectors for 2 texts"):
        await adapter.embed_batch(["a", "b"])


@pytest.mark.asyncio
async def test_empty_vector_fails_the_batch(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"embeddings": [[1.0, 0.0], []]})

    adapter = _make_adapter(settings, handler)

    with pytest.raises(UpstreamCallFailure) as exc_info:
        await adapter.embed_batch(["a", "b"])
    assert exc_info.value.item == 1


@pytest.mark.asyncio
async def test_configured_dimension_mismatch_is_fatal(settings):
    adapter = _make_adapter(settings, _embed_handler([], dim=3), embedding_dimension=1024)

    with pytest.raises(ConfigurationError, match="Dimension mismatch"):
        await adapter.embed_batch(["a"])


@pytest.mark.asyncio
async def test_get_dimension_detects_once(settings):
    requests = []
    adapter = _make_adapter(settings, _embed_handler(requests, dim=5))

    assert await adapter.get_dimension() == 5
    assert await adapter.get_dimension() == 5
    assert len(requests) == 1


def test_word_token_counter_is_default(settings):
    counter = make_token_counter(settings)

    assert isinstance(counter, WordTokenCounter)
    assert counter("three little words") == 3


def test_tokenizer_name_selects_huggingface_counter(settings):
    counter = make_token_counter(settings.with_overrides(tokenizer_name="BAAI/bge-m3"))

    assert isinstance(counter, HuggingFaceTokenCounter)
    assert counter.tokenizer_name == "BAAI/bge-m3"


@pytest.mark.asyncio
async def test_ragged_vectors_are_an_embedding_failure(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"embeddings": [[1.0, 0.0], [1.0]]})

    adapter = _make_adapter(settings, handler)

    with pytest.raises(UpstreamCallFailure) as exc_info:
        await adapter.embed_batch(["a", "b"])

    assert exc_info.value.stage == "embedding"
    assert exc_info.value.item == 0


@pytest.mark.asyncio
async def test_ragged_vectors_fail_ingest_at_embedding_stage(settings, store):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"embeddings": [[1.0, 0.0], [1.0]]})

    client = OllamaClient(
        "http://ollama.test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    pipeline = RAGPipeline(settings, llm_client=client, store=store)

    with pytest.raises(UpstreamCallFailure) as exc_info:
        await pipeline.ingest("Cats are mammals. Dogs are mammals too.")

    assert exc_info.value.stage == "embedding"
    assert await store.list_indexes() == []
