"""HTTP tests for the Quart app over a pipeline with model fakes."""
import pytest

from ragline.main import create_app
from ragline.rag.pipeline import RAGPipeline
from tests.conftest import FakeEmbedder, FakeLLMClient

CATS_AND_DOGS = "Cats are mammals. Dogs are mammals too."


@pytest.fixture
def client(pipeline):
    return create_app(pipeline).test_client()


@pytest.mark.asyncio
async def test_ask_returns_answer_and_sources(client, pipeline):
    await pipeline.ingest(CATS_AND_DOGS)

    response = await client.post("/api/ask", json={"question": "What are cats?", "top_k": 1})

    assert response.status_code == 200
    data = await response.get_json()
    assert data["success"] is True
    assert data["found"] is True
    assert data["answer"] == "Cats are mammals."
    assert len(data["sources"]) == 1
    assert set(data["sources"][0]) == {"id", "similarity", "preview", "full_text"}


@pytest.mark.asyncio
async def test_ask_accepts_prompt_field(client):
    response = await client.post("/api/ask", json={"prompt": "What are cats?"})

    assert response.status_code == 200
    data = await response.get_json()
    assert data["found"] is False
    assert data["sources"] == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [{}, {"question": "   "}, {"question": "q", "top_k": 0}, {"question": "q", "top_k": "3"}],
)
async def test_ask_rejects_bad_requests(client, body):
    response = await client.post("/api/ask", json=body)

    assert response.status_code == 400
    assert (await response.get_json())["success"] is False


@pytest.mark.asyncio
async def test_ask_reports_failed_stage(settings, store, fake_embedder):
    pipeline = RAGPipeline(
        settings,
        llm_client=FakeLLMClient(error=RuntimeError("chat model offline")),
        embedder=fake_embedder,
        store=store,
    )
    await pipeline.ingest(CATS_AND_DOGS)
    client = create_app(pipeline).test_client()

    response = await client.post("/api/ask", json={"question": "What are cats?"})

    assert response.status_code == 502
    assert (await response.get_json())["stage"] == "generation"


@pytest.mark.asyncio
async def test_ingest_endpoint_indexes_file(client, tmp_path):
    corpus = tmp_path / "pets.txt"
    corpus.write_text(CATS_AND_DOGS, encoding="utf-8")

    response = await client.post(
        "/api/ingest", json={"path": str(corpus), "unit": "sentence", "size": 5}
    )

    assert response.status_code == 200
    data = await response.get_json()
    assert data["chunk_count"] == 2
    assert data["source"] == "pets.txt"

    stats = await (await client.get("/api/index")).get_json()
    assert stats["vector_count"] == 2


@pytest.mark.asyncio
async def test_ingest_endpoint_rejects_bad_policy_and_missing_file(client, tmp_path):
    corpus = tmp_path / "pets.txt"
    corpus.write_text(CATS_AND_DOGS, encoding="utf-8")

    bad_unit = await client.post("/api/ingest", json={"path": str(corpus), "unit": "page"})
    missing = await client.post("/api/ingest", json={"path": str(tmp_path / "nope.txt")})
    no_path = await client.post("/api/ingest", json={})

    assert bad_unit.status_code == 400
    assert missing.status_code == 400
    assert no_path.status_code == 400


@pytest.mark.asyncio
async def test_health_endpoints(client):
    live = await client.get("/health/live")
    ready = await client.get("/health/ready")

    assert live.status_code == 200
    assert ready.status_code == 200
    assert (await ready.get_json())["models"] is True


@pytest.mark.asyncio
async def test_unknown_route_is_json_404(client):
    response = await client.get("/nope")

    assert response.status_code == 404
    assert (await response.get_json())["error"] == "Not found"


@pytest.mark.asyncio
async def test_ask_with_resized_embedder_is_client_error(settings, store, pipeline):
    await pipeline.ingest(CATS_AND_DOGS)
    resized = RAGPipeline(
        settings,
        llm_client=FakeLLMClient(),
        embedder=FakeEmbedder(dimension=32),
        store=store,
    )
    client = create_app(resized).test_client()

    response = await client.post("/api/ask", json={"question": "What are cats?"})

    assert response.status_code == 400
    assert "Dimension mismatch" in (await response.get_json())["error"]
