"""RAG pipeline orchestration.

Ingestion path: load -> segment -> embed -> ensure index -> upsert.
Query path: retrieve -> synthesize.
"""
import re
from contextlib import asynccontextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import structlog

from ragline.config import Settings, load_settings
from ragline.errors import ConfigurationError, PipelineError, UpstreamCallFailure
from ragline.llm_client import OllamaClient
from ragline.rag.embedder import EmbeddingAdapter
from ragline.rag.index_writer import IndexWriter
from ragline.rag.models import (
    AnswerResult,
    ChunkingPolicy,
    IngestReport,
    ProgressCallback,
    ProgressEvent,
    SourceRef,
    policy_from_settings,
)
from ragline.rag.retriever import Retriever
from ragline.rag.segmenter import Segmenter, chunk_stats
from ragline.rag.store_faiss import FAISSVectorStore
from ragline.rag.synthesizer import AnswerSynthesizer

logger = structlog.get_logger()


def load_text(path: Path) -> str:
    """Read a UTF-8 text file and collapse whitespace runs to single spaces.

    Raises:
        ConfigurationError: If the file does not exist
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Source file not found: {path}", stage="loading")
    raw = path.read_text(encoding="utf-8")
    return re.sub(r"\s+", " ", raw).strip()


def make_preview(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def chunk_id_prefix(source: Optional[str]) -> str:
    """Derive the chunk id prefix from a source label (``pets.txt`` -> ``pets_chunk``)."""
    if not source:
        return "chunk"
    stem = re.sub(r"[^A-Za-z0-9_-]+", "_", Path(source).stem).strip("_")
    return f"{stem}_chunk" if stem else "chunk"


@asynccontextmanager
async def _stage(name: str):
    """Attribute any non-pipeline exception to the named stage."""
    try:
        yield
    except PipelineError:
        raise
    except Exception as e:
        logger.error("pipeline_stage_failed", stage=name, error=str(e), error_type=type(e).__name__)
        raise UpstreamCallFailure(f"{name} failed: {e}", stage=name) from e


class RAGPipeline:
    """Sequences the ingestion and query paths over shared resources."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        llm_client: Optional[OllamaClient] = None,
        embedder: Optional[EmbeddingAdapter] = None,
        store: Optional[FAISSVectorStore] = None,
        segmenter: Optional[Segmenter] = None,
    ):
        """Initialize the pipeline.

        Collaborators not passed in are built from settings; a client
        built here is closed by ``aclose()``.
        """
        self.settings = settings or load_settings()

        self._owns_client = llm_client is None
        self.llm_client = llm_client or OllamaClient(
            self.settings.ollama_base_url, timeout=self.settings.request_timeout
        )
        self.embedder = embedder or EmbeddingAdapter(self.llm_client, self.settings)
        self.store = store or FAISSVectorStore(self.settings.data_dir)
        self.segmenter = segmenter or Segmenter(token_counter=self.embedder.count_tokens)

        self.writer = IndexWriter(self.store, self.settings)
        self.retriever = Retriever(self.embedder, self.store, self.settings)
        self.synthesizer = AnswerSynthesizer(self.llm_client, self.settings)

        logger.info(
            "rag_pipeline_initialized",
            index_name=self.settings.index_name,
            embedding_model=self.settings.embedding_model,
            chat_model=self.settings.chat_model,
            chunk_unit=self.settings.chunk_unit,
        )

    async def __aenter__(self) -> "RAGPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.llm_client.aclose()

    async def ingest(
        self,
        source_text: str,
        policy: Optional[ChunkingPolicy] = None,
        *,
        source: Optional[str] = None,
        rebuild: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> IngestReport:
        """Segment, embed and index a text.

        Args:
            source_text: Text to ingest
            policy: Chunking policy (default from settings)
            source: Label stored with each record (e.g. file name); it also
                prefixes the chunk ids, and records left from an earlier run
                of the same source are deleted
            rebuild: Drop the index before writing
            progress_callback: Receives ProgressEvents for each stage

        Returns:
            IngestReport with chunk and record counts

        Raises:
            ConfigurationError: On invalid policy or dimension mismatch
            UpstreamCallFailure: On embedding or indexing failure
        """
        policy = policy or policy_from_settings(self.settings)
        index_name = self.settings.index_name

        def emit(stage: str, current: int, total: int, detail: Optional[str] = None):
            if progress_callback:
                progress_callback(ProgressEvent(stage, current, total, detail))

        logger.info("ingest_started", index_name=index_name, unit=policy.unit, rebuild=rebuild)

        async with _stage("segmentation"):
            chunks = self.segmenter.segment(
                source_text, policy, id_prefix=chunk_id_prefix(source)
            )
        emit("segmentation", len(chunks), len(chunks))

        if not chunks:
            logger.warning("no_chunks_created", source=source)
            return IngestReport(chunk_count=0, index_name=index_name, source=source)

        logger.info("chunks_created", **chunk_stats(chunks))

        async with _stage("embedding"):
            vectors = await self.embedder.embed_batch(
                [chunk.text for chunk in chunks], progress_callback=progress_callback
            )
            dimension = await self.embedder.get_dimension()

        async with _stage("indexing"):
            if rebuild:
                if index_name in await self.store.list_indexes():
                    await self.store.delete_index(index_name)
                self.writer.reset()
            await self.writer.ensure_index(dimension)
            written = await self.writer.upsert(
                chunks, vectors, source=source, progress_callback=progress_callback
            )
            if source:
                await self.writer.remove_stale(source, {chunk.id for chunk in chunks})
            self.store.record_ingest_run(
                index_name=index_name,
                embedding_model=self.settings.embedding_model,
                embedding_dimension=dimension,
                chunk_unit=policy.unit,
                policy=asdict(policy),
                chunk_count=len(chunks),
                records_written=written,
                source=source,
            )

        report = IngestReport(
            chunk_count=len(chunks),
            records_written=written,
            batch_count=(written + self.writer.batch_size - 1) // self.writer.batch_size,
            index_name=index_name,
            source=source,
        )
        logger.info("ingest_completed", **report.model_dump())
        return report

    async def ingest_file(
        self, path: Path, policy: Optional[ChunkingPolicy] = None, **kwargs
    ) -> IngestReport:
        """Load a text file and ingest it, labelling records with its name."""
        path = Path(path)
        text = load_text(path)
        kwargs.setdefault("source", path.name)
        return await self.ingest(text, policy, **kwargs)

    async def ask(self, question: str, top_k: Optional[int] = None) -> AnswerResult:
        """Answer a question from the indexed passages.

        Returns:
            AnswerResult with the answer and ranked sources; ``found`` is
            False when nothing relevant was indexed

        Raises:
            ValueError: If top_k < 1
            UpstreamCallFailure: If retrieval or generation fails
        """
        if top_k is not None and top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {top_k}")

        async with _stage("retrieval"):
            matches = await self.retriever.retrieve(question, top_k=top_k)

        async with _stage("generation"):
            answer = await self.synthesizer.synthesize(question, matches)

        preview_chars = self.settings.preview_chars
        sources = [
            SourceRef(
                id=match.id,
                similarity=match.score,
                preview=make_preview(match.text, preview_chars),
                full_text=match.text,
            )
            for match in matches
        ]

        logger.info("question_answered", sources=len(sources), found=bool(matches))
        return AnswerResult(answer=answer, sources=sources, found=bool(matches))

    async def index_stats(self) -> dict:
        """Describe the configured index and its last ingestion run."""
        index_name = self.settings.index_name
        info = await self.store.describe_index(index_name)
        return {
            "index_name": index_name,
            "exists": info is not None,
            "dimension": info["dimension"] if info else None,
            "metric": info["metric"] if info else None,
            "vector_count": info["vector_count"] if info else 0,
            "last_ingest": self.store.get_latest_ingest_run(index_name),
        }
