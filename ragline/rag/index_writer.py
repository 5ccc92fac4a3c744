"""Batched, fail-fast persistence of chunks and their vectors."""
import asyncio
from typing import List, Optional, Sequence, Set

import numpy as np
import structlog

from ragline.config import Settings
from ragline.errors import BatchUpsertError, ConfigurationError, UpstreamCallFailure
from ragline.rag.models import Chunk, IndexRecord, ProgressCallback, ProgressEvent
from ragline.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()


def build_records(
    chunks: Sequence[Chunk], vectors: Sequence[np.ndarray], source: Optional[str] = None
) -> List[IndexRecord]:
    """Zip chunks with their vectors into index records."""
    if len(chunks) != len(vectors):
        raise ConfigurationError(
            f"Got {len(vectors)} vectors for {len(chunks)} chunks",
            stage="indexing",
        )

    records = []
    for chunk, vector in zip(chunks, vectors):
        metadata = {
            "text": chunk.text,
            "start_offset": chunk.start_offset,
            "word_count": chunk.word_count,
            "char_count": chunk.char_count,
        }
        if source:
            metadata["source"] = source
        records.append(IndexRecord(id=chunk.id, vector=vector, metadata=metadata))
    return records


class IndexWriter:
    """Writes index records to the vector store in bounded batches."""

    def __init__(self, store: FAISSVectorStore, settings: Settings):
        self.store = store
        self.settings = settings
        self.index_name = settings.index_name
        self.batch_size = max(1, settings.upsert_batch_size)
        self._index_ready = False

    def reset(self) -> None:
        """Forget the cached index state (after the index was dropped)."""
        self._index_ready = False

    async def ensure_index(self, dimension: int, metric: Optional[str] = None) -> None:
        """Create the index if missing, otherwise check it is compatible.

        Raises:
            ConfigurationError: If the existing index has another dimension
                or metric; existing indexes are never migrated
        """
        if self._index_ready:
            return

        metric = metric or self.settings.index_metric
        try:
            async with asyncio.timeout(self.settings.request_timeout):
                existing = await self.store.list_indexes()
                if self.index_name not in existing:
                    logger.info(
                        "creating_index",
                        name=self.index_name,
                        dimension=dimension,
                        metric=metric,
                    )
                    await self.store.create_index(self.index_name, dimension, metric)
                    self._index_ready = True
                    return
                info = await self.store.describe_index(self.index_name)
        except TimeoutError as e:
            raise UpstreamCallFailure(
                f"Timed out checking index '{self.index_name}'", stage="indexing"
            ) from e
        except ValueError as e:
            raise ConfigurationError(str(e), stage="indexing") from e

        if info["dimension"] != dimension:
            raise ConfigurationError(
                f"Dimension mismatch: index '{self.index_name}' has "
                f"dim={info['dimension']}, embeddings have dim={dimension}. "
                "Rebuild the index.",
                stage="indexing",
            )
        if info["metric"] != metric:
            raise ConfigurationError(
                f"Metric mismatch: index '{self.index_name}' uses "
                f"'{info['metric']}', configured '{metric}'",
                stage="indexing",
            )

        logger.info("index_exists", name=self.index_name, vector_count=info["vector_count"])
        self._index_ready = True

    async def upsert(
        self,
        chunks: Sequence[Chunk],
        vectors: Sequence[np.ndarray],
        source: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> int:
        """Upsert chunks and vectors in batches, stopping at the first failure.

        Args:
            chunks: Chunks to persist
            vectors: One vector per chunk, same order
            source: Optional source label stored in each record
            progress_callback: Receives one event per acknowledged batch

        Returns:
            Number of records written

        Raises:
            ConfigurationError: If chunks and vectors differ in length
            BatchUpsertError: Naming the failing batch and what was written
        """
        records = build_records(chunks, vectors, source)
        total_batches = (len(records) + self.batch_size - 1) // self.batch_size
        written = 0

        for batch_number, start in enumerate(range(0, len(records), self.batch_size), 1):
            batch = records[start : start + self.batch_size]
            try:
                async with asyncio.timeout(self.settings.request_timeout):
                    written += await self.store.upsert(self.index_name, batch)
            except Exception as e:
                logger.error(
                    "upsert_batch_failed",
                    batch=batch_number,
                    total_batches=total_batches,
                    first_record=batch[0].id,
                    records_written=written,
                    error=str(e),
                )
                raise BatchUpsertError(batch_number, total_batches, written, e) from e

            logger.info(
                "upsert_batch_committed",
                batch=batch_number,
                total_batches=total_batches,
                records_written=written,
            )
            if progress_callback:
                progress_callback(
                    ProgressEvent(
                        stage="indexing",
                        current=batch_number,
                        total=total_batches,
                        detail=f"{written} records",
                    )
                )

        return written

    async def remove_stale(self, source: str, keep_ids: Set[str]) -> int:
        """Delete records from an earlier run of the same source.

        Returns:
            Number of records deleted
        """
        try:
            async with asyncio.timeout(self.settings.request_timeout):
                existing = await self.store.record_ids_for_source(self.index_name, source)
                stale = [record_id for record_id in existing if record_id not in keep_ids]
                if not stale:
                    return 0
                deleted = await self.store.delete_records(self.index_name, stale)
        except TimeoutError as e:
            raise UpstreamCallFailure(
                f"Timed out removing stale records of '{source}'", stage="indexing"
            ) from e

        logger.info("stale_records_removed", source=source, count=deleted)
        return deleted
