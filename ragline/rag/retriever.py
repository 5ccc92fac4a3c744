"""Retriever for semantic search over the indexed chunks.

Handles:
- Query embedding generation
- FAISS vector search with metadata inclusion
- Ranked result passthrough (raw scores, store order)
"""
from typing import List, Optional

import structlog

from ragline.config import Settings
from ragline.errors import ConfigurationError, PipelineError, UpstreamCallFailure
from ragline.rag.embedder import EmbeddingAdapter
from ragline.rag.models import RetrievalMatch
from ragline.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()


class Retriever:
    """Semantic retriever for the RAG pipeline."""

    def __init__(
        self,
        embedder: EmbeddingAdapter,
        store: FAISSVectorStore,
        settings: Settings,
    ):
        self.embedder = embedder
        self.store = store
        self.index_name = settings.index_name
        self.top_k = settings.retrieval_top_k

        logger.info("retriever_initialized", index_name=self.index_name, top_k=self.top_k)

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> List[RetrievalMatch]:
        """Retrieve the chunks most similar to a query.

        Args:
            query: User query text
            top_k: Number of results to return (overrides default)

        Returns:
            At most top_k matches, best first; empty when nothing is indexed

        Raises:
            ValueError: If top_k < 1
            ConfigurationError: If the query embedding does not match the
                index dimension
            UpstreamCallFailure: If embedding or the store query fails
        """
        top_k = self.top_k if top_k is None else top_k
        if top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {top_k}")

        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        logger.info("retrieval_started", query_length=len(query), top_k=top_k)

        try:
            info = await self.store.describe_index(self.index_name)
            if info is None or info["vector_count"] == 0:
                logger.warning("empty_index_no_results", index_name=self.index_name)
                return []

            query_vector = await self.embedder.embed_one(query)
            if query_vector.shape[-1] != info["dimension"]:
                raise ConfigurationError(
                    f"Dimension mismatch: index '{self.index_name}' has "
                    f"dim={info['dimension']}, query embedding has "
                    f"dim={query_vector.shape[-1]}. Rebuild the index.",
                    stage="retrieval",
                )
            matches = await self.store.query(
                self.index_name, query_vector, top_k=top_k, include_metadata=True
            )

        except PipelineError:
            raise
        except Exception as e:
            logger.error(
                "retrieval_failed",
                error=str(e),
                error_type=type(e).__name__,
                query_preview=query[:100],
            )
            raise UpstreamCallFailure(f"Retrieval failed: {e}", stage="retrieval") from e

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            results_returned=len(matches),
            top_score=matches[0].score if matches else None,
        )
        return matches
