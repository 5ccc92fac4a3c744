"""Embedding adapter over the Ollama embedding endpoint.

Handles:
- Batched, order-preserving embedding of chunk and query text
- L2 normalization so query and chunk vectors are comparable
- Runtime embedding dimension detection and validation
- Token counting for the sentence chunking policy
"""
import asyncio
from typing import List, Optional, Sequence

import numpy as np
import structlog

from ragline.config import Settings
from ragline.errors import ConfigurationError, UpstreamCallFailure
from ragline.llm_client import OllamaClient
from ragline.rag.models import ProgressCallback, ProgressEvent
from ragline.rag.segmenter import word_token_count

logger = structlog.get_logger()


class WordTokenCounter:
    """Approximates one token per whitespace-separated word."""

    def __call__(self, text: str) -> int:
        return word_token_count(text)


class HuggingFaceTokenCounter:
    """Counts tokens with a HuggingFace ``tokenizers`` tokenizer.

    The tokenizer is loaded on first use and kept for the process lifetime.
    """

    def __init__(self, tokenizer_name: str):
        self.tokenizer_name = tokenizer_name
        self._tokenizer = None

    def _load(self):
        if self._tokenizer is None:
            from tokenizers import Tokenizer

            logger.info("loading_tokenizer", tokenizer=self.tokenizer_name)
            try:
                self._tokenizer = Tokenizer.from_pretrained(self.tokenizer_name)
            except Exception as e:
                raise ConfigurationError(
                    f"Cannot load tokenizer '{self.tokenizer_name}': {e}",
                    stage="segmentation",
                ) from e
        return self._tokenizer

    def __call__(self, text: str) -> int:
        encoding = self._load().encode(text, add_special_tokens=False)
        return len(encoding.ids)


def make_token_counter(settings: Settings):
    if settings.tokenizer_name:
        return HuggingFaceTokenCounter(settings.tokenizer_name)
    return WordTokenCounter()


def l2_normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return vectors / norms


class EmbeddingAdapter:
    """Converts text into fixed-dimension vectors through Ollama."""

    def __init__(
        self,
        client: OllamaClient,
        settings: Settings,
        token_counter=None,
    ):
        """Initialize the adapter.

        Args:
            client: Shared Ollama client
            settings: Pipeline settings (model, batch size, timeout...)
            token_counter: Token counting callable (built from settings if omitted)
        """
        self.client = client
        self.settings = settings
        self.model = settings.embedding_model
        self.batch_size = max(1, settings.embed_batch_size)
        self.token_counter = token_counter or make_token_counter(settings)
        self._dimension: Optional[int] = None

        logger.info(
            "embedding_adapter_initialized",
            model=self.model,
            batch_size=self.batch_size,
            normalize=settings.normalize_embeddings,
        )

    def count_tokens(self, text: str) -> int:
        return self.token_counter(text)

    async def _call(self, texts: List[str], first_item: int) -> np.ndarray:
        try:
            async with asyncio.timeout(self.settings.request_timeout):
                raw = await self.client.embed(texts, model=self.model)
        except TimeoutError as e:
            raise UpstreamCallFailure(
                f"Embedding call timed out after {self.settings.request_timeout}s "
                f"(items {first_item}..{first_item + len(texts) - 1})",
                stage="embedding",
                item=first_item,
            ) from e
        except Exception as e:
            raise UpstreamCallFailure(
                f"Embedding call failed for items "
                f"{first_item}..{first_item + len(texts) - 1}: {e}",
                stage="embedding",
                item=first_item,
            ) from e

        if len(raw) != len(texts):
            raise UpstreamCallFailure(
                f"Embedding service returned {len(raw)} vectors for {len(texts)} texts",
                stage="embedding",
                item=first_item,
            )
        for offset, vector in enumerate(raw):
            if not vector:
                raise UpstreamCallFailure(
                    f"Empty embedding returned for item {first_item + offset}",
                    stage="embedding",
                    item=first_item + offset,
                )

        try:
            vectors = np.asarray(raw, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise UpstreamCallFailure(
                f"Embedding service returned malformed vectors: {e}",
                stage="embedding",
                item=first_item,
            ) from e
        if vectors.ndim != 2:
            raise UpstreamCallFailure(
                "Embedding service returned a non-matrix embedding payload",
                stage="embedding",
                item=first_item,
            )
        self._check_dimension(vectors.shape[1])

        if self.settings.normalize_embeddings:
            vectors = l2_normalize(vectors)
        return vectors

    def _check_dimension(self, dimension: int) -> None:
        expected = self._dimension or self.settings.embedding_dimension
        if expected is not None and dimension != expected:
            raise ConfigurationError(
                f"Dimension mismatch: model {self.model} produced dim={dimension}, "
                f"expected dim={expected}",
                stage="embedding",
            )
        self._dimension = dimension

    async def get_dimension(self) -> int:
        """Detect the embedding dimension by embedding a sample string once.

        Returns:
            Embedding dimension

        Raises:
            ConfigurationError: If it differs from the configured dimension
        """
        if self._dimension is None:
            logger.info("detecting_embedding_dimension", model=self.model)
            await self._call(["dimension check"], first_item=0)
            logger.info("embedding_dimension_detected", dimension=self._dimension)
        return self._dimension

    async def embed_batch(
        self,
        texts: Sequence[str],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> List[np.ndarray]:
        """Embed texts, preserving order.

        Any failure aborts the whole call: a text without a vector
        cannot be indexed.
        """
        if not texts:
            return []

        texts = list(texts)
        embeddings: List[np.ndarray] = []

        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            vectors = await self._call(batch, first_item=start)
            embeddings.extend(vectors)

            logger.debug(
                "embeddings_batch_generated",
                batch_size=len(batch),
                total_so_far=len(embeddings),
            )
            if progress_callback:
                progress_callback(
                    ProgressEvent(stage="embedding", current=len(embeddings), total=len(texts))
                )

        return embeddings

    async def embed_one(self, text: str) -> np.ndarray:
        vectors = await self._call([text], first_item=0)
        return vectors[0]
