"""Text segmentation into overlapping chunks.

Supports three policies behind one entry point:
- fixed windows of words (with word overlap)
- fixed windows of characters (no overlap)
- sentence packing under a token budget (with sentence overlap)
"""
import re
from typing import Callable, List, Optional

import structlog

from ragline.rag.models import (
    Chunk,
    ChunkingPolicy,
    FixedCharPolicy,
    FixedWordPolicy,
    SentenceTokenPolicy,
)

logger = structlog.get_logger()

# A run of non-terminators closed by terminators, or the unterminated tail
SENTENCE_PATTERN = re.compile(r"[.!?]*[^.!?]+(?:[.!?]+|$)")


def word_token_count(text: str) -> int:
    return len(text.split())


def split_sentences(text: str) -> List[str]:
    """Split text into punctuation-terminated sentences.

    Text without any recognizable sentence is returned as a single sentence.
    """
    sentences = [s.strip() for s in SENTENCE_PATTERN.findall(text)]
    sentences = [s for s in sentences if s]
    if not sentences:
        stripped = text.strip()
        return [stripped] if stripped else []
    return sentences


class Segmenter:
    """Turns raw text into an ordered list of chunks under a policy."""

    def __init__(self, token_counter: Optional[Callable[[str], int]] = None):
        """Initialize the segmenter.

        Args:
            token_counter: Callable returning the token count of a text,
                used by the sentence policy (default: whitespace word count)
        """
        self.token_counter = token_counter or word_token_count

    def segment(
        self, text: str, policy: ChunkingPolicy, id_prefix: str = "chunk"
    ) -> List[Chunk]:
        """Split text into chunks.

        Args:
            text: Source text (never modified)
            policy: Chunking policy to apply
            id_prefix: Prefix of the generated chunk ids

        Returns:
            Chunks in emission order with ids ``<prefix>_0``, ``<prefix>_1``...
        """
        if not text or not text.strip():
            return []

        if isinstance(policy, FixedWordPolicy):
            spans = self._word_windows(text, policy)
        elif isinstance(policy, FixedCharPolicy):
            spans = self._char_windows(text, policy)
        elif isinstance(policy, SentenceTokenPolicy):
            spans = self._sentence_windows(text, policy)
        else:
            raise TypeError(f"Unsupported chunking policy: {policy!r}")

        chunks = [
            Chunk.create(f"{id_prefix}_{i}", span_text, start)
            for i, (span_text, start) in enumerate(spans)
        ]

        logger.info(
            "text_segmented",
            unit=policy.unit,
            text_length=len(text),
            chunk_count=len(chunks),
        )
        return chunks

    def _word_windows(self, text: str, policy: FixedWordPolicy):
        words = text.split()
        step = policy.window - policy.overlap
        spans = []
        start = 0
        while start < len(words):
            end = min(start + policy.window, len(words))
            spans.append((" ".join(words[start:end]), start))
            if end == len(words):
                break
            start += step
        return spans

    def _char_windows(self, text: str, policy: FixedCharPolicy):
        return [
            (text[start : start + policy.window], start)
            for start in range(0, len(text), policy.window)
        ]

    def _sentence_windows(self, text: str, policy: SentenceTokenPolicy):
        sentences = split_sentences(text)
        counts = [self.token_counter(s) for s in sentences]
        budget = policy.max_tokens

        spans = []
        current: List[int] = []  # sentence indices of the open chunk
        current_tokens = 0

        def close():
            spans.append((" ".join(sentences[i] for i in current), current[0]))

        for idx, tokens in enumerate(counts):
            if tokens > budget:
                # Oversized sentence: emitted alone, never truncated
                if current:
                    close()
                logger.debug("oversized_sentence", sentence_index=idx, tokens=tokens)
                spans.append((sentences[idx], idx))
                current, current_tokens = [], 0
                continue

            if current_tokens + tokens <= budget:
                current.append(idx)
                current_tokens += tokens
                continue

            close()
            seed = current[-policy.overlap_sentences:] if policy.overlap_sentences else []
            seed_tokens = sum(counts[i] for i in seed)
            while seed and seed_tokens + tokens > budget:
                seed_tokens -= counts[seed.pop(0)]
            current = seed + [idx]
            current_tokens = seed_tokens + tokens

        if current:
            close()
        return spans


def chunk_stats(chunks: List[Chunk]) -> dict:
    """Get statistics about a set of chunks.

    Args:
        chunks: List of Chunk objects

    Returns:
        Dictionary with chunk statistics
    """
    if not chunks:
        return {
            "chunk_count": 0,
            "total_chars": 0,
            "avg_chunk_size": 0,
            "min_chunk_size": 0,
            "max_chunk_size": 0,
        }

    sizes = [c.char_count for c in chunks]
    return {
        "chunk_count": len(chunks),
        "total_chars": sum(sizes),
        "avg_chunk_size": sum(sizes) // len(chunks),
        "min_chunk_size": min(sizes),
        "max_chunk_size": max(sizes),
    }
