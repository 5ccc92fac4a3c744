#!/usr/bin/env python
"""Ask a question against the vector index.

Usage:
    python scripts/ask.py "What are the core ideas of Plato?"
    python scripts/ask.py "What is justice?" --top-k 5
"""
import argparse
import asyncio
import logging
import sys

from ragline.config import load_settings
from ragline.errors import PipelineError
from ragline.log import configure_logging
from ragline.rag.pipeline import RAGPipeline


async def main():
    settings = load_settings()

    parser = argparse.ArgumentParser(description="Ask a question against the RAG index")
    parser.add_argument("question", help="Question to answer")
    parser.add_argument(
        "--top-k",
        type=int,
        default=settings.retrieval_top_k,
        help=f"Number of passages to retrieve (default: {settings.retrieval_top_k})",
    )
    args = parser.parse_args()

    configure_logging(level=logging.WARNING, json=False)

    try:
        async with RAGPipeline(settings) as pipeline:
            result = await pipeline.ask(args.question, top_k=args.top_k)
    except (PipelineError, ValueError) as e:
        stage = getattr(e, "stage", None)
        print(f"\nError{f' during {stage}' if stage else ''}: {e}\n")
        sys.exit(1)

    print(f"\n{result.answer}\n")

    if not result.sources:
        print("No relevant passages found.\n")
        return

    for rank, source in enumerate(result.sources, 1):
        print(f"Rank {rank} | {source.id} | Score: {source.similarity:.4f}")
        print(f"{source.preview}\n---")


if __name__ == "__main__":
    asyncio.run(main())
