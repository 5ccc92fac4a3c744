#!/usr/bin/env python
"""Ingest a text file into the vector index.

Usage:
    python scripts/ingest.py corpus.txt                          # Defaults from env
    python scripts/ingest.py corpus.txt --unit sentence --size 256 --overlap 1
    python scripts/ingest.py corpus.txt --rebuild                # Drop index first
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

import structlog

from ragline.config import load_settings
from ragline.errors import BatchUpsertError, PipelineError
from ragline.log import configure_logging
from ragline.rag.models import ProgressEvent, make_policy
from ragline.rag.pipeline import RAGPipeline

logger = structlog.get_logger()


class ProgressReporter:
    """Renders pipeline progress events as a terminal progress bar."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def __call__(self, event: ProgressEvent):
        total = event.total
        percentage = (event.current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * event.current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  {event.stage:<13} [{bar}] {percentage:5.1f}% ({event.current}/{total})",
            end="",
            flush=True,
        )
        if self.verbose or event.current >= total:
            print()

    def finish(self, report):
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"\n{'=' * 60}")
        print("  Ingestion Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Index:            {report.index_name}")
        print(f"  Chunks created:   {report.chunk_count}")
        print(f"  Records written:  {report.records_written}")
        print(f"  Batches:          {report.batch_count}")
        print(f"  Time elapsed:     {elapsed_seconds:.1f}s\n")


async def main():
    """Main entry point for the ingest script."""
    settings = load_settings()

    parser = argparse.ArgumentParser(description="Ingest a text file into the RAG index")
    parser.add_argument("path", type=Path, help="Text file to ingest")
    parser.add_argument(
        "--unit",
        choices=["word", "char", "sentence"],
        default=settings.chunk_unit,
        help=f"Chunking unit (default: {settings.chunk_unit})",
    )
    parser.add_argument(
        "--size",
        type=int,
        default=settings.chunk_size,
        help=f"Window size in words/chars, or token budget (default: {settings.chunk_size})",
    )
    parser.add_argument(
        "--overlap",
        type=int,
        default=settings.chunk_overlap,
        help=f"Overlap in words, or sentences (default: {settings.chunk_overlap})",
    )
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Drop the index before writing (clears existing records)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug logs")
    args = parser.parse_args()

    configure_logging(level=logging.DEBUG if args.verbose else logging.WARNING, json=False)
    progress = ProgressReporter(verbose=args.verbose)

    try:
        policy = make_policy(args.unit, args.size, args.overlap)

        print("\nConfiguration:")
        print(f"   Source:           {args.path}")
        print(f"   Embedding model:  {settings.embedding_model}")
        print(f"   Index:            {settings.index_name} ({settings.index_metric})")
        print(f"   Policy:           {policy}")

        progress.start(f"{'Rebuilding' if args.rebuild else 'Ingesting'} {args.path.name}")

        async with RAGPipeline(settings) as pipeline:
            report = await pipeline.ingest_file(
                args.path, policy, rebuild=args.rebuild, progress_callback=progress
            )

        progress.finish(report)

    except KeyboardInterrupt:
        print("\n\nIngestion cancelled by user.\n")
        sys.exit(1)

    except BatchUpsertError as e:
        print(
            f"\nError: processed {e.batch_number - 1} of {e.total_batches} batches "
            f"({e.records_written} records written) before failure: {e.__cause__}\n"
        )
        sys.exit(1)

    except PipelineError as e:
        print(f"\nError during {e.stage or 'ingestion'}: {e}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\nError: {e}\n")
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
