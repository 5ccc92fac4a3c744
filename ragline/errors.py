"""Error taxonomy for the RAG pipeline.

Empty results (no chunks, no matches) are not errors and have no class
here; they are handled by explicit branches in the callers.
"""
from typing import Any, Optional


class PipelineError(Exception):
    """Base class for failures raised by the pipeline stages."""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class ConfigurationError(PipelineError):
    """Fatal misconfiguration: retrying will not help."""


class UpstreamCallFailure(PipelineError):
    """An embedding, store or generation call failed or timed out."""

    def __init__(self, message: str, stage: str, item: Optional[Any] = None):
        super().__init__(message, stage=stage)
        self.item = item


class BatchUpsertError(UpstreamCallFailure):
    """An upsert batch failed; earlier batches remain persisted."""

    def __init__(
        self,
        batch_number: int,
        total_batches: int,
        records_written: int,
        cause: BaseException,
    ):
        message = (
            f"Upsert failed at batch {batch_number} of {total_batches} "
            f"(processed {batch_number - 1} of {total_batches} batches, "
            f"{records_written} records written): {cause}"
        )
        super().__init__(message, stage="indexing", item=batch_number)
        self.batch_number = batch_number
        self.total_batches = total_batches
        self.records_written = records_written
