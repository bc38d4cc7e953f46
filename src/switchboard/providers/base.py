"""Provider protocols: the seam between the registry and vendor adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from switchboard.batch import BatchJob, BatchRequest, BatchResult, ListBatchOptions
    from switchboard.config import ConfigTarget
    from switchboard.generation import (
        Capability,
        GenerateTextOptions,
        GenerateTextResult,
    )
    from switchboard.stream import StreamIterator


@runtime_checkable
class LanguageModel(Protocol):
    """A configured model instance behind a vendor adapter."""

    @property
    def capabilities(self) -> frozenset[Capability]:
        """Features this model supports."""
        ...

    @property
    def provider(self) -> str:
        """Provider name, e.g. ``"openai"``."""
        ...

    @property
    def model_id(self) -> str:
        """Vendor model identifier."""
        ...

    @property
    def raw_client(self) -> Any:
        """The underlying vendor SDK client, or None when the model has none."""
        ...

    async def generate_text(self, opts: GenerateTextOptions) -> GenerateTextResult:
        """Run a non-streaming generation."""
        ...

    async def stream_text(self, opts: GenerateTextOptions) -> StreamIterator:
        """Start a streaming generation and return its iterator."""
        ...

    async def aclose(self) -> None:
        """Release client resources."""
        ...


@runtime_checkable
class BatchCapableModel(LanguageModel, Protocol):
    """A model that also supports vendor batch jobs.

    Check ``Capability.BATCH_PROCESSING`` before relying on these methods.
    """

    async def submit_batch(self, req: BatchRequest) -> BatchJob:
        """Upload and register a batch job; does not wait for completion."""
        ...

    async def get_batch_job(self, job_id: str) -> BatchJob:
        """Fetch the current status of a batch job."""
        ...

    async def list_batch_jobs(
        self, opts: ListBatchOptions | None = None
    ) -> list[BatchJob]:
        """List batch jobs, one page at a time."""
        ...

    async def cancel_batch_job(self, job_id: str) -> None:
        """Request cancellation of a running batch job."""
        ...

    async def download_batch_results(self, job: BatchJob) -> list[BatchResult]:
        """Download per-item results of a finished batch job."""
        ...


@runtime_checkable
class ProviderFactory(Protocol):
    """Creates models for one provider."""

    @property
    def provider(self) -> str:
        """Provider name this factory serves."""
        ...

    async def create_model(self, config: ConfigTarget) -> LanguageModel:
        """Build a model from configuration."""
        ...
