"""Mock provider for testing."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
import itertools
from typing import TYPE_CHECKING, Any

from switchboard.batch import BatchJob, BatchResult, BatchStatus, BatchStorage
from switchboard.errors import APIError
from switchboard.generation import (
    Capability,
    GenerateTextOptions,
    GenerateTextResult,
    StopReason,
    StreamEvent,
    Usage,
)
from switchboard.messages import ContentBlock, Role
from switchboard.stream import StreamIterator, launch_stream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchboard.batch import BatchRequest, ListBatchOptions
    from switchboard.config import ConfigTarget

PROVIDER = "mock"

CAPABILITIES: frozenset[Capability] = frozenset(
    {
        Capability.TEXT_GENERATION,
        Capability.STREAMING,
        Capability.BATCH_PROCESSING,
    }
)

_USAGE = Usage(input_tokens=10, output_tokens=10, total_tokens=20)

# Each poll moves an in-flight job one step along this path.
_NEXT_STATUS: dict[BatchStatus, BatchStatus] = {
    BatchStatus.PENDING: BatchStatus.PROCESSING,
    BatchStatus.PROCESSING: BatchStatus.COMPLETED,
}


class MockFactory:
    """Creates ``MockModel`` instances; needs no credentials."""

    provider = PROVIDER

    async def create_model(self, config: ConfigTarget) -> MockModel:
        return MockModel(config.model or "mock-model")


class MockModel:
    """Mock model for testing without API calls.

    Replies echo the last user text. Batch jobs live in memory and advance
    one status per ``get_batch_job`` call.
    """

    def __init__(self, model_id: str = "mock-model") -> None:
        self._model_id = model_id
        self._jobs: dict[str, BatchJob] = {}
        self._requests: dict[str, BatchRequest] = {}
        self._ids = itertools.count(1)
        self.closed = False

    @property
    def capabilities(self) -> frozenset[Capability]:
        return CAPABILITIES

    @property
    def provider(self) -> str:
        return PROVIDER

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def raw_client(self) -> Any:
        return None

    async def aclose(self) -> None:
        self.closed = True

    def _reply(self, opts: GenerateTextOptions) -> str:
        for msg in reversed(opts.messages):
            if msg.role is Role.USER:
                text = "".join(b.text or "" for b in msg.content)
                if text.strip():
                    return f"echo: {text[:100]}"
        return "echo: "

    async def generate_text(self, opts: GenerateTextOptions) -> GenerateTextResult:
        """Return a deterministic echo of the last user message."""
        return GenerateTextResult(
            content=[ContentBlock.of_text(self._reply(opts))],
            stop_reason=StopReason.END_TURN,
            usage=_USAGE,
            model_id=self._model_id,
        )

    async def stream_text(self, opts: GenerateTextOptions) -> StreamIterator:
        """Stream the echo reply one word at a time."""
        return launch_stream(
            self._stream_events(self._reply(opts)),
            provider=PROVIDER,
            on_error=lambda e: APIError(str(e), provider=PROVIDER, phase="stream"),
        )

    async def _stream_events(self, reply: str) -> AsyncIterator[StreamEvent]:
        words = reply.split(" ")
        for i, word in enumerate(words):
            yield StreamEvent.content_delta(word if i == 0 else f" {word}")
        yield StreamEvent.message_done(StopReason.END_TURN, _USAGE)

    async def submit_batch(self, req: BatchRequest) -> BatchJob:
        job_id = f"mockbatch_{next(self._ids)}"
        job = BatchJob(
            id=job_id,
            status=BatchStatus.PENDING,
            total_count=len(req.items),
            created_at=datetime.now(UTC),
            storage=BatchStorage(type="mock", input_ref=f"mock://{job_id}/input"),
        )
        self._jobs[job_id] = job
        self._requests[job_id] = req
        return job

    def _job(self, job_id: str) -> BatchJob:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise APIError(
                f"No mock batch job {job_id!r}",
                status_code=404,
                provider=PROVIDER,
                phase="batch",
            ) from None

    async def get_batch_job(self, job_id: str) -> BatchJob:
        job = self._job(job_id)
        next_status = _NEXT_STATUS.get(job.status)
        if next_status is None:
            return job
        if next_status is BatchStatus.COMPLETED:
            job = replace(
                job,
                status=next_status,
                done_count=job.total_count,
                completed_at=datetime.now(UTC),
                storage=replace(
                    job.storage or BatchStorage(type="mock"),
                    output_ref=f"mock://{job_id}/output",
                ),
            )
        else:
            job = replace(job, status=next_status)
        self._jobs[job_id] = job
        return job

    async def list_batch_jobs(
        self, opts: ListBatchOptions | None = None
    ) -> list[BatchJob]:
        jobs = list(self._jobs.values())
        if opts is not None and opts.after:
            ids = [j.id for j in jobs]
            start = ids.index(opts.after) + 1 if opts.after in ids else len(ids)
            jobs = jobs[start:]
        if opts is not None and opts.limit:
            jobs = jobs[: opts.limit]
        return jobs

    async def cancel_batch_job(self, job_id: str) -> None:
        job = self._job(job_id)
        if not job.is_terminal:
            self._jobs[job_id] = replace(
                job, status=BatchStatus.CANCELLED, completed_at=datetime.now(UTC)
            )

    async def download_batch_results(self, job: BatchJob) -> list[BatchResult]:
        if job.storage is None or not job.storage.output_ref:
            raise APIError(
                "Mock batch failed: no output reference",
                provider=PROVIDER,
                phase="batch",
            )
        req = self._requests.get(job.id)
        if req is None:
            raise APIError(
                f"Mock batch failed: unknown job {job.id!r}",
                provider=PROVIDER,
                phase="batch",
            )
        return [
            BatchResult(
                custom_id=item.custom_id,
                result=await self.generate_text(item.options),
            )
            for item in req.items
        ]
