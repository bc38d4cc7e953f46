"""Vendor-independent batch job types, status mapping and polling.

Batch jobs are tracked by the vendor. Nothing here holds state between calls:
a ``BatchJob`` is a snapshot, refreshed only by ``get_batch_job``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import json
import logging
import time
from typing import TYPE_CHECKING, Any

from switchboard.errors import APIError, ValidationError
from switchboard.generation import GenerateTextOptions, GenerateTextResult

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from switchboard.providers.base import BatchCapableModel

logger = logging.getLogger(__name__)


class BatchStatus(str, Enum):
    """Normalized batch job status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[BatchStatus] = frozenset(
    {BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED}
)


def map_batch_status(table: Mapping[str, BatchStatus], raw: object) -> BatchStatus:
    """Map a vendor status through *table*; unknown values map to PENDING."""
    if not isinstance(raw, str):
        raw = getattr(raw, "value", raw)
    return table.get(str(raw).lower(), BatchStatus.PENDING)


@dataclass(frozen=True)
class BatchStorage:
    """Where a job's input and output live on the vendor side."""

    type: str
    input_ref: str = ""
    output_ref: str = ""
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchJob:
    """Snapshot of a vendor-side batch job."""

    id: str
    status: BatchStatus
    total_count: int = 0
    done_count: int = 0
    failed_count: int = 0
    created_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    storage: BatchStorage | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class BatchRequestItem:
    """One generation request inside a batch, keyed by a caller-chosen ID."""

    custom_id: str
    options: GenerateTextOptions


@dataclass(frozen=True)
class BatchRequest:
    """A set of generation requests submitted together."""

    items: list[BatchRequestItem]
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.items:
            raise ValidationError("A batch request needs at least one item")
        seen: set[str] = set()
        for item in self.items:
            if not item.custom_id:
                raise ValidationError("Every batch item needs a custom_id")
            if item.custom_id in seen:
                raise ValidationError(
                    f"Duplicate batch custom_id: {item.custom_id!r}",
                    hint="custom_id keys results; each must be unique in a batch.",
                )
            seen.add(item.custom_id)


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one batch item: a result or an error, never both."""

    custom_id: str
    result: GenerateTextResult | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if (self.result is None) == (self.error is None):
            raise ValidationError(
                f"Batch result {self.custom_id!r} must hold exactly one of "
                "result or error"
            )

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ListBatchOptions:
    """Cursor pagination for ``list_batch_jobs``.

    ``after`` is the last job ID of the previous page.
    """

    after: str | None = None
    limit: int | None = None


def parse_jsonl_results(
    lines: Iterable[str],
    parse_item: Callable[[dict[str, Any]], BatchResult],
) -> list[BatchResult]:
    """Parse downloaded batch output line by line.

    A line that is not valid JSON, or that *parse_item* rejects, becomes a
    ``BatchResult`` carrying an error; the rest of the download is kept.
    """
    results: list[BatchResult] = []
    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as e:
            results.append(
                BatchResult(
                    custom_id=_sniff_custom_id(line),
                    error=f"line {lineno}: invalid JSON: {e}",
                )
            )
            continue
        if not isinstance(payload, dict):
            results.append(
                BatchResult(custom_id="", error=f"line {lineno}: expected an object")
            )
            continue
        try:
            results.append(parse_item(payload))
        except Exception as e:
            custom_id = payload.get("custom_id")
            results.append(
                BatchResult(
                    custom_id=custom_id if isinstance(custom_id, str) else "",
                    error=f"line {lineno}: {e}",
                )
            )
    return results


def _sniff_custom_id(line: str) -> str:
    """Best-effort custom_id recovery from a truncated JSON line."""
    marker = '"custom_id"'
    idx = line.find(marker)
    if idx < 0:
        return ""
    rest = line[idx + len(marker) :].lstrip().removeprefix(":").lstrip()
    if not rest.startswith('"'):
        return ""
    end = rest.find('"', 1)
    return rest[1:end] if end > 0 else ""


async def wait_for_batch(
    model: BatchCapableModel,
    job_id: str,
    *,
    poll_interval: float = 30.0,
    timeout: float | None = None,
) -> BatchJob:
    """Poll ``get_batch_job`` until the job reaches a terminal status."""
    deadline = None if timeout is None else time.monotonic() + timeout
    last_status = BatchStatus.PENDING

    while True:
        job = await model.get_batch_job(job_id)
        if job.status is not last_status:
            logger.debug(
                "batch %s: %s -> %s", job_id, last_status.value, job.status.value
            )
            last_status = job.status
        if job.is_terminal:
            return job

        delay = poll_interval
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            delay = min(delay, remaining)
        await asyncio.sleep(delay)

    raise APIError(
        f"Batch {job_id} did not finish within {timeout}s "
        f"(last status: {last_status.value})",
        provider=model.provider,
        phase="batch",
    )
