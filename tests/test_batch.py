"""Batch types, status mapping, result parsing and polling."""

from __future__ import annotations

import json

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from switchboard.batch import (
    BatchJob,
    BatchRequest,
    BatchRequestItem,
    BatchResult,
    BatchStatus,
    ListBatchOptions,
    map_batch_status,
    parse_jsonl_results,
    wait_for_batch,
)
from switchboard.errors import APIError, ValidationError
from switchboard.generation import GenerateTextOptions, GenerateTextResult
from switchboard.messages import ContentBlock, Message
from switchboard.providers import MockModel
from switchboard.providers import anthropic as anthropic_provider
from switchboard.providers import openai as openai_provider

pytestmark = pytest.mark.unit


def _item(custom_id: str, text: str = "hi") -> BatchRequestItem:
    return BatchRequestItem(
        custom_id=custom_id,
        options=GenerateTextOptions(messages=[Message.text("user", text)]),
    )


# =============================================================================
# Status Mapping
# =============================================================================


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("validating", BatchStatus.PROCESSING),
        ("in_progress", BatchStatus.PROCESSING),
        ("finalizing", BatchStatus.PROCESSING),
        ("completed", BatchStatus.COMPLETED),
        ("failed", BatchStatus.FAILED),
        ("expired", BatchStatus.FAILED),
        ("cancelling", BatchStatus.CANCELLED),
        ("cancelled", BatchStatus.CANCELLED),
        ("something_new", BatchStatus.PENDING),
    ],
)
def test_openai_batch_status_table(raw: str, expected: BatchStatus) -> None:
    assert map_batch_status(openai_provider.BATCH_STATUSES, raw) is expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("in_progress", BatchStatus.PROCESSING),
        ("canceling", BatchStatus.PROCESSING),
        ("ended", BatchStatus.COMPLETED),
        ("paused", BatchStatus.PENDING),
    ],
)
def test_anthropic_batch_status_table(raw: str, expected: BatchStatus) -> None:
    assert map_batch_status(anthropic_provider.BATCH_STATUSES, raw) is expected


@given(raw=st.one_of(st.none(), st.integers(), st.text()))
@settings(max_examples=50, deadline=None, derandomize=True)
def test_status_mapping_is_total(raw: object) -> None:
    """Anything a vendor sends maps to some normalized status."""
    for table in (openai_provider.BATCH_STATUSES, anthropic_provider.BATCH_STATUSES):
        status = map_batch_status(table, raw)
        assert isinstance(status, BatchStatus)
        if str(raw).lower() not in table:
            assert status is BatchStatus.PENDING


def test_status_mapping_reads_enum_values_case_insensitively() -> None:
    class _VendorStatus:
        value = "COMPLETED"

    status = map_batch_status(openai_provider.BATCH_STATUSES, _VendorStatus())
    assert status is BatchStatus.COMPLETED


def test_terminal_statuses() -> None:
    assert BatchJob(id="b", status=BatchStatus.FAILED).is_terminal
    assert not BatchJob(id="b", status=BatchStatus.PROCESSING).is_terminal


# =============================================================================
# Requests and Results
# =============================================================================


def test_batch_request_requires_items() -> None:
    with pytest.raises(ValidationError):
        BatchRequest(items=[])


def test_batch_request_rejects_missing_or_duplicate_ids() -> None:
    with pytest.raises(ValidationError):
        BatchRequest(items=[_item("")])
    with pytest.raises(ValidationError, match="Duplicate"):
        BatchRequest(items=[_item("a"), _item("a")])


def test_batch_result_holds_exactly_one_outcome() -> None:
    with pytest.raises(ValidationError):
        BatchResult(custom_id="a")
    with pytest.raises(ValidationError):
        BatchResult(custom_id="a", result=GenerateTextResult(), error="x")

    assert BatchResult(custom_id="a", result=GenerateTextResult()).ok
    assert not BatchResult(custom_id="a", error="x").ok


def _parse_item(payload: dict) -> BatchResult:
    if "text" not in payload:
        raise ValueError("missing text")
    return BatchResult(
        custom_id=payload["custom_id"],
        result=GenerateTextResult(content=[ContentBlock.of_text(payload["text"])]),
    )


def test_parse_jsonl_results_keeps_malformed_lines_as_errors() -> None:
    lines = [json.dumps({"custom_id": f"r{i}", "text": str(i)}) for i in range(3)]
    lines.insert(1, '{"custom_id": "broken", "text": ')

    results = parse_jsonl_results(lines, _parse_item)

    assert len(results) == 4
    assert [r.custom_id for r in results] == ["r0", "broken", "r1", "r2"]
    assert results[1].error is not None
    assert "invalid JSON" in results[1].error
    assert [r.ok for r in results] == [True, False, True, True]


@given(count=st.integers(min_value=0, max_value=20))
@settings(max_examples=20, deadline=None, derandomize=True)
def test_one_malformed_line_yields_one_extra_error(count: int) -> None:
    lines = [json.dumps({"custom_id": f"r{i}", "text": "ok"}) for i in range(count)]
    lines.append("{not json")

    results = parse_jsonl_results(lines, _parse_item)

    assert len(results) == count + 1
    assert sum(not r.ok for r in results) == 1


def test_parse_jsonl_results_reports_rejected_items_and_skips_blanks() -> None:
    lines = ["", json.dumps({"custom_id": "r0"}), "   ", "[1, 2]"]

    results = parse_jsonl_results(lines, _parse_item)

    assert len(results) == 2
    assert results[0].custom_id == "r0"
    assert results[0].error is not None
    assert "missing text" in results[0].error
    assert results[1].error is not None
    assert "expected an object" in results[1].error


# =============================================================================
# Polling and the Mock Lifecycle
# =============================================================================


@pytest.mark.asyncio
async def test_mock_batch_lifecycle() -> None:
    model = MockModel()
    job = await model.submit_batch(
        BatchRequest(items=[_item("a", "first"), _item("b", "second")])
    )
    assert job.status is BatchStatus.PENDING
    assert job.total_count == 2

    with pytest.raises(APIError, match="no output reference"):
        await model.download_batch_results(job)

    done = await wait_for_batch(model, job.id, poll_interval=0)

    assert done.status is BatchStatus.COMPLETED
    assert done.done_count == 2
    results = await model.download_batch_results(done)
    assert {r.custom_id: r.result.text() for r in results if r.result} == {
        "a": "echo: first",
        "b": "echo: second",
    }


@pytest.mark.asyncio
async def test_mock_batch_cancel_and_listing() -> None:
    model = MockModel()
    first = await model.submit_batch(BatchRequest(items=[_item("a")]))
    second = await model.submit_batch(BatchRequest(items=[_item("a")]))

    await model.cancel_batch_job(first.id)

    cancelled = await model.get_batch_job(first.id)
    assert cancelled.status is BatchStatus.CANCELLED
    page = await model.list_batch_jobs(ListBatchOptions(after=first.id, limit=5))
    assert [j.id for j in page] == [second.id]
    assert len(await model.list_batch_jobs(ListBatchOptions(limit=1))) == 1


@pytest.mark.asyncio
async def test_mock_unknown_batch_job_is_a_404() -> None:
    with pytest.raises(APIError) as exc:
        await MockModel().get_batch_job("nope")
    assert exc.value.status_code == 404


class _StuckModel:
    provider = "stuck"

    def __init__(self) -> None:
        self.polls = 0

    async def get_batch_job(self, job_id: str) -> BatchJob:
        self.polls += 1
        return BatchJob(id=job_id, status=BatchStatus.PROCESSING)


@pytest.mark.asyncio
async def test_wait_for_batch_times_out_with_last_status() -> None:
    model = _StuckModel()

    with pytest.raises(APIError, match="processing") as exc:
        await wait_for_batch(
            model,  # type: ignore[arg-type]
            "b1",
            poll_interval=0,
            timeout=0,
        )

    assert exc.value.provider == "stuck"
    assert exc.value.phase == "batch"
    assert model.polls == 1
