"""Anthropic provider: Messages API, streaming and Message Batches."""

from __future__ import annotations

import asyncio
import base64
from functools import partial
import json
from typing import TYPE_CHECKING, Any

from switchboard.batch import (
    BatchJob,
    BatchResult,
    BatchStatus,
    BatchStorage,
    ListBatchOptions,
    map_batch_status,
)
from switchboard.content import decode_data_url, is_data_url
from switchboard.errors import APIError
from switchboard.generation import (
    Capability,
    GenerateTextOptions,
    GenerateTextResult,
    StopReason,
    StreamEvent,
    ToolChoice,
    Usage,
)
from switchboard.messages import (
    ContentBlock,
    ContentBlockType,
    Message,
    Role,
    ToolCall,
    tool_call_block,
)
from switchboard.providers._errors import wrap_provider_error
from switchboard.providers._utils import (
    decode_tool_arguments,
    require_credentials,
    to_epoch_datetime,
)
from switchboard.stream import StreamIterator, launch_stream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchboard.batch import BatchRequest
    from switchboard.config import ConfigTarget
    from switchboard.content import ImagePart

PROVIDER = "anthropic"

CAPABILITIES: frozenset[Capability] = frozenset(
    {
        Capability.TEXT_GENERATION,
        Capability.STREAMING,
        Capability.TOOL_CALLING,
        Capability.VISION,
        Capability.BATCH_PROCESSING,
    }
)

_STOP_REASONS: dict[str, StopReason] = {
    "end_turn": StopReason.END_TURN,
    "max_tokens": StopReason.MAX_TOKENS,
    "tool_use": StopReason.TOOL_USE,
    "stop_sequence": StopReason.STOP,
}

BATCH_STATUSES: dict[str, BatchStatus] = {
    "in_progress": BatchStatus.PROCESSING,
    "canceling": BatchStatus.PROCESSING,
    "ended": BatchStatus.COMPLETED,
}

_TOOL_CHOICES: dict[ToolChoice, dict[str, str]] = {
    ToolChoice.AUTO: {"type": "auto"},
    ToolChoice.NONE: {"type": "none"},
    ToolChoice.REQUIRED: {"type": "any"},
}

# Extended thinking rejects any other sampling temperature.
_THINKING_TEMPERATURE = 1.0


class AnthropicFactory:
    """Creates ``AnthropicModel`` instances."""

    provider = PROVIDER

    async def create_model(self, config: ConfigTarget) -> AnthropicModel:
        """Validate the target and build a model; the client is created lazily."""
        require_credentials(config, provider=PROVIDER)
        return AnthropicModel(config)


class AnthropicModel:
    """Anthropic Messages API model with batch support."""

    def __init__(self, config: ConfigTarget) -> None:
        """Bind the model to its configuration."""
        self.config = config
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise APIError(
                    "anthropic package not installed",
                    hint="pip install anthropic",
                    provider=PROVIDER,
                ) from e
            kwargs: dict[str, Any] = {"api_key": self.config.api_key}
            if self.config.base_url:
                kwargs["base_url"] = self.config.base_url
            if self.config.request_timeout is not None:
                kwargs["timeout"] = self.config.request_timeout
            self._client = AsyncAnthropic(**kwargs)
        return self._client

    @property
    def capabilities(self) -> frozenset[Capability]:
        return CAPABILITIES

    @property
    def provider(self) -> str:
        return PROVIDER

    @property
    def model_id(self) -> str:
        return self.config.model

    @property
    def raw_client(self) -> Any:
        return self._get_client()

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    async def generate_text(self, opts: GenerateTextOptions) -> GenerateTextResult:
        """Generate a response using Anthropic's Messages API."""
        try:
            params = self.build_params(opts)
            response = await self._get_client().messages.create(**params)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=PROVIDER,
                phase="generate",
                message="Anthropic generate failed",
            ) from e

        result = map_response(response)
        result.raw_request = params
        result.raw_response = response
        return result

    async def stream_text(self, opts: GenerateTextOptions) -> StreamIterator:
        """Start a streaming message; vendor errors arrive as error events."""
        try:
            params = self.build_params(opts)
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=PROVIDER,
                phase="stream",
                message="Anthropic stream failed",
            ) from e
        return launch_stream(
            self._stream_events(params),
            provider=PROVIDER,
            on_error=partial(
                wrap_provider_error,
                provider=PROVIDER,
                phase="stream",
                message="Anthropic stream failed",
            ),
        )

    async def _stream_events(
        self, params: dict[str, Any]
    ) -> AsyncIterator[StreamEvent]:
        stream = await self._get_client().messages.create(**params, stream=True)
        try:
            async for event in translate_stream(stream):
                yield event
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                await close()

    # -------------------------------------------------------------------------
    # Request mapping
    # -------------------------------------------------------------------------

    def build_params(self, opts: GenerateTextOptions) -> dict[str, Any]:
        """Map unified options onto a Messages API request body."""
        system_parts = [opts.system] if opts.system else []
        messages: list[dict[str, Any]] = []
        for msg in opts.messages:
            if msg.role is Role.SYSTEM:
                # Anthropic takes system text as a parameter, not a message.
                system_parts.extend(b.text for b in msg.content if b.text)
                continue
            mapped = map_message(msg)
            if mapped["content"]:
                _append_message(messages, mapped)

        params: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": opts.max_tokens or self.config.max_tokens,
        }
        if system_parts:
            params["system"] = "\n\n".join(system_parts)

        temperature = (
            opts.temperature
            if opts.temperature is not None
            else self.config.temperature
        )
        if temperature is not None:
            params["temperature"] = temperature
        if opts.top_p is not None:
            params["top_p"] = opts.top_p
        if opts.stop_words:
            params["stop_sequences"] = list(opts.stop_words)

        if opts.tools:
            tools: list[dict[str, Any]] = []
            for tool in opts.tools:
                tool_def: dict[str, Any] = {
                    "name": tool.name,
                    "input_schema": tool.schema() or {"type": "object"},
                }
                if tool.description:
                    tool_def["description"] = tool.description
                tools.append(tool_def)
            params["tools"] = tools
        if opts.tool_choice is not None:
            params["tool_choice"] = dict(_TOOL_CHOICES[opts.tool_choice])

        if opts.thinking_budget is not None:
            params["temperature"] = _THINKING_TEMPERATURE
            params["thinking"] = {
                "type": "enabled",
                "budget_tokens": opts.thinking_budget,
            }

        params.update(opts.extensions)
        return params

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    async def submit_batch(self, req: BatchRequest) -> BatchJob:
        """Create a Message Batch with one request per item."""
        requests: list[dict[str, Any]] = []
        for item in req.items:
            try:
                params = self.build_params(item.options)
            except Exception as e:
                raise APIError(
                    f"Anthropic batch failed: build params for {item.custom_id!r}: {e}",
                    provider=PROVIDER,
                    phase="batch",
                ) from e
            requests.append({"custom_id": item.custom_id, "params": params})

        try:
            batch = await self._get_client().messages.batches.create(
                requests=requests
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=PROVIDER,
                phase="batch",
                message="Anthropic batch failed: batch create",
            ) from e
        return map_batch_job(batch)

    async def get_batch_job(self, job_id: str) -> BatchJob:
        """Retrieve the current status of a Message Batch."""
        try:
            batch = await self._get_client().messages.batches.retrieve(job_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e, provider=PROVIDER, phase="batch", message="Anthropic batch failed"
            ) from e
        return map_batch_job(batch)

    async def list_batch_jobs(
        self, opts: ListBatchOptions | None = None
    ) -> list[BatchJob]:
        """List one page of Message Batches (cursor pagination via ``after_id``)."""
        list_kwargs: dict[str, Any] = {}
        if opts is not None:
            if opts.limit:
                list_kwargs["limit"] = opts.limit
            if opts.after:
                list_kwargs["after_id"] = opts.after
        try:
            page = await self._get_client().messages.batches.list(**list_kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e, provider=PROVIDER, phase="batch", message="Anthropic batch failed"
            ) from e
        return [map_batch_job(b) for b in getattr(page, "data", None) or []]

    async def cancel_batch_job(self, job_id: str) -> None:
        """Request cancellation of a Message Batch."""
        try:
            await self._get_client().messages.batches.cancel(job_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e, provider=PROVIDER, phase="batch", message="Anthropic batch failed"
            ) from e

    async def download_batch_results(self, job: BatchJob) -> list[BatchResult]:
        """Stream a finished batch's results; failed items become item errors."""
        if job.storage is None or not job.storage.output_ref:
            raise APIError(
                "Anthropic batch failed: no results URL",
                hint="Wait until the job status is 'completed' before downloading.",
                provider=PROVIDER,
                phase="batch",
            )

        results: list[BatchResult] = []
        try:
            entries = await self._get_client().messages.batches.results(job.id)
            async for entry in entries:
                results.append(map_batch_entry(entry))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=PROVIDER,
                phase="batch",
                message="Anthropic batch failed: download results",
            ) from e
        return results


# =============================================================================
# Message mapping
# =============================================================================


def map_message(msg: Message) -> dict[str, Any]:
    """Map a user, assistant or tool message onto an Anthropic message.

    Tool messages become user messages carrying ``tool_result`` blocks.
    Audio and file blocks have no Anthropic equivalent and are skipped.
    """
    role = "assistant" if msg.role is Role.ASSISTANT else "user"
    blocks: list[dict[str, Any]] = []
    for block in msg.content:
        if block.type is ContentBlockType.TEXT:
            blocks.append({"type": "text", "text": block.text or ""})
        elif block.type is ContentBlockType.IMAGE and block.image is not None:
            blocks.append(_image_block(block.image))
        elif block.type is ContentBlockType.TOOL_CALL and block.tool_call is not None:
            blocks.append(
                {
                    "type": "tool_use",
                    "id": block.tool_call.id,
                    "name": block.tool_call.name,
                    "input": decode_tool_arguments(block.tool_call.arguments),
                }
            )
        elif (
            block.type is ContentBlockType.TOOL_RESULT
            and block.tool_result is not None
        ):
            blocks.append(
                {
                    "type": "tool_result",
                    "tool_use_id": block.tool_result.tool_call_id,
                    "content": [{"type": "text", "text": block.tool_result.content}],
                    "is_error": block.tool_result.is_error,
                }
            )
    return {"role": role, "content": blocks}


def _image_block(image: ImagePart) -> dict[str, Any]:
    if image.data:
        mime_type = image.mime_type or "image/png"
        raw = image.data
    elif is_data_url(image.url):
        mime_type, raw = decode_data_url(image.url)
    else:
        return {"type": "image", "source": {"type": "url", "url": image.url}}
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": mime_type,
            "data": base64.b64encode(raw).decode("ascii"),
        },
    }


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation, so a tool-result
    message followed by a user prompt becomes one user message.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        messages[-1]["content"] = messages[-1]["content"] + msg["content"]
    else:
        messages.append(msg)


# =============================================================================
# Response mapping
# =============================================================================


def map_stop_reason(reason: Any) -> StopReason:
    """Map an Anthropic stop_reason; unknown reasons map to ``end_turn``."""
    return _STOP_REASONS.get(str(reason or ""), StopReason.END_TURN)


def _usage(input_tokens: Any, output_tokens: Any) -> Usage:
    input_count = int(input_tokens or 0)
    output_count = int(output_tokens or 0)
    return Usage(
        input_tokens=input_count,
        output_tokens=output_count,
        total_tokens=input_count + output_count,
    )


def map_response(response: Any) -> GenerateTextResult:
    """Map an Anthropic Message onto a unified result.

    Thinking blocks are internal reasoning and are not part of the content.
    """
    content: list[ContentBlock] = []
    for block in getattr(response, "content", None) or []:
        block_type = getattr(block, "type", None)
        if block_type == "text":
            content.append(ContentBlock.of_text(getattr(block, "text", "")))
        elif block_type == "tool_use":
            content.append(
                tool_call_block(
                    str(getattr(block, "id", "")),
                    str(getattr(block, "name", "")),
                    json.dumps(getattr(block, "input", None) or {}),
                )
            )

    usage_raw = getattr(response, "usage", None)
    return GenerateTextResult(
        content=content,
        stop_reason=map_stop_reason(getattr(response, "stop_reason", None)),
        usage=_usage(
            getattr(usage_raw, "input_tokens", 0),
            getattr(usage_raw, "output_tokens", 0),
        ),
        model_id=str(getattr(response, "model", "") or ""),
    )


async def translate_stream(events: Any) -> AsyncIterator[StreamEvent]:
    """Translate raw Messages stream events into unified stream events.

    Text deltas pass through. Tool input fragments are forwarded as partial
    ``tool_call_delta`` events, and each tool call is emitted whole once its
    content block closes. ``message_delta`` carries the stop reason.
    """
    tool_blocks: dict[int, dict[str, str]] = {}
    input_tokens = 0
    output_tokens = 0
    stop_reason: Any = None

    async for event in events:
        event_type = getattr(event, "type", None)

        if event_type == "message_start":
            usage = getattr(getattr(event, "message", None), "usage", None)
            input_tokens = int(getattr(usage, "input_tokens", 0) or 0)
            output_tokens = int(getattr(usage, "output_tokens", 0) or 0)

        elif event_type == "content_block_start":
            block = getattr(event, "content_block", None)
            if getattr(block, "type", None) == "tool_use":
                tool_blocks[int(event.index)] = {
                    "id": str(getattr(block, "id", "")),
                    "name": str(getattr(block, "name", "")),
                    "arguments": "",
                }

        elif event_type == "content_block_delta":
            delta = getattr(event, "delta", None)
            delta_type = getattr(delta, "type", None)
            if delta_type == "text_delta":
                text = getattr(delta, "text", "")
                if text:
                    yield StreamEvent.content_delta(text)
            elif delta_type == "input_json_delta":
                fragment = getattr(delta, "partial_json", "")
                call = tool_blocks.get(int(event.index))
                if call is not None:
                    call["arguments"] += fragment
                if fragment:
                    yield StreamEvent.tool_call_delta(partial_json=fragment)

        elif event_type == "content_block_stop":
            call = tool_blocks.pop(int(event.index), None)
            if call is not None:
                yield StreamEvent.tool_call_delta(
                    ToolCall(
                        id=call["id"],
                        name=call["name"],
                        arguments=call["arguments"] or "{}",
                    )
                )

        elif event_type == "message_delta":
            stop_reason = getattr(getattr(event, "delta", None), "stop_reason", None)
            usage = getattr(event, "usage", None)
            if usage is not None:
                output_tokens = int(getattr(usage, "output_tokens", 0) or 0)

        elif event_type == "message_stop":
            break

    yield StreamEvent.message_done(
        map_stop_reason(stop_reason), _usage(input_tokens, output_tokens)
    )


def map_batch_job(batch: Any) -> BatchJob:
    """Map an Anthropic MessageBatch onto a unified job snapshot."""
    counts = getattr(batch, "request_counts", None)

    def count(name: str) -> int:
        return int(getattr(counts, name, 0) or 0)

    total = sum(
        count(name)
        for name in ("processing", "succeeded", "errored", "canceled", "expired")
    )
    return BatchJob(
        id=str(batch.id),
        status=map_batch_status(
            BATCH_STATUSES, getattr(batch, "processing_status", None)
        ),
        total_count=total,
        done_count=count("succeeded"),
        failed_count=count("errored"),
        created_at=to_epoch_datetime(getattr(batch, "created_at", None)),
        completed_at=to_epoch_datetime(getattr(batch, "ended_at", None)),
        storage=BatchStorage(
            type="anthropic_batch",
            output_ref=getattr(batch, "results_url", None) or "",
            properties={"batch_id": str(batch.id)},
        ),
    )


def map_batch_entry(entry: Any) -> BatchResult:
    """Map one batch result entry; non-``succeeded`` entries become errors."""
    custom_id = str(getattr(entry, "custom_id", "") or "")
    outcome = getattr(entry, "result", None)
    outcome_type = str(getattr(outcome, "type", "") or "unknown")

    if outcome_type != "succeeded":
        vendor_error = getattr(getattr(outcome, "error", None), "error", None)
        detail = getattr(vendor_error, "message", None)
        error = f"{outcome_type}: {detail}" if detail else outcome_type
        return BatchResult(custom_id=custom_id, error=error)

    message = getattr(outcome, "message", None)
    result = map_response(message)
    result.raw_response = message
    return BatchResult(custom_id=custom_id, result=result)
