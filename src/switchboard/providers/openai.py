"""OpenAI provider: Chat Completions, streaming and the Batch API."""

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
    parse_jsonl_results,
)
from switchboard.content import decode_data_url, is_data_url
from switchboard.errors import APIError
from switchboard.generation import (
    Capability,
    GenerateTextOptions,
    GenerateTextResult,
    StopReason,
    StreamEvent,
    Usage,
)
from switchboard.messages import (
    ContentBlock,
    ContentBlockType,
    Message,
    Role,
    ToolCall,
    concat_text,
    tool_call_block,
)
from switchboard.providers._errors import wrap_provider_error
from switchboard.providers._utils import (
    effort_for_budget,
    require_credentials,
    to_epoch_datetime,
    to_strict_schema,
)
from switchboard.stream import StreamIterator, launch_stream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchboard.batch import BatchRequest
    from switchboard.config import ConfigTarget
    from switchboard.content import AudioPart, ImagePart

PROVIDER = "openai"
BATCH_ENDPOINT = "/v1/chat/completions"
BATCH_COMPLETION_WINDOW = "24h"

CAPABILITIES: frozenset[Capability] = frozenset(Capability)

_FINISH_REASONS: dict[str, StopReason] = {
    "stop": StopReason.END_TURN,
    "length": StopReason.MAX_TOKENS,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "content_filter": StopReason.STOP,
}

BATCH_STATUSES: dict[str, BatchStatus] = {
    "validating": BatchStatus.PROCESSING,
    "in_progress": BatchStatus.PROCESSING,
    "finalizing": BatchStatus.PROCESSING,
    "completed": BatchStatus.COMPLETED,
    "failed": BatchStatus.FAILED,
    "expired": BatchStatus.FAILED,
    "cancelling": BatchStatus.CANCELLED,
    "cancelled": BatchStatus.CANCELLED,
}

_AUDIO_FORMATS: dict[str, str] = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
}


class OpenAIFactory:
    """Creates ``OpenAIModel`` instances."""

    provider = PROVIDER

    async def create_model(self, config: ConfigTarget) -> OpenAIModel:
        """Validate the target and build a model; the client is created lazily."""
        require_credentials(config, provider=PROVIDER)
        return OpenAIModel(config)


class OpenAIModel:
    """OpenAI Chat Completions model with batch support."""

    def __init__(self, config: ConfigTarget) -> None:
        """Bind the model to its configuration."""
        self.config = config
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise APIError(
                    "openai package not installed",
                    hint="pip install openai",
                    provider=PROVIDER,
                ) from e
            kwargs: dict[str, Any] = {"api_key": self.config.api_key}
            if self.config.base_url:
                kwargs["base_url"] = self.config.base_url
            if self.config.request_timeout is not None:
                kwargs["timeout"] = self.config.request_timeout
            self._client = AsyncOpenAI(**kwargs)
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
        """Generate a response using the Chat Completions endpoint."""
        try:
            params = self.build_params(opts)
            completion = await self._get_client().chat.completions.create(**params)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=PROVIDER,
                phase="generate",
                message="OpenAI generate failed",
            ) from e

        result = map_completion(completion)
        result.raw_request = params
        result.raw_response = completion
        return result

    async def stream_text(self, opts: GenerateTextOptions) -> StreamIterator:
        """Start a streaming completion; vendor errors arrive as error events."""
        try:
            params = self.build_params(opts)
        except Exception as e:
            raise wrap_provider_error(
                e, provider=PROVIDER, phase="stream", message="OpenAI stream failed"
            ) from e
        return launch_stream(
            self._stream_events(params),
            provider=PROVIDER,
            on_error=partial(
                wrap_provider_error,
                provider=PROVIDER,
                phase="stream",
                message="OpenAI stream failed",
            ),
        )

    async def _stream_events(
        self, params: dict[str, Any]
    ) -> AsyncIterator[StreamEvent]:
        stream = await self._get_client().chat.completions.create(
            **params,
            stream=True,
            stream_options={"include_usage": True},
        )
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
        """Map unified options onto a Chat Completions request body."""
        messages: list[dict[str, Any]] = []
        if opts.system:
            messages.append({"role": "developer", "content": opts.system})
        for msg in opts.messages:
            messages.extend(map_message(msg))

        params: dict[str, Any] = {"model": self.config.model, "messages": messages}

        if opts.tools:
            tools: list[dict[str, Any]] = []
            for tool in opts.tools:
                function: dict[str, Any] = {
                    "name": tool.name,
                    "description": tool.description,
                }
                schema = tool.schema()
                if schema is not None:
                    function["parameters"] = schema
                tools.append({"type": "function", "function": function})
            params["tools"] = tools

        if opts.tool_choice is not None:
            params["tool_choice"] = opts.tool_choice.value

        rf = opts.response_format
        if rf is not None:
            if rf.type == "json_schema":
                params["response_format"] = {
                    "type": "json_schema",
                    "json_schema": {
                        "name": rf.name,
                        "schema": to_strict_schema(rf.schema_dict() or {}),
                        "strict": True,
                    },
                }
            else:
                params["response_format"] = {"type": rf.type}

        if opts.thinking_budget is not None:
            params["reasoning_effort"] = effort_for_budget(
                opts.thinking_budget,
                low_max=self.config.low_effort_max_budget,
                high_min=self.config.high_effort_min_budget,
            )
        if opts.max_tokens is not None:
            params["max_completion_tokens"] = opts.max_tokens

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
            params["stop"] = list(opts.stop_words)

        params.update(opts.extensions)
        return params

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    def build_batch_jsonl(self, req: BatchRequest) -> bytes:
        """Serialize a batch request, one request line per item."""
        lines: list[str] = []
        for item in req.items:
            try:
                body = self.build_params(item.options)
            except Exception as e:
                raise APIError(
                    f"OpenAI batch failed: build params for {item.custom_id!r}: {e}",
                    provider=PROVIDER,
                    phase="batch",
                ) from e
            lines.append(
                json.dumps(
                    {
                        "custom_id": item.custom_id,
                        "method": "POST",
                        "url": BATCH_ENDPOINT,
                        "body": body,
                    }
                )
            )
        return ("\n".join(lines) + "\n").encode("utf-8")

    async def submit_batch(self, req: BatchRequest) -> BatchJob:
        """Upload the JSONL payload and create a batch job."""
        payload = self.build_batch_jsonl(req)
        client = self._get_client()
        try:
            uploaded = await client.files.create(
                file=("batch.jsonl", payload, "application/jsonl"),
                purpose="batch",
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=PROVIDER,
                phase="batch",
                message="OpenAI batch failed: file upload",
            ) from e

        create_kwargs: dict[str, Any] = {
            "input_file_id": uploaded.id,
            "endpoint": BATCH_ENDPOINT,
            "completion_window": BATCH_COMPLETION_WINDOW,
        }
        if req.metadata:
            create_kwargs["metadata"] = dict(req.metadata)
        try:
            batch = await client.batches.create(**create_kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=PROVIDER,
                phase="batch",
                message="OpenAI batch failed: batch create",
            ) from e
        return map_batch_job(batch)

    async def get_batch_job(self, job_id: str) -> BatchJob:
        """Retrieve the current status of a batch job."""
        try:
            batch = await self._get_client().batches.retrieve(job_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e, provider=PROVIDER, phase="batch", message="OpenAI batch failed"
            ) from e
        return map_batch_job(batch)

    async def list_batch_jobs(
        self, opts: ListBatchOptions | None = None
    ) -> list[BatchJob]:
        """List one page of batch jobs (cursor pagination via ``after``)."""
        list_kwargs: dict[str, Any] = {}
        if opts is not None:
            if opts.limit:
                list_kwargs["limit"] = opts.limit
            if opts.after:
                list_kwargs["after"] = opts.after
        try:
            page = await self._get_client().batches.list(**list_kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e, provider=PROVIDER, phase="batch", message="OpenAI batch failed"
            ) from e
        return [map_batch_job(b) for b in getattr(page, "data", None) or []]

    async def cancel_batch_job(self, job_id: str) -> None:
        """Request cancellation of a batch job."""
        try:
            await self._get_client().batches.cancel(job_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e, provider=PROVIDER, phase="batch", message="OpenAI batch failed"
            ) from e

    async def download_batch_results(self, job: BatchJob) -> list[BatchResult]:
        """Download and parse a finished job's output (and error) files."""
        if job.storage is None or not job.storage.output_ref:
            raise APIError(
                "OpenAI batch failed: no output file reference",
                hint="Wait until the job status is 'completed' before downloading.",
                provider=PROVIDER,
                phase="batch",
            )

        refs = [job.storage.output_ref]
        error_ref = job.storage.properties.get("error_file_id")
        if isinstance(error_ref, str) and error_ref:
            refs.append(error_ref)

        results: list[BatchResult] = []
        for ref in refs:
            text = await self._download_file_text(ref)
            results.extend(parse_jsonl_results(text.splitlines(), parse_batch_line))
        return results

    async def _download_file_text(self, file_id: str) -> str:
        try:
            content = await self._get_client().files.content(file_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=PROVIDER,
                phase="batch",
                message="OpenAI batch failed: download output",
            ) from e
        text = getattr(content, "text", None)
        if isinstance(text, str):
            return text
        raw = getattr(content, "content", b"")
        return raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)


# =============================================================================
# Message mapping
# =============================================================================


def map_message(msg: Message) -> list[dict[str, Any]]:
    """Map one unified message onto zero or more Chat Completions messages."""
    if msg.role is Role.USER:
        return [_map_user_message(msg)]
    if msg.role is Role.ASSISTANT:
        return [_map_assistant_message(msg)]
    if msg.role is Role.SYSTEM:
        return [{"role": "developer", "content": concat_text(msg.content)}]
    # One tool message per result: each carries a single tool_call_id.
    return [
        {
            "role": "tool",
            "tool_call_id": b.tool_result.tool_call_id,
            "content": b.tool_result.content,
        }
        for b in msg.content
        if b.type is ContentBlockType.TOOL_RESULT and b.tool_result is not None
    ]


def _map_user_message(msg: Message) -> dict[str, Any]:
    if not msg.has_media():
        return {"role": "user", "content": concat_text(msg.content)}

    parts: list[dict[str, Any]] = []
    for block in msg.content:
        if block.type is ContentBlockType.TEXT:
            parts.append({"type": "text", "text": block.text or ""})
        elif block.type is ContentBlockType.IMAGE and block.image is not None:
            parts.append(_image_part(block.image))
        elif block.type is ContentBlockType.AUDIO and block.audio is not None:
            parts.append(_audio_part(block.audio))
    return {"role": "user", "content": parts}


def _image_part(image: ImagePart) -> dict[str, Any]:
    url = image.url
    if image.data:
        mime_type = image.mime_type or "image/png"
        url = f"data:{mime_type};base64,{base64.b64encode(image.data).decode('ascii')}"
    return {
        "type": "image_url",
        "image_url": {"url": url, "detail": image.detail.value},
    }


def _audio_part(audio: AudioPart) -> dict[str, Any]:
    mime_type = audio.mime_type
    if audio.data:
        data = base64.b64encode(audio.data).decode("ascii")
    elif is_data_url(audio.url):
        mime_type, raw = decode_data_url(audio.url)
        data = base64.b64encode(raw).decode("ascii")
    else:
        data = audio.url
    return {
        "type": "input_audio",
        "input_audio": {"data": data, "format": _AUDIO_FORMATS.get(mime_type, "mp3")},
    }


def _map_assistant_message(msg: Message) -> dict[str, Any]:
    text = concat_text(msg.content)
    tool_calls = [
        {
            "id": b.tool_call.id,
            "type": "function",
            "function": {"name": b.tool_call.name, "arguments": b.tool_call.arguments},
        }
        for b in msg.content
        if b.type is ContentBlockType.TOOL_CALL and b.tool_call is not None
    ]
    mapped: dict[str, Any] = {"role": "assistant"}
    if text:
        mapped["content"] = text
    if tool_calls:
        mapped["tool_calls"] = tool_calls
    return mapped


# =============================================================================
# Response mapping
# =============================================================================


def map_finish_reason(reason: Any) -> StopReason:
    """Map an OpenAI finish_reason; unknown reasons map to ``stop``."""
    if not isinstance(reason, str):
        reason = getattr(reason, "value", "")
    return _FINISH_REASONS.get(str(reason), StopReason.STOP)


def _map_usage(usage_raw: Any) -> Usage:
    if usage_raw is None:
        return Usage()
    thinking = 0
    details = getattr(usage_raw, "completion_tokens_details", None)
    if details is not None:
        thinking = int(getattr(details, "reasoning_tokens", 0) or 0)
    return Usage(
        input_tokens=int(getattr(usage_raw, "prompt_tokens", 0) or 0),
        output_tokens=int(getattr(usage_raw, "completion_tokens", 0) or 0),
        total_tokens=int(getattr(usage_raw, "total_tokens", 0) or 0),
        thinking_tokens=thinking,
    )


def map_completion(completion: Any) -> GenerateTextResult:
    """Map a ChatCompletion onto a unified result."""
    result = GenerateTextResult(
        model_id=str(getattr(completion, "model", "") or ""),
        usage=_map_usage(getattr(completion, "usage", None)),
    )
    choices = getattr(completion, "choices", None) or []
    if not choices:
        return result

    choice = choices[0]
    result.stop_reason = map_finish_reason(getattr(choice, "finish_reason", None))
    message = getattr(choice, "message", None)
    content = getattr(message, "content", None)
    if isinstance(content, str) and content:
        result.content.append(ContentBlock.of_text(content))
    for tc in getattr(message, "tool_calls", None) or []:
        function = getattr(tc, "function", None)
        result.content.append(
            tool_call_block(
                str(getattr(tc, "id", "")),
                str(getattr(function, "name", "")),
                getattr(function, "arguments", None) or "{}",
            )
        )
    return result


async def translate_stream(chunks: Any) -> AsyncIterator[StreamEvent]:
    """Translate ChatCompletionChunks into unified stream events.

    Tool calls are emitted once complete: when a later tool call index starts,
    or when the stream ends.
    """
    pending: dict[int, dict[str, str]] = {}
    emitted: set[int] = set()
    finish_reason: Any = None
    usage: Usage | None = None

    def finished(index: int) -> StreamEvent:
        emitted.add(index)
        call = pending[index]
        return StreamEvent.tool_call_delta(
            ToolCall(
                id=call["id"], name=call["name"], arguments=call["arguments"] or "{}"
            )
        )

    async for chunk in chunks:
        chunk_usage = getattr(chunk, "usage", None)
        if chunk_usage is not None:
            usage = _map_usage(chunk_usage)

        choices = getattr(chunk, "choices", None) or []
        if not choices:
            continue
        choice = choices[0]
        delta = getattr(choice, "delta", None)

        text = getattr(delta, "content", None)
        if isinstance(text, str) and text:
            yield StreamEvent.content_delta(text)

        for tc in getattr(delta, "tool_calls", None) or []:
            index = int(getattr(tc, "index", 0) or 0)
            for earlier in sorted(pending):
                if earlier < index and earlier not in emitted:
                    yield finished(earlier)
            call = pending.setdefault(index, {"id": "", "name": "", "arguments": ""})
            if getattr(tc, "id", None):
                call["id"] = tc.id
            function = getattr(tc, "function", None)
            if function is not None:
                if getattr(function, "name", None):
                    call["name"] = function.name
                if getattr(function, "arguments", None):
                    call["arguments"] += function.arguments

        if getattr(choice, "finish_reason", None):
            finish_reason = choice.finish_reason

    for index in sorted(pending):
        if index not in emitted:
            yield finished(index)

    stop_reason = map_finish_reason(finish_reason) if finish_reason else None
    yield StreamEvent.message_done(stop_reason, usage)


def map_batch_job(batch: Any) -> BatchJob:
    """Map an OpenAI Batch object onto a unified job snapshot."""
    counts = getattr(batch, "request_counts", None)
    errors = getattr(getattr(batch, "errors", None), "data", None) or []
    messages = [str(getattr(e, "message", "")) for e in errors]

    properties: dict[str, Any] = {}
    error_file_id = getattr(batch, "error_file_id", None)
    if error_file_id:
        properties["error_file_id"] = error_file_id

    return BatchJob(
        id=str(batch.id),
        status=map_batch_status(BATCH_STATUSES, getattr(batch, "status", None)),
        total_count=int(getattr(counts, "total", 0) or 0),
        done_count=int(getattr(counts, "completed", 0) or 0),
        failed_count=int(getattr(counts, "failed", 0) or 0),
        created_at=to_epoch_datetime(getattr(batch, "created_at", None)),
        completed_at=to_epoch_datetime(getattr(batch, "completed_at", None)),
        error="; ".join(messages) if messages else None,
        storage=BatchStorage(
            type="openai_file",
            input_ref=getattr(batch, "input_file_id", None) or "",
            output_ref=getattr(batch, "output_file_id", None) or "",
            properties=properties,
        ),
    )


def parse_batch_line(line: dict[str, Any]) -> BatchResult:
    """Parse one output line: ``{id, custom_id, response, error}``."""
    custom_id = str(line.get("custom_id") or "")

    error = line.get("error")
    if isinstance(error, dict):
        return BatchResult(
            custom_id=custom_id,
            error=str(error.get("message") or error.get("code") or "unknown error"),
        )

    response = line.get("response")
    if not isinstance(response, dict):
        return BatchResult(custom_id=custom_id, error="missing response")

    body = response.get("body")
    status_code = response.get("status_code")
    if isinstance(status_code, int) and status_code >= 400:
        message = ""
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            message = str(body["error"].get("message") or "")
        error = f"status {status_code}"
        return BatchResult(
            custom_id=custom_id, error=f"{error}: {message}" if message else error
        )

    if not isinstance(body, dict):
        return BatchResult(custom_id=custom_id, error="failed to parse completion")

    from openai.types.chat import ChatCompletion

    try:
        completion = ChatCompletion.model_validate(body)
    except Exception as e:
        return BatchResult(
            custom_id=custom_id, error=f"failed to parse completion: {e}"
        )
    result = map_completion(completion)
    result.raw_response = completion
    return BatchResult(custom_id=custom_id, result=result)
