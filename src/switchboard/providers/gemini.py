"""Gemini provider using the google-genai SDK."""

from __future__ import annotations

import asyncio
from functools import partial
import json
from typing import TYPE_CHECKING, Any
import uuid

from switchboard.content import (
    AudioPart,
    ImagePart,
    decode_data_url,
    detect_mime_from_url,
    is_data_url,
)
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
)
from switchboard.providers._errors import wrap_provider_error
from switchboard.providers._utils import decode_tool_arguments, require_credentials
from switchboard.stream import StreamIterator, launch_stream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchboard.config import ConfigTarget

PROVIDER = "gemini"

CAPABILITIES: frozenset[Capability] = frozenset(
    {
        Capability.TEXT_GENERATION,
        Capability.STREAMING,
        Capability.TOOL_CALLING,
        Capability.VISION,
        Capability.AUDIO,
        Capability.STRUCTURED_OUTPUT,
        Capability.REASONING,
    }
)

_FINISH_REASONS: dict[str, StopReason] = {
    "STOP": StopReason.END_TURN,
    "MAX_TOKENS": StopReason.MAX_TOKENS,
}

_TOOL_MODES: dict[ToolChoice, str] = {
    ToolChoice.AUTO: "AUTO",
    ToolChoice.NONE: "NONE",
    ToolChoice.REQUIRED: "ANY",
}


class GeminiFactory:
    """Creates ``GeminiModel`` instances."""

    provider = PROVIDER

    async def create_model(self, config: ConfigTarget) -> GeminiModel:
        """Validate the target and build a model; the client is created lazily."""
        require_credentials(config, provider=PROVIDER)
        return GeminiModel(config)


class GeminiModel:
    """Gemini model. No batch support."""

    #: Provider tag and display name, shared with ``VertexAIModel``.
    provider_name = PROVIDER
    display_name = "Gemini"

    def __init__(self, config: ConfigTarget) -> None:
        """Bind the model to its configuration."""
        self.config = config
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the google-genai client."""
        if self._client is None:
            try:
                from google import genai
                from google.genai import types
            except ImportError as e:
                raise APIError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                    provider=self.provider_name,
                ) from e
            http_kwargs: dict[str, Any] = {}
            if self.config.base_url:
                http_kwargs["base_url"] = self.config.base_url
            if self.config.request_timeout is not None:
                # google-genai takes milliseconds.
                http_kwargs["timeout"] = int(self.config.request_timeout * 1000)
            self._client = self._build_client(
                genai, types.HttpOptions(**http_kwargs) if http_kwargs else None
            )
        return self._client

    def _build_client(self, genai: Any, http_options: Any) -> Any:
        return genai.Client(api_key=self.config.api_key, http_options=http_options)

    @property
    def capabilities(self) -> frozenset[Capability]:
        return CAPABILITIES

    @property
    def provider(self) -> str:
        return self.provider_name

    @property
    def model_id(self) -> str:
        return self.config.model

    @property
    def raw_client(self) -> Any:
        return self._get_client()

    async def aclose(self) -> None:
        """Release the async transport, if the SDK exposes one."""
        client = self._client
        if client is None:
            return
        self._client = None
        aclose = getattr(getattr(client, "aio", None), "aclose", None)
        if aclose is not None:
            await aclose()

    async def generate_text(self, opts: GenerateTextOptions) -> GenerateTextResult:
        """Generate content from the Gemini model."""
        try:
            from google.genai import types

            contents, config_kwargs = self.build_request(opts)
            response = await self._get_client().aio.models.generate_content(
                model=self.config.model,
                contents=contents,
                config=types.GenerateContentConfig(**config_kwargs),
            )
            if not response:
                raise APIError(f"{self.display_name} returned an empty response.")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self.provider_name,
                phase="generate",
                message=f"{self.display_name} generate failed",
            ) from e

        result = map_response(response)
        result.model_id = self.config.model
        result.raw_request = config_kwargs
        result.raw_response = response
        return result

    async def stream_text(self, opts: GenerateTextOptions) -> StreamIterator:
        """Start a streaming generation; vendor errors arrive as error events."""
        try:
            contents, config_kwargs = self.build_request(opts)
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self.provider_name,
                phase="stream",
                message=f"{self.display_name} stream failed",
            ) from e
        return launch_stream(
            self._stream_events(contents, config_kwargs),
            provider=self.provider_name,
            on_error=partial(
                wrap_provider_error,
                provider=self.provider_name,
                phase="stream",
                message=f"{self.display_name} stream failed",
            ),
        )

    async def _stream_events(
        self, contents: list[Any], config_kwargs: dict[str, Any]
    ) -> AsyncIterator[StreamEvent]:
        from google.genai import types

        chunks = await self._get_client().aio.models.generate_content_stream(
            model=self.config.model,
            contents=contents,
            config=types.GenerateContentConfig(**config_kwargs),
        )
        async for event in translate_stream(chunks):
            yield event

    def build_request(
        self, opts: GenerateTextOptions
    ) -> tuple[list[Any], dict[str, Any]]:
        """Map unified options onto ``(contents, GenerateContentConfig kwargs)``."""
        from google.genai import types

        system_parts = [opts.system] if opts.system else []
        contents: list[Any] = []
        call_names: dict[str, str] = {}
        for msg in opts.messages:
            if msg.role is Role.SYSTEM:
                system_parts.extend(b.text for b in msg.content if b.text)
                continue
            parts = _map_parts(msg, call_names)
            if parts:
                role = "model" if msg.role is Role.ASSISTANT else "user"
                contents.append(types.Content(role=role, parts=parts))

        config_kwargs: dict[str, Any] = {}
        if system_parts:
            config_kwargs["system_instruction"] = "\n\n".join(system_parts)
        if opts.max_tokens is not None:
            config_kwargs["max_output_tokens"] = opts.max_tokens

        temperature = (
            opts.temperature
            if opts.temperature is not None
            else self.config.temperature
        )
        if temperature is not None:
            config_kwargs["temperature"] = temperature
        if opts.top_p is not None:
            config_kwargs["top_p"] = opts.top_p
        if opts.stop_words:
            config_kwargs["stop_sequences"] = list(opts.stop_words)

        if opts.tools:
            config_kwargs["tools"] = [
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=tool.name,
                            description=tool.description,
                            parameters_json_schema=tool.schema(),
                        )
                        for tool in opts.tools
                    ]
                )
            ]
        if opts.tool_choice is not None:
            config_kwargs["tool_config"] = {
                "function_calling_config": {"mode": _TOOL_MODES[opts.tool_choice]}
            }

        if opts.safety_settings:
            config_kwargs["safety_settings"] = [
                types.SafetySetting(category=s.category, threshold=s.threshold)
                for s in opts.safety_settings
            ]

        rf = opts.response_format
        if rf is not None:
            if rf.type == "text":
                config_kwargs["response_mime_type"] = "text/plain"
            else:
                config_kwargs["response_mime_type"] = "application/json"
                schema = rf.schema_dict()
                if schema is not None:
                    config_kwargs["response_json_schema"] = schema

        if opts.thinking_budget is not None:
            config_kwargs["thinking_config"] = types.ThinkingConfig(
                thinking_budget=opts.thinking_budget
            )

        config_kwargs.update(opts.extensions)
        return contents, config_kwargs


def _map_parts(msg: Message, call_names: dict[str, str]) -> list[Any]:
    """Convert one message's blocks to google-genai parts.

    *call_names* remembers tool call IDs seen in earlier assistant turns,
    since Gemini keys function responses by function name.
    """
    from google.genai import types

    parts: list[Any] = []
    for block in msg.content:
        if block.type is ContentBlockType.TEXT:
            parts.append(types.Part.from_text(text=block.text or ""))
        elif block.type is ContentBlockType.IMAGE and block.image is not None:
            image = block.image
            parts.append(
                _media_part(image.url, image.mime_type, image.data, "image/png")
            )
        elif block.type is ContentBlockType.AUDIO and block.audio is not None:
            audio = block.audio
            parts.append(
                _media_part(audio.url, audio.mime_type, audio.data, "audio/mpeg")
            )
        elif block.type is ContentBlockType.FILE and block.file is not None:
            parts.append(
                types.Part.from_uri(
                    file_uri=block.file.uri,
                    mime_type=block.file.mime_type
                    or detect_mime_from_url(block.file.uri),
                )
            )
        elif block.type is ContentBlockType.TOOL_CALL and block.tool_call is not None:
            call = block.tool_call
            call_names[call.id] = call.name
            parts.append(
                types.Part.from_function_call(
                    name=call.name, args=decode_tool_arguments(call.arguments)
                )
            )
        elif (
            block.type is ContentBlockType.TOOL_RESULT
            and block.tool_result is not None
        ):
            tool_result = block.tool_result
            response: dict[str, Any] = {"result": tool_result.content}
            if tool_result.is_error:
                response["error"] = tool_result.content
            parts.append(
                types.Part.from_function_response(
                    name=call_names.get(
                        tool_result.tool_call_id, tool_result.tool_call_id
                    ),
                    response=response,
                )
            )
    return parts


def _media_part(url: str, mime_type: str, data: bytes, default_mime: str) -> Any:
    from google.genai import types

    if data:
        return types.Part.from_bytes(data=data, mime_type=mime_type or default_mime)
    if is_data_url(url):
        decoded_mime, raw = decode_data_url(url)
        return types.Part.from_bytes(data=raw, mime_type=decoded_mime)
    return types.Part.from_uri(
        file_uri=url, mime_type=mime_type or detect_mime_from_url(url)
    )


def map_finish_reason(reason: Any) -> StopReason:
    """Map a Gemini FinishReason; anything but STOP/MAX_TOKENS maps to ``stop``."""
    if reason is None:
        return StopReason.STOP
    name = getattr(reason, "value", None) or getattr(reason, "name", None) or reason
    return _FINISH_REASONS.get(str(name).upper(), StopReason.STOP)


def _map_usage(um: Any) -> Usage:
    if um is None:
        return Usage()
    return Usage(
        input_tokens=int(getattr(um, "prompt_token_count", 0) or 0),
        output_tokens=int(getattr(um, "candidates_token_count", 0) or 0),
        total_tokens=int(getattr(um, "total_token_count", 0) or 0),
        thinking_tokens=int(getattr(um, "thoughts_token_count", 0) or 0),
    )


def _function_call(part: Any) -> ToolCall | None:
    fc = getattr(part, "function_call", None)
    if fc is None:
        return None
    call_id = getattr(fc, "id", None) or f"call_{uuid.uuid4().hex[:8]}"
    return ToolCall(
        id=str(call_id),
        name=str(getattr(fc, "name", "") or ""),
        arguments=json.dumps(getattr(fc, "args", None) or {}),
    )


def _inline_media(part: Any) -> ContentBlock | None:
    blob = getattr(part, "inline_data", None)
    if blob is None:
        return None
    mime_type = str(getattr(blob, "mime_type", "") or "")
    data = getattr(blob, "data", None) or b""
    if mime_type.startswith("audio/"):
        return ContentBlock.of_audio(AudioPart(mime_type=mime_type, data=data))
    return ContentBlock.of_image(ImagePart(mime_type=mime_type, data=data))


def _candidate_parts(response: Any) -> tuple[Any, list[Any]]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None, []
    candidate = candidates[0]
    content = getattr(candidate, "content", None)
    return candidate, list(getattr(content, "parts", None) or [])


def map_response(response: Any) -> GenerateTextResult:
    """Map a GenerateContentResponse onto a unified result.

    Thought parts are skipped and inline media becomes image or audio blocks.
    A response carrying function calls stops with ``tool_use`` whatever the
    finish reason says.
    """
    result = GenerateTextResult(
        usage=_map_usage(getattr(response, "usage_metadata", None))
    )
    candidate, parts = _candidate_parts(response)
    if candidate is None:
        return result

    has_calls = False
    for part in parts:
        if getattr(part, "thought", False):
            continue
        text = getattr(part, "text", None)
        if isinstance(text, str) and text:
            result.content.append(ContentBlock.of_text(text))
        call = _function_call(part)
        if call is not None:
            has_calls = True
            result.content.append(
                ContentBlock(type=ContentBlockType.TOOL_CALL, tool_call=call)
            )
        media = _inline_media(part)
        if media is not None:
            result.content.append(media)

    result.stop_reason = (
        StopReason.TOOL_USE
        if has_calls
        else map_finish_reason(getattr(candidate, "finish_reason", None))
    )
    return result


async def translate_stream(chunks: Any) -> AsyncIterator[StreamEvent]:
    """Translate streamed GenerateContentResponse chunks into stream events.

    Stream events carry only text and tool calls, so inline media parts are
    not forwarded; use ``generate_text`` for image output.
    """
    finish_reason: Any = None
    usage: Usage | None = None
    has_calls = False

    async for chunk in chunks:
        um = getattr(chunk, "usage_metadata", None)
        if um is not None:
            usage = _map_usage(um)
        candidate, parts = _candidate_parts(chunk)
        if candidate is None:
            continue
        for part in parts:
            if getattr(part, "thought", False):
                continue
            text = getattr(part, "text", None)
            if isinstance(text, str) and text:
                yield StreamEvent.content_delta(text)
            call = _function_call(part)
            if call is not None:
                has_calls = True
                yield StreamEvent.tool_call_delta(call)
        if getattr(candidate, "finish_reason", None) is not None:
            finish_reason = candidate.finish_reason

    if has_calls:
        stop_reason: StopReason | None = StopReason.TOOL_USE
    elif finish_reason is not None:
        stop_reason = map_finish_reason(finish_reason)
    else:
        stop_reason = None
    yield StreamEvent.message_done(stop_reason, usage)
