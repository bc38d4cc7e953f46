"""Generation request/response types and the stream event vocabulary."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

from switchboard.errors import ValidationError
from switchboard.messages import (
    ContentBlock,
    ContentBlockType,
    Message,
    ToolCall,
    ToolDefinition,
    concat_text,
)


class ToolChoice(str, Enum):
    """How the model may select tools."""

    AUTO = "auto"
    NONE = "none"
    REQUIRED = "required"


class StopReason(str, Enum):
    """Normalized reason a generation ended.

    Lossy by construction: every vendor finish reason maps to one of these.
    """

    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    TOOL_USE = "tool_use"
    STOP = "stop"


class Capability(str, Enum):
    """A feature a model may advertise."""

    TEXT_GENERATION = "text_generation"
    STREAMING = "streaming"
    TOOL_CALLING = "tool_calling"
    VISION = "vision"
    AUDIO = "audio"
    BATCH_PROCESSING = "batch_processing"
    STRUCTURED_OUTPUT = "structured_output"
    REASONING = "reasoning"


@dataclass(frozen=True)
class ResponseFormat:
    """Structured-output request.

    ``type`` is ``"json_schema"``, ``"json_object"`` or ``"text"``. The schema
    may be a dict or a Pydantic model class.
    """

    type: str = "json_schema"
    name: str = "structured_output"
    json_schema: dict[str, Any] | type[BaseModel] | None = None

    def __post_init__(self) -> None:
        if self.type not in ("json_schema", "json_object", "text"):
            raise ValidationError(
                f"Unsupported response format type: {self.type!r}",
                hint="Use 'json_schema', 'json_object' or 'text'.",
            )

    def schema_dict(self) -> dict[str, Any] | None:
        """Return the JSON Schema as a dict, if one was given."""
        schema = self.json_schema
        if schema is None or isinstance(schema, dict):
            return schema
        return schema.model_json_schema()


@dataclass(frozen=True)
class SafetySetting:
    """Harm-category threshold (Google providers only)."""

    category: str
    threshold: str


@dataclass(frozen=True)
class Usage:
    """Token usage, normalized across vendors."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    #: Reasoning tokens reported separately by some vendors; 0 when unknown.
    thinking_tokens: int = 0


@dataclass
class GenerateTextOptions:
    """A text generation request."""

    messages: list[Message] = field(default_factory=list)
    system: str = ""
    tools: list[ToolDefinition] = field(default_factory=list)
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    stop_words: list[str] = field(default_factory=list)
    tool_choice: ToolChoice | None = None
    response_format: ResponseFormat | None = None
    #: Reasoning/thinking token budget; see ``effort_for_budget``.
    thinking_budget: int | None = None
    safety_settings: list[SafetySetting] = field(default_factory=list)
    #: Provider-specific extra request fields, merged last.
    extensions: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_tokens is not None and self.max_tokens <= 0:
            raise ValidationError("max_tokens must be a positive integer")
        if self.thinking_budget is not None and self.thinking_budget < 0:
            raise ValidationError("thinking_budget must be >= 0")
        if self.tool_choice is not None:
            self.tool_choice = ToolChoice(self.tool_choice)


StreamTextOptions = GenerateTextOptions


@dataclass
class GenerateTextResult:
    """The outcome of a text generation call."""

    content: list[ContentBlock] = field(default_factory=list)
    stop_reason: StopReason | None = None
    usage: Usage = field(default_factory=Usage)
    model_id: str = ""
    #: Vendor request payload, for diagnostics only.
    raw_request: Any = None
    #: Vendor response object, for diagnostics only.
    raw_response: Any = None

    def text(self) -> str:
        """Return the concatenated text of all text blocks."""
        return concat_text(self.content)

    def tool_calls(self) -> list[ToolCall]:
        """Return every tool call in the output, in order."""
        return [
            b.tool_call
            for b in self.content
            if b.type is ContentBlockType.TOOL_CALL and b.tool_call is not None
        ]


class StreamEventType(str, Enum):
    """Tag of a stream event."""

    CONTENT_DELTA = "content_delta"
    TOOL_CALL_DELTA = "tool_call_delta"
    MESSAGE_DONE = "message_done"
    ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    """One normalized unit of a generation stream.

    A ``tool_call_delta`` carries either a completed ``tool_call`` or a raw
    partial-arguments fragment in ``text_delta``.
    """

    type: StreamEventType
    text_delta: str = ""
    tool_call: ToolCall | None = None
    stop_reason: StopReason | None = None
    usage: Usage | None = None
    error: BaseException | None = None

    @property
    def is_terminal(self) -> bool:
        return self.type in (StreamEventType.MESSAGE_DONE, StreamEventType.ERROR)

    @classmethod
    def content_delta(cls, text: str) -> StreamEvent:
        return cls(type=StreamEventType.CONTENT_DELTA, text_delta=text)

    @classmethod
    def tool_call_delta(
        cls, tool_call: ToolCall | None = None, *, partial_json: str = ""
    ) -> StreamEvent:
        return cls(
            type=StreamEventType.TOOL_CALL_DELTA,
            tool_call=tool_call,
            text_delta=partial_json,
        )

    @classmethod
    def message_done(
        cls, stop_reason: StopReason | None, usage: Usage | None = None
    ) -> StreamEvent:
        return cls(
            type=StreamEventType.MESSAGE_DONE, stop_reason=stop_reason, usage=usage
        )

    @classmethod
    def failed(cls, error: BaseException) -> StreamEvent:
        return cls(type=StreamEventType.ERROR, error=error)
