"""Vendor-neutral conversation vocabulary: roles, content blocks, tools."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import json
from typing import Any

from pydantic import BaseModel

from switchboard.content import AudioPart, FilePart, ImageDetail, ImagePart
from switchboard.errors import ValidationError


class Role(str, Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class ContentBlockType(str, Enum):
    """Tag of a content block."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    FILE = "file"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model.

    ``arguments`` is the raw JSON text the model produced; it is opaque to the
    adapters and only decoded on request.
    """

    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> Any:
        """Decode ``arguments`` as JSON."""
        try:
            return json.loads(self.arguments or "{}")
        except json.JSONDecodeError as e:
            raise ValidationError(
                f"Tool call {self.name!r} has malformed JSON arguments"
            ) from e


@dataclass(frozen=True)
class ToolResult:
    """The caller's answer to a tool call."""

    tool_call_id: str
    content: str
    is_error: bool = False


ToolParameters = dict[str, Any] | str | type[BaseModel]


@dataclass(frozen=True)
class ToolDefinition:
    """A function the model may call.

    ``parameters`` is a JSON Schema given as a dict, as JSON text, or as a
    Pydantic model class.
    """

    name: str
    description: str = ""
    parameters: ToolParameters | None = None

    def schema(self) -> dict[str, Any] | None:
        """Return the parameter schema as a dict.

        Raises ValidationError when JSON text does not decode to an object.
        """
        params = self.parameters
        if params is None:
            return None
        if isinstance(params, dict):
            return params
        if isinstance(params, type) and issubclass(params, BaseModel):
            return params.model_json_schema()
        try:
            decoded = json.loads(params)
        except json.JSONDecodeError as e:
            raise ValidationError(
                f"Failed to decode tool parameters for {self.name!r}",
                hint="Tool parameters must be a JSON Schema object.",
            ) from e
        if not isinstance(decoded, dict):
            raise ValidationError(
                f"Tool parameters for {self.name!r} must be a JSON object"
            )
        return decoded


_PAYLOAD_FIELDS: dict[ContentBlockType, str] = {
    ContentBlockType.TEXT: "text",
    ContentBlockType.IMAGE: "image",
    ContentBlockType.AUDIO: "audio",
    ContentBlockType.FILE: "file",
    ContentBlockType.TOOL_CALL: "tool_call",
    ContentBlockType.TOOL_RESULT: "tool_result",
}


@dataclass(frozen=True)
class ContentBlock:
    """One piece of message content; exactly one payload matches ``type``."""

    type: ContentBlockType
    text: str | None = None
    image: ImagePart | None = None
    audio: AudioPart | None = None
    file: FilePart | None = None
    tool_call: ToolCall | None = None
    tool_result: ToolResult | None = None

    def __post_init__(self) -> None:
        """Reject blocks whose populated payload disagrees with the tag."""
        try:
            block_type = ContentBlockType(self.type)
        except ValueError as e:
            raise ValidationError(f"Unknown content block type: {self.type!r}") from e
        object.__setattr__(self, "type", block_type)

        expected = _PAYLOAD_FIELDS[block_type]
        populated = [
            name for name in _PAYLOAD_FIELDS.values() if getattr(self, name) is not None
        ]
        if populated != [expected]:
            raise ValidationError(
                f"{block_type.value} block must carry exactly one payload "
                f"({expected!r}), got {populated or 'none'}"
            )

    @classmethod
    def of_text(cls, text: str) -> ContentBlock:
        return cls(type=ContentBlockType.TEXT, text=text)

    @classmethod
    def of_image(cls, image: ImagePart) -> ContentBlock:
        return cls(type=ContentBlockType.IMAGE, image=image)

    @classmethod
    def of_audio(cls, audio: AudioPart) -> ContentBlock:
        return cls(type=ContentBlockType.AUDIO, audio=audio)

    @classmethod
    def of_file(cls, file: FilePart) -> ContentBlock:
        return cls(type=ContentBlockType.FILE, file=file)


def tool_call_block(call_id: str, name: str, arguments: str = "{}") -> ContentBlock:
    """Create a tool-call content block."""
    return ContentBlock(
        type=ContentBlockType.TOOL_CALL,
        tool_call=ToolCall(id=call_id, name=name, arguments=arguments),
    )


def tool_result_block(
    tool_call_id: str, content: str, *, is_error: bool = False
) -> ContentBlock:
    """Create a tool-result content block."""
    return ContentBlock(
        type=ContentBlockType.TOOL_RESULT,
        tool_result=ToolResult(
            tool_call_id=tool_call_id, content=content, is_error=is_error
        ),
    )


_ALLOWED_BLOCKS: dict[Role, frozenset[ContentBlockType]] = {
    Role.USER: frozenset(
        {
            ContentBlockType.TEXT,
            ContentBlockType.IMAGE,
            ContentBlockType.AUDIO,
            ContentBlockType.FILE,
        }
    ),
    Role.ASSISTANT: frozenset({ContentBlockType.TEXT, ContentBlockType.TOOL_CALL}),
    Role.SYSTEM: frozenset({ContentBlockType.TEXT}),
    Role.TOOL: frozenset({ContentBlockType.TOOL_RESULT}),
}


@dataclass(frozen=True)
class Message:
    """A single conversation turn.

    The role restricts which block kinds may appear: only assistant messages
    carry tool calls and only tool messages carry tool results.
    """

    role: Role
    content: list[ContentBlock] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Coerce the role and enforce the role/block invariant."""
        try:
            role = Role(self.role)
        except ValueError as e:
            raise ValidationError(f"Unknown message role: {self.role!r}") from e
        object.__setattr__(self, "role", role)

        allowed = _ALLOWED_BLOCKS[role]
        for block in self.content:
            if block.type not in allowed:
                raise ValidationError(
                    f"{role.value} messages cannot carry {block.type.value} blocks"
                )

    @classmethod
    def text(cls, role: Role | str, text: str) -> Message:
        """Create a message with a single text block."""
        return cls(role=Role(role), content=[ContentBlock.of_text(text)])

    @classmethod
    def image(
        cls,
        role: Role | str,
        image_url: str,
        detail: ImageDetail = ImageDetail.AUTO,
    ) -> Message:
        """Create a message with a single image block."""
        return cls(
            role=Role(role),
            content=[ContentBlock.of_image(ImagePart(url=image_url, detail=detail))],
        )

    @classmethod
    def audio(cls, role: Role | str, audio_url: str) -> Message:
        """Create a message with a single audio block."""
        return cls(
            role=Role(role), content=[ContentBlock.of_audio(AudioPart(url=audio_url))]
        )

    def has_media(self) -> bool:
        """Whether any block is an image or audio part."""
        return any(
            b.type in (ContentBlockType.IMAGE, ContentBlockType.AUDIO)
            for b in self.content
        )


def concat_text(blocks: list[ContentBlock]) -> str:
    """Concatenate the text of every text block, in order."""
    return "".join(
        b.text or "" for b in blocks if b.type is ContentBlockType.TEXT
    )
