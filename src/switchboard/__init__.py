"""Switchboard: one interface over OpenAI, Anthropic and Gemini models.

Public API:
    - Registry / default_registry(): named, configured models
    - ConfigTarget: how to build one model
    - GenerateTextOptions / Message: request types
    - StreamIterator: pull-based streaming
    - BatchRequest / wait_for_batch(): vendor batch jobs
"""

from __future__ import annotations

import logging

from switchboard.batch import (
    BatchJob,
    BatchRequest,
    BatchRequestItem,
    BatchResult,
    BatchStatus,
    BatchStorage,
    ListBatchOptions,
    wait_for_batch,
)
from switchboard.config import ConfigTarget, RegistryConfig
from switchboard.content import AudioPart, FilePart, ImageDetail, ImagePart
from switchboard.errors import (
    APIError,
    AuthenticationError,
    BadRequestError,
    ClientTypeError,
    ConfigurationError,
    InsufficientCreditsError,
    InternalError,
    ModelAlreadyExistsError,
    ModelCloseError,
    ModelCreationError,
    ModelLoadError,
    ModelNotFoundError,
    RateLimitError,
    RegistryError,
    ServiceUnavailableError,
    SwitchboardError,
    UnsupportedProviderError,
    ValidationError,
)
from switchboard.generation import (
    Capability,
    GenerateTextOptions,
    GenerateTextResult,
    ResponseFormat,
    SafetySetting,
    StopReason,
    StreamEvent,
    StreamEventType,
    StreamTextOptions,
    ToolChoice,
    Usage,
)
from switchboard.messages import (
    ContentBlock,
    ContentBlockType,
    Message,
    Role,
    ToolCall,
    ToolDefinition,
    ToolResult,
    tool_call_block,
    tool_result_block,
)
from switchboard.providers.base import BatchCapableModel, LanguageModel, ProviderFactory
from switchboard.registry import (
    DEFAULT_MODEL,
    Registry,
    default_registry,
    get_typed_client,
)
from switchboard.stream import StreamIterator

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("switchboard-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("switchboard").addHandler(logging.NullHandler())

__all__ = [
    "DEFAULT_MODEL",
    "APIError",
    "AudioPart",
    "AuthenticationError",
    "BadRequestError",
    "BatchCapableModel",
    "BatchJob",
    "BatchRequest",
    "BatchRequestItem",
    "BatchResult",
    "BatchStatus",
    "BatchStorage",
    "Capability",
    "ClientTypeError",
    "ConfigTarget",
    "ConfigurationError",
    "ContentBlock",
    "ContentBlockType",
    "FilePart",
    "GenerateTextOptions",
    "GenerateTextResult",
    "ImageDetail",
    "ImagePart",
    "InsufficientCreditsError",
    "InternalError",
    "LanguageModel",
    "ListBatchOptions",
    "Message",
    "ModelAlreadyExistsError",
    "ModelCloseError",
    "ModelCreationError",
    "ModelLoadError",
    "ModelNotFoundError",
    "ProviderFactory",
    "RateLimitError",
    "Registry",
    "RegistryConfig",
    "RegistryError",
    "ResponseFormat",
    "Role",
    "SafetySetting",
    "ServiceUnavailableError",
    "StopReason",
    "StreamEvent",
    "StreamEventType",
    "StreamIterator",
    "StreamTextOptions",
    "SwitchboardError",
    "ToolCall",
    "ToolChoice",
    "ToolDefinition",
    "ToolResult",
    "UnsupportedProviderError",
    "Usage",
    "ValidationError",
    "default_registry",
    "get_typed_client",
    "tool_call_block",
    "tool_result_block",
    "wait_for_batch",
]
