"""Provider implementations."""

from .anthropic import AnthropicFactory, AnthropicModel
from .base import BatchCapableModel, LanguageModel, ProviderFactory
from .gemini import GeminiFactory, GeminiModel
from .mock import MockFactory, MockModel
from .openai import OpenAIFactory, OpenAIModel
from .vertexai import VertexAIFactory, VertexAIModel

__all__ = [
    "AnthropicFactory",
    "AnthropicModel",
    "BatchCapableModel",
    "GeminiFactory",
    "GeminiModel",
    "LanguageModel",
    "MockFactory",
    "MockModel",
    "OpenAIFactory",
    "OpenAIModel",
    "ProviderFactory",
    "VertexAIFactory",
    "VertexAIModel",
]
