"""Vertex AI provider: the Gemini adapter on Google Cloud's backend.

Request and response mapping is shared with ``GeminiModel``; only client
construction and credentials differ. Without an API key the google-genai
client falls back to application-default credentials.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from switchboard.errors import ConfigurationError
from switchboard.providers.gemini import GeminiModel

if TYPE_CHECKING:
    from switchboard.config import ConfigTarget

PROVIDER = "vertexai"


class VertexAIFactory:
    """Creates ``VertexAIModel`` instances."""

    provider = PROVIDER

    async def create_model(self, config: ConfigTarget) -> VertexAIModel:
        """Validate project, location and model; the client is created lazily."""
        if not config.project_id:
            raise ConfigurationError(
                "Vertex AI project ID is required",
                hint="Set project_id=... on the ConfigTarget.",
            )
        if not config.location:
            raise ConfigurationError(
                "Vertex AI location is required",
                hint="Set location=... (e.g. 'us-central1') on the ConfigTarget.",
            )
        if not config.model:
            raise ConfigurationError(
                f"Model name required for {PROVIDER}",
                hint="Set model=... on the ConfigTarget.",
            )
        return VertexAIModel(config)


class VertexAIModel(GeminiModel):
    """Gemini served through Vertex AI. No batch support."""

    provider_name = PROVIDER
    display_name = "Vertex AI"

    def _build_client(self, genai: Any, http_options: Any) -> Any:
        # google-genai rejects an API key combined with project/location, so a
        # key selects express mode and its absence selects ADC.
        if self.config.api_key:
            return genai.Client(
                vertexai=True,
                api_key=self.config.api_key,
                http_options=http_options,
            )
        return genai.Client(
            vertexai=True,
            project=self.config.project_id,
            location=self.config.location,
            http_options=http_options,
        )
