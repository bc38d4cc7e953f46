"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off model classes as coverage expands.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from switchboard.config import ConfigTarget
from switchboard.generation import (
    Capability,
    GenerateTextOptions,
    GenerateTextResult,
    StopReason,
    StreamEvent,
)
from switchboard.messages import ContentBlock
from switchboard.stream import StreamIterator, launch_stream


@dataclass
class FakeModel:
    """LanguageModel test double.

    Records close calls and can be told to fail on close. Use to test registry
    behavior without building vendor clients.
    """

    provider: str = "fake"
    model_id: str = "fake-model"
    capabilities: frozenset[Capability] = frozenset(
        {Capability.TEXT_GENERATION, Capability.STREAMING}
    )
    raw_client: Any = None
    close_error: Exception | None = None
    close_calls: int = 0

    async def generate_text(self, opts: GenerateTextOptions) -> GenerateTextResult:
        del opts
        return GenerateTextResult(
            content=[ContentBlock.of_text("ok")],
            stop_reason=StopReason.END_TURN,
            model_id=self.model_id,
        )

    async def stream_text(self, opts: GenerateTextOptions) -> StreamIterator:
        del opts

        async def events():
            yield StreamEvent.content_delta("ok")
            yield StreamEvent.message_done(StopReason.END_TURN)

        return launch_stream(events(), provider=self.provider, on_error=lambda e: e)

    async def aclose(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error


@dataclass
class FakeFactory:
    """ProviderFactory test double.

    ``error`` makes ``create_model`` fail; ``gate`` (an ``asyncio.Event``)
    holds construction until the test releases it.
    """

    provider: str = "fake"
    error: Exception | None = None
    gate: asyncio.Event | None = None
    model_kwargs: dict[str, Any] = field(default_factory=dict)
    created: list[FakeModel] = field(default_factory=list)

    async def create_model(self, config: ConfigTarget) -> FakeModel:
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        model = FakeModel(
            provider=self.provider, model_id=config.model, **self.model_kwargs
        )
        self.created.append(model)
        return model
