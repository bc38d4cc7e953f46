"""Registry behavior tests.

Uses ``FakeFactory``/``FakeModel`` from tests.helpers so no vendor client is built.
"""

from __future__ import annotations

import asyncio
import logging
import threading

import pytest

from switchboard.config import ConfigTarget, RegistryConfig
from switchboard.errors import (
    ClientTypeError,
    ConfigurationError,
    ModelAlreadyExistsError,
    ModelCloseError,
    ModelCreationError,
    ModelLoadError,
    ModelNotFoundError,
    UnsupportedProviderError,
)
from switchboard.generation import Capability
from switchboard.providers import MockModel
from switchboard.registry import Registry, default_registry, get_typed_client
from tests.helpers import FakeFactory, FakeModel

pytestmark = pytest.mark.unit


def _target(provider: str = "fake", model: str = "m") -> ConfigTarget:
    return ConfigTarget(provider=provider, model=model)


# =============================================================================
# add_model
# =============================================================================


@pytest.mark.asyncio
async def test_add_model_then_lookup(registry: Registry) -> None:
    model = await registry.add_model("default", _target(model="fast"))

    assert registry.get_default() is model
    assert registry.get_named("default") is model
    assert model.model_id == "fast"
    assert registry.list_models() == ["default"]


@pytest.mark.asyncio
async def test_names_are_unique(registry: Registry) -> None:
    await registry.add_model("a", _target())

    with pytest.raises(ModelAlreadyExistsError):
        await registry.add_model("a", _target(model="other"))
    assert registry.list_models() == ["a"]


@pytest.mark.asyncio
async def test_unsupported_provider_leaves_registry_empty() -> None:
    """No factory for the provider: nothing is created or registered."""
    registry = Registry()

    with pytest.raises(UnsupportedProviderError):
        await registry.add_model(
            "default", ConfigTarget(provider="openai", model="gpt-4o", api_key="x")
        )
    assert registry.list_models() == []
    assert registry.get_default() is None


@pytest.mark.asyncio
async def test_factory_failure_is_wrapped_and_chained(
    registry: Registry, fake_factory: FakeFactory
) -> None:
    cause = ConfigurationError("API key required for fake", hint="set it")
    fake_factory.error = cause

    with pytest.raises(ModelCreationError) as exc:
        await registry.add_model("default", _target())
    assert exc.value.__cause__ is cause
    assert exc.value.hint == "set it"
    assert registry.list_models() == []


@pytest.mark.asyncio
async def test_concurrent_adds_of_one_name_register_exactly_one(
    registry: Registry, fake_factory: FakeFactory
) -> None:
    """Construction runs unlocked; the loser of a race closes its model."""
    fake_factory.gate = asyncio.Event()
    first = asyncio.create_task(registry.add_model("dup", _target(model="one")))
    second = asyncio.create_task(registry.add_model("dup", _target(model="two")))
    await asyncio.sleep(0)
    fake_factory.gate.set()

    results = await asyncio.gather(first, second, return_exceptions=True)

    winners = [r for r in results if isinstance(r, FakeModel)]
    losers = [r for r in results if isinstance(r, ModelAlreadyExistsError)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert registry.get_named("dup") is winners[0]
    loser_model = next(m for m in fake_factory.created if m is not winners[0])
    assert loser_model.close_calls == 1


# =============================================================================
# Lookups
# =============================================================================


@pytest.mark.asyncio
async def test_lookup_misses_return_none_or_empty(registry: Registry) -> None:
    assert registry.get_default() is None
    assert registry.get_named("nope") is None
    assert registry.get_by_provider("fake") == []
    assert registry.get_by_capability(Capability.VISION) == []
    assert registry.list_models() == []


@pytest.mark.asyncio
async def test_filter_by_provider_and_capability(registry: Registry) -> None:
    vision = FakeFactory(
        provider="seer",
        model_kwargs={"capabilities": frozenset({Capability.VISION})},
    )
    registry.register_factory(vision)
    plain = await registry.add_model("plain", _target())
    seer = await registry.add_model("seer", _target(provider="seer"))

    assert registry.get_by_provider("fake") == [plain]
    assert registry.get_by_capability(Capability.VISION) == [seer]
    assert registry.list_registered_providers() == ["fake", "seer"]


def test_register_factory_overwrites_by_provider(registry: Registry) -> None:
    replacement = FakeFactory()
    registry.register_factory(replacement)

    assert registry.list_registered_providers() == ["fake"]


@pytest.mark.asyncio
async def test_reads_during_writes_see_whole_states(registry: Registry) -> None:
    """Reader threads only ever observe the map before or after a mutation."""
    names = [f"m{i}" for i in range(50)]
    observed: list[list[str]] = []
    stop = threading.Event()

    def reader() -> None:
        while not stop.is_set():
            observed.append(registry.list_models())

    thread = threading.Thread(target=reader)
    thread.start()
    try:
        for name in names:
            await registry.add_model(name, _target())
        for name in names:
            await registry.remove_model(name)
    finally:
        stop.set()
        thread.join()

    valid = {tuple(sorted(names[:i])) for i in range(len(names) + 1)}
    valid |= {tuple(sorted(names[i:])) for i in range(len(names) + 1)}
    assert all(tuple(snapshot) in valid for snapshot in observed)


# =============================================================================
# Removal and Teardown
# =============================================================================


@pytest.mark.asyncio
async def test_remove_model_closes_and_forgets(registry: Registry) -> None:
    model = await registry.add_model("a", _target())

    await registry.remove_model("a")

    assert registry.get_named("a") is None
    assert isinstance(model, FakeModel)
    assert model.close_calls == 1


@pytest.mark.asyncio
async def test_remove_missing_model_raises_not_found(registry: Registry) -> None:
    with pytest.raises(ModelNotFoundError):
        await registry.remove_model("ghost")


@pytest.mark.asyncio
async def test_remove_model_survives_close_failure(
    registry: Registry, fake_factory: FakeFactory, caplog: pytest.LogCaptureFixture
) -> None:
    fake_factory.model_kwargs = {"close_error": RuntimeError("socket stuck")}
    await registry.add_model("a", _target())

    with caplog.at_level(logging.WARNING, logger="switchboard.registry"):
        await registry.remove_model("a")

    assert registry.list_models() == []
    assert "socket stuck" in caplog.text


@pytest.mark.asyncio
async def test_aclose_collects_every_failure_and_empties(
    registry: Registry, fake_factory: FakeFactory
) -> None:
    await registry.add_model("ok", _target())
    fake_factory.model_kwargs = {"close_error": RuntimeError("a")}
    await registry.add_model("bad1", _target())
    fake_factory.model_kwargs = {"close_error": RuntimeError("b")}
    await registry.add_model("bad2", _target())

    with pytest.raises(ModelCloseError) as exc:
        await registry.aclose()

    assert sorted(str(e) for e in exc.value.errors) == ["a", "b"]
    assert sorted(exc.value.failures) == ["bad1", "bad2"]
    assert "'bad1': a" in str(exc.value)
    assert registry.list_models() == []
    assert all(m.close_calls == 1 for m in fake_factory.created)


@pytest.mark.asyncio
async def test_custom_logger_receives_registry_events(
    fake_factory: FakeFactory, caplog: pytest.LogCaptureFixture
) -> None:
    custom = logging.getLogger("tests.custom_registry")
    registry = Registry(logger=custom)
    registry.register_factory(fake_factory)

    with caplog.at_level(logging.DEBUG, logger="tests.custom_registry"):
        await registry.add_model("a", _target())

    assert any(r.name == "tests.custom_registry" for r in caplog.records)


# =============================================================================
# Bulk Loading
# =============================================================================


@pytest.mark.asyncio
async def test_load_from_config_adds_all_targets(registry: Registry) -> None:
    await registry.load_from_config(
        {
            "default": {"provider": "fake", "model": "a"},
            "b": {"provider": "fake", "model": "b"},
        }
    )
    assert registry.list_models() == ["b", "default"]


@pytest.mark.asyncio
async def test_load_from_config_aborts_on_first_failure(registry: Registry) -> None:
    config = RegistryConfig(
        targets={
            "first": _target(),
            "broken": _target(provider="unknown"),
            "never": _target(),
        }
    )

    with pytest.raises(ModelLoadError, match="broken") as exc:
        await registry.load_from_config(config)

    assert isinstance(exc.value.__cause__, UnsupportedProviderError)
    assert registry.list_models() == ["first"]


# =============================================================================
# Typed Clients and Defaults
# =============================================================================


@pytest.mark.asyncio
async def test_get_typed_client(registry: Registry, fake_factory: FakeFactory) -> None:
    class SdkClient:
        pass

    client = SdkClient()
    fake_factory.model_kwargs = {"raw_client": client}
    await registry.add_model("typed", _target())

    assert get_typed_client(registry, "typed", SdkClient) is client
    with pytest.raises(ClientTypeError):
        get_typed_client(registry, "typed", dict)
    with pytest.raises(ModelNotFoundError):
        get_typed_client(registry, "missing", SdkClient)


@pytest.mark.asyncio
async def test_get_typed_client_without_client(registry: Registry) -> None:
    await registry.add_model("bare", _target())

    with pytest.raises(ClientTypeError, match="no raw client"):
        get_typed_client(registry, "bare", object)


@pytest.mark.asyncio
async def test_default_registry_serves_bundled_providers() -> None:
    async with default_registry() as registry:
        assert registry.list_registered_providers() == [
            "anthropic",
            "gemini",
            "mock",
            "openai",
            "vertexai",
        ]
        model = await registry.add_model("default", ConfigTarget("mock", "echo"))
        assert isinstance(model, MockModel)

    assert registry.list_models() == []
    assert model.closed is True
