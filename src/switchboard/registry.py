"""Named model registry.

The registry maps names to configured ``LanguageModel`` instances and
provider names to the factories that build them. One lock guards both maps
and is only ever held for the map mutation itself: model construction and
``aclose`` (both may hit the network) run outside it, so a slow vendor call
never blocks readers.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any, TypeVar

from switchboard.config import RegistryConfig
from switchboard.errors import (
    ClientTypeError,
    ModelAlreadyExistsError,
    ModelCloseError,
    ModelCreationError,
    ModelLoadError,
    ModelNotFoundError,
    SwitchboardError,
    UnsupportedProviderError,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from switchboard.config import ConfigTarget
    from switchboard.generation import Capability
    from switchboard.providers.base import LanguageModel, ProviderFactory

DEFAULT_MODEL = "default"

T = TypeVar("T")


class Registry:
    """Thread-safe map of model names to configured models.

    Example:
        registry = default_registry()
        await registry.add_model("default", ConfigTarget("openai", "gpt-4o"))
        model = registry.get_default()
    """

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        """Create an empty registry.

        Args:
            logger: Replaces the module logger for registry events.
        """
        self._factories: dict[str, ProviderFactory] = {}
        self._models: dict[str, LanguageModel] = {}
        self._lock = threading.Lock()
        self._logger = logger or logging.getLogger(__name__)

    def register_factory(self, factory: ProviderFactory) -> None:
        """Register *factory* under its provider name, replacing any previous one."""
        with self._lock:
            self._factories[factory.provider] = factory

    async def add_model(self, name: str, config: ConfigTarget) -> LanguageModel:
        """Build a model from *config* and register it as *name*.

        Raises:
            ModelAlreadyExistsError: *name* is taken.
            UnsupportedProviderError: No factory serves ``config.provider``.
            ModelCreationError: The factory failed; the cause is chained.
        """
        with self._lock:
            taken = name in self._models
            factory = self._factories.get(config.provider)
        if taken:
            raise ModelAlreadyExistsError(f"model already exists: {name!r}")
        if factory is None:
            raise UnsupportedProviderError(
                f"unsupported provider: {config.provider!r}",
                hint="Register a factory for it with register_factory().",
            )

        try:
            model = await factory.create_model(config)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise ModelCreationError(
                f"failed to create model {name!r}: {e}",
                hint=getattr(e, "hint", None),
            ) from e

        with self._lock:
            # Another add_model may have claimed the name while we were building.
            inserted = name not in self._models
            if inserted:
                self._models[name] = model
        if not inserted:
            await self._close_quietly(name, model)
            raise ModelAlreadyExistsError(f"model already exists: {name!r}")

        self._logger.debug(
            "Model added: %s (%s/%s)", name, model.provider, model.model_id
        )
        return model

    def get_default(self) -> LanguageModel | None:
        """Return the model registered as ``"default"``, or None."""
        return self.get_named(DEFAULT_MODEL)

    def get_named(self, name: str) -> LanguageModel | None:
        """Return the model registered as *name*, or None."""
        with self._lock:
            return self._models.get(name)

    def get_by_provider(self, provider: str) -> list[LanguageModel]:
        """Return every model served by *provider*."""
        with self._lock:
            models = list(self._models.values())
        return [m for m in models if m.provider == provider]

    def get_by_capability(self, capability: Capability) -> list[LanguageModel]:
        """Return every model advertising *capability*."""
        with self._lock:
            models = list(self._models.values())
        return [m for m in models if capability in m.capabilities]

    def list_models(self) -> list[str]:
        """Return registered model names, sorted."""
        with self._lock:
            return sorted(self._models)

    def list_registered_providers(self) -> list[str]:
        """Return provider names with a registered factory, sorted."""
        with self._lock:
            return sorted(self._factories)

    async def remove_model(self, name: str) -> None:
        """Unregister *name* and close its model.

        The entry is removed even if closing fails; the failure is logged.

        Raises:
            ModelNotFoundError: *name* is not registered.
        """
        with self._lock:
            model = self._models.pop(name, None)
        if model is None:
            raise ModelNotFoundError(f"model not found: {name!r}")
        await self._close_quietly(name, model)
        self._logger.debug("Model removed: %s", name)

    async def load_from_config(
        self, config: RegistryConfig | Mapping[str, Any]
    ) -> None:
        """Add every target in *config*, stopping at the first failure.

        Models added before the failure stay registered.

        Raises:
            ModelLoadError: A target could not be added; the cause is chained.
        """
        if not isinstance(config, RegistryConfig):
            config = RegistryConfig.from_mapping(config)
        for name, target in config.targets.items():
            try:
                await self.add_model(name, target)
            except SwitchboardError as e:
                raise ModelLoadError(
                    f"failed to load model {name!r}: {e}", hint=e.hint
                ) from e

    async def aclose(self) -> None:
        """Close every model and empty the registry.

        The registry is empty afterwards even when some models fail to close.

        Raises:
            ModelCloseError: One or more models failed to close.
        """
        with self._lock:
            models, self._models = self._models, {}

        failures: dict[str, BaseException] = {}
        for name, model in models.items():
            try:
                await model.aclose()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.warning("Failed to close model %s: %s", name, e)
                failures[name] = e
        if failures:
            raise ModelCloseError(failures)

    async def _close_quietly(self, name: str, model: LanguageModel) -> None:
        try:
            await model.aclose()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.warning("Failed to close model %s: %s", name, e)

    async def __aenter__(self) -> Registry:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def get_typed_client(registry: Registry, name: str, expected_type: type[T]) -> T:
    """Return the vendor SDK client behind model *name*, checked against a type.

    Example:
        from openai import AsyncOpenAI
        client = get_typed_client(registry, "default", AsyncOpenAI)

    Raises:
        ModelNotFoundError: *name* is not registered.
        ClientTypeError: The model has no client, or it has another type.
    """
    model = registry.get_named(name)
    if model is None:
        raise ModelNotFoundError(f"model not found: {name!r}")
    client = model.raw_client
    if client is None:
        raise ClientTypeError(f"model {name!r} has no raw client")
    if not isinstance(client, expected_type):
        raise ClientTypeError(
            f"model {name!r} client is {type(client).__name__}, "
            f"expected {expected_type.__name__}"
        )
    return client


def default_registry(*, logger: logging.Logger | None = None) -> Registry:
    """Return a registry with every bundled provider factory registered."""
    from switchboard.providers import (
        AnthropicFactory,
        GeminiFactory,
        MockFactory,
        OpenAIFactory,
        VertexAIFactory,
    )

    registry = Registry(logger=logger)
    registry.register_factory(OpenAIFactory())
    registry.register_factory(AnthropicFactory())
    registry.register_factory(GeminiFactory())
    registry.register_factory(VertexAIFactory())
    registry.register_factory(MockFactory())
    return registry
