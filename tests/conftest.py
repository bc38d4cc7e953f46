"""Pytest configuration and fixtures.

Provides test double fixtures, environment isolation, logging configuration and
automatic API test skipping. Environment fixtures are autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
import logging
import os

import pytest

from switchboard.config import ConfigTarget
from switchboard.registry import Registry
from tests.helpers import FakeFactory

# =============================================================================
# Test Doubles
# =============================================================================


@pytest.fixture
def fake_factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
def registry(fake_factory: FakeFactory) -> Registry:
    """Registry with only the fake factory registered."""
    reg = Registry()
    reg.register_factory(fake_factory)
    return reg


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Clears OPENAI_*, ANTHROPIC_* and GEMINI_* env vars to prevent test
    pollution. Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("OPENAI_", "ANTHROPIC_", "GEMINI_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# API Test Configuration
# =============================================================================

# Models used for API tests, chosen for cost.
_OPENAI_TEST_MODEL = "gpt-4o-mini"
_ANTHROPIC_TEST_MODEL = "claude-3-5-haiku-latest"
_GEMINI_TEST_MODEL = "gemini-2.5-flash-lite"


@pytest.fixture
def openai_target() -> ConfigTarget:
    """Return an OpenAI target or skip the test if no key is set."""
    if not os.getenv("OPENAI_API_KEY"):
        pytest.skip("OPENAI_API_KEY not set")
    return ConfigTarget(provider="openai", model=_OPENAI_TEST_MODEL)


@pytest.fixture
def anthropic_target() -> ConfigTarget:
    """Return an Anthropic target or skip the test if no key is set."""
    if not os.getenv("ANTHROPIC_API_KEY"):
        pytest.skip("ANTHROPIC_API_KEY not set")
    return ConfigTarget(provider="anthropic", model=_ANTHROPIC_TEST_MODEL)


@pytest.fixture
def gemini_target() -> ConfigTarget:
    """Return a Gemini target or skip the test if no key is set."""
    if not os.getenv("GEMINI_API_KEY"):
        pytest.skip("GEMINI_API_KEY not set")
    return ConfigTarget(provider="gemini", model=_GEMINI_TEST_MODEL)


@pytest.fixture
def vertexai_target() -> ConfigTarget:
    """Return a Vertex AI target or skip the test if no project is set.

    Credentials come from application-default credentials.
    """
    project = os.getenv("GOOGLE_CLOUD_PROJECT")
    if not project:
        pytest.skip("GOOGLE_CLOUD_PROJECT not set")
    return ConfigTarget(
        provider="vertexai",
        model=_GEMINI_TEST_MODEL,
        project_id=project,
        location=os.getenv("GOOGLE_CLOUD_LOCATION", "us-central1"),
    )
