"""Root-level test configuration and fixtures."""

import pytest

from tests.shared.ai_mock import ScriptedClient
from tests.shared.llm_mock import create_mock_get_async_model
from wfgen.core.settings import WfgenSettings
from wfgen.registry.templates import TemplateRegistry

_ENV_VARS = (
    "WFGEN_PROVIDER",
    "WFGEN_BASE_URL",
    "WFGEN_MODEL",
    "WFGEN_MAX_CONCURRENCY",
    "WFGEN_REQUEST_TIMEOUT",
    "WFGEN_CACHE_TTL",
    "WFGEN_CACHE_SIZE",
    "WFGEN_COMPLEXITY_THRESHOLD",
)


@pytest.fixture(autouse=True, scope="function")
def mock_llm_calls(monkeypatch, request):
    """Auto-applied fixture that blocks real ``llm`` model lookups.

    Tests that drive the llm backend configure responses through the returned
    mock (also available as ``request.node.mock_llm``).
    """
    mock_get_async_model = create_mock_get_async_model()
    monkeypatch.setattr("llm.get_async_model", mock_get_async_model)
    request.node.mock_llm = mock_get_async_model

    yield mock_get_async_model

    mock_get_async_model.reset()


@pytest.fixture(autouse=True)
def isolate_settings(monkeypatch, tmp_path):
    """Keep tests away from the user's settings file and WFGEN_* environment."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr("pathlib.Path.home", lambda: home)
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def registry():
    return TemplateRegistry()


@pytest.fixture
def offline_client():
    """AI client whose every request fails as if the service were down."""
    return ScriptedClient()


@pytest.fixture
def fast_settings():
    """Settings with no retry wait, so fallback paths run instantly."""
    settings = WfgenSettings()
    settings.generation.retry_wait = 0
    return settings
