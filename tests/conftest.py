"""Shared pytest fixtures for RMRI tests."""

import pytest
from unittest.mock import AsyncMock, Mock

from rmri.confidence.engine import ConfidenceEngine
from rmri.llm.call_layer import ModelCallLayer
from rmri.llm.health import ProviderHealthRegistry
from rmri.models.analysis import Finding, Methodology, MicroOutput
from rmri.models.generation import ProviderType
from rmri.orchestration.options import OrchestrationConfig
from rmri.storage.context import VersionedContextStore
from rmri.storage.memory import InMemoryRecordStore
from tests.helpers.fake_providers import ScriptedProvider, research_responder


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests of a single component")
    config.addinivalue_line("markers", "integration: end-to-end tests over scripted providers")
    config.addinivalue_line("markers", "slow: tests that wait on real timers")


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "tests/unit/" in item.nodeid:
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Mock environment variables for testing."""
    env_vars = {
        "CEREBRAS_API_KEY": "test-cerebras-key",
        "OPENAI_API_KEY": "test-openai-key",
        "ANTHROPIC_API_KEY": "test-anthropic-key",
        "HUGGINGFACE_API_KEY": "test-hf-key",
    }
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    return env_vars


@pytest.fixture
def health_registry():
    """Fresh health registry so tests never share provider state."""
    return ProviderHealthRegistry()


@pytest.fixture
def research_provider():
    """Single provider answering every tier's prompt with valid JSON."""
    return ScriptedProvider(ProviderType.OPENAI, default=research_responder, confidence=0.8)


@pytest.fixture
def call_layer(research_provider, health_registry):
    return ModelCallLayer(
        providers={ProviderType.OPENAI: research_provider},
        health=health_registry,
    )


@pytest.fixture
def confidence_engine():
    return ConfidenceEngine()


@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def context_store():
    return VersionedContextStore()


@pytest.fixture
def fast_config():
    """Config without the inter-iteration pause."""
    return OrchestrationConfig(inter_iteration_delay_s=0, job_timeout_s=5)


@pytest.fixture
def micro_outputs():
    """Three Micro outputs: two on graph learning, one on climate."""
    return [
        MicroOutput(
            item_id="paper-a",
            title="Graph networks for molecules",
            year=2019,
            citations=40,
            gaps=[Finding(text="Scalability to large molecules", priority="high")],
            methodology=Methodology(techniques=["deep learning"]),
            fingerprint=sorted(["graph", "molecules", "network", "property", "prediction"]),
        ),
        MicroOutput(
            item_id="paper-b",
            title="Message passing for chemistry",
            year=2022,
            citations=12,
            gaps=[
                Finding(text="Scalability to large molecules!", priority="high"),
                Finding(text="Lack of comparative evaluation with baselines", priority="medium"),
            ],
            methodology=Methodology(techniques=["deep learning", "simulation"]),
            fingerprint=sorted(["graph", "molecules", "message", "passing", "chemistry"]),
        ),
        MicroOutput(
            item_id="paper-c",
            title="Diffusion downscaling of climate models",
            year=2023,
            citations=3,
            gaps=[Finding(text="Uncertainty quantification for extremes", priority="medium")],
            methodology=Methodology(techniques=["diffusion"]),
            fingerprint=sorted(["climate", "diffusion", "downscaling", "weather", "extremes"]),
        ),
    ]


@pytest.fixture
def mock_openai_client():
    """Mock OpenAI client."""
    client = AsyncMock()

    completion = Mock()
    completion.choices = [Mock(message=Mock(content="- Finding one\n- Finding two"), finish_reason="stop")]
    usage_mock = Mock()
    usage_mock.prompt_tokens = 10
    usage_mock.completion_tokens = 5
    usage_mock.total_tokens = 15
    completion.usage = usage_mock
    completion.model = "gpt-4o-mini"

    client.chat.completions.create = AsyncMock(return_value=completion)
    return client


@pytest.fixture
def mock_anthropic_client():
    """Mock Anthropic client."""
    client = AsyncMock()

    message = Mock()
    message.content = [Mock(type="text", text="Test response"), Mock(type="tool_use", text="ignored")]
    message.stop_reason = "end_turn"
    usage_mock = Mock()
    usage_mock.input_tokens = 10
    usage_mock.output_tokens = 5
    message.usage = usage_mock

    client.messages.create = AsyncMock(return_value=message)
    return client
