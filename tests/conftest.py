import pytest

from genmux.providers.scripted import ScriptedProvider
from genmux.streaming import CollectingSink


@pytest.fixture
def mock_env(monkeypatch):
    """Mock environment variables for API keys."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-openai")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test-anthropic")
    monkeypatch.setenv("GOOGLE_API_KEY", "AIza-test-google")
    monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-test-deepseek")
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-test")


@pytest.fixture
def no_env(monkeypatch):
    """Remove every credential variable a provider could fall back to."""
    for var in (
        "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GOOGLE_API_KEY", "GEMINI_API_KEY",
        "DEEPSEEK_API_KEY", "OPENROUTER_API_KEY", "XAI_API_KEY", "GROK_API_KEY",
        "HUGGINGFACE_API_KEY", "HF_TOKEN", "GROQ_API_KEY", "TOGETHER_API_KEY",
        "MISTRAL_API_KEY", "AZURE_OPENAI_API_KEY", "GENMUX_ENV",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def scripted():
    """Factory for a scripted provider with instant retries."""
    def factory(*responses, **options):
        options.setdefault("initial_retry_delay", 0)
        options.setdefault("max_retry_delay", 0)
        return ScriptedProvider(responses=list(responses), **options)
    return factory


@pytest.fixture
def sink():
    return CollectingSink()


@pytest.fixture
def weather_call():
    return {"tool_calls": [{"name": "get_weather", "arguments": {"location": "Boston"}}]}
