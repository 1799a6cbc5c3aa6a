import pytest

from genmux.config import load_settings, resolve_options
from genmux.errors import ConfigurationError, UnsupportedOperationError, ValidationError
from genmux.providers.anthropic import AnthropicProvider
from genmux.providers.openai import ChatCompletionsAdapter, OpenAIProvider, ResponsesAdapter
from genmux.providers.scripted import ScriptedProvider
from genmux.registry import ProviderRegistry, SupportsEmbeddings, SupportsStreaming, build_default_registry
from genmux.selector import requires_rich_shape, select_adapter
from genmux.types import Action, FilePart, ImagePart, Message, Prompt, TextPart


SIMPLE_PROMPTS = [
    Prompt(messages=("Hello",)),
    Prompt(messages=("Hello",), instructions="Be terse", options={"temperature": 0}),
    Prompt(messages=("Weather?",), actions=(Action(name="get_weather", parameters={"type": "object"}),)),
    Prompt(messages=("hi",), options={"response_format": {"type": "json_object"}}),
    Prompt(messages=(Message(role="user", content=[TextPart("only"), TextPart("text")]),)),
]

RICH_PROMPTS = [
    Prompt(messages=("Extract",), options={"json_schema": {"type": "object"}}),
    Prompt(messages=(Message(role="user", content=[TextPart("What is this?"), ImagePart(url="https://x/cat.png")]),)),
    Prompt(messages=(Message(role="user", content=[FilePart(file_id="file-1")]),)),
    Prompt(messages=("continue",), previous_response_id="resp_123"),
]


class TestSelection:
    @pytest.fixture
    def openai(self, mock_env):
        return OpenAIProvider(client=object())

    @pytest.mark.parametrize("prompt", SIMPLE_PROMPTS)
    def test_simple_prompts_select_chat(self, openai, prompt):
        assert not requires_rich_shape(prompt)
        assert isinstance(openai.select_adapter(prompt), ChatCompletionsAdapter)

    @pytest.mark.parametrize("prompt", RICH_PROMPTS)
    def test_rich_prompts_select_responses(self, openai, prompt):
        assert requires_rich_shape(prompt)
        assert isinstance(openai.select_adapter(prompt), ResponsesAdapter)

    @pytest.mark.parametrize("prompt", SIMPLE_PROMPTS + RICH_PROMPTS)
    def test_exactly_one_adapter_supports_each_prompt(self, openai, prompt):
        assert sum(1 for a in openai.adapters if a.supports(prompt)) == 1

    def test_no_adapter(self, openai):
        with pytest.raises(ValidationError):
            select_adapter([openai.adapters[0]], RICH_PROMPTS[0])

    def test_ambiguous_adapters(self, openai):
        both = [ChatCompletionsAdapter(openai, universal=True), ResponsesAdapter(openai)]
        with pytest.raises(ConfigurationError, match="Ambiguous"):
            select_adapter(both, RICH_PROMPTS[0])


class TestRegistry:
    def test_unknown_tag_lists_known_tags(self):
        registry = build_default_registry()
        with pytest.raises(ConfigurationError) as excinfo:
            registry.resolve("nonexistent")
        message = str(excinfo.value)
        assert "nonexistent" in message
        assert "openai" in message and "anthropic" in message

    def test_tags_are_case_insensitive_with_aliases(self):
        registry = build_default_registry()
        assert registry.resolve("OpenAI").provider_cls is OpenAIProvider
        assert registry.resolve("claude").provider_cls is AnthropicProvider
        assert "GOOGLE" in registry
        assert "nope" not in registry

    def test_capabilities_are_frozen_at_registration(self):
        registry = build_default_registry()
        assert registry.resolve("openai").supports("embed")
        assert not registry.resolve("anthropic").supports("embed")
        assert not registry.resolve("bedrock").supports("list_models")

    def test_unknown_capability_rejected(self):
        class Weird(ScriptedProvider):
            capabilities = frozenset({"teleport"})

        with pytest.raises(ConfigurationError, match="teleport"):
            ProviderRegistry().register("weird", Weird)

    def test_create(self):
        provider = build_default_registry().create("scripted", {"responses": ["hi"]})
        assert isinstance(provider, ScriptedProvider)
        assert isinstance(provider, SupportsStreaming)
        assert isinstance(provider, SupportsEmbeddings)

    def test_missing_credential(self, no_env):
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            build_default_registry().create("openai")

    def test_invalid_options(self, mock_env):
        with pytest.raises(ConfigurationError, match="Invalid options"):
            build_default_registry().create("openai", {"max_retries": -1})

    @pytest.mark.asyncio
    async def test_anthropic_declines_embeddings(self, mock_env):
        provider = AnthropicProvider(client=object())
        with pytest.raises(UnsupportedOperationError):
            await provider.embed("hello")


class TestConfig:
    def test_layering(self):
        settings = {"openai": {"model": "gpt-4o", "temperature": 0.2, "extra": {"a": 1}}}
        resolved = resolve_options(
            settings, "OpenAI",
            overrides={"temperature": 0.9, "extra": {"b": 2}, "max_tokens": None},
            defaults={"model": "default", "timeout": 30},
        )
        assert resolved == {
            "model": "gpt-4o",
            "timeout": 30,
            "temperature": 0.9,
            "extra": {"a": 1, "b": 2},
        }
        assert settings["openai"]["temperature"] == 0.2

    def test_environment_keyed(self, no_env):
        source = {
            "development": {"openai": {"model": "gpt-4o-mini"}},
            "production": {"openai": {"model": "gpt-4o"}},
        }
        assert load_settings(source)["openai"]["model"] == "gpt-4o-mini"
        assert load_settings(source, environment="production")["openai"]["model"] == "gpt-4o"

    def test_environment_from_variable(self, monkeypatch):
        monkeypatch.setenv("GENMUX_ENV", "production")
        source = {"production": {"anthropic": {"max_tokens": 2048}}}
        assert load_settings(source) == {"anthropic": {"max_tokens": 2048}}

    def test_yaml_file(self, tmp_path, no_env):
        path = tmp_path / "genmux.yaml"
        path.write_text("development:\n  gemini:\n    model: gemini-2.0-flash\n")
        assert load_settings(path) == {"gemini": {"model": "gemini-2.0-flash"}}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_settings(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("openai: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_settings(path)

    def test_provider_options_must_be_mapping(self):
        with pytest.raises(ConfigurationError):
            resolve_options({"openai": "gpt-4o"}, "openai")

    def test_host_alias_and_env_credential(self, mock_env):
        provider = OpenAIProvider({"host": "http://localhost:9999/v1"}, client=object())
        assert provider.options.base_url == "http://localhost:9999/v1"
        assert provider.options.api_key == "sk-test-openai"
        assert provider.options.model == "gpt-4o-mini"

    def test_overrides_win(self, mock_env):
        provider = OpenAIProvider({"model": "gpt-4o"}, client=object(), model="o3-mini")
        assert provider.options.model == "o3-mini"

    def test_unknown_keys_are_extras(self, mock_env):
        provider = OpenAIProvider({"service_tier": "flex"}, client=object())
        assert provider.options.extras == {"service_tier": "flex"}
