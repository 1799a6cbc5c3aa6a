import pytest

from genmux.client import GenerationClient
from genmux.errors import ConfigurationError, UnsupportedOperationError
from genmux.providers.scripted import ScriptedProvider


def settings(*responses, **options):
    return {"test": {"responses": list(responses), "initial_retry_delay": 0, **options}}


class TestGenerationClient:

    def test_provider_is_cached_per_tag(self):
        client = GenerationClient(settings("hi"))
        provider = client.provider("test")

        assert isinstance(provider, ScriptedProvider)
        assert client.provider("test") is provider
        # Aliases and case resolve to the same instance
        assert client.provider("Scripted") is provider

    def test_overrides_build_a_fresh_provider(self):
        client = GenerationClient(settings("hi", model="configured"))
        cached = client.provider("test")
        custom = client.provider("test", model="override")

        assert custom is not cached
        assert custom.options.model == "override"
        assert cached.options.model == "configured"
        assert client.provider("test") is cached

    def test_none_overrides_are_ignored(self):
        client = GenerationClient(settings("hi"))
        assert client.provider("test", model=None) is client.provider("test")

    def test_environment_keyed_settings(self):
        client = GenerationClient(
            {
                "development": {"test": {"model": "dev-model"}},
                "production": {"test": {"model": "prod-model"}},
            },
            environment="production",
        )
        assert client.provider("test").options.model == "prod-model"

    def test_settings_under_an_alias(self, mock_env):
        client = GenerationClient({"claude": {"model": "claude-custom"}, "Scripted": {"model": "s-1"}})

        assert client.provider("anthropic").options.model == "claude-custom"
        assert client.provider("claude").options.model == "claude-custom"
        assert client.provider("test").options.model == "s-1"

    def test_settings_for_one_provider_under_two_tags(self):
        with pytest.raises(ConfigurationError, match="configured more than once"):
            GenerationClient({"anthropic": {}, "claude": {}})

    def test_unknown_provider(self):
        client = GenerationClient()
        with pytest.raises(ConfigurationError, match="Unknown provider 'nope'"):
            client.provider("nope")

    def test_missing_credential(self, no_env):
        client = GenerationClient()
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            client.provider("openai")

    @pytest.mark.asyncio
    async def test_generate_delegation(self):
        client = GenerationClient(settings("mock response"))

        response = await client.generate("test", "hi")

        assert response.text == "mock response"
        assert response.provider == "test"
        assert client.provider("test").calls[0]["messages"] == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_generate_with_call_overrides(self):
        client = GenerationClient(settings("ok"))

        response = await client.generate("test", "hi", model="other-model")

        assert response.model == "other-model"

    @pytest.mark.asyncio
    async def test_generate_streams_into_sink(self, sink):
        client = GenerationClient(settings({"chunks": ["a", "b"]}))

        await client.generate("test", "hi", sink=sink)

        assert sink.types == ["open", "update", "update", "close"]

    @pytest.mark.asyncio
    async def test_run_executes_tools(self, weather_call):
        client = GenerationClient(settings(weather_call, "It's 72°F in Boston."))

        response = await client.run(
            "test",
            "Weather in Boston?",
            tools={"get_weather": lambda location: {"temperature": 72}},
        )

        assert response.text == "It's 72°F in Boston."
        assert response.turns == 2
        assert response.tool_history[0]["result"] == '{"temperature": 72}'

    @pytest.mark.asyncio
    async def test_run_respects_max_turns(self, weather_call):
        client = GenerationClient(settings(weather_call))

        response = await client.run(
            "test", "Weather?", tools={"get_weather": lambda location: "72"}, max_turns=2,
        )

        assert response.ceiling_hit
        assert response.turns == 2

    @pytest.mark.asyncio
    async def test_run_rejects_zero_max_turns(self):
        client = GenerationClient(settings("hi"))

        with pytest.raises(ConfigurationError):
            await client.run("test", "hi", max_turns=0)

    @pytest.mark.asyncio
    async def test_run_estimates_cost_from_pricing(self):
        client = GenerationClient(
            settings({"content": "ok", "usage": {"input_tokens": 1000, "output_tokens": 500}}),
            pricing={"scripted-model": (1.0, 2.0)},
        )

        response = await client.run("test", "hi")

        assert response.usage.cost == pytest.approx(0.002)

    @pytest.mark.asyncio
    async def test_embed(self):
        client = GenerationClient(settings())

        result = await client.embed("test", ["a", "b"])

        assert len(result.vectors) == 2
        assert result.vector == (0.1, 0.2, 0.3)

    @pytest.mark.asyncio
    async def test_embed_unsupported(self, no_env):
        client = GenerationClient()
        # Declined from the registry, before any credential is needed
        with pytest.raises(UnsupportedOperationError) as excinfo:
            await client.embed("claude", "hello")
        assert excinfo.value.provider == "anthropic"

    @pytest.mark.asyncio
    async def test_list_models_delegation(self):
        client = GenerationClient(settings(models=["model-a", "model-b"]))

        assert await client.list_models("test") == ["model-a", "model-b"]


class TestStaticHelpers:

    def test_assistant_message_with_tool_calls(self):
        call = GenerationClient.create_tool("get_weather", "Get weather", {"location": {"type": "string"}})
        message = GenerationClient.create_assistant_message_with_tool_calls("", [call])
        assert message.role == "assistant"
        assert message.tool_calls[0].name == "get_weather"
