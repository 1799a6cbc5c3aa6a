"""
Provider registry: maps configured provider tags to provider classes.

Tags are case-insensitive. Unknown tags fail at configuration time with the
list of known tags, never deep inside a request.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Sequence, Type, Union, runtime_checkable

from .errors import ConfigurationError
from .providers.anthropic import AnthropicProvider
from .providers.azure import AzureOpenAIProvider
from .providers.base import BaseLLMProvider, ProviderOptions
from .providers.bedrock import BedrockProvider
from .providers.compatible import (
    DeepSeekProvider,
    GroqProvider,
    HuggingFaceProvider,
    MistralProvider,
    OllamaProvider,
    TogetherProvider,
    XAIProvider,
)
from .providers.gemini import GeminiProvider
from .providers.openai import OpenAIProvider
from .providers.openrouter import OpenRouterProvider
from .providers.scripted import ScriptedProvider
from .streaming import StreamSink
from .types import EmbeddingResponse, Prompt, Response

logger = logging.getLogger(__name__)

CAPABILITIES = ("stream", "embed", "list_models")


@runtime_checkable
class SupportsStreaming(Protocol):
    async def generate(self, prompt: Prompt, sink: Optional[StreamSink] = None, *, turn: int = 1) -> Response:
        ...


@runtime_checkable
class SupportsEmbeddings(Protocol):
    async def embed(self, inputs: Union[str, Sequence[str]], model: Optional[str] = None) -> EmbeddingResponse:
        ...


@dataclass(frozen=True)
class ProviderSpec:
    """What a tag resolves to. Capabilities are frozen at registration."""
    tag: str
    provider_cls: Type[BaseLLMProvider]
    options_cls: Type[ProviderOptions]
    capabilities: FrozenSet[str]

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities


class ProviderRegistry:
    """
    Registry of provider classes by tag.

    Read-mostly after startup and safe to share between tasks.
    """

    def __init__(self):
        self._specs: Dict[str, ProviderSpec] = {}
        self._aliases: Dict[str, str] = {}

    def register(
        self,
        tag: str,
        provider_cls: Type[BaseLLMProvider],
        aliases: Iterable[str] = (),
    ) -> ProviderSpec:
        """
        Register `provider_cls` under `tag` (and optional aliases).

        Raises:
            ConfigurationError: If the class declares an unknown capability.
        """
        tag = tag.lower()
        unknown = set(provider_cls.capabilities) - set(CAPABILITIES)
        if unknown:
            raise ConfigurationError(
                f"Provider '{tag}' declares unknown capabilities: {', '.join(sorted(unknown))}"
            )
        spec = ProviderSpec(
            tag=tag,
            provider_cls=provider_cls,
            options_cls=provider_cls.options_class,
            capabilities=frozenset(provider_cls.capabilities),
        )
        self._specs[tag] = spec
        for alias in aliases:
            self._aliases[alias.lower()] = tag
        logger.debug("Registered provider %s (%s)", tag, provider_cls.__name__)
        return spec

    def canonical_tag(self, tag: str) -> str:
        key = str(tag).lower()
        return self._aliases.get(key, key)

    def resolve(self, tag: str) -> ProviderSpec:
        """
        Resolve a tag or alias.

        Raises:
            ConfigurationError: Naming the unknown tag and listing known ones.
        """
        spec = self._specs.get(self.canonical_tag(tag))
        if spec is None:
            raise ConfigurationError(
                f"Unknown provider '{tag}'. Known providers: {', '.join(self.tags())}"
            )
        return spec

    def create(
        self,
        tag: str,
        options: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> BaseLLMProvider:
        """Build a provider for `tag` from a raw option mapping."""
        spec = self.resolve(tag)
        return spec.provider_cls(dict(options or {}), **kwargs)

    def tags(self) -> List[str]:
        return sorted(self._specs)

    def __contains__(self, tag: object) -> bool:
        return isinstance(tag, str) and self.canonical_tag(tag) in self._specs


def build_default_registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register("openai", OpenAIProvider)
    registry.register("azure", AzureOpenAIProvider, aliases=("azure_openai",))
    registry.register("openrouter", OpenRouterProvider, aliases=("open_router",))
    registry.register("ollama", OllamaProvider)
    registry.register("xai", XAIProvider, aliases=("grok",))
    registry.register("deepseek", DeepSeekProvider)
    registry.register("huggingface", HuggingFaceProvider, aliases=("hf",))
    registry.register("groq", GroqProvider)
    registry.register("together", TogetherProvider)
    registry.register("mistral", MistralProvider)
    registry.register("anthropic", AnthropicProvider, aliases=("claude",))
    registry.register("bedrock", BedrockProvider)
    registry.register("gemini", GeminiProvider, aliases=("google",))
    registry.register("test", ScriptedProvider, aliases=("scripted",))
    return registry


default_registry = build_default_registry()
