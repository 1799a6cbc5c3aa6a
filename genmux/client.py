import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union

from .config import load_settings, resolve_options
from .errors import ConfigurationError, UnsupportedOperationError
from .orchestrator import DEFAULT_MAX_TURNS, ToolOrchestrator, ToolRegistry
from .providers.base import BaseLLMProvider
from .registry import ProviderRegistry, default_registry
from .streaming import StreamSink
from .types import Action, ContentPart, EmbeddingResponse, ImagePart, Message, Prompt, Response, TextPart
from .usage import Pricing
from .utils import (
    create_assistant_message_with_tool_calls,
    create_image_content,
    create_message,
    create_text_content,
    create_tool,
    create_tool_result,
    encode_image_file,
    encode_image_url,
)

logger = logging.getLogger(__name__)

PromptLike = Union[Prompt, str, Sequence[Any]]


class GenerationClient:
    """
    Unified entry point for every configured provider.

    This class resolves a provider tag to a provider instance (building it
    from layered configuration), then runs single generations, orchestrated
    tool loops, embeddings and model listings against it.
    """

    def __init__(
        self,
        settings: Union[None, str, Path, Mapping[str, Any]] = None,
        registry: Optional[ProviderRegistry] = None,
        environment: Optional[str] = None,
        pricing: Optional[Pricing] = None,
    ):
        """
        Initialize the GenerationClient.

        Args:
            settings: Process configuration: a mapping, a YAML file path or
                None. See `genmux.config.load_settings`.
            registry: Provider registry. Defaults to the built-in one.
            environment: Configuration environment. Defaults to $GENMUX_ENV.
            pricing: Optional per-model prices for cost estimation in `run`.
        """
        self.registry = registry or default_registry
        self.settings: Dict[str, Any] = self._canonical_settings(load_settings(settings, environment))
        self.pricing = pricing
        self._providers: Dict[str, BaseLLMProvider] = {}

    # ==========================================================================
    # Image Helpers (Static Methods) - Re-exported from utils
    # ==========================================================================

    @staticmethod
    def encode_image_file(image_path: Union[str, Path]) -> Tuple[str, str]:
        return encode_image_file(image_path)

    @staticmethod
    async def encode_image_url(url: str) -> Tuple[str, str]:
        return await encode_image_url(url)

    @staticmethod
    def create_image_content(
        source: str,
        *,
        mime_type: Optional[str] = None,
        detail: Optional[Literal["auto", "low", "high"]] = None,
    ) -> ImagePart:
        return create_image_content(source, mime_type=mime_type, detail=detail)

    @staticmethod
    def create_text_content(text: str) -> TextPart:
        return create_text_content(text)

    @staticmethod
    def create_message(
        role: Literal["system", "user", "assistant"],
        content: Union[str, List[Union[str, ContentPart]]],
    ) -> Message:
        return create_message(role, content)

    # ==========================================================================
    # Tool Calling Helpers - Re-exported from utils
    # ==========================================================================

    @staticmethod
    def create_tool(
        name: str,
        description: str,
        parameters: Dict[str, Any],
        required: Optional[List[str]] = None,
    ) -> Action:
        return create_tool(name, description, parameters, required)

    @staticmethod
    def create_tool_result(tool_call_id: str, content: str) -> Message:
        return create_tool_result(tool_call_id, content)

    @staticmethod
    def create_assistant_message_with_tool_calls(
        content: str,
        tool_calls: List[Action],
    ) -> Message:
        return create_assistant_message_with_tool_calls(content, tool_calls)

    # ==========================================================================
    # Providers
    # ==========================================================================

    def _canonical_settings(self, settings: Mapping[str, Any]) -> Dict[str, Any]:
        """Key the provider map by canonical tag so aliases configure the same provider."""
        canonical: Dict[str, Any] = {}
        for key, value in settings.items():
            tag = self.registry.canonical_tag(key)
            if tag in canonical:
                raise ConfigurationError(f"Provider '{tag}' is configured more than once (as '{key}')")
            canonical[tag] = value
        return canonical

    def provider(self, tag: str, **overrides: Any) -> BaseLLMProvider:
        """
        Get a provider instance for `tag`.

        Without overrides the instance is cached, so its SDK client (and its
        connection pool) is shared by every call. Overrides build a fresh,
        uncached instance.

        Raises:
            ConfigurationError: Unknown tag, missing credential or invalid options.
        """
        canonical = self.registry.canonical_tag(tag)
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if not overrides and canonical in self._providers:
            return self._providers[canonical]

        spec = self.registry.resolve(canonical)
        options = resolve_options(self.settings, spec.tag, overrides)
        provider = spec.provider_cls(options)
        if not overrides:
            self._providers[canonical] = provider
        return provider

    # ==========================================================================
    # Unified Methods
    # ==========================================================================

    async def generate(
        self,
        tag: str,
        prompt: PromptLike,
        sink: Optional[StreamSink] = None,
        **overrides: Any,
    ) -> Response:
        """
        Run one request/response exchange (no tool execution).

        Args:
            tag: Provider tag, e.g. 'openai', 'anthropic', 'gemini'.
            prompt: A Prompt, a bare user string or a list of messages.
            sink: Stream sink; when given, the reply is streamed.
            **overrides: Provider options for this call (model, temperature...).

        Returns:
            Response: The canonical response. Tool calls, if any, are
            returned unexecuted in `response.tool_calls`.
        """
        return await self.provider(tag, **overrides).generate(prompt, sink=sink)

    async def run(
        self,
        tag: str,
        prompt: PromptLike,
        tools: Union[ToolRegistry, Mapping[str, Callable[..., Any]], None] = None,
        sink: Optional[StreamSink] = None,
        max_turns: Optional[int] = None,
        **overrides: Any,
    ) -> Response:
        """
        Chat with a model while executing the tools it requests.

        The loop sends the prompt, executes every requested tool, feeds the
        results back and repeats until the model answers without tool calls
        or `max_turns` adapter calls were made.

        Args:
            tag: Provider tag.
            prompt: A Prompt, a bare user string or a list of messages.
            tools: ToolRegistry or mapping of tool name to callable. When the
                prompt declares no actions, declarations are derived from
                the registered callables.
            sink: Stream sink; every turn is streamed.
            max_turns: Turn ceiling. Defaults to 10.
            **overrides: Provider options for this call.

        Returns:
            Response: The final response, with `tool_history`, `turns`,
            `messages`, run-wide `usage` and `ceiling_hit`.
        """
        orchestrator = ToolOrchestrator(
            self.provider(tag, **overrides),
            tools,
            max_turns=DEFAULT_MAX_TURNS if max_turns is None else max_turns,
            pricing=self.pricing,
        )
        return await orchestrator.run(prompt, sink=sink)

    async def embed(
        self,
        tag: str,
        inputs: Union[str, Sequence[str]],
        model: Optional[str] = None,
        **overrides: Any,
    ) -> EmbeddingResponse:
        """
        Embed one or more texts.

        Raises:
            UnsupportedOperationError: If the provider does not offer embeddings.
        """
        spec = self.registry.resolve(tag)
        if not spec.supports("embed"):
            raise UnsupportedOperationError(spec.tag, "embed")
        return await self.provider(tag, **overrides).embed(inputs, model=model)

    async def list_models(self, tag: str) -> List[str]:
        """
        Get the list of available models for a specific provider.

        Args:
            tag: Provider tag. Aliases like 'claude' -> 'anthropic' are handled.

        Returns:
            List[str]: Model identifiers; empty when the vendor call failed.

        Raises:
            UnsupportedOperationError: If the provider cannot list models.
        """
        spec = self.registry.resolve(tag)
        if not spec.supports("list_models"):
            raise UnsupportedOperationError(spec.tag, "list_models")
        return await self.provider(tag).list_models()
