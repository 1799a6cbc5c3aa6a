import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, ClassVar, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Type, Union

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from ..errors import ConfigurationError, UnsupportedOperationError, classify_error
from ..retry import RetryPolicy, run_with_retries
from ..selector import select_adapter
from ..streaming import StreamChannel, StreamSink
from ..types import EmbeddingResponse, Prompt, Response, Usage, coerce_prompt
from ..utils import inline_remote_images, parse_structured_content

logger = logging.getLogger(__name__)


# =============================================================================
# Options
# =============================================================================

class ProviderOptions(BaseModel):
    """
    Validated provider configuration.

    Every provider accepts at least a credential, a model id, a host override
    and the timeout/retry knobs. Unknown keys are kept as vendor extras.
    """
    model_config = ConfigDict(extra="allow")

    api_key: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("base_url", "host", "uri_base"),
    )
    timeout: float = 60.0
    max_retries: int = Field(default=2, ge=0)
    initial_retry_delay: float = Field(default=0.5, ge=0)
    max_retry_delay: float = Field(default=8.0, ge=0)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    inline_images: Optional[bool] = None

    # Per-provider class data, overridden by subclasses
    api_key_env: ClassVar[Tuple[str, ...]] = ()
    default_model: ClassVar[Optional[str]] = None
    default_base_url: ClassVar[Optional[str]] = None
    requires_api_key: ClassVar[bool] = True

    @model_validator(mode="after")
    def _apply_defaults(self) -> "ProviderOptions":
        if not self.api_key:
            for var in self.api_key_env:
                value = os.environ.get(var)
                if value:
                    self.api_key = value
                    break
        if not self.model:
            self.model = self.default_model
        if not self.base_url:
            self.base_url = self.default_base_url
        return self

    @classmethod
    def build(cls, tag: str, options: Optional[Mapping[str, Any]] = None) -> "ProviderOptions":
        """
        Validate `options` for provider `tag`.

        Raises:
            ConfigurationError: On invalid values or a missing required credential.
        """
        try:
            built = cls.model_validate(dict(options or {}))
        except pydantic.ValidationError as e:
            raise ConfigurationError(f"Invalid options for provider '{tag}': {e}") from e
        if cls.requires_api_key and not built.api_key:
            hint = " or ".join(cls.api_key_env) or "api_key"
            raise ConfigurationError(
                f"Missing credential for provider '{tag}': pass api_key or set {hint}"
            )
        return built

    @property
    def extras(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            initial_delay=self.initial_retry_delay,
            max_delay=self.max_retry_delay,
        )


# =============================================================================
# Adapter contract
# =============================================================================

@dataclass
class ProviderRequest:
    """A vendor payload ready to send: adapter name, SDK operation and kwargs."""
    adapter: str
    operation: str
    params: Dict[str, Any]


@dataclass
class ProviderReply:
    """
    What came back from the vendor: the payload as plain dicts plus HTTP
    headers when the adapter could read them. `stream` holds the open
    iterator between `open_stream` and `consume_stream`.
    """
    payload: Dict[str, Any] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    stream: Any = None


class BaseAdapter(ABC):
    """
    One vendor request shape: builds requests, talks to the SDK and parses
    replies back into canonical Responses.

    `build_request` and `parse_response` are pure; only `execute`,
    `open_stream` and `consume_stream` touch the network.
    """

    name: ClassVar[str] = "base"

    def __init__(self, provider: "BaseLLMProvider"):
        self.provider = provider

    @property
    def client(self) -> Any:
        return self.provider.client

    def supports(self, prompt: Prompt) -> bool:
        return True

    @abstractmethod
    def build_request(self, prompt: Prompt, options: ProviderOptions) -> ProviderRequest:
        """Convert a canonical prompt into the vendor payload. Never mutates `prompt`."""

    @abstractmethod
    async def execute(self, request: ProviderRequest) -> ProviderReply:
        """Send a non-streaming request."""

    async def open_stream(self, request: ProviderRequest) -> ProviderReply:
        """Open a streaming request; the returned reply carries the iterator."""
        raise UnsupportedOperationError(self.provider.tag, "stream")

    async def consume_stream(self, reply: ProviderReply, channel: StreamChannel) -> ProviderReply:
        """
        Drain an open stream, forwarding text deltas to `channel`, and fold
        the chunks back into the payload shape `execute` would have returned.
        """
        raise UnsupportedOperationError(self.provider.tag, "stream")

    @abstractmethod
    def parse_response(self, prompt: Prompt, request: ProviderRequest, reply: ProviderReply) -> Response:
        """Convert a vendor payload into a canonical Response."""

    def requested_model(self, prompt: Prompt, options: ProviderOptions) -> str:
        model = prompt.options.get("model") or options.model
        if not model:
            raise ConfigurationError(f"No model configured for provider '{self.provider.tag}'")
        return model

    @staticmethod
    def structured_content(prompt: Prompt, content: str) -> Any:
        """
        Parse textual output as JSON when the prompt asked for it. Anything
        that is not a JSON object or array stays the raw string.
        """
        if not prompt.expects_json or not content:
            return content
        parsed = parse_structured_content(content)
        return parsed if isinstance(parsed, (dict, list)) else content

    @staticmethod
    def sampling_value(prompt: Prompt, options: ProviderOptions, key: str) -> Any:
        """Call-time prompt option first, then provider option."""
        value = prompt.options.get(key)
        if value is None:
            value = getattr(options, key, None)
        return value


async def iterate_stream(stream: Any) -> AsyncIterator[Any]:
    """Iterate SDK streams (async) and scripted chunk lists (sync) alike."""
    if hasattr(stream, "__aiter__"):
        async for item in stream:
            yield item
    else:
        for item in stream:
            yield item


# =============================================================================
# Provider
# =============================================================================

class BaseLLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    A provider owns one vendor SDK client (shared by all its requests), its
    validated options and the adapters it can route prompts to.

    Class attributes:
        tag: Registry tag.
        options_class: Pydantic options model.
        capabilities: Optional operations this provider implements
            ("stream", "embed", "list_models").
        inline_remote_images: Download http(s) images before building
            requests, for vendors that cannot fetch URLs themselves.
    """

    tag: ClassVar[str] = "base"
    options_class: ClassVar[Type[ProviderOptions]] = ProviderOptions
    capabilities: ClassVar[FrozenSet[str]] = frozenset({"stream", "list_models"})
    inline_remote_images: ClassVar[bool] = False

    def __init__(
        self,
        options: Union[ProviderOptions, Mapping[str, Any], None] = None,
        *,
        client: Any = None,
        **overrides: Any,
    ):
        """
        Initialize the provider.

        Args:
            options: Validated options or a raw mapping.
            client: Pre-built SDK client (mainly for tests). Built from the
                options when omitted.
            **overrides: Option values that win over `options`.
        """
        if isinstance(options, ProviderOptions):
            if overrides:
                options = self.options_class.build(self.tag, {**options.model_dump(), **overrides})
        else:
            options = self.options_class.build(self.tag, {**dict(options or {}), **overrides})
        self.options: ProviderOptions = options
        self.client = client if client is not None else self._create_client()
        self.adapters: List[BaseAdapter] = self._create_adapters()

    @abstractmethod
    def _create_client(self) -> Any:
        """Build the vendor SDK client from `self.options`."""

    @abstractmethod
    def _create_adapters(self) -> List[BaseAdapter]:
        """Adapters in evaluation order."""

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    def select_adapter(self, prompt: Prompt) -> BaseAdapter:
        return select_adapter(self.adapters, prompt)

    def _should_inline(self, prompt: Prompt) -> bool:
        enabled = self.options.inline_images
        if enabled is None:
            enabled = self.inline_remote_images
        return enabled and prompt.has_multipart_content

    async def _with_retries(self, operation):
        return await run_with_retries(
            operation,
            provider=self.tag,
            policy=self.options.retry_policy,
        )

    async def generate(
        self,
        prompt: Union[Prompt, str, Sequence[Any]],
        sink: Optional[StreamSink] = None,
        *,
        turn: int = 1,
    ) -> Response:
        """
        Run one request/response exchange.

        Args:
            prompt: Canonical prompt (a bare string or message list is accepted).
            sink: When given, the reply is streamed and the sink receives
                open, update* and close events for this turn.
            turn: Turn number stamped on stream events.

        Returns:
            Response: Canonical response; streamed and non-streamed calls
            return the same shape.

        Raises:
            ValidationError: Malformed prompt, before any I/O.
            TransportError: Vendor failure after the retry budget.
            UnsupportedOperationError: Streaming requested from a provider
                without the "stream" capability.
        """
        prompt = coerce_prompt(prompt)
        if self._should_inline(prompt):
            prompt = replace(prompt, messages=tuple([await inline_remote_images(m) for m in prompt.messages]))

        adapter = self.select_adapter(prompt)
        request = adapter.build_request(prompt, self.options)
        logger.debug("%s %s via %s (turn %d)", self.tag, request.operation, adapter.name, turn)

        start = time.perf_counter()
        if sink is None:
            reply = await self._with_retries(lambda: adapter.execute(request))
            response = adapter.parse_response(prompt, request, reply)
        else:
            if not self.supports("stream"):
                raise UnsupportedOperationError(self.tag, "stream")
            # Only the connect step is retried; a broken stream is not replayed.
            opened = await self._with_retries(lambda: adapter.open_stream(request))
            channel = StreamChannel(sink, turn=turn)
            await channel.open()
            try:
                reply = await adapter.consume_stream(opened, channel)
            except Exception as exc:
                await channel.close(finish_reason="error")
                mapped = classify_error(exc, self.tag)
                if mapped is exc:
                    raise
                raise mapped from exc
            response = adapter.parse_response(prompt, request, reply)
            response.metadata["streamed"] = True
            await channel.close(finish_reason=response.finish_reason, message=response.message)

        response.metadata.setdefault("latency_ms", (time.perf_counter() - start) * 1000.0)
        response.metadata.setdefault("adapter", adapter.name)
        return response

    async def embed(self, inputs: Union[str, Sequence[str]], model: Optional[str] = None) -> EmbeddingResponse:
        """
        Embed one or more texts.

        Raises:
            UnsupportedOperationError: Unless the provider declares "embed".
        """
        raise UnsupportedOperationError(self.tag, "embed")

    async def list_models(self) -> List[str]:
        """
        Get list of available models from the provider.

        Returns:
            List[str]: Model identifiers.
        """
        raise UnsupportedOperationError(self.tag, "list_models")

    @staticmethod
    def normalize_usage(
        *,
        input_tokens: Optional[int],
        output_tokens: Optional[int],
        total_tokens: Optional[int] = None,
        cost: Optional[float] = None,
        raw: Optional[Dict[str, Any]] = None,
    ) -> Optional[Usage]:
        """
        Normalize token usage information across providers.

        Figures pass through unconverted and the total is computed when
        missing. Returns None when the vendor reported nothing at all, so a
        missing usage block never turns into zeros.
        """
        if raw is None and input_tokens is None and output_tokens is None and total_tokens is None:
            return None
        return Usage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total_tokens,
            cost=cost,
            raw=raw,
        )


def as_inputs(inputs: Union[str, Sequence[str]]) -> List[str]:
    if isinstance(inputs, str):
        return [inputs]
    return list(inputs)


__all__ = [
    "BaseAdapter",
    "BaseLLMProvider",
    "ProviderOptions",
    "ProviderReply",
    "ProviderRequest",
    "as_inputs",
    "iterate_stream",
]
