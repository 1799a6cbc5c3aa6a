"""
OpenRouter: an OpenAI-compatible gateway in front of many upstream vendors.

On top of the chat shape it supports model fallback lists, provider routing
preferences and prompt transforms, reports the upstream that actually served
the request in response headers, and can include cost in the usage block.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from .base import BaseAdapter, ProviderOptions, ProviderReply, ProviderRequest
from .openai import ChatCompletionsAdapter, OpenAIOptions, OpenAIProvider
from ..types import Prompt, Response
from ..usage import cost_info
from ..utils import as_dict, compact

logger = logging.getLogger(__name__)


class ProviderPreferences(BaseModel):
    """Upstream routing preferences (the `provider` request field)."""
    model_config = ConfigDict(extra="allow")

    order: Optional[List[str]] = None
    require_parameters: Optional[bool] = None
    allow_fallbacks: Optional[bool] = None
    data_collection: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class OpenRouterOptions(OpenAIOptions):
    api_key_env = ("OPENROUTER_API_KEY",)
    default_model = "openrouter/auto"
    default_base_url = "https://openrouter.ai/api/v1"

    app_name: Optional[str] = None
    site_url: Optional[str] = None
    fallback_models: List[str] = []
    route: str = "fallback"
    provider: Optional[ProviderPreferences] = None
    transforms: List[str] = []
    track_costs: bool = True
    embedding_model: Optional[str] = None


class OpenRouterChatAdapter(ChatCompletionsAdapter):
    """Chat shape plus OpenRouter's routing fields and response headers."""

    name = "openrouter_chat"

    def __init__(self, provider: "OpenRouterProvider"):
        super().__init__(provider, universal=True)

    def build_request(self, prompt: Prompt, options: ProviderOptions) -> ProviderRequest:
        request = super().build_request(prompt, options)
        params = request.params

        extra_body: Dict[str, Any] = dict(params.get("extra_body") or {})
        fallback_models = prompt.options.get("fallback_models") or options.fallback_models
        if fallback_models:
            extra_body["models"] = list(fallback_models)
            extra_body["route"] = prompt.options.get("route") or options.route
        preferences = prompt.options.get("provider") or options.provider
        if isinstance(preferences, ProviderPreferences):
            preferences = preferences.to_payload()
        if preferences:
            extra_body["provider"] = dict(preferences)
        transforms = prompt.options.get("transforms") or options.transforms
        if transforms:
            extra_body["transforms"] = list(transforms)
        if options.track_costs:
            extra_body["usage"] = {"include": True}
        if extra_body:
            params["extra_body"] = extra_body

        headers = compact({"HTTP-Referer": options.site_url, "X-Title": options.app_name})
        if headers:
            params["extra_headers"] = {**(params.get("extra_headers") or {}), **headers}
        return request

    async def execute(self, request: ProviderRequest) -> ProviderReply:
        raw = await self.client.chat.completions.with_raw_response.create(**request.params)
        payload = as_dict(raw.parse())
        self.check_error_body(payload)
        return ProviderReply(payload=payload, headers=dict(raw.headers))

    async def open_stream(self, request: ProviderRequest) -> ProviderReply:
        params = dict(request.params, stream=True)
        if self.provider.options.stream_usage:
            params["stream_options"] = {"include_usage": True}
        raw = await self.client.chat.completions.with_raw_response.create(**params)
        return ProviderReply(stream=raw.parse(), headers=dict(raw.headers))

    def parse_response(self, prompt: Prompt, request: ProviderRequest, reply: ProviderReply) -> Response:
        response = super().parse_response(prompt, request, reply)
        response.metadata.update(routing_metadata(reply.payload, reply.headers))
        if self.provider.options.track_costs:
            info = cost_info(response.model, response.usage)
            if info is not None:
                response.metadata["cost_info"] = info
        return response


def routing_metadata(payload: Mapping[str, Any], headers: Mapping[str, str]) -> Dict[str, Any]:
    """
    Extract which upstream served the request, the trace id and rate-limit
    figures from the payload and response headers.
    """
    lowered = {str(k).lower(): v for k, v in (headers or {}).items()}
    ratelimit = compact({
        "limit": lowered.get("x-ratelimit-limit"),
        "remaining": lowered.get("x-ratelimit-remaining"),
        "reset": lowered.get("x-ratelimit-reset"),
    })
    return compact({
        "provider": payload.get("provider") or lowered.get("x-provider"),
        "model_used": payload.get("model") or lowered.get("x-model"),
        "trace_id": lowered.get("x-trace-id") or lowered.get("x-request-id"),
        "ratelimit": ratelimit or None,
    })


class OpenRouterProvider(OpenAIProvider):
    """Provider for OpenRouter (OpenAI-compatible gateway)."""

    tag = "openrouter"
    options_class = OpenRouterOptions
    capabilities = frozenset({"stream", "list_models"})

    def _create_adapters(self) -> List[BaseAdapter]:
        return [OpenRouterChatAdapter(self)]
