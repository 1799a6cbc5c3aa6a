"""
Scripted provider: replays canned replies instead of calling a vendor.

Each reply is one of:
    "text"                          plain assistant content
    {"content": ..., "tool_calls": [{"id", "name", "arguments"}],
     "usage": {"input_tokens", "output_tokens", "cost"},
     "chunks": ["Hel", "lo"], "finish_reason": ..., "model": ...}
    callable(request_params) -> one of the above
    an exception instance, raised as if the vendor had failed

Replies are consumed in order; once the script runs out the last reply
repeats, which makes "a model that never stops calling tools" a one-liner.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from .base import BaseAdapter, BaseLLMProvider, ProviderOptions, ProviderReply, ProviderRequest, as_inputs, iterate_stream
from ..errors import ValidationError
from ..streaming import StreamChannel, ToolCallAccumulator
from ..types import Action, EmbeddingResponse, Message, Prompt, Response
from ..utils import compact, encode_tool_arguments, parse_tool_arguments

logger = logging.getLogger(__name__)


class ScriptedOptions(ProviderOptions):
    default_model = "scripted-model"
    requires_api_key = False

    responses: List[Any] = []
    embedding: List[float] = [0.1, 0.2, 0.3]
    models: List[str] = ["scripted-model"]


class ScriptedAdapter(BaseAdapter):
    name = "scripted"
    operation = "scripted.reply"

    def build_request(self, prompt: Prompt, options: ProviderOptions) -> ProviderRequest:
        params = compact({
            "model": self.requested_model(prompt, options),
            "instructions": prompt.instructions,
            "messages": [m.to_dict() for m in prompt.messages],
            "tools": [a.name for a in prompt.actions],
            "tool_choice": prompt.tool_choice,
            "previous_response_id": prompt.previous_response_id,
            "options": {k: v for k, v in prompt.options.items() if k not in ("model", "tool_choice")},
        })
        return ProviderRequest(adapter=self.name, operation=self.operation, params=params)

    async def execute(self, request: ProviderRequest) -> ProviderReply:
        return ProviderReply(payload=self.provider.next_reply(request))

    async def open_stream(self, request: ProviderRequest) -> ProviderReply:
        reply = self.provider.next_reply(request)
        chunks = reply.get("chunks")
        if chunks is None:
            content = reply.get("content")
            chunks = [content] if isinstance(content, str) and content else []
        return ProviderReply(payload=reply, stream=list(chunks))

    async def consume_stream(self, reply: ProviderReply, channel: StreamChannel) -> ProviderReply:
        pieces: List[str] = []
        async for piece in iterate_stream(reply.stream):
            pieces.append(piece)
            await channel.update(piece)

        # Deliver tool-call arguments in two fragments, the way vendors do
        calls = ToolCallAccumulator()
        for index, tc in enumerate(reply.payload.get("tool_calls") or []):
            arguments = tc.get("arguments")
            if not isinstance(arguments, str):
                arguments = encode_tool_arguments(arguments)
            half = len(arguments) // 2
            calls.add(index, id=tc.get("id"), name=tc.get("name"), arguments=arguments[:half])
            calls.add(index, arguments=arguments[half:])

        payload = dict(reply.payload)
        payload["content"] = "".join(pieces)
        payload["tool_calls"] = [
            {"id": a.id, "name": a.name, "arguments": dict(a.arguments)} for a in calls.actions()
        ]
        return ProviderReply(payload=payload, headers=reply.headers)

    def parse_response(self, prompt: Prompt, request: ProviderRequest, reply: ProviderReply) -> Response:
        payload = reply.payload
        calls = [
            Action(id=tc.get("id"), name=tc.get("name", ""), arguments=parse_tool_arguments(tc.get("arguments")))
            for tc in payload.get("tool_calls") or []
        ]
        content = payload.get("content")
        if content is None:
            content = ""
        if isinstance(content, str) and not calls:
            content = self.structured_content(prompt, content)

        message = Message(
            role="assistant",
            content=content,
            tool_calls=tuple(calls),
            generation_id=payload.get("id"),
        )
        usage = None
        raw_usage = payload.get("usage")
        if raw_usage:
            usage = self.provider.normalize_usage(
                input_tokens=raw_usage.get("input_tokens"),
                output_tokens=raw_usage.get("output_tokens"),
                total_tokens=raw_usage.get("total_tokens"),
                cost=raw_usage.get("cost"),
                raw=dict(raw_usage),
            )
        return Response(
            message=message,
            provider=self.provider.tag,
            model=payload.get("model") or request.params.get("model"),
            usage=usage,
            raw_request=request.params,
            raw_response=payload,
            metadata=compact({
                "finish_reason": payload.get("finish_reason") or ("tool_calls" if calls else "stop"),
                "id": payload.get("id"),
            }),
            messages=prompt.messages + (message,),
        )


class ScriptedProvider(BaseLLMProvider):
    """
    In-process provider that replays scripted replies.

    Every request it receives is recorded in `calls`, so tests can assert on
    the number of adapter calls and on the exact history that was sent.
    """

    tag = "test"
    options_class = ScriptedOptions
    capabilities = frozenset({"stream", "embed", "list_models"})

    def __init__(self, options=None, *, client=None, **overrides):
        super().__init__(options, client=client, **overrides)
        self.calls: List[Dict[str, Any]] = []
        self._cursor = 0

    def _create_client(self) -> None:
        return None

    def _create_adapters(self) -> List[BaseAdapter]:
        return [ScriptedAdapter(self)]

    def next_reply(self, request: ProviderRequest) -> Dict[str, Any]:
        """Record `request` and return the next scripted reply as a dict."""
        self.calls.append(request.params)
        script = self.options.responses
        if not script:
            reply: Any = {"content": ""}
        else:
            reply = script[min(self._cursor, len(script) - 1)]
            self._cursor += 1

        if callable(reply):
            reply = reply(request.params)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, str):
            reply = {"content": reply}
        reply = dict(reply)

        tool_calls = []
        for index, tc in enumerate(reply.get("tool_calls") or []):
            tc = dict(tc)
            tc.setdefault("id", f"call_{len(self.calls)}_{index}")
            tool_calls.append(tc)
        if tool_calls:
            reply["tool_calls"] = tool_calls
        logger.debug("Scripted reply #%d: %s", len(self.calls), reply)
        return reply

    async def embed(self, inputs: Union[str, Sequence[str]], model: Optional[str] = None) -> EmbeddingResponse:
        texts = as_inputs(inputs)
        if not texts:
            raise ValidationError("embed() needs at least one input")
        vector = tuple(self.options.embedding)
        return EmbeddingResponse(
            vectors=tuple(vector for _ in texts),
            provider=self.tag,
            model=model or "scripted-embedding",
        )

    async def list_models(self) -> List[str]:
        return list(self.options.models)
