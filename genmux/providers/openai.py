import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from openai import AsyncOpenAI

from .base import (
    BaseAdapter,
    BaseLLMProvider,
    ProviderOptions,
    ProviderReply,
    ProviderRequest,
    as_inputs,
    iterate_stream,
)
from ..errors import TransportError, UnsupportedOperationError, ValidationError, error_from_body
from ..selector import requires_rich_shape
from ..streaming import StreamChannel, ToolCallAccumulator
from ..types import Action, ContentPart, EmbeddingResponse, FilePart, ImagePart, Message, Prompt, Response, TextPart
from ..utils import as_dict, compact, encode_tool_arguments, normalize_tool_choice, parse_tool_arguments, to_data_uri

logger = logging.getLogger(__name__)


class OpenAIOptions(ProviderOptions):
    api_key_env = ("OPENAI_API_KEY",)
    default_model = "gpt-4o-mini"

    organization: Optional[str] = None
    project: Optional[str] = None
    embedding_model: Optional[str] = "text-embedding-3-large"
    # Ask for a final usage chunk when streaming (stream_options.include_usage)
    stream_usage: bool = True


def _tool_call_to_wire(call: Action) -> Dict[str, Any]:
    return {
        "id": call.id,
        "type": "function",
        "function": {
            "name": call.name,
            "arguments": encode_tool_arguments(call.arguments),
        },
    }


class ChatCompletionsAdapter(BaseAdapter):
    """
    The Chat Completions shape, spoken by OpenAI and most OpenAI-compatible
    vendors.

    For OpenAI itself the adapter only accepts prompts the chat shape can
    express and leaves the rest to `ResponsesAdapter`. Vendors that only have
    this shape build it with ``universal=True`` so it accepts every prompt.
    """

    name = "chat"
    operation = "chat.completions.create"

    # Sampling parameters passed through from prompt options when present
    SAMPLING_PARAMS = ("top_p", "stop", "seed", "frequency_penalty", "presence_penalty", "user")

    def __init__(self, provider: BaseLLMProvider, universal: bool = False):
        super().__init__(provider)
        self.universal = universal

    def supports(self, prompt: Prompt) -> bool:
        return self.universal or not requires_rich_shape(prompt)

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def build_request(self, prompt: Prompt, options: ProviderOptions) -> ProviderRequest:
        """
        Build a `chat.completions.create` payload.

        Handles:
        - Instructions as a leading system message.
        - Tool calls and tool results as OpenAI wire messages.
        - Multimodal content (image_url and file parts).
        - Tools, tool_choice and the json_schema response_format envelope.
        """
        params: Dict[str, Any] = {
            "model": self.requested_model(prompt, options),
            "messages": self.convert_messages(prompt),
        }
        for key in ("temperature", "max_tokens"):
            value = self.sampling_value(prompt, options, key)
            if value is not None:
                params[key] = value
        params.update({k: prompt.options[k] for k in self.SAMPLING_PARAMS if prompt.options.get(k) is not None})

        if prompt.actions:
            params["tools"] = [action.to_tool() for action in prompt.actions]
            tool_choice = self.convert_tool_choice(prompt.tool_choice)
            if tool_choice is not None:
                params["tool_choice"] = tool_choice

        response_format = self.convert_response_format(prompt)
        if response_format is not None:
            params["response_format"] = response_format

        if prompt.previous_response_id:
            logger.debug("%s chat shape has no continuation handle, sending full history", self.provider.tag)

        params.update(options.extras)
        params.update(prompt.options.get("extras") or {})
        return ProviderRequest(adapter=self.name, operation=self.operation, params=params)

    def convert_messages(self, prompt: Prompt) -> List[Dict[str, Any]]:
        converted: List[Dict[str, Any]] = []
        if prompt.instructions:
            converted.append({"role": "system", "content": prompt.instructions})

        for msg in prompt.messages:
            # Tool results: OpenAI expects these as separate messages with role "tool"
            if msg.role == "tool":
                converted.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.text,
                })
                continue

            if msg.role == "assistant":
                entry: Dict[str, Any] = {"role": "assistant", "content": msg.text}
                if msg.tool_calls:
                    entry["content"] = msg.text or None
                    entry["tool_calls"] = [_tool_call_to_wire(c) for c in msg.tool_calls]
                converted.append(entry)
                continue

            if msg.role == "user" and isinstance(msg.content, tuple):
                converted.append({"role": "user", "content": [self.convert_part(p) for p in msg.content]})
            else:
                converted.append({"role": msg.role, "content": msg.text})
        return converted

    @staticmethod
    def convert_part(part: ContentPart) -> Dict[str, Any]:
        if isinstance(part, TextPart):
            return {"type": "text", "text": part.text}
        if isinstance(part, ImagePart):
            return {"type": "image_url", "image_url": compact({"url": part.url, "detail": part.detail})}
        if isinstance(part, FilePart):
            return {
                "type": "file",
                "file": compact({
                    "file_id": part.file_id,
                    "file_data": to_data_uri(part.data, part.mime_type) if part.data else None,
                    "filename": part.filename,
                }),
            }
        raise ValidationError(f"Unsupported content part: {part!r}")

    @staticmethod
    def convert_tool_choice(choice: Any) -> Any:
        mode, name = normalize_tool_choice(choice)
        if mode == "tool":
            return {"type": "function", "function": {"name": name}}
        return mode

    @staticmethod
    def convert_response_format(prompt: Prompt) -> Optional[Dict[str, Any]]:
        schema = prompt.output_schema
        if schema is not None:
            return {"type": "json_schema", "json_schema": schema}
        if prompt.expects_json:
            return {"type": "json_object"}
        return None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def check_error_body(self, payload: Dict[str, Any]) -> None:
        if payload.get("error") and not payload.get("choices"):
            raise error_from_body(payload["error"], self.provider.tag)

    async def execute(self, request: ProviderRequest) -> ProviderReply:
        completion = await self.client.chat.completions.create(**request.params)
        payload = as_dict(completion)
        self.check_error_body(payload)
        return ProviderReply(payload=payload)

    async def open_stream(self, request: ProviderRequest) -> ProviderReply:
        params = dict(request.params, stream=True)
        if getattr(self.provider.options, "stream_usage", False):
            params["stream_options"] = {"include_usage": True}
        stream = await self.client.chat.completions.create(**params)
        return ProviderReply(stream=stream)

    async def consume_stream(self, reply: ProviderReply, channel: StreamChannel) -> ProviderReply:
        chunks: List[str] = []
        calls = ToolCallAccumulator()
        finish_reason = None
        completion_id = None
        model = None
        usage = None

        async for chunk in iterate_stream(reply.stream):
            data = as_dict(chunk)
            self.check_error_body(data)
            completion_id = completion_id or data.get("id")
            model = data.get("model") or model
            if data.get("usage"):
                usage = data["usage"]

            for choice in data.get("choices") or []:
                delta = choice.get("delta") or {}
                piece = delta.get("content")
                # Handle both list and string content
                if isinstance(piece, list):
                    piece = "".join(p.get("text", "") for p in piece if isinstance(p, dict))
                if piece:
                    chunks.append(piece)
                    await channel.update(piece)
                for tc in delta.get("tool_calls") or []:
                    function = tc.get("function") or {}
                    calls.add(
                        tc.get("index", 0),
                        id=tc.get("id"),
                        name=function.get("name"),
                        arguments=function.get("arguments"),
                    )
                if choice.get("finish_reason"):
                    finish_reason = choice["finish_reason"]

        message: Dict[str, Any] = {"role": "assistant", "content": "".join(chunks) or None}
        if len(calls):
            message["tool_calls"] = calls.to_wire()
        payload = compact({
            "id": completion_id,
            "model": model,
            "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
            "usage": usage,
        })
        return ProviderReply(payload=payload, headers=reply.headers)

    # ------------------------------------------------------------------
    # Response
    # ------------------------------------------------------------------

    def parse_response(self, prompt: Prompt, request: ProviderRequest, reply: ProviderReply) -> Response:
        payload = reply.payload
        choices = payload.get("choices") or []
        if not choices:
            raise TransportError("Response contained no choices", provider=self.provider.tag)
        choice = choices[0]
        wire = choice.get("message") or {}

        tool_calls = self.parse_tool_calls(wire.get("tool_calls"))
        content = wire.get("content") or ""
        if isinstance(content, list):
            content = "".join(p.get("text", "") for p in content if isinstance(p, dict))
        if not tool_calls:
            content = self.structured_content(prompt, content)

        message = Message(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls),
            generation_id=payload.get("id"),
        )
        metadata = compact({
            "finish_reason": choice.get("finish_reason"),
            "id": payload.get("id"),
            "system_fingerprint": payload.get("system_fingerprint"),
            "refusal": wire.get("refusal"),
        })
        return Response(
            message=message,
            provider=self.provider.tag,
            model=payload.get("model") or request.params.get("model"),
            usage=self.parse_usage(payload.get("usage")),
            raw_request=request.params,
            raw_response=payload,
            metadata=metadata,
            messages=prompt.messages + (message,),
        )

    @staticmethod
    def parse_tool_calls(wire_calls: Optional[Sequence[Dict[str, Any]]]) -> List[Action]:
        """
        Parse tool calls from an OpenAI chat message.

        Arguments arrive as a JSON string; invalid JSON is kept under "_raw".
        """
        calls = []
        for tc in wire_calls or []:
            function = tc.get("function") or {}
            calls.append(Action(
                id=tc.get("id"),
                name=function.get("name", ""),
                arguments=parse_tool_arguments(function.get("arguments")),
            ))
        return calls

    def parse_usage(self, usage: Optional[Dict[str, Any]]):
        if not usage:
            return None
        return self.provider.normalize_usage(
            input_tokens=usage.get("prompt_tokens"),
            output_tokens=usage.get("completion_tokens"),
            total_tokens=usage.get("total_tokens"),
            cost=usage.get("cost"),
            raw=dict(usage),
        )


class ResponsesAdapter(BaseAdapter):
    """
    OpenAI Responses API shape: structured output, multipart input and
    server-side conversation state through `previous_response_id`.
    """

    name = "responses"
    operation = "responses.create"

    SAMPLING_PARAMS = ("top_p", "user", "parallel_tool_calls", "store", "truncation")

    def supports(self, prompt: Prompt) -> bool:
        return requires_rich_shape(prompt)

    def build_request(self, prompt: Prompt, options: ProviderOptions) -> ProviderRequest:
        params: Dict[str, Any] = {
            "model": self.requested_model(prompt, options),
            "input": self.convert_input(prompt),
        }
        if prompt.instructions:
            params["instructions"] = prompt.instructions
        if prompt.previous_response_id:
            params["previous_response_id"] = prompt.previous_response_id

        temperature = self.sampling_value(prompt, options, "temperature")
        if temperature is not None:
            params["temperature"] = temperature
        max_tokens = self.sampling_value(prompt, options, "max_tokens")
        if max_tokens is not None:
            params["max_output_tokens"] = max_tokens
        params.update({k: prompt.options[k] for k in self.SAMPLING_PARAMS if prompt.options.get(k) is not None})

        if prompt.actions:
            params["tools"] = [
                {
                    "type": "function",
                    "name": action.name,
                    "description": action.description,
                    "parameters": action.to_tool()["function"]["parameters"],
                    "strict": False,
                }
                for action in prompt.actions
            ]
            mode, name = normalize_tool_choice(prompt.tool_choice)
            if mode == "tool":
                params["tool_choice"] = {"type": "function", "name": name}
            elif mode is not None:
                params["tool_choice"] = mode

        schema = prompt.output_schema
        if schema is not None:
            params["text"] = {"format": {"type": "json_schema", **schema}}
        elif prompt.expects_json:
            params["text"] = {"format": {"type": "json_object"}}

        params.update(options.extras)
        params.update(prompt.options.get("extras") or {})
        return ProviderRequest(adapter=self.name, operation=self.operation, params=params)

    def convert_input(self, prompt: Prompt) -> List[Dict[str, Any]]:
        """
        Convert messages to Responses input items.

        With a continuation handle only the messages after the last
        assistant turn are sent; the server already holds the rest.
        """
        messages = prompt.messages
        if prompt.previous_response_id:
            last_assistant = max((i for i, m in enumerate(messages) if m.role == "assistant"), default=-1)
            messages = messages[last_assistant + 1:]

        items: List[Dict[str, Any]] = []
        for msg in messages:
            if msg.role == "tool":
                items.append({"type": "function_call_output", "call_id": msg.tool_call_id, "output": msg.text})
            elif msg.role == "assistant":
                if msg.text:
                    items.append({"role": "assistant", "content": msg.text})
                for call in msg.tool_calls:
                    items.append({
                        "type": "function_call",
                        "call_id": call.id,
                        "name": call.name,
                        "arguments": encode_tool_arguments(call.arguments),
                    })
            elif isinstance(msg.content, tuple):
                items.append({"role": msg.role, "content": [self.convert_part(p) for p in msg.content]})
            else:
                items.append({"role": msg.role, "content": msg.text})
        return items

    @staticmethod
    def convert_part(part: ContentPart) -> Dict[str, Any]:
        if isinstance(part, TextPart):
            return {"type": "input_text", "text": part.text}
        if isinstance(part, ImagePart):
            return {"type": "input_image", "image_url": part.url, "detail": part.detail or "auto"}
        if isinstance(part, FilePart):
            if part.file_id:
                return {"type": "input_file", "file_id": part.file_id}
            return {
                "type": "input_file",
                "file_data": to_data_uri(part.data, part.mime_type or "application/pdf"),
                "filename": part.filename or "file",
            }
        raise ValidationError(f"Unsupported content part: {part!r}")

    async def execute(self, request: ProviderRequest) -> ProviderReply:
        response = await self.client.responses.create(**request.params)
        payload = as_dict(response)
        if payload.get("error"):
            raise error_from_body(payload["error"], self.provider.tag)
        return ProviderReply(payload=payload)

    async def open_stream(self, request: ProviderRequest) -> ProviderReply:
        stream = await self.client.responses.create(**request.params, stream=True)
        return ProviderReply(stream=stream)

    async def consume_stream(self, reply: ProviderReply, channel: StreamChannel) -> ProviderReply:
        chunks: List[str] = []
        calls = ToolCallAccumulator()
        final: Optional[Dict[str, Any]] = None

        async for event in iterate_stream(reply.stream):
            data = as_dict(event)
            kind = data.get("type")
            if kind == "response.output_text.delta":
                piece = data.get("delta")
                if piece:
                    chunks.append(piece)
                    await channel.update(piece)
            elif kind == "response.output_item.added":
                item = data.get("item") or {}
                if item.get("type") == "function_call":
                    calls.add(item.get("id"), id=item.get("call_id"), name=item.get("name"),
                              arguments=item.get("arguments"))
            elif kind == "response.function_call_arguments.delta":
                calls.add(data.get("item_id"), arguments=data.get("delta"))
            elif kind == "response.function_call_arguments.done":
                calls.add(data.get("item_id"), arguments=parse_tool_arguments(data.get("arguments")))
            elif kind in ("response.completed", "response.incomplete"):
                final = data.get("response")
            elif kind in ("response.failed", "error"):
                error = (data.get("response") or {}).get("error") or data
                raise error_from_body(error, self.provider.tag)

        if final is None:
            output: List[Dict[str, Any]] = []
            if chunks:
                output.append({
                    "type": "message",
                    "role": "assistant",
                    "content": [{"type": "output_text", "text": "".join(chunks)}],
                })
            for call in calls.to_wire():
                output.append({
                    "type": "function_call",
                    "call_id": call["id"],
                    "name": call["function"]["name"],
                    "arguments": call["function"]["arguments"],
                })
            final = {"output": output, "status": "completed"}
        return ProviderReply(payload=final, headers=reply.headers)

    def parse_response(self, prompt: Prompt, request: ProviderRequest, reply: ProviderReply) -> Response:
        payload = reply.payload
        texts: List[str] = []
        calls: List[Action] = []
        refusal = None
        for item in payload.get("output") or []:
            kind = item.get("type")
            if kind == "message":
                for part in item.get("content") or []:
                    if part.get("type") == "output_text":
                        texts.append(part.get("text", ""))
                    elif part.get("type") == "refusal":
                        refusal = part.get("refusal")
            elif kind == "function_call":
                calls.append(Action(
                    id=item.get("call_id") or item.get("id"),
                    name=item.get("name", ""),
                    arguments=parse_tool_arguments(item.get("arguments")),
                ))

        content: Any = "".join(texts)
        status = payload.get("status")
        if calls:
            finish_reason = "tool_calls"
        elif status == "incomplete":
            finish_reason = (payload.get("incomplete_details") or {}).get("reason") or "incomplete"
        else:
            finish_reason = "stop"
            content = self.structured_content(prompt, content)

        message = Message(
            role="assistant",
            content=content,
            tool_calls=tuple(calls),
            generation_id=payload.get("id"),
        )
        usage = None
        if payload.get("usage"):
            raw_usage = payload["usage"]
            usage = self.provider.normalize_usage(
                input_tokens=raw_usage.get("input_tokens"),
                output_tokens=raw_usage.get("output_tokens"),
                total_tokens=raw_usage.get("total_tokens"),
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
                "finish_reason": finish_reason,
                "response_id": payload.get("id"),
                "status": status,
                "refusal": refusal,
            }),
            messages=prompt.messages + (message,),
        )


class OpenAIProvider(BaseLLMProvider):
    """
    Provider for the OpenAI API.

    Plain chat prompts go through Chat Completions; prompts that need
    structured output, multipart content or a continuation handle go through
    the Responses API.
    """

    tag = "openai"
    options_class = OpenAIOptions
    capabilities = frozenset({"stream", "embed", "list_models"})

    def _create_client(self) -> AsyncOpenAI:
        # Retries are handled by genmux so the SDK's own are disabled.
        return AsyncOpenAI(
            api_key=self.options.api_key,
            base_url=self.options.base_url,
            organization=getattr(self.options, "organization", None),
            project=getattr(self.options, "project", None),
            timeout=self.options.timeout,
            max_retries=0,
        )

    def _create_adapters(self) -> List[BaseAdapter]:
        return [ChatCompletionsAdapter(self), ResponsesAdapter(self)]

    async def embed(self, inputs: Union[str, Sequence[str]], model: Optional[str] = None) -> EmbeddingResponse:
        """
        Embed texts with `embeddings.create`.

        Args:
            inputs: One text or a list of texts.
            model: Embedding model; defaults to the `embedding_model` option.

        Returns:
            EmbeddingResponse: One vector per input, in input order.
        """
        if not self.supports("embed"):
            raise UnsupportedOperationError(self.tag, "embed")
        texts = as_inputs(inputs)
        if not texts:
            raise ValidationError("embed() needs at least one input")
        model = model or getattr(self.options, "embedding_model", None)
        if not model:
            raise ValidationError(f"No embedding model configured for provider '{self.tag}'")

        result = await self._with_retries(lambda: self.client.embeddings.create(model=model, input=texts))
        payload = as_dict(result)
        data = sorted(payload.get("data") or [], key=lambda d: d.get("index", 0))
        raw_usage = payload.get("usage")
        usage = None
        if raw_usage:
            usage = self.normalize_usage(
                input_tokens=raw_usage.get("prompt_tokens"),
                output_tokens=None,
                total_tokens=raw_usage.get("total_tokens"),
                raw=dict(raw_usage),
            )
        return EmbeddingResponse(
            vectors=tuple(tuple(d.get("embedding") or ()) for d in data),
            provider=self.tag,
            model=payload.get("model") or model,
            usage=usage,
        )

    async def list_models(self) -> List[str]:
        """
        Get list of available models from the provider API.

        Returns:
            List[str]: Model ids. Empty if the API call fails.
        """
        try:
            models = await self.client.models.list()
            return [m.id for m in models.data]
        except Exception as e:
            logger.warning("Could not list %s models: %s", self.tag, e)
            return []
