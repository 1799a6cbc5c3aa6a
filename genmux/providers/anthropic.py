import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from anthropic import AsyncAnthropic

from .base import BaseAdapter, BaseLLMProvider, ProviderOptions, ProviderReply, ProviderRequest, iterate_stream
from ..errors import ValidationError
from ..streaming import StreamChannel, ToolCallAccumulator
from ..types import Action, ContentPart, FilePart, ImagePart, Message, Prompt, Response, TextPart
from ..utils import as_dict, compact, normalize_tool_choice, parse_tool_arguments, split_data_uri

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 1024


class AnthropicOptions(ProviderOptions):
    api_key_env = ("ANTHROPIC_API_KEY",)
    default_model = "claude-3-5-sonnet-latest"


def _schema_instruction(prompt: Prompt) -> Optional[str]:
    """
    Claude has no native JSON-schema envelope; the requirement is spelled
    out as a system instruction instead.
    """
    schema = prompt.output_schema
    if schema is not None:
        return (
            f"Respond only with a JSON value named '{schema['name']}' ({schema['description']}) "
            "that validates against this JSON schema. Do not add any other text.\n"
            + json.dumps(schema["schema"])
        )
    if prompt.expects_json:
        return "Respond only with valid JSON. Do not add any other text."
    return None


class MessagesAdapter(BaseAdapter):
    """
    Anthropic Messages API shape.

    Differs from OpenAI's in that:
    - 'system' text is a separate top-level parameter.
    - Roles must alternate, so consecutive same-role messages are merged and
      tool results travel as `tool_result` blocks inside a user turn.
    - `max_tokens` is required.
    """

    name = "messages"
    operation = "messages.create"

    # canonical option -> Messages API parameter
    SAMPLING_PARAMS = {"top_p": "top_p", "top_k": "top_k", "stop": "stop_sequences"}

    def build_request(self, prompt: Prompt, options: ProviderOptions) -> ProviderRequest:
        system_text, messages = self.convert_messages(prompt)

        params: Dict[str, Any] = {
            "model": self.requested_model(prompt, options),
            "messages": messages,
            "max_tokens": self.sampling_value(prompt, options, "max_tokens") or DEFAULT_MAX_TOKENS,
        }
        if system_text:
            params["system"] = system_text
        temperature = self.sampling_value(prompt, options, "temperature")
        if temperature is not None:
            params["temperature"] = temperature
        for key, wire_key in self.SAMPLING_PARAMS.items():
            value = prompt.options.get(key)
            if value is not None:
                params[wire_key] = [value] if key == "stop" and isinstance(value, str) else value
        if prompt.options.get("user"):
            params["metadata"] = {"user_id": prompt.options["user"]}

        if prompt.actions:
            params["tools"] = self.convert_tools(prompt.actions)
            tool_choice = self.convert_tool_choice(prompt.tool_choice)
            if tool_choice is not None:
                params["tool_choice"] = tool_choice

        params.update(options.extras)
        params.update(prompt.options.get("extras") or {})
        return ProviderRequest(adapter=self.name, operation=self.operation, params=params)

    def convert_messages(self, prompt: Prompt) -> Tuple[Optional[str], List[Dict[str, Any]]]:
        """
        Convert messages to Claude format.

        Returns:
            Tuple containing:
            - system_text: instructions, system messages and any JSON
              instruction joined by blank lines (or None)
            - converted: alternating user/assistant message dicts
        """
        system_parts: List[str] = []
        if prompt.instructions:
            system_parts.append(prompt.instructions)
        converted: List[Dict[str, Any]] = []

        for msg in prompt.messages:
            if msg.role == "system":
                system_parts.append(msg.text)
                continue

            if msg.role == "tool":
                role = "user"
                blocks = [compact({
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.text,
                    "is_error": True if msg.metadata.get("error") else None,
                })]
            elif msg.role == "assistant":
                role = "assistant"
                blocks = [{"type": "text", "text": msg.text}] if msg.text else []
                blocks.extend(
                    {"type": "tool_use", "id": c.id, "name": c.name, "input": dict(c.arguments)}
                    for c in msg.tool_calls
                )
            else:
                role = "user"
                blocks = [self.convert_part(p) for p in msg.parts]

            if not blocks:
                continue
            # Claude requires alternating roles
            if converted and converted[-1]["role"] == role:
                converted[-1]["content"].extend(blocks)
            else:
                converted.append({"role": role, "content": blocks})

        instruction = _schema_instruction(prompt)
        if instruction:
            system_parts.append(instruction)

        # Collapse single text blocks back to plain strings
        for entry in converted:
            content = entry["content"]
            if len(content) == 1 and content[0]["type"] == "text":
                entry["content"] = content[0]["text"]

        system_text = "\n\n".join(p for p in system_parts if p) or None
        return system_text, converted

    @staticmethod
    def convert_part(part: ContentPart) -> Dict[str, Any]:
        if isinstance(part, TextPart):
            return {"type": "text", "text": part.text}
        if isinstance(part, ImagePart):
            if part.is_data_uri:
                data, media_type = split_data_uri(part.url)
                return {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}}
            return {"type": "image", "source": {"type": "url", "url": part.url}}
        if isinstance(part, FilePart):
            if part.file_id:
                return {"type": "document", "source": {"type": "file", "file_id": part.file_id}}
            data, media_type = part.data, part.mime_type or "application/pdf"
            if data.startswith("data:"):
                data, media_type = split_data_uri(data)
            return {"type": "document", "source": {"type": "base64", "media_type": media_type, "data": data}}
        raise ValidationError(f"Unsupported content part: {part!r}")

    @staticmethod
    def convert_tools(actions) -> List[Dict[str, Any]]:
        """
        Convert tool declarations to Claude format.

        Claude uses 'input_schema' instead of 'parameters'.
        """
        return [
            {
                "name": action.name,
                "description": action.description,
                "input_schema": action.to_tool()["function"]["parameters"],
            }
            for action in actions
        ]

    @staticmethod
    def convert_tool_choice(choice: Any) -> Optional[Dict[str, Any]]:
        mode, name = normalize_tool_choice(choice)
        if mode is None:
            return None
        if mode == "required":
            return {"type": "any"}
        if mode == "tool":
            return {"type": "tool", "name": name}
        return {"type": mode}

    async def execute(self, request: ProviderRequest) -> ProviderReply:
        message = await self.client.messages.create(**request.params)
        return ProviderReply(payload=as_dict(message))

    async def open_stream(self, request: ProviderRequest) -> ProviderReply:
        stream = await self.client.messages.create(**request.params, stream=True)
        return ProviderReply(stream=stream)

    async def consume_stream(self, reply: ProviderReply, channel: StreamChannel) -> ProviderReply:
        """
        Fold raw Messages stream events back into a message payload.

        Text arrives as `text_delta`s and tool input as `input_json_delta`
        fragments, both keyed by content block index.
        """
        payload: Dict[str, Any] = {"content": []}
        blocks: Dict[int, Dict[str, Any]] = {}
        calls = ToolCallAccumulator()
        usage: Dict[str, Any] = {}

        async for event in iterate_stream(reply.stream):
            data = as_dict(event)
            kind = data.get("type")
            if kind == "message_start":
                message = data.get("message") or {}
                payload["id"] = message.get("id")
                payload["model"] = message.get("model")
                usage.update(message.get("usage") or {})
            elif kind == "content_block_start":
                index = data.get("index", 0)
                block = dict(data.get("content_block") or {})
                blocks[index] = block
                if block.get("type") == "tool_use":
                    calls.add(index, id=block.get("id"), name=block.get("name"))
            elif kind == "content_block_delta":
                index = data.get("index", 0)
                delta = data.get("delta") or {}
                if delta.get("type") == "text_delta":
                    piece = delta.get("text", "")
                    block = blocks.setdefault(index, {"type": "text", "text": ""})
                    block["text"] = block.get("text", "") + piece
                    await channel.update(piece)
                elif delta.get("type") == "input_json_delta":
                    calls.add(index, arguments=delta.get("partial_json"))
            elif kind == "message_delta":
                delta = data.get("delta") or {}
                if delta.get("stop_reason"):
                    payload["stop_reason"] = delta["stop_reason"]
                usage.update(data.get("usage") or {})

        wire_calls = iter(calls.actions())
        for index in sorted(blocks):
            block = blocks[index]
            if block.get("type") == "tool_use":
                action = next(wire_calls)
                block = {"type": "tool_use", "id": action.id, "name": action.name, "input": dict(action.arguments)}
            payload["content"].append(block)
        if usage:
            payload["usage"] = usage
        return ProviderReply(payload=compact(payload), headers=reply.headers)

    def parse_response(self, prompt: Prompt, request: ProviderRequest, reply: ProviderReply) -> Response:
        payload = reply.payload
        texts: List[str] = []
        calls: List[Action] = []
        for block in payload.get("content") or []:
            if block.get("type") == "text":
                texts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                calls.append(Action(
                    id=block.get("id"),
                    name=block.get("name", ""),
                    arguments=parse_tool_arguments(block.get("input")),
                ))

        content: Any = "".join(texts)
        if not calls:
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
                "finish_reason": payload.get("stop_reason"),
                "id": payload.get("id"),
                "stop_sequence": payload.get("stop_sequence"),
            }),
            messages=prompt.messages + (message,),
        )


class AnthropicProvider(BaseLLMProvider):
    """
    Provider for Anthropic (Claude) API.
    """

    tag = "anthropic"
    options_class = AnthropicOptions
    capabilities = frozenset({"stream", "list_models"})

    def _create_client(self) -> AsyncAnthropic:
        return AsyncAnthropic(
            api_key=self.options.api_key,
            base_url=self.options.base_url,
            timeout=self.options.timeout,
            max_retries=0,
        )

    def _create_adapters(self) -> List[BaseAdapter]:
        return [MessagesAdapter(self)]

    async def list_models(self) -> List[str]:
        """
        Get list of available models from Anthropic API.

        Returns:
            List[str]: Model identifiers. Empty if the API call fails.
        """
        try:
            models = await self.client.models.list()
            return [m.id for m in models.data]
        except Exception as e:
            logger.warning("Could not list %s models: %s", self.tag, e)
            return []
