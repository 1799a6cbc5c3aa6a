import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from google import genai
from google.genai import types

from .base import (
    BaseAdapter,
    BaseLLMProvider,
    ProviderOptions,
    ProviderReply,
    ProviderRequest,
    as_inputs,
    iterate_stream,
)
from ..errors import ValidationError
from ..streaming import StreamChannel
from ..types import Action, ContentPart, EmbeddingResponse, FilePart, ImagePart, Message, Prompt, Response, TextPart
from ..utils import as_dict, compact, guess_mime_type, normalize_tool_choice, parse_tool_arguments, split_data_uri

logger = logging.getLogger(__name__)


class GeminiOptions(ProviderOptions):
    api_key_env = ("GOOGLE_API_KEY", "GEMINI_API_KEY")
    default_model = "gemini-2.0-flash"

    embedding_model: Optional[str] = "text-embedding-004"


def _function_response(msg: Message) -> Dict[str, Any]:
    # Gemini wants a JSON object; tool output that is not one is wrapped.
    try:
        value: Any = json.loads(msg.text)
    except ValueError:
        value = msg.text
    key = "error" if msg.metadata.get("error") else "result"
    return value if isinstance(value, dict) and key == "result" else {key: value}


class GenerateContentAdapter(BaseAdapter):
    """
    Gemini `generate_content` shape (google-genai SDK).

    Roles map assistant -> "model" and everything else -> "user"; system
    text goes to `config.system_instruction`.
    """

    name = "generate_content"
    operation = "models.generate_content"

    # canonical option -> GenerateContentConfig field
    SAMPLING_PARAMS = {
        "top_p": "top_p",
        "top_k": "top_k",
        "stop": "stop_sequences",
        "seed": "seed",
        "frequency_penalty": "frequency_penalty",
        "presence_penalty": "presence_penalty",
    }

    def build_request(self, prompt: Prompt, options: ProviderOptions) -> ProviderRequest:
        system_instruction, contents = self.convert_messages(prompt)

        config: Dict[str, Any] = {}
        if system_instruction:
            config["system_instruction"] = system_instruction
        temperature = self.sampling_value(prompt, options, "temperature")
        if temperature is not None:
            config["temperature"] = temperature
        max_tokens = self.sampling_value(prompt, options, "max_tokens")
        if max_tokens is not None:
            config["max_output_tokens"] = max_tokens
        for key, wire_key in self.SAMPLING_PARAMS.items():
            value = prompt.options.get(key)
            if value is not None:
                config[wire_key] = [value] if key == "stop" and isinstance(value, str) else value

        if prompt.actions:
            config["tools"] = self.convert_tools(prompt.actions)
            tool_config = self.convert_tool_choice(prompt.tool_choice)
            if tool_config is not None:
                config["tool_config"] = tool_config

        schema = prompt.output_schema
        if schema is not None:
            config["response_mime_type"] = "application/json"
            config["response_json_schema"] = schema["schema"]
        elif prompt.expects_json:
            config["response_mime_type"] = "application/json"

        config.update(options.extras)
        config.update(prompt.options.get("extras") or {})
        params = {
            "model": self.requested_model(prompt, options),
            "contents": contents,
            "config": config,
        }
        return ProviderRequest(adapter=self.name, operation=self.operation, params=params)

    def convert_messages(self, prompt: Prompt) -> Tuple[Optional[str], List[Dict[str, Any]]]:
        """
        Convert messages to Gemini contents.

        Tool results become `function_response` parts; Gemini matches them
        by function name, which is looked up from the call they answer.
        """
        system_parts: List[str] = [prompt.instructions] if prompt.instructions else []
        names_by_call_id: Dict[str, str] = {}
        contents: List[Dict[str, Any]] = []

        for msg in prompt.messages:
            if msg.role == "system":
                system_parts.append(msg.text)
                continue

            if msg.role == "assistant":
                role = "model"
                parts = [{"text": msg.text}] if msg.text else []
                for call in msg.tool_calls:
                    if call.id:
                        names_by_call_id[call.id] = call.name
                    parts.append({"function_call": {"name": call.name, "args": dict(call.arguments)}})
            elif msg.role == "tool":
                role = "user"
                name = names_by_call_id.get(msg.tool_call_id) or msg.name or msg.tool_call_id
                parts = [{"function_response": {"name": name, "response": _function_response(msg)}}]
            else:
                role = "user"
                parts = [self.convert_part(p) for p in msg.parts]

            if not parts:
                continue
            if contents and contents[-1]["role"] == role:
                contents[-1]["parts"].extend(parts)
            else:
                contents.append({"role": role, "parts": parts})

        system_instruction = "\n\n".join(p for p in system_parts if p) or None
        return system_instruction, contents

    @staticmethod
    def convert_part(part: ContentPart) -> Dict[str, Any]:
        if isinstance(part, TextPart):
            return {"text": part.text}
        if isinstance(part, ImagePart):
            if part.is_data_uri:
                data, mime_type = split_data_uri(part.url)
                return {"inline_data": {"mime_type": mime_type, "data": data}}
            return {"file_data": {"file_uri": part.url, "mime_type": part.mime_type or guess_mime_type(part.url)}}
        if isinstance(part, FilePart):
            if part.file_id:
                return {"file_data": compact({"file_uri": part.file_id, "mime_type": part.mime_type})}
            data, mime_type = part.data, part.mime_type or "application/pdf"
            if data.startswith("data:"):
                data, mime_type = split_data_uri(data)
            return {"inline_data": {"mime_type": mime_type, "data": data}}
        raise ValidationError(f"Unsupported content part: {part!r}")

    @staticmethod
    def convert_tools(actions: Sequence[Action]) -> List[Dict[str, Any]]:
        """Convert tool declarations to one Gemini tool with function declarations."""
        return [{
            "function_declarations": [
                {
                    "name": action.name,
                    "description": action.description,
                    "parameters_json_schema": action.to_tool()["function"]["parameters"],
                }
                for action in actions
            ]
        }]

    @staticmethod
    def convert_tool_choice(choice: Any) -> Optional[Dict[str, Any]]:
        mode, name = normalize_tool_choice(choice)
        if mode is None:
            return None
        if mode == "tool":
            return {"function_calling_config": {"mode": "ANY", "allowed_function_names": [name]}}
        wire_mode = {"auto": "AUTO", "none": "NONE", "required": "ANY"}[mode]
        return {"function_calling_config": {"mode": wire_mode}}

    async def execute(self, request: ProviderRequest) -> ProviderReply:
        response = await self.client.aio.models.generate_content(**request.params)
        return ProviderReply(payload=as_dict(response))

    async def open_stream(self, request: ProviderRequest) -> ProviderReply:
        stream = await self.client.aio.models.generate_content_stream(**request.params)
        return ProviderReply(stream=stream)

    async def consume_stream(self, reply: ProviderReply, channel: StreamChannel) -> ProviderReply:
        texts: List[str] = []
        call_parts: List[Dict[str, Any]] = []
        finish_reason = None
        usage = None
        model_version = None
        response_id = None

        async for chunk in iterate_stream(reply.stream):
            data = as_dict(chunk)
            # Usage metadata is cumulative; the last chunk carries the totals
            usage = data.get("usage_metadata") or usage
            model_version = data.get("model_version") or model_version
            response_id = data.get("response_id") or response_id
            candidates = data.get("candidates") or []
            if not candidates:
                continue
            candidate = candidates[0]
            for part in (candidate.get("content") or {}).get("parts") or []:
                if part.get("function_call"):
                    # Gemini streams whole function calls, never fragments
                    call_parts.append({"function_call": part["function_call"]})
                elif part.get("text") and not part.get("thought"):
                    texts.append(part["text"])
                    await channel.update(part["text"])
            finish_reason = candidate.get("finish_reason") or finish_reason

        parts = ([{"text": "".join(texts)}] if texts else []) + call_parts
        payload = compact({
            "candidates": [compact({"content": {"role": "model", "parts": parts}, "finish_reason": finish_reason})],
            "usage_metadata": usage,
            "model_version": model_version,
            "response_id": response_id,
        })
        return ProviderReply(payload=payload, headers=reply.headers)

    def parse_response(self, prompt: Prompt, request: ProviderRequest, reply: ProviderReply) -> Response:
        payload = reply.payload
        candidates = payload.get("candidates") or []
        candidate = candidates[0] if candidates else {}
        texts: List[str] = []
        calls: List[Action] = []
        for part in (candidate.get("content") or {}).get("parts") or []:
            if part.get("function_call"):
                fc = part["function_call"]
                calls.append(Action(
                    # Gemini doesn't always provide call IDs
                    id=fc.get("id") or f"gemini_{fc.get('name')}_{len(calls)}",
                    name=fc.get("name", ""),
                    arguments=parse_tool_arguments(fc.get("args")),
                ))
            elif part.get("text") and not part.get("thought"):
                texts.append(part["text"])

        content: Any = "".join(texts)
        if not calls:
            content = self.structured_content(prompt, content)
        message = Message(
            role="assistant",
            content=content,
            tool_calls=tuple(calls),
            generation_id=payload.get("response_id"),
        )

        usage = None
        um = payload.get("usage_metadata")
        if um:
            usage = self.provider.normalize_usage(
                input_tokens=um.get("prompt_token_count"),
                output_tokens=um.get("candidates_token_count"),
                total_tokens=um.get("total_token_count"),
                raw=dict(um),
            )
        finish_reason = candidate.get("finish_reason")
        metadata = compact({
            "finish_reason": finish_reason.lower() if isinstance(finish_reason, str) else finish_reason,
            "id": payload.get("response_id"),
            "block_reason": (payload.get("prompt_feedback") or {}).get("block_reason"),
        })
        return Response(
            message=message,
            provider=self.provider.tag,
            model=payload.get("model_version") or request.params.get("model"),
            usage=usage,
            raw_request=request.params,
            raw_response=payload,
            metadata=metadata,
            messages=prompt.messages + (message,),
        )


class GeminiProvider(BaseLLMProvider):
    """
    Provider for Google Gemini API (using google-genai SDK).
    """

    tag = "gemini"
    options_class = GeminiOptions
    capabilities = frozenset({"stream", "embed", "list_models"})
    inline_remote_images = True

    def _create_client(self) -> genai.Client:
        http_options = None
        if self.options.base_url or self.options.timeout:
            http_options = types.HttpOptions(
                base_url=self.options.base_url,
                timeout=int(self.options.timeout * 1000),
            )
        return genai.Client(api_key=self.options.api_key, http_options=http_options)

    def _create_adapters(self) -> List[BaseAdapter]:
        return [GenerateContentAdapter(self)]

    async def embed(self, inputs: Union[str, Sequence[str]], model: Optional[str] = None) -> EmbeddingResponse:
        """
        Embed texts with `embed_content`.

        Returns:
            EmbeddingResponse: One vector per input, in input order. Gemini
            reports no token usage for embeddings.
        """
        texts = as_inputs(inputs)
        if not texts:
            raise ValidationError("embed() needs at least one input")
        model = model or self.options.embedding_model
        result = await self._with_retries(
            lambda: self.client.aio.models.embed_content(model=model, contents=texts)
        )
        payload = as_dict(result)
        return EmbeddingResponse(
            vectors=tuple(tuple(e.get("values") or ()) for e in payload.get("embeddings") or []),
            provider=self.tag,
            model=model,
        )

    async def list_models(self) -> List[str]:
        """
        Get list of available models from Gemini API.

        Only models that support 'generateContent' are returned. The pager of
        the sync client is walked in a worker thread.
        """
        def _list():
            names = []
            for m in self.client.models.list():
                actions = getattr(m, "supported_actions", None)
                if not actions or "generateContent" in actions:
                    names.append(m.name)
            return names

        try:
            return await asyncio.to_thread(_list)
        except Exception as e:
            logger.warning("Could not list %s models: %s", self.tag, e)
            return []
