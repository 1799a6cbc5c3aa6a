import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, TypedDict, Union

from .errors import ValidationError

# =============================================================================
# Wire-level Tool Definitions (OpenAI format, shared by every adapter)
# =============================================================================

Role = Literal["system", "user", "assistant", "tool"]
VALID_ROLES: Tuple[str, ...] = ("system", "user", "assistant", "tool")


class FunctionParameters(TypedDict, total=False):
    """
    JSON Schema for function parameters.
    """
    type: Literal["object"]
    properties: Dict[str, Any]
    required: List[str]


class FunctionDefinition(TypedDict, total=False):
    """
    Function definition for tools.
    """
    name: str
    description: str
    parameters: FunctionParameters


class Tool(TypedDict):
    """
    Tool definition in OpenAI format.
    """
    type: Literal["function"]
    function: FunctionDefinition


# =============================================================================
# Content Parts
# =============================================================================

@dataclass(frozen=True)
class TextPart:
    """Plain text content part."""
    text: str
    type: Literal["text"] = field(default="text", init=False)


@dataclass(frozen=True)
class ImagePart:
    """
    Image content part.

    `url` is either an http(s) URL or a data URI
    (``data:image/png;base64,...``).
    """
    url: str
    detail: Optional[Literal["auto", "low", "high"]] = None
    mime_type: Optional[str] = None
    type: Literal["image"] = field(default="image", init=False)

    @property
    def is_data_uri(self) -> bool:
        return self.url.startswith("data:")


@dataclass(frozen=True)
class FilePart:
    """
    File content part: inline data (base64 or data URI) or a vendor file id.
    """
    data: Optional[str] = None
    file_id: Optional[str] = None
    filename: Optional[str] = None
    mime_type: Optional[str] = None
    type: Literal["file"] = field(default="file", init=False)

    def __post_init__(self):
        if not self.data and not self.file_id:
            raise ValidationError("FilePart requires either 'data' or 'file_id'")


ContentPart = Union[TextPart, ImagePart, FilePart]
PART_TYPES = (TextPart, ImagePart, FilePart)


def coerce_part(part: Any) -> ContentPart:
    """
    Coerce a bare string or an OpenAI-style dict into a content part.

    Accepted dict shapes:
        {"type": "text", "text": ...}
        {"type": "image_url", "image_url": {"url": ..., "detail": ...}}
        {"type": "input_image", "image_url": "..."}
        {"type": "file" | "input_file", "file_id" | "file_data" | "data", "filename"}
    """
    if isinstance(part, PART_TYPES):
        return part
    if isinstance(part, str):
        return TextPart(part)
    if not isinstance(part, Mapping):
        raise ValidationError(f"Unsupported content part: {part!r}")

    kind = part.get("type")
    if kind in ("text", "input_text", "output_text"):
        text = part.get("text")
        if not isinstance(text, str):
            raise ValidationError("Text part requires a string 'text'")
        return TextPart(text)
    if kind in ("image_url", "input_image", "image"):
        image = part.get("image_url", part.get("url"))
        detail = None
        if isinstance(image, Mapping):
            detail = image.get("detail")
            image = image.get("url")
        if not isinstance(image, str) or not image:
            raise ValidationError("Image part requires a URL or data URI")
        return ImagePart(url=image, detail=detail or part.get("detail"), mime_type=part.get("mime_type"))
    if kind in ("file", "input_file"):
        nested = part.get("file") or part.get("input_file") or {}
        return FilePart(
            data=part.get("file_data") or part.get("data") or nested.get("file_data") or nested.get("data"),
            file_id=part.get("file_id") or nested.get("file_id"),
            filename=part.get("filename") or nested.get("filename"),
            mime_type=part.get("mime_type"),
        )
    raise ValidationError(f"Unknown content part type: {kind!r}")


def _part_to_dict(part: ContentPart) -> Dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ImagePart):
        return {k: v for k, v in {"type": "image", "url": part.url, "detail": part.detail,
                                  "mime_type": part.mime_type}.items() if v is not None}
    return {k: v for k, v in {"type": "file", "data": part.data, "file_id": part.file_id,
                              "filename": part.filename, "mime_type": part.mime_type}.items() if v is not None}


# =============================================================================
# Actions (tool declarations and tool calls)
# =============================================================================

@dataclass(frozen=True)
class Action:
    """
    A tool the model may call.

    As a declaration on a Prompt it carries `description` and the JSON schema
    in `parameters`. As a call requested by the model it carries the
    correlation `id` and the parsed `arguments`.
    """
    name: str
    description: str = ""
    parameters: Mapping[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    arguments: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name:
            raise ValidationError("Action name must be a non-empty string")
        if self.arguments is None:
            object.__setattr__(self, "arguments", {})
        if not isinstance(self.arguments, Mapping):
            raise ValidationError(f"Arguments for action '{self.name}' must be a mapping")

    def to_tool(self) -> Tool:
        """Render the declaration as an OpenAI function tool."""
        parameters = dict(self.parameters) if self.parameters else {"type": "object", "properties": {}}
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }

    @classmethod
    def from_tool(cls, tool: Mapping[str, Any]) -> "Action":
        """Build a declaration from an OpenAI (nested or flat) tool dict."""
        func = tool.get("function", tool)
        return cls(
            name=func.get("name", ""),
            description=func.get("description", "") or "",
            parameters=func.get("parameters") or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "parameters": dict(self.parameters),
            "arguments": dict(self.arguments),
        }


# =============================================================================
# Messages
# =============================================================================

MessageContent = Union[str, Tuple[ContentPart, ...], Dict[str, Any], List[Any]]


@dataclass(frozen=True)
class Message:
    """
    Canonical chat message.

    Roles:
    - "system": System prompt / instructions
    - "user": User message
    - "assistant": Model response (may carry requested tool calls)
    - "tool": Tool execution result, answering `tool_call_id`

    Content is a string or an ordered tuple of content parts. Assistant
    messages produced under a JSON-schema requirement may carry the parsed
    value (dict or list) instead.
    """
    role: Role
    content: MessageContent = ""
    tool_calls: Tuple[Action, ...] = ()
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    generation_id: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.role not in VALID_ROLES:
            raise ValidationError(
                f"Invalid role: {self.role!r}. Valid roles are: {', '.join(VALID_ROLES)}"
            )

        content = self.content
        if content is None:
            content = ""
        if isinstance(content, (list, tuple)):
            if self.role == "assistant" and content and not all(_looks_like_part(p) for p in content):
                # Structured output (a JSON array)
                content = list(content)
            else:
                content = tuple(coerce_part(p) for p in content)
        elif isinstance(content, Mapping):
            if self.role != "assistant":
                raise ValidationError("Only assistant messages may carry structured content")
            content = dict(content)
        elif not isinstance(content, str):
            raise ValidationError(
                f"Message content must be a string or a list of content parts, got {type(content).__name__}"
            )
        object.__setattr__(self, "content", content)

        calls = tuple(self.tool_calls or ())
        for call in calls:
            if not isinstance(call, Action):
                raise ValidationError("tool_calls must contain Action instances")
        if calls and self.role != "assistant":
            raise ValidationError("Only assistant messages may request tool calls")
        object.__setattr__(self, "tool_calls", calls)

        if self.role == "tool" and not self.tool_call_id:
            raise ValidationError("Tool messages require a tool_call_id")

    @property
    def parts(self) -> Tuple[ContentPart, ...]:
        if isinstance(self.content, tuple):
            return self.content
        if isinstance(self.content, str):
            return (TextPart(self.content),) if self.content else ()
        return (TextPart(self.text),)

    @property
    def text(self) -> str:
        """Textual rendering of the content."""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, tuple):
            return "".join(p.text for p in self.content if isinstance(p, TextPart))
        return json.dumps(self.content)

    @property
    def is_multipart(self) -> bool:
        return isinstance(self.content, tuple) and any(not isinstance(p, TextPart) for p in self.content)

    @property
    def requests_actions(self) -> bool:
        return bool(self.tool_calls)

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.content, tuple):
            content: Any = [_part_to_dict(p) for p in self.content]
        else:
            content = self.content
        data: Dict[str, Any] = {"role": self.role, "content": content}
        if self.tool_calls:
            data["tool_calls"] = [
                {"id": c.id, "name": c.name, "arguments": dict(c.arguments)} for c in self.tool_calls
            ]
        for key in ("tool_call_id", "name", "generation_id"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        """Build a Message from its dict shape (see `to_dict`)."""
        if not isinstance(data, Mapping):
            raise ValidationError(f"Messages must be dicts or Message objects, got {type(data).__name__}")
        calls = []
        for tc in data.get("tool_calls") or ():
            if isinstance(tc, Action):
                calls.append(tc)
                continue
            func = tc.get("function") or {}
            args = tc.get("arguments", func.get("arguments"))
            if isinstance(args, str):
                from .utils import parse_tool_arguments
                args = parse_tool_arguments(args)
            calls.append(Action(id=tc.get("id"), name=tc.get("name") or func.get("name", ""), arguments=args or {}))
        return cls(
            role=data.get("role", "user"),
            content=data.get("content", ""),
            tool_calls=tuple(calls),
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
            generation_id=data.get("generation_id"),
            metadata=data.get("metadata") or {},
        )


def _looks_like_part(item: Any) -> bool:
    if isinstance(item, PART_TYPES) or isinstance(item, str):
        return True
    return isinstance(item, Mapping) and item.get("type") in (
        "text", "input_text", "output_text", "image_url", "input_image", "image", "file", "input_file"
    )


def coerce_message(message: Union[Message, Mapping[str, Any]]) -> Message:
    if isinstance(message, Message):
        return message
    return Message.from_dict(message)


# =============================================================================
# Prompt
# =============================================================================

@dataclass(frozen=True)
class Prompt:
    """
    Canonical request: ordered messages, optional system instructions, tool
    declarations, free-form options and an optional continuation handle.

    Recognised options:
        model, temperature, max_tokens, top_p, top_k, stop, seed,
        frequency_penalty, presence_penalty, user,
        json_schema / output_schema / structured_output, response_format,
        tool_choice ("auto" | "none" | "required" | {"name": ...}),
        extras (dict merged verbatim into the vendor payload).

    Prompts are immutable; `with_messages` and `with_options` derive new ones.
    """
    messages: Tuple[Message, ...] = ()
    instructions: Optional[str] = None
    actions: Tuple[Action, ...] = ()
    options: Mapping[str, Any] = field(default_factory=dict)
    previous_response_id: Optional[str] = None

    def __post_init__(self):
        messages = self.messages
        if isinstance(messages, (str, Message, Mapping)):
            messages = [messages]
        coerced = []
        for m in messages or ():
            if isinstance(m, str):
                coerced.append(Message(role="user", content=m))
            else:
                coerced.append(coerce_message(m))
        object.__setattr__(self, "messages", tuple(coerced))

        actions = []
        for a in self.actions or ():
            actions.append(a if isinstance(a, Action) else Action.from_tool(a))
        names = [a.name for a in actions]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValidationError(f"Duplicate action names in prompt: {', '.join(duplicates)}")
        object.__setattr__(self, "actions", tuple(actions))

        if not isinstance(self.options, Mapping):
            raise ValidationError("Prompt options must be a mapping")
        object.__setattr__(self, "options", dict(self.options))

        if self.instructions is not None and not isinstance(self.instructions, str):
            raise ValidationError("Prompt instructions must be a string")

        # Raises for a malformed schema requirement
        self.output_schema

        self._validate_history()

    def _validate_history(self) -> None:
        seen_call_ids = set()
        for message in self.messages:
            if message.role == "assistant":
                if message.tool_calls:
                    seen_call_ids.update(c.id for c in message.tool_calls if c.id)
                elif isinstance(message.content, str) and not message.content:
                    raise ValidationError("An assistant message with empty content must request at least one action")
            elif message.role == "tool" and message.tool_call_id not in seen_call_ids:
                raise ValidationError(
                    f"Tool message answers unknown tool call id {message.tool_call_id!r}"
                )

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def output_schema(self) -> Optional[Dict[str, Any]]:
        """
        The JSON-schema requirement, normalized to
        {"name", "description", "schema", "strict"}; None when absent.
        """
        from .utils import normalize_output_schema

        for key in ("json_schema", "output_schema", "structured_output"):
            value = self.options.get(key)
            if value:
                return normalize_output_schema(value)
        response_format = self.options.get("response_format")
        if isinstance(response_format, Mapping) and response_format.get("type") == "json_schema":
            return normalize_output_schema(response_format.get("json_schema") or {})
        return None

    @property
    def expects_json(self) -> bool:
        if self.output_schema is not None:
            return True
        response_format = self.options.get("response_format")
        return isinstance(response_format, Mapping) and response_format.get("type") == "json_object"

    @property
    def has_multipart_content(self) -> bool:
        return any(m.is_multipart for m in self.messages)

    @property
    def tool_choice(self) -> Any:
        return self.options.get("tool_choice")

    @property
    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None

    def action_named(self, name: str) -> Optional[Action]:
        for action in self.actions:
            if action.name == name:
                return action
        return None

    def with_messages(self, *messages: Union[Message, Mapping[str, Any]]) -> "Prompt":
        """Return a new Prompt with `messages` appended."""
        return replace(self, messages=self.messages + tuple(coerce_message(m) for m in messages))

    def with_options(self, **options: Any) -> "Prompt":
        """Return a new Prompt with options merged; a value of None removes the key."""
        merged = dict(self.options)
        for key, value in options.items():
            if value is None:
                merged.pop(key, None)
            else:
                merged[key] = value
        return replace(self, options=merged)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "messages": [m.to_dict() for m in self.messages],
            "instructions": self.instructions,
            "actions": [a.to_dict() for a in self.actions],
            "options": dict(self.options),
            "previous_response_id": self.previous_response_id,
        }


def coerce_prompt(prompt: Union[Prompt, str, Sequence[Any]]) -> Prompt:
    """Accept a Prompt, a bare user string or a list of messages."""
    if isinstance(prompt, Prompt):
        return prompt
    if isinstance(prompt, str):
        return Prompt(messages=(Message(role="user", content=prompt),))
    if isinstance(prompt, (list, tuple)):
        return Prompt(messages=tuple(prompt))
    raise ValidationError(f"Cannot build a Prompt from {type(prompt).__name__}")


# =============================================================================
# Responses
# =============================================================================

@dataclass(frozen=True)
class Usage:
    """Token usage as reported by the vendor. Figures pass through unconverted."""
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    cost: Optional[float] = None
    raw: Optional[Mapping[str, Any]] = None

    def __post_init__(self):
        if self.total_tokens is None and self.input_tokens is not None and self.output_tokens is not None:
            object.__setattr__(self, "total_tokens", self.input_tokens + self.output_tokens)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "cost": self.cost,
        }


@dataclass
class Response:
    """
    Canonical response of one generation (or of a whole orchestrated run).

    Attributes:
        message: The final assistant message.
        provider: Provider tag that served the request.
        model: Model id actually used, as reported by the vendor.
        usage: Token usage, or None when the vendor did not report any.
        raw_request: Vendor payload that was sent.
        raw_response: Vendor payload that was received.
        metadata: Finish reason, latency, rate-limit headers, trace ids...
        messages: Full conversation history including `message`.
        turns: Number of adapter calls that produced this response.
        ceiling_hit: True when an orchestrated run stopped at its turn ceiling.
        tool_history: Executed tool calls of an orchestrated run.
    """
    message: Message
    provider: str
    model: Optional[str] = None
    usage: Optional[Usage] = None
    raw_request: Any = None
    raw_response: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    messages: Tuple[Message, ...] = ()
    turns: int = 1
    ceiling_hit: bool = False
    tool_history: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def content(self) -> Any:
        return self.message.content

    @property
    def text(self) -> str:
        return self.message.text

    @property
    def tool_calls(self) -> Tuple[Action, ...]:
        return self.message.tool_calls

    @property
    def finish_reason(self) -> Optional[str]:
        return self.metadata.get("finish_reason")

    @property
    def generation_id(self) -> Optional[str]:
        return self.message.generation_id


@dataclass(frozen=True)
class EmbeddingResponse:
    vectors: Tuple[Tuple[float, ...], ...]
    provider: str
    model: Optional[str] = None
    usage: Optional[Usage] = None

    @property
    def vector(self) -> Tuple[float, ...]:
        return self.vectors[0] if self.vectors else ()


# =============================================================================
# Streaming
# =============================================================================

StreamEventType = Literal["open", "update", "close"]


@dataclass(frozen=True)
class StreamEvent:
    """
    One streaming event.

    - "open": start of a turn, empty content
    - "update": `content` is the incremental text delta
    - "close": end of a turn, `finish_reason` set, `message` is the full message
    """
    type: StreamEventType
    content: str = ""
    message: Optional[Message] = None
    finish_reason: Optional[str] = None
    turn: int = 1
