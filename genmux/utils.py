import base64
import json
import logging
import mimetypes
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union

import httpx

from .errors import ValidationError
from .types import Action, ContentPart, ImagePart, Message, TextPart, coerce_part

logger = logging.getLogger(__name__)

# =============================================================================
# Image Helpers
# =============================================================================

IMAGE_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
}


def encode_image_file(image_path: Union[str, Path]) -> Tuple[str, str]:
    """
    Encode a local image file to base64 for LLM usage.

    Reads the file from the given path, determines its MIME type based on extension,
    and returns a tuple of the base64-encoded data and the MIME type.

    Args:
        image_path (Union[str, Path]): Path to the image file.

    Returns:
        Tuple[str, str]: (b64_data, mime_type)

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    path = Path(image_path)
    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {image_path}")

    mime_type = IMAGE_MIME_TYPES.get(path.suffix.lower(), "image/jpeg")

    with open(path, "rb") as f:
        b64_data = base64.b64encode(f.read()).decode("utf-8")

    return b64_data, mime_type


async def encode_image_url(
    url: str,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Tuple[str, str]:
    """
    Fetch an image from a URL and encode it to base64.

    Args:
        url (str): The publicly accessible URL of the image.
        http_client (httpx.AsyncClient, optional): Client to reuse. A short-lived
            client is created when omitted.

    Returns:
        Tuple[str, str]: (b64_data, mime_type from the Content-Type header)

    Raises:
        httpx.HTTPError: If the download fails (timeout, 404, etc.).
    """
    # Use a browser-like User-Agent to avoid being blocked
    headers = {
        "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    }

    if http_client is None:
        async with httpx.AsyncClient(timeout=30.0, headers=headers, follow_redirects=True) as client:
            response = await client.get(url)
    else:
        response = await http_client.get(url, headers=headers)
    response.raise_for_status()

    content_type = response.headers.get("content-type", "image/jpeg")
    mime_type = content_type.split(";")[0].strip()
    b64_data = base64.b64encode(response.content).decode("utf-8")

    return b64_data, mime_type


def split_data_uri(uri: str) -> Tuple[str, str]:
    """
    Split ``data:<mime>;base64,<data>`` into (data, mime_type).

    Raises:
        ValidationError: If `uri` is not a data URI.
    """
    if not uri.startswith("data:") or "," not in uri:
        raise ValidationError(f"Not a data URI: {uri[:40]}...")
    header, data = uri.split(",", 1)
    mime_type = header[5:].split(";")[0] or "application/octet-stream"
    return data, mime_type


async def resolve_image_to_base64(url: str) -> Tuple[str, str]:
    """
    Resolve an image reference (URL or data URI) to (base64_data, mime_type).
    """
    if url.startswith("data:"):
        return split_data_uri(url)
    return await encode_image_url(url)


def to_data_uri(data: str, mime_type: Optional[str] = None) -> str:
    """Wrap raw base64 data in a data URI; data URIs pass through."""
    if data.startswith("data:"):
        return data
    return f"data:{mime_type or 'application/octet-stream'};base64,{data}"


def guess_mime_type(url: str, default: str = "image/jpeg") -> str:
    guessed, _ = mimetypes.guess_type(url.split("?", 1)[0])
    return guessed or default


async def inline_remote_images(message: Message) -> Message:
    """
    Return a copy of `message` whose http(s) image parts are downloaded and
    replaced by data URIs. Useful for vendors that cannot fetch URLs themselves.
    """
    if not isinstance(message.content, tuple):
        return message
    parts: List[ContentPart] = []
    for part in message.content:
        if isinstance(part, ImagePart) and not part.is_data_uri:
            b64_data, mime_type = await encode_image_url(part.url)
            part = ImagePart(url=f"data:{mime_type};base64,{b64_data}", detail=part.detail, mime_type=mime_type)
        parts.append(part)
    return Message(
        role=message.role,
        content=tuple(parts),
        tool_calls=message.tool_calls,
        tool_call_id=message.tool_call_id,
        name=message.name,
        generation_id=message.generation_id,
        metadata=message.metadata,
    )


def create_image_content(
    source: str,
    *,
    mime_type: Optional[str] = None,
    detail: Optional[Literal["auto", "low", "high"]] = None,
) -> ImagePart:
    """
    Create an image content part for multimodal messages.

    Args:
        source (str): Can be:
            - A local file path (e.g., "/path/to/image.png")
            - A remote URL (e.g., "https://example.com/image.jpg")
            - A data URI (e.g., "data:image/png;base64,...")
            - Raw base64 data (requires `mime_type` kwarg)
        mime_type (str, optional): Required if `source` is raw base64 data.
        detail (str, optional): Detail level for OpenAI vision ('auto', 'low', 'high').

    Returns:
        ImagePart

    Raises:
        ValidationError: If the source type cannot be determined.
    """
    if source.startswith("data:"):
        url = source
    elif source.startswith(("http://", "https://")):
        url = source
    elif mime_type:
        url = f"data:{mime_type};base64,{source}"
    elif len(source) < 260 and Path(source).exists():
        b64_data, mime_type = encode_image_file(source)
        url = f"data:{mime_type};base64,{b64_data}"
    else:
        raise ValidationError(
            f"Cannot determine image source type for: {source[:50]}... "
            "Provide mime_type for raw base64 data."
        )

    return ImagePart(url=url, detail=detail, mime_type=mime_type)


def create_text_content(text: str) -> TextPart:
    """Create a plain text content part."""
    return TextPart(text)


def create_message(
    role: Literal["system", "user", "assistant"],
    content: Union[str, List[Union[str, ContentPart, Dict[str, Any]]]],
) -> Message:
    """
    Create a canonical Message.

    String elements within a content list are normalized to text parts.
    """
    if isinstance(content, str):
        return Message(role=role, content=content)
    return Message(role=role, content=tuple(coerce_part(item) for item in content))


# =============================================================================
# Tool Calling Helpers
# =============================================================================

def create_tool(
    name: str,
    description: str,
    parameters: Dict[str, Any],
    required: Optional[List[str]] = None,
) -> Action:
    """
    Create a tool declaration.

    Args:
        name (str): The name of the function/tool to be called.
        description (str): What the tool does.
        parameters (Dict): JSON Schema properties of the expected arguments.
        required (List[str], optional): Names of required parameters.

    Returns:
        Action: A declaration usable in `Prompt.actions`.
    """
    return Action(
        name=name,
        description=description,
        parameters={
            "type": "object",
            "properties": parameters,
            "required": required or [],
        },
    )


def create_tool_result(tool_call_id: str, content: str, name: Optional[str] = None) -> Message:
    """Create a tool result message answering `tool_call_id`."""
    return Message(role="tool", tool_call_id=tool_call_id, content=content, name=name)


def create_assistant_message_with_tool_calls(
    content: str,
    tool_calls: Sequence[Action],
    generation_id: Optional[str] = None,
) -> Message:
    """Create an assistant message that requests one or more tool calls."""
    return Message(role="assistant", content=content, tool_calls=tuple(tool_calls), generation_id=generation_id)


def parse_tool_arguments(arguments: Any) -> Dict[str, Any]:
    """
    Normalize tool-call arguments into a dict.

    Arguments may arrive as a JSON string, an already-parsed mapping, or be
    absent. Absence (None or blank string) normalizes to {}. A string that is
    not valid JSON is kept under the "_raw" key so nothing is lost.
    """
    if arguments is None:
        return {}
    if isinstance(arguments, Mapping):
        return dict(arguments)
    if isinstance(arguments, (bytes, bytearray)):
        arguments = arguments.decode("utf-8")
    if isinstance(arguments, str):
        if not arguments.strip():
            return {}
        try:
            parsed = json.loads(arguments)
        except json.JSONDecodeError:
            logger.warning("Tool arguments are not valid JSON: %.80s", arguments)
            return {"_raw": arguments}
        if isinstance(parsed, Mapping):
            return dict(parsed)
        return {"_value": parsed}
    return {"_value": arguments}


def encode_tool_arguments(arguments: Optional[Mapping[str, Any]]) -> str:
    """Encode arguments as the JSON string most wire formats expect."""
    return json.dumps(dict(arguments or {}))


def normalize_tool_choice(choice: Any) -> Tuple[Optional[str], Optional[str]]:
    """
    Reduce the accepted tool_choice spellings to (mode, tool_name).

    mode is one of "auto", "none", "required" (must call something) or
    "tool" (must call `tool_name`); (None, None) when no choice was given.

    Accepted inputs:
        "auto" | "none" | "required" | "any"
        {"name": "get_weather"}
        {"type": "function", "function": {"name": "get_weather"}}
        {"type": "tool", "name": "get_weather"}
        "get_weather" (any other string names a tool)
    """
    if choice is None:
        return None, None
    if isinstance(choice, str):
        lowered = choice.lower()
        if lowered in ("auto", "none", "required"):
            return lowered, None
        if lowered == "any":
            return "required", None
        return "tool", choice
    if isinstance(choice, Mapping):
        kind = choice.get("type")
        if kind in ("auto", "none"):
            return kind, None
        if kind in ("any", "required"):
            return "required", None
        name = choice.get("name") or (choice.get("function") or {}).get("name")
        if name:
            return "tool", name
    raise ValidationError(f"Unsupported tool_choice: {choice!r}")


def serialize_tool_result(result: Any) -> str:
    """
    Serialize a tool's return value into tool-message content.

    None becomes an empty string, strings pass through, anything else is
    JSON encoded (falling back to str() for values JSON cannot represent).
    """
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, default=str)
    except (TypeError, ValueError):
        return str(result)


# =============================================================================
# Structured Output Helpers
# =============================================================================

DEFAULT_SCHEMA_NAME = "response"
DEFAULT_SCHEMA_DESCRIPTION = "Structured response"

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.S)


def normalize_output_schema(value: Any) -> Dict[str, Any]:
    """
    Normalize a JSON-schema requirement.

    Accepts either an envelope {"name", "description", "schema", "strict"} or a
    bare JSON schema, which is used as is. Missing envelope name/description
    get defaults and "strict" defaults to True unless explicitly disabled.
    """
    if not isinstance(value, Mapping):
        raise ValidationError("A JSON-schema requirement must be a mapping")
    if not isinstance(value.get("schema"), Mapping):
        # A bare schema keeps its own keys; only the envelope gets defaults
        return {
            "name": DEFAULT_SCHEMA_NAME,
            "description": DEFAULT_SCHEMA_DESCRIPTION,
            "schema": dict(value),
            "strict": True,
        }
    return {
        "name": value.get("name") or DEFAULT_SCHEMA_NAME,
        "description": value.get("description") or DEFAULT_SCHEMA_DESCRIPTION,
        "schema": dict(value["schema"]),
        "strict": value.get("strict") is not False,
    }


def parse_structured_content(content: Any) -> Any:
    """
    Try to parse textual model output as JSON.

    Never raises: content that is not valid JSON is returned unchanged so
    callers can degrade gracefully. A surrounding ```json fence is tolerated.
    """
    if not isinstance(content, str):
        return content
    text = content.strip()
    match = _FENCE.match(text)
    if match:
        text = match.group(1)
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        logger.warning("Structured output is not valid JSON, keeping raw text")
        return content


# =============================================================================
# Misc
# =============================================================================

def as_dict(obj: Any) -> Any:
    """
    Convert an SDK response object (pydantic model) into plain dicts.

    Plain dicts, lists and scalars are returned unchanged.
    """
    if obj is None or isinstance(obj, (dict, list, str, int, float, bool)):
        return obj
    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        return dump(mode="json", exclude_none=True)
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return obj


def compact(mapping: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop keys whose value is None."""
    return {k: v for k, v in mapping.items() if v is not None}


def deep_merge(*layers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Merge mappings left to right into a new dict; later layers win.
    Nested mappings are merged recursively, inputs are never mutated.
    """
    merged: Dict[str, Any] = {}
    for layer in layers:
        if not layer:
            continue
        for key, value in layer.items():
            if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
                merged[key] = deep_merge(merged[key], value)
            elif isinstance(value, Mapping):
                merged[key] = deep_merge(value)
            else:
                merged[key] = value
    return merged
