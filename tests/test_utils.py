import pytest
from unittest.mock import patch, mock_open

from genmux.client import GenerationClient
from genmux.errors import ValidationError
from genmux.types import ImagePart, Message, TextPart
from genmux.utils import (
    deep_merge,
    encode_tool_arguments,
    normalize_tool_choice,
    parse_structured_content,
    parse_tool_arguments,
    serialize_tool_result,
    split_data_uri,
    to_data_uri,
)


class TestUtils:

    def test_create_text_content(self):
        content = GenerationClient.create_text_content("Hello")
        assert content == TextPart("Hello")

    def test_create_image_content_from_url(self):
        content = GenerationClient.create_image_content("https://example.com/img.jpg")
        assert isinstance(content, ImagePart)
        assert content.url == "https://example.com/img.jpg"

    def test_create_image_content_from_base64(self):
        content = GenerationClient.create_image_content("SGVsbG8=", mime_type="image/png")
        assert content.url == "data:image/png;base64,SGVsbG8="

    def test_create_image_content_unknown_source(self):
        with pytest.raises(ValidationError):
            GenerationClient.create_image_content("definitely/not/a/file.png")

    def test_create_message_text(self):
        msg = GenerationClient.create_message("user", "Hello world")
        assert msg == Message(role="user", content="Hello world")

    def test_create_message_multimodal(self):
        content = [
            "Look at this",
            GenerationClient.create_image_content("https://example.com/cat.jpg"),
        ]
        msg = GenerationClient.create_message("user", content)
        assert msg.role == "user"
        assert len(msg.content) == 2
        assert msg.content[0] == TextPart("Look at this")

    @patch("pathlib.Path.exists")
    @patch("builtins.open", new_callable=mock_open, read_data=b"image data")
    def test_encode_image_file(self, mock_file, mock_exists):
        mock_exists.return_value = True

        b64_data, mime_type = GenerationClient.encode_image_file("test.jpg")

        assert mime_type == "image/jpeg"
        # "image data" in base64 is "aW1hZ2UgZGF0YQ=="
        assert b64_data == "aW1hZ2UgZGF0YQ=="

    def test_create_tool(self):
        tool = GenerationClient.create_tool(
            name="get_weather",
            description="Get weather",
            parameters={"location": {"type": "string"}},
            required=["location"],
        )
        wire = tool.to_tool()
        assert wire["type"] == "function"
        assert wire["function"]["name"] == "get_weather"
        assert wire["function"]["parameters"]["required"] == ["location"]

    def test_create_tool_result(self):
        result = GenerationClient.create_tool_result("call_123", "result content")
        assert result.role == "tool"
        assert result.tool_call_id == "call_123"
        assert result.content == "result content"


class TestToolArguments:
    @pytest.mark.parametrize("arguments", [
        {"location": "Boston", "unit": "F"},
        {"nested": {"a": [1, 2, {"b": None}]}, "flag": True},
        {},
    ])
    def test_round_trip_through_both_wire_shapes(self, arguments):
        assert parse_tool_arguments(encode_tool_arguments(arguments)) == arguments
        assert parse_tool_arguments(dict(arguments)) == arguments

    @pytest.mark.parametrize("absent", [None, "", "   "])
    def test_absent_arguments(self, absent):
        assert parse_tool_arguments(absent) == {}

    def test_invalid_json_is_kept(self):
        assert parse_tool_arguments("{not json") == {"_raw": "{not json"}

    def test_non_object_json(self):
        assert parse_tool_arguments("[1, 2]") == {"_value": [1, 2]}


class TestToolChoice:
    @pytest.mark.parametrize("choice, expected", [
        (None, (None, None)),
        ("auto", ("auto", None)),
        ("none", ("none", None)),
        ("required", ("required", None)),
        ("any", ("required", None)),
        ("get_weather", ("tool", "get_weather")),
        ({"name": "get_weather"}, ("tool", "get_weather")),
        ({"type": "function", "function": {"name": "get_weather"}}, ("tool", "get_weather")),
        ({"type": "any"}, ("required", None)),
    ])
    def test_normalize(self, choice, expected):
        assert normalize_tool_choice(choice) == expected

    def test_unsupported(self):
        with pytest.raises(ValidationError):
            normalize_tool_choice(42)


class TestStructuredOutput:
    def test_parses_json(self):
        assert parse_structured_content('{"name":"John","age":30}') == {"name": "John", "age": 30}

    def test_tolerates_fence(self):
        assert parse_structured_content('```json\n{"a": 1}\n```') == {"a": 1}

    def test_degrades_to_raw_text(self):
        assert parse_structured_content("John is 30") == "John is 30"


class TestSerializeToolResult:
    def test_none_is_empty_success(self):
        assert serialize_tool_result(None) == ""

    def test_string_passes_through(self):
        assert serialize_tool_result("72F") == "72F"

    def test_json_encoding(self):
        assert serialize_tool_result({"temperature": 72}) == '{"temperature": 72}'

    def test_non_json_values(self):
        class Thing:
            def __str__(self):
                return "thing"
        assert serialize_tool_result({"t": Thing()}) == '{"t": "thing"}'


def test_data_uri_helpers():
    uri = to_data_uri("SGVsbG8=", "image/png")
    assert uri == "data:image/png;base64,SGVsbG8="
    assert to_data_uri(uri) == uri
    assert split_data_uri(uri) == ("SGVsbG8=", "image/png")


def test_deep_merge_does_not_mutate():
    base = {"openai": {"model": "a", "extra": {"x": 1}}}
    override = {"openai": {"extra": {"y": 2}}}
    merged = deep_merge(base, override)
    assert merged == {"openai": {"model": "a", "extra": {"x": 1, "y": 2}}}
    assert base == {"openai": {"model": "a", "extra": {"x": 1}}}
