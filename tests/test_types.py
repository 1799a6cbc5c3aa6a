import pytest

from genmux.errors import ValidationError
from genmux.types import Action, FilePart, ImagePart, Message, Prompt, TextPart, Usage, coerce_prompt


class TestMessage:
    def test_invalid_role(self):
        with pytest.raises(ValidationError, match="Invalid role"):
            Message(role="robot", content="hi")

    def test_content_must_be_text_or_parts(self):
        with pytest.raises(ValidationError):
            Message(role="user", content=42)

    def test_mixed_content_list_is_coerced(self):
        msg = Message(role="user", content=[
            "Look at this",
            {"type": "image_url", "image_url": {"url": "https://example.com/cat.jpg", "detail": "low"}},
        ])
        assert msg.content == (
            TextPart("Look at this"),
            ImagePart(url="https://example.com/cat.jpg", detail="low"),
        )
        assert msg.is_multipart
        assert msg.text == "Look at this"

    def test_unknown_part_type(self):
        with pytest.raises(ValidationError, match="Unknown content part type"):
            Message(role="user", content=[{"type": "audio", "data": "..."}])

    def test_tool_message_requires_call_id(self):
        with pytest.raises(ValidationError, match="tool_call_id"):
            Message(role="tool", content="72")

    def test_only_assistant_requests_actions(self):
        with pytest.raises(ValidationError):
            Message(role="user", content="hi", tool_calls=(Action(name="x"),))

    def test_structured_assistant_content(self):
        msg = Message(role="assistant", content={"name": "John", "age": 30})
        assert msg.content == {"name": "John", "age": 30}
        assert msg.text == '{"name": "John", "age": 30}'

    def test_structured_content_rejected_for_user(self):
        with pytest.raises(ValidationError):
            Message(role="user", content={"a": 1})

    def test_equality_is_structural(self):
        assert Message(role="user", content="hi") == Message(role="user", content="hi")

    def test_dict_round_trip(self):
        msg = Message(
            role="assistant",
            content="",
            tool_calls=(Action(name="get_weather", id="call_1", arguments={"location": "Boston"}),),
        )
        assert Message.from_dict(msg.to_dict()) == msg

    def test_from_openai_wire_tool_calls(self):
        msg = Message.from_dict({
            "role": "assistant",
            "content": None,
            "tool_calls": [{"id": "c1", "type": "function",
                            "function": {"name": "f", "arguments": '{"a": 1}'}}],
        })
        assert msg.tool_calls[0].arguments == {"a": 1}
        assert msg.content == ""


class TestParts:
    def test_file_part_requires_data_or_id(self):
        with pytest.raises(ValidationError):
            FilePart()

    def test_action_requires_name(self):
        with pytest.raises(ValidationError):
            Action(name="")

    def test_action_to_tool(self):
        action = Action(name="get_weather", description="Weather", parameters={"type": "object"})
        assert action.to_tool() == {
            "type": "function",
            "function": {"name": "get_weather", "description": "Weather", "parameters": {"type": "object"}},
        }


class TestPrompt:
    def test_from_string(self):
        prompt = coerce_prompt("Hello")
        assert prompt.messages == (Message(role="user", content="Hello"),)

    def test_duplicate_actions(self):
        with pytest.raises(ValidationError, match="Duplicate"):
            Prompt(messages=("hi",), actions=(Action(name="a"), Action(name="a")))

    def test_tool_result_must_answer_known_call(self):
        with pytest.raises(ValidationError, match="unknown tool call id"):
            Prompt(messages=(
                Message(role="user", content="hi"),
                Message(role="tool", tool_call_id="nope", content="x"),
            ))

    def test_empty_assistant_without_actions(self):
        with pytest.raises(ValidationError):
            Prompt(messages=(Message(role="user", content="hi"), Message(role="assistant", content="")))

    def test_with_messages_does_not_mutate(self):
        prompt = Prompt(messages=("hi",))
        derived = prompt.with_messages(Message(role="assistant", content="hello"))
        assert len(prompt.messages) == 1
        assert len(derived.messages) == 2

    def test_with_options_none_removes_key(self):
        prompt = Prompt(messages=("hi",), options={"tool_choice": "required", "temperature": 0.1})
        derived = prompt.with_options(tool_choice=None)
        assert "tool_choice" not in derived.options
        assert prompt.options["tool_choice"] == "required"

    def test_output_schema_defaults(self):
        prompt = Prompt(messages=("hi",), options={"json_schema": {"type": "object", "properties": {}}})
        schema = prompt.output_schema
        assert schema["name"] == "response"
        assert schema["description"] == "Structured response"
        assert schema["strict"] is True
        assert schema["schema"] == {"type": "object", "properties": {}}

    def test_bare_schema_keeps_its_own_description(self):
        bare = {"type": "object", "description": "A person", "properties": {"name": {"type": "string"}}}
        schema = Prompt(messages=("hi",), options={"json_schema": bare}).output_schema
        assert schema["schema"] == bare
        assert schema["description"] == "Structured response"

    def test_envelope_description(self):
        prompt = Prompt(messages=("hi",), options={
            "json_schema": {"name": "person", "description": "A person", "schema": {"type": "object"}},
        })
        schema = prompt.output_schema
        assert schema["description"] == "A person"
        assert schema["schema"] == {"type": "object"}

    def test_malformed_schema_rejected_at_construction(self):
        with pytest.raises(ValidationError, match="must be a mapping"):
            Prompt(messages=("hi",), options={"json_schema": "person"})
        with pytest.raises(ValidationError):
            Prompt(messages=("hi",), options={"response_format": {"type": "json_schema", "json_schema": ["x"]}})

    def test_output_schema_strict_can_be_disabled(self):
        prompt = Prompt(messages=("hi",), options={"json_schema": {"name": "p", "schema": {}, "strict": False}})
        assert prompt.output_schema["strict"] is False

    def test_json_object_expects_json(self):
        prompt = Prompt(messages=("hi",), options={"response_format": {"type": "json_object"}})
        assert prompt.output_schema is None
        assert prompt.expects_json


def test_usage_total_is_computed():
    assert Usage(input_tokens=3, output_tokens=4).total_tokens == 7
    assert Usage().total_tokens is None
