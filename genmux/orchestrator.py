"""
Tool-call orchestration.

A run is an explicit iterative state machine::

    AWAITING_RESPONSE -> TOOL_REQUESTED -> TOOL_EXECUTED -> AWAITING_RESPONSE ...
                      \\-> COMPLETED

Each turn submits the current prompt, executes every requested tool (all of
them, concurrently), appends the assistant message and the tool results to
the history and resubmits, until the model answers without tool calls or the
turn ceiling is reached.
"""
import asyncio
import inspect
import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import ConfigurationError
from .providers.base import BaseLLMProvider
from .streaming import StreamSink
from .types import Action, Message, Prompt, Response, coerce_prompt
from .usage import Pricing, UsageTracker
from .utils import normalize_tool_choice, serialize_tool_result

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 10

_JSON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    dict: "object",
}


class TurnState(str, Enum):
    AWAITING_RESPONSE = "awaiting_response"
    TOOL_REQUESTED = "tool_requested"
    TOOL_EXECUTED = "tool_executed"
    COMPLETED = "completed"


class ToolRegistry:
    """
    Locally registered callables the model may request, by exact name.

    Usage::

        tools = ToolRegistry()

        @tools.register
        def get_weather(location: str) -> dict:
            \"\"\"Current weather for a city.\"\"\"
            ...

    Callables may be plain functions (run in a worker thread) or coroutine
    functions (awaited). They receive the model's arguments as keywords.
    """

    def __init__(self, tools: Optional[Mapping[str, Callable[..., Any]]] = None):
        self._tools: Dict[str, Callable[..., Any]] = {}
        self._declarations: Dict[str, Action] = {}
        for name, fn in (tools or {}).items():
            self.register(fn, name=name)

    def register(
        self,
        fn: Optional[Callable[..., Any]] = None,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
    ):
        """
        Register a tool. Works as a plain call, a bare decorator or a
        decorator with arguments.

        Args:
            fn: The callable.
            name: Tool name; defaults to the function name.
            description: Defaults to the first docstring line.
            parameters: JSON schema of the arguments; derived from the
                signature when omitted.
        """
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            tool_name = name or getattr(func, "__name__", None)
            if not tool_name:
                raise ConfigurationError("Tools need a name")
            self._tools[tool_name] = func
            self._declarations[tool_name] = Action(
                name=tool_name,
                description=description if description is not None else _first_doc_line(func),
                parameters=parameters if parameters is not None else _signature_schema(func),
            )
            return func

        if fn is None:
            return decorator
        return decorator(fn)

    def get(self, name: str) -> Optional[Callable[..., Any]]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def actions(self) -> List[Action]:
        """Declarations for every registered tool, in registration order."""
        return list(self._declarations.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def _first_doc_line(func: Callable[..., Any]) -> str:
    doc = inspect.getdoc(func) or ""
    return doc.strip().splitlines()[0] if doc.strip() else ""


def _signature_schema(func: Callable[..., Any]) -> Dict[str, Any]:
    properties: Dict[str, Any] = {}
    required: List[str] = []
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return {"type": "object", "properties": {}}
    for param in signature.parameters.values():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        schema: Dict[str, Any] = {}
        json_type = _JSON_TYPES.get(param.annotation)
        if json_type:
            schema["type"] = json_type
        properties[param.name] = schema
        if param.default is param.empty:
            required.append(param.name)
    return {"type": "object", "properties": properties, "required": required}


class ToolOrchestrator:
    """
    Runs the bounded request / execute-tools / resubmit loop against one
    provider.

    Args:
        provider: Provider used for every turn.
        tools: A ToolRegistry or a mapping of tool name to callable.
        max_turns: Hard ceiling on adapter calls per run.
        pricing: Optional per-model prices for cost estimation.
    """

    def __init__(
        self,
        provider: BaseLLMProvider,
        tools: Union["ToolRegistry", Mapping[str, Callable[..., Any]], None] = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        pricing: Optional[Pricing] = None,
    ):
        if max_turns < 1:
            raise ConfigurationError(f"max_turns must be at least 1, got {max_turns}")
        self.provider = provider
        self.tools = tools if isinstance(tools, ToolRegistry) else ToolRegistry(tools)
        self.max_turns = max_turns
        self.pricing = pricing
        self.states: List[TurnState] = []

    def _transition(self, state: TurnState, turn: int) -> None:
        self.states.append(state)
        logger.debug("turn %d: %s", turn, state.value)

    async def run(
        self,
        prompt: Union[Prompt, str, Sequence[Any]],
        sink: Optional[StreamSink] = None,
    ) -> Response:
        """
        Run the tool loop until the model answers without tool calls.

        Args:
            prompt: The caller's prompt; never modified. Each turn works on a
                derived prompt.
            sink: Optional stream sink; every turn opens its own
                open/update*/close cycle.

        Returns:
            Response: The last turn's response, with `messages` holding the
            full derived history, `turns` the number of adapter calls,
            `tool_history` the executed calls, `usage` the totals of the run
            and `ceiling_hit` set when the turn ceiling stopped the loop.
        """
        current = coerce_prompt(prompt)
        if not current.actions and len(self.tools):
            current = replace(current, actions=tuple(self.tools.actions()))

        forced_mode, forced_name = normalize_tool_choice(current.tool_choice)
        tracker = UsageTracker(self.pricing)
        tool_history: List[Dict[str, Any]] = []
        self.states = []
        turn = 0

        while True:
            turn += 1
            self._transition(TurnState.AWAITING_RESPONSE, turn)
            response = await self.provider.generate(current, sink=sink, turn=turn)
            tracker.add(response)

            # Requested actions take priority over any text in the same turn
            if not response.message.tool_calls:
                self._transition(TurnState.COMPLETED, turn)
                return self._finish(response, response.messages, turn, tracker, tool_history, ceiling_hit=False)

            self._transition(TurnState.TOOL_REQUESTED, turn)
            assistant = _with_call_ids(response.message, turn)
            results = await self.execute_tool_calls(assistant.tool_calls)
            tool_history.extend(entry for _, entry in results)
            current = current.with_messages(assistant, *(message for message, _ in results))
            # The server holds this turn's tool calls under the new response id
            handle = response.metadata.get("response_id")
            if current.previous_response_id and handle:
                current = replace(current, previous_response_id=handle)
            self._transition(TurnState.TOOL_EXECUTED, turn)

            if forced_mode in ("required", "tool") and current.tool_choice is not None:
                current = self._release_forced_choice(current, assistant.tool_calls, forced_mode, forced_name)

            if turn >= self.max_turns:
                logger.warning(
                    "%s: stopping after %d turns with tool calls still pending",
                    self.provider.tag, turn,
                )
                response.message = assistant
                self._transition(TurnState.COMPLETED, turn)
                return self._finish(response, current.messages, turn, tracker, tool_history, ceiling_hit=True)

    async def execute_tool_calls(self, calls: Sequence[Action]) -> List[Tuple[Message, Dict[str, Any]]]:
        """
        Execute every call concurrently and wait for all of them.

        Returns:
            (tool message, history entry) pairs in request order.
        """
        return list(await asyncio.gather(*(self._execute_tool_call(call) for call in calls)))

    async def _execute_tool_call(self, call: Action) -> Tuple[Message, Dict[str, Any]]:
        """
        Execute a single tool call.

        Never raises: a missing handler or a handler that raises becomes an
        error tool message so the model can recover on the next turn.
        """
        handler = self.tools.get(call.name)
        error = False
        if handler is None:
            logger.warning("No handler for tool '%s'", call.name)
            content = f"Error: No handler for tool '{call.name}'"
            error = True
        else:
            try:
                result = await self._invoke(handler, call.arguments)
                content = serialize_tool_result(result)
            except Exception as e:
                logger.warning("Tool '%s' failed: %s", call.name, e)
                content = f"Error executing tool '{call.name}': {e}"
                error = True

        message = Message(
            role="tool",
            tool_call_id=call.id,
            name=call.name,
            content=content,
            metadata={"error": True} if error else {},
        )
        entry = {
            "tool": call.name,
            "id": call.id,
            "arguments": dict(call.arguments),
            "result": content,
            "error": error,
        }
        return message, entry

    @staticmethod
    async def _invoke(handler: Callable[..., Any], arguments: Mapping[str, Any]) -> Any:
        if inspect.iscoroutinefunction(handler):
            return await handler(**arguments)
        # Tools are caller code that may block
        result = await asyncio.to_thread(handler, **arguments)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _release_forced_choice(
        self,
        prompt: Prompt,
        calls: Sequence[Action],
        mode: str,
        name: Optional[str],
    ) -> Prompt:
        # Re-forcing a tool after it ran would loop until the ceiling.
        if mode == "tool" and name not in {c.name for c in calls}:
            logger.warning(
                "Forced tool '%s' was not called (got %s); clearing tool_choice anyway",
                name, ", ".join(c.name for c in calls),
            )
        logger.debug("Clearing forced tool_choice after turn with tool calls")
        return prompt.with_options(tool_choice=None)

    def _finish(
        self,
        response: Response,
        messages: Sequence[Message],
        turns: int,
        tracker: UsageTracker,
        tool_history: List[Dict[str, Any]],
        ceiling_hit: bool,
    ) -> Response:
        response.messages = tuple(messages)
        response.turns = turns
        response.ceiling_hit = ceiling_hit
        response.tool_history = tool_history
        response.usage = tracker.total()
        response.metadata["turns"] = turns
        if ceiling_hit:
            response.metadata["ceiling_hit"] = True
        return response


def _with_call_ids(message: Message, turn: int) -> Message:
    """Give every requested call a correlation id; some vendors omit them."""
    if all(call.id for call in message.tool_calls):
        return message
    calls = tuple(
        call if call.id else replace(call, id=f"call_{turn}_{index}")
        for index, call in enumerate(message.tool_calls)
    )
    return replace(message, tool_calls=calls)
