"""
Streaming channel: delivers incremental events to a caller-supplied sink.

Per turn the sink receives exactly one "open" event, zero or more "update"
events carrying text deltas in arrival order, and one "close" event carrying
the finish reason. Tool-call arguments that arrive in fragments are
reassembled with `ToolCallAccumulator` before the turn closes.
"""
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .types import Action, Message, StreamEvent
from .utils import parse_tool_arguments

logger = logging.getLogger(__name__)


@runtime_checkable
class StreamSink(Protocol):
    """Receiver of stream events. `handle` may be sync or async."""

    def handle(self, event: StreamEvent) -> Any:
        ...


class CollectingSink:
    """Sink that records every event; handy for tests and post-processing."""

    def __init__(self):
        self.events: List[StreamEvent] = []

    def handle(self, event: StreamEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> List[str]:
        return [e.type for e in self.events]

    def text(self, turn: Optional[int] = None) -> str:
        """Concatenated deltas, optionally for a single turn."""
        return "".join(
            e.content for e in self.events
            if e.type == "update" and (turn is None or e.turn == turn)
        )

    def turns(self) -> List[List[StreamEvent]]:
        grouped: Dict[int, List[StreamEvent]] = {}
        for event in self.events:
            grouped.setdefault(event.turn, []).append(event)
        return [grouped[t] for t in sorted(grouped)]


class StreamChannel:
    """
    Enforces the open/update*/close ordering for one turn and forwards the
    events to a sink.

    Raises:
        RuntimeError: On out-of-order use (update before open, double close...).
    """

    def __init__(self, sink: StreamSink, turn: int = 1):
        self.sink = sink
        self.turn = turn
        self.state = "idle"
        self._chunks: List[str] = []

    @property
    def content(self) -> str:
        return "".join(self._chunks)

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    async def _emit(self, event: StreamEvent) -> None:
        result = self.sink.handle(event)
        if inspect.isawaitable(result):
            await result

    async def open(self) -> None:
        if self.state != "idle":
            raise RuntimeError(f"Stream for turn {self.turn} already {self.state}")
        self.state = "open"
        await self._emit(StreamEvent(type="open", content="", turn=self.turn))

    async def update(self, delta: str) -> None:
        if self.state != "open":
            raise RuntimeError(f"Cannot update a stream that is {self.state}")
        if not delta:
            return
        self._chunks.append(delta)
        await self._emit(StreamEvent(
            type="update",
            content=delta,
            message=Message(role="assistant", content=self.content),
            turn=self.turn,
        ))

    async def close(self, finish_reason: Optional[str] = None, message: Optional[Message] = None) -> None:
        if self.state != "open":
            raise RuntimeError(f"Cannot close a stream that is {self.state}")
        self.state = "closed"
        await self._emit(StreamEvent(
            type="close",
            content="",
            message=message,
            finish_reason=finish_reason,
            turn=self.turn,
        ))


@dataclass
class _PartialCall:
    id: Optional[str] = None
    name: str = ""
    fragments: List[str] = field(default_factory=list)
    parsed: Optional[Dict[str, Any]] = None


class ToolCallAccumulator:
    """
    Reassembles tool calls whose arguments stream in fragments.

    Fragments are keyed by stream index (OpenAI chat, Anthropic content block)
    or by correlation/item id (OpenAI Responses). The id and name usually
    arrive with the first fragment only.
    """

    def __init__(self):
        self._calls: Dict[Any, _PartialCall] = {}
        self._order: List[Any] = []

    def _slot(self, key: Any) -> _PartialCall:
        if key not in self._calls:
            self._calls[key] = _PartialCall()
            self._order.append(key)
        return self._calls[key]

    def add(
        self,
        key: Any,
        *,
        id: Optional[str] = None,
        name: Optional[str] = None,
        arguments: Any = None,
    ) -> None:
        """
        Register a fragment.

        Args:
            key: Stream index or id grouping fragments of one call.
            id: Correlation id, when present in this fragment.
            name: Tool name, when present in this fragment.
            arguments: String fragment, or an already-parsed mapping.
        """
        slot = self._slot(key)
        if id:
            slot.id = id
        if name and not slot.name:
            slot.name = name
        if isinstance(arguments, dict):
            slot.parsed = dict(arguments)
        elif arguments:
            slot.fragments.append(str(arguments))

    def __len__(self) -> int:
        return len(self._order)

    def to_wire(self) -> List[Dict[str, Any]]:
        """Reassembled calls as OpenAI chat `tool_calls` dicts."""
        wire = []
        for key in self._order:
            slot = self._calls[key]
            arguments = slot.parsed if slot.parsed is not None else "".join(slot.fragments)
            if isinstance(arguments, dict):
                arguments = json.dumps(arguments)
            wire.append({
                "id": slot.id or str(key),
                "type": "function",
                "function": {"name": slot.name, "arguments": arguments},
            })
        return wire

    def actions(self) -> List[Action]:
        result = []
        for key in self._order:
            slot = self._calls[key]
            args = slot.parsed if slot.parsed is not None else parse_tool_arguments("".join(slot.fragments))
            result.append(Action(id=slot.id or str(key), name=slot.name, arguments=args))
        return result
