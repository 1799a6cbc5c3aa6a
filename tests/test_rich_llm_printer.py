import io
import logging

import pytest
from rich.console import Console

from genmux.rich_llm_printer import RichPrinter, RichStreamSink, configure_logging
from genmux.streaming import StreamChannel
from genmux.types import Message, Response, Usage


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=100, color_system=None)


def test_print_text_response(console):
    response = Response(
        message=Message(role="assistant", content="It's **72°F** in Boston."),
        provider="openai",
        model="gpt-4o-mini",
        usage=Usage(input_tokens=10, output_tokens=5),
    )

    printer = RichPrinter(console=console)
    assert printer.print_response(response) is response

    output = console.file.getvalue()
    assert "72°F" in output
    assert "gpt-4o-mini" in output
    assert "(openai)" in output
    assert printer.get_text() == "It's **72°F** in Boston."


def test_print_structured_response(console):
    response = Response(message=Message(role="assistant", content={"name": "John", "age": 30}), provider="test")

    RichPrinter(console=console, show_metadata=False).print_response(response)

    output = console.file.getvalue()
    assert '"name": "John"' in output


@pytest.mark.asyncio
async def test_stream_sink_collects_turn_text(console):
    sink = RichStreamSink(console=console, provider="test")
    channel = StreamChannel(sink, turn=1)

    await channel.open()
    await channel.update("Hello ")
    await channel.update("world")
    await channel.close(finish_reason="stop", message=Message(role="assistant", content="Hello world"))

    assert sink.get_full_text() == "Hello world"
    assert sink.get_last_event().finish_reason == "stop"
    assert "Hello world" in console.file.getvalue()


def test_configure_logging(console):
    configure_logging(logging.DEBUG, console=console)
    logger = logging.getLogger("genmux")
    try:
        assert logger.level == logging.DEBUG
        assert not logger.propagate
        logging.getLogger("genmux.orchestrator").debug("turn 1: completed")
        assert "turn 1: completed" in console.file.getvalue()
    finally:
        logger.handlers = []
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
