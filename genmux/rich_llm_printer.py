"""
Rich rendering for genmux: a live stream sink, a response printer and the
logging setup.
"""
import json
import logging
from typing import Any, Dict, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text

from .types import Response, StreamEvent

console = Console()
_default_console = console


def configure_logging(level: int = logging.INFO, console: Optional[Console] = None) -> None:
    """Route the `genmux` loggers through a RichHandler."""
    handler = RichHandler(console=console, rich_tracebacks=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger = logging.getLogger("genmux")
    logger.handlers = [handler]
    logger.setLevel(level)
    logger.propagate = False


def _metadata_panel(meta: Dict[str, Any]) -> Panel:
    metadata_json = json.dumps(meta, indent=2, default=str)
    return Panel(
        Syntax(metadata_json, "json", theme="lightbulb", background_color="default"),
        title="[bold]Metadata[/bold]",
        border_style="dim",
    )


class RichStreamSink:
    """
    Stream sink that renders each turn live inside a rich panel.

    A Live display is started on "open", refreshed on every "update" and
    finalized on "close"; an orchestrated run therefore prints one panel per
    turn.

    Attributes:
        title: Title for the display panel
        show_metadata: Whether to show the finish reason at the end of a turn
        code_theme: Theme for code blocks
        inline_code_theme: Theme for inline code
        refresh_rate: Refresh rate for Live display
        provider: Optional provider tag shown in the title
    """

    def __init__(
        self,
        title: str = "Streaming Response",
        show_metadata: bool = True,
        code_theme: str = "coffee",
        inline_code_theme: str = "monokai",
        refresh_rate: int = 30,
        provider: Optional[str] = None,
        border_style: str = "blue",
        console: Optional[Console] = None,
    ):
        self.title = title
        self.show_metadata = show_metadata
        self.code_theme = code_theme
        self.inline_code_theme = inline_code_theme
        self.refresh_rate = refresh_rate
        self.provider = provider
        self.border_style = border_style
        self.console = console or _default_console
        self._full_text = ""
        self._live: Optional[Live] = None
        self._last_event: Optional[StreamEvent] = None

    def handle(self, event: StreamEvent) -> None:
        if event.type == "open":
            self._full_text = ""
            self._live = Live(
                self._panel(event, is_final=False),
                refresh_per_second=self.refresh_rate,
                console=self.console,
            )
            self._live.start()
        elif event.type == "update":
            self._full_text += event.content
            if self._live is not None:
                self._live.update(self._panel(event, is_final=False))
        elif event.type == "close":
            self._last_event = event
            if self._live is not None:
                self._live.update(self._panel(event, is_final=True))
                self._live.stop()
                self._live = None

    def _panel(self, event: StreamEvent, is_final: bool) -> Panel:
        title = f"[bold]{self.title}[/bold] [dim](turn {event.turn})[/dim]"
        if self.provider:
            title += f" [dim]({self.provider})[/dim]"

        if self._full_text.strip():
            content: Any = Markdown(
                self._full_text,
                code_theme=self.code_theme,
                inline_code_theme=self.inline_code_theme,
            )
        elif is_final and event.message is not None and event.message.tool_calls:
            names = ", ".join(c.name for c in event.message.tool_calls)
            content = Text(f"(requested tools: {names})", style="dim italic")
        else:
            content = Text("(waiting for response...)", style="dim italic")

        if is_final and self.show_metadata and event.finish_reason:
            content = Group(content, _metadata_panel({"finish_reason": event.finish_reason}))

        return Panel(
            content,
            title=title,
            border_style="green" if is_final else self.border_style,
            padding=(1, 2),
        )

    def get_full_text(self) -> str:
        """Get the text of the current (or last) turn."""
        return self._full_text

    def get_last_event(self) -> Optional[StreamEvent]:
        return self._last_event


class RichPrinter:
    """
    Displays a non-streaming Response using rich.

    Attributes:
        title: Title for the display panel
        show_metadata: Whether to show model, usage and metadata
        code_theme: Theme for code blocks
        inline_code_theme: Theme for inline code
        show_provider_info: Whether to show the provider in the title
        border_style: Border style for the panel
    """

    def __init__(
        self,
        title: str = "Response",
        show_metadata: bool = True,
        code_theme: str = "coffee",
        inline_code_theme: str = "monokai",
        show_provider_info: bool = True,
        border_style: str = "green",
        console: Optional[Console] = None,
    ):
        self.title = title
        self.show_metadata = show_metadata
        self.code_theme = code_theme
        self.inline_code_theme = inline_code_theme
        self.show_provider_info = show_provider_info
        self.border_style = border_style
        self.console = console or _default_console
        self._response: Optional[Response] = None

    def print_response(self, response: Response) -> Response:
        """
        Display a response with rich formatting.

        Returns:
            The same response for chaining
        """
        self._response = response
        self.console.print(
            Panel(
                self._build_content(response),
                title=self._build_title(response.provider),
                border_style=self.border_style,
                padding=(1, 2),
            )
        )
        return response

    def _build_title(self, provider: str) -> str:
        title_parts = [f"[bold]{self.title}[/bold]"]
        if self.show_provider_info and provider:
            title_parts.append(f"[dim]({provider})[/dim]")
        return " ".join(title_parts)

    def _build_content(self, response: Response) -> Any:
        if isinstance(response.content, (dict, list)):
            body: Any = Syntax(
                json.dumps(response.content, indent=2, default=str),
                "json",
                theme="lightbulb",
                background_color="default",
            )
        elif response.text.strip():
            body = Markdown(
                response.text,
                code_theme=self.code_theme,
                inline_code_theme=self.inline_code_theme,
            )
        else:
            body = Text("(empty response)", style="dim italic")

        if not self.show_metadata:
            return body

        meta: Dict[str, Any] = {"model": response.model}
        if response.usage is not None:
            meta["usage"] = response.usage.to_dict()
        if response.turns > 1 or response.tool_history:
            meta["turns"] = response.turns
            meta["tools"] = [entry["tool"] for entry in response.tool_history]
        meta.update({k: v for k, v in response.metadata.items() if k not in ("turns",)})
        return Group(body, _metadata_panel(meta))

    def get_response(self) -> Optional[Response]:
        """Get the last printed response."""
        return self._response

    def get_text(self) -> str:
        """Get the text from the last printed response."""
        return self._response.text if self._response else ""
