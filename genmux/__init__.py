from .client import GenerationClient
from .config import load_settings, resolve_options
from .errors import (
    ConfigurationError,
    GenmuxError,
    TransportError,
    UnsupportedOperationError,
    ValidationError,
    classify_error,
)
from .orchestrator import ToolOrchestrator, ToolRegistry, TurnState
from .registry import ProviderRegistry, ProviderSpec, default_registry
from .rich_llm_printer import RichPrinter, RichStreamSink, configure_logging
from .streaming import CollectingSink, StreamChannel, StreamSink
from .types import (
    Action,
    ContentPart,
    EmbeddingResponse,
    FilePart,
    ImagePart,
    Message,
    Prompt,
    Response,
    StreamEvent,
    TextPart,
    Usage,
)
from .usage import UsageTracker

__all__ = [
    "GenerationClient",
    "load_settings",
    "resolve_options",
    "GenmuxError",
    "ConfigurationError",
    "ValidationError",
    "TransportError",
    "UnsupportedOperationError",
    "classify_error",
    "ToolOrchestrator",
    "ToolRegistry",
    "TurnState",
    "ProviderRegistry",
    "ProviderSpec",
    "default_registry",
    "RichPrinter",
    "RichStreamSink",
    "configure_logging",
    "CollectingSink",
    "StreamChannel",
    "StreamSink",
    "Action",
    "ContentPart",
    "EmbeddingResponse",
    "FilePart",
    "ImagePart",
    "Message",
    "Prompt",
    "Response",
    "StreamEvent",
    "TextPart",
    "Usage",
    "UsageTracker",
]
