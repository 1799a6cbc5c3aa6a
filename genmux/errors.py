"""
Error taxonomy for genmux.

Every failure that leaves the engine is one of the classes below. Vendor SDK
exceptions and vendor-specific error bodies are mapped into this taxonomy by
`classify_error` so callers never have to catch `openai.*`, `anthropic.*` or
`google.genai.*` exception types themselves.
"""
import asyncio
import logging
import re
from typing import Optional, Tuple

import anthropic
import httpx
import openai

logger = logging.getLogger(__name__)


class GenmuxError(Exception):
    """Base class for all genmux errors."""


class ConfigurationError(GenmuxError):
    """Unknown provider tag, missing credential or invalid options. Never retried."""


class ValidationError(GenmuxError, ValueError):
    """Malformed canonical Prompt/Message, raised before any network call."""


class UnsupportedOperationError(GenmuxError, NotImplementedError):
    """A provider explicitly declines an optional capability (embeddings, streaming...)."""

    def __init__(self, provider: str, operation: str):
        self.provider = provider
        self.operation = operation
        super().__init__(f"Provider '{provider}' does not support '{operation}'")


class TransportError(GenmuxError):
    """
    Network failure, timeout, rate limit or vendor-side error.

    Attributes:
        provider: Provider tag the call was made against.
        kind: Machine readable category (timeout, network, rate_limit, server,
              auth, invalid_request, insufficient_credits, unavailable,
              model_not_found, unknown).
        retryable: Whether retrying the same request may succeed.
        status_code: HTTP status code when one was available.
        attempts: Number of attempts made before the error surfaced.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str = "unknown",
        kind: str = "unknown",
        retryable: bool = False,
        status_code: Optional[int] = None,
    ):
        self.provider = provider
        self.kind = kind
        self.retryable = retryable
        self.status_code = status_code
        self.attempts = 1
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        flag = "retryable" if self.retryable else "fatal"
        return f"[{self.provider}:{self.kind}:{flag}] {base}"


# Vendor error bodies that need to be recognised by message text.
# Order matters: the first matching pattern wins.
_MESSAGE_PATTERNS: Tuple[Tuple[re.Pattern, str, bool], ...] = (
    (re.compile(r"insufficient[ _](credits|quota|balance|funds)|out of credits|payment required", re.I),
     "insufficient_credits", False),
    (re.compile(r"no (available|healthy) (provider|upstream)|no endpoints found|upstream (error|unavailable)|overloaded", re.I),
     "unavailable", True),
    (re.compile(r"rate[ _-]?limit|too many requests", re.I), "rate_limit", True),
    (re.compile(r"model[^.]{0,80}?(not[ _]found|does not exist)|unknown model|not a valid model", re.I),
     "model_not_found", False),
    (re.compile(r"timed? ?out|deadline exceeded", re.I), "timeout", True),
    (re.compile(r"invalid api key|unauthori[sz]ed|authentication|permission denied", re.I), "auth", False),
)


def _classify_status(status: int) -> Tuple[str, bool]:
    if status in (401, 403):
        return "auth", False
    if status == 402:
        return "insufficient_credits", False
    if status == 404:
        return "model_not_found", False
    if status == 408:
        return "timeout", True
    if status == 429:
        return "rate_limit", True
    if status >= 500:
        return "server", True
    return "invalid_request", False


def classify_message(message: str) -> Optional[Tuple[str, bool]]:
    """
    Match a vendor error message against the known patterns.

    Returns:
        (kind, retryable) or None if no pattern matches.
    """
    for pattern, kind, retryable in _MESSAGE_PATTERNS:
        if pattern.search(message or ""):
            return kind, retryable
    return None


def classify_error(exc: BaseException, provider: str = "unknown") -> GenmuxError:
    """
    Map an arbitrary exception raised while talking to a vendor into the
    genmux taxonomy.

    genmux errors pass through untouched. SDK errors from openai, anthropic
    and google-genai, as well as raw httpx errors, become `TransportError`s
    with a `kind` and a `retryable` flag. Vendor-specific messages
    ("insufficient credits", "no available upstream", ...) are matched by text
    first because some vendors send them with generic status codes.

    Args:
        exc: The exception to classify.
        provider: Provider tag, recorded on the resulting error.

    Returns:
        GenmuxError: The mapped error (not raised).
    """
    if isinstance(exc, GenmuxError):
        return exc

    message = str(exc) or exc.__class__.__name__

    # Timeouts and connection failures first: these are subclasses of the
    # generic SDK error classes.
    if isinstance(exc, (openai.APITimeoutError, anthropic.APITimeoutError, httpx.TimeoutException, asyncio.TimeoutError)):
        return TransportError(message, provider=provider, kind="timeout", retryable=True)
    if isinstance(exc, (openai.APIConnectionError, anthropic.APIConnectionError, httpx.TransportError, ConnectionError)):
        return TransportError(message, provider=provider, kind="network", retryable=True)

    status = getattr(exc, "status_code", None)
    if status is None:
        # google.genai.errors.APIError exposes the HTTP status as `code`
        code = getattr(exc, "code", None)
        status = code if isinstance(code, int) else None
    if status is None and isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code

    matched = classify_message(message)
    if matched is not None:
        kind, retryable = matched
        return TransportError(message, provider=provider, kind=kind, retryable=retryable, status_code=status)

    if isinstance(status, int):
        kind, retryable = _classify_status(status)
        return TransportError(message, provider=provider, kind=kind, retryable=retryable, status_code=status)

    if isinstance(exc, (openai.OpenAIError, anthropic.AnthropicError)):
        return TransportError(message, provider=provider, kind="unknown", retryable=False)

    logger.debug("Unclassified %s from %s: %s", exc.__class__.__name__, provider, message)
    return TransportError(message, provider=provider, kind="unknown", retryable=False)


def error_from_body(error: object, provider: str = "unknown") -> TransportError:
    """
    Map an error object embedded in an otherwise successful HTTP reply.

    Gateways such as OpenRouter report upstream failures as
    ``{"error": {"message": ..., "code": ...}}`` with a 200 status.
    """
    if isinstance(error, dict):
        message = str(error.get("message") or error)
        code = error.get("code")
    else:
        message = str(error)
        code = None
    status = code if isinstance(code, int) else None

    matched = classify_message(message)
    if matched is not None:
        kind, retryable = matched
    elif status is not None:
        kind, retryable = _classify_status(status)
    else:
        kind, retryable = "unknown", False
    return TransportError(message, provider=provider, kind=kind, retryable=retryable, status_code=status)
