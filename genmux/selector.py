"""
Adapter selection for vendors that expose more than one request shape.

The simple "chat" shape handles plain text conversations with tool
declarations. The rich shape is needed as soon as a prompt asks for something
the chat shape cannot express.
"""
import logging
from typing import TYPE_CHECKING, Sequence

from .errors import ConfigurationError, ValidationError
from .types import Prompt

if TYPE_CHECKING:
    from .providers.base import BaseAdapter

logger = logging.getLogger(__name__)


def requires_rich_shape(prompt: Prompt) -> bool:
    """
    True iff the prompt carries a JSON-schema output requirement, multipart
    content (image or file parts) or a continuation handle from a prior turn.
    """
    return (
        prompt.output_schema is not None
        or prompt.has_multipart_content
        or bool(prompt.previous_response_id)
    )


def select_adapter(adapters: Sequence["BaseAdapter"], prompt: Prompt) -> "BaseAdapter":
    """
    Pick the one adapter that supports `prompt`.

    Raises:
        ValidationError: If no adapter supports the prompt.
        ConfigurationError: If more than one does (the adapters of a provider
            must partition the prompt space).
    """
    supporting = [a for a in adapters if a.supports(prompt)]
    if not supporting:
        raise ValidationError(
            "No adapter supports this prompt; available: "
            + ", ".join(a.name for a in adapters)
        )
    if len(supporting) > 1:
        raise ConfigurationError(
            "Ambiguous adapter selection: " + ", ".join(a.name for a in supporting)
        )
    logger.debug("Selected adapter %s", supporting[0].name)
    return supporting[0]
