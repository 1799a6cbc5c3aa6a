"""
Layered configuration.

Process configuration is a nested map, optionally keyed by environment name
and then by provider tag::

    development:
      openai:
        model: gpt-4o-mini
      anthropic:
        max_tokens: 2048
    production:
      openai:
        model: gpt-4o

Options for one call resolve as defaults < process config < call overrides.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import dotenv
import yaml

from .errors import ConfigurationError
from .utils import deep_merge

logger = logging.getLogger(__name__)

ENV_VAR = "GENMUX_ENV"
DEFAULT_ENVIRONMENT = "development"
KNOWN_ENVIRONMENTS = ("development", "test", "staging", "production")


def current_environment(environment: Optional[str] = None) -> str:
    return environment or os.environ.get(ENV_VAR) or DEFAULT_ENVIRONMENT


def _is_environment_keyed(data: Mapping[str, Any]) -> bool:
    return any(key in KNOWN_ENVIRONMENTS for key in data)


def load_settings(
    source: Union[None, str, Path, Mapping[str, Any]] = None,
    environment: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Load process configuration and return the provider map of the active
    environment.

    Args:
        source: A mapping, a path to a YAML file, or None for no process config.
        environment: Environment name. Defaults to $GENMUX_ENV, then "development".

    Returns:
        Dict[str, Any]: {provider_tag: options}. A fresh dict; `source` is not modified.

    Raises:
        ConfigurationError: If the file is missing or not a YAML mapping.
    """
    # Credentials usually live in a .env file next to the application.
    dotenv.load_dotenv()

    if source is None:
        return {}

    if isinstance(source, Mapping):
        data: Any = source
    else:
        path = Path(source)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        logger.debug("Loaded settings from %s", path)

    if not isinstance(data, Mapping):
        raise ConfigurationError("Configuration must be a mapping of provider tags to options")

    if _is_environment_keyed(data):
        env = current_environment(environment)
        selected = data.get(env) or {}
        if not isinstance(selected, Mapping):
            raise ConfigurationError(f"Configuration for environment '{env}' must be a mapping")
        logger.debug("Using '%s' configuration", env)
        return deep_merge(selected)

    return deep_merge(data)


def resolve_options(
    settings: Optional[Mapping[str, Any]],
    tag: str,
    overrides: Optional[Mapping[str, Any]] = None,
    defaults: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Resolve the options for one provider call.

    Precedence is defaults < process settings < call overrides. Nested maps
    are merged, and the result is a new dict so none of the inputs change.

    Args:
        settings: Provider map from `load_settings`.
        tag: Provider tag; matched case-insensitively against the settings keys.
        overrides: Call-time options.
        defaults: Lowest-precedence defaults.
    """
    process: Optional[Mapping[str, Any]] = None
    if settings:
        wanted = tag.lower()
        for key, value in settings.items():
            if str(key).lower() == wanted:
                process = value
                break
    if process is not None and not isinstance(process, Mapping):
        raise ConfigurationError(f"Options for provider '{tag}' must be a mapping")
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
    return deep_merge(defaults, process, overrides)
