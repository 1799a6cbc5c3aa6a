from typing import List, Optional

from openai import AsyncAzureOpenAI
from pydantic import model_validator

from .base import BaseAdapter
from .openai import ChatCompletionsAdapter, OpenAIOptions, OpenAIProvider
from ..errors import ConfigurationError


class AzureOptions(OpenAIOptions):
    """
    Azure OpenAI options.

    The endpoint is `base_url` when given, otherwise it is derived from
    `azure_resource`. Requests go to `deployment_id`, which also serves as
    the model id unless `model` is set.
    """
    api_key_env = ("AZURE_OPENAI_API_KEY",)
    default_model = None

    azure_resource: Optional[str] = None
    deployment_id: Optional[str] = None
    api_version: str = "2024-10-21"
    embedding_model: Optional[str] = None

    @model_validator(mode="after")
    def _deployment_as_model(self) -> "AzureOptions":
        if not self.model:
            self.model = self.deployment_id
        return self

    @property
    def endpoint(self) -> str:
        if self.base_url:
            return self.base_url
        if self.azure_resource:
            return f"https://{self.azure_resource}.openai.azure.com"
        raise ConfigurationError("Azure needs either base_url or azure_resource")


class AzureOpenAIProvider(OpenAIProvider):
    """Azure OpenAI deployments, chat shape only."""

    tag = "azure"
    options_class = AzureOptions
    capabilities = frozenset({"stream", "embed", "list_models"})

    def _create_client(self) -> AsyncAzureOpenAI:
        return AsyncAzureOpenAI(
            api_key=self.options.api_key,
            api_version=self.options.api_version,
            azure_endpoint=self.options.endpoint,
            azure_deployment=self.options.deployment_id,
            timeout=self.options.timeout,
            max_retries=0,
        )

    def _create_adapters(self) -> List[BaseAdapter]:
        return [ChatCompletionsAdapter(self, universal=True)]
