import os
from typing import List, Optional

from anthropic import AsyncAnthropicBedrock
from pydantic import model_validator

from .anthropic import AnthropicProvider
from .base import ProviderOptions
from ..errors import UnsupportedOperationError


class BedrockOptions(ProviderOptions):
    """
    Claude on AWS Bedrock.

    Credentials come from the options or the standard AWS environment
    variables; when neither is set the AWS default credential chain applies.
    """
    default_model = "anthropic.claude-3-5-sonnet-20241022-v2:0"
    requires_api_key = False

    aws_region: Optional[str] = None
    aws_access_key: Optional[str] = None
    aws_secret_key: Optional[str] = None
    aws_session_token: Optional[str] = None
    aws_profile: Optional[str] = None

    @model_validator(mode="after")
    def _aws_environment(self) -> "BedrockOptions":
        env = os.environ
        self.aws_region = self.aws_region or env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION")
        self.aws_access_key = self.aws_access_key or env.get("AWS_ACCESS_KEY_ID")
        self.aws_secret_key = self.aws_secret_key or env.get("AWS_SECRET_ACCESS_KEY")
        self.aws_session_token = self.aws_session_token or env.get("AWS_SESSION_TOKEN")
        self.aws_profile = self.aws_profile or env.get("AWS_PROFILE")
        return self


class BedrockProvider(AnthropicProvider):
    """Anthropic Messages API served by AWS Bedrock."""

    tag = "bedrock"
    options_class = BedrockOptions
    capabilities = frozenset({"stream"})

    def _create_client(self) -> AsyncAnthropicBedrock:
        options = self.options
        return AsyncAnthropicBedrock(
            aws_region=options.aws_region,
            aws_access_key=options.aws_access_key,
            aws_secret_key=options.aws_secret_key,
            aws_session_token=options.aws_session_token,
            aws_profile=options.aws_profile,
            base_url=options.base_url,
            timeout=options.timeout,
            max_retries=0,
        )

    async def list_models(self) -> List[str]:
        raise UnsupportedOperationError(self.tag, "list_models")
