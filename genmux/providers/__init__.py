from .base import BaseAdapter, BaseLLMProvider, ProviderOptions
from .openai import OpenAIProvider
from .azure import AzureOpenAIProvider
from .openrouter import OpenRouterProvider
from .compatible import (
    CompatibleProvider,
    DeepSeekProvider,
    GroqProvider,
    HuggingFaceProvider,
    MistralProvider,
    OllamaProvider,
    TogetherProvider,
    XAIProvider,
)
from .anthropic import AnthropicProvider
from .bedrock import BedrockProvider
from .gemini import GeminiProvider
from .scripted import ScriptedProvider

__all__ = [
    "BaseAdapter",
    "BaseLLMProvider",
    "ProviderOptions",
    "OpenAIProvider",
    "AzureOpenAIProvider",
    "OpenRouterProvider",
    "CompatibleProvider",
    "DeepSeekProvider",
    "GroqProvider",
    "HuggingFaceProvider",
    "MistralProvider",
    "OllamaProvider",
    "TogetherProvider",
    "XAIProvider",
    "AnthropicProvider",
    "BedrockProvider",
    "GeminiProvider",
    "ScriptedProvider",
]
