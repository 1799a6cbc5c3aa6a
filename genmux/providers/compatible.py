"""
Vendors that speak the OpenAI Chat Completions protocol on their own host.

They reuse `OpenAIProvider` with a custom base_url (the way DeepSeek and
Hugging Face are wired) and a single universal chat adapter.
"""
from typing import List, Optional

from .base import BaseAdapter
from .openai import ChatCompletionsAdapter, OpenAIOptions, OpenAIProvider


class CompatibleProvider(OpenAIProvider):
    """
    Base for OpenAI-compatible providers: chat shape only.
    """

    tag = "compatible"
    capabilities = frozenset({"stream", "list_models"})

    def _create_adapters(self) -> List[BaseAdapter]:
        return [ChatCompletionsAdapter(self, universal=True)]


# =============================================================================
# Ollama
# =============================================================================

class OllamaOptions(OpenAIOptions):
    api_key_env = ("OLLAMA_API_KEY",)
    default_model = "llama3.2"
    default_base_url = "http://localhost:11434/v1"
    requires_api_key = False

    # The SDK insists on a key; a local Ollama server ignores it.
    api_key: Optional[str] = "ollama"
    embedding_model: Optional[str] = "nomic-embed-text"


class OllamaProvider(CompatibleProvider):
    """Local Ollama server through its OpenAI-compatible endpoint."""

    tag = "ollama"
    options_class = OllamaOptions
    capabilities = frozenset({"stream", "embed", "list_models"})


# =============================================================================
# xAI (Grok)
# =============================================================================

class XAIOptions(OpenAIOptions):
    api_key_env = ("XAI_API_KEY", "GROK_API_KEY")
    default_model = "grok-2-latest"
    default_base_url = "https://api.x.ai/v1"

    embedding_model: Optional[str] = None


class XAIProvider(CompatibleProvider):
    """xAI Grok models. Embeddings are not offered."""

    tag = "xai"
    options_class = XAIOptions


# =============================================================================
# DeepSeek
# =============================================================================

class DeepSeekOptions(OpenAIOptions):
    api_key_env = ("DEEPSEEK_API_KEY",)
    default_model = "deepseek-chat"
    default_base_url = "https://api.deepseek.com"

    embedding_model: Optional[str] = None


class DeepSeekProvider(CompatibleProvider):
    tag = "deepseek"
    options_class = DeepSeekOptions


# =============================================================================
# Hugging Face
# =============================================================================

class HuggingFaceOptions(OpenAIOptions):
    api_key_env = ("HUGGINGFACE_API_KEY", "HF_TOKEN")
    default_model = "meta-llama/Llama-3.1-8B-Instruct"
    default_base_url = "https://router.huggingface.co/v1/"

    embedding_model: Optional[str] = None


class HuggingFaceProvider(CompatibleProvider):
    """
    Provider for Hugging Face Inference API (OpenAI-compatible).
    """

    tag = "huggingface"
    options_class = HuggingFaceOptions


# =============================================================================
# Groq
# =============================================================================

class GroqOptions(OpenAIOptions):
    api_key_env = ("GROQ_API_KEY",)
    default_model = "llama-3.3-70b-versatile"
    default_base_url = "https://api.groq.com/openai/v1"

    embedding_model: Optional[str] = None


class GroqProvider(CompatibleProvider):
    tag = "groq"
    options_class = GroqOptions


# =============================================================================
# Together
# =============================================================================

class TogetherOptions(OpenAIOptions):
    api_key_env = ("TOGETHER_API_KEY",)
    default_model = "meta-llama/Llama-3.3-70B-Instruct-Turbo"
    default_base_url = "https://api.together.xyz/v1"

    embedding_model: Optional[str] = "togethercomputer/m2-bert-80M-8k-retrieval"


class TogetherProvider(CompatibleProvider):
    tag = "together"
    options_class = TogetherOptions
    capabilities = frozenset({"stream", "embed", "list_models"})


# =============================================================================
# Mistral
# =============================================================================

class MistralOptions(OpenAIOptions):
    api_key_env = ("MISTRAL_API_KEY",)
    default_model = "mistral-large-latest"
    default_base_url = "https://api.mistral.ai/v1"

    embedding_model: Optional[str] = "mistral-embed"
    # Mistral rejects stream_options
    stream_usage: bool = False


class MistralProvider(CompatibleProvider):
    tag = "mistral"
    options_class = MistralOptions
    capabilities = frozenset({"stream", "embed", "list_models"})
