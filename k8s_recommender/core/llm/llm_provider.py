import os
from typing import Optional, Dict, Any, Type
from langchain_core.runnables import Runnable
from k8s_recommender.utils.exceptions import UnsupportedProviderError, LLMConfigurationError
from .base_llm_provider import BaseLLMProvider


class OpenAIProvider(BaseLLMProvider):
    """LLM provider for OpenAI chat models."""
    package_name = "langchain_openai"
    display_name = "OpenAI"

    def create_llm(
        self,
        model: str,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
        timeout: int = 60,
        **kwargs: Any
    ) -> Runnable:
        LLMProvider._check_package(self.package_name, self.display_name)
        from langchain_openai import ChatOpenAI
        api_key = kwargs.pop('api_key', None) or os.getenv('OPENAI_API_KEY')
        if not api_key:
            raise LLMConfigurationError(
                "OpenAI API key not found. Set OPENAI_API_KEY environment variable "
                "or pass api_key parameter."
            )
        config = {
            "model": model,
            "temperature": temperature,
            "api_key": api_key,
            "timeout": timeout,
        }
        if max_tokens is not None:
            config["max_tokens"] = max_tokens
        if kwargs.get('base_url'):
            config["base_url"] = kwargs.pop('base_url')
        config.update(kwargs)
        return ChatOpenAI(**config)


class AnthropicProvider(BaseLLMProvider):
    """LLM provider for Anthropic chat models."""
    package_name = "langchain_anthropic"
    display_name = "Anthropic"

    def create_llm(
        self,
        model: str,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
        timeout: int = 60,
        **kwargs: Any
    ) -> Runnable:
        LLMProvider._check_package(self.package_name, self.display_name)
        from langchain_anthropic import ChatAnthropic  # type: ignore
        api_key = kwargs.pop('api_key', None) or os.getenv('ANTHROPIC_API_KEY')
        if not api_key:
            raise LLMConfigurationError(
                "Anthropic API key not found. Set ANTHROPIC_API_KEY environment variable "
                "or pass api_key parameter."
            )
        config = {
            "model": model,
            "temperature": temperature,
            "api_key": api_key,
            "timeout": timeout,
        }
        if max_tokens is not None:
            config["max_tokens"] = max_tokens
        config.update(kwargs)
        return ChatAnthropic(**config)


class AzureOpenAIProvider(BaseLLMProvider):
    """LLM provider for Azure OpenAI deployments."""
    package_name = "langchain_openai"
    display_name = "Azure OpenAI"

    def create_llm(
        self,
        model: str,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
        timeout: int = 60,
        **kwargs: Any
    ) -> Runnable:
        LLMProvider._check_package(self.package_name, self.display_name)
        from langchain_openai import AzureChatOpenAI
        api_key = kwargs.pop('api_key', None) or os.getenv('AZURE_OPENAI_API_KEY')
        endpoint = kwargs.pop('endpoint', None) or os.getenv('AZURE_OPENAI_ENDPOINT')
        if not api_key or not endpoint:
            raise LLMConfigurationError(
                "Azure OpenAI API key or endpoint not found. Set AZURE_OPENAI_API_KEY and AZURE_OPENAI_ENDPOINT "
                "environment variables or pass api_key and endpoint parameters."
            )
        config = {
            "azure_deployment": kwargs.pop('deployment_name', None) or model,
            "temperature": temperature,
            "api_key": api_key,
            "azure_endpoint": endpoint,
            "api_version": kwargs.pop('api_version', None) or os.getenv('AZURE_OPENAI_API_VERSION', '2024-06-01'),
            "timeout": timeout,
        }
        if max_tokens is not None:
            config["max_tokens"] = max_tokens
        config.update(kwargs)
        return AzureChatOpenAI(**config)


class LLMProvider:
    """Factory for the LangChain chat models used by the decision oracle."""

    _PROVIDERS: Dict[str, Type[BaseLLMProvider]] = {
        "openai": OpenAIProvider,
        "anthropic": AnthropicProvider,
        "azure_openai": AzureOpenAIProvider,
    }

    @staticmethod
    def create_llm(
        provider: str,
        model: str,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
        timeout: int = 60,
        **kwargs: Any
    ) -> Runnable:
        """
        Create a LangChain chat model for the given provider.

        Raises:
            UnsupportedProviderError: If provider is not supported
            LLMConfigurationError: If configuration is invalid
        """
        provider = provider.lower().strip()
        provider_cls = LLMProvider._PROVIDERS.get(provider)
        if provider_cls is None:
            supported = ", ".join(sorted(LLMProvider._PROVIDERS))
            raise UnsupportedProviderError(
                f"Unsupported provider: '{provider}'. "
                f"Supported providers: {supported}"
            )

        try:
            return provider_cls().create_llm(
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=timeout,
                **kwargs
            )
        except LLMConfigurationError:
            raise
        except Exception as e:
            raise LLMConfigurationError(
                f"Failed to create LLM for provider '{provider}': {e}"
            ) from e

    @staticmethod
    def create_from_config(llm_config: Dict[str, Any], timeout: int = 60) -> Runnable:
        """Create a chat model from a ``Config.llm_config``-shaped dictionary."""
        return LLMProvider.create_llm(
            provider=llm_config['provider'],
            model=llm_config['model'],
            temperature=llm_config.get('temperature', 0.0),
            max_tokens=llm_config.get('max_tokens'),
            timeout=timeout,
        )

    @staticmethod
    def _check_package(package_name: str, provider_name: str) -> None:
        """Check if required package is installed."""
        try:
            __import__(package_name)
        except ImportError:
            raise LLMConfigurationError(
                f"{package_name} package is required for {provider_name} provider. "
                f"Install with: pip install {package_name.replace('_', '-')}"
            )

