from abc import ABC, abstractmethod
from typing import Any, Optional
from langchain_core.runnables import Runnable


class BaseLLMProvider(ABC):
    """
    Abstract base class for all LLM providers backing the decision oracle.
    """
    package_name: str = ""
    display_name: str = ""

    @abstractmethod
    def create_llm(
        self,
        model: str,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
        timeout: int = 60,
        **kwargs: Any
    ) -> Runnable:
        """
        Create a LangChain chat model implementing the Runnable interface.
        Args:
            model: Model name (e.g., 'gpt-4o-mini')
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            timeout: Request timeout in seconds
            **kwargs: Additional provider-specific parameters
        Returns:
            Configured LangChain chat model (Runnable)
        """
        pass
