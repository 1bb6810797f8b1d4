from .llm_provider import LLMProvider

__all__ = ["LLMProvider"]
