# app/llm/service/provider/base_provider.py
from abc import ABC, abstractmethod


class BaseProvider(ABC):
    """Abstract base provider for all LLM integrations."""

    name: str = "base"

    @abstractmethod
    async def generate(self, prompt: str, temperature: float = 0.7, max_tokens: int = 500, **kwargs) -> str:
        """Generate a completion for prompt and return its text."""
        pass

    def is_enabled(self) -> bool:
        """Whether this provider is enabled/usable (e.g., API key present)."""
        return True

    def __repr__(self):
        return f"<{type(self).__name__} name={self.name} enabled={self.is_enabled()}>"
