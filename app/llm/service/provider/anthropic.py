# app/llm/service/provider/anthropic.py
from typing import Optional
from anthropic import AsyncAnthropic
from .base_provider import BaseProvider
from app.core.config import settings


class AnthropicProvider(BaseProvider):
    """Handles Claude (Anthropic) models."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.name = "anthropic"
        self.api_key = api_key if api_key is not None else settings.ANTHROPIC_API_KEY
        self.client = AsyncAnthropic(api_key=self.api_key) if self.api_key else None
        self.model = model or settings.ANTHROPIC_MODEL
        self._enabled = bool(self.api_key)

    def is_enabled(self) -> bool:
        return self._enabled

    async def generate(self, prompt: str, temperature: float = 0.7, max_tokens: int = 500, **kwargs) -> str:
        if not self._enabled:
            raise RuntimeError("Anthropic provider disabled: missing ANTHROPIC_API_KEY")

        msg = await self.client.messages.create(
            model=kwargs.get("model") or self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(block.text for block in msg.content if getattr(block, "type", None) == "text")
