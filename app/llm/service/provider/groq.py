# app/llm/service/provider/groq.py
from typing import Optional
from openai import AsyncOpenAI
from .base_provider import BaseProvider
from app.core.config import settings


class GroqProvider(BaseProvider):
    """Handles Groq-hosted models through the OpenAI-compatible API."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, model: Optional[str] = None):
        self.name = "groq"
        self.api_key = api_key if api_key is not None else settings.GROQ_API_KEY
        base = base_url or settings.GROQ_BASE_URL or "https://api.groq.com/openai/v1"
        self.client = AsyncOpenAI(api_key=self.api_key, base_url=base) if self.api_key else None
        self.model = model or settings.GROQ_MODEL
        self._enabled = bool(self.api_key)

    def is_enabled(self) -> bool:
        return self._enabled

    async def generate(self, prompt: str, temperature: float = 0.7, max_tokens: int = 500, **kwargs) -> str:
        if not self._enabled:
            raise RuntimeError("Groq provider disabled: missing GROQ_API_KEY")

        response = await self.client.chat.completions.create(
            model=kwargs.get("model") or self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return response.choices[0].message.content
