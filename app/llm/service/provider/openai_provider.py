# app/llm/service/provider/openai_provider.py
from typing import Optional
from openai import AsyncOpenAI
from .base_provider import BaseProvider
from app.core.config import settings


class OpenAIProvider(BaseProvider):
    name = "openai"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.client = AsyncOpenAI(api_key=self.api_key) if self.api_key else None
        self.model = model or settings.OPENAI_MODEL
        self._enabled = bool(self.api_key)

    def is_enabled(self) -> bool:
        return self._enabled

    async def generate(self, prompt: str, temperature: float = 0.7, max_tokens: int = 500, **kwargs) -> str:
        if not self.is_enabled():
            raise RuntimeError("OpenAI disabled: missing API key")

        resp = await self.client.chat.completions.create(
            model=kwargs.get("model") or self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
            stream=False,
        )
        return resp.choices[0].message.content or ""
