import httpx
from typing import Optional
from .base_provider import BaseProvider
from app.core.config import settings
from app.core.logger import get_logger


class GeminiProvider(BaseProvider):
    """Handles Google Gemini models over the REST API."""

    def __init__(self, api_key: Optional[str] = None, endpoint: Optional[str] = None,
                 model: Optional[str] = None, timeout: float = 30.0):
        self.name = "gemini"
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.endpoint = (endpoint or settings.GEMINI_FREE_ENDPOINT or "https://generativelanguage.googleapis.com").rstrip("/")
        self.model = model or settings.GEMINI_MODEL
        self.timeout = timeout
        self._enabled = bool(self.api_key)
        self._logger = get_logger("GeminiProvider")

    def is_enabled(self) -> bool:
        return self._enabled

    async def generate(self, prompt: str, temperature: float = 0.7, max_tokens: int = 500, **kwargs) -> str:
        if not self._enabled:
            raise RuntimeError("Gemini provider disabled: missing GEMINI_API_KEY")

        model = kwargs.get("model") or self.model
        effective_model = model if model.startswith("gemini") else self.model
        url = f"{self.endpoint}/v1beta/models/{effective_model}:generateContent"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": float(temperature),
                "maxOutputTokens": int(max_tokens),
            },
        }

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            res = await client.post(url, params={"key": self.api_key}, json=payload)
            if res.status_code != 200:
                self._logger.error(f"Gemini API error: status={res.status_code}")
            res.raise_for_status()
            data = res.json()

        candidates = data.get("candidates", [])
        if not candidates:
            raise ValueError("Gemini returned no candidates")
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(p.get("text", "") for p in parts if "text" in p)
