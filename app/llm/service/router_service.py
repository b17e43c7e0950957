# app/llm/service/router_service.py
import asyncio
import time
from typing import Dict, List, Optional, Sequence

from app.core.errors import AIOrchestrationFailure, AIProviderFailure
from app.core.logger import get_logger
from app.llm.service.provider.base_provider import BaseProvider

logger = get_logger("FallbackRouter")


class FallbackRouter:
    """
    Ordered provider chain for LLM requests.

    Providers are tried in order; the first usable response wins. An error, a
    timeout, or a blank/non-text response moves on to the next provider. There
    is no retry of a provider that already failed.
    """

    def __init__(self, providers: Sequence[BaseProvider], request_timeout_ms: int = 15000):
        self.providers: List[BaseProvider] = list(providers)
        self.request_timeout_ms = request_timeout_ms
        self.provider_latency: Dict[str, float] = {}

    async def _with_timeout(self, coro, timeout_ms: int):
        """Helper to apply timeout."""
        try:
            return await asyncio.wait_for(coro, timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Timed out after {timeout_ms}ms")

    async def _call_provider(self, provider: BaseProvider, prompt: str, temperature: float, max_tokens: int) -> str:
        start = time.perf_counter()
        try:
            result = await self._with_timeout(
                provider.generate(prompt, temperature=temperature, max_tokens=max_tokens),
                self.request_timeout_ms,
            )
        except Exception as e:
            raise AIProviderFailure(f"Provider {provider.name} failed", details=str(e), provider=provider.name) from e

        if not isinstance(result, str) or not result.strip():
            raise AIProviderFailure(f"Provider {provider.name} returned an empty response", provider=provider.name)

        self.provider_latency[provider.name] = time.perf_counter() - start
        return result

    async def generate(self, prompt: str, temperature: float = 0.7, max_tokens: int = 500) -> Dict[str, str]:
        """Return {text, provider} from the first provider that succeeds."""
        active = [p for p in self.providers if p.is_enabled()]
        if not active:
            raise AIOrchestrationFailure("No AI providers available")

        last_error: Optional[AIProviderFailure] = None
        for provider in active:
            try:
                text = await self._call_provider(provider, prompt, temperature, max_tokens)
                return {"text": text, "provider": provider.name}
            except AIProviderFailure as e:
                logger.error(f"Provider failed: {provider.name}: {e}")
                last_error = e
                continue

        raise AIOrchestrationFailure("All providers failed", details=str(last_error), last_error=last_error)

    def get_latency_report(self) -> Dict[str, float]:
        return dict(self.provider_latency)

    def __repr__(self):
        return f"<FallbackRouter providers={[p.name for p in self.providers]}>"
