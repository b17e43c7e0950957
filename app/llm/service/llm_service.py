from typing import Dict, List, Optional, Sequence

from app.chat.entity.chat import Message
from app.core.config import settings
from app.core.logger import get_logger
from app.llm.service.provider.base_provider import BaseProvider
from app.llm.service.router_service import FallbackRouter

logger = get_logger(__name__)

# Global defaults
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 500
DEFAULT_CONTEXT_MESSAGES = 10

PROMPT_PREAMBLE = (
    "You are a helpful study assistant in a collaborative study room. "
    "Multiple students are studying together. Previous conversation:\n"
)
PROMPT_INSTRUCTIONS = (
    "\n\nProvide a helpful, concise response to help with their studies. "
    "Keep responses friendly and educational."
)


def render_context(messages: Sequence[Message]) -> str:
    return "\n".join(f"{m.speaker}: {m.text}" for m in messages)


def build_prompt(messages: Sequence[Message], context_size: int = DEFAULT_CONTEXT_MESSAGES) -> str:
    """Wrap the last context_size messages in the assistant's instructions."""
    recent = list(messages)[-context_size:] if context_size > 0 else []
    return f"{PROMPT_PREAMBLE}{render_context(recent)}{PROMPT_INSTRUCTIONS}"


def build_providers(order: Optional[List[str]] = None) -> List[BaseProvider]:
    """Instantiate providers in configured order, skipping unknown names."""
    from app.llm.service.provider.anthropic import AnthropicProvider
    from app.llm.service.provider.gemini import GeminiProvider
    from app.llm.service.provider.groq import GroqProvider
    from app.llm.service.provider.openai_provider import OpenAIProvider

    registry = {
        "gemini": GeminiProvider,
        "groq": GroqProvider,
        "openai": OpenAIProvider,
        "anthropic": AnthropicProvider,
    }
    providers: List[BaseProvider] = []
    for name in order or settings.provider_order:
        factory = registry.get(name)
        if factory is None:
            logger.warning(f"Unknown AI provider '{name}' in AI_PROVIDERS, skipping")
            continue
        providers.append(factory())
    return providers


class AIResponseOrchestrator:
    """Turns recent room conversation into one assistant reply."""

    def __init__(
        self,
        router: FallbackRouter,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        context_size: int = DEFAULT_CONTEXT_MESSAGES,
    ):
        self.router = router
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.context_size = context_size

    async def respond(self, messages: Sequence[Message]) -> Dict[str, str]:
        """
        Return {text, provider} for the conversation.

        Raises AIOrchestrationFailure once every provider has failed; callers
        must not retry within the same message cycle.
        """
        prompt = build_prompt(messages, self.context_size)
        result = await self.router.generate(prompt, temperature=self.temperature, max_tokens=self.max_tokens)
        logger.info(f"AI response generated by {result['provider']}")
        return result

    def get_latency_report(self) -> Dict[str, float]:
        return self.router.get_latency_report()
