"""
LLM provider protocol definition.

WHAT: Interface for the completion/scoring collaborator
WHY: Callers receive a provider by injection and tests pass a scripted double
HOW: Protocol with async ping and generate
"""

from typing import Protocol
from .types import ChatMessage, LLMResult, ProviderStatus


class LLMProvider(Protocol):
    """Protocol every LLM provider implements."""

    async def ping(self) -> ProviderStatus:
        """Check provider health and availability."""
        ...

    async def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
        stop: list[str] | None = None,
        model: str | None = None
    ) -> LLMResult:
        """Generate a complete response."""
        ...
