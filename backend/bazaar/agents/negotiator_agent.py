"""
Negotiator agent implementation.

WHAT: Generates the buyer side's next negotiation message
WHY: The loop drives the conversation; the wording comes from the completion collaborator
HOW: Render prompt from context + turns, call the LLM provider, sanitize the output
"""

import re
from typing import List

from ..core.config import settings
from ..llm.chat_completions import strip_thinking_blocks
from ..llm.provider import LLMProvider
from ..llm.types import (
    ProviderDisabledError,
    ProviderResponseError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from ..models.negotiation import NegotiationContext, Turn
from ..agents.prompts import render_negotiator_prompt
from ..utils.exceptions import NegotiatorAgentError
from ..utils.logger import get_logger
from ..utils.word_limit import truncate_to_word_limit

logger = get_logger(__name__)

MAX_MESSAGE_CHARS = 2000


class NegotiatorAgent:
    """
    LLM-powered agent that speaks for the buyer in one room.

    WHAT: next_message(turns) -> text
    WHY: Autonomous bargaining inside the buyer's declared budget
    HOW: Prompt engineering + provider call + output sanitization
    """

    def __init__(
        self,
        provider: LLMProvider,
        context: NegotiationContext,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        max_words: int | None = None,
    ):
        """
        Args:
            provider: LLM provider instance
            context: Room constraints for both sides
            temperature: Override default temperature
            max_tokens: Override default max tokens
            max_words: Override word limit per message
        """
        self.provider = provider
        self.context = context
        self.temperature = settings.LLM_DEFAULT_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.LLM_DEFAULT_MAX_TOKENS
        self.max_words = max_words or settings.MAX_WORDS_PER_MESSAGE

    async def next_message(self, history: List[Turn], round_number: int) -> str:
        """
        Produce the buyer's message for this round.

        Args:
            history: Turns so far, oldest first
            round_number: Round being generated (for logs and errors)

        Returns:
            Sanitized message text

        Raises:
            NegotiatorAgentError: Provider failure or empty output
        """
        messages = render_negotiator_prompt(self.context, history)
        logger.debug(
            f"Negotiator turn in room {self.context.room_id}, round {round_number}, "
            f"{len(messages)} messages in prompt"
        )

        try:
            result = await self.provider.generate(
                messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except (ProviderTimeoutError, ProviderUnavailableError, ProviderResponseError, ProviderDisabledError) as e:
            logger.error(f"Provider error in negotiator turn: {e}")
            raise NegotiatorAgentError(
                f"LLM provider error: {e}",
                room_id=self.context.room_id,
                round_number=round_number,
            ) from e

        text = self.sanitize(result.text)
        if not text:
            raise NegotiatorAgentError(
                "LLM returned an empty negotiation message",
                room_id=self.context.room_id,
                round_number=round_number,
            )

        logger.info(f"Negotiator round {round_number} in room {self.context.room_id}: {len(text)} chars")
        return text

    def sanitize(self, text: str) -> str:
        """
        Clean raw model output.

        Strips reasoning blocks, speaker prefixes and surrounding quotes, collapses
        whitespace, enforces the word and character limits and terminal punctuation.
        """
        text = strip_thinking_blocks(text or "")
        text = re.sub(r"^\s*(?:buyer|assistant|me)\s*:\s*", "", text, flags=re.IGNORECASE)
        text = " ".join(text.split()).strip().strip('"').strip()
        if not text:
            return ""

        text, truncated = truncate_to_word_limit(text, self.max_words)
        if truncated:
            logger.warning(f"Negotiator message truncated to {self.max_words} words")

        if len(text) > MAX_MESSAGE_CHARS:
            text = text[:MAX_MESSAGE_CHARS].rsplit(" ", 1)[0] + "..."

        if text[-1] not in ".!?":
            text += "."
        return text
