"""
Conversation history truncation utilities.

WHAT: Trim negotiation turns before they are rendered into a prompt
WHY: LLM context windows are limited and long negotiations run up to the round budget
HOW: Keep the most recent turns within a message count and character budget
"""

from typing import List

from ..models.negotiation import Turn
from ..utils.logger import get_logger

logger = get_logger(__name__)


def truncate_turns(
    history: List[Turn],
    max_messages: int = 10,
    max_chars: int = 4000
) -> List[Turn]:
    """
    Truncate negotiation history to fit the prompt budget.

    Strategy:
    1. Keep the most recent turns (up to max_messages)
    2. Drop the oldest turns while total characters exceed max_chars
    3. Always keep the most recent turn, even if it alone exceeds the limit

    Args:
        history: Full turn history, oldest first
        max_messages: Maximum number of turns to keep
        max_chars: Maximum total characters across kept turns

    Returns:
        Most recent turns that fit within the limits
    """
    if not history:
        return []

    truncated = history[-max_messages:]
    total_chars = sum(len(turn.content) for turn in truncated)

    while total_chars > max_chars and len(truncated) > 1:
        removed = truncated.pop(0)
        total_chars -= len(removed.content)

    if len(truncated) < len(history):
        logger.debug(
            f"Truncated negotiation history: {len(history)} -> {len(truncated)} turns "
            f"({total_chars}/{max_chars} chars)"
        )

    return truncated
