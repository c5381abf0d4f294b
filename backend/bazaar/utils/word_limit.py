"""
Word limit enforcement utilities.

WHAT: Keep generated negotiation messages short
WHY: One concrete proposal per turn; long LLM rambles bury the price
HOW: Word counting and truncation at sentence boundaries when possible
"""

import re
from typing import Tuple

from ..utils.logger import get_logger

logger = get_logger(__name__)


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    if not text or not text.strip():
        return 0
    return len([w for w in re.split(r'\s+', text.strip()) if w])


def truncate_to_word_limit(text: str, max_words: int) -> Tuple[str, bool]:
    """
    Truncate text to a maximum word count.

    Cuts at the last sentence end within the final ten words when one exists,
    otherwise at the word boundary with an ellipsis.

    Returns:
        Tuple of (truncated_text, was_truncated)
    """
    word_count = count_words(text)
    if word_count <= max_words:
        return text, False

    words = text.split()
    truncated_text = ' '.join(words[:max_words]) + '...'
    for i in range(max_words - 1, max(0, max_words - 10), -1):
        if words[i][-1] in '.!?':
            truncated_text = ' '.join(words[:i + 1])
            break

    logger.warning(
        f"Truncated message from {word_count} words to {count_words(truncated_text)} words "
        f"(limit: {max_words})"
    )
    return truncated_text, True
