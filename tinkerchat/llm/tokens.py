"""
Token counting.

Providers count tokens either with the character heuristic
(:func:`~tinkerchat.context.budget.estimate_tokens`, ~4 characters per token)
or exactly with a tiktoken encoding when one is configured.
"""

import tiktoken

from tinkerchat.config.logging import get_logger
from tinkerchat.context.budget import estimate_tokens

logger = get_logger(__name__)

__all__ = ["TiktokenCounter", "estimate_tokens"]


class TiktokenCounter:
    """
    Exact token counts using a tiktoken encoding.

    Args:
        encoding_name: tiktoken encoding, e.g. "cl100k_base" or "o200k_base"

    Raises:
        RuntimeError: If the encoding cannot be loaded
    """

    def __init__(self, encoding_name: str = "cl100k_base"):
        self.encoding_name = encoding_name
        try:
            self._encoding = tiktoken.get_encoding(encoding_name)
        except Exception as e:
            logger.error(f"Failed to load tiktoken encoding '{encoding_name}': {e}")
            raise RuntimeError(f"Could not load tokenizer: {e}") from e

    def count(self, text: str) -> int:
        """Count tokens in text; special-token strings are counted as plain text."""
        return len(self._encoding.encode(text, disallowed_special=()))
