"""
Token budget value type.

A TokenBudget tracks one context window: its total capacity, what has been
consumed, and named reservations (system prompt, response headroom, injected
knowledge). Budgets are immutable; consuming tokens yields a new budget.

Example:
    >>> budget = TokenBudget.create(total=100, reserved={"response": 50})
    >>> budget.available
    50
    >>> budget.consume(40).available
    10
"""

import math

from pydantic import BaseModel, ConfigDict, Field, computed_field

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """
    Estimate token count with the ~4 characters per token heuristic.

    Every component falls back to this, and the assembler uses it for prompt
    and knowledge reservations, so it must stay exactly ``ceil(len / 4)``.

    Example:
        >>> estimate_tokens("Hello, world!")  # 13 chars
        4
    """
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class TokenBudget(BaseModel):
    """
    Immutable accounting for a context window.

    ``available`` is always ``max(0, total - used - sum(reserved))``; an
    over-committed budget reports zero availability rather than raising.
    """

    total: int = Field(description="Context window capacity in tokens")
    used: int = Field(default=0, description="Tokens consumed by included content")
    reserved: dict[str, int] = Field(
        default_factory=dict,
        description="Named reservations, e.g. {'system': 120, 'response': 1024}",
    )

    model_config = ConfigDict(frozen=True)

    @computed_field
    @property
    def available(self) -> int:
        """Tokens still free after consumption and reservations."""
        return max(0, self.total - self.used - self.reserved_total)

    @property
    def reserved_total(self) -> int:
        """Sum of all named reservations."""
        return sum(self.reserved.values())

    @classmethod
    def create(
        cls,
        total: int,
        used: int = 0,
        reserved: dict[str, int] | None = None,
    ) -> "TokenBudget":
        """Build a budget, copying the reservation map so callers can't alias it."""
        return cls(total=total, used=used, reserved=dict(reserved or {}))

    def consume(self, tokens: int) -> "TokenBudget":
        """Return a new budget with ``tokens`` more marked as used."""
        return TokenBudget.create(
            total=self.total,
            used=self.used + tokens,
            reserved=self.reserved,
        )


def create_token_budget(
    total: int,
    used: int = 0,
    reserved: dict[str, int] | None = None,
) -> TokenBudget:
    """Functional alias for :meth:`TokenBudget.create`."""
    return TokenBudget.create(total=total, used=used, reserved=reserved)


def consume_tokens(budget: TokenBudget, tokens: int) -> TokenBudget:
    """Functional alias for :meth:`TokenBudget.consume`."""
    return budget.consume(tokens)
