"""
Token counting and usage tracking.

Holds usage records reported by the provider and the length-based
estimate used for pre-flight budget and rate checks.
"""

import math
from dataclasses import dataclass
from typing import Optional

# English text averages roughly four characters per token
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Approximate the token count of ``text``.

    Deterministic and model-agnostic; used only for admission checks,
    never for final accounting.

    Args:
        text: Prompt or message content

    Returns:
        ceil(len(text) / 4), 0 for empty text
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported for one completed call.

    ``total_tokens`` defaults to prompt + completion when not given.
    """
    prompt_tokens: int
    completion_tokens: int
    total_tokens: Optional[int] = None
    estimated_cost: float = 0.0

    def __post_init__(self):
        """Validate counts and fill in the total."""
        if self.prompt_tokens < 0:
            raise ValueError("prompt_tokens cannot be negative")
        if self.completion_tokens < 0:
            raise ValueError("completion_tokens cannot be negative")
        if self.estimated_cost < 0:
            raise ValueError("estimated_cost cannot be negative")
        if self.total_tokens is None:
            object.__setattr__(self, "total_tokens", self.prompt_tokens + self.completion_tokens)
        elif self.total_tokens < 0:
            raise ValueError("total_tokens cannot be negative")


@dataclass
class DailyUsage:
    """Accumulated usage for one calendar day."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0

    def add(self, usage: TokenUsage) -> None:
        self.prompt_tokens += usage.prompt_tokens
        self.completion_tokens += usage.completion_tokens
        self.total_tokens += usage.total_tokens
        self.estimated_cost += usage.estimated_cost
