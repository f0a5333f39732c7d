"""
Governed OpenAI client wrapper.

Checks the token budget, waits for rate-limit admission and records the
reported usage for every chat completion.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from openai import AsyncOpenAI

from ..core.errors import AdmissionRejected
from ..core.governor import Priority, RequestGovernor
from ..core.ledger import UsageLedger
from ..core.pricing import PRICING_TABLE, calculate_cost
from ..core.token_counter import TokenUsage

logger = logging.getLogger(__name__)


class GovernedOpenAI:
    """Async OpenAI chat client behind a governor and a usage ledger.

    The governor decides when a call may run; the ledger decides whether
    it may run at all and accumulates what it actually cost.
    """

    def __init__(
        self,
        model: str,
        governor: RequestGovernor,
        ledger: UsageLedger,
        client: Optional[AsyncOpenAI] = None
    ):
        """Initialize governed OpenAI client.

        Args:
            model: OpenAI model name (required)
            governor: Governor shared by every caller of this provider
            ledger: Ledger that tracks the token budget
            client: Preconfigured AsyncOpenAI client (created if omitted)

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.model = model
        self.governor = governor
        self.ledger = ledger
        self.client = client or AsyncOpenAI()

    def estimate_request_tokens(
        self,
        messages: List[Dict[str, Any]],
        max_tokens: Optional[int] = None
    ) -> int:
        """Estimate prompt tokens plus the completion allowance."""
        prompt_tokens = sum(
            self.ledger.estimate_tokens(message["content"])
            for message in messages
            if isinstance(message.get("content"), str)
        )
        return prompt_tokens + (max_tokens or 0)

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        priority: Union[Priority, str] = Priority.MEDIUM,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create a chat completion under budget and rate-limit control.

        Args:
            messages: List of message dictionaries (required)
            priority: Queue priority for the call
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty or the response has no usage
            AdmissionRejected: If the budget or rate limits refuse the call
            ThrottleError: If the provider kept throttling after all retries
            OpenAI API errors: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        token_estimate = self.estimate_request_tokens(messages, max_tokens)
        budget = self.ledger.check_budget(token_estimate)
        if not budget.can_proceed:
            raise AdmissionRejected(budget.reason, status=budget.budget_status)

        async def create_completion():
            return await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )

        response = await self.governor.execute_with_rate_limit(
            create_completion, token_estimate, priority
        )

        usage = response.usage
        if not usage:
            raise ValueError("OpenAI response missing usage information")

        token_usage = TokenUsage(
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens
        )
        if PRICING_TABLE.supports(self.model):
            estimated_cost = calculate_cost(self.model, token_usage)
        else:
            logger.warning("No pricing for model %s; recording zero cost", self.model)
            estimated_cost = 0.0

        self.ledger.record_usage(TokenUsage(
            prompt_tokens=token_usage.prompt_tokens,
            completion_tokens=token_usage.completion_tokens,
            total_tokens=token_usage.total_tokens,
            estimated_cost=estimated_cost
        ))
        return response
