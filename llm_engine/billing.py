"""
Cost tracking for the LLM engine.
Accumulates the cost of every completed request using per-model pricing.
"""

import threading
from dataclasses import dataclass, field

from .models import ModelDescriptor, TokenUsage


class BillingError(Exception):
    """Billing related errors"""
    pass


@dataclass(frozen=True)
class CostStats:
    """Snapshot of the cost ledger."""
    total_cost: float = 0.0
    cost_by_provider: dict[str, float] = field(default_factory=dict)
    cost_by_model: dict[str, float] = field(default_factory=dict)
    saved_cost: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    records: int = 0


class CostTracker:
    """
    Running cost ledger.

    Costs are computed with the formula:
      cost = (input_tokens / 1_000_000) * input_cost_per_1m +
             (output_tokens / 1_000_000) * output_cost_per_1m
    Models without pricing cost nothing. All amounts are USD.

    Cache hits never add to ``total_cost``; the cost they avoided is kept
    in ``saved_cost`` instead.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._reset_state()

    def _reset_state(self) -> None:
        self._total_cost = 0.0
        self._cost_by_provider: dict[str, float] = {}
        self._cost_by_model: dict[str, float] = {}
        self._saved_cost = 0.0
        self._total_input_tokens = 0
        self._total_output_tokens = 0
        self._records = 0

    @staticmethod
    def _check_tokens(input_tokens: int, output_tokens: int) -> None:
        if input_tokens < 0:
            raise BillingError("input_tokens cannot be negative")
        if output_tokens < 0:
            raise BillingError("output_tokens cannot be negative")

    def estimate(self, model: ModelDescriptor, input_tokens: int, output_tokens: int) -> float:
        """
        Estimate cost before making an API call. Does not touch the ledger.

        Raises:
            BillingError: If token counts are negative
        """
        self._check_tokens(input_tokens, output_tokens)
        return model.calculate_cost(input_tokens, output_tokens)

    def record(
        self,
        provider_id: str,
        model_id: str,
        input_tokens: int,
        output_tokens: int,
        model: ModelDescriptor | None,
    ) -> float:
        """
        Record usage of a completed request.

        Args:
            provider_id: Provider that served the request
            model_id: Model that served the request
            input_tokens: Prompt tokens
            output_tokens: Completion tokens
            model: Descriptor carrying pricing; None counts as free

        Returns:
            Cost added to the ledger in USD

        Raises:
            BillingError: If token counts are negative
        """
        self._check_tokens(input_tokens, output_tokens)
        cost = model.calculate_cost(input_tokens, output_tokens) if model else 0.0

        with self._lock:
            self._total_cost += cost
            self._cost_by_provider[provider_id] = self._cost_by_provider.get(provider_id, 0.0) + cost
            self._cost_by_model[model_id] = self._cost_by_model.get(model_id, 0.0) + cost
            self._total_input_tokens += input_tokens
            self._total_output_tokens += output_tokens
            self._records += 1
        return cost

    def record_usage(
        self,
        provider_id: str,
        model_id: str,
        usage: TokenUsage,
        model: ModelDescriptor | None,
    ) -> float:
        """Record a TokenUsage object."""
        return self.record(
            provider_id=provider_id,
            model_id=model_id,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            model=model,
        )

    def record_saved(self, model: ModelDescriptor | None, usage: TokenUsage) -> float:
        """
        Record the cost a cache hit avoided.

        Returns:
            The avoided cost in USD
        """
        self._check_tokens(usage.input_tokens, usage.output_tokens)
        saved = model.calculate_cost(usage.input_tokens, usage.output_tokens) if model else 0.0
        with self._lock:
            self._saved_cost += saved
        return saved

    @property
    def total_cost(self) -> float:
        return self._total_cost

    def stats(self) -> CostStats:
        with self._lock:
            return CostStats(
                total_cost=self._total_cost,
                cost_by_provider=dict(self._cost_by_provider),
                cost_by_model=dict(self._cost_by_model),
                saved_cost=self._saved_cost,
                total_input_tokens=self._total_input_tokens,
                total_output_tokens=self._total_output_tokens,
                records=self._records,
            )

    def reset(self) -> None:
        """Zero the ledger."""
        with self._lock:
            self._reset_state()
