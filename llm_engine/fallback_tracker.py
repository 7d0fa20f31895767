"""
Bookkeeping for fallback-chain switches made by the dispatcher.

Each time the dispatcher abandons a (provider, model) target and moves
to the next entry of the configured chain, one FallbackEvent is
recorded once the new target has either produced a response or failed.
"""

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime


DEFAULT_HISTORY = 100


@dataclass
class FallbackEvent:
    """A single switch from a failed target to the next one in the chain."""
    timestamp: datetime
    provider: str
    original_model: str
    fallback_provider: str
    fallback_model: str
    error_message: str
    duration_ms: float
    success: bool
    error_code: str | None = None
    request_id: str | None = None

    @property
    def target(self) -> str:
        return f"{self.fallback_provider}/{self.fallback_model}"


@dataclass
class FallbackStats:
    """Running totals over every recorded switch."""
    total_fallbacks: int = 0
    successful_fallbacks: int = 0
    failed_fallbacks: int = 0
    total_duration_ms: float = 0.0
    by_target: Counter = field(default_factory=Counter)
    by_error_code: Counter = field(default_factory=Counter)

    @property
    def average_duration_ms(self) -> float:
        if not self.total_fallbacks:
            return 0.0
        return self.total_duration_ms / self.total_fallbacks

    @property
    def success_rate(self) -> float:
        if not self.total_fallbacks:
            return 0.0
        return self.successful_fallbacks / self.total_fallbacks

    def count(self, event: FallbackEvent):
        self.total_fallbacks += 1
        self.total_duration_ms += event.duration_ms
        if event.success:
            self.successful_fallbacks += 1
        else:
            self.failed_fallbacks += 1
        self.by_target[event.target] += 1
        if event.error_code:
            self.by_error_code[event.error_code] += 1

    def get_summary(self) -> dict:
        return {
            "total_fallbacks": self.total_fallbacks,
            "successful_fallbacks": self.successful_fallbacks,
            "failed_fallbacks": self.failed_fallbacks,
            "success_rate": self.success_rate,
            "total_duration_ms": round(self.total_duration_ms, 2),
            "average_duration_ms": round(self.average_duration_ms, 2),
            "by_target": dict(self.by_target),
            "by_error_code": dict(self.by_error_code),
        }


class FallbackTracker:
    """Per-engine record of fallback switches with a bounded event history."""

    def __init__(self, history_size: int = DEFAULT_HISTORY):
        self._history_size = history_size
        self.stats = FallbackStats()
        self._events: deque[FallbackEvent] = deque(maxlen=history_size)

    def record_fallback(
        self,
        provider: str,
        original_model: str,
        fallback_provider: str,
        fallback_model: str,
        error_message: str,
        duration_ms: float,
        success: bool,
        error_code: str | None = None,
        request_id: str | None = None,
    ) -> FallbackEvent:
        """
        Record one switch.

        Args:
            provider: Provider of the target that was abandoned
            original_model: Model of the target that was abandoned
            fallback_provider: Provider switched to
            fallback_model: Model switched to
            error_message: Error that caused the switch
            duration_ms: Time spent on the new target
            success: Whether the new target produced a response
            error_code: ErrorCode value of the triggering error
            request_id: Request the switch happened in
        """
        event = FallbackEvent(
            timestamp=datetime.now(),
            provider=provider,
            original_model=original_model,
            fallback_provider=fallback_provider,
            fallback_model=fallback_model,
            error_message=error_message,
            duration_ms=duration_ms,
            success=success,
            error_code=error_code,
            request_id=request_id,
        )
        self._events.append(event)
        self.stats.count(event)
        return event

    def get_stats(self) -> FallbackStats:
        return self.stats

    def get_recent_events(self, limit: int = 10) -> list[FallbackEvent]:
        if limit <= 0:
            return []
        return list(self._events)[-limit:]

    def clear(self):
        self.stats = FallbackStats()
        self._events.clear()
