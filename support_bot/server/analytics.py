"""
Analytics Aggregator Module.

Keeps running totals across completed turns. Pure data, no I/O.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Optional


@dataclass(frozen=True)
class TurnMetrics:
    """Latency breakdown of one completed turn (milliseconds)."""
    stt_millis: float
    llm_millis: float
    tts_millis: float
    total_millis: float

    @classmethod
    def from_phases(cls, stt_millis: float, llm_millis: float, tts_millis: float) -> "TurnMetrics":
        return cls(
            stt_millis=stt_millis,
            llm_millis=llm_millis,
            tts_millis=tts_millis,
            total_millis=stt_millis + llm_millis + tts_millis,
        )

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class AggregateAnalytics:
    """Process-wide accumulator shown on the analytics dashboard."""
    total_queries: int = 0
    avg_response_time_millis: float = 0.0
    backend_call_count: int = 0
    last_turn_metrics: Optional[TurnMetrics] = None

    def to_dict(self) -> Dict:
        return {
            "total_queries": self.total_queries,
            "avg_response_time_millis": self.avg_response_time_millis,
            "backend_call_count": self.backend_call_count,
            "last_turn_metrics": self.last_turn_metrics.to_dict() if self.last_turn_metrics else None,
        }


class AnalyticsAggregator:
    """
    Folds per-turn metrics into the aggregate.

    Only one turn runs at a time, so fold() is never entered concurrently
    and needs no lock.
    """

    def __init__(self):
        self._state = AggregateAnalytics()

    @property
    def snapshot(self) -> AggregateAnalytics:
        """A copy of the current aggregate."""
        state = self._state
        return AggregateAnalytics(
            total_queries=state.total_queries,
            avg_response_time_millis=state.avg_response_time_millis,
            backend_call_count=state.backend_call_count,
            last_turn_metrics=state.last_turn_metrics,
        )

    def fold(
        self,
        queries: Optional[int] = None,
        total_millis: Optional[float] = None,
        backend_calls: Optional[int] = None,
        latency: Optional[TurnMetrics] = None,
    ) -> AggregateAnalytics:
        """
        Fold a partial update into the aggregate.

        The average is only recomputed when both total_millis and a nonzero
        query count are supplied, so it stays the arithmetic mean of every
        total seen so far.

        Args:
            queries: Number of completed turns to add
            total_millis: Total latency of those turns
            backend_calls: Number of turns that invoked a tool
            latency: Breakdown of the most recent turn

        Returns:
            Snapshot of the aggregate after folding
        """
        state = self._state
        old_count = state.total_queries
        new_count = old_count + (queries or 0)

        if total_millis is not None and queries:
            state.avg_response_time_millis = (
                state.avg_response_time_millis * old_count + total_millis
            ) / new_count

        state.total_queries = new_count
        state.backend_call_count += backend_calls or 0
        if latency is not None:
            state.last_turn_metrics = latency

        return self.snapshot

    def record_turn(self, metrics: TurnMetrics, tool_used: bool) -> AggregateAnalytics:
        """Fold one completed turn."""
        return self.fold(
            queries=1,
            total_millis=metrics.total_millis,
            backend_calls=1 if tool_used else 0,
            latency=metrics,
        )
