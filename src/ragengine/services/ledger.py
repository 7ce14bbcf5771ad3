"""Cost ledger sinks receiving per-generation token and cost events."""

from __future__ import annotations

import threading
from typing import List, Protocol

from ragengine.metrics.observability import get_logger
from ragengine.models import CostEvent


class CostLedger(Protocol):
    """External accounting sink; the engine keeps no durable cost storage."""

    def record(self, event: CostEvent) -> None:
        """Persist or forward a cost event."""


class InMemoryCostLedger:
    """Keeps events in memory, mostly for tests and local runs."""

    def __init__(self) -> None:
        self._events: List[CostEvent] = []
        self._lock = threading.Lock()

    def record(self, event: CostEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[CostEvent]:
        with self._lock:
            return list(self._events)

    def total_cost(self) -> float:
        with self._lock:
            return round(sum(event.cost for event in self._events), 6)


class LoggingCostLedger:
    """Emits each event as a structured log line for an external collector."""

    _logger = get_logger("ledger")

    def record(self, event: CostEvent) -> None:
        self._logger.info(
            "cost.recorded",
            provider_id=event.provider_id,
            input_tokens=event.input_tokens,
            output_tokens=event.output_tokens,
            cost=event.cost,
            created_at=event.created_at.isoformat(),
        )
