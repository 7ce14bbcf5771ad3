from __future__ import annotations

import asyncio

import pytest
import structlog

from ragengine.metrics import PipelineMetrics, bind_correlation_id, current_correlation_id


@pytest.mark.asyncio
async def test_correlation_id_is_scoped_to_the_task():
    structlog.contextvars.clear_contextvars()

    async def handle(request_id: str) -> str | None:
        bind_correlation_id(request_id)
        await asyncio.sleep(0)
        return current_correlation_id()

    results = await asyncio.gather(handle("req-1"), handle("req-2"))

    assert results == ["req-1", "req-2"]
    assert current_correlation_id() is None


def test_request_outcome_counter_increments():
    counter = PipelineMetrics.request_outcomes.labels(state="Failed", kind="Cancelled")
    before = counter._value.get()

    PipelineMetrics.observe_request("Failed", "Cancelled")

    assert counter._value.get() == before + 1


def test_provider_cost_is_accumulated_per_provider():
    cost = PipelineMetrics.provider_cost.labels(provider_id="metrics-test")
    tokens = PipelineMetrics.provider_tokens.labels(provider_id="metrics-test", direction="input")
    cost_before, tokens_before = cost._value.get(), tokens._value.get()

    PipelineMetrics.observe_cost("metrics-test", 100, 20, 0.25)

    assert cost._value.get() == pytest.approx(cost_before + 0.25)
    assert tokens._value.get() == tokens_before + 100
