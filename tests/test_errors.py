from __future__ import annotations

from ragengine.errors import DeadlineExceeded, ErrorKind, GenerationUnavailable, RetrievalFailed


def test_to_structured_carries_provider_and_attempts():
    error = GenerationUnavailable("all providers down", provider_id="backup", attempt_count=4).to_structured()

    assert error.kind is ErrorKind.GENERATION_UNAVAILABLE
    assert error.provider_id == "backup"
    assert error.attempt_count == 4
    assert error.to_dict() == {
        "kind": ErrorKind.GENERATION_UNAVAILABLE.value,
        "message": "all providers down",
        "provider_id": "backup",
        "attempt_count": 4,
        "retryable": True,
    }


def test_only_deadline_and_generation_failures_are_retryable():
    assert DeadlineExceeded("late").to_structured().retryable is True
    assert RetrievalFailed("no context").to_structured().retryable is False
