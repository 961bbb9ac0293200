import pytest

from gateflow.providers.base import ProviderConfigurationError, ProviderRequestError
from gateflow.retry import RetryPolicy, is_transient_error


@pytest.mark.parametrize(
    "message",
    [
        "Error code: 429 - rate_limit_error",
        "Request timed out",
        "Claude request failed: 529 overloaded_error",
        "upstream returned 503 Service Unavailable",
        "Claude request failed: 500 Internal server error",
        "OpenAI request failed: 520 unknown upstream error",
    ],
)
def test_transient_messages(message: str) -> None:
    assert is_transient_error(ProviderRequestError(message)) is True
    assert is_transient_error(message) is True


def test_server_status_code_is_transient() -> None:
    assert is_transient_error(ProviderRequestError("boom", status_code=500)) is True
    assert is_transient_error(ProviderRequestError("boom", status_code=599)) is True
    assert is_transient_error(ProviderRequestError("boom", status_code=404)) is False


def test_non_transient_errors() -> None:
    assert is_transient_error(ValueError("Invalid tool input")) is False
    assert is_transient_error(ProviderConfigurationError("timeout setting missing")) is False
    assert is_transient_error("400 invalid request body") is False
    assert is_transient_error("max_tokens must be below 5000") is False


def test_retry_state_budget() -> None:
    state = RetryPolicy(max_retries=2, backoff_seconds=3.0).new_state()

    assert state.max_attempts == 3
    assert state.backoff == 3.0
    state.advance()
    state.advance()
    assert state.retries_used == 2
    assert state.can_retry() is False
    with pytest.raises(RuntimeError):
        state.advance()


def test_backoff_override() -> None:
    assert RetryPolicy().new_state(5.0).backoff == 5.0
    assert RetryPolicy(max_retries=0).new_state().can_retry() is False
