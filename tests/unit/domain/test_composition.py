from unittest.mock import AsyncMock

import pytest

from airavat.core.exceptions import CircuitBreakerError, DependencyTimeoutError, MaxRetriesExceededError
from airavat.domain.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    ResilientDependency,
    RetryPolicy,
    call_with_resilience,
)

POLICY = RetryPolicy(max_retries=2, initial_delay=0.5, jitter_enabled=False)


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        "shipping-shiprocket", CircuitBreakerConfig(failure_threshold=2, reset_timeout=120), clock=clock
    )


@pytest.mark.asyncio
async def test_exhausted_retries_count_as_one_breaker_failure(breaker):
    """Each wrapped call is one outcome for the breaker, however many attempts it made."""
    operation = AsyncMock(side_effect=ConnectionError("carrier down"))

    with pytest.raises(MaxRetriesExceededError):
        await call_with_resilience(breaker, operation, POLICY, sleep=AsyncMock())

    assert operation.await_count == 3
    assert breaker.consecutive_failures == 1
    assert breaker.is_closed


@pytest.mark.asyncio
async def test_open_circuit_skips_retries_entirely(breaker):
    operation = AsyncMock(side_effect=ConnectionError("carrier down"))
    sleep = AsyncMock()

    for _ in range(2):
        with pytest.raises(MaxRetriesExceededError):
            await call_with_resilience(breaker, operation, POLICY, sleep=sleep)
    assert breaker.is_open

    operation.reset_mock()
    with pytest.raises(CircuitBreakerError):
        await call_with_resilience(breaker, operation, POLICY, sleep=sleep)
    operation.assert_not_awaited()


@pytest.mark.asyncio
async def test_success_after_retries_is_one_success(breaker):
    operation = AsyncMock(side_effect=[ConnectionError("reset"), {"awb": "123"}])

    result = await call_with_resilience(breaker, operation, POLICY, sleep=AsyncMock())

    assert result == {"awb": "123"}
    assert breaker.successful_calls == 1
    assert breaker.failed_calls == 0
    assert [call.args[0] for call in operation.await_args_list] == [1, 2]


@pytest.mark.asyncio
async def test_breaker_timeout_bounds_the_whole_retry_loop(clock):
    breaker = CircuitBreaker("gst-service", CircuitBreakerConfig(timeout=0.05), clock=clock)
    operation = AsyncMock(side_effect=ConnectionError("reset"))

    with pytest.raises(DependencyTimeoutError):
        await call_with_resilience(breaker, operation, RetryPolicy(max_retries=10, initial_delay=1.0))

    assert breaker.consecutive_failures == 1


@pytest.mark.asyncio
async def test_fallback_is_returned_when_retries_are_exhausted(breaker):
    operation = AsyncMock(side_effect=ConnectionError("down"))

    result = await call_with_resilience(breaker, operation, POLICY, fallback="standard-rate", sleep=AsyncMock())

    assert result == "standard-rate"


@pytest.mark.asyncio
async def test_terminal_error_is_not_retried(breaker):
    policy = RetryPolicy(non_retryable_errors=(ValueError,))
    operation = AsyncMock(side_effect=ValueError("invalid pincode"))

    with pytest.raises(ValueError):
        await call_with_resilience(breaker, operation, policy, sleep=AsyncMock())

    assert operation.await_count == 1
    assert breaker.consecutive_failures == 1


@pytest.mark.asyncio
async def test_resilient_dependency_binds_breaker_and_policy(clock, metrics):
    registry = CircuitBreakerRegistry(
        presets={"payment-gateway": CircuitBreakerConfig(failure_threshold=1, reset_timeout=60)},
        clock=clock,
    )
    payments = ResilientDependency(registry, "payment-gateway", POLICY, metrics=metrics)
    operation = AsyncMock(side_effect=ConnectionError("timeout"))

    with pytest.raises(MaxRetriesExceededError):
        await payments.call(operation, sleep=AsyncMock())

    assert payments.breaker is registry.get("payment-gateway")
    assert payments.get_status()["state"] == "OPEN"
    assert metrics.get_metrics()["retries"]["payment-gateway"]["exhausted"] == 1

    assert await payments.call(operation, fallback=lambda: "queued") == "queued"
