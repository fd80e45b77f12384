"""
Metrics collection for the resilience layer.

Counters are kept in process memory and exposed through
``GET /api/v1/metrics``. Components receive a collector through their
constructor; ``metrics_collector`` is the process-wide instance wired by the
application lifespan.
"""
from datetime import datetime, timezone
from typing import Any, Dict


class MetricsCollector:
    """
    Collects and manages resilience metrics.

    Tracked groups:
    - rate_limiting: allowed, denied and fallback decisions per scope
    - circuit_breakers: transitions and rejections per dependency
    - retries: scheduled, exhausted and timed-out retries per operation
    """

    def __init__(self):
        self._metrics: Dict[str, Dict[str, Any]] = {
            "rate_limiting": {},
            "circuit_breakers": {},
            "retries": {},
        }
        self._start_time = datetime.now(timezone.utc)

    def record_rate_limit_decision(self, scope: str, allowed: bool, fallback_used: bool = False) -> None:
        """Record one rate limit decision for ``scope``."""
        counters = self._metrics["rate_limiting"].setdefault(
            scope, {"allowed": 0, "denied": 0, "fallback": 0}
        )
        counters["allowed" if allowed else "denied"] += 1
        if fallback_used:
            counters["fallback"] += 1

    def record_circuit_transition(self, name: str, from_state: str, to_state: str) -> None:
        """Record a circuit state change."""
        counters = self._circuit(name)
        key = f"{from_state}->{to_state}"
        counters["transitions"][key] = counters["transitions"].get(key, 0) + 1
        counters["state"] = to_state

    def record_circuit_rejection(self, name: str) -> None:
        self._circuit(name)["rejections"] += 1

    def record_retry(self, operation: str, outcome: str) -> None:
        """Record a retry event; ``outcome`` is scheduled, exhausted or timeout."""
        counters = self._metrics["retries"].setdefault(operation, {})
        counters[outcome] = counters.get(outcome, 0) + 1

    def _circuit(self, name: str) -> Dict[str, Any]:
        return self._metrics["circuit_breakers"].setdefault(
            name, {"state": "CLOSED", "transitions": {}, "rejections": 0}
        )

    def get_metrics(self) -> Dict[str, Any]:
        """Get all collected metrics."""
        return {
            **self._metrics,
            "uptime": (datetime.now(timezone.utc) - self._start_time).total_seconds(),
        }

    def reset_metrics(self) -> None:
        """Reset all metrics to initial state."""
        self._metrics = {
            "rate_limiting": {},
            "circuit_breakers": {},
            "retries": {},
        }
        self._start_time = datetime.now(timezone.utc)


# Global metrics collector instance
metrics_collector = MetricsCollector()
