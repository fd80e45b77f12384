from airavat.core.metrics import MetricsCollector


def test_rate_limit_decisions_are_counted_per_scope():
    collector = MetricsCollector()

    collector.record_rate_limit_decision("burst", True)
    collector.record_rate_limit_decision("burst", False)
    collector.record_rate_limit_decision("burst", True, fallback_used=True)

    assert collector.get_metrics()["rate_limiting"]["burst"] == {"allowed": 2, "denied": 1, "fallback": 1}


def test_circuit_events():
    collector = MetricsCollector()

    collector.record_circuit_transition("sms-provider", "CLOSED", "OPEN")
    collector.record_circuit_rejection("sms-provider")
    collector.record_circuit_rejection("sms-provider")

    circuit = collector.get_metrics()["circuit_breakers"]["sms-provider"]
    assert circuit == {"state": "OPEN", "transitions": {"CLOSED->OPEN": 1}, "rejections": 2}


def test_reset_metrics():
    collector = MetricsCollector()
    collector.record_retry("fetch_rates", "scheduled")

    collector.reset_metrics()

    snapshot = collector.get_metrics()
    assert snapshot["retries"] == {}
    assert snapshot["uptime"] >= 0
