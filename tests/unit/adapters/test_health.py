from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from airavat.core.config.settings import settings


def test_health_check_without_redis(client):
    """The in-memory store is healthy and Redis is reported as disabled."""
    response = client.get("/api/v1/health/")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["env"] == settings.APP_ENV
    assert body["services"]["redis"] == {"status": "disabled"}
    assert body["services"]["rate_limit_store"]["backend"] == "memory"
    assert body["open_circuits"] == []


def test_health_check_reports_open_circuits(client, app):
    app.state.circuit_breakers.get("payment-gateway").trip()

    body = client.get("/api/v1/health/").json()

    assert body["status"] == "degraded"
    assert body["open_circuits"] == ["payment-gateway"]


def test_health_check_reports_unreachable_redis(client, app):
    redis_client = MagicMock()
    redis_client.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
    app.state.redis = redis_client

    body = client.get("/api/v1/health/").json()

    assert body["status"] == "degraded"
    assert body["services"]["redis"]["status"] == "unhealthy"


def test_health_check_is_not_rate_limited(client):
    response = client.get("/api/v1/health/")

    assert "X-RateLimit-Limit" not in response.headers


def test_metrics_snapshot(client):
    client.get("/api/v1/metrics/")

    body = client.get("/api/v1/metrics/").json()

    assert "timestamp" in body
    assert set(body["metrics"]) == {"rate_limiting", "circuit_breakers", "retries", "uptime"}
    assert body["metrics"]["rate_limiting"]["tier:anonymous"]["allowed"] >= 1
