from airavat.domain.resilience import CircuitState


def test_list_circuit_breakers(client):
    response = client.get("/api/v1/admin/circuit-breakers/")

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 8
    assert body["circuit_breakers"]["payment-gateway"]["failure_threshold"] == 3
    assert body["open_circuits"] == []


def test_get_circuit_breaker(client):
    assert client.get("/api/v1/admin/circuit-breakers/search-index").json()["state"] == "CLOSED"
    assert client.get("/api/v1/admin/circuit-breakers/unknown").status_code == 404


def test_reset_one_circuit_breaker(client, app):
    breaker = app.state.circuit_breakers.get("gst-service")
    breaker.trip()

    response = client.post("/api/v1/admin/circuit-breakers/gst-service/reset")

    assert response.status_code == 200
    assert response.json()["reset"] == ["gst-service"]
    assert breaker.state is CircuitState.CLOSED
    assert client.post("/api/v1/admin/circuit-breakers/unknown/reset").status_code == 404


def test_reset_all_circuit_breakers(client, app):
    registry = app.state.circuit_breakers
    registry.get("email-provider").trip()
    registry.get("sms-provider").trip()

    response = client.post("/api/v1/admin/circuit-breakers/reset")

    assert response.status_code == 200
    assert registry.open_circuits() == []


def test_reset_rate_limit_counter(client, app):
    """Clearing the login counter unlocks a blocked client."""

    @app.post("/api/v1/auth/login")
    async def login():
        return {"token": "t"}

    for _ in range(6):
        client.post("/api/v1/auth/login")
    assert client.post("/api/v1/auth/login").status_code == 429

    response = client.delete("/api/v1/admin/rate-limits/endpoint:/api/v1/auth/login/ip:testclient")

    assert response.status_code == 200
    assert response.json()["deleted"] is True
    assert response.json()["scope"] == "endpoint:/api/v1/auth/login"
    assert client.post("/api/v1/auth/login").status_code == 200


def test_reset_unknown_scope(client):
    response = client.delete("/api/v1/admin/rate-limits/endpoint:/nope/ip:testclient")

    assert response.status_code == 404
