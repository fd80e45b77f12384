import pytest


@pytest.fixture
def login_client(app, client):
    @app.post("/api/v1/auth/login")
    async def login():
        return {"token": "t"}

    return client


def test_sixth_login_attempt_is_rejected(login_client):
    """Five login attempts a minute are allowed; the sixth gets a 429 with headers and the JSON body."""
    responses = [login_client.post("/api/v1/auth/login") for _ in range(6)]

    assert [r.status_code for r in responses] == [200] * 5 + [429]

    rejected = responses[-1]
    body = rejected.json()
    assert body["success"] is False
    assert body["error"] == "Too many requests"
    assert body["code"] == "RATE_LIMIT_EXCEEDED"
    assert body["tier"] == "endpoint"
    assert body["retryAfter"] == 300
    assert rejected.headers["X-RateLimit-Limit"] == "5"
    assert rejected.headers["X-RateLimit-Remaining"] == "0"
    assert rejected.headers["Retry-After"] == "300"


def test_block_outlasts_the_window(login_client, clock):
    for _ in range(6):
        login_client.post("/api/v1/auth/login")

    clock.advance(120)
    assert login_client.post("/api/v1/auth/login").status_code == 429

    clock.advance(181)
    assert login_client.post("/api/v1/auth/login").status_code == 200


def test_other_endpoints_stay_available_during_login_block(login_client):
    for _ in range(6):
        login_client.post("/api/v1/auth/login")

    assert login_client.get("/api/v1/metrics/").status_code == 200
