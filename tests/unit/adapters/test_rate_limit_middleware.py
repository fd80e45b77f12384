from types import SimpleNamespace

import pytest
from fastapi import Depends, Request
from fastapi.testclient import TestClient

from airavat.adapters.http.rate_limit import DEFAULT_METHOD_COSTS, rate_limit, request_identity, resolve_tier
from airavat.domain.rate_limiting import RateLimitRule

RFQ_RULE = RateLimitRule("rfq:create", points=3, window_seconds=60)


@pytest.fixture
def authenticated_client(app):
    """Client whose requests carry the user described by the X-Test-User header (id:role:tier)."""

    @app.middleware("http")
    async def fake_authentication(request: Request, call_next):
        header = request.headers.get("X-Test-User")
        if header:
            user_id, role, tier = header.split(":")
            request.state.user = SimpleNamespace(id=user_id, role=role, tier=tier or None)
        return await call_next(request)

    @app.get("/api/v1/orders")
    async def list_orders():
        return {"orders": []}

    @app.api_route("/api/v1/rfq", methods=["GET", "POST"], dependencies=[Depends(rate_limit(RFQ_RULE, DEFAULT_METHOD_COSTS))])
    async def rfq():
        return {"rfq": "ok"}

    with TestClient(app) as test_client:
        yield test_client


def test_allowed_response_carries_tier_headers(authenticated_client):
    response = authenticated_client.get("/api/v1/orders")

    assert response.status_code == 200
    assert response.headers["X-RateLimit-Limit"] == "30"
    assert response.headers["X-RateLimit-Remaining"] == "29"
    assert "X-RateLimit-Reset" in response.headers


def test_authenticated_user_gets_subscription_tier(authenticated_client):
    response = authenticated_client.get("/api/v1/orders", headers={"X-Test-User": "42:USER:professional"})

    assert response.headers["X-RateLimit-Limit"] == "300"


def test_user_without_known_tier_gets_default_tier(authenticated_client):
    response = authenticated_client.get("/api/v1/orders", headers={"X-Test-User": "42:USER:"})

    assert response.headers["X-RateLimit-Limit"] == "60"


def test_admin_role_gets_admin_tier(authenticated_client):
    response = authenticated_client.get("/api/v1/orders", headers={"X-Test-User": "1:ADMIN:free"})

    assert response.headers["X-RateLimit-Limit"] == "5000"


def test_tier_limit_is_enforced_per_user(authenticated_client, app):
    app.state.rate_limit_pipeline.tier_limiters["free"].rule = RateLimitRule("tier:free", points=2, window_seconds=60)
    headers = {"X-Test-User": "42:USER:free"}

    statuses = [authenticated_client.get("/api/v1/orders", headers=headers).status_code for _ in range(3)]

    assert statuses == [200, 200, 429]
    response = authenticated_client.get("/api/v1/orders", headers=headers)
    assert response.json()["tier"] == "free"
    assert authenticated_client.get("/api/v1/orders", headers={"X-Test-User": "43:USER:free"}).status_code == 200


def test_skipped_paths_bypass_limits(authenticated_client, app):
    app.state.rate_limit_pipeline.skip_paths = ("/api/v1/orders",)

    response = authenticated_client.get("/api/v1/orders")

    assert response.status_code == 200
    assert "X-RateLimit-Limit" not in response.headers


def test_route_dependency_weights_methods(authenticated_client):
    """GET costs 1 point and POST 2 of the 3 available; the next POST is denied."""
    read = authenticated_client.get("/api/v1/rfq")
    assert read.status_code == 200
    assert read.headers["X-RateLimit-Cost"] == "1"
    assert read.headers["X-RateLimit-Limit"] == "3"
    assert read.headers["X-RateLimit-Remaining"] == "2"

    write = authenticated_client.post("/api/v1/rfq")
    assert write.status_code == 200
    assert write.headers["X-RateLimit-Cost"] == "2"
    assert write.headers["X-RateLimit-Remaining"] == "0"

    denied = authenticated_client.post("/api/v1/rfq")
    assert denied.status_code == 429
    assert denied.json()["code"] == "RATE_LIMIT_EXCEEDED"
    assert denied.json()["tier"] == "rfq:create"
    assert denied.headers["X-RateLimit-Limit"] == "3"


def test_request_identity_and_tier_helpers():
    pipeline = SimpleNamespace(tier_limiters={"free": None, "basic": None}, default_tier="free")
    anonymous = SimpleNamespace(
        client=SimpleNamespace(host="203.0.113.9"), state=SimpleNamespace()
    )
    member = SimpleNamespace(
        client=SimpleNamespace(host="203.0.113.9"), state=SimpleNamespace(user=SimpleNamespace(id=7, role="USER", tier="basic"))
    )

    assert request_identity(anonymous) == "ip:203.0.113.9"
    assert request_identity(member) == "user:7"
    assert resolve_tier(None, pipeline) == "anonymous"
    assert resolve_tier(member.state.user, pipeline) == "basic"
    assert resolve_tier(SimpleNamespace(id=1, role="super_admin"), pipeline) == "admin"
