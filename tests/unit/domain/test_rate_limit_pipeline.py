import pytest

from airavat.domain.rate_limiting import EndpointMatcher, RateLimitPipeline, RateLimitRule


def build_pipeline(store, clock, **overrides):
    options = dict(
        global_rule=RateLimitRule("global", points=100, window_seconds=1),
        burst_rule=RateLimitRule("burst", points=10, window_seconds=1),
        endpoint_rules={
            "/api/v1/auth/login": RateLimitRule("login", points=5, window_seconds=60, block_duration_seconds=300),
            "/api/v1/products/:id": RateLimitRule("product", points=3, window_seconds=60),
            "/api/v1/files/*": RateLimitRule("files", points=2, window_seconds=60),
        },
        tier_rules={
            "anonymous": RateLimitRule("anonymous", points=30, window_seconds=60),
            "free": RateLimitRule("free", points=8, window_seconds=60),
            "enterprise": RateLimitRule("enterprise", points=1000, window_seconds=60),
        },
        clock=clock,
        default_tier="free",
    )
    options.update(overrides)
    return RateLimitPipeline.from_rules(store, **options)


async def check(pipeline, path="/api/v1/orders", tier="free", client_ip="10.0.0.1", identity="ip:10.0.0.1"):
    return await pipeline.check(client_ip=client_ip, identity=identity, path=path, tier=tier)


@pytest.mark.asyncio
async def test_all_layers_evaluated_in_order(memory_store, clock):
    pipeline = build_pipeline(memory_store, clock)

    verdict = await check(pipeline, path="/api/v1/auth/login")

    assert verdict.allowed
    assert [d.scope for d in verdict.decisions] == [
        "global",
        "burst",
        "endpoint:/api/v1/auth/login",
        "tier:free",
    ]
    assert verdict.headers["X-RateLimit-Limit"] == "8"


@pytest.mark.asyncio
async def test_first_denying_layer_stops_evaluation(memory_store, clock):
    pipeline = build_pipeline(memory_store, clock, global_rule=RateLimitRule("global", points=1, window_seconds=1))

    await check(pipeline)
    verdict = await check(pipeline)

    assert not verdict.allowed
    assert verdict.label == "global"
    assert [d.scope for d in verdict.decisions] == ["global"]
    assert verdict.denied_by.scope == "global"


@pytest.mark.asyncio
async def test_global_layer_is_keyed_by_ip(memory_store, clock):
    pipeline = build_pipeline(memory_store, clock, global_rule=RateLimitRule("global", points=2, window_seconds=1))

    await check(pipeline, identity="user:1")
    await check(pipeline, identity="user:2")
    verdict = await check(pipeline, identity="user:3")

    assert verdict.label == "global"


@pytest.mark.asyncio
async def test_burst_layer_denies_before_endpoint(memory_store, clock):
    pipeline = build_pipeline(memory_store, clock, burst_rule=RateLimitRule("burst", points=2, window_seconds=1))

    for _ in range(2):
        assert (await check(pipeline, path="/api/v1/auth/login")).allowed
    verdict = await check(pipeline, path="/api/v1/auth/login")

    assert verdict.label == "burst"

    clock.advance(1)
    assert (await check(pipeline, path="/api/v1/auth/login")).allowed


@pytest.mark.asyncio
async def test_endpoint_denial_is_labelled_endpoint(memory_store, clock):
    pipeline = build_pipeline(memory_store, clock)

    for _ in range(5):
        await check(pipeline, path="/api/v1/auth/login", tier="enterprise")
        clock.advance(1)
    verdict = await check(pipeline, path="/api/v1/auth/login", tier="enterprise")

    assert verdict.label == "endpoint"
    assert verdict.denied_by.retry_after == 300
    assert verdict.headers["X-RateLimit-Remaining"] == "0"


@pytest.mark.asyncio
async def test_tier_denial_is_labelled_with_tier_name(memory_store, clock):
    pipeline = build_pipeline(memory_store, clock)

    for _ in range(8):
        await check(pipeline)
        clock.advance(1)
    verdict = await check(pipeline)

    assert verdict.label == "free"
    assert verdict.denied_by.scope == "tier:free"


@pytest.mark.asyncio
async def test_unknown_tier_uses_default(memory_store, clock):
    pipeline = build_pipeline(memory_store, clock)

    verdict = await check(pipeline, tier="platinum")

    assert verdict.decisions[-1].scope == "tier:free"


@pytest.mark.asyncio
async def test_endpoint_patterns(memory_store, clock):
    pipeline = build_pipeline(memory_store, clock)

    assert pipeline.endpoint_limiter("/api/v1/products/42").rule.scope == "endpoint:/api/v1/products/:id"
    assert pipeline.endpoint_limiter("/api/v1/products/42/reviews") is None
    assert pipeline.endpoint_limiter("/api/v1/files").rule.scope == "endpoint:/api/v1/files/*"
    assert pipeline.endpoint_limiter("/api/v1/files/a/b.png").rule.scope == "endpoint:/api/v1/files/*"
    assert pipeline.endpoint_limiter("/api/v1/orders") is None


def test_exact_path_wins_over_pattern():
    matcher = EndpointMatcher({"/api/v1/products/:id": "pattern", "/api/v1/products/featured": "exact"})

    assert matcher.match("/api/v1/products/featured") == "exact"
    assert matcher.match("/api/v1/products/9") == "pattern"


def test_skip_lists(memory_store, clock):
    pipeline = build_pipeline(
        memory_store,
        clock,
        skip_paths=["/api/v1/health"],
        skip_ips=["10.1.1.1"],
        skip_user_ids=["7"],
    )

    assert pipeline.should_skip("/api/v1/health/", "10.0.0.1")
    assert pipeline.should_skip("/api/v1/orders", "10.1.1.1")
    assert pipeline.should_skip("/api/v1/orders", "10.0.0.1", user_id=7)
    assert not pipeline.should_skip("/api/v1/orders", "10.0.0.1", user_id=8)


def test_limiter_for_scope(memory_store, clock):
    pipeline = build_pipeline(memory_store, clock)

    assert pipeline.limiter_for_scope("burst") is pipeline.burst_limiter
    assert pipeline.limiter_for_scope("tier:enterprise") is pipeline.tier_limiters["enterprise"]
    assert pipeline.limiter_for_scope("endpoint:/api/v1/auth/login").rule.points == 5
    assert pipeline.limiter_for_scope("tier:unknown") is None


def test_default_tier_must_have_a_rule(memory_store, clock):
    with pytest.raises(ValueError):
        build_pipeline(memory_store, clock, default_tier="gold")


@pytest.mark.asyncio
async def test_disabled_layers_are_skipped(memory_store, clock):
    pipeline = build_pipeline(memory_store, clock, global_rule=None, burst_rule=None)

    verdict = await check(pipeline)

    assert [d.scope for d in verdict.decisions] == ["tier:free"]


@pytest.mark.asyncio
async def test_login_burst_from_one_client(memory_store, clock):
    """Six login requests within one second: five pass, the sixth is denied by the endpoint layer."""
    pipeline = RateLimitPipeline.from_rules(
        memory_store,
        global_rule=RateLimitRule("global", points=10000, window_seconds=1),
        burst_rule=RateLimitRule("burst", points=20, window_seconds=1),
        endpoint_rules={"/api/v1/auth/login": RateLimitRule("login", points=5, window_seconds=60)},
        tier_rules={"free": RateLimitRule("free", points=60, window_seconds=60)},
        clock=clock,
    )

    verdicts = [await check(pipeline, path="/api/v1/auth/login") for _ in range(6)]

    assert [v.allowed for v in verdicts] == [True] * 5 + [False]
    assert verdicts[-1].label == "endpoint"
    assert verdicts[-1].headers["X-RateLimit-Remaining"] == "0"
