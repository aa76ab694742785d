"""中间件测试

测试内容：
1. 每个响应带 X-Request-ID（ULID，26 位）
2. 滑动窗口限流：超额返回 429 + Retry-After，窗口过后恢复
3. join / leave 共享额度；被拒请求不计入额度
4. create_app 按配置挂载限流中间件
5. 日志上下文：调用方 UID 解析、敏感字段打码
"""

import os

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from squadquest.gateway.middleware.logging_config import redact_secrets
from squadquest.gateway.middleware.logging_mw import LoggingMiddleware, _caller_uid
from squadquest.gateway.middleware.rate_limit_mw import (
    DEFAULT_RULES,
    RateLimitMiddleware,
    RateLimitRule,
    SlidingWindowLimiter,
)
from starlette.requests import Request


class FakeMonotonic:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest_asyncio.fixture
async def limited():
    """只挂载限流中间件的最小 app"""
    clock = FakeMonotonic()
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, limiter=SlidingWindowLimiter(clock=clock))

    @app.post("/api/bounty/claim")
    async def claim():
        return {"ok": True}

    @app.post("/api/quest/join")
    async def join():
        return {"ok": True}

    @app.post("/api/quest/leave")
    async def leave():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac, clock


class TestRequestId:
    async def test_request_id_in_response_header(self, client: AsyncClient):
        """每个请求响应包含 X-Request-ID"""
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert len(resp.headers["x-request-id"]) == 26

    async def test_request_id_on_error_response(self, client: AsyncClient):
        resp = await client.post("/api/bounty/claim")
        assert resp.status_code == 401
        assert len(resp.headers["x-request-id"]) == 26

    async def test_request_ids_unique(self, client: AsyncClient):
        first = await client.get("/health")
        second = await client.get("/health")
        assert first.headers["x-request-id"] != second.headers["x-request-id"]


class TestLogContext:
    def test_caller_uid_from_bearer(self):
        request = Request({"type": "http", "headers": [(b"authorization", b"Bearer u.1.abc123")]})
        assert _caller_uid(request) == "u.1"

    def test_caller_uid_absent(self):
        assert _caller_uid(Request({"type": "http", "headers": []})) is None
        basic = Request({"type": "http", "headers": [(b"authorization", b"Basic dTpw")]})
        assert _caller_uid(basic) is None

    def test_secret_fields_redacted(self):
        event = redact_secrets(None, "info", {"event": "quest_created", "secret_code": "AB12CD", "token": ""})
        assert event["secret_code"] == "***"
        assert event["token"] == ""
        assert event["event"] == "quest_created"


class TestSlidingWindowLimiter:
    def test_window_expiry(self):
        clock = FakeMonotonic()
        limiter = SlidingWindowLimiter(clock=clock)
        for _ in range(3):
            assert limiter.retry_after("k", limit=3, window_s=60) == 0
            limiter.record("k")

        clock.now += 20
        assert limiter.retry_after("k", limit=3, window_s=60) == 40

        clock.now += 40
        assert limiter.retry_after("k", limit=3, window_s=60) == 0

    def test_expired_keys_are_dropped(self):
        clock = FakeMonotonic()
        limiter = SlidingWindowLimiter(clock=clock)
        for ip in ["10.0.0.1", "10.0.0.2"]:
            limiter.record(f"global:{ip}")
        assert limiter.tracked_keys == 2

        clock.now += 61
        assert limiter.retry_after("global:10.0.0.1", limit=3, window_s=60) == 0
        assert limiter.tracked_keys == 1

        assert limiter.retry_after("global:10.0.0.9", limit=3, window_s=60) == 0
        assert limiter.tracked_keys == 1

    def test_rule_matching(self):
        membership = next(rule for rule in DEFAULT_RULES if rule.name == "membership")
        assert membership.matches("/api/quest/join")
        assert membership.matches("/api/quest/leave")
        assert not membership.matches("/api/quest/finalize")


class TestRateLimitMiddleware:
    async def test_bounty_limit(self, limited):
        client, clock = limited
        for _ in range(5):
            assert (await client.post("/api/bounty/claim")).status_code == 200

        resp = await client.post("/api/bounty/claim")
        assert resp.status_code == 429
        assert resp.headers["retry-after"] == "86400"
        assert resp.json()["error"]["code"] == "RATE_LIMITED"

        clock.now += 86400
        assert (await client.post("/api/bounty/claim")).status_code == 200

    async def test_join_and_leave_share_quota(self, limited):
        client, _ = limited
        for i in range(30):
            path = "/api/quest/join" if i % 2 == 0 else "/api/quest/leave"
            assert (await client.post(path)).status_code == 200

        assert (await client.post("/api/quest/join")).status_code == 429
        assert (await client.post("/api/quest/leave")).status_code == 429

    async def test_non_api_paths_unlimited(self, limited):
        client, _ = limited
        for _ in range(120):
            assert (await client.get("/health")).status_code == 200

    async def test_rejected_requests_not_counted(self):
        clock = FakeMonotonic()
        rules = [
            RateLimitRule(name="global", path_prefixes=("/api/",), limit=3, window_s=100),
            RateLimitRule(name="tight", path_prefixes=("/api/tight",), limit=1, window_s=100),
        ]
        app = FastAPI()
        app.add_middleware(RateLimitMiddleware, rules=rules, limiter=SlidingWindowLimiter(clock=clock))

        @app.get("/api/tight")
        async def tight():
            return {}

        @app.get("/api/loose")
        async def loose():
            return {}

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            assert (await ac.get("/api/tight")).status_code == 200
            for _ in range(5):
                assert (await ac.get("/api/tight")).status_code == 429
            # tight 被拒的请求没有消耗 global 额度
            assert (await ac.get("/api/loose")).status_code == 200
            assert (await ac.get("/api/loose")).status_code == 200
            assert (await ac.get("/api/loose")).status_code == 429


class TestMiddlewareWiring:
    def test_rate_limit_toggle(self, tmp_path):
        from squadquest.gateway.main import create_app

        os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"
        try:
            os.environ["SQUADQUEST_RATE_LIMIT_ENABLED"] = "true"
            enabled = {m.cls for m in create_app().user_middleware}
            os.environ["SQUADQUEST_RATE_LIMIT_ENABLED"] = "false"
            disabled = {m.cls for m in create_app().user_middleware}
        finally:
            os.environ.pop("SQUADQUEST_RATE_LIMIT_ENABLED", None)
            os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)

        assert enabled == {RateLimitMiddleware, LoggingMiddleware}
        assert disabled == {LoggingMiddleware}
