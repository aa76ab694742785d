"""RateLimitMiddleware -- 按客户端 IP 的滑动窗口限流

规则（同一请求命中的所有规则都必须有余量，否则返回 429 + Retry-After）：
- global:     /api/*                          100 次 / 15 分钟
- vibe_check: /api/quest/vibe-check           20 次 / 小时
- membership: /api/quest/join, /api/quest/leave（共享额度）30 次 / 小时
- bounty:     /api/bounty/claim               5 次 / 天
"""

import math
import time
from collections import deque
from collections.abc import Callable

import structlog
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

log = structlog.get_logger()


class RateLimitRule(BaseModel):
    """限流规则"""

    name: str = Field(description="规则名（同名规则共享额度）")
    path_prefixes: tuple[str, ...] = Field(description="匹配的路径前缀")
    limit: int = Field(ge=1, description="窗口内最大请求数")
    window_s: int = Field(ge=1, description="窗口长度（秒）")

    def matches(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.path_prefixes)


DEFAULT_RULES: list[RateLimitRule] = [
    RateLimitRule(name="global", path_prefixes=("/api/",), limit=100, window_s=15 * 60),
    RateLimitRule(name="vibe_check", path_prefixes=("/api/quest/vibe-check",), limit=20, window_s=3600),
    RateLimitRule(
        name="membership",
        path_prefixes=("/api/quest/join", "/api/quest/leave"),
        limit=30,
        window_s=3600,
    ),
    RateLimitRule(name="bounty", path_prefixes=("/api/bounty/claim",), limit=5, window_s=86400),
]


class SlidingWindowLimiter:
    """内存滑动窗口计数器（单进程）"""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._buckets: dict[str, deque[float]] = {}

    def retry_after(self, key: str, limit: int, window_s: int) -> int:
        """返回需要等待的秒数；0 表示仍有余量"""
        now = self._clock()
        events = self._buckets.get(key)
        if events is None:
            return 0
        while events and events[0] <= now - window_s:
            events.popleft()
        if not events:
            # 窗口内无记录的 key 不再保留
            del self._buckets[key]
            return 0
        if len(events) < limit:
            return 0
        return max(1, math.ceil(window_s - (now - events[0])))

    def record(self, key: str) -> None:
        self._buckets.setdefault(key, deque()).append(self._clock())

    @property
    def tracked_keys(self) -> int:
        return len(self._buckets)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """按 IP 的限流中间件"""

    def __init__(
        self,
        app: ASGIApp,
        rules: list[RateLimitRule] | None = None,
        limiter: SlidingWindowLimiter | None = None,
    ) -> None:
        super().__init__(app)
        self._rules = rules if rules is not None else DEFAULT_RULES
        self._limiter = limiter if limiter is not None else SlidingWindowLimiter()

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        client_ip = request.client.host if request.client else "unknown"
        matched = [rule for rule in self._rules if rule.matches(path)]

        for rule in matched:
            wait_s = self._limiter.retry_after(f"{rule.name}:{client_ip}", rule.limit, rule.window_s)
            if wait_s:
                await log.awarning(
                    "rate_limited",
                    rule=rule.name,
                    client_ip=client_ip,
                    retry_after_s=wait_s,
                )
                return JSONResponse(
                    status_code=429,
                    content={
                        "error": {
                            "code": "RATE_LIMITED",
                            "message": "Too many requests, please try again later.",
                        }
                    },
                    headers={"Retry-After": str(wait_s)},
                )

        for rule in matched:
            self._limiter.record(f"{rule.name}:{client_ip}")

        return await call_next(request)
