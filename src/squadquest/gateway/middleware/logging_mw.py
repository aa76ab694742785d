"""LoggingMiddleware -- 请求级日志

每个请求生成 ULID 作为 request_id，连同调用方 UID 绑定到 structlog contextvars，
响应头 X-Request-ID 回传。探活请求只记 debug。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

PROBE_PATHS = frozenset({"/health", "/ready"})


def _caller_uid(request: Request) -> str | None:
    """令牌中的 UID 段，仅用于日志关联，不做校验"""
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or "." not in token:
        return None
    return token.rsplit(".", 1)[0] or None


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = str(ULID())
        path = request.url.path
        started = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
            client_ip=request.client.host if request.client else None,
            user_id=_caller_uid(request),
        )
        log = structlog.get_logger()

        try:
            response = await call_next(request)
        except Exception as e:
            await log.aexception("request_failed", error_type=type(e).__name__)
            raise

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        if path in PROBE_PATHS:
            await log.adebug("probe_completed", status_code=response.status_code)
        else:
            await log.ainfo("request_completed", status_code=response.status_code, duration_ms=elapsed_ms)

        response.headers["X-Request-ID"] = request_id
        return response
