"""异常 -> HTTP 响应映射

统一错误体：{"error": {"code": ..., "message": ..., "details": [...]}}
存储层异常一律以 STORE_UNAVAILABLE (503) 返回，不暴露 SQLite 错误信息。
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from squadquest.core.errors import (
    CooldownActiveError,
    SquadQuestError,
    StoreError,
    ValidationFailedError,
)
from starlette.responses import JSONResponse

log = structlog.get_logger()

STATUS_BY_CODE: dict[str, int] = {
    "VALIDATION_FAILED": 400,
    "UNAUTHORIZED": 401,
    "INVALID_TOKEN": 403,
    "QUEST_NOT_FOUND": 404,
    "USER_NOT_FOUND": 404,
    "QUEST_FULL": 409,
    "QUEST_CLOSED": 409,
    "INVALID_CODE": 403,
    "LEVEL_TOO_LOW": 403,
    "NOT_MEMBER": 403,
    "NOT_HOST": 403,
    "HOST_CANNOT_LEAVE": 409,
    "INVALID_TRANSITION": 409,
    "PROOF_MISSING": 409,
    "COOLDOWN_ACTIVE": 429,
    "STORE_UNAVAILABLE": 503,
}

# 存储层异常对外的可重试等待时间（秒）
STORE_RETRY_AFTER_S = 1


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: list[dict] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body: dict = {"code": code, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body}, headers=headers)


async def squadquest_error_handler(request: Request, exc: SquadQuestError) -> JSONResponse:
    """领域异常处理"""
    if isinstance(exc, StoreError):
        await log.aerror(
            "store_error",
            error_type=type(exc).__name__,
            error=exc.message,
            recoverable=exc.recoverable,
        )
        return error_response(
            503,
            "STORE_UNAVAILABLE",
            "Service temporarily unavailable, please retry",
            headers={"Retry-After": str(STORE_RETRY_AFTER_S)},
        )

    status_code = STATUS_BY_CODE.get(exc.code, 500)
    headers = None
    if isinstance(exc, CooldownActiveError):
        headers = {"Retry-After": str(exc.retry_after_s)}

    details = exc.details if isinstance(exc, ValidationFailedError) else None
    await log.ainfo("request_rejected", code=exc.code, status_code=status_code)
    return error_response(status_code, exc.code, exc.message, details=details, headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """请求体校验失败 -> 400 + 字段级明细"""
    details = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    await log.ainfo("request_rejected", code="VALIDATION_FAILED", status_code=400, fields=len(details))
    return error_response(400, "VALIDATION_FAILED", "Request validation failed", details=details)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SquadQuestError, squadquest_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
