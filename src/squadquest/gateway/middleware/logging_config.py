"""structlog 配置模块

SQUADQUEST_LOG_FORMAT=json 输出结构化 JSON，默认 dev 输出可读控制台格式。
房间码、令牌等敏感字段在渲染前统一打码。
Logfire APM 由 LOGFIRE_SEND_TO_LOGFIRE 控制，未开启时只有本地日志。
"""

import logging
import os

import structlog
from fastapi import FastAPI

# 日志中出现即打码的字段名
REDACTED_KEYS = frozenset({"secret_code", "secretCode", "authorization", "token", "auth_secret"})

# 请求日志由 LoggingMiddleware 负责，这些 logger 只保留告警
QUIET_LOGGERS = ("uvicorn.access", "aiosqlite")


def redact_secrets(
    logger: object, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """私密任务房间码与鉴权令牌不落日志"""
    for key in REDACTED_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def setup_logging() -> None:
    """初始化 structlog 与标准库 logging

    SQUADQUEST_LOG_LEVEL 控制根 logger 级别（默认 INFO）。
    """
    log_format = os.environ.get("SQUADQUEST_LOG_FORMAT", "dev")
    log_level = os.environ.get("SQUADQUEST_LOG_LEVEL", "INFO")

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # uvicorn / aiosqlite 的标准库日志走同一个渲染器
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=_renderer(log_format), foreign_pre_chain=pre_chain)
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logfire(app: FastAPI) -> None:
    """按需启用 Logfire APM（需要 LOGFIRE_TOKEN），失败时退回本地日志"""
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return

    try:
        import logfire

        logfire.configure(service_name="squadquest")
        logfire.instrument_fastapi(app, excluded_urls="/health,/ready")
    except Exception as e:
        structlog.get_logger().warning(
            "logfire_init_failed",
            error_type=type(e).__name__,
            error=str(e),
        )
