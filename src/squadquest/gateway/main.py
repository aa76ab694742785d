"""FastAPI 应用主文件

app 创建 + lifespan 管理：文档存储初始化/关闭 + 每日归档任务启动/停止 + 路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from squadquest.core.archiver import QuestArchiver
from squadquest.core.config import (
    get_auth_secret,
    get_db_path,
    load_archiver_config,
    load_settlement_policy,
    rate_limit_enabled,
)
from squadquest.core.store import create_document_store

from .errors import register_error_handlers
from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.rate_limit_mw import RateLimitMiddleware
from .routes import bounty, health, leaderboard, quest, users
from .services.scheduler import ArchiverScheduler

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时打开存储并启动归档任务，关闭时依次清理"""
    db_path = get_db_path()
    store = await create_document_store(db_path)
    app.state.store = store
    log.info("document_store_opened", db_path=db_path)

    archiver_config = app.state.archiver_config
    scheduler = None
    if archiver_config.enabled:
        scheduler = ArchiverScheduler(QuestArchiver(store, archiver_config))
        scheduler.start()
    else:
        log.info("archiver_disabled")
    app.state.archiver_scheduler = scheduler

    yield

    if scheduler is not None:
        await scheduler.stop()
    await store.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="SquadQuest Settlement Service",
        version="0.1.0",
        description="任务生命周期、奖励结算与归档 API",
        lifespan=lifespan,
    )

    # 配置在创建时加载，测试可直接覆盖 app.state
    app.state.settlement_policy = load_settlement_policy()
    app.state.archiver_config = load_archiver_config()
    app.state.auth_secret = get_auth_secret()

    # 注册中间件（后注册的在外层：Logging 包裹 RateLimit）
    if rate_limit_enabled():
        app.add_middleware(RateLimitMiddleware)
    app.add_middleware(LoggingMiddleware)

    # 初始化日志
    setup_logging()
    setup_logfire(app)

    register_error_handlers(app)

    # 注册路由
    app.include_router(quest.router, tags=["quest"])
    app.include_router(bounty.router, tags=["bounty"])
    app.include_router(leaderboard.router, tags=["leaderboard"])
    app.include_router(users.router, tags=["users"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
