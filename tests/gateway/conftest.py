"""gateway 测试配置 -- FastAPI app + httpx AsyncClient + Bearer token"""

import os
from collections.abc import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

_TEST_ENV = {
    "LOGFIRE_SEND_TO_LOGFIRE": "false",
    "SQUADQUEST_RATE_LIMIT_ENABLED": "false",
    "SQUADQUEST_ARCHIVER_ENABLED": "false",
    "SQUADQUEST_AUTH_SECRET": "gateway-test-secret",
}


@pytest_asyncio.fixture
async def app(store, tmp_db_path):
    """创建测试用 FastAPI app 实例（绕过 lifespan，直接注入存储）"""
    os.environ["SQUADQUEST_DB_PATH"] = str(tmp_db_path)
    os.environ.update(_TEST_ENV)

    from squadquest.gateway.main import create_app

    application = create_app()
    application.state.store = store
    application.state.archiver_scheduler = None
    yield application

    # 清理环境变量
    for key in ["SQUADQUEST_DB_PATH", *_TEST_ENV]:
        os.environ.pop(key, None)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def auth(app) -> Callable[[str], dict[str, str]]:
    """按 uid 生成 Authorization 头"""
    from squadquest.gateway.auth import issue_token

    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {issue_token(app.state.auth_secret, user_id)}"}

    return _headers
