"""集成测试共享 fixture"""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient


@pytest_asyncio.fixture
async def integration_app(store, tmp_db_path):
    """集成测试用 FastAPI app（含限流与日志中间件）"""
    os.environ["SQUADQUEST_DB_PATH"] = str(tmp_db_path)
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"
    os.environ["SQUADQUEST_ARCHIVER_ENABLED"] = "false"

    from squadquest.gateway.main import create_app

    app = create_app()
    app.state.store = store
    app.state.archiver_scheduler = None

    yield app

    for key in ["SQUADQUEST_DB_PATH", "LOGFIRE_SEND_TO_LOGFIRE", "SQUADQUEST_ARCHIVER_ENABLED"]:
        os.environ.pop(key, None)


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def bearer(integration_app):
    from squadquest.gateway.auth import issue_token

    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {issue_token(integration_app.state.auth_secret, user_id)}"}

    return _headers
