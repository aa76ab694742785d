"""依赖注入模块 -- 通过 FastAPI Depends 注入存储与业务服务

Store 实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Depends, Request
from squadquest.core.config import SettlementPolicy
from squadquest.core.leaderboard import WeeklyLeaderboard
from squadquest.core.lifecycle import QuestLifecycleManager
from squadquest.core.settlement import RewardSettlementEngine
from squadquest.core.store import SqliteDocumentStore


def get_store(request: Request) -> SqliteDocumentStore:
    """从 app.state 获取文档存储实例"""
    return request.app.state.store


def get_policy(request: Request) -> SettlementPolicy:
    return request.app.state.settlement_policy


def get_settlement(
    store: SqliteDocumentStore = Depends(get_store),
    policy: SettlementPolicy = Depends(get_policy),
) -> RewardSettlementEngine:
    return RewardSettlementEngine(store, policy=policy)


def get_lifecycle(
    store: SqliteDocumentStore = Depends(get_store),
    policy: SettlementPolicy = Depends(get_policy),
    settlement: RewardSettlementEngine = Depends(get_settlement),
) -> QuestLifecycleManager:
    return QuestLifecycleManager(store, policy=policy, settlement=settlement)


def get_leaderboard(
    request: Request,
    store: SqliteDocumentStore = Depends(get_store),
) -> WeeklyLeaderboard:
    return WeeklyLeaderboard(store, batch_size=request.app.state.archiver_config.batch_size)
