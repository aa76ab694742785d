"""全局 pytest 配置 -- 可控时钟 + 临时文档存储 + 测试数据构造"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from squadquest.core.collections import member_ref, profile_ref, quest_ref, stats_ref
from squadquest.core.leveling import level_for
from squadquest.core.models import MemberRole, Quest, QuestMember, QuestStatus
from squadquest.core.store import SqliteDocumentStore, create_document_store

# 周三中午（UTC），避开周日双倍与周一重置边界
BASE_TIME = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)


class ManualClock:
    """测试时钟：手动推进"""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


class Seeder:
    """直接写入存储的测试数据构造器（绕过业务校验）"""

    def __init__(self, store: SqliteDocumentStore, clock: ManualClock) -> None:
        self.store = store
        self.clock = clock

    async def user(
        self,
        user_id: str,
        xp: int = 0,
        name: str | None = None,
        city: str = "Ahmedabad",
        with_stats: bool = True,
        **stats_fields,
    ) -> None:
        profile = {
            "name": name or f"Hero {user_id}",
            "city": city,
            "xp": xp,
            "level": level_for(xp),
            "thisWeekXP": stats_fields.get("thisWeekXP", 0),
            "reliabilityScore": stats_fields.get("reliabilityScore", 100),
            "badges": list(stats_fields.get("badges", [])),
        }
        await self.store.set(profile_ref(user_id), profile)
        if with_stats:
            stats = {"xp": xp, "level": level_for(xp), **stats_fields}
            await self.store.set(stats_ref(user_id), stats)

    async def quest(
        self,
        quest_id: str,
        host_id: str = "host",
        members: list[str] | None = None,
        max_players: int = 5,
        start_in: timedelta = timedelta(hours=3),
        status: QuestStatus = QuestStatus.OPEN,
        difficulty: int = 1,
        is_private: bool = False,
        secret_code: str | None = None,
        updated_at: datetime | None = None,
        title: str = "Sunset Hike",
    ) -> Quest:
        now = self.clock()
        members = members if members is not None else [host_id]
        quest = Quest(
            quest_id=quest_id,
            title=title,
            status=status,
            start_time=now + start_in,
            max_players=max_players,
            members=members,
            host_id=host_id,
            is_private=is_private,
            secret_code=secret_code,
            difficulty=difficulty,
            city="Ahmedabad",
            created_at=now,
            updated_at=updated_at or now,
        )
        await self.store.set(quest_ref(quest_id), quest.to_document())
        for uid in members:
            role = MemberRole.HOST if uid == host_id else MemberRole.MEMBER
            member = QuestMember(uid=uid, name=f"Hero {uid}", role=role, joined_at=now)
            await self.store.set(member_ref(quest_id, uid), member.to_document())
        return quest


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest_asyncio.fixture
async def store(tmp_db_path: Path, clock: ManualClock) -> AsyncGenerator[SqliteDocumentStore, None]:
    """提供已初始化的临时文档存储（时钟可控）"""
    doc_store = await create_document_store(str(tmp_db_path), clock=clock)
    yield doc_store
    await doc_store.close()


@pytest.fixture
def seed(store: SqliteDocumentStore, clock: ManualClock) -> Seeder:
    return Seeder(store, clock)
