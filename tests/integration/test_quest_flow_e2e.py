"""任务全生命周期端到端集成测试

创建 -> 加入（满员拒绝）-> 临近开始退出（扣可靠度）-> 到期激活
-> 完成凭证 -> vibe check -> 发起人完成 -> 周榜 -> 归档
"""

from datetime import timedelta

from httpx import AsyncClient
from squadquest.core.archiver import QuestArchiver
from squadquest.core.collections import (
    GLOBAL_ACTIVITY,
    archived_quest_ref,
    quest_ref,
    stats_ref,
    weekly_reset_ref,
)
from squadquest.core.config import ArchiverConfig
from squadquest.core.leaderboard import week_start
from squadquest.core.projection import sync_user
from squadquest.core.store import to_iso


class TestQuestFlowEndToEnd:
    async def test_full_lifecycle(self, client: AsyncClient, bearer, seed, store, clock):
        for uid in ["host", "u1", "u2", "u3", "u4", "u5"]:
            await seed.user(uid)
        # 本周已重置，周榜读取不清零
        await store.set(weekly_reset_ref(), {"lastResetISO": to_iso(week_start(clock()))})

        # 1. 创建任务（容量 5，1 小时 30 分钟后开始）
        resp = await client.post(
            "/api/quest/create",
            json={
                "title": "Night Market Crawl",
                "startTime": (clock() + timedelta(minutes=90)).isoformat(),
                "maxPlayers": 5,
            },
            headers=bearer("host"),
        )
        assert resp.status_code == 200
        quest_id = resp.json()["questId"]

        # 2. 四人加入后满员，第五人被拒
        for uid in ["u1", "u2", "u3", "u4"]:
            resp = await client.post("/api/quest/join", json={"questId": quest_id}, headers=bearer(uid))
            assert resp.status_code == 200
        assert resp.json()["memberCount"] == 5

        resp = await client.post("/api/quest/join", json={"questId": quest_id}, headers=bearer("u5"))
        assert resp.status_code == 409

        # 3. 开始前 20 分钟退出：扣可靠度，腾出名额
        clock.advance(minutes=70)
        resp = await client.post("/api/quest/leave", json={"questId": quest_id}, headers=bearer("u4"))
        assert resp.json()["reliabilityScore"] == 98

        resp = await client.post("/api/quest/join", json={"questId": quest_id}, headers=bearer("u5"))
        assert resp.status_code == 200

        # 4. 到达开始时间：读取即激活
        clock.advance(minutes=20)
        resp = await client.get(f"/api/quest/{quest_id}", headers=bearer("u1"))
        assert resp.json()["status"] == "active"

        # 5. 准时提交完成凭证
        resp = await client.post(
            "/api/quest/finalize",
            json={"questId": quest_id, "locationMatch": True},
            headers=bearer("u1"),
        )
        assert resp.json()["earnedXP"] == 125
        assert resp.json()["bonuses"] == ["PUNCTUALITY"]

        # 6. 发起人评价队友
        resp = await client.post(
            "/api/quest/vibe-check",
            json={"questId": quest_id, "reviews": {"u1": ["leader"], "u2": ["funny", "listener"]}},
            headers=bearer("host"),
        )
        assert resp.json()["rewarded"] == {"u1": 5, "u2": 10}

        # 7. 发起人结束任务
        resp = await client.post(
            "/api/quest/status",
            json={"questId": quest_id, "status": "completed"},
            headers=bearer("host"),
        )
        assert resp.json()["status"] == "completed"

        # 8. 周榜
        resp = await client.get("/api/leaderboard/weekly", headers=bearer("u1"))
        board = {row["userId"]: row["thisWeekXP"] for row in resp.json()}
        assert board["u1"] == 130
        assert board["host"] == 50

        stats = await store.get(stats_ref("u1"))
        assert stats.get("xp") == 130
        assert (await sync_user(store, "u1")).healed is False

        activity_types = {a.get("type") for a in await store.query(GLOBAL_ACTIVITY)}
        assert {"quest_created", "hero_joined", "quest", "badge", "vibe_check"} <= activity_types

        # 9. 八天后归档
        clock.advance(days=8)
        report = await QuestArchiver(store, ArchiverConfig(dry_run=False)).run()
        assert report.archived == [quest_id]
        assert (await store.get(quest_ref(quest_id))).exists is False
        assert (await store.get(archived_quest_ref(quest_id))).get("title") == "Night Market Crawl"
