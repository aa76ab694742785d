"""Vibe check 结算测试

测试内容：
1. 被评价者按标签数获得 XP，评价者获得固定奖励，自评被丢弃
2. 计数器按标签原子累加；达到阈值解锁徽章
3. 同一 (quest, reviewer) 重复提交不再发放
4. 任一写入失败或被评价者缺失时整次结算回滚
5. 输入校验：人数上限、标签上限、未知标签、非成员
6. 不同任务对同一用户并发结算不丢失更新
"""

import asyncio

import aiosqlite
import pytest
import pytest_asyncio
from squadquest.core.collections import (
    GLOBAL_ACTIVITY,
    profile_ref,
    stats_ref,
    vibe_check_ref,
)
from squadquest.core.errors import (
    NotMemberError,
    QuestNotFoundError,
    StoreUnavailableError,
    UserNotFoundError,
    ValidationFailedError,
)
from squadquest.core.settlement import RewardSettlementEngine

QUEST_ID = "QUEST00004"


@pytest.fixture
def engine(store) -> RewardSettlementEngine:
    return RewardSettlementEngine(store)


@pytest_asyncio.fixture
async def squad(seed):
    """R 为评价者，U1-U3 为队友"""
    await seed.quest(QUEST_ID, host_id="R", members=["R", "U1", "U2", "U3"])
    for uid in ["R", "U1", "U2", "U3"]:
        await seed.user(uid, xp=0)


class TestVibeCheckSettlement:
    """结算金额"""

    async def test_self_review_dropped_and_reviewer_bonus_flat(self, store, engine, squad):
        result = await engine.settle_vibe_check(
            QUEST_ID,
            "R",
            {"U1": ["leader", "funny"], "R": ["listener"]},
        )

        assert result.already_submitted is False
        assert result.rewarded == {"U1": 10}
        assert result.earned_xp == 50

        u1 = await store.get(stats_ref("U1"))
        assert u1.get("xp") == 10
        assert u1.get("thisWeekXP") == 10
        assert u1.get("feedbackCounts") == {"leader": 1, "funny": 1}
        assert (await store.get(profile_ref("U1"))).get("xp") == 10

        reviewer = await store.get(stats_ref("R"))
        assert reviewer.get("xp") == 50
        assert reviewer.get("feedbackCounts") is None
        assert (await store.get(profile_ref("R"))).get("xp") == 50
        assert (await store.get(profile_ref("R"))).get("thisWeekXP") == 50

    async def test_level_recomputed_with_xp(self, store, seed, engine, squad):
        await seed.user("U1", xp=95)
        await engine.settle_vibe_check(QUEST_ID, "R", {"U1": ["leader"]})
        stats = await store.get(stats_ref("U1"))
        assert stats.get("xp") == 100
        assert stats.get("level") == 2

    async def test_empty_entries_ignored(self, store, engine, squad):
        result = await engine.settle_vibe_check(QUEST_ID, "R", {"U1": [], "U2": ["listener"]})
        assert result.rewarded == {"U2": 5}
        assert (await store.get(stats_ref("U1"))).get("xp") == 0

    async def test_duplicate_tags_count_twice(self, store, engine, squad):
        result = await engine.settle_vibe_check(QUEST_ID, "R", {"U1": ["leader", "leader"]})
        assert result.rewarded == {"U1": 10}
        assert (await store.get(stats_ref("U1"))).get("feedbackCounts.leader") == 2

    async def test_activity_logged(self, store, engine, squad):
        await engine.settle_vibe_check(QUEST_ID, "R", {"U1": ["funny"]})
        entries = await store.query(GLOBAL_ACTIVITY)
        assert [e.get("type") for e in entries] == ["vibe_check"]
        assert entries[0].get("earnedXP") == 50


class TestBadges:
    async def test_threshold_unlocks_badge(self, store, seed, engine, squad):
        await seed.user("U1", feedbackCounts={"leader": 4})

        result = await engine.settle_vibe_check(QUEST_ID, "R", {"U1": ["leader"]})

        assert result.unlocked_badges == {"U1": ["SQUAD_LEADER"]}
        assert (await store.get(stats_ref("U1"))).get("badges") == ["SQUAD_LEADER"]
        assert (await store.get(profile_ref("U1"))).get("badges") == ["SQUAD_LEADER"]
        badge_entries = await store.query(GLOBAL_ACTIVITY, where=[("type", "==", "badge")])
        assert [e.get("target") for e in badge_entries] == ["SQUAD_LEADER"]

    async def test_owned_badge_not_unlocked_again(self, seed, engine, squad):
        await seed.user("U1", feedbackCounts={"funny": 9}, badges=["ICEBREAKER"])
        result = await engine.settle_vibe_check(QUEST_ID, "R", {"U1": ["funny"]})
        assert result.unlocked_badges == {}


class TestReplayGuard:
    async def test_second_submission_not_rewarded(self, store, engine, squad):
        await engine.settle_vibe_check(QUEST_ID, "R", {"U1": ["leader"]})
        replay = await engine.settle_vibe_check(QUEST_ID, "R", {"U1": ["leader"]})

        assert replay.already_submitted is True
        assert replay.rewarded == {}
        assert (await store.get(stats_ref("U1"))).get("xp") == 5
        assert (await store.get(stats_ref("R"))).get("xp") == 50
        assert (await store.get(vibe_check_ref(QUEST_ID, "R"))).get("reviewed") == {"U1": 5}

    async def test_other_reviewers_unaffected(self, store, engine, squad):
        await engine.settle_vibe_check(QUEST_ID, "R", {"U1": ["leader"]})
        result = await engine.settle_vibe_check(QUEST_ID, "U2", {"U1": ["leader"]})
        assert result.already_submitted is False
        assert (await store.get(stats_ref("U1"))).get("xp") == 10


class TestAtomicity:
    """整次结算要么全部生效，要么全部回滚"""

    async def _assert_untouched(self, store, user_ids=("R", "U1", "U2", "U3")):
        for uid in user_ids:
            assert (await store.get(stats_ref(uid))).get("xp") == 0
            assert (await store.get(profile_ref(uid))).get("xp") == 0
        assert (await store.get(vibe_check_ref(QUEST_ID, "R"))).exists is False

    async def test_write_failure_on_third_of_five_users_rolls_back(
        self, store, seed, engine, squad, monkeypatch
    ):
        """第 3 位被评价者写入失败：前两位已缓冲的写入与其后的写入全部不生效"""
        await seed.user("U4", xp=0)
        await seed.user("U5", xp=0)
        original = store._write_document

        async def failing_write(ref, data, now):
            if ref == stats_ref("U3"):
                raise aiosqlite.OperationalError("disk I/O error")
            await original(ref, data, now)

        monkeypatch.setattr(store, "_write_document", failing_write)

        with pytest.raises(StoreUnavailableError):
            await engine.settle_vibe_check(
                QUEST_ID,
                "R",
                {
                    "U1": ["leader"],
                    "U2": ["funny"],
                    "U3": ["listener"],
                    "U4": ["storyteller"],
                    "U5": ["teamplayer"],
                },
            )

        monkeypatch.undo()
        await self._assert_untouched(store, ("R", "U1", "U2", "U3", "U4", "U5"))
        assert (await store.get(stats_ref("U1"))).get("feedbackCounts") is None

    async def test_missing_reviewed_user_aborts(self, store, engine, squad):
        with pytest.raises(UserNotFoundError):
            await engine.settle_vibe_check(QUEST_ID, "R", {"U1": ["leader"], "GHOST": ["funny"]})
        await self._assert_untouched(store)

    async def test_reviewer_must_be_member(self, seed, engine, squad):
        await seed.user("outsider")
        with pytest.raises(NotMemberError):
            await engine.settle_vibe_check(QUEST_ID, "outsider", {"U1": ["leader"]})

    async def test_quest_must_exist(self, engine, squad):
        with pytest.raises(QuestNotFoundError):
            await engine.settle_vibe_check("QUESTNOPE00", "R", {"U1": ["leader"]})


class TestInputValidation:
    """事务开始前的输入校验"""

    async def test_too_many_users(self, engine, squad):
        reviews = {f"user{i}": ["leader"] for i in range(21)}
        with pytest.raises(ValidationFailedError):
            await engine.settle_vibe_check(QUEST_ID, "R", reviews)

    async def test_too_many_tags(self, engine, squad):
        tags = ["leader", "funny", "listener", "storyteller", "teamplayer", "intellectual", "leader"]
        with pytest.raises(ValidationFailedError):
            await engine.settle_vibe_check(QUEST_ID, "R", {"U1": tags})

    async def test_unknown_tag(self, store, engine, squad):
        with pytest.raises(ValidationFailedError) as exc_info:
            await engine.settle_vibe_check(QUEST_ID, "R", {"U1": ["rude"]})
        assert exc_info.value.details[0]["field"] == "reviews.U1"
        assert (await store.get(stats_ref("U1"))).get("xp") == 0


class TestConcurrentSettlement:
    async def test_two_quests_settle_same_user(self, store, seed, engine):
        """两个任务同时给同一用户结算：XP 与计数都不丢失"""
        await seed.quest("QUESTALPHA1", host_id="R1", members=["R1", "U1"])
        await seed.quest("QUESTBRAVO2", host_id="R2", members=["R2", "U1"])
        for uid in ["R1", "R2", "U1"]:
            await seed.user(uid)

        await asyncio.gather(
            engine.settle_vibe_check("QUESTALPHA1", "R1", {"U1": ["leader", "funny"]}),
            engine.settle_vibe_check("QUESTBRAVO2", "R2", {"U1": ["leader"]}),
        )

        stats = await store.get(stats_ref("U1"))
        assert stats.get("xp") == 15
        assert stats.get("thisWeekXP") == 15
        assert stats.get("feedbackCounts") == {"leader": 2, "funny": 1}
