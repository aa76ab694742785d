"""周榜

thisWeekXP 采用惰性重置：每次读取周榜时比较 meta/weekly_reset.lastResetISO
与本周起点（周一 00:00 UTC），不一致则先把两份用户文档的 thisWeekXP 清零。
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from .collections import USERS, profile_ref, stats_ref, weekly_reset_ref
from .config import get_default_city
from .errors import StoreError
from .leveling import level_for
from .models import LeaderboardEntry, UserProfile
from .store import SERVER_TIMESTAMP, DocumentStore, Transaction, to_iso

log = structlog.get_logger()

LEADERBOARD_LIMIT = 50

# 未完成的重置标记超过该时长可被重新抢占
RESET_LEASE = timedelta(minutes=5)


def week_start(now: datetime) -> datetime:
    """本周一 00:00 UTC"""
    now = now.astimezone(UTC)
    monday = now - timedelta(days=now.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


class WeeklyLeaderboard:
    """周榜读取与周 XP 重置"""

    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], datetime] | None = None,
        batch_size: int = 450,
    ) -> None:
        self._store = store
        self._clock = clock or store.now
        self._batch_size = batch_size

    async def _claim_reset(self, marker: str, force: bool) -> tuple[bool, str | None]:
        """在事务内抢占本周的重置标记，保证同一周只重置一次

        标记带 pending，清零全部提交后才清除；pending 超过租约视为中断，可被重新抢占。

        Returns:
            (是否抢占成功, 抢占前的 lastResetISO)
        """
        now = self._clock()

        async def body(txn: Transaction) -> tuple[bool, str | None]:
            snapshot = await txn.get(weekly_reset_ref())
            previous = snapshot.get("lastResetISO")
            if not force and previous == marker:
                claimed_at = snapshot.get("resetAt")
                stale = (
                    snapshot.get("pending") is True
                    and claimed_at is not None
                    and now - datetime.fromisoformat(claimed_at) >= RESET_LEASE
                )
                if not stale:
                    return False, previous
                previous = snapshot.get("previousResetISO")
            txn.set(
                weekly_reset_ref(),
                {
                    "lastResetISO": marker,
                    "previousResetISO": previous,
                    "pending": True,
                    "resetAt": SERVER_TIMESTAMP,
                },
            )
            return True, previous

        return await self._store.run_transaction(body)

    async def _release_claim(self, marker: str, previous: str | None) -> None:
        """清零失败：撤回本周标记，下次读取重新执行"""

        async def body(txn: Transaction) -> None:
            snapshot = await txn.get(weekly_reset_ref())
            if snapshot.get("lastResetISO") != marker or snapshot.get("pending") is not True:
                return
            if previous is None:
                txn.delete(weekly_reset_ref())
            else:
                txn.set(weekly_reset_ref(), {"lastResetISO": previous, "pending": False})

        await self._store.run_transaction(body)

    async def reset_weekly_xp(self, force: bool = False) -> int:
        """清零本周 XP

        任一批次失败时撤回标记并向上抛出，已清零的用户重跑时不受影响。

        Args:
            force: 忽略本周已重置的标记，强制执行

        Returns:
            被清零的用户数；本周已重置时返回 0
        """
        marker = to_iso(week_start(self._clock()))
        claimed, previous = await self._claim_reset(marker, force)
        if not claimed:
            return 0

        try:
            snapshots = await self._store.query(USERS, where=[("thisWeekXP", ">", 0)])
            # 每个用户占 2 个写操作（users + userStats）
            per_batch = max(self._batch_size // 2, 1)
            for start in range(0, len(snapshots), per_batch):
                batch = self._store.batch()
                for snapshot in snapshots[start : start + per_batch]:
                    batch.update(profile_ref(snapshot.id), {"thisWeekXP": 0})
                    batch.set(stats_ref(snapshot.id), {"thisWeekXP": 0}, merge=True)
                await batch.commit()
        except StoreError as e:
            log.error("weekly_xp_reset_failed", week_start=marker, error=str(e))
            await self._release_claim(marker, previous)
            raise

        await self._store.update(weekly_reset_ref(), {"pending": False, "completedAt": SERVER_TIMESTAMP})
        log.info("weekly_xp_reset", week_start=marker, users_reset=len(snapshots), forced=force)
        return len(snapshots)

    async def weekly(self, city: str | None = None, limit: int = LEADERBOARD_LIMIT) -> list[LeaderboardEntry]:
        """按城市读取周榜（thisWeekXP 倒序）"""
        await self.reset_weekly_xp()

        target_city = city or get_default_city()
        snapshots = await self._store.query(
            USERS,
            where=[("city", "==", target_city)],
            order_by="thisWeekXP",
            descending=True,
            limit=limit,
        )

        entries = []
        for rank, snapshot in enumerate(snapshots, start=1):
            profile = UserProfile.from_snapshot(snapshot)
            entries.append(
                LeaderboardEntry(
                    rank=rank,
                    user_id=profile.user_id,
                    name=profile.name,
                    avatar=profile.avatar,
                    city=profile.city,
                    this_week_xp=profile.this_week_xp,
                    xp=profile.xp,
                    level=level_for(profile.xp),
                )
            )
        return entries
