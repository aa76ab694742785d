"""公开资料投影同步

userStats/{uid} 是 XP 的真实来源，users/{uid} 是读取侧投影。
sync_user() 是显式、幂等的收敛操作：
- 私有 XP 大于公开 XP 时，用私有 XP 覆盖公开 XP
- 两份文档的 level 重新按 level_for(xp) 计算
已一致时不产生任何写入。
"""

import structlog

from .collections import USER_STATS, profile_ref, stats_ref
from .errors import UserNotFoundError
from .leveling import level_for
from .models import SyncResult, UserProfile, UserStats
from .store import SERVER_TIMESTAMP, DocumentStore, Transaction

log = structlog.get_logger()


async def sync_user(store: DocumentStore, user_id: str) -> SyncResult:
    """同步单个用户的公开资料投影"""

    async def body(txn: Transaction) -> SyncResult:
        profile_snap, stats_snap = await txn.get_all([profile_ref(user_id), stats_ref(user_id)])
        if not profile_snap.exists and not stats_snap.exists:
            raise UserNotFoundError(user_id)

        profile = UserProfile.from_snapshot(profile_snap) if profile_snap.exists else None
        stats = UserStats.from_snapshot(stats_snap) if stats_snap.exists else None

        truth_xp = stats.xp if stats is not None else profile.xp
        healed = False

        if stats is not None and stats.level != level_for(stats.xp):
            txn.update(stats_ref(user_id), {"level": level_for(stats.xp), "updatedAt": SERVER_TIMESTAMP})

        if profile is not None:
            profile_xp = profile.xp
            changes: dict = {}
            if stats is not None and stats.xp > profile.xp:
                profile_xp = stats.xp
                changes["xp"] = profile_xp
                healed = True
            if profile.level != level_for(profile_xp):
                changes["level"] = level_for(profile_xp)
            if changes:
                changes["updatedAt"] = SERVER_TIMESTAMP
                txn.update(profile_ref(user_id), changes)

        return SyncResult(user_id=user_id, xp=truth_xp, level=level_for(truth_xp), healed=healed)

    result = await store.run_transaction(body)
    if result.healed:
        log.info("profile_projection_healed", user_id=user_id, xp=result.xp, level=result.level)
    return result


async def sync_all(store: DocumentStore) -> list[SyncResult]:
    """对所有 userStats 记录执行 sync_user"""
    snapshots = await store.query(USER_STATS)
    results = [await sync_user(store, snapshot.id) for snapshot in snapshots]
    log.info(
        "profile_projection_sync_completed",
        users=len(results),
        healed=sum(1 for r in results if r.healed),
    )
    return results
