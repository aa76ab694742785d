"""全局动态流写入

动态条目在业务事务提交之后写入，属于尽力而为：
写入失败只记录日志，不会回滚已提交的加入 / 结算结果。
"""

import structlog

from .collections import GLOBAL_ACTIVITY
from .errors import StoreError
from .models import ActivityEntry, ActivityType
from .store import SERVER_TIMESTAMP, DocumentStore

log = structlog.get_logger()


async def record_activity(
    store: DocumentStore,
    activity_type: ActivityType,
    user_id: str,
    user: str,
    action: str,
    target: str,
    earned_xp: int | None = None,
) -> str | None:
    """追加一条动态

    Returns:
        新条目的 ID；写入失败时返回 None
    """
    entry = ActivityEntry(
        type=activity_type,
        user_id=user_id,
        user=user or "Hero",
        action=action,
        target=target,
        earned_xp=earned_xp,
    )
    data = entry.to_document()
    data["timestamp"] = SERVER_TIMESTAMP
    if earned_xp is None:
        data.pop("earnedXP", None)

    try:
        ref = await store.add(GLOBAL_ACTIVITY, data)
    except StoreError as e:
        log.warning(
            "activity_log_failed",
            activity_type=activity_type,
            user_id=user_id,
            error_type=type(e).__name__,
            error=str(e),
        )
        return None

    return ref.doc_id
