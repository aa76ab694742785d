"""SquadQuest Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .activity import ActivityEntry
from .base import CamelModel, DocumentModel
from .enums import (
    TAG_BADGES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ActivityType,
    Badge,
    CompletionBonus,
    MemberRole,
    QuestStatus,
    VibeTag,
    validate_transition,
)
from .quest import ProofBundle, Quest, QuestMember, Verification
from .results import (
    ArchiveReport,
    BountyResult,
    FinalizeResult,
    JoinResult,
    LeaderboardEntry,
    LeaveResult,
    StatusChangeResult,
    SyncResult,
    VibeCheckResult,
)
from .user import (
    FeedbackCounts,
    UserProfile,
    UserStats,
    display_name,
    resolve_user_stats,
)

__all__ = [
    # 枚举
    "QuestStatus",
    "MemberRole",
    "VibeTag",
    "Badge",
    "CompletionBonus",
    "ActivityType",
    "TAG_BADGES",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "validate_transition",
    # 基类
    "CamelModel",
    "DocumentModel",
    # 文档模型
    "Quest",
    "QuestMember",
    "ProofBundle",
    "Verification",
    "UserProfile",
    "UserStats",
    "FeedbackCounts",
    "resolve_user_stats",
    "display_name",
    "ActivityEntry",
    # 操作结果
    "JoinResult",
    "LeaveResult",
    "FinalizeResult",
    "VibeCheckResult",
    "StatusChangeResult",
    "BountyResult",
    "SyncResult",
    "LeaderboardEntry",
    "ArchiveReport",
]
