"""操作结果模型 -- 作为 HTTP 响应体直接返回（camelCase）"""

from datetime import datetime

from pydantic import Field

from .base import CamelModel
from .enums import QuestStatus


class JoinResult(CamelModel):
    quest_id: str
    already_member: bool = Field(default=False, description="已是成员（幂等成功）")
    member_count: int
    max_players: int


class LeaveResult(CamelModel):
    quest_id: str
    reliability_penalty: int = Field(default=0, description="本次扣除的可靠度")
    reliability_score: int | None = Field(default=None, description="扣除后的可靠度")


class FinalizeResult(CamelModel):
    quest_id: str
    already_claimed: bool = Field(default=False, description="奖励已发放（幂等成功）")
    earned_xp: int = Field(default=0, alias="earnedXP")
    bonuses: list[str] = Field(default_factory=list)
    new_level: int | None = None
    new_badges: list[str] = Field(default_factory=list, description="本次新解锁的徽章")


class VibeCheckResult(CamelModel):
    quest_id: str
    already_submitted: bool = Field(default=False, description="重复提交（不再发放奖励）")
    earned_xp: int = Field(default=0, alias="earnedXP", description="评价者获得的 XP")
    rewarded: dict[str, int] = Field(default_factory=dict, description="被评价者 UID -> XP")
    unlocked_badges: dict[str, list[str]] = Field(default_factory=dict)


class StatusChangeResult(CamelModel):
    quest_id: str
    from_status: QuestStatus
    status: QuestStatus


class BountyResult(CamelModel):
    reward: int
    streak: int
    streak_frozen: bool = Field(default=False, description="是否消耗了连胜冻结道具")
    next_claim_at: datetime


class SyncResult(CamelModel):
    user_id: str
    xp: int
    level: int
    healed: bool = Field(default=False, description="公开资料 XP 是否被修正")


class LeaderboardEntry(CamelModel):
    rank: int
    user_id: str
    name: str
    avatar: str | None = None
    city: str | None = None
    this_week_xp: int = Field(default=0, alias="thisWeekXP")
    xp: int = 0
    level: int = 1


class ArchiveReport(CamelModel):
    """单次归档运行报告"""

    dry_run: bool
    cutoff: datetime
    eligible: int = 0
    candidates: list[str] = Field(default_factory=list, description="满足条件且可归档的任务")
    archived: list[str] = Field(default_factory=list)
    deferred: list[str] = Field(default_factory=list, description="存在未结算凭证，推迟归档")
    failed: list[str] = Field(default_factory=list, description="单条处理失败，已跳过")
    batch_sizes: list[int] = Field(default_factory=list, description="每次提交包含的任务数")
    fatal_error: str | None = None

    @property
    def commits(self) -> int:
        return len(self.batch_sizes)
