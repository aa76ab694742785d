"""用户模型 -- 公开资料投影 users/{uid} 与私有数据 userStats/{uid}

userStats 是 XP 的真实来源；users 是供排行榜等读取的投影，
通过 projection.sync_user() 收敛到相同 XP。
level 字段仅为缓存，读取方以 leveling.level_for(xp) 为准。
"""

from datetime import datetime

from pydantic import Field

from ..leveling import level_for
from ..store import DocumentSnapshot
from .base import CamelModel, DocumentModel
from .enums import VibeTag


class FeedbackCounts(CamelModel):
    """每个 vibe 标签收到的累计次数"""

    leader: int = 0
    storyteller: int = 0
    funny: int = 0
    listener: int = 0
    teamplayer: int = 0
    intellectual: int = 0

    def get(self, tag: VibeTag) -> int:
        return getattr(self, tag.value)


class UserProfile(DocumentModel):
    """users/{uid} 公开资料"""

    ID_FIELD = "user_id"

    user_id: str = ""
    name: str = Field(default="Unknown Hero", description="显示名")
    city: str | None = Field(default=None, description="所在城市（周榜分区）")
    avatar: str | None = None
    xp: int = 0
    level: int = 1
    this_week_xp: int = Field(default=0, alias="thisWeekXP")
    reliability_score: int = Field(default=100, description="可靠度百分比")
    quests_completed: int = 0
    badges: list[str] = Field(default_factory=list)

    @property
    def computed_level(self) -> int:
        return level_for(self.xp)


class UserStats(DocumentModel):
    """userStats/{uid} 私有数据（XP 真实来源）"""

    ID_FIELD = "user_id"

    user_id: str = ""
    xp: int = 0
    level: int = 1
    this_week_xp: int = Field(default=0, alias="thisWeekXP")
    feedback_counts: FeedbackCounts = Field(default_factory=FeedbackCounts)
    reliability_score: int = Field(default=100, description="可靠度百分比")
    badges: list[str] = Field(default_factory=list)
    quests_completed: int = 0
    daily_streak: int = 0
    last_claimed_at: datetime | None = None
    inventory: dict[str, int] = Field(default_factory=dict, description="道具数量")

    @property
    def computed_level(self) -> int:
        return level_for(self.xp)


def resolve_user_stats(profile: DocumentSnapshot, stats: DocumentSnapshot) -> UserStats:
    """读取用户当前数据：私有数据优先，缺失时以公开资料补齐

    两份文档都在时 XP 取二者较大值，残缺的私有文档不会压低公开 XP。
    """
    if stats.exists:
        current = UserStats.from_snapshot(stats)
        if profile.exists:
            public_xp = UserProfile.from_snapshot(profile).xp
            if public_xp > current.xp:
                current = current.model_copy(update={"xp": public_xp, "level": level_for(public_xp)})
        return current
    if profile.exists:
        public = UserProfile.from_snapshot(profile)
        return UserStats(
            user_id=public.user_id,
            xp=public.xp,
            level=public.computed_level,
            this_week_xp=public.this_week_xp,
            reliability_score=public.reliability_score,
            badges=list(public.badges),
            quests_completed=public.quests_completed,
        )
    return UserStats(user_id=stats.id)


def display_name(profile: DocumentSnapshot, default: str = "Unknown Hero") -> str:
    return profile.get("name") or default
