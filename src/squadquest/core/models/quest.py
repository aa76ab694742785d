"""Quest 领域模型

quests/{quest_id} 文档及其子集合（members / verifications）的结构。
"""

from datetime import datetime

from pydantic import Field

from .base import CamelModel, DocumentModel
from .enums import MemberRole, QuestStatus


class Quest(DocumentModel):
    """Quest 数据模型

    不变量：len(members) <= max_players；host_id 始终在 members 中。
    """

    ID_FIELD = "quest_id"

    quest_id: str = Field(default="", description="文档 ID")
    title: str = Field(default="", description="任务标题")
    status: QuestStatus = Field(default=QuestStatus.OPEN, description="当前状态")
    start_time: datetime | None = Field(default=None, description="开始时间")
    max_players: int = Field(default=5, ge=1, description="最大人数")
    members: list[str] = Field(default_factory=list, description="成员 UID 列表")
    host_id: str = Field(default="", description="发起人 UID")
    completed_by: list[str] = Field(default_factory=list, description="已完成成员集合")
    is_private: bool = Field(default=False, description="是否私密任务")
    secret_code: str | None = Field(default=None, description="私密任务房间码")
    difficulty: int = Field(default=1, ge=1, le=5, description="威胁等级 1-5")
    city: str | None = Field(default=None)
    created_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)

    def effective_status(self, now: datetime) -> QuestStatus:
        """读取侧的状态：open 且已过开始时间视为 active"""
        if self.is_due(now):
            return QuestStatus.ACTIVE
        return self.status

    def is_due(self, now: datetime) -> bool:
        return (
            self.status == QuestStatus.OPEN
            and self.start_time is not None
            and self.start_time <= now
        )

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    @property
    def is_full(self) -> bool:
        return len(self.members) >= self.max_players


class QuestMember(DocumentModel):
    """quests/{id}/members/{uid} 成员投影"""

    ID_FIELD = "uid"

    uid: str = ""
    name: str = "Unknown Hero"
    role: MemberRole = MemberRole.MEMBER
    joined_at: datetime | None = None


class ProofBundle(CamelModel):
    """完成凭证：位置匹配和/或照片"""

    location_match: bool = Field(default=False, description="是否到达任务地点")
    photo_url: str | None = Field(
        default=None,
        alias="photoURL",
        max_length=1000,
        description="照片地址",
    )

    @property
    def has_evidence(self) -> bool:
        return self.location_match or bool(self.photo_url)

    @property
    def has_photo(self) -> bool:
        """照片加成要求地址长度超过 10"""
        return self.photo_url is not None and len(self.photo_url) > 10


class Verification(DocumentModel):
    """quests/{id}/verifications/{uid} 完成记录

    completed=True 且 rewarded=False 表示奖励尚未结算。
    """

    ID_FIELD = "user_id"

    user_id: str = ""
    completed: bool = True
    rewarded: bool = False
    location_match: bool = False
    photo_url: str | None = Field(default=None, alias="photoURL")
    submitted_at: datetime | None = None
    earned_xp: int | None = Field(default=None, alias="earnedXP")
    bonuses: list[str] = Field(default_factory=list)
    rewarded_at: datetime | None = None
