"""枚举定义

包含 QuestStatus 状态机、VibeTag、Badge、ActivityType 等枚举，
以及 VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class QuestStatus(StrEnum):
    """Quest 状态机"""

    OPEN = "open"
    ACTIVE = "active"

    # 终态
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# 合法状态流转（只进不退）
VALID_TRANSITIONS: dict[QuestStatus, set[QuestStatus]] = {
    QuestStatus.OPEN: {QuestStatus.ACTIVE, QuestStatus.CANCELLED},
    QuestStatus.ACTIVE: {QuestStatus.COMPLETED, QuestStatus.CANCELLED},
    # 终态不可再流转
    QuestStatus.COMPLETED: set(),
    QuestStatus.CANCELLED: set(),
}

TERMINAL_STATES: set[QuestStatus] = {
    QuestStatus.COMPLETED,
    QuestStatus.CANCELLED,
}


class MemberRole(StrEnum):
    HOST = "host"
    MEMBER = "member"


class VibeTag(StrEnum):
    """Vibe check 标签（固定枚举）"""

    LEADER = "leader"
    STORYTELLER = "storyteller"
    FUNNY = "funny"
    LISTENER = "listener"
    TEAMPLAYER = "teamplayer"
    INTELLECTUAL = "intellectual"


class Badge(StrEnum):
    """徽章"""

    FIRST_MISSION = "FIRST_MISSION"
    EARLY_BIRD = "EARLY_BIRD"
    SQUAD_LEADER = "SQUAD_LEADER"
    MASTER_STORYTELLER = "MASTER_STORYTELLER"
    ICEBREAKER = "ICEBREAKER"
    EMPATHETIC_SOUL = "EMPATHETIC_SOUL"
    TEAM_PLAYER = "TEAM_PLAYER"
    PHILOSOPHER = "PHILOSOPHER"


# 同一标签累计达到阈值后解锁的徽章
TAG_BADGES: dict[VibeTag, Badge] = {
    VibeTag.LEADER: Badge.SQUAD_LEADER,
    VibeTag.STORYTELLER: Badge.MASTER_STORYTELLER,
    VibeTag.FUNNY: Badge.ICEBREAKER,
    VibeTag.LISTENER: Badge.EMPATHETIC_SOUL,
    VibeTag.TEAMPLAYER: Badge.TEAM_PLAYER,
    VibeTag.INTELLECTUAL: Badge.PHILOSOPHER,
}


class CompletionBonus(StrEnum):
    """完成奖励加成类型"""

    PUNCTUALITY = "PUNCTUALITY"
    PHOTO_EVIDENCE = "PHOTO_EVIDENCE"
    HOST_BONUS = "HOST_BONUS"
    SHOWDOWN_SUNDAY = "SHOWDOWN_SUNDAY"


class ActivityType(StrEnum):
    """全局动态类型"""

    QUEST_CREATED = "quest_created"
    HERO_JOINED = "hero_joined"
    QUEST = "quest"
    BADGE = "badge"
    VIBE_CHECK = "vibe_check"
    BOUNTY = "bounty"


def validate_transition(from_status: QuestStatus, to_status: QuestStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed
