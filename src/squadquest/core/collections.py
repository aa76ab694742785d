"""集合命名与文档引用构造

quests/{quest_id}
  ├── members/{uid}          成员投影（显示名、角色、加入时间）
  ├── verifications/{uid}    完成凭证
  └── vibeChecks/{reviewer}  评价提交记录（防重放）
archived_quests/{quest_id}   冷存储
users/{uid}                  公开资料投影
  └── joinedQuests/{quest_id}
userStats/{uid}              私有数据（XP 真实来源）
global_activity/{ulid}       只追加的动态流
meta/weekly_reset            周榜重置标记
"""

from .store import DocumentRef

QUESTS = "quests"
ARCHIVED_QUESTS = "archived_quests"
USERS = "users"
USER_STATS = "userStats"
GLOBAL_ACTIVITY = "global_activity"
META = "meta"

MEMBERS = "members"
VERIFICATIONS = "verifications"
VIBE_CHECKS = "vibeChecks"
JOINED_QUESTS = "joinedQuests"

WEEKLY_RESET_DOC = "weekly_reset"


def quest_ref(quest_id: str) -> DocumentRef:
    return DocumentRef(QUESTS, quest_id)


def archived_quest_ref(quest_id: str) -> DocumentRef:
    return DocumentRef(ARCHIVED_QUESTS, quest_id)


def member_ref(quest_id: str, user_id: str) -> DocumentRef:
    return quest_ref(quest_id).child(MEMBERS, user_id)


def verification_ref(quest_id: str, user_id: str) -> DocumentRef:
    return quest_ref(quest_id).child(VERIFICATIONS, user_id)


def vibe_check_ref(quest_id: str, reviewer_id: str) -> DocumentRef:
    return quest_ref(quest_id).child(VIBE_CHECKS, reviewer_id)


def profile_ref(user_id: str) -> DocumentRef:
    return DocumentRef(USERS, user_id)


def joined_quest_ref(user_id: str, quest_id: str) -> DocumentRef:
    return profile_ref(user_id).child(JOINED_QUESTS, quest_id)


def stats_ref(user_id: str) -> DocumentRef:
    return DocumentRef(USER_STATS, user_id)


def weekly_reset_ref() -> DocumentRef:
    return DocumentRef(META, WEEKLY_RESET_DOC)
