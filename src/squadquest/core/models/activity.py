"""全局动态流条目"""

from datetime import datetime

from pydantic import Field

from .base import DocumentModel
from .enums import ActivityType


class ActivityEntry(DocumentModel):
    """global_activity/{ulid} 只追加记录"""

    ID_FIELD = "entry_id"

    entry_id: str = ""
    type: ActivityType
    user_id: str
    user: str = Field(default="Hero", description="显示名")
    action: str
    target: str
    earned_xp: int | None = Field(default=None, alias="earnedXP")
    timestamp: datetime | None = None
