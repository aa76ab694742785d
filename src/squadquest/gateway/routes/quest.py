"""任务路由

POST /api/quest/create:      创建任务
GET  /api/quest/{quest_id}:  读取任务（顺带触发到期自动激活）
POST /api/quest/join:        加入任务（可选 secretCode）
POST /api/quest/leave:       退出任务
POST /api/quest/finalize:    提交完成凭证（幂等）
POST /api/quest/vibe-check:  提交队友评价并结算 XP
POST /api/quest/status:      发起人变更任务状态
"""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Path
from pydantic import Field, field_validator
from squadquest.core.config import MAX_REVIEWED_USERS, MAX_TAGS_PER_USER
from squadquest.core.lifecycle import QuestLifecycleManager
from squadquest.core.models import (
    CamelModel,
    FinalizeResult,
    JoinResult,
    LeaveResult,
    ProofBundle,
    Quest,
    QuestStatus,
    StatusChangeResult,
    VibeCheckResult,
    VibeTag,
)
from squadquest.core.settlement import RewardSettlementEngine

from ..auth import get_current_user
from ..deps import get_lifecycle, get_settlement

router = APIRouter()

QUEST_ID_PATTERN = r"^[A-Za-z0-9]{10,50}$"
SECRET_CODE_PATTERN = r"^([A-Z0-9]{6})?$"

QuestId = Annotated[str, Field(pattern=QUEST_ID_PATTERN, description="任务 ID（10-50 位字母数字）")]


class CreateQuestRequest(CamelModel):
    title: str = Field(min_length=1, max_length=120)
    start_time: datetime
    max_players: int = Field(default=5, ge=2, le=50)
    difficulty: int = Field(default=1, ge=1, le=5)
    is_private: bool = False
    secret_code: str | None = Field(default=None, pattern=SECRET_CODE_PATTERN)
    city: str | None = Field(default=None, max_length=80)

    @field_validator("start_time")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class JoinRequest(CamelModel):
    quest_id: QuestId
    secret_code: str | None = Field(default=None, pattern=SECRET_CODE_PATTERN)


class LeaveRequest(CamelModel):
    quest_id: QuestId


class FinalizeRequest(CamelModel):
    quest_id: QuestId
    location_match: bool = False
    photo_url: str | None = Field(default=None, alias="photoURL", max_length=1000)


class VibeCheckRequest(CamelModel):
    quest_id: QuestId
    reviews: dict[str, Annotated[list[VibeTag], Field(max_length=MAX_TAGS_PER_USER)]] = Field(
        max_length=MAX_REVIEWED_USERS,
        description="被评价者 UID -> 标签列表",
    )


class StatusRequest(CamelModel):
    quest_id: QuestId
    status: QuestStatus


@router.post("/api/quest/create", response_model=Quest)
async def create_quest(
    body: CreateQuestRequest,
    user_id: str = Depends(get_current_user),
    lifecycle: QuestLifecycleManager = Depends(get_lifecycle),
):
    """创建任务，当前用户为发起人"""
    return await lifecycle.create_quest(
        host_id=user_id,
        title=body.title,
        start_time=body.start_time,
        max_players=body.max_players,
        difficulty=body.difficulty,
        is_private=body.is_private,
        secret_code=body.secret_code or None,
        city=body.city,
    )


@router.get("/api/quest/{quest_id}", response_model=Quest)
async def get_quest(
    quest_id: str = Path(pattern=QUEST_ID_PATTERN),
    user_id: str = Depends(get_current_user),
    lifecycle: QuestLifecycleManager = Depends(get_lifecycle),
):
    """读取任务详情；房间码只对发起人可见"""
    quest = await lifecycle.get_quest(quest_id)
    if quest.host_id != user_id:
        quest = quest.model_copy(update={"secret_code": None})
    return quest


@router.post("/api/quest/join", response_model=JoinResult)
async def join_quest(
    body: JoinRequest,
    user_id: str = Depends(get_current_user),
    lifecycle: QuestLifecycleManager = Depends(get_lifecycle),
):
    return await lifecycle.join(body.quest_id, user_id, code=body.secret_code or None)


@router.post("/api/quest/leave", response_model=LeaveResult)
async def leave_quest(
    body: LeaveRequest,
    user_id: str = Depends(get_current_user),
    lifecycle: QuestLifecycleManager = Depends(get_lifecycle),
):
    return await lifecycle.leave(body.quest_id, user_id)


@router.post("/api/quest/finalize", response_model=FinalizeResult)
async def finalize_quest(
    body: FinalizeRequest,
    user_id: str = Depends(get_current_user),
    lifecycle: QuestLifecycleManager = Depends(get_lifecycle),
):
    """提交完成凭证；重复提交返回 alreadyClaimed=true（200）"""
    proof = ProofBundle(location_match=body.location_match, photo_url=body.photo_url)
    return await lifecycle.finalize(body.quest_id, user_id, proof)


@router.post("/api/quest/vibe-check", response_model=VibeCheckResult)
async def submit_vibe_check(
    body: VibeCheckRequest,
    user_id: str = Depends(get_current_user),
    settlement: RewardSettlementEngine = Depends(get_settlement),
):
    """结算队友评价；自评条目会被静默丢弃"""
    return await settlement.settle_vibe_check(body.quest_id, user_id, body.reviews)


@router.post("/api/quest/status", response_model=StatusChangeResult)
async def change_status(
    body: StatusRequest,
    user_id: str = Depends(get_current_user),
    lifecycle: QuestLifecycleManager = Depends(get_lifecycle),
):
    return await lifecycle.transition(body.quest_id, user_id, body.status)
