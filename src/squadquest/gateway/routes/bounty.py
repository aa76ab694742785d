"""每日悬赏路由

POST /api/bounty/claim: 领取每日悬赏（冷却 25 小时，冷却中返回 429 + Retry-After）
"""

from fastapi import APIRouter, Depends
from squadquest.core.models import BountyResult
from squadquest.core.settlement import RewardSettlementEngine

from ..auth import get_current_user
from ..deps import get_settlement

router = APIRouter()


@router.post("/api/bounty/claim", response_model=BountyResult)
async def claim_bounty(
    user_id: str = Depends(get_current_user),
    settlement: RewardSettlementEngine = Depends(get_settlement),
):
    return await settlement.claim_daily_bounty(user_id)
