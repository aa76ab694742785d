"""周榜路由

GET /api/leaderboard/weekly?city=: 按城市读取本周排行（最多 50 人）
"""

from fastapi import APIRouter, Depends, Query
from squadquest.core.leaderboard import WeeklyLeaderboard
from squadquest.core.models import LeaderboardEntry

from ..auth import get_current_user
from ..deps import get_leaderboard

router = APIRouter()


@router.get("/api/leaderboard/weekly", response_model=list[LeaderboardEntry])
async def weekly_leaderboard(
    city: str | None = Query(default=None, max_length=80, description="城市（默认 Ahmedabad）"),
    user_id: str = Depends(get_current_user),
    leaderboard: WeeklyLeaderboard = Depends(get_leaderboard),
):
    return await leaderboard.weekly(city)
