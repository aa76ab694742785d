"""用户路由

POST /api/users/me/sync: 同步当前用户的公开资料投影（幂等）
"""

from fastapi import APIRouter, Depends
from squadquest.core.models import SyncResult
from squadquest.core.projection import sync_user
from squadquest.core.store import SqliteDocumentStore

from ..auth import get_current_user
from ..deps import get_store

router = APIRouter()


@router.post("/api/users/me/sync", response_model=SyncResult)
async def sync_me(
    user_id: str = Depends(get_current_user),
    store: SqliteDocumentStore = Depends(get_store),
):
    return await sync_user(store, user_id)
