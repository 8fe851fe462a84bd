"""利用状況 API ルート

GET /api/user-stats/{user_id} → 200 { success, stats: { apiRequestCount, apiLogs, apiUsage } }
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from mindmirror.domain.ports import UserRepository
from mindmirror.entrypoints.api.deps import get_user_repo
from mindmirror.entrypoints.api.schemas import UsageStatsBody, UserStatsResponse

router = APIRouter(tags=["stats"])


@router.get("/user-stats/{user_id}", response_model=UserStatsResponse)
async def user_stats(
    user_id: str,
    user_repo: UserRepository = Depends(get_user_repo),
) -> UserStatsResponse:
    """API 利用状況を返す（ユーザーが存在しない場合はゼロ値）"""
    stats = await user_repo.get_usage(user_id)
    return UserStatsResponse(stats=UsageStatsBody.from_domain(stats))
