"""週次解析 API ルート

POST /api/analyze-weekly → 200 { success, hasEnoughData, reflectionCount?, analysis?, cached? }

24 時間以内のキャッシュがあれば Gemini を呼ばずに返す。
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from mindmirror.entrypoints.api.deps import get_weekly_cache
from mindmirror.entrypoints.api.schemas import (
    AnalyzeWeeklyRequest,
    AnalyzeWeeklyResponse,
    WeeklyAnalysisBody,
)
from mindmirror.services.weekly_cache import WeeklyCacheManager

router = APIRouter(tags=["weekly"])


@router.post(
    "/analyze-weekly",
    response_model=AnalyzeWeeklyResponse,
    response_model_exclude_none=True,
)
async def analyze_weekly(
    body: AnalyzeWeeklyRequest,
    weekly_cache: WeeklyCacheManager = Depends(get_weekly_cache),
) -> AnalyzeWeeklyResponse:
    """直近リフレクションの週次集約解析を返す"""
    result = await weekly_cache.get_weekly_analysis(body.user_id)

    if result.insufficient_data:
        if result.reflection_count == 0:
            return AnalyzeWeeklyResponse(
                has_enough_data=False, message="Not enough reflections"
            )
        return AnalyzeWeeklyResponse(
            has_enough_data=False, reflection_count=result.reflection_count
        )

    return AnalyzeWeeklyResponse(
        has_enough_data=True,
        reflection_count=result.reflection_count,
        analysis=WeeklyAnalysisBody.from_domain(result.analysis),
        cached=result.from_cache,
    )
