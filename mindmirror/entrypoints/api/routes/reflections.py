"""リフレクション API ルート

POST /api/save-transcript                      → 200 { success, reflection }（解析はバックグラウンド）
POST /api/analyze-daily                        → 200 { success, analysis }（解析完了後に応答）
GET  /api/today-reflection/{user_id}           → 200 { success, hasReflection, reflection? }
GET  /api/reflections/{user_id}?limit=N        → 200 { success, reflections }
GET  /api/reflection/{user_id}/{date}          → 200 { success, found, reflection? }
GET  /api/reflection-by-id/{user_id}/{doc_id}  → 200 { success, found, reflection? }
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from mindmirror.entrypoints.api.deps import get_lifecycle
from mindmirror.entrypoints.api.schemas import (
    AnalyzeDailyRequest,
    AnalyzeDailyResponse,
    ReflectionBody,
    ReflectionListResponse,
    ReflectionLookupResponse,
    SaveTranscriptRequest,
    SaveTranscriptResponse,
    TodayReflectionResponse,
)
from mindmirror.services.reflection_lifecycle import (
    DEFAULT_LIST_LIMIT,
    ReflectionLifecycle,
)

router = APIRouter(tags=["reflections"])

_NOT_FOUND_MESSAGE = "Reflection not found"


@router.post(
    "/save-transcript",
    response_model=SaveTranscriptResponse,
    response_model_exclude_none=True,
)
async def save_transcript(
    body: SaveTranscriptRequest,
    background_tasks: BackgroundTasks,
    lifecycle: ReflectionLifecycle = Depends(get_lifecycle),
) -> SaveTranscriptResponse:
    """
    音声書き起こしを pending として即座に保存し、解析をバックグラウンドで開始する。

    クライアントは reflection.id で /reflection-by-id をポーリングし、
    analysisStatus が completed / failed になるのを待つ。
    """
    reflection = await lifecycle.submit(
        body.user_id,
        body.transcript,
        date=body.date,
        user_name=body.user_name,
        user_email=body.user_email,
    )
    # レスポンス送信後に同じイベントループ上で実行される
    background_tasks.add_task(
        lifecycle.run_background_analysis,
        reflection.uid,
        reflection.id,
        reflection.transcript,
    )
    return SaveTranscriptResponse(reflection=ReflectionBody.from_domain(reflection))


@router.post(
    "/analyze-daily",
    response_model=AnalyzeDailyResponse,
    response_model_exclude_none=True,
)
async def analyze_daily(
    body: AnalyzeDailyRequest,
    lifecycle: ReflectionLifecycle = Depends(get_lifecycle),
) -> AnalyzeDailyResponse:
    """テキスト入力を解析してから保存し、解析済みのリフレクションを返す"""
    reflection = await lifecycle.analyze_and_store(
        body.user_id,
        body.text_input,
        date=body.date,
        user_name=body.user_name,
        user_email=body.user_email,
    )
    return AnalyzeDailyResponse(analysis=ReflectionBody.from_domain(reflection))


@router.get(
    "/today-reflection/{user_id}",
    response_model=TodayReflectionResponse,
    response_model_exclude_none=True,
)
async def today_reflection(
    user_id: str,
    lifecycle: ReflectionLifecycle = Depends(get_lifecycle),
) -> TodayReflectionResponse:
    """今日のリフレクションを返す"""
    reflection = await lifecycle.today_reflection(user_id)
    if reflection is None:
        return TodayReflectionResponse(
            has_reflection=False, message="No reflection found for today"
        )
    return TodayReflectionResponse(
        has_reflection=True, reflection=ReflectionBody.from_domain(reflection)
    )


@router.get(
    "/reflections/{user_id}",
    response_model=ReflectionListResponse,
    response_model_exclude_none=True,
)
async def list_reflections(
    user_id: str,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=100),
    lifecycle: ReflectionLifecycle = Depends(get_lifecycle),
) -> ReflectionListResponse:
    """リフレクション一覧を新しい順で返す"""
    reflections = await lifecycle.list_reflections(user_id, limit)
    return ReflectionListResponse(
        reflections=[ReflectionBody.from_domain(r) for r in reflections]
    )


@router.get(
    "/reflection/{user_id}/{date}",
    response_model=ReflectionLookupResponse,
    response_model_exclude_none=True,
)
async def get_reflection_by_date(
    user_id: str,
    date: str,
    lifecycle: ReflectionLifecycle = Depends(get_lifecycle),
) -> ReflectionLookupResponse:
    """日付（YYYY-MM-DD）でリフレクションを1件返す"""
    reflection = await lifecycle.find_by_date(user_id, date)
    return _lookup_response(reflection)


@router.get(
    "/reflection-by-id/{user_id}/{doc_id}",
    response_model=ReflectionLookupResponse,
    response_model_exclude_none=True,
)
async def get_reflection_by_id(
    user_id: str,
    doc_id: str,
    lifecycle: ReflectionLifecycle = Depends(get_lifecycle),
) -> ReflectionLookupResponse:
    """ドキュメントIDでリフレクションを返す（解析ステータスのポーリング用）"""
    reflection = await lifecycle.get_reflection(user_id, doc_id)
    return _lookup_response(reflection)


def _lookup_response(reflection) -> ReflectionLookupResponse:
    if reflection is None:
        return ReflectionLookupResponse(found=False, message=_NOT_FOUND_MESSAGE)
    return ReflectionLookupResponse(
        found=True, reflection=ReflectionBody.from_domain(reflection)
    )
