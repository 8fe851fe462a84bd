"""API リクエスト / レスポンスのスキーマ

JSON のキーは既存フロントエンドに合わせて camelCase。
Python 側は snake_case で扱い、alias_generator で相互変換する。
"""

from __future__ import annotations

import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from mindmirror.domain.models import Reflection, UsageStats, WeeklyAnalysis


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── リクエスト ───────────────────────────────────────────────────────────────
# 必須チェックはサービス層の ValidationError（400）で行うため、ここでは空文字をデフォルトにする


class SaveTranscriptRequest(CamelModel):
    user_id: str = ""
    user_name: str | None = None
    user_email: str | None = None
    date: str | None = None
    transcript: str = ""


class AnalyzeDailyRequest(CamelModel):
    user_id: str = ""
    user_name: str | None = None
    user_email: str | None = None
    date: str | None = None
    text_input: str = ""


class AnalyzeWeeklyRequest(CamelModel):
    user_id: str = ""


# ── レスポンス ───────────────────────────────────────────────────────────────


class ReflectionBody(CamelModel):
    id: str
    user_id: str
    date: str
    transcript: str
    created_at: datetime.datetime
    input_type: str
    analysis_status: str
    primary_emotion: str | None = None
    secondary_emotion: str | None = None
    theme: str | None = None
    emotional_intensity: str | None = None
    daily_insight: str | None = None
    analysis_error: str | None = None

    @classmethod
    def from_domain(cls, reflection: Reflection) -> ReflectionBody:
        return cls(
            id=reflection.id,
            user_id=reflection.uid,
            date=reflection.date,
            transcript=reflection.transcript,
            created_at=reflection.created_at,
            input_type=reflection.input_type.value,
            analysis_status=reflection.analysis_status.value,
            primary_emotion=reflection.primary_emotion,
            secondary_emotion=reflection.secondary_emotion,
            theme=reflection.theme,
            emotional_intensity=reflection.emotional_intensity,
            daily_insight=reflection.daily_insight,
            analysis_error=reflection.analysis_error,
        )


class WeeklyAnalysisBody(CamelModel):
    dominant_emotions: list[str]
    dominant_themes: list[str]
    emotional_pattern: str
    weekly_insight: str
    reflective_question: str

    @classmethod
    def from_domain(cls, analysis: WeeklyAnalysis) -> WeeklyAnalysisBody:
        return cls(
            dominant_emotions=analysis.dominant_emotions,
            dominant_themes=analysis.dominant_themes,
            emotional_pattern=analysis.emotional_pattern,
            weekly_insight=analysis.weekly_insight,
            reflective_question=analysis.reflective_question,
        )


class SaveTranscriptResponse(CamelModel):
    success: bool = True
    reflection: ReflectionBody


class AnalyzeDailyResponse(CamelModel):
    success: bool = True
    analysis: ReflectionBody


class AnalyzeWeeklyResponse(CamelModel):
    success: bool = True
    has_enough_data: bool
    reflection_count: int | None = None
    analysis: WeeklyAnalysisBody | None = None
    cached: bool | None = None
    message: str | None = None


class TodayReflectionResponse(CamelModel):
    success: bool = True
    has_reflection: bool
    reflection: ReflectionBody | None = None
    message: str | None = None


class ReflectionLookupResponse(CamelModel):
    success: bool = True
    found: bool
    reflection: ReflectionBody | None = None
    message: str | None = None


class ReflectionListResponse(CamelModel):
    success: bool = True
    reflections: list[ReflectionBody]


class ApiUsageBody(CamelModel):
    by_date: dict[str, int]
    by_type: dict[str, int]


class UsageStatsBody(CamelModel):
    api_request_count: int
    api_logs: list[dict]
    api_usage: ApiUsageBody

    @classmethod
    def from_domain(cls, stats: UsageStats) -> UsageStatsBody:
        return cls(
            api_request_count=stats.request_count,
            api_logs=stats.logs,
            api_usage=ApiUsageBody(by_date=stats.by_date, by_type=stats.by_type),
        )


class UserStatsResponse(CamelModel):
    success: bool = True
    stats: UsageStatsBody
