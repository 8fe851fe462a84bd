"""ドメインモデル - 外部依存なしのデータ構造"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum

from mindmirror.domain.errors import MalformedResponseError


class AnalysisStatus(Enum):
    """リフレクションの解析ステータス

    pending → completed | failed の一方向のみ遷移する。
    stuck は reconcile_stuck() が長時間 pending のものに付与する終端状態。
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    STUCK = "stuck"


class InputType(Enum):
    """リフレクションの入力方法"""

    TEXT = "text"
    VOICE = "voice"


@dataclass(frozen=True)
class ReflectionAnalysis:
    """1件のリフレクションに対する感情解析結果"""

    primary_emotion: str  # 例: "anxious"
    secondary_emotion: str  # 例: "hopeful"
    theme: str  # "self" | "relationships" | "work" | "growth" | "health"
    emotional_intensity: str  # "low" | "medium" | "high"
    daily_insight: str  # 2〜3文の振り返りコメント
    transcript: str = ""  # テキスト解析時に Gemini がエコーする原文


@dataclass(frozen=True)
class Reflection:
    """感情ジャーナルの1エントリ（users/{uid}/reflections/{id}）"""

    id: str  # 例: "2026-01-18_11-30-45"
    uid: str
    date: str  # YYYY-MM-DD
    transcript: str
    created_at: datetime.datetime
    input_type: InputType
    analysis_status: AnalysisStatus
    primary_emotion: str | None = None
    secondary_emotion: str | None = None
    theme: str | None = None
    emotional_intensity: str | None = None
    daily_insight: str | None = None
    analysis_error: str | None = None

    def to_summary(self) -> ReflectionSummary:
        """週次解析に渡す縮約形に変換"""
        return ReflectionSummary(
            date=self.date,
            primary_emotion=self.primary_emotion,
            secondary_emotion=self.secondary_emotion,
            theme=self.theme,
            emotional_intensity=self.emotional_intensity,
        )


@dataclass(frozen=True)
class ReflectionSummary:
    """週次解析プロンプト用のリフレクション要約"""

    date: str
    primary_emotion: str | None = None
    secondary_emotion: str | None = None
    theme: str | None = None
    emotional_intensity: str | None = None

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "primaryEmotion": self.primary_emotion,
            "secondaryEmotion": self.secondary_emotion,
            "theme": self.theme,
            "emotionalIntensity": self.emotional_intensity,
        }


@dataclass(frozen=True)
class WeeklyAnalysis:
    """直近リフレクション群に対する集約解析結果

    Gemini の結果でも合成フォールバックでも同じ形になる。
    """

    dominant_emotions: list[str] = field(default_factory=list)
    dominant_themes: list[str] = field(default_factory=list)
    emotional_pattern: str = ""
    weekly_insight: str = ""
    reflective_question: str = ""

    def to_dict(self) -> dict:
        return {
            "dominantEmotions": list(self.dominant_emotions),
            "dominantThemes": list(self.dominant_themes),
            "emotionalPattern": self.emotional_pattern,
            "weeklyInsight": self.weekly_insight,
            "reflectiveQuestion": self.reflective_question,
        }

    @classmethod
    def from_dict(cls, data: dict) -> WeeklyAnalysis:
        """
        Gemini 応答・キャッシュの辞書から生成する。

        欠けたフィールドは空値で補う。型が違うフィールドは受け付けない
        （文字列を list() すると1文字ずつのリストになってしまうため）。

        Raises:
            MalformedResponseError: リストが文字列のリストでない、
                またはテキストが文字列でない場合
        """
        return cls(
            dominant_emotions=_str_list(data, "dominantEmotions"),
            dominant_themes=_str_list(data, "dominantThemes"),
            emotional_pattern=_text(data, "emotionalPattern"),
            weekly_insight=_text(data, "weeklyInsight"),
            reflective_question=_text(data, "reflectiveQuestion"),
        )


def _str_list(data: dict, key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise MalformedResponseError(f"{key} must be a list of strings")
    return list(value)


def _text(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise MalformedResponseError(f"{key} must be a string")
    return value


@dataclass(frozen=True)
class WeeklyCacheEntry:
    """ユーザーごとの週次解析キャッシュ（users/{uid}.weeklyAnalysisCache）"""

    timestamp: datetime.datetime  # キャッシュ書き込み時刻（UTC）
    reflection_count: int
    analysis: WeeklyAnalysis

    def is_fresh(self, now: datetime.datetime, ttl: datetime.timedelta) -> bool:
        return now - self.timestamp < ttl


@dataclass(frozen=True)
class WeeklyResult:
    """get_weekly_analysis() の戻り値"""

    insufficient_data: bool
    reflection_count: int
    analysis: WeeklyAnalysis | None = None
    from_cache: bool = False
    used_fallback: bool = False


@dataclass(frozen=True)
class UsageStats:
    """API 利用状況のテレメトリ（業務ロジックからは参照しない）"""

    request_count: int = 0
    logs: list[dict] = field(default_factory=list)
    by_date: dict[str, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)
    last_updated: datetime.datetime | None = None
