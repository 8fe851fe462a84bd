"""共通テストフィクスチャ

全テストから利用可能なモックオブジェクトとサンプルデータを提供。

モックの作成:
- MagicMock(spec=ABC) でABCのメソッドシグネチャを保持
- async メソッドは自動的に AsyncMock になる

状態遷移を追うテスト用に、ドキュメントストアのインメモリ実装も用意する。
"""

import datetime
from dataclasses import replace
from unittest.mock import MagicMock

import pytest
from mindmirror.domain.errors import ReflectionConflictError
from mindmirror.domain.models import (
    AnalysisStatus,
    InputType,
    Reflection,
    ReflectionAnalysis,
    UsageStats,
    WeeklyAnalysis,
    WeeklyCacheEntry,
)
from mindmirror.domain.ports import (
    ReflectionAnalyzer,
    ReflectionRepository,
    UserRepository,
)

NOW = datetime.datetime(2026, 1, 18, 11, 30, 45, tzinfo=datetime.UTC)


# ========== インメモリ実装 ==========


class InMemoryReflectionRepository(ReflectionRepository):
    """ReflectionRepository のインメモリ実装（状態遷移テスト用）"""

    def __init__(self) -> None:
        self.docs: dict[tuple[str, str], Reflection] = {}

    async def create(self, reflection: Reflection) -> None:
        key = (reflection.uid, reflection.id)
        if key in self.docs:
            raise ReflectionConflictError(reflection.id)
        self.docs[key] = reflection

    async def get(self, uid: str, reflection_id: str) -> Reflection | None:
        return self.docs.get((uid, reflection_id))

    async def list_recent(self, uid: str, limit: int) -> list[Reflection]:
        mine = [r for (u, _), r in self.docs.items() if u == uid]
        return sorted(mine, key=lambda r: r.created_at, reverse=True)[:limit]

    async def find_by_date(self, uid: str, date: str) -> Reflection | None:
        for (u, _), r in self.docs.items():
            if u == uid and r.date == date:
                return r
        return None

    async def list_by_status(
        self, uid: str, status: AnalysisStatus
    ) -> list[Reflection]:
        return [
            r
            for (u, _), r in self.docs.items()
            if u == uid and r.analysis_status == status
        ]

    async def save_analysis(
        self, uid: str, reflection_id: str, analysis: ReflectionAnalysis
    ) -> None:
        current = self.docs[(uid, reflection_id)]
        self.docs[(uid, reflection_id)] = replace(
            current,
            analysis_status=AnalysisStatus.COMPLETED,
            primary_emotion=analysis.primary_emotion,
            secondary_emotion=analysis.secondary_emotion,
            theme=analysis.theme,
            emotional_intensity=analysis.emotional_intensity,
            daily_insight=analysis.daily_insight,
        )

    async def update_status(
        self,
        uid: str,
        reflection_id: str,
        status: AnalysisStatus,
        error_message: str | None = None,
    ) -> None:
        current = self.docs[(uid, reflection_id)]
        self.docs[(uid, reflection_id)] = replace(
            current, analysis_status=status, analysis_error=error_message
        )


class InMemoryUserRepository(UserRepository):
    """UserRepository のインメモリ実装"""

    def __init__(self) -> None:
        self.profiles: dict[str, dict] = {}
        self.weekly_cache: dict[str, WeeklyCacheEntry | None] = {}
        self.usage: dict[str, UsageStats] = {}

    async def upsert_profile(
        self, uid: str, name: str, email: str, last_active: datetime.datetime
    ) -> None:
        self.profiles[uid] = {"name": name, "email": email, "lastActive": last_active}

    async def get_weekly_cache(self, uid: str) -> WeeklyCacheEntry | None:
        return self.weekly_cache.get(uid)

    async def save_weekly_cache(self, uid: str, entry: WeeklyCacheEntry) -> None:
        self.weekly_cache[uid] = entry

    async def clear_weekly_cache(self, uid: str) -> None:
        self.weekly_cache[uid] = None

    async def get_usage(self, uid: str) -> UsageStats:
        return self.usage.get(uid, UsageStats())

    async def save_usage(self, uid: str, stats: UsageStats) -> None:
        self.usage[uid] = stats


# ========== サンプルデータ ==========


def make_reflection(
    index: int,
    primary_emotion: str | None = "calm",
    theme: str | None = "work",
    status: AnalysisStatus = AnalysisStatus.COMPLETED,
    uid: str = "user-1",
    created_at: datetime.datetime | None = None,
) -> Reflection:
    """index 日前のリフレクションを生成するヘルパー"""
    created = created_at or NOW - datetime.timedelta(days=index)
    date = created.date().isoformat()
    return Reflection(
        id=f"{date}_{created.strftime('%H-%M-%S')}",
        uid=uid,
        date=date,
        transcript=f"reflection {index}",
        created_at=created,
        input_type=InputType.VOICE,
        analysis_status=status,
        primary_emotion=primary_emotion,
        secondary_emotion="hopeful" if primary_emotion else None,
        theme=theme,
        emotional_intensity="medium" if primary_emotion else None,
        daily_insight="You noticed something today." if primary_emotion else None,
    )


@pytest.fixture
def sample_reflection_analysis() -> ReflectionAnalysis:
    """サンプル日次解析結果"""
    return ReflectionAnalysis(
        primary_emotion="anxious",
        secondary_emotion="hopeful",
        theme="work",
        emotional_intensity="high",
        daily_insight="You are carrying a lot this week. You still found a moment of hope.",
    )


@pytest.fixture
def sample_weekly_analysis() -> WeeklyAnalysis:
    """サンプル週次解析結果"""
    return WeeklyAnalysis(
        dominant_emotions=["calm", "anxious"],
        dominant_themes=["work", "self"],
        emotional_pattern="Calm mornings, anxious evenings.",
        weekly_insight="Your week moved between steadiness and worry.",
        reflective_question="What helped you feel steady this week?",
    )


@pytest.fixture
def sample_reflections() -> list[Reflection]:
    """解析済みリフレクション5件（新しい順）"""
    return [make_reflection(i) for i in range(5)]


# ========== モックフィクスチャ ==========


@pytest.fixture
def mock_analyzer(sample_reflection_analysis, sample_weekly_analysis) -> MagicMock:
    """ReflectionAnalyzer のモック"""
    mock = MagicMock(spec=ReflectionAnalyzer)
    mock.analyze_reflection.return_value = sample_reflection_analysis
    mock.analyze_weekly.return_value = sample_weekly_analysis
    return mock


@pytest.fixture
def mock_reflection_repo(sample_reflections) -> MagicMock:
    """ReflectionRepository のモック"""
    mock = MagicMock(spec=ReflectionRepository)
    mock.list_recent.return_value = sample_reflections
    mock.get.return_value = None
    mock.find_by_date.return_value = None
    return mock


@pytest.fixture
def mock_user_repo() -> MagicMock:
    """UserRepository のモック"""
    mock = MagicMock(spec=UserRepository)
    mock.get_weekly_cache.return_value = None
    mock.get_usage.return_value = UsageStats()
    return mock


@pytest.fixture
def reflection_store() -> InMemoryReflectionRepository:
    return InMemoryReflectionRepository()


@pytest.fixture
def user_store() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def now() -> datetime.datetime:
    """テスト用の固定現在時刻（UTC）"""
    return NOW


@pytest.fixture
def reflection_factory():
    """make_reflection をテストから使うためのフィクスチャ"""
    return make_reflection
