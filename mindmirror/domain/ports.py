"""Ports - サービスのインターフェース定義（ABC）

各Port（抽象基底クラス）は外部サービスとの契約を定義します。
実装クラス（Adapter）はこれらのABCを継承し、全ての抽象メソッドを実装する必要があります。

I/O を伴う操作はすべてコルーチンとして定義する（イベントループを塞がないため）。
"""

from __future__ import annotations

import datetime
from abc import ABC, abstractmethod

from mindmirror.domain.models import (
    AnalysisStatus,
    Reflection,
    ReflectionAnalysis,
    ReflectionSummary,
    UsageStats,
    WeeklyAnalysis,
    WeeklyCacheEntry,
)


class ReflectionAnalyzer(ABC):
    """感情解析（Gemini等のLLM）"""

    @abstractmethod
    async def analyze(
        self,
        prompt: str,
        user_id: str | None = None,
        operation: str = "unknown",
        detail: str = "",
    ) -> dict:
        """プロンプトを送信し、応答から抽出した JSON オブジェクトを返す"""
        pass

    @abstractmethod
    async def analyze_reflection(
        self, transcript: str, user_id: str | None = None, operation: str = "text-analysis"
    ) -> ReflectionAnalysis:
        """1件のリフレクションを解析"""
        pass

    @abstractmethod
    async def analyze_weekly(
        self, summaries: list[ReflectionSummary], user_id: str | None = None
    ) -> WeeklyAnalysis:
        """直近リフレクションの要約から週次パターンを解析"""
        pass


class ReflectionRepository(ABC):
    """リフレクションの永続化（Firestore等）"""

    @abstractmethod
    async def create(self, reflection: Reflection) -> None:
        """リフレクションを作成。同じIDが既にあれば ReflectionConflictError"""
        pass

    @abstractmethod
    async def get(self, uid: str, reflection_id: str) -> Reflection | None:
        """リフレクションを取得。存在しない場合はNoneを返す"""
        pass

    @abstractmethod
    async def list_recent(self, uid: str, limit: int) -> list[Reflection]:
        """createdAt の新しい順に最大 limit 件を取得"""
        pass

    @abstractmethod
    async def find_by_date(self, uid: str, date: str) -> Reflection | None:
        """date が一致するリフレクションを1件取得"""
        pass

    @abstractmethod
    async def list_by_status(
        self, uid: str, status: AnalysisStatus
    ) -> list[Reflection]:
        """指定ステータスのリフレクション一覧を取得"""
        pass

    @abstractmethod
    async def save_analysis(
        self, uid: str, reflection_id: str, analysis: ReflectionAnalysis
    ) -> None:
        """解析結果を書き込み、ステータスを completed にする（1回の更新で）"""
        pass

    @abstractmethod
    async def update_status(
        self,
        uid: str,
        reflection_id: str,
        status: AnalysisStatus,
        error_message: str | None = None,
    ) -> None:
        """ステータスを更新（存在しない場合はエラー）"""
        pass


class UserRepository(ABC):
    """ユーザーレコード（プロファイル・週次キャッシュ・利用状況）の永続化"""

    @abstractmethod
    async def upsert_profile(
        self, uid: str, name: str, email: str, last_active: datetime.datetime
    ) -> None:
        """name/email/lastActive をマージ書き込み"""
        pass

    @abstractmethod
    async def get_weekly_cache(self, uid: str) -> WeeklyCacheEntry | None:
        """週次解析キャッシュを取得。未設定ならNone"""
        pass

    @abstractmethod
    async def save_weekly_cache(self, uid: str, entry: WeeklyCacheEntry) -> None:
        """週次解析キャッシュを上書き保存"""
        pass

    @abstractmethod
    async def clear_weekly_cache(self, uid: str) -> None:
        """週次解析キャッシュを無効化（null をマージ書き込み）"""
        pass

    @abstractmethod
    async def get_usage(self, uid: str) -> UsageStats:
        """API 利用状況を取得。ユーザーが存在しない場合は空の UsageStats"""
        pass

    @abstractmethod
    async def save_usage(self, uid: str, stats: UsageStats) -> None:
        """API 利用状況をマージ書き込み"""
        pass
