"""ReflectionLifecycle - リフレクションの作成と解析ステータス管理

状態遷移:
  pending → completed  （解析成功。解析フィールドとステータスを1回の更新で書き込む）
  pending → failed     （解析失敗。analysisError にメッセージを残す）
  pending → stuck      （reconcile_stuck() による明示的な回収のみ）

submit() は pending のレコードを書き込んだ時点で返り、解析は待たない。
解析は run_background_analysis() として呼び出し元（API ルート）が
レスポンス送信後に実行する。
"""

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import replace

from mindmirror.domain.errors import ReflectionConflictError, ValidationError
from mindmirror.domain.models import (
    AnalysisStatus,
    InputType,
    Reflection,
    ReflectionAnalysis,
)
from mindmirror.domain.ports import (
    ReflectionAnalyzer,
    ReflectionRepository,
    UserRepository,
)
from mindmirror.services.weekly_cache import WeeklyCacheManager

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 30
STUCK_AFTER = datetime.timedelta(minutes=15)


def make_reflection_id(date: str, now: datetime.datetime) -> str:
    """日付と時刻（秒単位）から読みやすいドキュメントIDを作る。例: 2026-01-18_11-30-45"""
    return f"{date}_{now.strftime('%H-%M-%S')}"


async def reconcile_stuck(
    reflection_repo: ReflectionRepository,
    user_id: str,
    older_than: datetime.timedelta = STUCK_AFTER,
    _now: datetime.datetime | None = None,
) -> list[str]:
    """
    older_than より前に作成され pending のままのリフレクションを stuck にする。

    解析器や週次キャッシュは使わないため、CLI からはリポジトリだけで呼べる。

    Returns:
        stuck に遷移させたリフレクションIDのリスト
    """
    now = _now or datetime.datetime.now(datetime.UTC)
    cutoff = now - older_than

    pending = await reflection_repo.list_by_status(user_id, AnalysisStatus.PENDING)
    moved: list[str] = []
    for reflection in pending:
        if reflection.created_at >= cutoff:
            continue
        await reflection_repo.update_status(
            user_id,
            reflection.id,
            AnalysisStatus.STUCK,
            error_message=f"Analysis did not finish within {older_than}",
        )
        moved.append(reflection.id)

    logger.info(
        "Reconciled stuck reflections: uid=%s, pending=%d, moved=%d",
        user_id,
        len(pending),
        len(moved),
    )
    return moved


class ReflectionLifecycle:
    """
    リフレクションの作成・解析・参照を担当するサービス。

    解析完了時は WeeklyCacheManager.invalidate() を呼び、
    次回の週次解析リクエストで必ず再計算させる。
    """

    def __init__(
        self,
        reflection_repo: ReflectionRepository,
        user_repo: UserRepository,
        analyzer: ReflectionAnalyzer,
        weekly_cache: WeeklyCacheManager,
    ) -> None:
        self._reflection_repo = reflection_repo
        self._user_repo = user_repo
        self._analyzer = analyzer
        self._weekly_cache = weekly_cache

    # ── 作成 ─────────────────────────────────────────────────────────────────

    async def submit(
        self,
        user_id: str,
        transcript: str,
        date: str | None = None,
        user_name: str | None = None,
        user_email: str | None = None,
        _now: datetime.datetime | None = None,
    ) -> Reflection:
        """
        音声書き起こしを pending のリフレクションとして保存して返す。

        解析は行わない。呼び出し元は戻り値の id で
        run_background_analysis() をスケジュールすること。

        Raises:
            ValidationError: user_id または transcript が空の場合
        """
        self._validate(user_id, transcript, "userId and transcript are required")
        now = _now or datetime.datetime.now(datetime.UTC)
        date_str = date or now.date().isoformat()

        reflection = Reflection(
            id=make_reflection_id(date_str, now),
            uid=user_id,
            date=date_str,
            transcript=transcript.strip(),
            created_at=now,
            input_type=InputType.VOICE,
            analysis_status=AnalysisStatus.PENDING,
        )
        await self._upsert_profile(user_id, user_name, user_email, now)
        reflection = await self._create(reflection)

        logger.info("Transcript saved: uid=%s, reflection_id=%s", user_id, reflection.id)
        return reflection

    async def run_background_analysis(
        self, user_id: str, reflection_id: str, transcript: str
    ) -> None:
        """
        pending のリフレクションを解析し、completed / failed に遷移させる。

        例外は送出しない。failed の書き込み自体が失敗した場合はログのみ残し、
        リフレクションは pending のまま残る（reconcile_stuck() で回収できる）。
        """
        logger.info(
            "Background analysis started: uid=%s, reflection_id=%s",
            user_id,
            reflection_id,
        )
        try:
            analysis = await self._analyzer.analyze_reflection(
                transcript, user_id, operation="voice-analysis"
            )
            await self._reflection_repo.save_analysis(user_id, reflection_id, analysis)
        except Exception as e:
            logger.exception(
                "Background analysis failed: uid=%s, reflection_id=%s",
                user_id,
                reflection_id,
            )
            try:
                await self._reflection_repo.update_status(
                    user_id, reflection_id, AnalysisStatus.FAILED, error_message=str(e)
                )
            except Exception:
                logger.exception(
                    "Failed to record analysis failure, reflection left pending: "
                    "uid=%s, reflection_id=%s",
                    user_id,
                    reflection_id,
                )
            return

        logger.info(
            "Background analysis completed: uid=%s, reflection_id=%s",
            user_id,
            reflection_id,
        )
        try:
            await self._weekly_cache.invalidate(user_id)
        except Exception:
            logger.exception("Failed to invalidate weekly cache: uid=%s", user_id)

    async def analyze_and_store(
        self,
        user_id: str,
        text: str,
        date: str | None = None,
        user_name: str | None = None,
        user_email: str | None = None,
        _now: datetime.datetime | None = None,
    ) -> Reflection:
        """
        テキスト入力を同期的に解析し、completed のリフレクションとして保存して返す。

        Raises:
            ValidationError: user_id または text が空の場合
            AnalysisError: Gemini 応答の解析に失敗した場合
        """
        self._validate(user_id, text, "userId and textInput are required")

        analysis = await self._analyzer.analyze_reflection(
            text, user_id, operation="text-analysis"
        )

        now = _now or datetime.datetime.now(datetime.UTC)
        reflection = self._completed_reflection(user_id, text, date, now, analysis)

        await self._upsert_profile(user_id, user_name, user_email, now)
        reflection = await self._create(reflection)
        await self._weekly_cache.invalidate(user_id)

        logger.info("Text reflection analyzed: uid=%s, reflection_id=%s", user_id, reflection.id)
        return reflection

    # ── 参照 ─────────────────────────────────────────────────────────────────

    async def get_reflection(self, user_id: str, reflection_id: str) -> Reflection | None:
        return await self._reflection_repo.get(user_id, reflection_id)

    async def list_reflections(
        self, user_id: str, limit: int = DEFAULT_LIST_LIMIT
    ) -> list[Reflection]:
        return await self._reflection_repo.list_recent(user_id, limit)

    async def find_by_date(self, user_id: str, date: str) -> Reflection | None:
        return await self._reflection_repo.find_by_date(user_id, date)

    async def today_reflection(
        self, user_id: str, _now: datetime.datetime | None = None
    ) -> Reflection | None:
        """今日（UTC）の日付のリフレクションを1件返す"""
        now = _now or datetime.datetime.now(datetime.UTC)
        return await self._reflection_repo.find_by_date(user_id, now.date().isoformat())

    # ── 回収 ─────────────────────────────────────────────────────────────────

    async def reconcile_stuck(
        self,
        user_id: str,
        older_than: datetime.timedelta = STUCK_AFTER,
        _now: datetime.datetime | None = None,
    ) -> list[str]:
        """older_than より前に作成され pending のままのリフレクションを stuck にする"""
        return await reconcile_stuck(
            self._reflection_repo, user_id, older_than=older_than, _now=_now
        )

    # ── 内部ヘルパー ─────────────────────────────────────────────────────────

    @staticmethod
    def _validate(user_id: str, text: str, message: str) -> None:
        if not user_id or not text or not text.strip():
            raise ValidationError(message)

    async def _upsert_profile(
        self,
        user_id: str,
        user_name: str | None,
        user_email: str | None,
        now: datetime.datetime,
    ) -> None:
        await self._user_repo.upsert_profile(
            user_id,
            name=user_name or "Anonymous",
            email=user_email or "",
            last_active=now,
        )

    async def _create(self, reflection: Reflection) -> Reflection:
        """作成。同じ秒に同じ日付のIDが衝突した場合はサフィックスを付けて1回だけ再試行"""
        try:
            await self._reflection_repo.create(reflection)
            return reflection
        except ReflectionConflictError:
            retry = replace(reflection, id=f"{reflection.id}_{uuid.uuid4().hex[:6]}")
            logger.warning(
                "Reflection id collision: uid=%s, id=%s, retrying as %s",
                reflection.uid,
                reflection.id,
                retry.id,
            )
            await self._reflection_repo.create(retry)
            return retry

    @staticmethod
    def _completed_reflection(
        user_id: str,
        text: str,
        date: str | None,
        now: datetime.datetime,
        analysis: ReflectionAnalysis,
    ) -> Reflection:
        date_str = date or now.date().isoformat()
        return Reflection(
            id=make_reflection_id(date_str, now),
            uid=user_id,
            date=date_str,
            transcript=text.strip(),
            created_at=now,
            input_type=InputType.TEXT,
            analysis_status=AnalysisStatus.COMPLETED,
            primary_emotion=analysis.primary_emotion,
            secondary_emotion=analysis.secondary_emotion,
            theme=analysis.theme,
            emotional_intensity=analysis.emotional_intensity,
            daily_insight=analysis.daily_insight,
        )
