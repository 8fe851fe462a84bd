"""WeeklyCacheManager - 週次集約解析のキャッシュ管理

users/{uid}.weeklyAnalysisCache に 24 時間有効な集約解析を保持し、
不要な Gemini 呼び出しを避ける。

処理フロー:
  1. キャッシュが新鮮（now - timestamp < TTL）ならそのまま返す（唯一の高速パス）
  2. 直近 7 件のリフレクションを createdAt 降順で取得
  3. 3 件未満なら insufficient_data
  4. Gemini 呼び出しをタイムアウト（15 秒）と競争させる
  5. タイムアウト・失敗時は合成フォールバックを使う（この経路は失敗しない）
  6. 結果をキャッシュに上書き保存して返す

整合性:
  キャッシュの読み書きにロックは使わない。集約計算の最中に新しいリフレクションの
  解析が完了してキャッシュが消されると、計算完了後の書き込みで古い集約が
  キャッシュに残ることがある（次回 TTL 切れか次の完了で解消される）。
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Awaitable
from typing import TypeVar

from mindmirror.domain.errors import ValidationError
from mindmirror.domain.models import WeeklyAnalysis, WeeklyCacheEntry, WeeklyResult
from mindmirror.domain.ports import (
    ReflectionAnalyzer,
    ReflectionRepository,
    UserRepository,
)
from mindmirror.services.synthetic_fallback import build_fallback_analysis

logger = logging.getLogger(__name__)

T = TypeVar("T")

CACHE_TTL = datetime.timedelta(hours=24)
ANALYSIS_TIMEOUT_SECONDS = 15.0
SAMPLE_SIZE = 7
MIN_REFLECTIONS = 3

# 負けた解析タスクが完了するまで GC されないよう参照を保持する
_detached_tasks: set[asyncio.Task] = set()


async def race_with_timeout(awaitable: Awaitable[T], timeout: float) -> T:
    """
    awaitable とタイマーを競争させ、先に確定した方の結果を返す。

    結果は一度しか書き込めないスロット（Future）に入れる。後から届いた側の書き込みは
    無視される。タイムアウトしても解析タスクはキャンセルせず、その結果は捨てる。

    Raises:
        TimeoutError: タイマーが先に確定した場合
        Exception: awaitable が先に失敗した場合はその例外
    """
    loop = asyncio.get_running_loop()
    slot: asyncio.Future = loop.create_future()
    task = asyncio.ensure_future(awaitable)

    def settle(outcome: tuple[str, object]) -> bool:
        if slot.done():
            return False
        slot.set_result(outcome)
        return True

    def on_task_done(t: asyncio.Task) -> None:
        _detached_tasks.discard(t)
        if t.cancelled():
            won = settle(("error", RuntimeError("Analysis task was cancelled")))
        elif t.exception() is not None:
            won = settle(("error", t.exception()))
        else:
            won = settle(("ok", t.result()))
        if not won:
            logger.info("Discarding late analysis result (timer already settled)")

    _detached_tasks.add(task)
    task.add_done_callback(on_task_done)
    timer = loop.call_later(timeout, settle, ("timeout", None))

    try:
        kind, value = await slot
    finally:
        timer.cancel()

    if kind == "timeout":
        raise TimeoutError(f"Analysis did not finish within {timeout}s")
    if kind == "error":
        raise value  # type: ignore[misc]
    return value  # type: ignore[return-value]


class WeeklyCacheManager:
    """
    週次集約解析の取得・キャッシュ・無効化を担当する。

    ReflectionLifecycle からは invalidate() のみが呼ばれる。
    """

    def __init__(
        self,
        reflection_repo: ReflectionRepository,
        user_repo: UserRepository,
        analyzer: ReflectionAnalyzer,
        timeout_seconds: float = ANALYSIS_TIMEOUT_SECONDS,
        ttl: datetime.timedelta = CACHE_TTL,
    ) -> None:
        """
        Args:
            reflection_repo: リフレクションリポジトリ
            user_repo: ユーザーリポジトリ（キャッシュの保存先）
            analyzer: 週次解析を行う ReflectionAnalyzer
            timeout_seconds: Gemini 呼び出しのタイムアウト秒数
            ttl: キャッシュの有効期間
        """
        self._reflection_repo = reflection_repo
        self._user_repo = user_repo
        self._analyzer = analyzer
        self._timeout_seconds = timeout_seconds
        self._ttl = ttl

    async def get_weekly_analysis(
        self, user_id: str, _now: datetime.datetime | None = None
    ) -> WeeklyResult:
        """
        週次集約解析を返す（キャッシュが新鮮ならキャッシュから）。

        Args:
            user_id: ユーザーID
            _now: テスト用の固定日時（None の場合は現在時刻を使用）

        Returns:
            WeeklyResult: insufficient_data または解析結果

        Raises:
            ValidationError: user_id が空の場合
            StoreUnavailableError: Firestore の読み書きに失敗した場合
        """
        if not user_id:
            raise ValidationError("User ID is required")

        now = _now or datetime.datetime.now(datetime.UTC)

        cached = await self._user_repo.get_weekly_cache(user_id)
        if cached is not None and cached.is_fresh(now, self._ttl):
            logger.info(
                "Returning cached weekly analysis: uid=%s, age=%d min",
                user_id,
                int((now - cached.timestamp).total_seconds() // 60),
            )
            return WeeklyResult(
                insufficient_data=False,
                reflection_count=cached.reflection_count,
                analysis=cached.analysis,
                from_cache=True,
            )

        logger.info("Cache miss or stale, generating weekly analysis: uid=%s", user_id)

        reflections = await self._reflection_repo.list_recent(user_id, SAMPLE_SIZE)
        if len(reflections) < MIN_REFLECTIONS:
            logger.info(
                "Not enough reflections for weekly analysis: uid=%s, count=%d",
                user_id,
                len(reflections),
            )
            return WeeklyResult(insufficient_data=True, reflection_count=len(reflections))

        summaries = [r.to_summary() for r in reflections]
        analysis, used_fallback = await self._analyze_with_fallback(user_id, summaries)

        await self._user_repo.save_weekly_cache(
            user_id,
            WeeklyCacheEntry(
                timestamp=_now or datetime.datetime.now(datetime.UTC),
                reflection_count=len(reflections),
                analysis=analysis,
            ),
        )

        return WeeklyResult(
            insufficient_data=False,
            reflection_count=len(reflections),
            analysis=analysis,
            from_cache=False,
            used_fallback=used_fallback,
        )

    async def invalidate(self, user_id: str) -> None:
        """キャッシュを無効化する（TTL に関係なく次回は再計算）"""
        await self._user_repo.clear_weekly_cache(user_id)

    async def _analyze_with_fallback(
        self, user_id: str, summaries: list
    ) -> tuple[WeeklyAnalysis, bool]:
        """Gemini 解析。タイムアウト・失敗時は合成フォールバック"""
        try:
            analysis = await race_with_timeout(
                self._analyzer.analyze_weekly(summaries, user_id),
                self._timeout_seconds,
            )
            return analysis, False
        except TimeoutError:
            logger.warning(
                "Weekly analysis timed out after %.1fs, using synthetic fallback: uid=%s",
                self._timeout_seconds,
                user_id,
            )
        except Exception:
            logger.exception(
                "Weekly analysis failed, using synthetic fallback: uid=%s", user_id
            )
        return build_fallback_analysis(summaries), True
