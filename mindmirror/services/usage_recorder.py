"""UsageRecorder - API 利用状況のベストエフォート記録

解析リクエストごとに users/{uid} の apiRequestCount / apiLogs / apiUsage を更新する。
テレメトリ用途であり業務ロジックからは参照しないため、
失敗はすべてログに残して握りつぶす（呼び出し元には伝播しない）。

read-modify-write はトランザクションなしで行う。同一ユーザーへの同時呼び出しでは
後勝ちとなりカウントが欠けることがあるが、許容している。
"""

from __future__ import annotations

import asyncio
import datetime
import logging

from mindmirror.domain.models import UsageStats
from mindmirror.domain.ports import UserRepository

logger = logging.getLogger(__name__)

USAGE_LOG_LIMIT = 100


def categorize_operation(operation: str) -> str:
    """操作名の部分一致で text / voice / weekly / other に分類"""
    for category in ("text", "voice", "weekly"):
        if category in operation:
            return category
    return "other"


def apply_usage(
    stats: UsageStats,
    operation: str,
    detail: str,
    now: datetime.datetime,
) -> UsageStats:
    """
    利用状況に1リクエスト分を加算した新しい UsageStats を返す（純粋関数）。

    - request_count を +1
    - logs に1件追加し、直近 USAGE_LOG_LIMIT 件のみ残す（古いものから削除）
    - by_date[今日] と by_type[カテゴリ] を +1
    """
    today = now.date().isoformat()
    category = categorize_operation(operation)
    entry = {
        "timestamp": int(now.timestamp() * 1000),
        "operation": operation,
        "details": detail,
    }
    logs = [*stats.logs, entry][-USAGE_LOG_LIMIT:]

    return UsageStats(
        request_count=stats.request_count + 1,
        logs=logs,
        by_date={**stats.by_date, today: stats.by_date.get(today, 0) + 1},
        by_type={**stats.by_type, category: stats.by_type.get(category, 0) + 1},
        last_updated=now,
    )


class UsageRecorder:
    """
    API 利用状況レコーダー。

    record() は例外を送出しない。record_in_background() は呼び出し元を待たせずに
    asyncio タスクとして記録を実行する。
    """

    def __init__(self, user_repo: UserRepository) -> None:
        self._user_repo = user_repo
        self._pending: set[asyncio.Task] = set()

    async def record(
        self,
        user_id: str,
        operation: str,
        detail: str = "",
        _now: datetime.datetime | None = None,
    ) -> None:
        """利用状況を1件記録する。失敗はログのみ"""
        if not user_id:
            return
        now = _now or datetime.datetime.now(datetime.UTC)
        try:
            current = await self._user_repo.get_usage(user_id)
            updated = apply_usage(current, operation, detail, now)
            await self._user_repo.save_usage(user_id, updated)
            logger.info(
                "API count: %d | operation=%s | type=%s",
                updated.request_count,
                operation,
                categorize_operation(operation),
            )
        except Exception:
            logger.exception("Failed to record API usage: uid=%s", user_id)

    def record_in_background(
        self, user_id: str, operation: str, detail: str = ""
    ) -> asyncio.Task:
        """記録をバックグラウンドタスクとして開始する（await 不要）"""
        task = asyncio.create_task(self.record(user_id, operation, detail))
        # タスクが GC されないよう完了まで参照を保持する
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """未完了の記録タスクをすべて待つ（シャットダウン・テスト用）"""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
