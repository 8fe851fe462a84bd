"""Firestore Repository Adapter

ReflectionRepository と UserRepository の Firestore 実装（非同期クライアント）。

Firestore コレクション構造:
  users/{uid}                               ← プロファイル・週次キャッシュ・API 利用状況
  users/{uid}/reflections/{reflectionId}    ← リフレクション

フィールド名は既存クライアントとの互換のため camelCase。
トランザクションは使わない。ユーザードキュメントへの書き込みはすべて merge で行い、
無関係なフィールドを上書きしないようにする。
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from google.api_core import exceptions as gexc
from google.cloud import firestore

from mindmirror.domain.errors import (
    MalformedResponseError,
    ReflectionConflictError,
    StoreUnavailableError,
)
from mindmirror.domain.models import (
    AnalysisStatus,
    InputType,
    Reflection,
    ReflectionAnalysis,
    UsageStats,
    WeeklyAnalysis,
    WeeklyCacheEntry,
)
from mindmirror.domain.ports import ReflectionRepository, UserRepository

logger = logging.getLogger(__name__)

_USERS = "users"
_REFLECTIONS = "reflections"
_WEEKLY_CACHE = "weeklyAnalysisCache"


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Firestore の API エラーを StoreUnavailableError に変換する"""
    try:
        yield
    except gexc.GoogleAPICallError as e:
        logger.error("Firestore %s failed: %s", operation, e)
        raise StoreUnavailableError(f"Firestore {operation} failed") from e


def _as_utc(value: Any) -> datetime.datetime | None:
    """Firestore から読んだ時刻を tz-aware UTC datetime に揃える

    旧データはエポックミリ秒（int）で保存されているため、それも受け付ける。
    """
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=datetime.UTC)
        return value
    if isinstance(value, (int, float)):
        return datetime.datetime.fromtimestamp(value / 1000, tz=datetime.UTC)
    raise TypeError(f"Unsupported timestamp value: {value!r}")


class FirestoreReflectionRepository(ReflectionRepository):
    """
    Firestore を使った ReflectionRepository 実装。

    users/{uid}/reflections サブコレクションを管理する。
    """

    def __init__(self, db: firestore.AsyncClient) -> None:
        """
        Args:
            db: 初期化済みの Firestore 非同期クライアント
        """
        self._db = db

    def _collection(self, uid: str) -> firestore.AsyncCollectionReference:
        return self._db.collection(_USERS).document(uid).collection(_REFLECTIONS)

    async def create(self, reflection: Reflection) -> None:
        """リフレクションを作成（既存IDなら ReflectionConflictError）"""
        ref = self._collection(reflection.uid).document(reflection.id)
        try:
            await ref.create(self._reflection_to_dict(reflection))
        except gexc.AlreadyExists as e:
            raise ReflectionConflictError(
                f"Reflection already exists: {reflection.id}"
            ) from e
        except gexc.GoogleAPICallError as e:
            logger.error("Firestore create failed: %s", e)
            raise StoreUnavailableError("Firestore create failed") from e
        logger.info(
            "Created reflection: uid=%s, reflection_id=%s, status=%s",
            reflection.uid,
            reflection.id,
            reflection.analysis_status.value,
        )

    async def get(self, uid: str, reflection_id: str) -> Reflection | None:
        """リフレクションを取得。存在しない場合は None を返す"""
        with _store_errors("get"):
            snap = await self._collection(uid).document(reflection_id).get()
        if not snap.exists:
            return None
        return self._dict_to_reflection(snap.id, uid, snap.to_dict() or {})

    async def list_recent(self, uid: str, limit: int) -> list[Reflection]:
        """createdAt の新しい順に最大 limit 件を取得"""
        query = (
            self._collection(uid)
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
            .limit(limit)
        )
        with _store_errors("list_recent"):
            snaps = await query.get()
        return [self._dict_to_reflection(s.id, uid, s.to_dict() or {}) for s in snaps]

    async def find_by_date(self, uid: str, date: str) -> Reflection | None:
        """date が一致するリフレクションを1件取得"""
        query = self._collection(uid).where("date", "==", date).limit(1)
        with _store_errors("find_by_date"):
            snaps = await query.get()
        for snap in snaps:
            return self._dict_to_reflection(snap.id, uid, snap.to_dict() or {})
        return None

    async def list_by_status(
        self, uid: str, status: AnalysisStatus
    ) -> list[Reflection]:
        """指定ステータスのリフレクション一覧を取得"""
        query = self._collection(uid).where("analysisStatus", "==", status.value)
        with _store_errors("list_by_status"):
            snaps = await query.get()
        return [self._dict_to_reflection(s.id, uid, s.to_dict() or {}) for s in snaps]

    async def save_analysis(
        self, uid: str, reflection_id: str, analysis: ReflectionAnalysis
    ) -> None:
        """解析結果とステータス completed を1回の update で書き込む"""
        with _store_errors("save_analysis"):
            await self._collection(uid).document(reflection_id).update(
                {
                    "dailyInsight": analysis.daily_insight,
                    "primaryEmotion": analysis.primary_emotion,
                    "secondaryEmotion": analysis.secondary_emotion,
                    "emotionalIntensity": analysis.emotional_intensity,
                    "theme": analysis.theme,
                    "analysisStatus": AnalysisStatus.COMPLETED.value,
                }
            )
        logger.info("Saved analysis: uid=%s, reflection_id=%s", uid, reflection_id)

    async def update_status(
        self,
        uid: str,
        reflection_id: str,
        status: AnalysisStatus,
        error_message: str | None = None,
    ) -> None:
        """ステータスを更新"""
        update: dict[str, Any] = {"analysisStatus": status.value}
        if error_message is not None:
            update["analysisError"] = error_message
        with _store_errors("update_status"):
            await self._collection(uid).document(reflection_id).update(update)
        logger.info(
            "Updated status: uid=%s, reflection_id=%s, status=%s",
            uid,
            reflection_id,
            status.value,
        )

    # ── 変換ヘルパー ──────────────────────────────────────────────────────────

    @staticmethod
    def _reflection_to_dict(reflection: Reflection) -> dict:
        data: dict[str, Any] = {
            "date": reflection.date,
            "transcript": reflection.transcript,
            "createdAt": reflection.created_at,
            "analysisStatus": reflection.analysis_status.value,
            "inputType": reflection.input_type.value,
        }
        # 解析前（pending）は解析フィールドを書かない
        optional = {
            "primaryEmotion": reflection.primary_emotion,
            "secondaryEmotion": reflection.secondary_emotion,
            "theme": reflection.theme,
            "emotionalIntensity": reflection.emotional_intensity,
            "dailyInsight": reflection.daily_insight,
            "analysisError": reflection.analysis_error,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    @staticmethod
    def _dict_to_reflection(doc_id: str, uid: str, data: dict) -> Reflection:
        # 旧データ（テキスト入力）は analysisStatus を持たないが解析済み
        default_status = (
            AnalysisStatus.COMPLETED.value
            if data.get("primaryEmotion")
            else AnalysisStatus.PENDING.value
        )
        return Reflection(
            id=doc_id,
            uid=uid,
            date=data.get("date", ""),
            transcript=data.get("transcript") or "",
            created_at=_as_utc(data.get("createdAt"))
            or datetime.datetime.fromtimestamp(0, tz=datetime.UTC),
            input_type=InputType(data.get("inputType") or InputType.TEXT.value),
            analysis_status=AnalysisStatus(data.get("analysisStatus") or default_status),
            primary_emotion=data.get("primaryEmotion"),
            secondary_emotion=data.get("secondaryEmotion"),
            theme=data.get("theme"),
            emotional_intensity=data.get("emotionalIntensity"),
            daily_insight=data.get("dailyInsight"),
            analysis_error=data.get("analysisError"),
        )


class FirestoreUserRepository(UserRepository):
    """
    Firestore を使った UserRepository 実装。

    users/{uid} のプロファイル・週次キャッシュ・API 利用状況フィールドを管理する。
    """

    def __init__(self, db: firestore.AsyncClient) -> None:
        self._db = db

    def _user_ref(self, uid: str) -> firestore.AsyncDocumentReference:
        return self._db.collection(_USERS).document(uid)

    async def _get_user_data(self, uid: str) -> dict:
        with _store_errors("get_user"):
            snap = await self._user_ref(uid).get()
        if not snap.exists:
            return {}
        return snap.to_dict() or {}

    async def _merge(self, uid: str, data: dict, operation: str) -> None:
        with _store_errors(operation):
            await self._user_ref(uid).set(data, merge=True)

    async def upsert_profile(
        self, uid: str, name: str, email: str, last_active: datetime.datetime
    ) -> None:
        """name/email/lastActive をマージ書き込み"""
        await self._merge(
            uid,
            {"name": name, "email": email, "lastActive": last_active},
            "upsert_profile",
        )

    async def get_weekly_cache(self, uid: str) -> WeeklyCacheEntry | None:
        """週次解析キャッシュを取得。未設定・破損時は None"""
        cache = (await self._get_user_data(uid)).get(_WEEKLY_CACHE)
        if not cache:
            return None
        try:
            return WeeklyCacheEntry(
                timestamp=_as_utc(cache["timestamp"]),
                reflection_count=int(cache.get("reflectionCount", 0)),
                analysis=WeeklyAnalysis.from_dict(cache.get("analysis") or {}),
            )
        except (
            AttributeError,
            KeyError,
            TypeError,
            ValueError,
            MalformedResponseError,
        ):
            # 型の壊れたキャッシュはミス扱いにして再計算させる
            logger.warning("Ignoring malformed weekly cache: uid=%s", uid)
            return None

    async def save_weekly_cache(self, uid: str, entry: WeeklyCacheEntry) -> None:
        """週次解析キャッシュを上書き保存"""
        await self._merge(
            uid,
            {
                _WEEKLY_CACHE: {
                    "timestamp": entry.timestamp,
                    "reflectionCount": entry.reflection_count,
                    "analysis": entry.analysis.to_dict(),
                }
            },
            "save_weekly_cache",
        )
        logger.info(
            "Saved weekly cache: uid=%s, reflection_count=%d",
            uid,
            entry.reflection_count,
        )

    async def clear_weekly_cache(self, uid: str) -> None:
        """週次解析キャッシュを null にする"""
        await self._merge(uid, {_WEEKLY_CACHE: None}, "clear_weekly_cache")
        logger.info("Cleared weekly cache: uid=%s", uid)

    async def get_usage(self, uid: str) -> UsageStats:
        """API 利用状況を取得"""
        data = await self._get_user_data(uid)
        usage = data.get("apiUsage") or {}
        return UsageStats(
            request_count=int(data.get("apiRequestCount") or 0),
            logs=list(data.get("apiLogs") or []),
            by_date=dict(usage.get("byDate") or {}),
            by_type=dict(usage.get("byType") or {}),
            last_updated=_as_utc(usage.get("lastUpdated")),
        )

    async def save_usage(self, uid: str, stats: UsageStats) -> None:
        """API 利用状況をマージ書き込み"""
        await self._merge(
            uid,
            {
                "apiRequestCount": stats.request_count,
                "apiLogs": stats.logs,
                "apiUsage": {
                    "byDate": stats.by_date,
                    "byType": stats.by_type,
                    "lastUpdated": stats.last_updated,
                },
            },
            "save_usage",
        )
