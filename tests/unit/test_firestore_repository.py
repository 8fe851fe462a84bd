"""Firestore リポジトリのユニットテスト

Firestore 非同期クライアントをモックし、ドキュメントとドメインモデルの変換、
エラー変換、マージ書き込みの内容を検証する。
"""

import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.api_core import exceptions as gexc
from mindmirror.adapters.firestore_repository import (
    FirestoreReflectionRepository,
    FirestoreUserRepository,
)
from mindmirror.domain.errors import ReflectionConflictError, StoreUnavailableError
from mindmirror.domain.models import (
    AnalysisStatus,
    InputType,
    UsageStats,
    WeeklyCacheEntry,
)

_NOW = datetime.datetime(2026, 1, 18, 11, 30, 45, tzinfo=datetime.UTC)


def _make_snap(doc_id: str, data: dict | None) -> MagicMock:
    """Firestore DocumentSnapshot のモックを生成する"""
    snap = MagicMock()
    snap.id = doc_id
    snap.exists = data is not None
    snap.to_dict.return_value = data
    return snap


def _reflections_collection(db: MagicMock) -> MagicMock:
    """users/{uid}/reflections のモック（MagicMock は引数に関係なく同じ子を返す）"""
    return db.collection.return_value.document.return_value.collection.return_value


def _user_ref(db: MagicMock) -> MagicMock:
    return db.collection.return_value.document.return_value


class TestReflectionCreate:
    """create() のテスト"""

    @pytest.mark.asyncio
    async def test_pending_reflection_omits_analysis_fields(self, reflection_factory):
        # Arrange
        db = MagicMock()
        doc_ref = _reflections_collection(db).document.return_value
        doc_ref.create = AsyncMock()
        repo = FirestoreReflectionRepository(db)
        reflection = reflection_factory(
            0, primary_emotion=None, theme=None, status=AnalysisStatus.PENDING
        )

        # Act
        await repo.create(reflection)

        # Assert
        written = doc_ref.create.call_args.args[0]
        assert written == {
            "date": reflection.date,
            "transcript": reflection.transcript,
            "createdAt": reflection.created_at,
            "analysisStatus": "pending",
            "inputType": "voice",
        }
        _reflections_collection(db).document.assert_called_with(reflection.id)

    @pytest.mark.asyncio
    async def test_existing_id_raises_conflict(self, reflection_factory):
        db = MagicMock()
        doc_ref = _reflections_collection(db).document.return_value
        doc_ref.create = AsyncMock(side_effect=gexc.AlreadyExists("exists"))
        repo = FirestoreReflectionRepository(db)

        with pytest.raises(ReflectionConflictError):
            await repo.create(reflection_factory(0))

    @pytest.mark.asyncio
    async def test_api_error_raises_store_unavailable(self, reflection_factory):
        db = MagicMock()
        doc_ref = _reflections_collection(db).document.return_value
        doc_ref.create = AsyncMock(side_effect=gexc.ServiceUnavailable("down"))
        repo = FirestoreReflectionRepository(db)

        with pytest.raises(StoreUnavailableError):
            await repo.create(reflection_factory(0))


class TestReflectionRead:
    """読み取りと変換のテスト"""

    @pytest.mark.asyncio
    async def test_get_converts_document(self):
        db = MagicMock()
        _reflections_collection(db).document.return_value.get = AsyncMock(
            return_value=_make_snap(
                "2026-01-18_11-30-45",
                {
                    "date": "2026-01-18",
                    "transcript": "hello",
                    "createdAt": _NOW,
                    "analysisStatus": "failed",
                    "inputType": "voice",
                    "analysisError": "bad json",
                },
            )
        )
        repo = FirestoreReflectionRepository(db)

        reflection = await repo.get("user-1", "2026-01-18_11-30-45")

        assert reflection.id == "2026-01-18_11-30-45"
        assert reflection.uid == "user-1"
        assert reflection.analysis_status == AnalysisStatus.FAILED
        assert reflection.analysis_error == "bad json"
        assert reflection.input_type == InputType.VOICE

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self):
        db = MagicMock()
        _reflections_collection(db).document.return_value.get = AsyncMock(
            return_value=_make_snap("x", None)
        )
        repo = FirestoreReflectionRepository(db)

        assert await repo.get("user-1", "x") is None

    @pytest.mark.asyncio
    async def test_legacy_document_without_status(self):
        """analysisStatus の無い旧データは解析済みなら completed、ミリ秒時刻も読める"""
        db = MagicMock()
        query = _reflections_collection(db).order_by.return_value.limit.return_value
        query.get = AsyncMock(
            return_value=[
                _make_snap(
                    "legacy",
                    {
                        "date": "2025-12-01",
                        "transcript": "old entry",
                        "createdAt": 1764547200000,
                        "primaryEmotion": "calm",
                    },
                )
            ]
        )
        repo = FirestoreReflectionRepository(db)

        reflections = await repo.list_recent("user-1", 7)

        assert len(reflections) == 1
        legacy = reflections[0]
        assert legacy.analysis_status == AnalysisStatus.COMPLETED
        assert legacy.input_type == InputType.TEXT
        assert legacy.created_at == datetime.datetime(2025, 12, 1, tzinfo=datetime.UTC)
        _reflections_collection(db).order_by.return_value.limit.assert_called_once_with(7)

    @pytest.mark.asyncio
    async def test_naive_timestamp_is_treated_as_utc(self):
        db = MagicMock()
        query = _reflections_collection(db).where.return_value.limit.return_value
        query.get = AsyncMock(
            return_value=[
                _make_snap(
                    "r1",
                    {"date": "2026-01-18", "createdAt": datetime.datetime(2026, 1, 18, 9, 0)},
                )
            ]
        )
        repo = FirestoreReflectionRepository(db)

        reflection = await repo.find_by_date("user-1", "2026-01-18")

        assert reflection.created_at.tzinfo is datetime.UTC
        assert reflection.analysis_status == AnalysisStatus.PENDING
        _reflections_collection(db).where.assert_called_once_with("date", "==", "2026-01-18")

    @pytest.mark.asyncio
    async def test_find_by_date_without_match(self):
        db = MagicMock()
        query = _reflections_collection(db).where.return_value.limit.return_value
        query.get = AsyncMock(return_value=[])
        repo = FirestoreReflectionRepository(db)

        assert await repo.find_by_date("user-1", "2026-01-18") is None

    @pytest.mark.asyncio
    async def test_read_error_raises_store_unavailable(self):
        db = MagicMock()
        _reflections_collection(db).document.return_value.get = AsyncMock(
            side_effect=gexc.DeadlineExceeded("slow")
        )
        repo = FirestoreReflectionRepository(db)

        with pytest.raises(StoreUnavailableError):
            await repo.get("user-1", "x")


class TestReflectionUpdate:
    @pytest.mark.asyncio
    async def test_save_analysis_writes_fields_and_status_together(
        self, sample_reflection_analysis
    ):
        """解析フィールドとステータスは1回の update で書き込まれる"""
        db = MagicMock()
        doc_ref = _reflections_collection(db).document.return_value
        doc_ref.update = AsyncMock()
        repo = FirestoreReflectionRepository(db)

        await repo.save_analysis("user-1", "r1", sample_reflection_analysis)

        doc_ref.update.assert_awaited_once()
        written = doc_ref.update.call_args.args[0]
        assert written["analysisStatus"] == "completed"
        assert written["primaryEmotion"] == "anxious"
        assert written["emotionalIntensity"] == "high"
        assert set(written) == {
            "dailyInsight",
            "primaryEmotion",
            "secondaryEmotion",
            "emotionalIntensity",
            "theme",
            "analysisStatus",
        }

    @pytest.mark.asyncio
    async def test_update_status_with_error(self):
        db = MagicMock()
        doc_ref = _reflections_collection(db).document.return_value
        doc_ref.update = AsyncMock()
        repo = FirestoreReflectionRepository(db)

        await repo.update_status("user-1", "r1", AnalysisStatus.FAILED, error_message="boom")

        doc_ref.update.assert_awaited_once_with(
            {"analysisStatus": "failed", "analysisError": "boom"}
        )

    @pytest.mark.asyncio
    async def test_list_by_status_filters_on_status_value(self):
        db = MagicMock()
        _reflections_collection(db).where.return_value.get = AsyncMock(return_value=[])
        repo = FirestoreReflectionRepository(db)

        await repo.list_by_status("user-1", AnalysisStatus.PENDING)

        _reflections_collection(db).where.assert_called_once_with(
            "analysisStatus", "==", "pending"
        )


class TestUserRepository:
    """FirestoreUserRepository のテスト"""

    @pytest.mark.asyncio
    async def test_upsert_profile_merges(self):
        db = MagicMock()
        user_ref = _user_ref(db)
        user_ref.set = AsyncMock()
        repo = FirestoreUserRepository(db)

        await repo.upsert_profile("user-1", "Anonymous", "", _NOW)

        user_ref.set.assert_awaited_once_with(
            {"name": "Anonymous", "email": "", "lastActive": _NOW}, merge=True
        )

    @pytest.mark.asyncio
    async def test_weekly_cache_round_trip_shape(self, sample_weekly_analysis):
        """保存した形式のキャッシュをそのまま読み戻せる"""
        db = MagicMock()
        user_ref = _user_ref(db)
        user_ref.set = AsyncMock()
        repo = FirestoreUserRepository(db)
        entry = WeeklyCacheEntry(
            timestamp=_NOW, reflection_count=5, analysis=sample_weekly_analysis
        )

        await repo.save_weekly_cache("user-1", entry)
        written = user_ref.set.call_args.args[0]
        user_ref.get = AsyncMock(return_value=_make_snap("user-1", written))

        assert await repo.get_weekly_cache("user-1") == entry
        assert user_ref.set.call_args.kwargs == {"merge": True}

    @pytest.mark.asyncio
    async def test_legacy_cache_with_millisecond_timestamp(self):
        db = MagicMock()
        _user_ref(db).get = AsyncMock(
            return_value=_make_snap(
                "user-1",
                {
                    "weeklyAnalysisCache": {
                        "timestamp": 1768735845000,
                        "reflectionCount": 4,
                        "analysis": {"dominantEmotions": ["calm"]},
                    }
                },
            )
        )
        repo = FirestoreUserRepository(db)

        entry = await repo.get_weekly_cache("user-1")

        assert entry.timestamp == _NOW
        assert entry.reflection_count == 4
        assert entry.analysis.dominant_emotions == ["calm"]
        assert entry.analysis.dominant_themes == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "data",
        [
            None,
            {},
            {"weeklyAnalysisCache": None},
            {"weeklyAnalysisCache": {"reflectionCount": 3}},
            {
                "weeklyAnalysisCache": {
                    "timestamp": _NOW,
                    "reflectionCount": 3,
                    "analysis": {"dominantEmotions": [{"emotion": "calm"}]},
                }
            },
            {
                "weeklyAnalysisCache": {
                    "timestamp": _NOW,
                    "reflectionCount": 3,
                    "analysis": {"emotionalPattern": {"text": "p"}},
                }
            },
            {
                "weeklyAnalysisCache": {
                    "timestamp": _NOW,
                    "reflectionCount": 3,
                    "analysis": "not an object",
                }
            },
        ],
    )
    async def test_missing_or_malformed_cache_is_none(self, data):
        db = MagicMock()
        _user_ref(db).get = AsyncMock(return_value=_make_snap("user-1", data))
        repo = FirestoreUserRepository(db)

        assert await repo.get_weekly_cache("user-1") is None

    @pytest.mark.asyncio
    async def test_clear_weekly_cache_writes_null(self):
        db = MagicMock()
        user_ref = _user_ref(db)
        user_ref.set = AsyncMock()
        repo = FirestoreUserRepository(db)

        await repo.clear_weekly_cache("user-1")

        user_ref.set.assert_awaited_once_with({"weeklyAnalysisCache": None}, merge=True)

    @pytest.mark.asyncio
    async def test_usage_of_unknown_user_is_zero(self):
        db = MagicMock()
        _user_ref(db).get = AsyncMock(return_value=_make_snap("user-1", None))
        repo = FirestoreUserRepository(db)

        assert await repo.get_usage("user-1") == UsageStats()

    @pytest.mark.asyncio
    async def test_save_usage_layout(self):
        db = MagicMock()
        user_ref = _user_ref(db)
        user_ref.set = AsyncMock()
        repo = FirestoreUserRepository(db)
        stats = UsageStats(
            request_count=2,
            logs=[{"timestamp": 1, "operation": "text-analysis", "details": ""}],
            by_date={"2026-01-18": 2},
            by_type={"text": 2},
            last_updated=_NOW,
        )

        await repo.save_usage("user-1", stats)

        user_ref.set.assert_awaited_once_with(
            {
                "apiRequestCount": 2,
                "apiLogs": stats.logs,
                "apiUsage": {
                    "byDate": {"2026-01-18": 2},
                    "byType": {"text": 2},
                    "lastUpdated": _NOW,
                },
            },
            merge=True,
        )

    @pytest.mark.asyncio
    async def test_write_error_raises_store_unavailable(self):
        db = MagicMock()
        _user_ref(db).set = AsyncMock(side_effect=gexc.ServiceUnavailable("down"))
        repo = FirestoreUserRepository(db)

        with pytest.raises(StoreUnavailableError):
            await repo.clear_weekly_cache("user-1")
