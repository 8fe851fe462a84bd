"""FastAPI 依存性注入

Firebase Admin / Firestore 非同期クライアント / Vertex AI モデルの初期化と、
サービスの組み立てを担当する。各ルートは Depends() でこのモジュールの関数を呼び出して
サービスインスタンスを受け取る。テストでは app.dependency_overrides で差し替える。
"""

from __future__ import annotations

import datetime
import functools
import logging

import firebase_admin
import vertexai
from fastapi import Depends
from firebase_admin import credentials as fb_creds
from firebase_admin import firestore_async
from google.cloud import firestore
from vertexai.generative_models import GenerativeModel

from mindmirror.adapters.firestore_repository import (
    FirestoreReflectionRepository,
    FirestoreUserRepository,
)
from mindmirror.adapters.gemini import GeminiReflectionAnalyzer
from mindmirror.config import AppConfig
from mindmirror.domain.ports import (
    ReflectionAnalyzer,
    ReflectionRepository,
    UserRepository,
)
from mindmirror.services.reflection_lifecycle import ReflectionLifecycle
from mindmirror.services.usage_recorder import UsageRecorder
from mindmirror.services.weekly_cache import WeeklyCacheManager

logger = logging.getLogger(__name__)


@functools.lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """AppConfig を返す依存関数（プロセス内で1回だけ環境変数を読む）"""
    return AppConfig.from_env()


# ── Firebase Admin 初期化（プロセス内で1回のみ） ────────────────────────────────

_firebase_app: firebase_admin.App | None = None


def _get_firebase_app() -> firebase_admin.App:
    global _firebase_app
    if _firebase_app is None:
        try:
            _firebase_app = firebase_admin.get_app()
        except ValueError:
            cred = fb_creds.ApplicationDefault()
            project_id = get_config().project_id
            _firebase_app = firebase_admin.initialize_app(
                cred,
                options={"projectId": project_id} if project_id else {},
            )
            logger.info("Firebase Admin initialized project=%s", project_id)
    return _firebase_app


# ── Firestore クライアント（シングルトン） ──────────────────────────────────────

_firestore_client: firestore.AsyncClient | None = None


def _get_firestore_client() -> firestore.AsyncClient:
    global _firestore_client
    if _firestore_client is None:
        _firestore_client = firestore_async.client(_get_firebase_app())
        logger.info("Firestore async client initialized")
    return _firestore_client


# ── リポジトリ依存 ─────────────────────────────────────────────────────────────


def get_reflection_repo() -> ReflectionRepository:
    """ReflectionRepository を返す依存関数"""
    return FirestoreReflectionRepository(_get_firestore_client())


def get_user_repo() -> UserRepository:
    """UserRepository を返す依存関数"""
    return FirestoreUserRepository(_get_firestore_client())


# ── Gemini（シングルトン） ──────────────────────────────────────────────────────

_usage_recorder: UsageRecorder | None = None
_analyzer: GeminiReflectionAnalyzer | None = None


def get_usage_recorder() -> UsageRecorder:
    """UsageRecorder を返す依存関数（未完了タスクを追跡するためシングルトン）"""
    global _usage_recorder
    if _usage_recorder is None:
        _usage_recorder = UsageRecorder(FirestoreUserRepository(_get_firestore_client()))
    return _usage_recorder


def get_analyzer() -> ReflectionAnalyzer:
    """ReflectionAnalyzer を返す依存関数"""
    global _analyzer
    if _analyzer is None:
        config = get_config()
        vertexai.init(
            project=config.project_id or None,
            location=config.vertex_ai_location,
        )
        _analyzer = GeminiReflectionAnalyzer(
            model=GenerativeModel(config.gemini_model),
            usage_recorder=get_usage_recorder(),
            temperature=config.gemini_temperature,
            max_output_tokens=config.gemini_max_output_tokens,
        )
        logger.info("Gemini analyzer initialized model=%s", config.gemini_model)
    return _analyzer


# ── サービス依存 ─────────────────────────────────────────────────────────────


def get_weekly_cache(
    reflection_repo: ReflectionRepository = Depends(get_reflection_repo),
    user_repo: UserRepository = Depends(get_user_repo),
    analyzer: ReflectionAnalyzer = Depends(get_analyzer),
    config: AppConfig = Depends(get_config),
) -> WeeklyCacheManager:
    """WeeklyCacheManager を返す依存関数"""
    return WeeklyCacheManager(
        reflection_repo=reflection_repo,
        user_repo=user_repo,
        analyzer=analyzer,
        timeout_seconds=config.weekly_analysis_timeout_seconds,
        ttl=datetime.timedelta(hours=config.weekly_cache_ttl_hours),
    )


def get_lifecycle(
    reflection_repo: ReflectionRepository = Depends(get_reflection_repo),
    user_repo: UserRepository = Depends(get_user_repo),
    analyzer: ReflectionAnalyzer = Depends(get_analyzer),
    weekly_cache: WeeklyCacheManager = Depends(get_weekly_cache),
) -> ReflectionLifecycle:
    """ReflectionLifecycle を返す依存関数"""
    return ReflectionLifecycle(
        reflection_repo=reflection_repo,
        user_repo=user_repo,
        analyzer=analyzer,
        weekly_cache=weekly_cache,
    )


async def drain_background_work() -> None:
    """未完了の利用状況記録タスクを待つ（シャットダウン時）"""
    if _usage_recorder is not None:
        await _usage_recorder.drain()
