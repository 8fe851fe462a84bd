"""FastAPI アプリケーション

MindMirror リフレクション解析 API。Cloud Run Service として動作する。

エンドポイント一覧:
  POST /api/save-transcript
  POST /api/analyze-daily
  POST /api/analyze-weekly
  GET  /api/today-reflection/{userId}
  GET  /api/reflections/{userId}?limit=N
  GET  /api/reflection/{userId}/{date}
  GET  /api/reflection-by-id/{userId}/{docId}
  GET  /api/user-stats/{userId}
  GET  /api/health

全レスポンスは JSON で `success` を含む。失敗時は 4xx/5xx と { success: false, error }。
"""

from __future__ import annotations

import datetime
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from mindmirror.domain.errors import (
    AnalysisError,
    StoreUnavailableError,
    ValidationError,
)
from mindmirror.entrypoints.api import deps
from mindmirror.entrypoints.api.routes import reflections, stats, weekly
from mindmirror.logging_config import setup_logging

# ── ロギング初期化 ───────────────────────────────────────────────────────────
setup_logging()
logger = logging.getLogger(__name__)

_STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """終了時は未完了の利用状況記録タスクを待ってから抜ける"""
    yield
    await deps.drain_background_work()
    logger.info("MindMirror API stopped")


# ── FastAPI アプリ ───────────────────────────────────────────────────────────
app = FastAPI(
    title="MindMirror API",
    description="感情ジャーナル MindMirror のリフレクション解析 API",
    version="1.0.0",
    lifespan=lifespan,
)


def _error_response(status_code: int, error: str, exc: Exception | None = None) -> JSONResponse:
    """{ success: false, error } を返す。development では details に例外メッセージを含める"""
    content: dict = {"success": False, "error": error}
    if exc is not None and deps.get_config().is_development:
        content["details"] = str(exc)
    return JSONResponse(status_code=status_code, content=content)


# ── ドメイン例外ハンドラー ─────────────────────────────────────────────────────


@app.exception_handler(ValidationError)
async def _handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return _error_response(400, str(exc))


@app.exception_handler(RequestValidationError)
async def _handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.info("Invalid request: %s %s - %s", request.method, request.url.path, exc.errors())
    return _error_response(400, "Invalid request parameters")


@app.exception_handler(AnalysisError)
async def _handle_analysis_error(request: Request, exc: AnalysisError) -> JSONResponse:
    logger.error(
        "Analysis error: %s %s - %s", request.method, request.url.path, exc, exc_info=exc
    )
    return _error_response(500, "Failed to analyze reflection", exc)


@app.exception_handler(StoreUnavailableError)
async def _handle_store_error(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.error(
        "Store error: %s %s - %s", request.method, request.url.path, exc, exc_info=exc
    )
    return _error_response(500, "Internal server error", exc)


@app.exception_handler(StarletteHTTPException)
async def _handle_http_exception(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    error = "Endpoint not found" if exc.status_code == 404 else str(exc.detail)
    return _error_response(exc.status_code, error)


# ── グローバル例外ミドルウェア ──────────────────────────────────────────────────
# 【登録順の注意】
#   add_middleware は後から登録したものが外側になる。
#   このミドルウェアを CORSMiddleware より先に登録して内側に置くことで、
#   500 レスポンスにも CORS ヘッダーが付与される。
#
# スタック: ServerErrorMiddleware → CORSMiddleware → リクエストログ → このMW → ExceptionMiddleware → Routes


@app.middleware("http")
async def _catch_unhandled_exceptions(
    request: Request, call_next: Callable[[Request], Response]
) -> Response:
    try:
        return await call_next(request)
    except Exception as exc:
        logger.error(
            "Unhandled exception: %s %s - %s",
            request.method,
            request.url.path,
            exc,
            exc_info=True,
        )
        return _error_response(500, "Internal server error", exc)


@app.middleware("http")
async def _log_requests(
    request: Request, call_next: Callable[[Request], Response]
) -> Response:
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "%s %s -> %d (%.0f ms)",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
    )
    return response


# ── CORS ────────────────────────────────────────────────────────────────────
# CORS_ORIGINS / FRONTEND_URL に加え、localhost は任意のポートを許可する
app.add_middleware(
    CORSMiddleware,
    allow_origins=deps.get_config().cors_origins,
    allow_origin_regex=r"^http://localhost:\d+$",
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# ── ルーター登録 ─────────────────────────────────────────────────────────────
_PREFIX = "/api"

app.include_router(reflections.router, prefix=_PREFIX)
app.include_router(weekly.router, prefix=_PREFIX)
app.include_router(stats.router, prefix=_PREFIX)


@app.get(f"{_PREFIX}/health")
async def health() -> dict:
    """ヘルスチェックエンドポイント（Cloud Run の起動確認用）"""
    return {
        "status": "healthy",
        "service": "MindMirror API",
        "uptime": time.monotonic() - _STARTED_AT,
        "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
    }


logger.info("MindMirror API started")
