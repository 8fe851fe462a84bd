"""ロギング設定モジュール

MindMirror API と reconcile-stuck CLI の共通ログ設定。
Cloud Run 上では Cloud Logging が解釈できる JSON 行、ローカルではテキスト形式で出力する。

JSON 行には `service` を付け、API（Cloud Run Service）と CLI（Cloud Run Job）のログを
同じプロジェクト内で区別できるようにする。バックグラウンド解析や週次キャッシュのログは
uid ごとに追えるよう、必要なら `extra_fields` で構造化フィールドを足す。

使い方:
    from mindmirror.logging_config import setup_logging
    setup_logging()

    logger.info("Weekly analysis cached", extra={"extra_fields": {"uid": uid}})

環境変数:
    LOG_LEVEL: ログレベル (DEBUG, INFO, WARNING, ERROR, CRITICAL) デフォルト: INFO
    LOG_FORMAT: "json" でローカルでも JSON 行を出力する
    K_SERVICE / CLOUD_RUN_JOB: Cloud Run 環境判定。値は `service` フィールドにも使う
"""

import json
import logging
import os

DEFAULT_SERVICE_NAME = "mindmirror-api"
_SEVERITIES = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Firestore / Vertex AI クライアントの gRPC・HTTP ログは DEBUG だと量が多すぎる
_NOISY_LOGGERS = ("google", "grpc", "urllib3", "httpcore")


class CloudLoggingFormatter(logging.Formatter):
    """Cloud Logging互換のJSONフォーマッタ

    `severity` をトップレベルに置くと Cloud Logging 側のログレベルにマッピングされる。
    `extra_fields` 属性（dict）があればそのままマージする。
    uid やリフレクションID のような値は文字列化して出力する。
    """

    def __init__(self, service: str = DEFAULT_SERVICE_NAME) -> None:
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict = {
            "severity": record.levelname if record.levelname in _SEVERITIES else "DEFAULT",
            "message": record.getMessage(),
            "logger": record.name,
            "service": self._service,
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
        }
        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = self.formatException(record.exc_info)
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_entry.update(extra_fields)
        # datetime などはそのまま文字列にする
        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging() -> None:
    """ログ設定を初期化する（API 起動時と CLI 実行時に呼ぶ。複数回呼んでもハンドラは1つ）"""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    cloud_service = os.getenv("K_SERVICE") or os.getenv("CLOUD_RUN_JOB")
    use_json = bool(cloud_service) or os.getenv("LOG_FORMAT", "").lower() == "json"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    handler = logging.StreamHandler()
    if use_json:
        handler.setFormatter(CloudLoggingFormatter(cloud_service or DEFAULT_SERVICE_NAME))
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root_logger.level, logging.WARNING))
