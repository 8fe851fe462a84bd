#!/usr/bin/env python3
"""CLI Entrypoint - コマンドラインから実行

使い方:
    python -m mindmirror.entrypoints.cli reconcile-stuck <userId> [--older-than-minutes N]

pending のまま一定時間が経過したリフレクションを stuck に移す。
バックグラウンド解析がプロセス停止などで完了しなかったものを回収する用途。

環境変数:
    LOG_LEVEL: ログレベル (DEBUG, INFO, WARNING, ERROR) デフォルト: INFO
    K_SERVICE / CLOUD_RUN_JOB: Cloud Run 環境では自動設定されJSON形式ログに切替
"""

import argparse
import asyncio
import datetime
import logging
import sys

from mindmirror.entrypoints.api.deps import get_reflection_repo
from mindmirror.logging_config import setup_logging
from mindmirror.services.reflection_lifecycle import STUCK_AFTER, reconcile_stuck


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mindmirror")
    sub = parser.add_subparsers(dest="command", required=True)

    reconcile = sub.add_parser(
        "reconcile-stuck", help="pending のまま放置されたリフレクションを stuck に移す"
    )
    reconcile.add_argument("user_id", help="対象ユーザーID")
    reconcile.add_argument(
        "--older-than-minutes",
        type=int,
        default=int(STUCK_AFTER.total_seconds() // 60),
        help="この分数より古い pending を対象にする",
    )
    return parser


async def _reconcile_stuck(user_id: str, older_than: datetime.timedelta) -> list[str]:
    return await reconcile_stuck(get_reflection_repo(), user_id, older_than=older_than)


def main(argv: list[str] | None = None):
    """メインエントリーポイント"""
    setup_logging()
    logger = logging.getLogger(__name__)

    args = _build_parser().parse_args(argv)

    try:
        if args.older_than_minutes <= 0:
            logger.error("--older-than-minutes must be positive")
            sys.exit(2)

        older_than = datetime.timedelta(minutes=args.older_than_minutes)
        logger.info(
            "Reconciling stuck reflections user=%s older_than=%s", args.user_id, older_than
        )
        moved = asyncio.run(_reconcile_stuck(args.user_id, older_than))

        for reflection_id in moved:
            logger.info("Marked stuck: %s", reflection_id)
        logger.info("Reconcile complete - %d reflection(s) marked stuck", len(moved))

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)

    except Exception:
        logger.exception("Fatal error")
        sys.exit(1)


if __name__ == "__main__":
    main()
