"""Amazon スクレイピングタスク — メインエントリーポイント.

処理フロー:
  1. コマンドライン引数からタスクを組み立て、種別ごとの必須項目を検証
  2. （任意）設定ストアからプロキシ設定を更新
  3. search_products / asin_page はプロキシの計測・選択後にプロキシ経由で取得
  4. keyword_appear はプロキシを通さずに取得
  5. search_products の結果を RESULT_TYPE の保存先に渡す
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from datetime import datetime

import requests

from amz_worker.config import LOG_DIR, LOG_LEVEL
from amz_worker.crawler import asin_page, keyword_appear, search_products
from amz_worker.errors import ProxyUnavailableError, WorkerError
from amz_worker.ledger import RequestLedger
from amz_worker.ledger import ledger as default_ledger
from amz_worker.models import (
    ASIN_PAGE,
    KEYWORD_APPEAR,
    SEARCH_PRODUCTS,
    STATUS_ERROR,
    STATUS_SUCCESS,
    TASK_TYPES,
    Task,
)
from amz_worker.proxy import ProxyCore, create_client, create_direct_client, refresh_proxy_config
from amz_worker.sinks import dispatch_results

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """ロギングの初期設定."""
    log_file = LOG_DIR / f"worker_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def processing_task(
    task: Task,
    proxy_core: ProxyCore | None = None,
    ledger: RequestLedger | None = None,
) -> str:
    """タスク種別に応じて処理し、最終ステータスを返す.

    未知の種別は何もせず空文字を返す。
    """
    ledger = ledger or default_ledger

    if task.task_type == KEYWORD_APPEAR:
        with create_direct_client() as client:
            return keyword_appear(task, client, ledger)

    if task.task_type not in (SEARCH_PRODUCTS, ASIN_PAGE):
        logger.error("未対応のタスク種別: %s", task.task_type)
        return ""

    proxy_core = proxy_core or ProxyCore()
    try:
        proxy_core.activate()
    except ProxyUnavailableError as e:
        logger.error("プロキシを利用できません: task=%s, error=%s", task.task_id, e)
        task.status = STATUS_ERROR
        return task.status

    client = create_client()
    try:
        if task.task_type == ASIN_PAGE:
            return asin_page(task, client, ledger)
        search_products(task, client, ledger)
    finally:
        if client is not None:
            client.close()

    dispatch_results(task)
    return task.status


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Amazon スクレイピングタスクを1件実行する")
    parser.add_argument("--id", dest="task_id", default="", help="タスク ID")
    parser.add_argument("--type", dest="task_type", default="", help="タスク種別: " + ", ".join(TASK_TYPES))
    parser.add_argument("--keyword", default="", help="検索キーワード")
    parser.add_argument("--asin", default="", help="商品 ASIN")
    parser.add_argument("--category", default="", help="カテゴリ（検索の i パラメータ）")
    parser.add_argument("--max", dest="max_page", type=int, default=1, help="最大ページ")
    parser.add_argument("--min", dest="min_page", type=int, default=1, help="開始ページ")
    parser.add_argument("--code", default="US", help="国コード: US, DE, UK, CA, JP, FR, IT, ES, AU, MX, AE")
    parser.add_argument("--zipcode", dest="zip_code", default="", help="配送先の郵便番号")
    parser.add_argument(
        "--refresh-proxy-config", action="store_true",
        help="実行前に設定ストアからプロキシ設定を更新する",
    )
    return parser


def parse_task(argv: list[str] | None = None) -> tuple[Task, argparse.Namespace]:
    """引数を検証してタスクを組み立てる. 不足があれば parser.error で終了（終了コード 2）."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.task_id:
        parser.error("タスク ID (--id) は必須です")
    if args.task_type == SEARCH_PRODUCTS and not args.keyword:
        parser.error("search_products には --keyword が必要です")
    elif args.task_type == ASIN_PAGE and not args.asin:
        parser.error("asin_page には --asin が必要です")
    elif args.task_type == KEYWORD_APPEAR and not (args.keyword and args.asin):
        parser.error("keyword_appear には --keyword と --asin が必要です")
    elif args.task_type not in TASK_TYPES:
        parser.error(f"未対応のタスク種別: {args.task_type}")

    task = Task(
        task_id=args.task_id,
        task_type=args.task_type,
        keyword=args.keyword,
        asin=args.asin,
        category=args.category,
        max_page=args.max_page,
        min_page=args.min_page,
        code=args.code,
        zip_code=args.zip_code,
    )
    return task, args


def run(argv: list[str] | None = None) -> int:
    """メイン処理. 終了コードを返す."""
    task, args = parse_task(argv)
    setup_logging()
    logger.info("=== タスク開始: id=%s, type=%s ===", task.task_id, task.task_type)
    start_time = time.time()

    if args.refresh_proxy_config:
        try:
            path = refresh_proxy_config()
            ProxyCore().reload_config(str(path))
        except (WorkerError, requests.RequestException, OSError) as e:
            logger.error("プロキシ設定の更新に失敗（現在の設定で続行）: %s", e)

    status = processing_task(task)

    snapshot = default_ledger.snapshot()
    elapsed = time.time() - start_time
    logger.info("=== タスク完了: status=%s ===", status)
    logger.info(
        "処理済み: %d 件, 拒否: %d 件, 所要時間: %.1f 秒",
        len(snapshot["handled"]), len(snapshot["rejected"]), elapsed,
    )
    print("Task result:", status)
    return 0 if status == STATUS_SUCCESS else 1


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
