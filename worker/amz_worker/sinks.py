"""タスク結果の保存先.

RESULT_TYPE で保存先を切り替える:
  - "mongo"（既定）: タスク ID 名のコレクションに1商品1ドキュメント
  - "redis": キューにタスク単位の JSON を1件 RPUSH
保存に失敗してもタスクの結果には影響させない。
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Protocol
from urllib.parse import urlsplit, urlunsplit

import redis
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from amz_worker import db
from amz_worker.config import MONGO_DEFAULT_DATABASE, REDIS_QUEUE, RESULT_TYPE, get_amazon_zip_code
from amz_worker.errors import SinkError, WorkerError
from amz_worker.models import SEARCH_PRODUCTS, Product, Task

logger = logging.getLogger(__name__)

MONGO_TIMEOUT_MS = 10_000


class Sink(Protocol):
    def save(self, task: Task) -> None: ...


def to_mongo_document(product: Product, task_id: str, created_at: datetime) -> dict:
    """商品を MongoDB 保存用のドキュメントに変換する（割引前価格 0 は null）."""
    return {
        "position": {
            "page": product.position.page,
            "position": product.position.position,
            "global_position": product.position.global_position,
        },
        "price": {
            "discounted": product.price.discounted,
            "current_price": product.price.current_price,
            "before_price": product.price.before_price or None,
        },
        "reviews": {
            "rating": product.reviews.rating,
            "total_reviews": product.reviews.total_reviews,
        },
        "amazon_prime": product.amazon_prime,
        "title": product.title,
        "created_at": created_at,
        "asin": product.asin,
        "url": product.url,
        "sponsored": product.sponsored,
        "amazon_choice": product.amazon_choice,
        "best_seller": product.best_seller,
        "thumbnail": product.thumbnail,
        "task_id": task_id,
    }


class MongoSink:
    """1商品1ドキュメントで保存する."""

    def __init__(self, uri: str | None = None):
        self.uri = uri

    def save(self, task: Task) -> None:
        if not task.result:
            return

        uri = self.uri or db.get_config(db.CONFIG_MONGO)
        try:
            client = MongoClient(uri, serverSelectionTimeoutMS=MONGO_TIMEOUT_MS)
        except PyMongoError as e:
            raise SinkError(f"invalid mongo uri: {e}") from e

        try:
            client.admin.command("ping")
            database = client.get_default_database(default=MONGO_DEFAULT_DATABASE)
            created_at = datetime.now(timezone.utc)
            documents = [to_mongo_document(p, task.task_id, created_at) for p in task.result]
            database[task.task_id].insert_many(documents)
        except PyMongoError as e:
            raise SinkError(f"mongo write failed: {e}") from e
        finally:
            client.close()

        logger.info("MongoDB に %d 件保存: collection=%s", len(documents), task.task_id)


def normalize_redis_url(url: str) -> str:
    """"redis://<password>@host" 形式をパスワード指定として扱えるよう書き換える."""
    parts = urlsplit(url)
    if parts.username and parts.password is None:
        host = parts.netloc.rsplit("@", 1)[1]
        return urlunsplit(parts._replace(netloc=f":{parts.username}@{host}"))
    return url


def build_redis_envelope(task: Task) -> dict:
    """キューに積むタスク結果の JSON 本体を組み立てる."""
    return {
        "task_id": task.task_id,
        "country": task.code,
        "max_page": task.max_page,
        "category": task.category,
        "task_type": task.task_type,
        "brand": "",
        "asin": task.asin,
        "parse_type": "product_shares" if task.task_type == SEARCH_PRODUCTS else task.task_type,
        "postcode": task.zip_code or get_amazon_zip_code(task.code),
        "task_key": f"ads_assembler:amz_scraper_task_{task.task_id}",
        "queue_key": f"amazon:scraper_execute_tasks:{task.code}",
        "keyword": task.keyword,
        "total_products": len(task.result),
        "result": [p.to_dict() for p in task.result],
    }


class RedisSink:
    """タスク単位の JSON をキューに積む."""

    def __init__(self, url: str | None = None, queue: str = REDIS_QUEUE):
        self.url = url
        self.queue = queue

    def save(self, task: Task) -> None:
        url = normalize_redis_url(self.url or db.get_config(db.CONFIG_REDIS))
        try:
            client = redis.Redis.from_url(url)
        except ValueError as e:
            raise SinkError(f"invalid redis url: {e}") from e

        try:
            client.ping()
            client.rpush(self.queue, json.dumps(build_redis_envelope(task), ensure_ascii=False))
        except redis.RedisError as e:
            raise SinkError(f"redis push failed: {e}") from e
        finally:
            client.close()

        logger.info("Redis キュー %s に %d 件保存", self.queue, len(task.result))


def select_sink(result_type: str = RESULT_TYPE) -> Sink | None:
    """RESULT_TYPE から保存先を選ぶ。未知の値なら None."""
    if result_type == "redis":
        return RedisSink()
    if result_type in ("mongo", ""):
        return MongoSink()
    logger.warning("未知の RESULT_TYPE: %s（保存しません）", result_type)
    return None


def dispatch_results(task: Task, sink: Sink | None = None) -> bool:
    """タスク結果を保存先に渡す. 失敗はログに残すだけでタスクは失敗させない.

    Returns:
        保存できたら True
    """
    sink = sink or select_sink()
    if sink is None:
        return False
    try:
        sink.save(task)
    except WorkerError as e:
        logger.error("結果の保存に失敗: task=%s, error=%s", task.task_id, e)
        return False
    except Exception:
        # 設定ストアへの通信エラーなど
        logger.exception("結果の保存中に予期しないエラー: task=%s", task.task_id)
        return False
    return True
