"""Supabase 設定ストア操作モジュール.

configs テーブル（type, values）から設定値を取得する。
スキーマは CONFIG_SCHEMA で指定し、.schema() で切り替える。
"""

from __future__ import annotations

import logging

import httpx
from supabase import Client, PostgrestAPIError, SupabaseException, create_client

from amz_worker.config import CONFIG_SCHEMA, SUPABASE_SECRET_KEY, SUPABASE_URL
from amz_worker.errors import ConfigNotFoundError, ConfigStoreError

logger = logging.getLogger(__name__)

CONFIG_CLASH = "clash"
CONFIG_MONGO = "mongo"
CONFIG_REDIS = "redis"

_client: Client | None = None


def _get_client() -> Client:
    """Supabase クライアントを初回呼び出し時に生成する."""
    global _client
    if _client is None:
        if not (SUPABASE_URL and SUPABASE_SECRET_KEY):
            raise ConfigStoreError("SUPABASE_URL / SUPABASE_SECRET_KEY is not set")
        try:
            _client = create_client(SUPABASE_URL, SUPABASE_SECRET_KEY)
        except SupabaseException as e:
            raise ConfigStoreError(f"supabase client init failed: {e}") from e
    return _client


def _table(name: str):
    """CONFIG_SCHEMA スキーマのテーブルを参照する."""
    return _get_client().schema(CONFIG_SCHEMA).table(name)


def get_config(config_type: str) -> str:
    """configs テーブルから type に一致する values を取得する.

    Args:
        config_type: "clash" / "mongo" / "redis" など

    Returns:
        values カラムの文字列

    Raises:
        ConfigNotFoundError: 該当行がない、または values が空の場合
        ConfigStoreError: 設定ストアに接続できない、または問い合わせが失敗した場合
    """
    try:
        resp = (
            _table("configs")
            .select("values")
            .eq("type", config_type)
            .limit(1)
            .execute()
        )
    except (PostgrestAPIError, httpx.HTTPError) as e:
        raise ConfigStoreError(f"config store query failed: type={config_type}, error={e}") from e
    rows = resp.data or []
    if not rows or not rows[0].get("values"):
        raise ConfigNotFoundError(f"config not found: type={config_type}")

    logger.debug("設定取得: type=%s", config_type)
    return rows[0]["values"]
