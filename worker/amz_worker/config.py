"""設定モジュール — 環境変数・定数定義."""

import os
from pathlib import Path

from dotenv import load_dotenv

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# --- 設定ストア (Supabase) ---
SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
SUPABASE_SECRET_KEY: str = os.getenv("SUPABASE_SECRET_KEY", "")
CONFIG_SCHEMA: str = os.getenv("CONFIG_SCHEMA", "public")

# --- プロキシコア ---
PROXY_API_URL: str = os.getenv("PROXY_API_URL", "http://127.0.0.1:9091")
PROXY_INGRESS_HOST: str = os.getenv("PROXY_INGRESS_HOST", "127.0.0.1")
PROXY_INGRESS_PORT: int = int(os.getenv("PROXY_INGRESS_PORT", "7890"))
PROXY_CONFIG_PATH = Path(os.getenv("PROXY_CONFIG_PATH", "clash.yaml")).resolve()
PROXY_CONVERTER_URL: str = os.getenv("PROXY_CONVERTER_URL", "")

PROBE_URL = "https://baidu.com"
PROBE_TIMEOUT_MS = 5000
INGRESS_CONNECT_TIMEOUT = 3  # 秒
PROXY_SETTLE_SECONDS = 1.0

# 遅延計測・切替の対象外（グループ・組み込み）
NON_EGRESS_TYPES = frozenset({
    "Selector", "URLTest", "Fallback", "LoadBalance", "Relay",
    "Direct", "Reject", "RejectDrop", "Compatible", "Pass",
})

# --- 結果の保存先 ---
RESULT_TYPE: str = os.getenv("RESULT_TYPE", "")
REDIS_QUEUE: str = os.getenv("REDIS_QUEUE", "amazon:scraper_task_results")
MONGO_DEFAULT_DATABASE: str = os.getenv("MONGO_DEFAULT_DATABASE", "amazon_scraper")

# --- Amazon ---
AMAZON_DOMAINS = {
    "US": "amazon.com",
    "DE": "amazon.de",
    "UK": "amazon.co.uk",
    "CA": "amazon.ca",
    "JP": "amazon.co.jp",
    "FR": "amazon.fr",
    "IT": "amazon.it",
    "ES": "amazon.es",
    "AU": "amazon.com.au",
    "MX": "amazon.com.mx",
}
DEFAULT_DOMAIN = "amazon.com"

AMAZON_ZIP_CODES = {
    "US": "10001",     # ニューヨーク
    "DE": "10115",     # ベルリン
    "UK": "SW1A 1AA",  # ロンドン
    "CA": "M5V 2A8",   # トロント
    "JP": "100-0001",  # 東京
    "FR": "75001",     # パリ
    "IT": "00100",     # ローマ
    "ES": "28001",     # マドリード
    "AU": "2000",      # シドニー
    "MX": "06000",     # メキシコシティ
    "AE": "00000",     # ドバイ
}
DEFAULT_ZIP_CODE = "10001"

# 小数点がカンマの地域
COMMA_DECIMAL_REGIONS = frozenset({"DE", "IT"})

# 検索結果なしを示す文言（英・仏・独・伊・西・中・日）
NO_RESULT_PHRASES = (
    "No results for",
    "Aucun résultat pour",
    "Keine Ergebnisse für",
    "Nessun risultato per",
    "No hay resultados para",
    "没有",
    "の検索に一致する商品はありませんでした",
)

# --- User-Agent ---
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept-Language": "en-US,en;q=0.9",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

# --- リクエスト設定 ---
REQUEST_TIMEOUT = 30  # 秒

# --- 台帳 ---
LEDGER_HISTORY_LIMIT = 10_000

# --- ログ ---
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
LOG_DIR.mkdir(exist_ok=True)


def get_amazon_domain(code: str) -> str:
    """国コードから Amazon ドメインを返す（未知のコードは amazon.com）."""
    return AMAZON_DOMAINS.get(code, DEFAULT_DOMAIN)


def get_amazon_zip_code(code: str) -> str:
    """国コードから既定の郵便番号を返す（未知のコードは 10001）."""
    return AMAZON_ZIP_CODES.get(code, DEFAULT_ZIP_CODE)
