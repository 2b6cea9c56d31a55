"""プロキシコア（外部プロセス）のコントロール API 操作モジュール.

処理フロー:
  1. 全出口に遅延計測を並列で投げ、全件の完了を待つ
  2. 直近の遅延が 0 より大きい出口だけを候補にする
  3. 候補からランダムに1つ選び、GLOBAL を切り替える
"""

from __future__ import annotations

import logging
import random
import socket
import time
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import quote

import requests

from amz_worker import db
from amz_worker.config import (
    DEFAULT_HEADERS,
    INGRESS_CONNECT_TIMEOUT,
    NON_EGRESS_TYPES,
    PROBE_TIMEOUT_MS,
    PROBE_URL,
    PROXY_API_URL,
    PROXY_CONFIG_PATH,
    PROXY_CONVERTER_URL,
    PROXY_INGRESS_HOST,
    PROXY_INGRESS_PORT,
    PROXY_SETTLE_SECONDS,
    REQUEST_TIMEOUT,
)
from amz_worker.errors import ProxyUnavailableError
from amz_worker.models import ProxyIdentity

logger = logging.getLogger(__name__)

# プロセス起動ごとに OS の乱数でシードされる
_rng = random.Random()


class ProxyCore:
    """コントロール API のクライアント."""

    def __init__(
        self,
        api_url: str = PROXY_API_URL,
        session: requests.Session | None = None,
        rng: random.Random | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.rng = rng or _rng

    def proxies(self) -> list[ProxyIdentity]:
        """登録済みの出口一覧（グループ・組み込みは除く）を取得する.

        Raises:
            ProxyUnavailableError: コントロール API に到達できない場合
        """
        try:
            resp = self.session.get(f"{self.api_url}/proxies", timeout=REQUEST_TIMEOUT)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise ProxyUnavailableError(f"proxy control API unreachable: {e}") from e

        identities = [
            ProxyIdentity.from_api(p) for p in (data.get("proxies") or {}).values()
        ]
        return [p for p in identities if p.type not in NON_EGRESS_TYPES]

    def probe(self, name: str) -> int | None:
        """1つの出口の遅延を計測させる。失敗時は None（例外は投げない）."""
        url = f"{self.api_url}/proxies/{quote(name, safe='')}/delay"
        params = {"timeout": PROBE_TIMEOUT_MS, "url": PROBE_URL}
        try:
            resp = self.session.get(url, params=params, timeout=PROBE_TIMEOUT_MS / 1000 + 1)
            if resp.status_code != 200:
                return None
            body = resp.json()
            if not isinstance(body, dict):
                return None
            return body.get("delay")
        except (requests.RequestException, ValueError) as e:
            logger.debug("遅延計測失敗: name=%s, error=%s", name, e)
            return None

    def probe_all(self, identities: list[ProxyIdentity] | None = None) -> dict[str, int | None]:
        """全出口を並列で計測し、全件の完了を待つ.

        遅延履歴はプロキシコア側で更新される。戻り値は確認用。
        """
        if identities is None:
            identities = self.proxies()
        if not identities:
            return {}

        names = [p.name for p in identities]
        with ThreadPoolExecutor(max_workers=len(names)) as executor:
            delays = list(executor.map(self.probe, names))

        results = dict(zip(names, delays))
        ok = sum(1 for d in delays if d)
        logger.info("遅延計測完了: %d / %d 件が応答", ok, len(names))
        return results

    def effective_proxies(self) -> list[ProxyIdentity]:
        return [p for p in self.proxies() if p.usable]

    def switchover(self, name: str) -> None:
        """GLOBAL の出口を切り替える.

        Raises:
            ProxyUnavailableError: 切り替えに失敗した場合
        """
        try:
            resp = self.session.put(
                f"{self.api_url}/proxies/GLOBAL",
                json={"name": name},
                timeout=REQUEST_TIMEOUT,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise ProxyUnavailableError(f"switch to {name} failed: {e}") from e

    def random_select(self) -> str:
        """利用可能な出口からランダムに1つ選び、切り替える.

        Returns:
            選択した出口名

        Raises:
            ProxyUnavailableError: 利用可能な出口がない場合
        """
        candidates = self.effective_proxies()
        if not candidates:
            raise ProxyUnavailableError("no proxy with a positive delay sample")

        name = self.rng.choice(candidates).name
        self.switchover(name)
        logger.info("出口を切り替え: %s (候補 %d 件)", name, len(candidates))
        return name

    def activate(self) -> str:
        """起動直後の待機 → 全件計測 → ランダム選択."""
        time.sleep(PROXY_SETTLE_SECONDS)
        self.probe_all()
        return self.random_select()

    def reload_config(self, path: str) -> None:
        """書き換えた設定ファイルを稼働中のプロキシコアに読み込ませる."""
        resp = self.session.put(
            f"{self.api_url}/configs",
            params={"force": "true"},
            json={"path": path},
            timeout=REQUEST_TIMEOUT,
        )
        resp.raise_for_status()
        logger.info("プロキシ設定を再読み込み: %s", path)


def refresh_proxy_config(converter_url: str = PROXY_CONVERTER_URL, path=PROXY_CONFIG_PATH):
    """設定ストアの購読設定を変換サービスに通し、設定ファイルに書き出す.

    Returns:
        書き出したファイルのパス

    Raises:
        requests.RequestException: 変換サービスへのリクエストが失敗した場合
    """
    subscription = db.get_config(db.CONFIG_CLASH)
    resp = requests.get(
        f"{converter_url.rstrip('/')}/sub",
        params={"target": "clash", "url": subscription},
        timeout=REQUEST_TIMEOUT,
    )
    resp.raise_for_status()
    if resp.status_code != 200:
        raise requests.HTTPError(
            f"converter returned {resp.status_code}", response=resp,
        )

    path.write_bytes(resp.content)
    logger.info("プロキシ設定ファイルを更新: %s", path)
    return path


def ingress_reachable(
    host: str = PROXY_INGRESS_HOST,
    port: int = PROXY_INGRESS_PORT,
    timeout: float = INGRESS_CONNECT_TIMEOUT,
) -> bool:
    """ローカルの入口ポートに TCP 接続できるか確認する."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as e:
        logger.error("プロキシ入口 %s:%d に接続できません: %s", host, port, e)
        return False


def create_client(
    host: str = PROXY_INGRESS_HOST, port: int = PROXY_INGRESS_PORT
) -> requests.Session | None:
    """プロキシ経由のセッションを作る。入口に到達できなければ None."""
    if not ingress_reachable(host, port):
        return None

    proxy_url = f"http://{host}:{port}"
    session = create_direct_client()
    session.proxies.update({"http": proxy_url, "https": proxy_url})
    logger.info("プロキシ入口 %s に接続", proxy_url)
    return session


def create_direct_client() -> requests.Session:
    """プロキシを通さないセッションを作る."""
    session = requests.Session()
    session.headers.update(DEFAULT_HEADERS)
    return session
