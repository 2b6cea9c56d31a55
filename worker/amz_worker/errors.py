"""ワーカー共通の例外."""


class WorkerError(Exception):
    """全例外の基底クラス."""


class ProxyUnavailableError(WorkerError):
    """利用可能なプロキシがない、またはコントロール API に到達できない."""


class ZipCodeError(WorkerError):
    """配送先郵便番号の設定に失敗した（致命的ではない）."""


class ConfigNotFoundError(WorkerError):
    """設定ストアに指定タイプの設定がない."""


class SinkError(WorkerError):
    """結果の保存に失敗した."""


class ParseError(WorkerError):
    """HTML をパースできなかった."""


class ConfigStoreError(WorkerError):
    """設定ストアに接続できない、または問い合わせに失敗した."""
