"""Amazon 検索結果スクレイピングワーカー."""

__version__ = "0.1.0"
