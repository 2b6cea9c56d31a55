"""データモデル定義."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

SEARCH_PRODUCTS = "search_products"
ASIN_PAGE = "asin_page"
KEYWORD_APPEAR = "keyword_appear"
TASK_TYPES = (SEARCH_PRODUCTS, ASIN_PAGE, KEYWORD_APPEAR)

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"
STATUS_DONE = "done"
TERMINAL_STATUSES = frozenset({STATUS_SUCCESS, STATUS_ERROR, STATUS_DONE})


@dataclass
class Position:
    """検索結果内の位置."""

    page: int
    position: int  # ページ内の順位（1始まり）
    global_position: int  # (ページ内件数 × (page - 1)) + position


@dataclass
class Price:
    discounted: bool = False
    current_price: float = 0.0
    before_price: float = 0.0  # 割引前価格。なければ 0


@dataclass
class Reviews:
    total_reviews: int = 0
    rating: float = 0.0


@dataclass
class Product:
    """検索結果の1商品を表す."""

    position: Position
    asin: str = ""  # 属性がなければ空文字
    price: Price = field(default_factory=Price)
    reviews: Reviews = field(default_factory=Reviews)
    url: str = ""
    sponsored: bool = False
    amazon_choice: bool = False
    best_seller: bool = False
    amazon_prime: bool = False
    title: str = ""
    thumbnail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Task:
    """処理単位のタスク. クロール中にその場で更新される."""

    task_id: str
    task_type: str
    keyword: str = ""
    asin: str = ""
    category: str = ""
    max_page: int = 1
    min_page: int = 1
    code: str = "US"  # 国コード
    zip_code: str = ""  # 空なら国コードの既定値
    result: list[Product] = field(default_factory=list)
    status: str = ""
    appear: str = ""  # keyword_appear 用 "Y" / "N"
    total_result_count: int = 0
    total_products: str | None = None  # ページ内の totalResultCount

    @property
    def page_bounds(self) -> tuple[int, int]:
        """(min_page, max_page). 未設定（0 以下）は 1 とみなす."""
        min_page = self.min_page if self.min_page > 0 else 1
        max_page = self.max_page if self.max_page > 0 else 1
        return min_page, max_page

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class DelaySample:
    """プロキシの遅延計測1回分."""

    time: str
    delay: int  # ms。0 は計測失敗
    mean_delay: int = 0


@dataclass
class ProxyIdentity:
    """プロキシコアに登録された出口1件."""

    name: str
    type: str = ""
    udp: bool = False
    alive: bool = False
    history: list[DelaySample] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> ProxyIdentity:
        history = [
            DelaySample(
                time=h.get("time", ""),
                delay=int(h.get("delay") or 0),
                mean_delay=int(h.get("meanDelay") or 0),
            )
            for h in data.get("history") or []
        ]
        return cls(
            name=data.get("name", ""),
            type=data.get("type", ""),
            udp=bool(data.get("udp", False)),
            alive=bool(data.get("alive", False)),
            history=history,
        )

    @property
    def last_delay(self) -> int:
        return self.history[-1].delay if self.history else 0

    @property
    def usable(self) -> bool:
        """直近の計測で遅延 > 0 なら利用可能."""
        return self.last_delay > 0


@dataclass
class RejectedRequest:
    """503 で拒否されたレスポンスの記録."""

    url: str
    status_code: int
    headers: dict[str, str]
    recorded_at: datetime
