"""Amazon 検索結果ページの抽出モジュール.

抽出方針:
  1. 検索結果コンテナ内の s-search-result 要素を1商品として扱う
  2. 価格はサイズ xl → l → m の順にフォールバック
  3. DE / IT はカンマ小数のため、数値化の前に区切り文字を入れ替える
"""

from __future__ import annotations

import logging
import re

from bs4 import BeautifulSoup, ParserRejectedMarkup, Tag

from amz_worker.config import (
    COMMA_DECIMAL_REGIONS,
    NO_RESULT_PHRASES,
    get_amazon_domain,
)
from amz_worker.errors import ParseError
from amz_worker.models import Position, Price, Product, Reviews

logger = logging.getLogger(__name__)

SEARCH_RESULT_SELECTOR = '.s-search-results [data-component-type="s-search-result"]'
SEARCH_RESULTS_CONTAINER_SELECTOR = '[data-component-type="s-search-results"]'
NEXT_PAGE_SELECTOR = ".s-pagination-item.s-pagination-next:not(.s-pagination-disabled)"

PRICE_SIZE_TIERS = ("xl", "l", "m")
TITLE_SELECTORS = (
    '[data-cy="title-recipe"] span.a-text-normal',
    # 別テンプレート（h2 直下に span）
    '[data-cy="title-recipe"] h2.a-size-base-plus span',
)

_NON_NUMERIC = re.compile(r"[^\d.]")
_DIGIT_GAP = re.compile(r"(?<=\d)\s(?=\d)")
_LEADING_NUMBER = re.compile(r"\s*(\d+(?:\.\d+)?)")
_TOTAL_RESULT_COUNT = re.compile(r'"totalResultCount":(\w+.[0-9])')


def parse_html(html: str) -> BeautifulSoup:
    """HTML 文字列をパースする.

    Raises:
        ParseError: パーサーがマークアップを受け付けなかった場合
    """
    try:
        return BeautifulSoup(html, "html.parser")
    except ParserRejectedMarkup as e:
        raise ParseError(str(e)) from e


def resolve_url(domain: str, href: str) -> str:
    """ページ内のリンクを絶対 URL に変換する."""
    if href.startswith("//"):
        return "https:" + href
    if href.startswith("/"):
        return f"https://www.{domain}{href}"
    if href.startswith("http"):
        return href
    return f"https://www.{domain}/{href}"


def localize_price_text(text: str, code: str) -> str:
    """カンマ小数の地域なら "1.234,56" を "1234.56" に直す.

    カンマを含まない文字列（正規化済み）はそのまま返すので、何度適用しても結果は変わらない。
    """
    if code in COMMA_DECIMAL_REGIONS and "," in text:
        return text.replace(".", "").replace(",", ".")
    return text


def parse_price(text: str, code: str = "US") -> float:
    """価格文字列を数値化する。パースできなければ 0."""
    if not text:
        return 0.0
    cleaned = _NON_NUMERIC.sub("", localize_price_text(text, code))
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def parse_review_count(text: str, code: str = "US") -> int:
    """"1,234 ratings" 形式のラベルからレビュー件数を取り出す."""
    if not text:
        return 0
    if code in COMMA_DECIMAL_REGIONS:
        text = text.replace(".", "")
    text = _DIGIT_GAP.sub("", text.replace(",", ""))
    m = re.search(r"\d+", text)
    return int(m.group()) if m else 0


def parse_rating(text: str, code: str = "US") -> float:
    """"4.5 out of 5 stars" 形式のラベル先頭の数値を取り出す."""
    if not text:
        return 0.0
    if code in COMMA_DECIMAL_REGIONS:
        text = text.replace(",", ".")
    m = _LEADING_NUMBER.match(text)
    return float(m.group(1)) if m else 0.0


def extract_total_products(html: str) -> str | None:
    """ページ埋め込み JSON の totalResultCount を取り出す."""
    m = _TOTAL_RESULT_COUNT.search(html)
    return m.group(1) if m else None


def find_next_page_link(doc: BeautifulSoup) -> Tag | None:
    """有効な「次へ」ボタンを返す。なければ None."""
    return doc.select_one(NEXT_PAGE_SELECTOR)


def classify_appear(doc: BeautifulSoup) -> tuple[str, int]:
    """field-asin 検索結果から出現有無と件数を判定する.

    Returns:
        ("N", 0) 結果なしの文言がある場合。それ以外は ("Y", 検索結果要素数)。
    """
    text = "".join(el.get_text() for el in doc.select(SEARCH_RESULTS_CONTAINER_SELECTOR))
    if any(phrase in text for phrase in NO_RESULT_PHRASES):
        return "N", 0
    return "Y", len(doc.select(SEARCH_RESULT_SELECTOR))


def scrape_page_products(doc: BeautifulSoup, page: int, code: str = "US") -> list[Product]:
    """検索結果ページから商品リストを抽出する.

    途中で例外が起きた場合はログを残し、それまでに抽出できた商品を返す。

    Args:
        doc: パース済みページ
        page: ページ番号（1始まり）
        code: 国コード。ドメインと数値表記の判定に使う
    """
    products: list[Product] = []
    try:
        items = doc.select(SEARCH_RESULT_SELECTOR)
        # 全ページの件数が同じという前提の概算
        offset = len(items) * (page - 1)
        domain = get_amazon_domain(code)
        for idx, item in enumerate(items, start=1):
            products.append(_scrape_item(item, page, idx, offset, domain, code))
    except Exception:
        logger.exception("商品抽出エラー: page=%d, 抽出済み=%d 件", page, len(products))
    return products


def _scrape_item(
    item: Tag, page: int, idx: int, offset: int, domain: str, code: str
) -> Product:
    asin = item.get("data-asin", "") or ""

    price_el = _first_price_element(item)
    discounted_el = item.select_one("span.a-price.a-text-price")
    current_price_text = _price_text(price_el) if price_el is not None else ""
    before_price_text = _price_text(discounted_el) if discounted_el is not None else ""

    link = item.select_one('span[data-component-type="s-product-image"] a')
    href = link.get("href", "") if link is not None else ""
    url = resolve_url(domain, href) if href else f"https://www.{domain}/dp/{asin}"

    reviews_el = item.select_one('[data-csa-c-slot-id="alf-reviews"] a')
    reviews_text = reviews_el.get("aria-label", "") if reviews_el is not None else ""

    star_el = item.select_one("a.mvt-review-star-mini-popover, .a-icon-star-small")
    star_text = ""
    if star_el is not None:
        star_text = star_el.get("aria-label") or star_el.get_text(strip=True)

    title = ""
    for selector in TITLE_SELECTORS:
        title_el = item.select_one(selector)
        if title_el is not None:
            title = title_el.get_text(strip=True)
            break

    thumbnail_el = item.select_one('img[data-image-source-density="1"]')

    return Product(
        position=Position(page=page, position=idx, global_position=offset + idx),
        asin=asin,
        price=Price(
            discounted=discounted_el is not None,
            current_price=parse_price(current_price_text, code),
            before_price=parse_price(before_price_text, code),
        ),
        reviews=Reviews(
            total_reviews=parse_review_count(reviews_text, code),
            rating=parse_rating(star_text, code),
        ),
        url=url,
        sponsored=(
            item.select_one("span.puis-sponsored-label-info-icon") is not None
            or "/sspa/" in url
        ),
        amazon_choice=item.find("span", id=f"{asin}-amazons-choice") is not None,
        best_seller=item.find("span", id=f"{asin}-best-seller") is not None,
        amazon_prime=item.select_one(".s-prime") is not None,
        title=title,
        thumbnail=thumbnail_el.get("src", "") if thumbnail_el is not None else "",
    )


def _first_price_element(item: Tag) -> Tag | None:
    for size in PRICE_SIZE_TIERS:
        el = item.select_one(f'span[data-a-size="{size}"]')
        if el is not None:
            return el
    return None


def _price_text(el: Tag) -> str:
    """表示用の重複 span を連結しないよう、a-offscreen を優先して読む."""
    target = el.select_one("span.a-offscreen") or el.find("span") or el
    return target.get_text(strip=True)
