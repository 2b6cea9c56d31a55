"""タスク種別ごとのクロール処理.

search_products の流れ:
  1. 郵便番号を設定（任意・失敗しても続行）
  2. 1ページ目を取得 → 商品抽出
  3. 「次へ」リンクを辿って max_page まで繰り返す
  4. 503 は拒否として記録し、その場で打ち切る（再試行しない）

どの関数もタスクをその場で更新する。client が None の場合は通信せず error で終わる。
"""

from __future__ import annotations

import logging
from urllib.parse import quote_plus

import requests

from amz_worker.config import REQUEST_TIMEOUT, get_amazon_domain, get_amazon_zip_code
from amz_worker.errors import ParseError, ZipCodeError
from amz_worker.ledger import RequestLedger
from amz_worker.ledger import ledger as default_ledger
from amz_worker.models import STATUS_ERROR, STATUS_SUCCESS, Product, Task
from amz_worker.scraper import (
    classify_appear,
    extract_total_products,
    find_next_page_link,
    parse_html,
    resolve_url,
    scrape_page_products,
)

logger = logging.getLogger(__name__)

ADDRESS_CHANGE_PATH = "/gp/delivery/ajax/address-change.html"


def build_search_url(domain: str, keyword: str, category: str = "", page: int = 1) -> str:
    """検索 URL を組み立てる。page が 1 のときは page パラメータを付けない."""
    url = f"https://www.{domain}/s?k={quote_plus(keyword)}"
    if page > 1:
        url += f"&page={page}"
    if category:
        url += f"&i={quote_plus(category)}"
    return url


def resolve_zip_code(task: Task) -> str:
    """タスク指定の郵便番号、なければ国コードの既定値."""
    if task.zip_code:
        return task.zip_code
    if task.code:
        return get_amazon_zip_code(task.code)
    return ""


def set_zip_code(client: requests.Session, domain: str, zip_code: str) -> None:
    """配送先の郵便番号を設定する.

    Raises:
        ZipCodeError: 通信エラーまたは 200 以外の応答
    """
    if not zip_code:
        return

    form = {
        "locationType": "LOCATION_INPUT",
        "zipCode": zip_code,
        "storeContext": "generic",
        "deviceType": "web",
        "pageType": "Gateway",
        "actionSource": "glow",
    }
    headers = {
        "Accept": "text/html,*/*",
        "X-Requested-With": "XMLHttpRequest",
    }
    try:
        resp = client.post(
            f"https://www.{domain}{ADDRESS_CHANGE_PATH}",
            data=form,
            headers=headers,
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        raise ZipCodeError(f"zip code request failed: {e}") from e

    if resp.status_code != 200:
        raise ZipCodeError(f"zip code request returned {resp.status_code}")


def _apply_zip_code(client: requests.Session, domain: str, task: Task) -> None:
    zip_code = resolve_zip_code(task)
    if not zip_code:
        return
    try:
        set_zip_code(client, domain, zip_code)
    except ZipCodeError as e:
        logger.warning("郵便番号の設定に失敗（続行）: zip=%s, error=%s", zip_code, e)
    else:
        logger.info("郵便番号を設定: %s", zip_code)


def search_products(
    task: Task,
    client: requests.Session | None,
    ledger: RequestLedger | None = None,
) -> list[Product]:
    """キーワード検索結果を min_page から max_page まで取得する.

    Returns:
        全ページ分の商品リスト（task.result にも格納）
    """
    ledger = ledger or default_ledger
    min_page, max_page = task.page_bounds
    started_key = f"{task.task_id}_{task.keyword}"
    ledger.mark_started(started_key)

    all_results: list[Product] = []
    try:
        if client is None:
            logger.error("プロキシクライアントがないため取得しません: task=%s", task.task_id)
        else:
            _crawl_search_pages(task, client, ledger, min_page, max_page, all_results)
    except Exception:
        logger.exception("クロール中に予期しないエラー: task=%s, keyword=%s", task.task_id, task.keyword)
    finally:
        ledger.finish(started_key)

    task.result = all_results
    task.status = STATUS_SUCCESS if all_results else STATUS_ERROR
    logger.info(
        "タスク完了: keyword=%s, max_page=%d, 件数=%d, status=%s",
        task.keyword, max_page, len(all_results), task.status,
    )
    return all_results


def _crawl_search_pages(
    task: Task,
    client: requests.Session,
    ledger: RequestLedger,
    min_page: int,
    max_page: int,
    all_results: list[Product],
) -> None:
    """ページ取得ループ. 取得した商品は all_results に追加していく."""
    if min_page > max_page:
        logger.warning("min_page=%d が max_page=%d を超えています", min_page, max_page)
        return

    domain = get_amazon_domain(task.code)
    _apply_zip_code(client, domain, task)

    current_page = min_page
    url = build_search_url(domain, task.keyword, task.category, current_page)

    while current_page <= max_page:
        logger.info("検索中: keyword=%s, page=%d, url=%s", task.keyword, current_page, url)
        try:
            resp = client.get(url, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            logger.error("検索ページ取得失敗: keyword=%s, page=%d, error=%s", task.keyword, current_page, e)
            return

        if resp.status_code == 503:
            ledger.mark_rejected(url, resp.status_code, resp.headers)
            logger.warning("503 で拒否されました: keyword=%s, page=%d", task.keyword, current_page)
            return
        if resp.status_code != 200:
            logger.warning("想定外のステータス %d: keyword=%s, page=%d", resp.status_code, task.keyword, current_page)
            return

        html = resp.text
        try:
            doc = parse_html(html)
        except ParseError as e:
            logger.error("HTML パース失敗: keyword=%s, page=%d, error=%s", task.keyword, current_page, e)
            return

        if task.total_products is None:
            task.total_products = extract_total_products(html)

        page_results = scrape_page_products(doc, current_page, task.code)
        all_results.extend(page_results)
        ledger.mark_handled(f"{task.keyword}_{current_page}")
        logger.info("ページ完了: keyword=%s, page=%d, 件数=%d", task.keyword, current_page, len(page_results))

        current_page += 1
        if current_page > max_page:
            return

        next_link = find_next_page_link(doc)
        if next_link is None:
            return

        href = next_link.get("href")
        if href:
            url = resolve_url(domain, href)
        else:
            url = build_search_url(domain, task.keyword, task.category, current_page)


def asin_page(
    task: Task,
    client: requests.Session | None,
    ledger: RequestLedger | None = None,
) -> str:
    """商品詳細ページを1回取得する。200 かつパース成功なら success."""
    ledger = ledger or default_ledger
    started_key = f"{task.task_id}_{task.asin}"
    ledger.mark_started(started_key)

    status = STATUS_ERROR
    try:
        if client is None:
            logger.error("プロキシクライアントがないため取得しません: asin=%s", task.asin)
        else:
            status = _fetch_asin_page(task, client, ledger)
    except Exception:
        logger.exception("ASIN ページ取得中に予期しないエラー: asin=%s", task.asin)
    finally:
        ledger.mark_handled(f"asin_page_{task.asin}")
        ledger.finish(started_key)

    task.status = status
    logger.info("タスク完了: asin=%s, status=%s", task.asin, task.status)
    return status


def _fetch_asin_page(task: Task, client: requests.Session, ledger: RequestLedger) -> str:
    domain = get_amazon_domain(task.code)
    _apply_zip_code(client, domain, task)

    url = f"https://www.{domain}/dp/{task.asin}"
    logger.info("ASIN ページ取得: asin=%s, url=%s", task.asin, url)
    try:
        resp = client.get(url, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        logger.error("ASIN ページ取得失敗: asin=%s, error=%s", task.asin, e)
        return STATUS_ERROR

    if resp.status_code == 503:
        ledger.mark_rejected(url, resp.status_code, resp.headers)
        logger.warning("503 で拒否されました: asin=%s", task.asin)
        return STATUS_ERROR
    if resp.status_code != 200:
        logger.warning("想定外のステータス %d: asin=%s", resp.status_code, task.asin)
        return STATUS_ERROR

    try:
        parse_html(resp.text)
    except ParseError as e:
        logger.error("HTML パース失敗: asin=%s, error=%s", task.asin, e)
        return STATUS_ERROR
    return STATUS_SUCCESS


def keyword_appear(
    task: Task,
    client: requests.Session | None,
    ledger: RequestLedger | None = None,
) -> str:
    """キーワード検索に指定 ASIN が出現するか判定する.

    task.appear ("Y" / "N") と task.total_result_count を更新する。
    """
    ledger = ledger or default_ledger
    started_key = f"{task.task_id}_{task.keyword}_{task.asin}"
    ledger.mark_started(started_key)

    status = STATUS_ERROR
    try:
        if client is None:
            logger.error("クライアントがないため取得しません: keyword=%s, asin=%s", task.keyword, task.asin)
        else:
            status = _fetch_keyword_appear(task, client, ledger)
    except Exception:
        logger.exception("出現判定中に予期しないエラー: keyword=%s, asin=%s", task.keyword, task.asin)
    finally:
        ledger.mark_handled(f"keyword_appear_{task.keyword}_{task.asin}")
        ledger.finish(started_key)

    task.status = status
    logger.info(
        "タスク完了: keyword=%s, asin=%s, status=%s, appear=%s",
        task.keyword, task.asin, task.status, task.appear,
    )
    return status


def _fetch_keyword_appear(task: Task, client: requests.Session, ledger: RequestLedger) -> str:
    domain = get_amazon_domain(task.code)
    url = f"{build_search_url(domain, task.keyword)}&field-asin={task.asin}"
    logger.info("出現判定: keyword=%s, asin=%s, url=%s", task.keyword, task.asin, url)
    try:
        resp = client.get(url, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        logger.error("検索ページ取得失敗: keyword=%s, asin=%s, error=%s", task.keyword, task.asin, e)
        return STATUS_ERROR

    if resp.status_code == 503:
        ledger.mark_rejected(url, resp.status_code, resp.headers)
        logger.warning("503 で拒否されました: keyword=%s, asin=%s", task.keyword, task.asin)
        return STATUS_ERROR
    if resp.status_code != 200:
        logger.warning("想定外のステータス %d: keyword=%s, asin=%s", resp.status_code, task.keyword, task.asin)
        return STATUS_ERROR

    try:
        doc = parse_html(resp.text)
    except ParseError as e:
        logger.error("HTML パース失敗: keyword=%s, asin=%s, error=%s", task.keyword, task.asin, e)
        return STATUS_ERROR

    task.appear, task.total_result_count = classify_appear(doc)
    return STATUS_SUCCESS
