"""main モジュールのテスト."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from amz_worker.errors import ConfigStoreError, ProxyUnavailableError
from amz_worker.ledger import RequestLedger
from amz_worker.main import parse_task, processing_task, run
from amz_worker.models import Task

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _load_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


def _session(*responses) -> MagicMock:
    session = MagicMock()
    session.get.side_effect = list(responses)
    session.post.return_value = MagicMock(status_code=200)
    return session


class TestParseTask:
    """コマンドライン引数の検証."""

    def test_search_products(self):
        task, args = parse_task([
            "--id", "task123", "--type", "search_products",
            "--keyword", "wireless headphones", "--max", "3", "--code", "DE",
        ])

        assert task.task_id == "task123"
        assert task.keyword == "wireless headphones"
        assert task.max_page == 3
        assert task.min_page == 1
        assert task.code == "DE"
        assert args.refresh_proxy_config is False

    @pytest.mark.parametrize("argv", [
        ["--type", "search_products", "--keyword", "kw"],
        ["--id", "t1", "--type", "search_products"],
        ["--id", "t1", "--type", "asin_page"],
        ["--id", "t1", "--type", "keyword_appear", "--keyword", "kw"],
        ["--id", "t1", "--type", "unknown"],
    ])
    def test_missing_required(self, argv):
        """種別ごとの必須項目がなければ終了コード 2 で終了すること."""
        with pytest.raises(SystemExit) as exc:
            parse_task(argv)
        assert exc.value.code == 2


class TestProcessingTask:
    """processing_task のテスト."""

    @patch("amz_worker.main.dispatch_results")
    @patch("amz_worker.main.create_client")
    def test_search_products_end_to_end(self, mock_create_client, mock_dispatch):
        """3件のページから success になり、結果が保存先に渡ること."""
        session = _session(MagicMock(status_code=200, text=_load_fixture("search_results.html")))
        mock_create_client.return_value = session
        proxy_core = MagicMock()
        ledger = RequestLedger()
        task = Task(
            task_id="task123", task_type="search_products",
            keyword="wireless headphones", min_page=1, max_page=1, code="US",
        )

        status = processing_task(task, proxy_core, ledger)

        assert status == "success"
        assert [p.position.global_position for p in task.result] == [1, 2, 3]
        proxy_core.activate.assert_called_once()
        mock_dispatch.assert_called_once_with(task)
        session.close.assert_called_once()

    @patch("amz_worker.main.dispatch_results")
    @patch("amz_worker.main.create_client")
    def test_search_products_rejected(self, mock_create_client, mock_dispatch):
        session = _session(MagicMock(status_code=503, text="", headers={}))
        mock_create_client.return_value = session
        ledger = RequestLedger()
        task = Task(task_id="task123", task_type="search_products", keyword="wireless headphones")

        assert processing_task(task, MagicMock(), ledger) == "error"
        assert task.result == []
        assert len(ledger.rejected) == 1
        assert session.get.call_count == 1

    @patch("amz_worker.main.create_client")
    def test_no_usable_proxy(self, mock_create_client):
        """出口がなければ通信せず error になること."""
        proxy_core = MagicMock()
        proxy_core.activate.side_effect = ProxyUnavailableError("no proxy")
        task = Task(task_id="t1", task_type="asin_page", asin="B0AAA00001")

        assert processing_task(task, proxy_core, RequestLedger()) == "error"
        assert task.status == "error"
        mock_create_client.assert_not_called()

    @patch("amz_worker.main.create_client", return_value=None)
    def test_ingress_unreachable(self, _):
        task = Task(task_id="t1", task_type="asin_page", asin="B0AAA00001")

        assert processing_task(task, MagicMock(), RequestLedger()) == "error"

    @patch("amz_worker.main.create_direct_client")
    def test_keyword_appear_without_proxy(self, mock_direct):
        """keyword_appear はプロキシを使わないこと."""
        session = _session(MagicMock(status_code=200, text=_load_fixture("appear_found.html")))
        mock_direct.return_value.__enter__.return_value = session
        proxy_core = MagicMock()
        task = Task(task_id="t2", task_type="keyword_appear", keyword="kw", asin="B0AAA00001")

        assert processing_task(task, proxy_core, RequestLedger()) == "success"
        assert task.appear == "Y"
        proxy_core.activate.assert_not_called()

    def test_unknown_type(self):
        task = Task(task_id="t3", task_type="reviews")
        assert processing_task(task, MagicMock(), RequestLedger()) == ""


class TestRun:
    """run の終了コードのテスト."""

    @patch("amz_worker.main.processing_task", return_value="success")
    @patch("amz_worker.main.setup_logging")
    def test_success_exit_code(self, _, mock_processing, capsys):
        code = run(["--id", "t1", "--type", "asin_page", "--asin", "B0AAA00001"])

        assert code == 0
        assert "Task result: success" in capsys.readouterr().out
        mock_processing.assert_called_once()

    @patch("amz_worker.main.processing_task", return_value="error")
    @patch("amz_worker.main.setup_logging")
    def test_error_exit_code(self, *_):
        assert run(["--id", "t1", "--type", "asin_page", "--asin", "B0AAA00001"]) == 1

    @patch("amz_worker.main.processing_task", return_value="success")
    @patch("amz_worker.main.ProxyCore")
    @patch("amz_worker.main.refresh_proxy_config")
    @patch("amz_worker.main.setup_logging")
    def test_refresh_failure_continues(self, _, mock_refresh, mock_core, mock_processing):
        """プロキシ設定の更新に失敗しても現在の設定で続行すること."""
        mock_refresh.side_effect = requests.ConnectionError("converter down")

        code = run([
            "--id", "t1", "--type", "asin_page", "--asin", "B0AAA00001",
            "--refresh-proxy-config",
        ])

        assert code == 0
        mock_core.return_value.reload_config.assert_not_called()
        mock_processing.assert_called_once()

    @pytest.mark.parametrize("error", [
        PermissionError("read-only fs"),
        ConfigStoreError("SUPABASE_URL / SUPABASE_SECRET_KEY is not set"),
    ])
    @patch("amz_worker.main.processing_task", return_value="success")
    @patch("amz_worker.main.ProxyCore")
    @patch("amz_worker.main.refresh_proxy_config")
    @patch("amz_worker.main.setup_logging")
    def test_refresh_local_failure_continues(self, _, mock_refresh, mock_core, mock_processing, error):
        """書き込み失敗や設定ストアの障害でもタスクは実行されること."""
        mock_refresh.side_effect = error

        code = run([
            "--id", "t1", "--type", "asin_page", "--asin", "B0AAA00001",
            "--refresh-proxy-config",
        ])

        assert code == 0
        mock_core.return_value.reload_config.assert_not_called()
        mock_processing.assert_called_once()
