"""Unit tests for the command line entrypoint."""

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from cdc_signals.main import app
from tests.candle_helpers import (
    ASCENDING_ANCHORS,
    build_candles,
    build_from_closes,
    ramp_closes,
)

runner = CliRunner()


def _invoke(*args):
    return runner.invoke(app, ["--log-level", "ERROR", *args])


@pytest.fixture
def csv_dir(tmp_path):
    build_from_closes(ramp_closes()).to_csv(tmp_path / "btc.csv", index_label="timestamp")
    build_candles(ASCENDING_ANCHORS[:-1] + [(59, 113)]).to_csv(
        tmp_path / "eth.csv", index_label="timestamp"
    )
    build_from_closes([100.0] * 10).to_csv(tmp_path / "short.csv", index_label="timestamp")
    return tmp_path


class TestBacktestCommand:
    def test_json_output(self, csv_dir):
        result = _invoke("backtest", str(csv_dir / "btc.csv"), "--days", "150", "--json")

        assert result.exit_code == 0, result.stdout
        payload = json.loads(result.stdout)
        assert payload["symbol"] == "BTC"
        assert payload["final_value"] == 22857.14
        assert payload["total_trades"] == 2
        assert "from" in payload["period"]

    def test_capital_and_symbol(self, csv_dir):
        result = _invoke(
            "backtest", str(csv_dir / "btc.csv"), "-d", "150", "--capital", "50000",
            "-s", "btc/usdt", "--json",
        )
        payload = json.loads(result.stdout)
        assert payload["symbol"] == "BTC/USDT"
        assert payload["final_value"] == 114285.71

    def test_table_output(self, csv_dir):
        result = _invoke("backtest", str(csv_dir / "btc.csv"), "--days", "150")

        assert result.exit_code == 0
        assert "CDC Action Zone Backtest: BTC" in result.stdout
        assert "Trades" in result.stdout

    @pytest.mark.parametrize("days", ["29", "1001"])
    def test_days_out_of_range(self, csv_dir, days):
        result = _invoke("backtest", str(csv_dir / "btc.csv"), "--days", days)

        assert result.exit_code == 1
        assert "--days must be between 30 and 1000" in result.stdout

    def test_not_enough_candles(self, csv_dir):
        result = _invoke("backtest", str(csv_dir / "short.csv"), "--days", "30")

        assert result.exit_code == 1
        assert "Not enough data" in result.stdout

    def test_missing_file(self, tmp_path):
        result = _invoke("backtest", str(tmp_path / "nope.csv"))

        assert result.exit_code == 1
        assert "Backtest failed" in result.stdout


class TestScanCommand:
    def test_json_output(self, csv_dir):
        result = _invoke(
            "scan", str(csv_dir / "eth.csv"), str(csv_dir / "short.csv"),
            "--market", "crypto", "--workers", "2", "--json",
        )

        assert result.exit_code == 0, result.stdout
        payload = json.loads(result.stdout)
        assert payload["errors"] == {}
        assert payload["stats"]["processed_symbols"] == 2
        assert payload["stats"]["rejected_symbols"] == 1

        pattern_events = [e for e in payload["events"] if e["event_type"] == "PATTERN_ALERT"]
        assert len(pattern_events) == 1
        assert pattern_events[0]["symbol"] == "ETH"
        assert pattern_events[0]["signal"] == "WATCH"
        assert pattern_events[0]["market_type"] == "crypto"

    def test_table_output(self, csv_dir):
        result = _invoke("scan", str(csv_dir / "eth.csv"), str(csv_dir / "short.csv"))

        assert result.exit_code == 0
        assert "Signal Events" in result.stdout
        assert "Processed 2 instruments, 1 rejected (50%)" in result.stdout

    def test_no_signals(self, csv_dir):
        result = _invoke("scan", str(csv_dir / "short.csv"))

        assert result.exit_code == 0
        assert "No signals." in result.stdout

    def test_unreadable_file(self, tmp_path):
        result = _invoke("scan", str(tmp_path / "nope.csv"))

        assert result.exit_code == 1
        assert "Cannot load" in result.stdout


class TestPatternCommand:
    def test_json_output(self, csv_dir):
        result = _invoke("pattern", str(csv_dir / "eth.csv"), "--symbol", "eth/usdt", "--json")

        assert result.exit_code == 0, result.stdout
        payload = json.loads(result.stdout)
        assert payload["pattern"]["pattern_type"] == "ASCENDING_TRIANGLE"
        assert payload["pattern"]["symbol"] == "ETH/USDT"
        assert payload["pattern"]["breakout"]["status"] == "BREAKOUT_UP"

    def test_table_output(self, csv_dir):
        result = _invoke("pattern", str(csv_dir / "btc.csv"))

        assert result.exit_code == 0
        assert "Triangle Scan" in result.stdout
        assert "No triangle patterns detected" in result.stdout

    def test_jit_warmup_is_timed(self, csv_dir):
        with patch("cdc_signals.observability.logger") as mock_logger:
            result = _invoke("pattern", str(csv_dir / "eth.csv"), "--json")

        assert result.exit_code == 0
        messages = [c.args[0] for c in mock_logger.info.call_args_list]
        assert "Starting: warmup_jit" in messages
        assert any(m.startswith("Completed: warmup_jit") for m in messages)
