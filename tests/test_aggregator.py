import pytest
from portfolio_dashboard.config.settings import settings
from portfolio_dashboard.core.exceptions import DataSourceError, ExchangeApiError
from portfolio_dashboard.core.models import Trade
from portfolio_dashboard.services.aggregator import PortfolioAggregator
from portfolio_dashboard.services.balance_history import BalanceHistoryStore
from portfolio_dashboard.services.trade_ledger import TradeLedger

NOW = 1_700_000_000.0
NOW_MS = int(NOW * 1000)
HOUR = 3600

class FakeExmoClient:
    """只實作 PortfolioAggregator 用到的方法"""

    def __init__(self, balances=None, reserved=None, ticker=None, trades=None,
                 user_info_error=None, trades_error=None):
        self.balances = balances or {}
        self.reserved = reserved or {}
        self.ticker = ticker if ticker is not None else {"BTC_USDT": {"last_trade": "20000"}}
        self.trades = trades or []
        self.user_info_error = user_info_error
        self.trades_error = trades_error
        self.ticker_calls = 0

    def get_user_info(self):
        if self.user_info_error:
            raise self.user_info_error
        return {"balances": dict(self.balances), "reserved": dict(self.reserved)}

    def get_ticker(self):
        self.ticker_calls += 1
        return self.ticker

    def get_pair_settings(self):
        if self.trades_error:
            raise self.trades_error
        return {"BTC_USDT": {}, "ETH_USDT": {}}

    def get_user_trades(self, pairs, limit=1000):
        return list(self.trades)

def trade(trade_id, type, amount, age_hours, pair="BTC_USDT"):
    return Trade(
        trade_id=trade_id, type=type, price=20000.0, quantity=amount / 20000.0,
        amount=amount, date=int(NOW - age_hours * HOUR), pair=pair
    )

@pytest.fixture
def stores(tmp_path):
    return TradeLedger(tmp_path / "history.log"), BalanceHistoryStore(tmp_path / "balance_history.log")

def make_aggregator(client, stores):
    ledger, history = stores
    return PortfolioAggregator(client=client, ledger=ledger, history=history, clock=lambda: NOW)

def test_snapshot_totals(stores):
    client = FakeExmoClient(balances={"BTC": 1.0, "USDT": 500.0})
    snapshot = make_aggregator(client, stores).build_snapshot()

    assert snapshot["totalUsd"] == pytest.approx(20500.0)
    assert snapshot["totalBtc"] == pytest.approx(1.025)
    assert client.ticker_calls == 1

def test_snapshot_includes_reserved_funds(stores):
    client = FakeExmoClient(balances={"BTC": 0.5, "EUR": 0.0}, reserved={"BTC": 0.5, "USDC": 100.0})
    snapshot = make_aggregator(client, stores).build_snapshot()
    assert snapshot["totalUsd"] == pytest.approx(20100.0)

def test_unpriced_and_malformed_assets_count_as_zero(stores):
    client = FakeExmoClient(
        balances={"BTC": 1.0, "ETH": 2.0, "DOGE": 1000.0},
        ticker={"BTC_USDT": {"last_trade": "20000"}, "ETH_USDT": {"last_trade": "n/a"}},
    )
    snapshot = make_aggregator(client, stores).build_snapshot()
    assert snapshot["totalUsd"] == pytest.approx(20000.0)

def test_total_btc_zero_without_btc_price(stores):
    client = FakeExmoClient(balances={"USDT": 500.0}, ticker={})
    snapshot = make_aggregator(client, stores).build_snapshot()
    assert snapshot["totalUsd"] == 500.0
    assert snapshot["totalBtc"] == 0.0

def test_transport_failure_gives_error_only_snapshot(stores):
    client = FakeExmoClient(user_info_error=DataSourceError("read timed out"))
    snapshot = make_aggregator(client, stores).build_snapshot()
    assert list(snapshot.keys()) == ["error"]
    assert "read timed out" in snapshot["error"]

def test_business_error_gives_error_only_snapshot(stores):
    client = FakeExmoClient(user_info_error=ExchangeApiError("EXMO API Error: 40017 Wrong api key"))
    snapshot = make_aggregator(client, stores).build_snapshot()
    assert "totalUsd" not in snapshot
    assert "pnl24h" not in snapshot
    assert "error" in snapshot

def test_unexpected_failure_is_contained(stores):
    client = FakeExmoClient(balances={"BTC": 1.0})

    def broken_ticker():
        raise RuntimeError("boom")

    client.get_ticker = broken_ticker
    snapshot = make_aggregator(client, stores).build_snapshot()
    assert snapshot == {"error": "Service error: boom"}

def test_pnl_against_balance_24h_ago(stores):
    _, history = stores
    history.save_balance(19000.0, timestamp_ms=NOW_MS - 30 * HOUR * 1000)
    history.save_balance(20000.0, timestamp_ms=NOW_MS - 25 * HOUR * 1000)
    history.save_balance(99999.0, timestamp_ms=NOW_MS - 1 * HOUR * 1000)

    client = FakeExmoClient(balances={"BTC": 1.0, "USDT": 500.0})
    snapshot = make_aggregator(client, stores).build_snapshot()

    assert snapshot["pnl24h"]["value"] == pytest.approx(500.0)
    assert snapshot["pnl24h"]["percentage"] == pytest.approx(2.5)

def test_pnl_zero_without_history(stores):
    client = FakeExmoClient(balances={"USDT": 500.0})
    snapshot = make_aggregator(client, stores).build_snapshot()
    assert snapshot["pnl24h"] == {"value": 0.0, "percentage": 0.0}

def test_pnl_ignores_recent_points_by_default(stores):
    _, history = stores
    history.save_balance(400.0, timestamp_ms=NOW_MS - 2 * HOUR * 1000)

    client = FakeExmoClient(balances={"USDT": 500.0})
    snapshot = make_aggregator(client, stores).build_snapshot()
    assert snapshot["pnl24h"]["value"] == 0.0

def test_pnl_earliest_fallback(stores, monkeypatch):
    monkeypatch.setattr(settings, "PNL_EARLIEST_FALLBACK", True)
    _, history = stores
    history.save_balance(450.0, timestamp_ms=NOW_MS - 1 * HOUR * 1000)
    history.save_balance(400.0, timestamp_ms=NOW_MS - 2 * HOUR * 1000)

    client = FakeExmoClient(balances={"USDT": 500.0})
    snapshot = make_aggregator(client, stores).build_snapshot()

    assert snapshot["pnl24h"]["value"] == pytest.approx(100.0)
    assert snapshot["pnl24h"]["percentage"] == pytest.approx(25.0)

def test_transactions_last_24h_newest_first(stores):
    trades = [
        trade(1, "buy", 100.0, age_hours=30),
        trade(2, "buy", 40.0, age_hours=2),
        trade(3, "sell", 25.0, age_hours=1),
        trade(4, "Buy", 10.0, age_hours=5, pair="ETH_USDT"),
    ]
    client = FakeExmoClient(balances={"USDT": 500.0}, trades=trades)
    snapshot = make_aggregator(client, stores).build_snapshot()

    assert [t["trade_id"] for t in snapshot["transactions"]] == [3, 2, 4]
    assert snapshot["trades"] == {"buys": 2, "sells": 1}
    assert snapshot["initialInvestment"] == pytest.approx(150.0)

def test_trade_fetch_failure_falls_back_to_ledger(stores):
    ledger, _ = stores
    ledger.ingest([trade(1, "sell", 10.0, age_hours=3)])

    client = FakeExmoClient(balances={"USDT": 500.0}, trades_error=DataSourceError("down"))
    snapshot = make_aggregator(client, stores).build_snapshot()

    assert snapshot["totalUsd"] == 500.0
    assert [t["trade_id"] for t in snapshot["transactions"]] == [1]
    assert snapshot["trades"] == {"buys": 0, "sells": 1}

def test_repeated_snapshots_do_not_duplicate_trades(stores):
    ledger, _ = stores
    trades = [trade(1, "buy", 10.0, age_hours=1), trade(2, "sell", 5.0, age_hours=1)]
    aggregator = make_aggregator(FakeExmoClient(balances={"USDT": 1.0}, trades=trades), stores)

    aggregator.build_snapshot()
    aggregator.build_snapshot()

    assert len(ledger.path.read_text().splitlines()) == 2

def test_record_hourly_snapshot_saves_total(stores):
    _, history = stores
    client = FakeExmoClient(balances={"BTC": 1.0, "USDT": 500.0})
    make_aggregator(client, stores).record_hourly_snapshot()

    points = history.read_points()
    assert len(points) == 1
    assert points[0].balance == 20500.0

def test_record_hourly_snapshot_skips_on_error(stores):
    _, history = stores
    client = FakeExmoClient(user_info_error=DataSourceError("down"))
    make_aggregator(client, stores).record_hourly_snapshot()
    assert history.read_points() == []

def test_compact_history_uses_retention(stores):
    _, history = stores
    history.save_balance(1.0, timestamp_ms=NOW_MS - 49 * HOUR * 1000)
    history.save_balance(2.0, timestamp_ms=NOW_MS - 47 * HOUR * 1000)

    make_aggregator(FakeExmoClient(), stores).compact_history()

    assert [p.balance for p in history.read_points()] == [2.0]

def test_compact_history_repairs_invalid_utf8(stores):
    _, history = stores
    recent = NOW_MS - HOUR * 1000
    history.path.write_bytes(f"{recent},100.00\n".encode() + b"\xff\xfe,1.00\n")

    make_aggregator(FakeExmoClient(), stores).compact_history()

    assert history.path.read_text() == f"{recent},100.00\n"

def test_compact_history_never_raises(stores):
    _, history = stores

    def broken_compact(retention, now=None):
        raise RuntimeError("unexpected")

    history.compact = broken_compact
    make_aggregator(FakeExmoClient(), stores).compact_history()

def test_snapshot_survives_invalid_utf8_in_trade_log(stores):
    ledger, _ = stores
    ledger.ingest([trade(1, "buy", 10.0, age_hours=3)])
    with ledger.path.open("ab") as f:
        f.write(b"\xff\n")

    snapshot = make_aggregator(FakeExmoClient(balances={"USDT": 500.0}), stores).build_snapshot()

    assert "error" not in snapshot
    assert [t["trade_id"] for t in snapshot["transactions"]] == [1]

def test_hourly_balance_history_limited_to_window(stores):
    _, history = stores
    history.save_balance(1.0, timestamp_ms=NOW_MS - 30 * HOUR * 1000)
    history.save_balance(2.0, timestamp_ms=NOW_MS - 3 * HOUR * 1000)
    history.save_balance(3.0, timestamp_ms=NOW_MS - 1 * HOUR * 1000)

    points = make_aggregator(FakeExmoClient(), stores).hourly_balance_history()
    assert [p.balance for p in points] == [2.0, 3.0]
