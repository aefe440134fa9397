import time
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Set
from portfolio_dashboard.config.settings import settings
from portfolio_dashboard.config.logging import logger
from portfolio_dashboard.core.exceptions import DataSourceError
from portfolio_dashboard.core.models import BalanceHistoryPoint, Trade
from portfolio_dashboard.infrastructure.exmo.client import ExmoClient
from portfolio_dashboard.infrastructure.exmo.mapper import ExmoMapper
from portfolio_dashboard.services.balance_history import BalanceHistoryStore
from portfolio_dashboard.services.trade_ledger import TradeLedger

class PortfolioAggregator:
    """
    負責協調交易所即時狀態與本地歷史，產出儀表板快照。
    任何錯誤都在這一層被轉成 {"error": ...}，不會往上拋給排程或 HTTP 層。
    """

    def __init__(
        self,
        client: ExmoClient,
        ledger: TradeLedger,
        history: BalanceHistoryStore,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.ledger = ledger
        self.history = history
        self.clock = clock

        self.quote = settings.QUOTE_CURRENCY.upper()
        self.parity_assets = {a.upper() for a in settings.PARITY_ASSETS}
        self.pnl_window = timedelta(hours=settings.PNL_WINDOW_HOURS)
        self.retention = timedelta(hours=settings.HISTORY_RETENTION_HOURS)
        self.trades_limit = settings.USER_TRADES_LIMIT
        self.earliest_fallback = settings.PNL_EARLIEST_FALLBACK

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _window_start_ms(self) -> int:
        return self._now_ms() - int(self.pnl_window.total_seconds() * 1000)

    def _price_pair(self, asset: str) -> str:
        return f"{asset.upper()}_{self.quote}"

    def get_market_prices(self, assets: Iterable[str]) -> Dict[str, float]:
        """一次 ticker 請求，取出每個資產對計價幣的最新價；BTC 一律查詢。"""
        ticker = self.client.get_ticker()
        wanted = {self._price_pair(a) for a in assets if a.upper() not in self.parity_assets}
        wanted.add(self._price_pair("BTC"))

        prices = {}
        for pair in wanted:
            entry = ticker.get(pair)
            if not isinstance(entry, dict):
                continue
            try:
                prices[pair] = ExmoMapper.last_trade_price(entry)
            except (TypeError, ValueError) as e:
                logger.warning(f"Malformed price for {pair}: {entry.get('last_trade')} | {e}")
        return prices

    def compute_total_value(
        self,
        balances: Dict[str, float],
        reserved: Dict[str, float],
        prices: Dict[str, float],
    ) -> float:
        """總值 = Σ (可用 + 凍結) × 價格；穩定幣以 1:1 計，持有量為 0 的略過。"""
        total = 0.0
        for asset in set(balances) | set(reserved):
            amount = balances.get(asset, 0.0) + reserved.get(asset, 0.0)
            if amount <= 0:
                continue
            if asset.upper() in self.parity_assets:
                total += amount
            else:
                total += amount * prices.get(self._price_pair(asset), 0.0)
        return total

    def fetch_all_user_trades(self) -> List[Trade]:
        """
        從 API 抓所有交易對的最近成交。
        失敗時回傳空清單，讓快照繼續使用本地歷史。
        """
        try:
            pairs = list(self.client.get_pair_settings().keys())
            trades = self.client.get_user_trades(pairs, limit=self.trades_limit)
            logger.info(f"Fetched {len(trades)} trades from EXMO API.")
            return trades
        except DataSourceError as e:
            logger.error(f"Failed to fetch user trades from EXMO API: {e}")
            return []

    def compute_pnl_24h(self, current_value: float) -> Dict[str, float]:
        window_start = self._window_start_ms()
        reference: Optional[BalanceHistoryPoint] = self.history.balance_at_or_before(window_start)
        if reference is None and self.earliest_fallback:
            reference = self.history.earliest_within(window_start)

        # 沒有歷史時視為沒有變化
        balance_ago = reference.balance if reference is not None else current_value

        value = current_value - balance_ago
        percentage = (value / balance_ago) * 100 if balance_ago > 0 and balance_ago != current_value else 0.0
        return {"value": value, "percentage": percentage}

    def recent_trades(self, trades: Iterable[Trade]) -> List[Trade]:
        since = self._window_start_ms() // 1000
        recent = [t for t in trades if t.date >= since]
        return sorted(recent, key=lambda t: t.date, reverse=True)

    def build_snapshot(self) -> Dict[str, Any]:
        """主流程：產生一份儀表板快照。"""
        result: Dict[str, Any] = {}
        try:
            # 1. 帳戶餘額 (業務錯誤會以 ExchangeApiError 拋出)
            user_info = self.client.get_user_info()
            balances = user_info["balances"]
            reserved = user_info["reserved"]

            # 2. 所有出現過的資產
            assets: Set[str] = set(balances) | set(reserved)

            # 3. 市價
            prices = self.get_market_prices(assets)

            # 4. 總值
            total_value = self.compute_total_value(balances, reserved, prices)
            btc_price = prices.get(self._price_pair("BTC"), 0.0)
            result["totalUsd"] = total_value
            # 5. 以 BTC 計價
            result["totalBtc"] = total_value / btc_price if total_value > 0 and btc_price > 0 else 0.0

            # 6. 更新本地成交紀錄，之後一律以本地檔案為準
            new_trades = self.fetch_all_user_trades()
            if new_trades:
                self.ledger.ingest(new_trades)
            all_trades = self.ledger.read_all()
            result["initialInvestment"] = self.ledger.compute_initial_investment(all_trades)

            # 7. 24 小時損益
            result["pnl24h"] = self.compute_pnl_24h(total_value)

            # 8. 近 24 小時成交
            recent = self.recent_trades(all_trades)
            result["transactions"] = [ExmoMapper.trade_to_dict(t) for t in recent]
            result["trades"] = {
                "buys": sum(1 for t in recent if t.is_buy()),
                "sells": sum(1 for t in recent if t.is_sell()),
            }
        except Exception as e:
            logger.error(f"Failed to build portfolio snapshot: {e}", exc_info=True)
            return {"error": f"Service error: {e}"}

        return result

    def record_hourly_snapshot(self) -> None:
        """排程任務：記錄當下總值。失敗就跳過，不重試。"""
        logger.info("Recording hourly balance snapshot...")
        data = self.build_snapshot()
        if "error" in data:
            logger.warning(f"Hourly snapshot skipped: {data['error']}")
            return
        self.history.save_balance(data["totalUsd"])

    def compact_history(self) -> None:
        """排程任務：清理超過保留期限的資產歷史。"""
        logger.info("Starting balance history compaction...")
        try:
            self.history.compact(self.retention, now=self._now_ms())
        except Exception as e:
            logger.error(f"Balance history compaction failed: {e}", exc_info=True)

    def hourly_balance_history(self) -> List[BalanceHistoryPoint]:
        """圖表用：近 24 小時、每小時一點。"""
        return self.history.hourly_balance_history(since_ms=self._window_start_ms())
