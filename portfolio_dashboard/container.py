from portfolio_dashboard.config.settings import settings
from portfolio_dashboard.infrastructure.exmo.client import ExmoClient
from portfolio_dashboard.services.aggregator import PortfolioAggregator
from portfolio_dashboard.services.balance_history import BalanceHistoryStore
from portfolio_dashboard.services.trade_ledger import TradeLedger

def build_aggregator() -> PortfolioAggregator:
    """
    組裝整個程序共用的元件。
    TradeLedger 與 BalanceHistoryStore 只建立一次，HTTP 與排程共用同一組實例。
    """
    return PortfolioAggregator(
        client=ExmoClient(),
        ledger=TradeLedger(settings.TRADE_HISTORY_FILE),
        history=BalanceHistoryStore(settings.BALANCE_HISTORY_FILE),
    )
