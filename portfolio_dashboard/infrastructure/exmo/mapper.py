import json
from typing import Any, Dict, List
from portfolio_dashboard.config.logging import logger
from portfolio_dashboard.core.models import Trade

class ExmoMapper:
    """
    負責 EXMO API 原始 JSON 與核心 Domain Models 之間的轉換。
    """

    @staticmethod
    def to_trade(raw: Dict[str, Any]) -> Trade:
        """
        將 user_trades 的單筆紀錄 (或本地 history.log 的一行) 轉為 Trade 物件。
        未知欄位一律忽略；缺少必要欄位或數值格式錯誤會拋出 KeyError / ValueError / TypeError。
        """
        return Trade(
            trade_id=int(raw["trade_id"]),
            type=str(raw["type"]),
            price=float(raw["price"]),
            quantity=float(raw["quantity"]),
            amount=float(raw["amount"]),
            date=int(raw["date"]),
            pair=str(raw["pair"]),
        )

    @staticmethod
    def trade_to_dict(trade: Trade) -> Dict[str, Any]:
        """
        轉回 EXMO 的傳輸格式：數值欄位以十進位字串表示。
        """
        return {
            "trade_id": trade.trade_id,
            "type": trade.type,
            "price": str(trade.price),
            "quantity": str(trade.quantity),
            "amount": str(trade.amount),
            "date": trade.date,
            "pair": trade.pair,
        }

    @staticmethod
    def trade_to_line(trade: Trade) -> str:
        return json.dumps(ExmoMapper.trade_to_dict(trade), separators=(",", ":"))

    @staticmethod
    def line_to_trade(line: str) -> Trade:
        raw = json.loads(line)
        if not isinstance(raw, dict):
            raise ValueError(f"Expected a JSON object, got {type(raw).__name__}")
        return ExmoMapper.to_trade(raw)

    @staticmethod
    def to_trades(raw: Dict[str, Any]) -> List[Trade]:
        """
        user_trades 回傳 {pair: [trade, ...]}，攤平成單一清單。
        格式錯誤的單筆紀錄記錄警告後略過。
        """
        trades = []
        for pair_trades in raw.values():
            if not isinstance(pair_trades, list):
                continue
            for t in pair_trades:
                try:
                    trades.append(ExmoMapper.to_trade(t))
                except (KeyError, ValueError, TypeError) as e:
                    logger.warning(f"Skipping malformed trade from API: {t} | {e}")
        return trades

    @staticmethod
    def to_balances(raw: Dict[str, Any]) -> Dict[str, Dict[str, float]]:
        """
        將 user_info 轉為 {"balances": {...}, "reserved": {...}}，數值轉為 float。
        """
        return {
            "balances": ExmoMapper._amounts(raw.get("balances") or {}),
            "reserved": ExmoMapper._amounts(raw.get("reserved") or {}),
        }

    @staticmethod
    def _amounts(raw: Dict[str, Any]) -> Dict[str, float]:
        amounts = {}
        for asset, value in raw.items():
            try:
                amounts[asset] = float(value or 0)
            except (TypeError, ValueError) as e:
                logger.warning(f"Malformed balance for {asset}: {value} | {e}")
                amounts[asset] = 0.0
        return amounts

    @staticmethod
    def last_trade_price(ticker_entry: Dict[str, Any]) -> float:
        """從 ticker 的單一交易對取出最新成交價 (last_trade)。"""
        return float(ticker_entry.get("last_trade", "0"))
