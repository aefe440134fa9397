from dataclasses import dataclass, field

@dataclass(frozen=True)
class Trade:
    """
    核心交易模型 (Domain Model)。
    代表一筆已成交的現貨交易。
    數值欄位在傳輸格式中是十進位字串，這裡已轉為 float。
    """
    trade_id: int      # 唯一識別碼 (交易所端的 trade_id)
    type: str          # 方向 (buy, sell)
    price: float       # 成交價
    quantity: float    # 數量 (基礎幣)
    amount: float      # 名目金額 (計價幣)
    date: int          # 成交時間 (epoch 秒)
    pair: str          # 交易對 (e.g., "BTC_USDT")

    def is_buy(self) -> bool:
        return self.type.lower() == "buy"

    def is_sell(self) -> bool:
        return self.type.lower() == "sell"

@dataclass(frozen=True, order=True)
class BalanceHistoryPoint:
    """
    資產歷史點。
    排序與比較只看 timestamp，方便直接用 min / max / sorted。
    """
    timestamp: int                        # epoch 毫秒
    balance: float = field(compare=False)  # 計價幣總值
