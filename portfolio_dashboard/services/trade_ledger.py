import threading
from pathlib import Path
from typing import Iterable, List, Set, Union
from portfolio_dashboard.config.logging import logger
from portfolio_dashboard.core.models import Trade
from portfolio_dashboard.infrastructure.exmo.mapper import ExmoMapper

class TradeLedger:
    """
    本地成交紀錄 (history.log)。
    每行一筆 JSON，只追加不改寫；以 trade_id 去重。
    同一個實例應該在整個程序中共用，讓 API 請求與排程任務看到同一份去重索引。
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._seen_ids: Set[int] = set()
        self._index_loaded = False
        # 去重索引與檔案的讀寫都在這把鎖底下進行
        self._lock = threading.Lock()

    def ingest(self, trades: Iterable[Trade]) -> None:
        """只把沒看過的成交追加到檔案尾端。單筆失敗不影響其他筆。"""
        with self._lock:
            if not self._index_loaded:
                # 程序剛啟動時索引是空的，先從檔案重建，避免重複寫入
                self._load()

            lines = []
            for trade in trades:
                if trade.trade_id in self._seen_ids:
                    continue
                self._seen_ids.add(trade.trade_id)
                try:
                    lines.append(ExmoMapper.trade_to_line(trade))
                except (TypeError, ValueError) as e:
                    logger.error(f"Failed to serialize trade {trade.trade_id}: {e}")

            if not lines:
                return

            try:
                with self.path.open("a", encoding="utf-8") as f:
                    for line in lines:
                        f.write(line + "\n")
                logger.info(f"Appended {len(lines)} new trades to {self.path}.")
            except OSError as e:
                # 索引會暫時領先檔案內容，下一次 read_all 會依檔案重建
                logger.error(f"Failed to write trade history {self.path}: {e}")

    def read_all(self) -> List[Trade]:
        """讀取全部成交並重建去重索引。壞行略過；檔案不存在或無法讀取時回傳空清單。"""
        with self._lock:
            return self._load()

    def _load(self) -> List[Trade]:
        self._seen_ids.clear()
        self._index_loaded = True

        if not self.path.exists():
            return []

        trades = []
        try:
            with self.path.open("r", encoding="utf-8", errors="replace") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        trade = ExmoMapper.line_to_trade(line)
                    except (KeyError, ValueError, TypeError) as e:
                        logger.warning(f"Skipping unparsable trade line: {line} | {e}")
                        continue
                    if trade.trade_id in self._seen_ids:
                        continue
                    self._seen_ids.add(trade.trade_id)
                    trades.append(trade)
        except OSError as e:
            logger.error(f"Failed to read trade history {self.path}: {e}")
            self._index_loaded = False
            return []

        return trades

    @staticmethod
    def compute_initial_investment(trades: Iterable[Trade]) -> float:
        """
        計算總投入：所有 buy 成交的 amount 加總 (不分交易對)。
        """
        return sum(t.amount for t in trades if t.is_buy())
