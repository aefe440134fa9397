import os
import threading
import time
from datetime import timedelta
from pathlib import Path
from typing import List, Optional, Union
import pandas as pd
from portfolio_dashboard.config.logging import logger
from portfolio_dashboard.core.models import BalanceHistoryPoint

def now_ms() -> int:
    return int(time.time() * 1000)

class BalanceHistoryStore:
    """
    資產歷史 (balance_history.log)。
    每行格式為 "<epoch 毫秒>,<金額, 兩位小數>"，只追加；
    唯一會改寫檔案的是 compact()，它與 save_balance() 共用同一把鎖。
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    @staticmethod
    def format_line(timestamp_ms: int, value: float) -> str:
        # f-string 的小數點不受 locale 影響
        return f"{timestamp_ms},{value:.2f}"

    @staticmethod
    def parse_line(line: str) -> Optional[BalanceHistoryPoint]:
        parts = line.strip().split(",")
        if len(parts) < 2:
            return None
        try:
            return BalanceHistoryPoint(timestamp=int(parts[0]), balance=float(parts[1]))
        except ValueError:
            return None

    def save_balance(self, value: float, timestamp_ms: Optional[int] = None) -> None:
        """追加一筆餘額紀錄，檔案不存在時自動建立。寫入失敗只記錄 log。"""
        line = self.format_line(timestamp_ms if timestamp_ms is not None else now_ms(), value)
        try:
            with self._lock:
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
            logger.info(f"Balance {value:.2f} saved to history.")
        except OSError as e:
            logger.error(f"Failed to save balance history: {e}")

    def read_points(self) -> List[BalanceHistoryPoint]:
        """依檔案順序讀出所有可解析的點。"""
        if not self.path.exists():
            return []
        try:
            with self._lock:
                with self.path.open("r", encoding="utf-8", errors="replace") as f:
                    lines = f.readlines()
        except OSError as e:
            logger.error(f"Failed to read balance history: {e}")
            return []

        points = []
        for line in lines:
            point = self.parse_line(line)
            if point is not None:
                points.append(point)
        return points

    def hourly_balance_history(self, since_ms: Optional[int] = None) -> List[BalanceHistoryPoint]:
        """
        依 UTC 整點分桶，每個小時只保留檔案中「最後寫入」的那一點，
        結果依 timestamp 由舊到新排序。

        Args:
            since_ms: 只納入 timestamp >= since_ms 的點；None 表示全部。
        """
        points = self.read_points()
        if since_ms is not None:
            points = [p for p in points if p.timestamp >= since_ms]
        if not points:
            return []

        df = pd.DataFrame(
            {"timestamp": [p.timestamp for p in points], "balance": [p.balance for p in points]}
        )
        df["hour"] = pd.to_datetime(df["timestamp"], unit="ms", utc=True).dt.floor("h")

        # tail(1) 保留每組在原始順序中的最後一列 (last-write-wins)
        last_per_hour = df.groupby("hour", sort=False).tail(1).sort_values("timestamp", kind="stable")

        return [
            BalanceHistoryPoint(timestamp=int(ts), balance=float(balance))
            for ts, balance in zip(last_per_hour["timestamp"], last_per_hour["balance"])
        ]

    def balance_at_or_before(self, target_ms: int) -> Optional[BalanceHistoryPoint]:
        """timestamp <= target_ms 之中最新的一點；沒有則回傳 None。"""
        candidates = [p for p in self.read_points() if p.timestamp <= target_ms]
        return max(candidates) if candidates else None

    def earliest_within(self, window_start_ms: int) -> Optional[BalanceHistoryPoint]:
        """timestamp >= window_start_ms 之中最早的一點；歷史不足一個窗口時當作參考點。"""
        candidates = [p for p in self.read_points() if p.timestamp >= window_start_ms]
        return min(candidates) if candidates else None

    def compact(self, retention: timedelta, now: Optional[int] = None) -> int:
        """
        改寫檔案，只保留 retention 內的紀錄 (保持原順序，壞行丟棄)。
        retention 必須大於任何查詢窗口，否則 24 小時前的參考點會被清掉。

        Returns:
            保留的行數。
        """
        cutoff = (now if now is not None else now_ms()) - int(retention.total_seconds() * 1000)

        with self._lock:
            if not self.path.exists():
                return 0

            with self.path.open("r", encoding="utf-8", errors="replace") as f:
                kept = []
                for line in f:
                    point = self.parse_line(line)
                    if point is not None and point.timestamp >= cutoff:
                        kept.append(line.strip())

            tmp_path = self.path.with_name(self.path.name + ".tmp")
            try:
                with tmp_path.open("w", encoding="utf-8") as f:
                    for line in kept:
                        f.write(line + "\n")
                os.replace(tmp_path, self.path)
            finally:
                # 成功時 tmp 已被 replace 掉；失敗時原檔不動，只清掉殘留
                if tmp_path.exists():
                    tmp_path.unlink()

        logger.info(f"Balance history compaction finished. Kept {len(kept)} records.")
        return len(kept)
