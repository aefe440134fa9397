import sys
from typing import List, Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    """
    應用程式全域設定。
    自動從環境變數 (.env) 讀取並驗證型別。
    """
    # EXMO 設定
    EXMO_API_KEY: str = ""
    EXMO_API_SECRET: str = ""
    EXMO_BASE_URL: str = "https://api.exmo.com/v1.1/"
    EXMO_CONNECT_TIMEOUT: float = 10.0
    EXMO_READ_TIMEOUT: float = 10.0
    USER_TRADES_LIMIT: int = 1000  # 每個交易對最多抓取的成交筆數

    # 估值設定
    QUOTE_CURRENCY: str = "USDT"
    PARITY_ASSETS: List[str] = ["USDT", "USDC", "USD"]  # 視為 1:1 計價的穩定幣

    # 本地檔案
    TRADE_HISTORY_FILE: str = "history.log"
    BALANCE_HISTORY_FILE: str = "balance_history.log"

    # 時間窗口
    PNL_WINDOW_HOURS: int = 24
    HISTORY_RETENTION_HOURS: int = 48  # 必須大於 PNL_WINDOW_HOURS
    PNL_EARLIEST_FALLBACK: bool = False

    # 排程
    ENABLE_SCHEDULER: bool = True
    SNAPSHOT_MINUTE: int = 0   # 每小時的第幾分鐘記錄餘額
    COMPACTION_HOUR: int = 2   # 每天幾點清理歷史
    TZ: str = "UTC"

    # HTTP
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080

    # 應用程式行為
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,  # 區分大小寫，通常環境變數建議全大寫
    )

    @model_validator(mode="after")
    def check_retention(self) -> "Settings":
        # compaction 之後仍須留有 PNL 窗口起點之前的點
        if self.HISTORY_RETENTION_HOURS <= self.PNL_WINDOW_HOURS:
            raise ValueError(
                f"HISTORY_RETENTION_HOURS ({self.HISTORY_RETENTION_HOURS}) must be greater than "
                f"PNL_WINDOW_HOURS ({self.PNL_WINDOW_HOURS})"
            )
        return self

# Singleton Instance
try:
    settings = Settings()
except Exception as e:
    # logging 依賴 settings，這裡只能用 print，避免循環
    print(f"CRITICAL: Failed to load configuration. Invalid env vars? {e}", file=sys.stderr)
    settings = Settings.model_construct()
