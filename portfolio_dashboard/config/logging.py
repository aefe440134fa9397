import logging
import sys
from logging.handlers import RotatingFileHandler

# settings 載入失敗時 (例如 .env 數值格式錯誤) 仍要能輸出日誌
try:
    from portfolio_dashboard.config.settings import settings
    LOG_LEVEL = settings.LOG_LEVEL.upper()
    LOG_FILE = settings.LOG_FILE
except Exception:
    LOG_LEVEL = "INFO"
    LOG_FILE = None

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 2

def setup_logging(name: str = "portfolio_dashboard") -> logging.Logger:
    """
    儀表板後端共用的 logger。
    API 請求、排程任務 (整點快照、每日清理) 與 CLI 指令都寫到同一個 logger，
    一律輸出到 stdout；設定 LOG_FILE 時再加一個輪替檔案。
    重複呼叫只回傳已設定好的 logger。
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = getattr(logging, LOG_LEVEL, logging.INFO)
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    handlers = [logging.StreamHandler(sys.stdout)]
    if LOG_FILE:
        # 長時間執行的 serve 模式下避免日誌無限成長
        handlers.append(
            RotatingFileHandler(
                LOG_FILE, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS, encoding="utf-8"
            )
        )

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger

logger = setup_logging()
