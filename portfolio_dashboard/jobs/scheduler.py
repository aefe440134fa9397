"""
APScheduler 排程設定

負責註冊兩個背景任務：
- 每小時記錄一次資產總值
- 每天清理一次過期的資產歷史
"""

from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from portfolio_dashboard.config.settings import settings
from portfolio_dashboard.config.logging import logger
from portfolio_dashboard.services.aggregator import PortfolioAggregator

HOURLY_SNAPSHOT_JOB_ID = "hourly_balance_snapshot"
HISTORY_COMPACTION_JOB_ID = "daily_history_compaction"

def create_scheduler(timezone: Optional[str] = None) -> BackgroundScheduler:
    """建立排程器 (尚未啟動)

    配置:
    - coalesce: 錯過的多次觸發合併為一次
    - max_instances: 同一任務不重疊執行
    - misfire_grace_time: 錯過觸發的容忍時間（秒）
    """
    job_defaults = {
        "coalesce": True,
        "max_instances": 1,
        "misfire_grace_time": 300,
    }
    return BackgroundScheduler(job_defaults=job_defaults, timezone=timezone or settings.TZ)

def register_jobs(scheduler: BackgroundScheduler, aggregator: PortfolioAggregator) -> None:
    """註冊所有定時任務；任務本身不會拋出例外。"""
    scheduler.add_job(
        aggregator.record_hourly_snapshot,
        trigger="cron",
        minute=settings.SNAPSHOT_MINUTE,
        id=HOURLY_SNAPSHOT_JOB_ID,
        name="Hourly balance snapshot",
        replace_existing=True,
    )
    logger.info(f"Job added: Hourly balance snapshot (ID: {HOURLY_SNAPSHOT_JOB_ID})")

    scheduler.add_job(
        aggregator.compact_history,
        trigger="cron",
        hour=settings.COMPACTION_HOUR,
        minute=0,
        id=HISTORY_COMPACTION_JOB_ID,
        name="Daily balance history compaction",
        replace_existing=True,
    )
    logger.info(f"Job added: Daily balance history compaction (ID: {HISTORY_COMPACTION_JOB_ID})")

def start_scheduler(scheduler: BackgroundScheduler) -> None:
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")
    else:
        logger.warning("Scheduler already running")

def shutdown_scheduler(scheduler: BackgroundScheduler, wait: bool = True) -> None:
    if scheduler.running:
        scheduler.shutdown(wait=wait)
        logger.info("Scheduler shut down")
