from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from portfolio_dashboard.config.settings import settings
from portfolio_dashboard.config.logging import logger
from portfolio_dashboard.jobs.scheduler import create_scheduler, register_jobs, start_scheduler, shutdown_scheduler
from portfolio_dashboard.services.aggregator import PortfolioAggregator
from .routes import router

def create_app(aggregator: PortfolioAggregator, enable_scheduler: Optional[bool] = None) -> FastAPI:
    """
    建立 FastAPI 應用。
    啟動時註冊並啟動排程，關閉時等待排程結束。
    """
    use_scheduler = settings.ENABLE_SCHEDULER if enable_scheduler is None else enable_scheduler

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = None
        if use_scheduler:
            scheduler = create_scheduler()
            register_jobs(scheduler, aggregator)
            start_scheduler(scheduler)
        else:
            logger.info("Scheduler disabled (ENABLE_SCHEDULER=false)")

        yield

        if scheduler is not None:
            shutdown_scheduler(scheduler, wait=True)

    app = FastAPI(title="Portfolio Dashboard", lifespan=lifespan)
    app.state.aggregator = aggregator

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(router)
    return app
