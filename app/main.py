import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.jobs import router as jobs_router
from app.core.config import Settings, settings as default_settings
from app.core.logging_config import setup_logging
from app.services.jobs import JobService

logger = logging.getLogger(__name__)


def create_app(cfg: Settings | None = None) -> FastAPI:
    cfg = cfg or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(cfg.log_level)
        svc: JobService = app.state.job_service
        await svc.startup()

        sweeper = None
        if cfg.sweep_interval_sec > 0:
            sweeper = asyncio.create_task(
                svc.retention.run_periodic_sweeps(cfg.sweep_interval_sec, cfg.max_job_age_sec),
                name="periodic-sweep",
            )
        logger.info("YouTube converter API ready (work dir: %s)", cfg.work_dir)
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                try:
                    await sweeper
                except asyncio.CancelledError:
                    pass
            await svc.shutdown()

    app = FastAPI(title="YouTube Converter API", version="0.1.0", lifespan=lifespan)
    app.state.job_service = JobService(cfg)
    app.include_router(jobs_router)
    return app


app = create_app()
