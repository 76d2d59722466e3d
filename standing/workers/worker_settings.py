"""
Standing Engine - Worker Settings

Run with:
    arq standing.workers.worker_settings.WorkerSettings
"""
from arq import cron
from arq.connections import RedisSettings

from standing._logger import configure_logging
from standing.config import settings
from standing.workers.jobs import (
    recompute_standing,
    refresh_all_standings,
    refresh_supplier_tier,
)

REDIS_SETTINGS = RedisSettings.from_dsn(settings.REDIS_URL)


async def startup(ctx):
    configure_logging(settings.LOG_LEVEL)


class WorkerSettings:
    """arq worker configuration."""

    functions = [
        recompute_standing,
        refresh_supplier_tier,
    ]

    cron_jobs = [
        # Hourly standing sweep; also lifts expired time-boxed suspensions
        cron(
            refresh_all_standings,
            minute={0},
            unique=True,
        ),
    ]

    on_startup = startup
    redis_settings = REDIS_SETTINGS
    max_jobs = 10
    job_timeout = 300
