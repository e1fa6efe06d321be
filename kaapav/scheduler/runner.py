from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from kaapav.runtime import Runtime
from kaapav.scheduler.jobs import CRON_JOBS, run_cron

logger = logging.getLogger(__name__)


def build_scheduler(runtime: Runtime) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone="UTC")
    for expression in CRON_JOBS:
        scheduler.add_job(
            run_cron,
            CronTrigger.from_crontab(expression, timezone="UTC"),
            args=[expression, runtime],
            id=f"cron:{expression}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
    return scheduler


def start_scheduler(runtime: Runtime) -> AsyncIOScheduler:
    scheduler = build_scheduler(runtime)
    scheduler.start()
    logger.info("scheduler started with %s cron patterns", len(CRON_JOBS))
    return scheduler
