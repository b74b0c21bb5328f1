"""Background cleanup jobs.

Two daily APScheduler cron jobs keep storage tidy:

- `orphan_files` (03:00): removes uploaded files that no post or user
  references once they are older than `ORPHAN_FILE_HOURS`.
- `deleted_posts` (00:00): hard-deletes posts that have been
  soft-deleted for longer than `DELETED_POST_RETENTION_DAYS`.

Each run opens its own database session. Errors are logged and never
propagate into the scheduler thread.
"""

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlmodel import Session

from . import services
from .database import engine

logger = logging.getLogger("blog.scheduler")


def run_orphan_file_cleanup() -> int:
    try:
        with Session(engine) as session:
            return services.FileService(session).delete_orphan_files()
    except Exception:
        logger.exception("orphan file cleanup job failed")
        return 0


def run_deleted_post_purge() -> int:
    try:
        with Session(engine) as session:
            return services.MyPostService(session).purge_deleted()
    except Exception:
        logger.exception("deleted post purge job failed")
        return 0


class CleanupScheduler:
    """Owns the BackgroundScheduler running the cleanup jobs."""

    def __init__(self):
        self.scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self):
        if self.running:
            return
        self.scheduler = BackgroundScheduler()
        self.scheduler.add_job(
            func=run_orphan_file_cleanup,
            trigger=CronTrigger(hour=3, minute=0),
            id="orphan_files",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            func=run_deleted_post_purge,
            trigger=CronTrigger(hour=0, minute=0),
            id="deleted_posts",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self.scheduler.start()
        logger.info("cleanup scheduler started jobs=%s", [job.id for job in self.scheduler.get_jobs()])

    def shutdown(self):
        if self.running:
            self.scheduler.shutdown(wait=False)
            logger.info("cleanup scheduler stopped")
        self.scheduler = None


cleanup_scheduler = CleanupScheduler()
