from typing import Any, Dict, Optional

import anyio
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from socialhub.config import settings
from socialhub.db.base import SessionLocal
from socialhub.services.oauth_connector import OAuthConnector
from socialhub.services.publisher import PublishScheduler

JOB_ID = "publish_due_posts"

scheduler: Optional[BackgroundScheduler] = None


def run_once() -> Dict[str, Any]:
    # each job run gets its own session
    db = SessionLocal()
    try:
        connector = OAuthConnector(db)
        publisher = PublishScheduler(db, connector)
        dispatched = anyio.run(publisher.run_due)
        purged = connector.purge_expired_states()
        if dispatched:
            logger.info(f"Poller dispatched {len(dispatched)} post(s): {dispatched}")
        return {"status": "ok", "dispatched": dispatched, "purged_states": purged}
    finally:
        db.close()


def start(interval_seconds: Optional[int] = None) -> Dict[str, Any]:
    global scheduler
    if scheduler and scheduler.running:
        return {"status": "already-running"}

    interval = interval_seconds or settings.scheduler_interval_seconds
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_once,
        IntervalTrigger(seconds=interval),
        id=JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(f"Publish poller started, interval={interval}s")
    return {"status": "started", "interval_seconds": interval}


def stop() -> Dict[str, Any]:
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Publish poller stopped")
        return {"status": "stopped"}
    return {"status": "not-running"}


def status() -> Dict[str, Any]:
    running = bool(scheduler and scheduler.running)
    job = scheduler.get_job(JOB_ID) if running else None
    next_run = job.next_run_time.isoformat() if job and job.next_run_time else None
    return {"running": running, "next_run": next_run}
