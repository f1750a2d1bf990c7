"""
Background worker for scheduled queries and proactive suggestions.

Usage:
    python -m feedback_assistant.worker

The worker enqueues the periodic sweeps and processes pending jobs.
For production, run this as a separate process (e.g., systemd service, Docker container).
"""

import asyncio
import logging
import os

from feedback_assistant.core.structured_logging import build_log_context
from feedback_assistant.db.session import SessionLocal
from feedback_assistant.jobs.registry import resolve_job_handler
from feedback_assistant.services import job_service

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Worker configuration
POLL_INTERVAL_SECONDS = int(os.getenv("WORKER_POLL_INTERVAL", "10"))
BATCH_SIZE = int(os.getenv("WORKER_BATCH_SIZE", "10"))


async def process_job(db, job) -> None:
    """Process a single job based on its type."""
    logger.info(f"Processing job {job.id} (type={job.job_type}, attempt={job.attempts})")
    handler = resolve_job_handler(job.job_type)
    await handler(db, job)


async def run_once(db) -> int:
    """One poll: enqueue periodic sweeps, then drain a batch. Returns jobs processed."""
    job_service.enqueue_periodic_jobs(db)
    jobs = job_service.get_pending_jobs(db, limit=BATCH_SIZE)
    if jobs:
        logger.info(f"Found {len(jobs)} pending jobs")

    for job in jobs:
        try:
            job_service.mark_job_running(db, job)
            await process_job(db, job)
            job_service.mark_job_completed(db, job)
            logger.info(f"Job {job.id} completed successfully")
        except Exception as e:
            db.rollback()
            job_service.mark_job_failed(db, job, str(e))
            logger.error(
                f"Job {job.id} failed: {type(e).__name__}",
                extra=build_log_context(job_id=str(job.id), route="worker", method="background"),
            )
    return len(jobs)


async def worker_loop() -> None:
    """Main worker loop - polls for and processes pending jobs."""
    logger.info(
        f"Worker starting (poll interval: {POLL_INTERVAL_SECONDS}s, batch size: {BATCH_SIZE})"
    )

    while True:
        with SessionLocal() as db:
            try:
                await run_once(db)
            except Exception as e:
                db.rollback()
                logger.error(f"Error in worker loop: {e}")

        await asyncio.sleep(POLL_INTERVAL_SECONDS)


def main() -> None:
    """Entry point for the worker."""
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception(
            "Worker crashed",
            extra=build_log_context(route="worker", method="background"),
        )
        raise


if __name__ == "__main__":
    main()
