import structlog
from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from plotshare.config import settings
from plotshare.database import async_session
from plotshare.metrics import SCHEDULER_JOB_RUNS
from plotshare.services.disputes import (
    close_disputes_for_booking,
    find_cancelled_bookings_with_open_disputes,
)
from plotshare.services.notifications import TransactionalNotifier

logger = structlog.get_logger()

scheduler = AsyncIOScheduler()

SCHEDULER_BATCH_SIZE = 20


async def close_disputes_of_cancelled_bookings() -> int:
    """Close open or under-review disputes whose booking has been cancelled.

    Processes at most SCHEDULER_BATCH_SIZE bookings per run; the rest are
    picked up on the next interval. Returns the number of disputes closed.
    """
    closed_total = 0
    async with async_session() as db:
        notifier = TransactionalNotifier(db)
        booking_ids = await find_cancelled_bookings_with_open_disputes(db, SCHEDULER_BATCH_SIZE)

        for booking_id in booking_ids:
            try:
                # Per-booking commit so one failure does not undo the others
                closed = await close_disputes_for_booking(db, booking_id, notifier=notifier)
                await db.commit()
                closed_total += len(closed)
                SCHEDULER_JOB_RUNS.labels(job_name="close_cancelled_booking_disputes", status="success").inc()
            except Exception as e:
                await db.rollback()
                SCHEDULER_JOB_RUNS.labels(job_name="close_cancelled_booking_disputes", status="error").inc()
                logger.exception(
                    "cancelled_booking_dispute_close_failed",
                    booking_id=str(booking_id),
                    error_type=type(e).__name__,
                )

    if closed_total:
        logger.info("cancelled_booking_disputes_closed", count=closed_total)
    return closed_total


def start_scheduler() -> None:
    """Start the APScheduler with the dispute maintenance jobs."""
    scheduler.add_job(
        close_disputes_of_cancelled_bookings,
        "interval",
        minutes=settings.DISPUTE_CANCELLED_BOOKING_SWEEP_MINUTES,
        id="close_cancelled_booking_disputes",
        replace_existing=True,
        misfire_grace_time=300,
    )

    def _job_error_listener(event):
        if event.exception:
            logger.exception(
                "scheduler_job_failed",
                job_id=event.job_id,
                error=str(event.exception),
            )

    scheduler.add_listener(_job_error_listener, EVENT_JOB_ERROR)

    scheduler.start()
    logger.info("scheduler_started")
