from __future__ import annotations

import logging
import sys
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from ..config import settings
from ..db.session import SessionLocal
from ..services.email import EmailClient, get_email_client
from ..services.notifications import dispatch_notifications


logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "notification-sweep"


@contextmanager
def session_scope(session_factory: Callable[[], Session] = SessionLocal) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


class NotificationSweeper:
    """Runs the notification sweep on a timer and on demand, never twice at once.

    The scheduled job and the manual trigger share one non-blocking lock: a
    sweep requested while another is running is skipped, not queued.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        email_client_factory: Callable[[], EmailClient] = get_email_client,
        interval_minutes: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self._email_client_factory = email_client_factory
        self._interval_minutes = interval_minutes or settings.notification_sweep_interval_minutes
        self._lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def run(self) -> Optional[dict[str, int]]:
        """Run one sweep; None if another sweep already holds the lock."""
        if not self._lock.acquire(blocking=False):
            logger.info("Notification sweep already in progress, skipping")
            return None
        try:
            with session_scope(self._session_factory) as session:
                stats = dispatch_notifications(session, email_client=self._email_client_factory())
            if stats:
                logger.info("Dispatched notifications: %s", stats)
            return stats
        finally:
            self._lock.release()

    def _run_scheduled(self) -> None:
        try:
            self.run()
        except Exception:
            # the timer keeps going; the next tick retries whatever is still due
            logger.exception("Scheduled notification sweep failed")

    def start(self) -> None:
        if self.running:
            return
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_job(
            self._run_scheduled,
            IntervalTrigger(minutes=self._interval_minutes),
            id=SWEEP_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Notification sweep scheduled every %s minutes", self._interval_minutes)

    def shutdown(self, wait: bool = True) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("Notification sweep stopped")


def run_dispatch_job() -> None:
    with session_scope() as session:
        stats = dispatch_notifications(session)
    if stats:
        logger.info("Dispatched notifications: %s", stats)


def configure_scheduler() -> BlockingScheduler:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        run_dispatch_job,
        IntervalTrigger(minutes=settings.notification_sweep_interval_minutes),
        id=SWEEP_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def main() -> None:
    logging.basicConfig(level=logging.INFO, handlers=[logging.StreamHandler(sys.stdout)])

    if len(sys.argv) > 1 and sys.argv[1] == "run-once":
        logger.info("Running notification sweep once")
        run_dispatch_job()
        return

    scheduler = configure_scheduler()
    logger.info("Starting notification worker scheduler")
    scheduler.start()


if __name__ == "__main__":
    main()
