import logging
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from errors import InsufficientExpenseData
from local_cache import get_global_metrics_cache
from services import CommitmentService, FinanceService, active_user_ids
from shark import SharkService


logger = logging.getLogger(__name__)


def run_shark_audits(session: Session) -> int:
    audited = 0
    for user_id in active_user_ids(session):
        try:
            result = SharkService(session, user_id=user_id).audit()
        except InsufficientExpenseData:
            logger.info(f"shark_audit_skipped: user_id={user_id} reason=insufficient_data")
            continue
        audited += 1
        logger.info(
            f"shark_audit_done: user_id={user_id} new={result.newly_detected} "
            f"zombies={result.zombies_detected}"
        )
    return audited


def snapshot_scores(session: Session) -> int:
    users = active_user_ids(session)
    for user_id in users:
        FinanceService(session, user_id=user_id).snapshot_score()
    return len(users)


def expire_commitments(session: Session) -> int:
    return CommitmentService(session).sweep_expired()


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, name: str, job: Callable[[Session], int], source: str = "manual") -> None:
        logger.info(f"scheduler_run: job={name} source={source}")
        try:
            with session_scope() as session:
                count = job(session)
        except Exception:
            logger.exception(f"scheduler_failed: job={name} source={source}")
            return
        logger.info(f"scheduler_run: job={name} source={source} processed={count}")

    def _cleanup_cache(self) -> None:
        removed = get_global_metrics_cache().cleanup()
        if removed:
            logger.debug(f"cache_cleanup: removed={removed}")

    def start(self) -> None:
        self._run_job("commitment_expiry", expire_commitments, "startup")

        self.scheduler.add_job(
            self._run_job,
            CronTrigger(hour=3, minute=15),
            args=["shark_audit", run_shark_audits, "daily_03:15"],
            id="shark_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.add_job(
            self._run_job,
            CronTrigger(hour=4, minute=0),
            args=["score_snapshot", snapshot_scores, "daily_04:00"],
            id="score_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.add_job(
            self._run_job,
            IntervalTrigger(hours=1),
            args=["commitment_expiry", expire_commitments, "hourly"],
            id="commitment_hourly",
            replace_existing=True,
            misfire_grace_time=300,
        )
        self.scheduler.add_job(
            self._cleanup_cache,
            IntervalTrigger(minutes=5),
            id="cache_cleanup",
            replace_existing=True,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily audits, score snapshots and hourly expiry")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
