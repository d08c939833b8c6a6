# Overview: Background sweep scheduler; runs the reconciliation and late-charge jobs on a daemon thread.

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from .extensions import db
from .time_utils import utcnow, to_utc_z


@dataclass
class SweepJob:
    """
    One named job. Exactly one of interval_seconds / daily_at_hour is set.

    func receives the SQLAlchemy session and runs inside an app context.
    """
    name: str
    func: Callable
    interval_seconds: Optional[int] = None
    daily_at_hour: Optional[int] = None
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None
    runs: int = 0
    failures: int = 0

    def schedule_next(self, now: datetime) -> None:
        if self.interval_seconds is not None:
            self.next_run = now + timedelta(seconds=self.interval_seconds)
            return
        candidate = now.replace(hour=self.daily_at_hour, minute=0, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        self.next_run = candidate

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "daily_at_hour": self.daily_at_hour,
            "next_run": to_utc_z(self.next_run),
            "last_run": to_utc_z(self.last_run),
            "last_error": self.last_error,
            "runs": self.runs,
            "failures": self.failures,
        }


class SweepScheduler:
    """
    Fixed-schedule job runner.

    A failing job is logged and counted; it never stops the loop or the
    other jobs. Each run gets a fresh scoped session that is removed after.
    """

    def __init__(self, app, *, poll_seconds: float = 1.0, clock: Callable[[], datetime] = utcnow):
        self.app = app
        self.poll_seconds = poll_seconds
        self.clock = clock
        self.jobs: dict[str, SweepJob] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def add_job(
        self,
        name: str,
        func: Callable,
        *,
        interval_seconds: int | None = None,
        daily_at_hour: int | None = None,
    ) -> SweepJob:
        if (interval_seconds is None) == (daily_at_hour is None):
            raise ValueError("Give exactly one of interval_seconds or daily_at_hour")
        if interval_seconds is not None and interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if daily_at_hour is not None and not 0 <= daily_at_hour <= 23:
            raise ValueError("daily_at_hour must be between 0 and 23")
        job = SweepJob(name=name, func=func, interval_seconds=interval_seconds, daily_at_hour=daily_at_hour)
        job.schedule_next(self.clock())
        with self._lock:
            self.jobs[name] = job
        return job

    def _execute(self, job: SweepJob, now: datetime):
        result = None
        with self.app.app_context():
            try:
                result = job.func(db.session)
                job.last_error = None
            except Exception as exc:
                job.failures += 1
                job.last_error = str(exc)
                db.session.rollback()
                self.app.logger.exception("Sweep job %s failed", job.name)
            finally:
                db.session.remove()
        job.runs += 1
        job.last_run = now
        return result

    def run_job(self, name: str):
        """Run one job immediately, outside its schedule."""
        with self._lock:
            job = self.jobs.get(name)
        if job is None:
            raise KeyError(f"Unknown job {name}")
        return self._execute(job, self.clock())

    def run_pending(self, now: datetime | None = None) -> list[str]:
        """Run every job that is due. Returns the names that ran."""
        now = now or self.clock()
        with self._lock:
            due = [job for job in self.jobs.values() if job.next_run is not None and job.next_run <= now]
        ran = []
        for job in due:
            self._execute(job, now)
            job.schedule_next(now)
            ran.append(job.name)
        return ran

    def _loop(self) -> None:
        self.app.logger.info("Sweep scheduler started with jobs: %s", ", ".join(self.jobs))
        while not self._stop.wait(self.poll_seconds):
            self.run_pending()
        self.app.logger.info("Sweep scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            self.app.logger.warning("Sweep scheduler is already running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="sweep-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        if not self.is_running:
            return
        self._stop.set()
        self._thread.join(timeout)
        self._thread = None

    def status(self) -> dict:
        with self._lock:
            jobs = [job.to_dict() for job in self.jobs.values()]
        return {"running": self.is_running, "jobs": jobs}


def _late_charge_job(session):
    from .services import installment_service, invoice_service

    result = installment_service.process_late_charges(session)
    result["invoices_overdue"] = invoice_service.refresh_overdue_invoices(session)
    return result


def create_default_scheduler(app, **kwargs) -> SweepScheduler:
    """Scheduler wired with the standard sweep jobs from app config."""
    from .services import reconciliation_service

    config = app.config
    scheduler = SweepScheduler(app, **kwargs)
    scheduler.add_job(
        "expire_reservations",
        reconciliation_service.expire_reservations,
        interval_seconds=config.get("RESERVATION_SWEEP_INTERVAL_SECONDS", 900),
    )
    scheduler.add_job(
        "check_consistency",
        reconciliation_service.check_consistency,
        interval_seconds=config.get("CONSISTENCY_CHECK_INTERVAL_SECONDS", 3600),
    )
    scheduler.add_job(
        "daily_report",
        reconciliation_service.generate_daily_report,
        daily_at_hour=config.get("DAILY_REPORT_HOUR", 6),
    )
    scheduler.add_job(
        "late_charges",
        _late_charge_job,
        daily_at_hour=config.get("LATE_CHARGE_BATCH_HOUR", 1),
    )
    return scheduler
