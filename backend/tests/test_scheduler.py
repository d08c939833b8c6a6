"""
Sweep scheduler tests, driven by a fixed clock instead of the thread.
"""

import time
from datetime import datetime, timedelta

import pytest

from tradeledger.scheduler import SweepScheduler, create_default_scheduler


T0 = datetime(2024, 1, 1, 5, 30)


def _scheduler(app, **kwargs):
    return SweepScheduler(app, clock=lambda: T0, **kwargs)


@pytest.mark.parametrize("kwargs", [
    {},
    {"interval_seconds": 60, "daily_at_hour": 3},
    {"interval_seconds": 0},
    {"daily_at_hour": 24},
])
def test_add_job_validates_schedule(app, kwargs):
    with pytest.raises(ValueError):
        _scheduler(app).add_job("bad", lambda session: None, **kwargs)


def test_interval_job_runs_when_due(app):
    calls = []
    scheduler = _scheduler(app)
    job = scheduler.add_job("tick", lambda session: calls.append(session), interval_seconds=60)

    assert job.next_run == T0 + timedelta(seconds=60)
    assert scheduler.run_pending(T0 + timedelta(seconds=30)) == []
    assert scheduler.run_pending(T0 + timedelta(seconds=60)) == ["tick"]
    assert len(calls) == 1
    assert job.runs == 1
    assert job.last_run == T0 + timedelta(seconds=60)
    assert job.next_run == T0 + timedelta(seconds=120)


def test_daily_job_rolls_to_next_day(app):
    scheduler = _scheduler(app)
    job = scheduler.add_job("report", lambda session: None, daily_at_hour=6)

    assert job.next_run == datetime(2024, 1, 1, 6, 0)
    scheduler.run_pending(datetime(2024, 1, 1, 7, 0))
    assert job.next_run == datetime(2024, 1, 2, 6, 0)


def test_failing_job_is_counted_and_does_not_stop_others(app):
    def boom(session):
        raise RuntimeError("boom")

    ok_calls = []
    scheduler = _scheduler(app)
    scheduler.add_job("boom", boom, interval_seconds=10)
    scheduler.add_job("ok", lambda session: ok_calls.append(1), interval_seconds=10)

    ran = scheduler.run_pending(T0 + timedelta(seconds=10))

    assert ran == ["boom", "ok"]
    assert ok_calls == [1]
    failing = scheduler.jobs["boom"]
    assert failing.failures == 1
    assert failing.last_error == "boom"
    assert failing.runs == 1
    # Rescheduled like any other run
    assert failing.next_run == T0 + timedelta(seconds=20)


def test_run_job_unknown_name(app):
    with pytest.raises(KeyError):
        _scheduler(app).run_job("missing")


def test_default_scheduler_jobs(app, db_session):
    scheduler = create_default_scheduler(app, clock=lambda: T0)

    assert set(scheduler.jobs) == {"expire_reservations", "check_consistency", "daily_report", "late_charges"}
    assert scheduler.jobs["expire_reservations"].interval_seconds == 900
    assert scheduler.jobs["daily_report"].daily_at_hour == 6

    result = scheduler.run_job("expire_reservations")
    assert result == {"expired_count": 0, "unit_ids": []}

    late = scheduler.run_job("late_charges")
    assert late["processed"] == 0
    assert late["invoices_overdue"] == 0


def test_status_and_thread_lifecycle(app):
    scheduler = SweepScheduler(app, poll_seconds=0.01)
    scheduler.add_job("noop", lambda session: None, interval_seconds=3600)

    status = scheduler.status()
    assert status["running"] is False
    assert status["jobs"][0]["name"] == "noop"
    assert status["jobs"][0]["runs"] == 0

    scheduler.start()
    try:
        assert scheduler.is_running is True
        time.sleep(0.05)
    finally:
        scheduler.stop()
    assert scheduler.is_running is False
