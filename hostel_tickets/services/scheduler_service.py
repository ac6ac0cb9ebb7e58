"""
Hostel Ticketing Platform
In-process job runner for periodic ticket housekeeping.

Job functions register with ``@register_job``; each gets a ScheduledJob
row that stores its interval and last outcome.  When SCHEDULER_ENABLED is
set a daemon thread wakes every ``TICK_SECONDS`` and runs whatever is due.
Admins can also run or pause jobs through the scheduler endpoints.

Every run happens in a fresh app context, so callers holding uncommitted
work in their own session will not see it reflected in the job.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from flask import Flask, current_app, has_app_context

from hostel_tickets.models import db
from hostel_tickets.models.scheduling import (
    JOB_ACTIVE,
    JOB_FAILED,
    RUN_FAILED,
    RUN_SUCCESS,
    ScheduledJob,
)

logger = logging.getLogger(__name__)

TICK_SECONDS = 30
FALLBACK_INTERVAL_MIN = 60


@dataclass(frozen=True)
class _RegisteredJob:
    fn: Callable
    interval_setting: str | None

    def interval(self, app: Flask) -> int:
        if self.interval_setting is None:
            return FALLBACK_INTERVAL_MIN
        return int(app.config.get(self.interval_setting, FALLBACK_INTERVAL_MIN))


_jobs: dict[str, _RegisteredJob] = {}


def register_job(name: str, interval_setting: str | None = None):
    """Register *fn* under *name*; its interval is read from *interval_setting*."""
    def decorator(fn: Callable) -> Callable:
        _jobs[name] = _RegisteredJob(fn, interval_setting)
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return {name: entry.fn for name, entry in _jobs.items()}


def _job_row(job_name: str) -> ScheduledJob | None:
    return ScheduledJob.query.filter_by(job_name=job_name).first()


class SchedulerService:
    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop_event: threading.Event | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("Scheduler bound, %d job(s) registered", len(_jobs))
        if app.config.get("SCHEDULER_ENABLED", False):
            cls.start()

    # ── Loop ─────────────────────────────────────────────────────────────

    @classmethod
    def start(cls) -> None:
        if cls._thread is not None and cls._thread.is_alive():
            return
        cls.ensure_jobs_registered()
        cls._stop_event = threading.Event()
        cls._thread = threading.Thread(target=cls._loop, name="ticket-scheduler", daemon=True)
        cls._thread.start()
        logger.info("Scheduler thread started, tick every %ss", TICK_SECONDS)

    @classmethod
    def stop(cls, timeout: float = 5.0) -> None:
        if cls._stop_event is not None:
            cls._stop_event.set()
        if cls._thread is not None:
            cls._thread.join(timeout)
        cls._thread = None

    @classmethod
    def _loop(cls) -> None:
        while not cls._stop_event.is_set():
            try:
                cls.run_due_jobs()
            except Exception:
                # the thread must outlive a bad tick; the next one retries
                logger.exception("Scheduler tick failed")
            cls._stop_event.wait(TICK_SECONDS)

    @classmethod
    def run_due_jobs(cls, now: datetime | None = None) -> list[dict]:
        if cls._app is None:
            return []
        now = now or datetime.now(timezone.utc)
        with cls._app.app_context():
            due = [
                row.job_name
                for row in ScheduledJob.query.filter_by(is_enabled=True)
                if row.job_name in _jobs and row.is_due(now)
            ]
        return [cls.run_job(name) for name in due]

    # ── Rows ─────────────────────────────────────────────────────────────

    @classmethod
    def _bound_context(cls):
        """The caller's app context when it belongs to our app, else a new one."""
        if has_app_context() and current_app._get_current_object() is cls._app:
            return nullcontext()
        return cls._app.app_context()

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Insert a row for each registered job that lacks one.

        Runs in the caller's session when called inside the app, so the
        returned rows stay usable there.
        """
        if cls._app is None:
            return []

        created = []
        with cls._bound_context():
            for name, entry in _jobs.items():
                if _job_row(name) is not None:
                    continue
                row = ScheduledJob(
                    job_name=name,
                    description=(entry.fn.__doc__ or name).strip().splitlines()[0],
                    interval_minutes=entry.interval(cls._app),
                    status=JOB_ACTIVE,
                    is_enabled=True,
                )
                db.session.add(row)
                created.append(row)
            if created:
                db.session.commit()
                logger.info("Registered %d scheduled job row(s)", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """Run *job_name* now and record the outcome on its row.

        A failing job is reported as ``status="failed"``; an unknown name
        or an unbound scheduler as ``status="error"``.
        """
        entry = _jobs.get(job_name)
        if entry is None:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if cls._app is None:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialised"}

        started = time.monotonic()
        result, error, status = None, None, RUN_SUCCESS
        try:
            with cls._app.app_context():
                result = entry.fn(cls._app)
        except Exception as exc:
            status, error = RUN_FAILED, str(exc)
            logger.exception("Job failed", extra={"job_name": job_name})
        duration_ms = int((time.monotonic() - started) * 1000)

        with cls._app.app_context():
            row = _job_row(job_name)
            if row is not None:
                row.record_run(
                    status=status,
                    duration_ms=duration_ms,
                    result=result if isinstance(result, dict) else {"output": str(result)},
                    error=error,
                )
                if row.is_enabled:
                    row.status = JOB_FAILED if status == RUN_FAILED else JOB_ACTIVE
                db.session.commit()

        logger.info("Job finished in %dms: %s", duration_ms, status,
                    extra={"job_name": job_name})
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        out = []
        for name in _jobs:
            row = _job_row(name)
            out.append({
                "job_name": name,
                "registered": True,
                "db_record": row.to_dict() if row else None,
            })
        return out

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        row = _job_row(job_name)
        if row is None:
            return None
        row.set_enabled(enabled)
        db.session.commit()
        logger.info("Job %s", "resumed" if enabled else "paused", extra={"job_name": job_name})
        return row.to_dict()
