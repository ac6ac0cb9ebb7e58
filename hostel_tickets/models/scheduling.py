"""
Hostel Ticketing Platform
Periodic job bookkeeping.

Models:
    - ScheduledJob: one row per registered job (escalation_scan today);
      holds its interval, pause flag and the outcome of the latest run
"""

from datetime import datetime, timedelta, timezone

from hostel_tickets.models import db

JOB_ACTIVE = "active"
JOB_PAUSED = "paused"
JOB_FAILED = "failed"
JOB_STATUSES = {JOB_ACTIVE, JOB_PAUSED, JOB_FAILED}

RUN_SUCCESS = "success"
RUN_FAILED = "failed"


def _aware(value: datetime) -> datetime:
    # SQLite hands timestamps back naive
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class ScheduledJob(db.Model):
    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), default="")
    interval_minutes = db.Column(db.Integer, nullable=False, default=30)
    status = db.Column(db.String(20), default=JOB_ACTIVE, comment="active, paused, failed")
    is_enabled = db.Column(db.Boolean, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True, comment="success, failed")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def record_run(self, *, status=RUN_SUCCESS, duration_ms=0, result=None, error=None):
        self.last_run_at = datetime.now(timezone.utc)
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == RUN_FAILED:
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    def next_run_at(self) -> datetime | None:
        """None means "run at the next tick"."""
        if self.last_run_at is None:
            return None
        return _aware(self.last_run_at) + timedelta(minutes=self.interval_minutes)

    def is_due(self, now: datetime) -> bool:
        if not self.is_enabled:
            return False
        next_run = self.next_run_at()
        return next_run is None or now >= next_run

    def set_enabled(self, enabled: bool) -> None:
        self.is_enabled = enabled
        self.status = JOB_ACTIVE if enabled else JOB_PAUSED

    def to_dict(self):
        def iso(value):
            return value.isoformat() if value else None

        next_run = self.next_run_at()
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "interval_minutes": self.interval_minutes,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": iso(self.last_run_at),
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "next_run_at": iso(next_run) if self.is_enabled else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} every {self.interval_minutes}m [{self.status}]>"
