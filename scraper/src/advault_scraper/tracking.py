"""Per-job status tracking across the four pipeline steps.

Each step column moves ``pending -> in_progress -> terminal`` and never leaves
a terminal value except through :meth:`JobTracker.reset`. Updates touch only
the columns they own and are guarded by the previously read step value, so a
stale writer cannot clobber a newer state.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from .db.filters import eq
from .errors import AdvaultError, RecordNotFoundError, StateTransitionError
from .logging import joblog
from .models import TRACKING_TABLE, JobStatus, JobTrackingRecord, Step, StepStatus, utcnow

TEMP_JOB_PREFIX = "temp-"

_BASE_TERMINAL = frozenset({StepStatus.SUCCESS, StepStatus.FAILED})
_RENDERING_TERMINAL = _BASE_TERMINAL | {StepStatus.PARTIAL_SUCCESS, StepStatus.SKIPPED}
_COMPLETING = frozenset({StepStatus.SUCCESS, StepStatus.PARTIAL_SUCCESS})


def terminal_statuses(step: Step) -> frozenset[StepStatus]:
    return _RENDERING_TERMINAL if step is Step.RENDERING else _BASE_TERMINAL


def can_transition(step: Step, current: str, target: StepStatus) -> bool:
    """Whether ``step`` may move from ``current`` to ``target``."""

    if current == target.value:
        return True
    allowed = terminal_statuses(step)
    if current == StepStatus.PENDING.value:
        return target is StepStatus.IN_PROGRESS or target in allowed
    if current == StepStatus.IN_PROGRESS.value:
        return target in allowed
    return False


def is_temporary(job_id: str) -> bool:
    return job_id.startswith(TEMP_JOB_PREFIX)


def _describe(exc: BaseException) -> str:
    text = str(exc).strip()
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


@dataclass
class StepHandle:
    """Mutable view of a step in flight; its fields are written on exit."""

    tracker: "JobTracker"
    job_id: str
    step: Step
    outcome: StepStatus = StepStatus.SUCCESS
    error: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)

    def rebind(self, job_id: str) -> None:
        self.tracker.rebind(self.job_id, job_id)
        self.job_id = job_id

    def set(self, **fields: Any) -> None:
        self.fields.update(fields)

    def finish(self, outcome: StepStatus, error: str | None = None) -> None:
        if outcome not in terminal_statuses(self.step):
            raise StateTransitionError(f"{outcome.value} is not a terminal value for {self.step.name}")
        self.outcome = outcome
        self.error = error


class JobTracker:
    """Reads go through ``reader``; writes through ``writer`` (defaults to ``reader``)."""

    def __init__(self, reader, writer=None) -> None:
        self.reader = reader
        self.writer = writer or reader

    # ============================
    # Reads
    # ============================

    def get(self, job_id: str) -> JobTrackingRecord | None:
        row = self.reader.select_one(TRACKING_TABLE, [eq("job_id", job_id)])
        return JobTrackingRecord.from_row(row) if row else None

    def require(self, job_id: str) -> JobTrackingRecord:
        record = self.get(job_id)
        if record is None:
            raise RecordNotFoundError(f"no tracking record for job {job_id}")
        return record

    def list_recent(self, limit: int = 20, offset: int = 0) -> list[JobTrackingRecord]:
        rows = self.reader.select(TRACKING_TABLE, order_by="started_at", descending=True, limit=limit, offset=offset)
        return [JobTrackingRecord.from_row(r) for r in rows]

    def stats(self) -> dict[str, dict[str, int]]:
        """Counts per status value, for the overall status and every step column."""

        columns = ["status"] + [s.value for s in Step]
        rows = self.reader.select(TRACKING_TABLE, columns=columns)
        return {col: dict(Counter(r.get(col) or StepStatus.PENDING.value for r in rows)) for col in columns}

    # ============================
    # Writes
    # ============================

    def start(self, query: str, location: str, job_id: str | None = None) -> str:
        """Create the tracking row; without a provider id a ``temp-`` id is used."""

        if job_id and self.get(job_id) is not None:
            return job_id
        job_id = job_id or f"{TEMP_JOB_PREFIX}{uuid4().hex}"
        pending = StepStatus.PENDING.value
        self.writer.insert(
            TRACKING_TABLE,
            {
                "job_id": job_id,
                "query": query,
                "location": location,
                "status": JobStatus.PENDING.value,
                **{s.value: pending for s in Step},
                "new_ads_count": 0,
                "new_advertisers_count": 0,
                "started_at": utcnow(),
            },
        )
        joblog("tracking_started", job_id=job_id, query=query, location=location)
        return job_id

    def rebind(self, old_job_id: str, new_job_id: str) -> None:
        """Replace a temporary id with the provider-assigned one, in place."""

        if old_job_id == new_job_id:
            return
        rows = self.writer.update(TRACKING_TABLE, {"job_id": new_job_id}, [eq("job_id", old_job_id)])
        if not rows:
            raise RecordNotFoundError(f"no tracking record for job {old_job_id}")
        joblog("tracking_rebound", job_id=new_job_id, previous_job_id=old_job_id)

    def mark(
        self,
        job_id: str,
        step: Step,
        status: StepStatus,
        *,
        error: str | None = None,
        **fields: Any,
    ) -> JobTrackingRecord:
        """Move ``step`` to ``status``, writing only the affected columns."""

        current = self.require(job_id)
        previous = current.step_status(step)
        if not can_transition(step, previous, status):
            raise StateTransitionError(f"{step.name} cannot move from {previous} to {status.value} (job {job_id})")

        values: dict[str, Any] = dict(fields)
        if previous != status.value:
            values[step.value] = status.value
        if error is not None:
            values["error_message"] = error[:2000]
        if status is StepStatus.IN_PROGRESS and current.status == JobStatus.PENDING.value:
            values["status"] = JobStatus.RUNNING.value
        elif status is StepStatus.FAILED:
            values["status"] = JobStatus.FAILED.value
        elif step is Step.RENDERING and status in _COMPLETING:
            values["status"] = JobStatus.COMPLETED.value
            if previous != status.value:
                values["completed_at"] = utcnow()
        elif step is Step.RENDERING and status is StepStatus.SKIPPED:
            values["status"] = JobStatus.COMPLETED.value
        if not values:
            return current

        rows = self.writer.update(TRACKING_TABLE, values, [eq("job_id", job_id), eq(step.value, previous)])
        if not rows:
            raise StateTransitionError(f"{step.name} for job {job_id} changed underneath the update")
        joblog(
            "step_status",
            job_id=job_id,
            step=step.name.lower(),
            status=status.value,
            previous=previous,
            error=error,
            level="error" if status is StepStatus.FAILED else "info",
        )
        return JobTrackingRecord.from_row(rows[0])

    @contextmanager
    def step(self, job_id: str, step: Step) -> Iterator[StepHandle]:
        """Run a stage with a guaranteed terminal status on exit.

        Normal exit writes ``handle.outcome`` (``success`` unless changed);
        any exception, cancellation included, writes ``failed`` with the
        exception text before propagating.
        """

        handle = StepHandle(self, job_id, step)
        self.mark(job_id, step, StepStatus.IN_PROGRESS)
        try:
            yield handle
        except BaseException as exc:
            try:
                self.mark(handle.job_id, step, StepStatus.FAILED, error=_describe(exc), **handle.fields)
            except AdvaultError as mark_exc:
                joblog(
                    "step_finalize_failed",
                    job_id=handle.job_id,
                    step=step.name.lower(),
                    error=str(mark_exc),
                    level="error",
                )
            raise
        self.mark(handle.job_id, step, handle.outcome, error=handle.error, **handle.fields)

    def skip(self, job_id: str, step: Step, reason: str | None = None) -> JobTrackingRecord:
        joblog("step_skipped", job_id=job_id, step=step.name.lower(), reason=reason)
        return self.mark(job_id, step, StepStatus.SKIPPED)

    def reset(self, job_id: str) -> JobTrackingRecord:
        """Explicitly return every step to ``pending``; the only way out of a terminal state."""

        pending = StepStatus.PENDING.value
        rows = self.writer.update(
            TRACKING_TABLE,
            {
                "status": JobStatus.PENDING.value,
                **{s.value: pending for s in Step},
                "error_message": None,
                "completed_at": None,
            },
            [eq("job_id", job_id)],
        )
        if not rows:
            raise RecordNotFoundError(f"no tracking record for job {job_id}")
        joblog("tracking_reset", job_id=job_id)
        return JobTrackingRecord.from_row(rows[0])


__all__ = ["TEMP_JOB_PREFIX", "JobTracker", "StepHandle", "can_transition", "is_temporary", "terminal_statuses"]
