"""Manual recovery: push stuck or failed jobs back to ``pending``.

Resetting a staging row to ``pending`` makes extraction pick it up again;
the matching tracking row is reset through :meth:`JobTracker.reset`, the only
sanctioned way out of a terminal step state.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .db.filters import eq, in_
from .errors import RecordNotFoundError
from .logging import jlog, joblog
from .models import SERP_ADS_TABLE, SERPS_TABLE, STAGING_TABLE, RecordStatus


@dataclass(frozen=True)
class ResetResult:
    job_id: str
    staging_id: str
    previous_status: str
    tracking_reset: bool


@dataclass
class ResetSummary:
    reset: list[ResetResult] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.reset)


class RecoveryTools:
    def __init__(self, store, tracker) -> None:
        self.store = store
        self.tracker = tracker

    def reset_job(self, job_id: str) -> ResetResult:
        """Reset the staging row and tracking steps of ``job_id`` to ``pending``."""

        row = self.store.select_one(STAGING_TABLE, [eq("job_id", job_id)])
        if row is None:
            raise RecordNotFoundError(f"no staging record for job {job_id}")
        self.store.update(
            STAGING_TABLE,
            {"status": RecordStatus.PENDING.value, "processed_at": None, "error_message": None},
            [eq("id", row["id"])],
        )
        tracking_reset = True
        try:
            self.tracker.reset(job_id)
        except RecordNotFoundError:
            tracking_reset = False
            joblog("reset_no_tracking_row", job_id=job_id, level="warning")
        joblog("job_reset", job_id=job_id, staging_id=str(row["id"]), previous_status=row.get("status"))
        return ResetResult(job_id, str(row["id"]), row.get("status") or "", tracking_reset)

    def _reset_many(self, job_ids: list[str], reason: str) -> ResetSummary:
        summary = ResetSummary()
        for job_id in job_ids:
            try:
                summary.reset.append(self.reset_job(job_id))
            except RecordNotFoundError as exc:
                summary.failed[job_id] = str(exc)
        jlog("info", event="bulk_reset_done", reason=reason, reset=summary.count, failed=len(summary.failed))
        return summary

    def reset_all_errors(self) -> ResetSummary:
        """Reset every staging row currently in ``error``, newest first."""

        rows = self.store.select(
            STAGING_TABLE,
            [eq("status", RecordStatus.ERROR.value)],
            columns=["job_id"],
            order_by="created_at",
            descending=True,
        )
        return self._reset_many([r["job_id"] for r in rows], "error")

    def find_orphans(self) -> list[str]:
        """Job ids whose staging row says ``processed`` but whose SERP has no ad links."""

        processed = self.store.select(STAGING_TABLE, [eq("status", RecordStatus.PROCESSED.value)], columns=["job_id"])
        job_ids = [r["job_id"] for r in processed]
        if not job_ids:
            return []
        serps = self.store.select(SERPS_TABLE, [in_("job_id", job_ids)], columns=["id", "job_id"])
        linked_serps = set()
        if serps:
            links = self.store.select(SERP_ADS_TABLE, [in_("serp_id", [s["id"] for s in serps])], columns=["serp_id"])
            linked_serps = {str(link["serp_id"]) for link in links}
        linked_jobs = {s["job_id"] for s in serps if str(s["id"]) in linked_serps}
        return [job_id for job_id in job_ids if job_id not in linked_jobs]

    def reset_orphans(self) -> ResetSummary:
        return self._reset_many(self.find_orphans(), "orphan")


__all__ = ["RecoveryTools", "ResetResult", "ResetSummary"]
