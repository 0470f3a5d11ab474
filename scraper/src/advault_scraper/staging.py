"""Staging gateway: hand raw results to the store and wait for extraction.

Extraction itself happens elsewhere (a store-side trigger, or
:mod:`advault_scraper.extraction` when running locally); this module only
writes the pending row and watches its status.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .backoff import NOT_READY, BackoffPolicy, Sleep, poll
from .db.filters import eq
from .errors import DuplicateJobError, DuplicateRowError, PersistenceError, PollTimeoutError, ProcessingError
from .logging import joblog
from .models import (
    REPROCESS_PROCEDURE,
    SERP_ADS_TABLE,
    SERPS_TABLE,
    STAGING_TABLE,
    RecordStatus,
    SerpRecord,
    StagingRecord,
    utcnow,
)
from .serp import build_staging_snapshot


@dataclass(frozen=True)
class ProcessingOutcome:
    staging_id: str
    status: str
    serp_id: str | None
    ad_count: int
    skipped: bool = False
    new_ads_count: int = 0
    new_advertisers_count: int = 0
    message: str | None = None


class StagingGateway:
    def __init__(
        self,
        store,
        *,
        reprocess_on_error: bool = True,
        lag_policy: BackoffPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.store = store
        self.reprocess_on_error = reprocess_on_error
        self.lag_policy = lag_policy or BackoffPolicy.constant(3, 1.0)
        self.sleep = sleep

    def get(self, job_id: str) -> StagingRecord | None:
        row = self.store.select_one(STAGING_TABLE, [eq("job_id", job_id)])
        return StagingRecord.from_row(row) if row else None

    def stage(self, job_id: str, query: str, location: str, raw_result: Mapping[str, Any]) -> str:
        """Insert a pending staging row for ``job_id`` and return its id.

        Raises :class:`DuplicateJobError` when the job is already staged,
        whether the existing row is seen up front or the insert loses a race.
        """

        existing = self.get(job_id)
        if existing is not None:
            joblog("stage_duplicate", job_id=job_id, staging_id=existing.id, status=existing.status, level="warning")
            raise DuplicateJobError(job_id, existing.id)
        try:
            row = self.store.insert(
                STAGING_TABLE,
                {
                    "job_id": job_id,
                    "query": query,
                    "location": location,
                    "timestamp": utcnow(),
                    "content": build_staging_snapshot(raw_result),
                    "status": RecordStatus.PENDING.value,
                },
            )
        except DuplicateRowError as exc:
            raise DuplicateJobError(job_id) from exc
        staging_id = str(row["id"])
        joblog("staged", job_id=job_id, staging_id=staging_id)
        return staging_id

    def find_serp(self, job_id: str) -> SerpRecord | None:
        row = self.store.select_one(SERPS_TABLE, [eq("job_id", job_id)], order_by="timestamp", descending=True)
        if row is None:
            return None
        ad_count = self.store.count(SERP_ADS_TABLE, [eq("serp_id", row["id"])])
        return SerpRecord.from_row(row, ad_count=ad_count)

    async def _await_serp(self, job_id: str, cancel: asyncio.Event | None) -> SerpRecord:
        async def check() -> Any:
            serp = self.find_serp(job_id)
            return serp if serp is not None else NOT_READY

        return await poll(check, self.lag_policy, label=f"serp:{job_id}", cancel=cancel, sleep=self.sleep)

    def _request_reprocess(self, record: StagingRecord) -> bool:
        if not self.reprocess_on_error:
            return False
        try:
            result = self.store.call(REPROCESS_PROCEDURE, record.id)
        except PersistenceError as exc:
            joblog("reprocess_call_failed", job_id=record.job_id, staging_id=record.id, error=str(exc), level="error")
            return False
        joblog("reprocess_requested", job_id=record.job_id, staging_id=record.id, result=result)
        return True

    async def await_processing(
        self,
        job_id: str,
        policy: BackoffPolicy,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ProcessingOutcome:
        """Wait until extraction has settled the staging row for ``job_id``.

        ``processed`` is cross-checked against the SERP table through the lag
        policy; ``error`` raises :class:`ProcessingError` with the stored
        message; ``skipped`` succeeds with ``skipped=True``.
        """

        async def check() -> Any:
            record = self.get(job_id)
            if record is None or record.status == RecordStatus.PENDING.value:
                return NOT_READY
            return record

        record: StagingRecord = await poll(check, policy, label=f"staging:{job_id}", cancel=cancel, sleep=self.sleep)

        if record.status == RecordStatus.ERROR.value:
            message = record.error_message or "extraction failed without a message"
            requested = self._request_reprocess(record)
            joblog("staging_error", job_id=job_id, staging_id=record.id, error=message, level="error")
            raise ProcessingError(message, staging_id=record.id, reprocess_requested=requested)

        if record.status == RecordStatus.SKIPPED.value:
            serp = self.find_serp(job_id)
            joblog("staging_skipped", job_id=job_id, staging_id=record.id, message=record.error_message)
            return ProcessingOutcome(
                staging_id=record.id,
                status=record.status,
                serp_id=serp.id if serp else None,
                ad_count=serp.ad_count if serp else 0,
                skipped=True,
                message=record.error_message,
            )

        try:
            serp = await self._await_serp(job_id, cancel)
        except PollTimeoutError as exc:
            raise ProcessingError(
                f"staging row {record.id} is processed but no SERP exists for job {job_id}",
                staging_id=record.id,
            ) from exc
        joblog("staging_processed", job_id=job_id, staging_id=record.id, serp_id=serp.id, ad_count=serp.ad_count)
        return ProcessingOutcome(
            staging_id=record.id,
            status=record.status,
            serp_id=serp.id,
            ad_count=serp.ad_count,
            new_ads_count=serp.new_ads_count,
            new_advertisers_count=serp.new_advertisers_count,
        )


__all__ = ["ProcessingOutcome", "StagingGateway"]
