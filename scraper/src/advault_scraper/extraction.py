"""In-process extraction of staged SERP snapshots.

This mirrors what the store-side trigger does for a pending staging row:
record the SERP, upsert advertisers and ads, link ads to the SERP in position
order, and settle the staging row as ``processed``, ``skipped`` (no paid ads)
or ``error``. Every step leaves a ``processing_logs`` row.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .db.filters import eq
from .errors import AdvaultError, PersistenceError
from .hashing import ad_fingerprint
from .logging import jlog, joblog
from .models import (
    ADS_TABLE,
    ADVERTISERS_TABLE,
    PROCESSING_LOGS_TABLE,
    SERP_ADS_TABLE,
    SERPS_TABLE,
    STAGING_TABLE,
    RecordStatus,
    StagingRecord,
    utcnow,
)
from .serp import AdsAbsent, PaidAd, decode_serp

NO_ADS_MESSAGE = "No paid ads found"


@dataclass(frozen=True)
class ExtractionOutcome:
    staging_id: str
    job_id: str
    status: str
    serp_id: str | None = None
    ad_count: int = 0
    new_ads_count: int = 0
    new_advertisers_count: int = 0
    error: str | None = None


class StagingExtractor:
    def __init__(self, store) -> None:
        self.store = store

    def _log(self, staging_id: str, operation: str, status: str, message: str | None = None) -> None:
        try:
            self.store.insert(
                PROCESSING_LOGS_TABLE,
                {
                    "staging_id": staging_id,
                    "operation": operation,
                    "status": status,
                    "message": message,
                    "created_at": utcnow(),
                },
            )
        except PersistenceError as exc:
            jlog("warning", event="processing_log_write_failed", staging_id=staging_id, operation=operation, error=str(exc))

    def _settle(self, record: StagingRecord, status: RecordStatus, message: str | None = None) -> None:
        self.store.update(
            STAGING_TABLE,
            {"status": status.value, "error_message": message, "processed_at": utcnow()},
            [eq("id", record.id)],
        )

    def _serp_for(self, record: StagingRecord) -> dict[str, Any]:
        existing = self.store.select_one(SERPS_TABLE, [eq("job_id", record.job_id)])
        if existing:
            return existing
        return self.store.insert(
            SERPS_TABLE,
            {
                "job_id": record.job_id,
                "query": record.query,
                "location": record.location,
                "timestamp": utcnow(),
                "content": record.content,
                "new_ads_count": 0,
                "new_advertisers_count": 0,
            },
        )

    def _upsert_advertiser(self, domain: str) -> bool:
        now = utcnow()
        if self.store.select_one(ADVERTISERS_TABLE, [eq("domain", domain)]):
            self.store.update(ADVERTISERS_TABLE, {"last_seen": now}, [eq("domain", domain)])
            return False
        self.store.insert(ADVERTISERS_TABLE, {"domain": domain, "first_seen": now, "last_seen": now})
        return True

    def _upsert_ad(self, ad: PaidAd, domain: str) -> tuple[str, bool]:
        ad_id = ad_fingerprint(domain, ad.title, ad.url)
        if self.store.select_one(ADS_TABLE, [eq("id", ad_id)]):
            return ad_id, False
        self.store.insert(
            ADS_TABLE,
            {
                "id": ad_id,
                "advertiser_domain": domain,
                "title": ad.title,
                "description": ad.description,
                "url": ad.url,
                "shown_url": ad.shown_url,
                "rating": ad.extras.get("rating"),
                "review_count": ad.extras.get("review_count"),
                "price": ad.extras.get("price"),
                "seller": ad.extras.get("seller"),
                "timestamp": utcnow(),
            },
        )
        return ad_id, True

    def _link(self, serp_id: str, ad_id: str, ad: PaidAd) -> None:
        if self.store.select_one(SERP_ADS_TABLE, [eq("serp_id", serp_id), eq("ad_id", ad_id)]):
            return
        self.store.insert(
            SERP_ADS_TABLE,
            {
                "serp_id": serp_id,
                "ad_id": ad_id,
                "position": ad.position,
                "position_overall": ad.position_overall,
            },
        )

    def process(self, row: dict[str, Any]) -> ExtractionOutcome:
        """Extract one staging row; failures are written to the row, not raised."""

        record = StagingRecord.from_row(row)
        self._log(record.id, "extract", "started")
        try:
            decoded = decode_serp(record.content or {})
            serp = self._serp_for(record)
            serp_id = str(serp["id"])
            if isinstance(decoded, AdsAbsent):
                self._settle(record, RecordStatus.SKIPPED, NO_ADS_MESSAGE)
                self._log(record.id, "extract", "skipped", decoded.reason)
                joblog("extraction_skipped", job_id=record.job_id, serp_id=serp_id, reason=decoded.reason)
                return ExtractionOutcome(record.id, record.job_id, RecordStatus.SKIPPED.value, serp_id=serp_id)

            new_ads = new_advertisers = 0
            linked_ids: set[str] = set()
            seen: set[str] = set()
            for ad in decoded.ads:
                domain = ad.advertiser_domain or "unknown"
                if domain not in seen:
                    seen.add(domain)
                    new_advertisers += self._upsert_advertiser(domain)
                ad_id, created = self._upsert_ad(ad, domain)
                new_ads += created
                self._link(serp_id, ad_id, ad)
                linked_ids.add(ad_id)
            linked = len(linked_ids)
            self.store.update(
                SERPS_TABLE,
                {"new_ads_count": new_ads, "new_advertisers_count": new_advertisers},
                [eq("id", serp_id)],
            )
            self._settle(record, RecordStatus.PROCESSED)
            self._log(record.id, "extract", "processed", f"{linked} ads linked, {new_ads} new")
        except AdvaultError as exc:
            message = str(exc)
            joblog("extraction_error", job_id=record.job_id, staging_id=record.id, error=message, level="error")
            self._settle(record, RecordStatus.ERROR, message)
            self._log(record.id, "extract", "error", message)
            return ExtractionOutcome(record.id, record.job_id, RecordStatus.ERROR.value, error=message)

        joblog(
            "extraction_processed",
            job_id=record.job_id,
            serp_id=serp_id,
            ads=linked,
            new_ads=new_ads,
            new_advertisers=new_advertisers,
        )
        return ExtractionOutcome(
            record.id,
            record.job_id,
            RecordStatus.PROCESSED.value,
            serp_id=serp_id,
            ad_count=linked,
            new_ads_count=new_ads,
            new_advertisers_count=new_advertisers,
        )

    def process_job(self, job_id: str) -> ExtractionOutcome | None:
        row = self.store.select_one(STAGING_TABLE, [eq("job_id", job_id), eq("status", RecordStatus.PENDING.value)])
        return self.process(row) if row else None

    def process_pending(self, limit: int | None = None) -> list[ExtractionOutcome]:
        rows = self.store.select(
            STAGING_TABLE,
            [eq("status", RecordStatus.PENDING.value)],
            order_by="created_at",
            limit=limit,
        )
        outcomes = [self.process(row) for row in rows]
        jlog("info", event="extraction_batch_done", rows=len(outcomes))
        return outcomes


__all__ = ["NO_ADS_MESSAGE", "ExtractionOutcome", "StagingExtractor"]
