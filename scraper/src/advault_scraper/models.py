"""Record types and status vocabularies persisted by the pipeline."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

UTC = getattr(datetime, "UTC", timezone.utc)


def utcnow() -> datetime:
    return datetime.now(UTC)


# ============================
# Tables
# ============================

STAGING_TABLE = "staging_serps"
SERPS_TABLE = "serps"
SERP_ADS_TABLE = "serp_ads"
ADS_TABLE = "ads"
ADVERTISERS_TABLE = "advertisers"
RENDERINGS_TABLE = "ad_renderings"
TRACKING_TABLE = "job_tracking"
PROCESSING_LOGS_TABLE = "processing_logs"
REPROCESS_PROCEDURE = "reprocess_staged_serp"


# ============================
# Status vocabularies
# ============================


class RecordStatus(str, Enum):
    """Lifecycle of staging and rendering rows."""

    PENDING = "pending"
    PROCESSED = "processed"
    ERROR = "error"
    SKIPPED = "skipped"


class RenderingType(str, Enum):
    HTML = "html"
    PNG = "png"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL_SUCCESS = "partial_success"
    SKIPPED = "skipped"


class Step(str, Enum):
    """Tracked pipeline steps; each value is the tracking column it owns."""

    SUBMISSION = "api_call_status"
    EXTRACTION_PROCESSING = "serp_processing_status"
    AD_EXTRACTION = "ads_extraction_status"
    RENDERING = "rendering_status"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================
# Records
# ============================


@dataclass(frozen=True)
class StagingRecord:
    id: str
    job_id: str
    query: str
    location: str
    status: str
    content: Any = None
    error_message: str | None = None
    processed_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "StagingRecord":
        return cls(
            id=str(row["id"]),
            job_id=row["job_id"],
            query=row.get("query") or "",
            location=row.get("location") or "",
            status=row.get("status") or RecordStatus.PENDING.value,
            content=row.get("content"),
            error_message=row.get("error_message"),
            processed_at=row.get("processed_at"),
            created_at=row.get("created_at"),
        )


@dataclass(frozen=True)
class SerpRecord:
    id: str
    job_id: str
    query: str
    location: str
    timestamp: datetime | None = None
    ad_count: int = 0
    new_ads_count: int = 0
    new_advertisers_count: int = 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any], *, ad_count: int = 0) -> "SerpRecord":
        return cls(
            id=str(row["id"]),
            job_id=row["job_id"],
            query=row.get("query") or "",
            location=row.get("location") or "",
            timestamp=row.get("timestamp"),
            ad_count=ad_count,
            new_ads_count=row.get("new_ads_count") or 0,
            new_advertisers_count=row.get("new_advertisers_count") or 0,
        )


@dataclass(frozen=True)
class AdRecord:
    id: str
    advertiser_domain: str
    title: str
    url: str | None
    description: str | None = None
    shown_url: str | None = None
    position: int | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any], *, position: int | None = None) -> "AdRecord":
        return cls(
            id=str(row["id"]),
            advertiser_domain=row.get("advertiser_domain") or "",
            title=row.get("title") or "",
            url=row.get("url"),
            description=row.get("description"),
            shown_url=row.get("shown_url"),
            position=position,
        )


@dataclass(frozen=True)
class RenderingRecord:
    id: str
    ad_id: str
    serp_id: str
    rendering_type: str
    status: str
    content_path: str | None = None
    content_size: int | None = None
    storage_url: str | None = None
    error_message: str | None = None
    has_content: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RenderingRecord":
        return cls(
            id=str(row["id"]),
            ad_id=str(row["ad_id"]),
            serp_id=str(row["serp_id"]),
            rendering_type=row["rendering_type"],
            status=row.get("status") or RecordStatus.PENDING.value,
            content_path=row.get("content_path"),
            content_size=row.get("content_size"),
            storage_url=row.get("storage_url"),
            error_message=row.get("error_message"),
            has_content=bool(row.get("content_html") or row.get("binary_content")),
        )


@dataclass(frozen=True)
class JobTrackingRecord:
    job_id: str
    query: str
    location: str
    status: str
    api_call_status: str
    serp_processing_status: str
    ads_extraction_status: str
    rendering_status: str
    serp_id: str | None = None
    new_ads_count: int = 0
    new_advertisers_count: int = 0
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def step_status(self, step: Step) -> str:
        return getattr(self, step.value)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "JobTrackingRecord":
        pending = StepStatus.PENDING.value
        return cls(
            job_id=row["job_id"],
            query=row.get("query") or "",
            location=row.get("location") or "",
            status=row.get("status") or JobStatus.PENDING.value,
            api_call_status=row.get("api_call_status") or pending,
            serp_processing_status=row.get("serp_processing_status") or pending,
            ads_extraction_status=row.get("ads_extraction_status") or pending,
            rendering_status=row.get("rendering_status") or pending,
            serp_id=str(row["serp_id"]) if row.get("serp_id") else None,
            new_ads_count=row.get("new_ads_count") or 0,
            new_advertisers_count=row.get("new_advertisers_count") or 0,
            error_message=row.get("error_message"),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
        )


__all__ = [
    "ADS_TABLE",
    "ADVERTISERS_TABLE",
    "PROCESSING_LOGS_TABLE",
    "RENDERINGS_TABLE",
    "REPROCESS_PROCEDURE",
    "SERPS_TABLE",
    "SERP_ADS_TABLE",
    "STAGING_TABLE",
    "TRACKING_TABLE",
    "AdRecord",
    "JobStatus",
    "JobTrackingRecord",
    "RecordStatus",
    "RenderingRecord",
    "RenderingType",
    "SerpRecord",
    "StagingRecord",
    "Step",
    "StepStatus",
    "utcnow",
]
