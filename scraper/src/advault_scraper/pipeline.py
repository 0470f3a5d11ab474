"""One (query, location) item through every stage.

submit -> wait for results -> stage -> await extraction -> verify ads ->
render landing pages -> upload PNGs. Each stage runs inside a tracker step so
its status column always ends terminal, whatever happens inside.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .backoff import BackoffPolicy
from .errors import DuplicateJobError, NetworkError
from .logging import joblog, logging_context
from .models import Step, StepStatus, utcnow
from .provider import SearchRequest
from .staging import ProcessingOutcome


@dataclass(frozen=True)
class PipelineOptions:
    submit_policy: BackoffPolicy
    processing_policy: BackoffPolicy
    max_ads: int = 5
    render_html: bool = True
    render_png: bool = True
    upload: bool = True
    bucket: str = "ad-renderings"
    device: str = "desktop"
    pages: int = 1


@dataclass
class QueryResult:
    query: str
    location: str
    success: bool = False
    job_id: str | None = None
    serp_id: str | None = None
    ad_count: int = 0
    no_ads: bool = False
    rendering_status: str | None = None
    render_counts: dict[str, int] = field(default_factory=dict)
    uploaded: int = 0
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "location": self.location,
            "success": self.success,
            "job_id": self.job_id,
            "serp_id": self.serp_id,
            "ad_count": self.ad_count,
            "no_ads": self.no_ads,
            "rendering_status": self.rendering_status,
            "render_counts": self.render_counts,
            "uploaded": self.uploaded,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class AdVaultPipeline:
    def __init__(
        self,
        *,
        provider,
        gateway,
        tracker,
        renderer,
        options: PipelineOptions,
        uploader=None,
        extractor=None,
    ) -> None:
        self.provider = provider
        self.gateway = gateway
        self.tracker = tracker
        self.renderer = renderer
        self.options = options
        self.uploader = uploader
        self.extractor = extractor

    async def _collect(self, query: str, location: str, cancel: asyncio.Event | None) -> tuple[str, dict[str, Any]]:
        temp_id = self.tracker.start(query, location)
        with self.tracker.step(temp_id, Step.SUBMISSION) as step:
            request = SearchRequest(query=query, location=location, device=self.options.device, pages=self.options.pages)
            job_id = await self.provider.submit(request.to_payload(), cancel=cancel)
            step.rebind(job_id)
            raw = await self.provider.wait_for_result(job_id, self.options.submit_policy, cancel=cancel)
        return job_id, raw

    async def _process(
        self, job_id: str, query: str, location: str, raw: dict[str, Any], cancel: asyncio.Event | None
    ) -> ProcessingOutcome:
        with self.tracker.step(job_id, Step.EXTRACTION_PROCESSING) as step:
            try:
                self.gateway.stage(job_id, query, location, raw)
            except DuplicateJobError:
                joblog("stage_reused", job_id=job_id, level="warning")
            if self.extractor is not None:
                self.extractor.process_job(job_id)
            outcome = await self.gateway.await_processing(job_id, self.options.processing_policy, cancel=cancel)
            step.set(serp_id=outcome.serp_id)
        return outcome

    def _verify_ads(self, job_id: str, outcome: ProcessingOutcome) -> None:
        with self.tracker.step(job_id, Step.AD_EXTRACTION) as step:
            step.set(new_ads_count=outcome.new_ads_count, new_advertisers_count=outcome.new_advertisers_count)
            joblog(
                "ads_verified",
                job_id=job_id,
                serp_id=outcome.serp_id,
                ad_count=outcome.ad_count,
                skipped=outcome.skipped,
            )

    async def _render(self, job_id: str, serp_id: str, result: QueryResult) -> None:
        with self.tracker.step(job_id, Step.RENDERING) as step:
            summary = await self.renderer.render_serp(
                serp_id,
                job_id,
                max_ads=self.options.max_ads,
                html=self.options.render_html,
                png=self.options.render_png,
            )
            result.render_counts = summary.counts
            outcome = summary.step_status
            failures = summary.failures()
            error = "; ".join(f"{f.rendering_type}:{f.ad_id[:12]}: {f.error}" for f in failures[:5]) or None
            step.finish(outcome, error)
        result.rendering_status = outcome.value
        if self.uploader is not None and self.options.render_png and self.options.upload:
            result.uploaded = await self._upload(job_id, serp_id)

    async def _upload(self, job_id: str, serp_id: str) -> int:
        bucket = self.options.bucket
        if not await asyncio.to_thread(self.uploader.ensure_bucket, bucket):
            joblog("upload_skipped_no_bucket", job_id=job_id, bucket=bucket, level="error")
            return 0
        try:
            uploads = await self.uploader.upload_pending(bucket, serp_id=serp_id)
        except NetworkError as exc:
            joblog("upload_failed", job_id=job_id, serp_id=serp_id, error=str(exc), level="error")
            return 0
        return sum(1 for u in uploads if u.storage_url)

    async def process_query(self, query: str, location: str, *, cancel: asyncio.Event | None = None) -> QueryResult:
        """Run one item end to end; stage errors propagate after the tracker is finalized."""

        result = QueryResult(query=query, location=location)
        with logging_context(query=query, location=location):
            job_id, raw = await self._collect(query, location, cancel)
            result.job_id = job_id
            with logging_context(job_id=job_id):
                outcome = await self._process(job_id, query, location, raw, cancel)
                result.serp_id = outcome.serp_id
                result.ad_count = outcome.ad_count
                self._verify_ads(job_id, outcome)

                if outcome.skipped or outcome.ad_count == 0 or not outcome.serp_id:
                    result.no_ads = True
                    self.tracker.skip(job_id, Step.RENDERING, "no paid ads on the SERP")
                    result.rendering_status = StepStatus.SKIPPED.value
                elif self.options.render_html or self.options.render_png:
                    await self._render(job_id, outcome.serp_id, result)
                else:
                    self.tracker.skip(job_id, Step.RENDERING, "rendering disabled")
                    result.rendering_status = StepStatus.SKIPPED.value

        result.success = result.rendering_status != StepStatus.FAILED.value
        result.finished_at = utcnow()
        joblog(
            "query_done",
            job_id=job_id,
            query=query,
            location=location,
            ad_count=result.ad_count,
            no_ads=result.no_ads,
            rendering=result.rendering_status,
        )
        return result


__all__ = ["AdVaultPipeline", "PipelineOptions", "QueryResult"]
