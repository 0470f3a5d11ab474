"""Landing-page rendering for the ads of a SERP.

For every ad the renderer captures a sanitized HTML snapshot and a PNG
screenshot through the provider's realtime endpoint, writes both under the
job's ``rendered/`` directory and upserts one ``ad_renderings`` row per
(ad, serp, type). A row that already carries content short-circuits all
remote work, so re-running a job only renders what is missing.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .artifacts import dump_raw_excerpt, job_dirs
from .backoff import Sleep
from .db.filters import eq, in_
from .errors import AdvaultError, NetworkError, ValidationError
from .hashing import PngInfo, inspect_png
from .html_clean import clean_landing_html
from .logging import adlog, joblog
from .models import (
    ADS_TABLE,
    RENDERINGS_TABLE,
    SERP_ADS_TABLE,
    AdRecord,
    RecordStatus,
    RenderingRecord,
    RenderingType,
    StepStatus,
    utcnow,
)
from .urls import hostname_slug, normalize_landing_url

DEFAULT_COURTESY_DELAY_S = 5.0
DEFAULT_MAX_ADS = 5


@dataclass(frozen=True)
class RenderTarget:
    ad_id: str
    serp_id: str
    url: str | None
    title: str = ""
    advertiser_domain: str = ""
    position: int | None = None


@dataclass(frozen=True)
class HtmlCapture:
    path: Path
    html: str
    url: str


@dataclass(frozen=True)
class PngCapture:
    path: Path
    data: bytes
    encoded: str
    info: PngInfo
    url: str
    alternate: bool = False


@dataclass(frozen=True)
class RenderResult:
    ad_id: str
    rendering_type: str
    status: str
    path: str | None = None
    size: int | None = None
    error: str | None = None
    reused: bool = False

    @property
    def ok(self) -> bool:
        return self.status == RecordStatus.PROCESSED.value


@dataclass
class RenderSummary:
    serp_id: str
    results: list[RenderResult] = field(default_factory=list)

    @property
    def counts(self) -> dict[str, int]:
        return dict(Counter(r.status for r in self.results))

    @property
    def step_status(self) -> StepStatus:
        """Tracker outcome: all ok, some ok, none ok, or nothing attempted."""

        if not self.results:
            return StepStatus.SKIPPED
        ok = sum(1 for r in self.results if r.ok)
        if ok == len(self.results):
            return StepStatus.SUCCESS
        if ok:
            return StepStatus.PARTIAL_SUCCESS
        return StepStatus.FAILED

    def failures(self) -> list[RenderResult]:
        return [r for r in self.results if not r.ok]


def _timestamp() -> str:
    return datetime.now().strftime("%Y%m%dT%H%M%S%f")


class LandingPageRenderer:
    def __init__(
        self,
        provider,
        store,
        *,
        output_dir: str | Path,
        courtesy_delay: float = DEFAULT_COURTESY_DELAY_S,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], str] = _timestamp,
    ) -> None:
        self.provider = provider
        self.store = store
        self.output_dir = Path(output_dir)
        self.courtesy_delay = courtesy_delay
        self.sleep = sleep
        self.clock = clock

    # ============================
    # Capture
    # ============================

    def _file_path(self, job_id: str, url: str, suffix: str, *, prefix: str = "rendered") -> Path:
        dirs = job_dirs(self.output_dir, job_id)
        return dirs.rendered / f"{prefix}-{hostname_slug(url)}-{self.clock()}.{suffix}"

    async def capture_html(self, url: str | None, job_id: str) -> HtmlCapture:
        """Render ``url`` as HTML, clean it and write it to the job directory.

        Raises :class:`ValidationError` for unusable URLs and
        :class:`NetworkError` for provider failures.
        """

        landing = normalize_landing_url(url)
        content = await self.provider.render(landing, RenderingType.HTML.value)
        if not isinstance(content, str) or not content.strip():
            raise NetworkError("html render returned no markup")
        cleaned = clean_landing_html(content, landing)
        path = self._file_path(job_id, landing, "html")
        path.write_text(cleaned, encoding="utf-8")
        joblog("html_captured", job_id=job_id, url=landing, path=str(path), raw_chars=len(content), chars=len(cleaned))
        return HtmlCapture(path=path, html=cleaned, url=landing)

    def _decode_png(self, content: Any, path: Path) -> tuple[bytes, str, PngInfo]:
        try:
            if not isinstance(content, str):
                raise ValueError(f"expected base64 text, got {type(content).__name__}")
            encoded = "".join(content.split())
            data = base64.b64decode(encoded, validate=True)
            info = inspect_png(data)
        except (ValueError, binascii.Error) as exc:
            dump_raw_excerpt(path.with_suffix(".raw.txt"), content)
            raise NetworkError(f"png render could not be decoded: {exc}") from exc
        return data, encoded, info

    async def capture_png(self, url: str | None, job_id: str) -> PngCapture:
        """Render ``url`` as a PNG, retrying once with the simpler request shape."""

        landing = normalize_landing_url(url)
        try:
            content = await self.provider.render(landing, RenderingType.PNG.value)
            path = self._file_path(job_id, landing, "png")
            data, encoded, info = self._decode_png(content, path)
            alternate = False
        except NetworkError as first:
            joblog("png_retry_simple", job_id=job_id, url=landing, error=str(first), level="warning")
            content = await self.provider.render(landing, RenderingType.PNG.value, simple=True)
            path = self._file_path(job_id, landing, "png", prefix="alt-rendered")
            data, encoded, info = self._decode_png(content, path)
            alternate = True
        path.write_bytes(data)
        joblog("png_captured", job_id=job_id, url=landing, path=str(path), bytes=info.size, alternate=alternate)
        return PngCapture(path=path, data=data, encoded=encoded, info=info, url=landing, alternate=alternate)

    # ============================
    # Persistence
    # ============================

    def existing(self, target: RenderTarget, rendering_type: RenderingType) -> RenderingRecord | None:
        row = self.store.select_one(
            RENDERINGS_TABLE,
            [eq("ad_id", target.ad_id), eq("serp_id", target.serp_id), eq("rendering_type", rendering_type.value)],
        )
        return RenderingRecord.from_row(row) if row is not None else None

    def _save(self, target: RenderTarget, rendering_type: RenderingType, values: dict[str, Any]) -> None:
        record = self.existing(target, rendering_type)
        if record is not None:
            self.store.update(RENDERINGS_TABLE, values, [eq("id", record.id)])
            return
        self.store.insert(
            RENDERINGS_TABLE,
            {
                "ad_id": target.ad_id,
                "serp_id": target.serp_id,
                "rendering_type": rendering_type.value,
                "created_at": utcnow(),
                **values,
            },
        )

    def _record_failure(self, target: RenderTarget, rendering_type: RenderingType, exc: Exception) -> RenderResult:
        status = RecordStatus.SKIPPED if isinstance(exc, ValidationError) else RecordStatus.ERROR
        message = str(exc) or type(exc).__name__
        self._save(
            target,
            rendering_type,
            {"status": status.value, "error_message": message[:2000], "processed_at": utcnow()},
        )
        adlog(
            f"{rendering_type.value}_render_{status.value}",
            ad_id=target.ad_id,
            serp_id=target.serp_id,
            url=target.url,
            error=message,
            level="warning" if status is RecordStatus.SKIPPED else "error",
        )
        return RenderResult(target.ad_id, rendering_type.value, status.value, error=message)

    async def render_html(self, target: RenderTarget, job_id: str) -> RenderResult:
        """Capture and persist the HTML rendering of one ad, unless it already exists."""

        record = self.existing(target, RenderingType.HTML)
        if record is not None and record.has_content:
            adlog("html_render_reused", ad_id=target.ad_id, serp_id=target.serp_id, url=target.url)
            return RenderResult(
                target.ad_id,
                RenderingType.HTML.value,
                record.status,
                path=record.content_path,
                size=record.content_size,
                reused=True,
            )
        try:
            capture = await self.capture_html(target.url, job_id)
        except AdvaultError as exc:
            return self._record_failure(target, RenderingType.HTML, exc)
        size = len(capture.html.encode("utf-8"))
        self._save(
            target,
            RenderingType.HTML,
            {
                "content_path": str(capture.path),
                "content_html": capture.html,
                "content_size": size,
                "status": RecordStatus.PROCESSED.value,
                "error_message": None,
                "processed_at": utcnow(),
            },
        )
        return RenderResult(target.ad_id, RenderingType.HTML.value, RecordStatus.PROCESSED.value, str(capture.path), size)

    async def render_png(self, target: RenderTarget, job_id: str) -> RenderResult:
        """Capture and persist the PNG rendering of one ad, unless one with content exists."""

        record = self.existing(target, RenderingType.PNG)
        if record is not None and record.has_content:
            adlog("png_render_reused", ad_id=target.ad_id, serp_id=target.serp_id, url=target.url)
            return RenderResult(
                target.ad_id,
                RenderingType.PNG.value,
                record.status,
                path=record.content_path,
                size=record.content_size,
                reused=True,
            )
        try:
            capture = await self.capture_png(target.url, job_id)
        except AdvaultError as exc:
            return self._record_failure(target, RenderingType.PNG, exc)
        self._save(
            target,
            RenderingType.PNG,
            {
                "content_path": str(capture.path),
                "binary_content": capture.encoded,
                "content_size": capture.info.size,
                "status": RecordStatus.PROCESSED.value,
                "error_message": None,
                "processed_at": utcnow(),
            },
        )
        return RenderResult(
            target.ad_id, RenderingType.PNG.value, RecordStatus.PROCESSED.value, str(capture.path), capture.info.size
        )

    # ============================
    # SERP loop
    # ============================

    def targets_for_serp(self, serp_id: str, max_ads: int | None = DEFAULT_MAX_ADS) -> list[RenderTarget]:
        links = self.store.select(SERP_ADS_TABLE, [eq("serp_id", serp_id)], order_by="position", limit=max_ads)
        if not links:
            return []
        ads = {str(r["id"]): r for r in self.store.select(ADS_TABLE, [in_("id", [link["ad_id"] for link in links])])}
        targets = []
        for link in links:
            row = ads.get(str(link["ad_id"]))
            if row is None:
                continue
            ad = AdRecord.from_row(row, position=link.get("position"))
            targets.append(
                RenderTarget(
                    ad_id=ad.id,
                    serp_id=serp_id,
                    url=ad.url,
                    title=ad.title,
                    advertiser_domain=ad.advertiser_domain,
                    position=ad.position,
                )
            )
        return targets

    async def render_serp(
        self,
        serp_id: str,
        job_id: str,
        *,
        max_ads: int | None = DEFAULT_MAX_ADS,
        html: bool = True,
        png: bool = True,
    ) -> RenderSummary:
        """Render every ad of ``serp_id`` in position order; one ad's failure never stops the loop."""

        summary = RenderSummary(serp_id=serp_id)
        targets = self.targets_for_serp(serp_id, max_ads)
        joblog("render_serp_start", job_id=job_id, serp_id=serp_id, ads=len(targets), html=html, png=png)
        for index, target in enumerate(targets):
            if index:
                await self.sleep(self.courtesy_delay)
            if html:
                summary.results.append(await self._guarded(self.render_html, target, job_id, RenderingType.HTML))
            if png:
                summary.results.append(await self._guarded(self.render_png, target, job_id, RenderingType.PNG))
        joblog(
            "render_serp_done",
            job_id=job_id,
            serp_id=serp_id,
            counts=summary.counts,
            outcome=summary.step_status.value,
        )
        return summary

    async def _guarded(self, fn, target: RenderTarget, job_id: str, rendering_type: RenderingType) -> RenderResult:
        try:
            return await fn(target, job_id)
        except (OSError, AdvaultError) as exc:
            # local disk or store failure; counted against this ad only
            adlog(
                f"{rendering_type.value}_render_crashed",
                ad_id=target.ad_id,
                serp_id=target.serp_id,
                url=target.url,
                error=str(exc),
                level="error",
            )
            return RenderResult(target.ad_id, rendering_type.value, RecordStatus.ERROR.value, error=str(exc))


__all__ = [
    "HtmlCapture",
    "LandingPageRenderer",
    "PngCapture",
    "RenderResult",
    "RenderSummary",
    "RenderTarget",
]
