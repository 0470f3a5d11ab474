"""Google Cloud Storage publishing for PNG renderings."""

from __future__ import annotations

import asyncio
import base64
import binascii
import posixpath
from dataclasses import dataclass
from typing import Any

from google.api_core import exceptions as gexc
from google.cloud import storage  # type: ignore[attr-defined]

from .backoff import BackoffPolicy, Sleep, retry
from .db.filters import eq, is_null, not_null
from .errors import NetworkError, PersistenceError
from .hashing import inspect_png
from .logging import jlog
from .metadata import build_rendering_metadata
from .models import RENDERINGS_TABLE, RecordStatus, RenderingType
from .versioning import get_scraper_version

PUBLIC_READ_ROLE = "roles/storage.objectViewer"
PUBLIC_MEMBER = "allUsers"
CACHE_CONTROL = "public, max-age=31536000, immutable"


@dataclass(frozen=True)
class UploadResult:
    rendering_id: str
    name: str
    status: str
    storage_url: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class BackfillResult:
    rendering_id: str
    filename: str | None
    status: str  # "updated", "unmatched" or "error"
    storage_url: str | None = None
    error: str | None = None


def blob_name_for(row: dict[str, Any]) -> str:
    path = row.get("content_path") or ""
    return posixpath.basename(path.replace("\\", "/")) or f"rendering-{row['id']}.png"


class ArtifactUploader:
    def __init__(
        self,
        storage_client: storage.Client,
        store,
        *,
        write_policy: BackoffPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        scraper_version: str | None = None,
    ) -> None:
        self.storage_client = storage_client
        self.store = store
        self.write_policy = write_policy or BackoffPolicy.constant(3, 2.0)
        self.sleep = sleep
        self.scraper_version = scraper_version or get_scraper_version()

    def ensure_bucket(self, name: str) -> bool:
        """Create ``name`` with public read access if it does not exist yet.

        Returns ``False`` (after logging) when the bucket can neither be found
        nor created.
        """

        try:
            bucket = self.storage_client.lookup_bucket(name)
            if bucket is not None:
                return True
            bucket = self.storage_client.create_bucket(name)
            policy = bucket.get_iam_policy(requested_policy_version=3)
            policy.bindings.append({"role": PUBLIC_READ_ROLE, "members": {PUBLIC_MEMBER}})
            bucket.set_iam_policy(policy)
        except gexc.GoogleAPIError as exc:
            jlog("error", event="bucket_ensure_failed", bucket=name, error=str(exc))
            return False
        jlog("info", event="bucket_created", bucket=name)
        return True

    def upload(self, data: bytes, bucket_name: str, name: str, *, metadata: dict[str, str] | None = None) -> str:
        """Write ``data`` to ``bucket_name/name``, replacing any object of that name."""

        bucket = self.storage_client.bucket(bucket_name)
        blob = bucket.blob(name)
        blob.cache_control = CACHE_CONTROL
        blob.metadata = dict(metadata or {})
        try:
            blob.upload_from_string(data, content_type="image/png")
        except gexc.GoogleAPIError as exc:
            raise NetworkError(f"upload of {name} to {bucket_name} failed: {exc}") from exc
        jlog("info", event="rendering_uploaded", bucket=bucket_name, name=name, bytes=len(data))
        return blob.public_url

    async def _write_url(self, rendering_id: str, url: str) -> None:
        async def write() -> None:
            if not self.store.update(RENDERINGS_TABLE, {"storage_url": url}, [eq("id", rendering_id)]):
                raise PersistenceError(f"rendering {rendering_id} vanished before its URL was written")

        await retry(
            write,
            self.write_policy,
            label=f"storage_url:{rendering_id}",
            retry_on=(PersistenceError,),
            sleep=self.sleep,
        )

    def _missing_url_rows(self, serp_id: str | None = None, *, with_content: bool = False) -> list[dict[str, Any]]:
        filters = [eq("rendering_type", RenderingType.PNG.value), is_null("storage_url")]
        filters.append(not_null("binary_content") if with_content else not_null("content_path"))
        if serp_id:
            filters.append(eq("serp_id", serp_id))
        return self.store.select(RENDERINGS_TABLE, filters, order_by="created_at")

    async def upload_pending(self, bucket_name: str, *, serp_id: str | None = None) -> list[UploadResult]:
        """Upload PNG rows that carry image bytes but no storage URL yet."""

        results: list[UploadResult] = []
        for row in self._missing_url_rows(serp_id, with_content=True):
            rendering_id = str(row["id"])
            name = blob_name_for(row)
            try:
                data = base64.b64decode(row["binary_content"], validate=True)
                info = inspect_png(data)
                metadata = build_rendering_metadata(
                    ad_id=str(row["ad_id"]),
                    serp_id=str(row["serp_id"]),
                    rendering_id=rendering_id,
                    rendering_type=RenderingType.PNG.value,
                    sha256=info.sha256,
                    width=info.width,
                    height=info.height,
                    scraper_version=self.scraper_version,
                )
                url = await asyncio.to_thread(self.upload, data, bucket_name, name, metadata=dict(metadata))
                await self._write_url(rendering_id, url)
            except (ValueError, binascii.Error, NetworkError, PersistenceError) as exc:
                jlog("error", event="rendering_upload_failed", rendering_id=rendering_id, name=name, error=str(exc))
                results.append(UploadResult(rendering_id, name, RecordStatus.ERROR.value, error=str(exc)))
                continue
            results.append(UploadResult(rendering_id, name, RecordStatus.PROCESSED.value, storage_url=url))
        jlog(
            "info",
            event="upload_pending_done",
            bucket=bucket_name,
            uploaded=sum(1 for r in results if r.storage_url),
            failed=sum(1 for r in results if r.error),
        )
        return results

    async def backfill_storage_urls(self, bucket_name: str) -> list[BackfillResult]:
        """Attach public URLs to PNG rows whose objects are already in the bucket.

        The bucket is listed once; rows are joined to objects by file name.
        Rows without a matching object are reported as ``unmatched`` and left
        alone.
        """

        rows = self._missing_url_rows()
        if not rows:
            jlog("info", event="backfill_nothing_to_do", bucket=bucket_name)
            return []
        try:
            blobs = await asyncio.to_thread(lambda: list(self.storage_client.list_blobs(bucket_name)))
        except gexc.GoogleAPIError as exc:
            raise NetworkError(f"listing {bucket_name} failed: {exc}") from exc
        by_name = {posixpath.basename(b.name): b.public_url for b in blobs}

        results: list[BackfillResult] = []
        for row in rows:
            rendering_id = str(row["id"])
            filename = blob_name_for(row)
            url = by_name.get(filename)
            if url is None:
                results.append(BackfillResult(rendering_id, filename, "unmatched"))
                continue
            try:
                await self._write_url(rendering_id, url)
            except PersistenceError as exc:
                results.append(BackfillResult(rendering_id, filename, "error", error=str(exc)))
                continue
            results.append(BackfillResult(rendering_id, filename, "updated", storage_url=url))
        unmatched = [r.filename for r in results if r.status == "unmatched"]
        jlog(
            "info",
            event="backfill_done",
            bucket=bucket_name,
            updated=sum(1 for r in results if r.status == "updated"),
            unmatched=len(unmatched),
            errors=sum(1 for r in results if r.status == "error"),
        )
        if unmatched:
            jlog("warning", event="backfill_unmatched", bucket=bucket_name, files=unmatched[:50])
        return results


__all__ = ["ArtifactUploader", "BackfillResult", "UploadResult", "blob_name_for"]
