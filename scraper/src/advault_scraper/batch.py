"""Sequential batch runs over many (query, location) items.

Items are processed strictly one after another. A failing item is recorded
and the batch moves on; after every item the progress file (plus a backup
copy) is rewritten, so an interrupted batch can resume where it stopped.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .artifacts import read_json, write_json_atomic
from .backoff import Sleep
from .errors import ValidationError, error_kind
from .logging import jlog, logging_context
from .models import utcnow

DEFAULT_INTER_ITEM_DELAY_S = 30.0


@dataclass(frozen=True)
class BatchItem:
    query: str
    location: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.query.strip().lower(), self.location.strip().lower())


def load_batch_items(path: str | os.PathLike[str]) -> list[BatchItem]:
    """Read a JSON list of ``{"query", "location"}`` objects (``geo_location`` also accepted)."""

    try:
        data = read_json(path)
    except (OSError, ValueError) as exc:
        raise ValidationError(f"{path}: cannot read batch file: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("items") or data.get("queries") or []
    if not isinstance(data, list):
        raise ValidationError(f"{path}: expected a JSON list of items")
    items: list[BatchItem] = []
    for i, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ValidationError(f"{path}: item {i} is not an object")
        query = (entry.get("query") or "").strip()
        location = (entry.get("location") or entry.get("geo_location") or "").strip()
        if not query or not location:
            raise ValidationError(f"{path}: item {i} needs both query and location")
        items.append(BatchItem(query=query, location=location))
    return items


class BatchCoordinator:
    def __init__(
        self,
        pipeline,
        *,
        progress_path: str | os.PathLike[str] | None = None,
        inter_item_delay: float = DEFAULT_INTER_ITEM_DELAY_S,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.pipeline = pipeline
        self.progress_path = Path(progress_path) if progress_path else None
        self.inter_item_delay = inter_item_delay
        self.sleep = sleep

    def _completed_keys(self) -> set[tuple[str, str]]:
        if self.progress_path is None or not self.progress_path.exists():
            return set()
        data = read_json(self.progress_path)
        return {
            BatchItem(r["query"], r["location"]).key
            for r in data.get("results", [])
            if r.get("success") and r.get("query") and r.get("location")
        }

    def _save(self, started_at: str, total: int, results: list[dict[str, Any]]) -> None:
        if self.progress_path is None:
            return
        write_json_atomic(
            self.progress_path,
            {
                "started_at": started_at,
                "updated_at": utcnow().isoformat(),
                "total": total,
                "processed": len(results),
                "succeeded": sum(1 for r in results if r.get("success")),
                "results": results,
            },
            backup=True,
        )

    async def _run_item(self, item: BatchItem, cancel: asyncio.Event | None) -> dict[str, Any]:
        started = utcnow()
        try:
            outcome = await self.pipeline.process_query(item.query, item.location, cancel=cancel)
        except Exception as exc:
            jlog(
                "error",
                event="batch_item_failed",
                query=item.query,
                location=item.location,
                error=str(exc),
                error_kind=error_kind(exc),
            )
            return {
                "query": item.query,
                "location": item.location,
                "success": False,
                "error": str(exc),
                "error_kind": error_kind(exc),
                "started_at": started.isoformat(),
                "finished_at": utcnow().isoformat(),
            }
        return outcome.to_dict()

    async def run_batch(
        self,
        items: Iterable[BatchItem],
        *,
        cancel: asyncio.Event | None = None,
        resume: bool = False,
    ) -> list[dict[str, Any]]:
        """Process ``items`` in order; with ``resume`` earlier successes are carried over, not rerun."""

        items = list(items)
        done = self._completed_keys() if resume else set()
        pending = [item for item in items if item.key not in done]
        previous: list[dict[str, Any]] = []
        if resume and self.progress_path is not None and self.progress_path.exists():
            previous = [r for r in read_json(self.progress_path).get("results", []) if r.get("success")]
        started_at = utcnow().isoformat()
        results: list[dict[str, Any]] = list(previous)
        jlog("info", event="batch_start", total=len(items), pending=len(pending), resumed=len(items) - len(pending))

        for index, item in enumerate(pending):
            if cancel is not None and cancel.is_set():
                jlog("warning", event="batch_cancelled", processed=index, remaining=len(pending) - index)
                break
            if index:
                await self.sleep(self.inter_item_delay)
            with logging_context(batch_index=index + 1, batch_total=len(pending)):
                results.append(await self._run_item(item, cancel))
            self._save(started_at, len(items), results)

        succeeded = sum(1 for r in results if r.get("success"))
        jlog("info", event="batch_done", total=len(items), succeeded=succeeded, failed=len(results) - succeeded)
        return results


__all__ = ["BatchCoordinator", "BatchItem", "load_batch_items"]
