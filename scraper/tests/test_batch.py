import asyncio
import json

import pytest
from fakes import RecordingSleep

from advault_scraper.artifacts import backup_path, read_json
from advault_scraper.batch import BatchCoordinator, BatchItem, load_batch_items
from advault_scraper.errors import JobFailedError, ValidationError
from advault_scraper.pipeline import QueryResult


class ScriptedPipeline:
    def __init__(self, failures=()):
        self.failures = set(failures)
        self.seen = []

    async def process_query(self, query, location, *, cancel=None):
        self.seen.append(query)
        if query in self.failures:
            raise JobFailedError("j-" + query, "faulted")
        return QueryResult(query=query, location=location, success=True, job_id="j-" + query)


ITEMS = [BatchItem("a", "Boston, MA"), BatchItem("b", "Boston, MA"), BatchItem("c", "Boston, MA")]


def test_load_batch_items_accepts_list_and_geo_location(tmp_path):
    path = tmp_path / "items.json"
    path.write_text(json.dumps([{"query": "a", "location": "Boston, MA"}, {"query": "b", "geo_location": "Denver, CO"}]))
    assert load_batch_items(path) == [BatchItem("a", "Boston, MA"), BatchItem("b", "Denver, CO")]


def test_load_batch_items_rejects_bad_files(tmp_path):
    path = tmp_path / "items.json"
    path.write_text("{not json")
    with pytest.raises(ValidationError):
        load_batch_items(path)
    path.write_text(json.dumps([{"query": "a"}]))
    with pytest.raises(ValidationError):
        load_batch_items(path)


def test_batch_continues_after_a_failure_and_saves_progress(tmp_path):
    progress = tmp_path / "progress.json"
    sleep = RecordingSleep()
    pipeline = ScriptedPipeline(failures={"b"})
    coordinator = BatchCoordinator(pipeline, progress_path=progress, inter_item_delay=30.0, sleep=sleep)
    results = asyncio.run(coordinator.run_batch(ITEMS))

    assert pipeline.seen == ["a", "b", "c"]
    assert [r["success"] for r in results] == [True, False, True]
    assert results[1]["error_kind"] == "job_failed"
    assert sleep.delays == [30.0, 30.0]
    saved = read_json(progress)
    assert saved["processed"] == 3
    assert saved["succeeded"] == 2
    assert read_json(backup_path(progress)) == saved


def test_resume_skips_items_that_already_succeeded(tmp_path):
    progress = tmp_path / "progress.json"
    asyncio.run(BatchCoordinator(ScriptedPipeline({"b"}), progress_path=progress, sleep=RecordingSleep()).run_batch(ITEMS))

    pipeline = ScriptedPipeline()
    results = asyncio.run(
        BatchCoordinator(pipeline, progress_path=progress, sleep=RecordingSleep()).run_batch(ITEMS, resume=True)
    )
    assert pipeline.seen == ["b"]
    assert sorted(r["query"] for r in results) == ["a", "b", "c"]
    assert all(r["success"] for r in results)


def test_cancel_stops_before_the_next_item():
    cancel = asyncio.Event()

    class CancellingPipeline(ScriptedPipeline):
        async def process_query(self, query, location, *, cancel=None):
            result = await super().process_query(query, location, cancel=cancel)
            cancel.set()
            return result

    pipeline = CancellingPipeline()
    results = asyncio.run(BatchCoordinator(pipeline, sleep=RecordingSleep()).run_batch(ITEMS, cancel=cancel))
    assert pipeline.seen == ["a"]
    assert len(results) == 1
