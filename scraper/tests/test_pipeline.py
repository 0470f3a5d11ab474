import asyncio

import pytest
from fakes import TWO_ADS, FakePipelineProvider, FakeStorageClient, FakeStore, RecordingSleep, paid_ad, serp_payload

from advault_scraper.backoff import BackoffPolicy
from advault_scraper.errors import NetworkError, ProcessingError, SubmissionError
from advault_scraper.extraction import StagingExtractor
from advault_scraper.pipeline import AdVaultPipeline, PipelineOptions
from advault_scraper.rendering import LandingPageRenderer
from advault_scraper.staging import StagingGateway
from advault_scraper.storage import ArtifactUploader
from advault_scraper.tracking import JobTracker


def _pipeline(tmp_path, store, provider, *, upload=True, **options):
    sleep = RecordingSleep()
    return AdVaultPipeline(
        provider=provider,
        gateway=StagingGateway(store, lag_policy=BackoffPolicy.constant(2, 0.5), sleep=sleep),
        tracker=JobTracker(store),
        renderer=LandingPageRenderer(provider, store, output_dir=tmp_path, courtesy_delay=1.0, sleep=sleep),
        options=PipelineOptions(
            submit_policy=BackoffPolicy.constant(3, 1.0),
            processing_policy=BackoffPolicy.constant(3, 1.0),
            bucket="ads",
            **options,
        ),
        uploader=ArtifactUploader(FakeStorageClient(), store, sleep=sleep, scraper_version="t") if upload else None,
        extractor=StagingExtractor(store),
    )


def test_query_with_ads_runs_every_stage(tmp_path):
    store = FakeStore()
    provider = FakePipelineProvider(serp_payload(TWO_ADS), job_id="98765")
    result = asyncio.run(_pipeline(tmp_path, store, provider).process_query("plumbers near me", "Boston, MA"))

    assert result.success
    assert result.job_id == "98765"
    assert result.ad_count == 2
    assert result.rendering_status == "success"
    assert result.uploaded == 2
    tracking = store.rows("job_tracking")
    assert len(tracking) == 1
    row = tracking[0]
    assert row["job_id"] == "98765"
    assert row["status"] == "completed"
    assert row["completed_at"] is not None
    assert [row[c] for c in ("api_call_status", "serp_processing_status", "ads_extraction_status", "rendering_status")] == ["success"] * 4
    assert row["serp_id"] == result.serp_id
    assert row["new_ads_count"] == 2
    assert len(store.rows("ad_renderings")) == 4
    assert all(r["storage_url"] for r in store.rows("ad_renderings") if r["rendering_type"] == "png")
    assert provider.submitted[0]["geo_location"] == "Boston, MA"


def test_query_without_ads_skips_rendering(tmp_path):
    store = FakeStore()
    provider = FakePipelineProvider(serp_payload([]))
    result = asyncio.run(_pipeline(tmp_path, store, provider).process_query("q", "l"))

    assert result.success
    assert result.no_ads
    assert result.rendering_status == "skipped"
    row = store.rows("job_tracking")[0]
    assert row["rendering_status"] == "skipped"
    assert row["ads_extraction_status"] == "success"
    assert row["status"] == "completed"
    assert row["completed_at"] is None
    assert store.rows("ad_renderings") == []
    assert not [c for c in provider.calls if c[1] in ("html", "png")]


def test_submission_failure_marks_the_temporary_row(tmp_path):
    store = FakeStore()
    provider = FakePipelineProvider(serp_payload(TWO_ADS))
    provider.submit_error = SubmissionError("job submission rejected (401)")
    with pytest.raises(SubmissionError):
        asyncio.run(_pipeline(tmp_path, store, provider).process_query("q", "l"))

    row = store.rows("job_tracking")[0]
    assert row["job_id"].startswith("temp-")
    assert row["api_call_status"] == "failed"
    assert row["status"] == "failed"
    assert "401" in row["error_message"]
    assert row["serp_processing_status"] == "pending"


def test_extraction_error_fails_processing_step(tmp_path):
    store = FakeStore()
    provider = FakePipelineProvider({"results": [{"content": "<html>unparsed</html>"}]})
    with pytest.raises(ProcessingError):
        asyncio.run(_pipeline(tmp_path, store, provider).process_query("q", "l"))

    row = store.rows("job_tracking")[0]
    assert row["api_call_status"] == "success"
    assert row["serp_processing_status"] == "failed"
    assert row["rendering_status"] == "pending"
    assert store.calls == [("reprocess_staged_serp", (store.rows("staging_serps")[0]["id"],))]


def test_one_render_timeout_out_of_three_is_partial(tmp_path):
    store = FakeStore()
    ads = TWO_ADS + [paid_ad(3, "Re-elect Lee", "https://leeforcongress.us/issues", "leeforcongress.us")]
    provider = FakePipelineProvider(serp_payload(ads))
    provider.failures["rotorooter"] = NetworkError("render timed out after 300s")
    result = asyncio.run(_pipeline(tmp_path, store, provider, upload=False).process_query("q", "l"))

    assert result.success
    assert result.rendering_status == "partial_success"
    row = store.rows("job_tracking")[0]
    assert row["rendering_status"] == "partial_success"
    assert "timed out" in row["error_message"]
    statuses = {}
    for r in store.rows("ad_renderings"):
        statuses.setdefault(r["ad_id"], set()).add(r["status"])
    assert len(statuses) == 3
    assert sorted(sorted(s) for s in statuses.values()) == [["error"], ["processed"], ["processed"]]


def test_crash_inside_rendering_is_counted_against_the_ad(tmp_path):
    store = FakeStore()
    provider = FakePipelineProvider(serp_payload(TWO_ADS))
    provider.failures["rotorooter"] = ConnectionResetError("reset by peer")
    result = asyncio.run(_pipeline(tmp_path, store, provider, upload=False).process_query("q", "l"))

    assert result.rendering_status == "partial_success"
    assert "reset by peer" in store.rows("job_tracking")[0]["error_message"]


def test_rendering_disabled_is_skipped(tmp_path):
    store = FakeStore()
    provider = FakePipelineProvider(serp_payload(TWO_ADS))
    result = asyncio.run(
        _pipeline(tmp_path, store, provider, upload=False, render_html=False, render_png=False).process_query("q", "l")
    )
    assert result.rendering_status == "skipped"
    assert not result.no_ads
