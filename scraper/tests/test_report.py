from fakes import TWO_ADS, FakeStore, serp_payload

from advault_scraper.extraction import StagingExtractor
from advault_scraper.report import render_serp_report, verify_job
from advault_scraper.staging import StagingGateway
from advault_scraper.tracking import JobTracker


def _processed_job(store, job_id="job-1", ads=TWO_ADS):
    JobTracker(store).start("plumbers near me", "Boston, MA", job_id=job_id)
    StagingGateway(store).stage(job_id, "plumbers near me", "Boston, MA", serp_payload(ads))
    StagingExtractor(store).process_job(job_id)


def test_verify_job_passes_for_a_processed_job():
    store = FakeStore()
    _processed_job(store)
    verification = verify_job(store, "job-1")
    assert verification.ok, verification.problems
    assert verification.ad_count == 2
    assert verification.staging_status == "processed"


def test_verify_job_reports_every_gap():
    store = FakeStore()
    verification = verify_job(store, "missing")
    assert not verification.ok
    assert "no staging record" in verification.problems
    assert "no tracking record" in verification.problems


def test_report_escapes_ad_text_and_links_screenshots():
    store = FakeStore()
    _processed_job(store)
    ad = store.rows("ads")[0]
    ad["title"] = "<b>Fast</b> & cheap"
    serp = store.rows("serps")[0]
    store.insert(
        "ad_renderings",
        {
            "ad_id": ad["id"],
            "serp_id": serp["id"],
            "rendering_type": "png",
            "status": "processed",
            "storage_url": "https://storage.googleapis.com/ads/x.png",
        },
    )
    page = render_serp_report(store, "job-1")
    assert "&lt;b&gt;Fast&lt;/b&gt; &amp; cheap" in page
    assert '<img src="https://storage.googleapis.com/ads/x.png"' in page
    assert "plumbers near me" in page


def test_report_without_serps():
    assert "No SERPs found." in render_serp_report(FakeStore())
