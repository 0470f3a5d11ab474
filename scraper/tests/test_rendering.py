import asyncio
import base64

from fakes import FakeRenderProvider, FakeStore, RecordingSleep, png_bytes

from advault_scraper.errors import NetworkError
from advault_scraper.models import RenderingType, StepStatus
from advault_scraper.rendering import LandingPageRenderer, RenderResult, RenderSummary, RenderTarget


def _seed(store, urls):
    serp = store.insert("serps", {"job_id": "job-1", "query": "q", "location": "l"})
    for i, url in enumerate(urls, start=1):
        store.insert("ads", {"id": f"ad{i}", "advertiser_domain": f"d{i}.org", "title": f"Ad {i}", "url": url})
        store.insert("serp_ads", {"serp_id": serp["id"], "ad_id": f"ad{i}", "position": i})
    return serp["id"]


def _renderer(tmp_path, store, provider=None, sleep=None):
    ticks = iter(range(1000))
    return LandingPageRenderer(
        provider or FakeRenderProvider(),
        store,
        output_dir=tmp_path,
        courtesy_delay=5.0,
        sleep=sleep or RecordingSleep(),
        clock=lambda: f"t{next(ticks)}",
    )


def test_render_serp_captures_html_and_png_per_ad(tmp_path):
    store = FakeStore()
    serp_id = _seed(store, ["https://plumbboston.com/quote", "https://rotorooter.com"])
    sleep = RecordingSleep()
    summary = asyncio.run(_renderer(tmp_path, store, sleep=sleep).render_serp(serp_id, "job-1"))

    assert summary.step_status is StepStatus.SUCCESS
    assert summary.counts == {"processed": 4}
    assert sleep.delays == [5.0]
    rows = store.rows("ad_renderings")
    assert len(rows) == 4
    html_row = next(r for r in rows if r["rendering_type"] == "html" and r["ad_id"] == "ad1")
    assert "<script" not in html_row["content_html"]
    assert 'href="https://plumbboston.com/give"' in html_row["content_html"]
    png_row = next(r for r in rows if r["rendering_type"] == "png" and r["ad_id"] == "ad1")
    assert base64.b64decode(png_row["binary_content"]) == png_bytes()
    rendered = tmp_path / "job-1" / "rendered"
    assert sorted(p.suffix for p in rendered.iterdir()) == [".html", ".html", ".png", ".png"]
    assert (rendered / "rendered-plumbboston.com-t0.html").exists()


def test_second_run_reuses_existing_renderings(tmp_path):
    store = FakeStore()
    serp_id = _seed(store, ["https://plumbboston.com"])
    provider = FakeRenderProvider()
    renderer = _renderer(tmp_path, store, provider)
    asyncio.run(renderer.render_serp(serp_id, "job-1"))
    calls = len(provider.calls)

    summary = asyncio.run(renderer.render_serp(serp_id, "job-1"))
    assert len(provider.calls) == calls
    assert all(r.reused for r in summary.results)
    assert len(store.rows("ad_renderings")) == 2


def test_errored_row_without_content_is_rendered_again(tmp_path):
    store = FakeStore()
    serp_id = _seed(store, ["https://plumbboston.com"])
    store.insert(
        "ad_renderings",
        {"ad_id": "ad1", "serp_id": serp_id, "rendering_type": "png", "status": "error", "error_message": "timeout"},
    )
    renderer = _renderer(tmp_path, store)
    target = renderer.targets_for_serp(serp_id)[0]
    before = renderer.existing(target, RenderingType.PNG)
    assert before.status == "error" and not before.has_content

    result = asyncio.run(renderer.render_png(target, "job-1"))
    assert not result.reused
    after = renderer.existing(target, RenderingType.PNG)
    assert after.id == before.id
    assert after.status == "processed" and after.has_content
    assert after.error_message is None


def test_png_falls_back_to_simple_request(tmp_path):
    store = FakeStore()
    serp_id = _seed(store, ["https://plumbboston.com"])
    provider = FakeRenderProvider()
    provider.bad_png_once.add("plumbboston")
    summary = asyncio.run(_renderer(tmp_path, store, provider).render_serp(serp_id, "job-1", html=False))

    assert summary.step_status is StepStatus.SUCCESS
    assert [c[2] for c in provider.calls] == [False, True]
    rendered = tmp_path / "job-1" / "rendered"
    assert any(p.name.startswith("alt-rendered-") for p in rendered.iterdir())
    assert any(p.name.endswith(".raw.txt") for p in rendered.iterdir())


def test_one_failing_ad_gives_partial_success(tmp_path):
    store = FakeStore()
    serp_id = _seed(store, ["https://plumbboston.com", "https://rotorooter.com"])
    provider = FakeRenderProvider()
    provider.failures["rotorooter"] = NetworkError("render timed out")
    summary = asyncio.run(_renderer(tmp_path, store, provider).render_serp(serp_id, "job-1"))

    assert summary.step_status is StepStatus.PARTIAL_SUCCESS
    failed = [r for r in store.rows("ad_renderings") if r["status"] == "error"]
    assert {r["ad_id"] for r in failed} == {"ad2"}
    assert all("render timed out" in r["error_message"] for r in failed)


def test_invalid_landing_url_is_skipped_without_a_request(tmp_path):
    store = FakeStore()
    serp_id = _seed(store, ["https://example.com/placeholder"])
    provider = FakeRenderProvider()
    summary = asyncio.run(_renderer(tmp_path, store, provider).render_serp(serp_id, "job-1"))

    assert provider.calls == []
    assert summary.step_status is StepStatus.FAILED
    assert {r["status"] for r in store.rows("ad_renderings")} == {"skipped"}


def test_failed_rendering_is_retried_on_next_run(tmp_path):
    store = FakeStore()
    serp_id = _seed(store, ["https://plumbboston.com"])
    provider = FakeRenderProvider()
    provider.failures["plumbboston"] = NetworkError("down")
    renderer = _renderer(tmp_path, store, provider)
    asyncio.run(renderer.render_serp(serp_id, "job-1", png=False))
    provider.failures.clear()

    summary = asyncio.run(renderer.render_serp(serp_id, "job-1", png=False))
    assert summary.step_status is StepStatus.SUCCESS
    rows = store.rows("ad_renderings")
    assert len(rows) == 1
    assert rows[0]["status"] == "processed"
    assert rows[0]["error_message"] is None


def test_max_ads_limits_targets(tmp_path):
    store = FakeStore()
    serp_id = _seed(store, [f"https://site{i}.org" for i in range(4)])
    targets = _renderer(tmp_path, store).targets_for_serp(serp_id, max_ads=2)
    assert [t.ad_id for t in targets] == ["ad1", "ad2"]


def test_summary_with_no_results_is_skipped():
    assert RenderSummary("s").step_status is StepStatus.SKIPPED
    summary = RenderSummary("s", [RenderResult("a", "png", "error")])
    assert summary.step_status is StepStatus.FAILED
    assert summary.failures()[0].ad_id == "a"


def test_render_target_defaults():
    target = RenderTarget(ad_id="a", serp_id="s", url=None)
    assert target.title == "" and target.position is None
