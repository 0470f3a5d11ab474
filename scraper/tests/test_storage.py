import asyncio

from fakes import FakeStorageClient, FakeStore, RecordingSleep, png_b64, png_bytes

from advault_scraper.backoff import BackoffPolicy
from advault_scraper.storage import PUBLIC_MEMBER, PUBLIC_READ_ROLE, ArtifactUploader, blob_name_for


def _uploader(store=None, client=None, sleep=None):
    return ArtifactUploader(
        client or FakeStorageClient(),
        store or FakeStore(),
        write_policy=BackoffPolicy.constant(3, 2.0),
        sleep=sleep or RecordingSleep(),
        scraper_version="advault:test",
    )


def _png_row(store, name, *, content=True, serp_id="s1", storage_url=None):
    return store.insert(
        "ad_renderings",
        {
            "ad_id": f"ad-{name}",
            "serp_id": serp_id,
            "rendering_type": "png",
            "content_path": f"scraper-results/job-1/rendered/{name}",
            "binary_content": png_b64() if content else None,
            "storage_url": storage_url,
            "status": "processed",
        },
    )


def test_blob_name_uses_file_name_or_id():
    assert blob_name_for({"id": "r1", "content_path": "a/b/rendered-x.png"}) == "rendered-x.png"
    assert blob_name_for({"id": "r1", "content_path": None}) == "rendering-r1.png"


def test_ensure_bucket_creates_public_bucket_once():
    client = FakeStorageClient()
    uploader = _uploader(client=client)
    assert uploader.ensure_bucket("ads")
    bindings = client.buckets["ads"].policy.bindings
    assert bindings == [{"role": PUBLIC_READ_ROLE, "members": {PUBLIC_MEMBER}}]
    assert uploader.ensure_bucket("ads")
    assert len(client.buckets["ads"].policy.bindings) == 1


def test_ensure_bucket_reports_failure():
    client = FakeStorageClient()
    client.deny_create = True
    assert not _uploader(client=client).ensure_bucket("ads")


def test_upload_returns_public_url_and_sets_headers():
    client = FakeStorageClient()
    url = _uploader(client=client).upload(png_bytes(), "ads", "x.png", metadata={"ad_id": "a"})
    assert url == "https://storage.googleapis.com/ads/x.png"
    blob = client.buckets["ads"].blobs["x.png"]
    assert blob.content_type == "image/png"
    assert blob.metadata == {"ad_id": "a"}
    assert "max-age" in blob.cache_control


def test_upload_pending_writes_storage_urls():
    store = FakeStore()
    client = FakeStorageClient()
    row = _png_row(store, "rendered-plumbboston.png")
    _png_row(store, "other-serp.png", serp_id="s2")
    results = asyncio.run(_uploader(store, client).upload_pending("ads", serp_id="s1"))

    assert [r.status for r in results] == ["processed"]
    stored = store.select_one("ad_renderings", [])
    assert stored["id"] == row["id"]
    assert stored["storage_url"] == "https://storage.googleapis.com/ads/rendered-plumbboston.png"
    blob = client.buckets["ads"].blobs["rendered-plumbboston.png"]
    assert blob.data == png_bytes()
    assert blob.metadata["scraper_version"] == "advault:test"
    assert blob.metadata["width"] == "8"


def test_upload_pending_records_upload_failures():
    store = FakeStore()
    client = FakeStorageClient()
    client.fail_uploads = True
    _png_row(store, "a.png")
    results = asyncio.run(_uploader(store, client).upload_pending("ads"))
    assert results[0].status == "error"
    assert store.rows("ad_renderings")[0]["storage_url"] is None


def test_url_write_is_retried():
    store = FakeStore()
    sleep = RecordingSleep()
    _png_row(store, "a.png")
    store.fail_updates["ad_renderings"] = 2
    results = asyncio.run(_uploader(store, sleep=sleep).upload_pending("ads"))
    assert results[0].storage_url
    assert sleep.delays == [2.0, 2.0]


def test_backfill_matches_by_file_name_and_lists_once():
    store = FakeStore()
    client = FakeStorageClient()
    _png_row(store, "rendered-a.png", content=False)
    _png_row(store, "rendered-b.png", content=False)
    _png_row(store, "rendered-c.png", content=False, storage_url="https://already/set.png")
    client.put("ads", "rendered-a.png")

    results = asyncio.run(_uploader(store, client).backfill_storage_urls("ads"))
    assert client.list_calls == 1
    assert {r.filename: r.status for r in results} == {"rendered-a.png": "updated", "rendered-b.png": "unmatched"}
    by_name = {blob_name_for(r): r["storage_url"] for r in store.rows("ad_renderings")}
    assert by_name["rendered-a.png"] == "https://storage.googleapis.com/ads/rendered-a.png"
    assert by_name["rendered-b.png"] is None
    assert by_name["rendered-c.png"] == "https://already/set.png"


def test_backfill_with_nothing_missing_does_not_list():
    client = FakeStorageClient()
    assert asyncio.run(_uploader(client=client).backfill_storage_urls("ads")) == []
    assert client.list_calls == 0
