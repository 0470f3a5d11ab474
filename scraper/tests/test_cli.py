import json

import pytest
from fakes import TWO_ADS, FakeStore, serp_payload

from advault_scraper import cli
from advault_scraper.models import Step, StepStatus
from advault_scraper.staging import StagingGateway
from advault_scraper.tracking import JobTracker

CONFIG_KEYS = ("DB_HOST", "DB_SQL_CONN", "DB_PASSWORD", "OXYLABS_USERNAME", "OXYLABS_PASSWORD")


@pytest.fixture
def store(monkeypatch):
    fake = FakeStore()
    monkeypatch.setattr(cli, "open_store", lambda settings: fake)
    return fake


def _last_json(capsys):
    return json.loads(capsys.readouterr().out)


def test_parser_knows_every_command():
    parser = cli.build_parser()
    for argv in (
        ["run", "q", "l", "--no-png"],
        ["batch", "items.json", "--resume"],
        ["reset", "errors"],
        ["process-staging", "--limit", "5"],
        ["upload", "--serp-id", "s1"],
        ["backfill"],
        ["verify", "job-1"],
        ["status", "--stats"],
        ["report", "--job-id", "job-1"],
    ):
        assert parser.parse_args(argv).handler is not None


def test_missing_configuration_exits_with_1(monkeypatch, capsys):
    for key in CONFIG_KEYS:
        monkeypatch.delenv(key, raising=False)
    assert cli.main(["run", "plumbers near me", "Boston, MA"]) == 1
    assert "configuration error" in capsys.readouterr().err


def test_reset_job_command(store, capsys):
    tracker = JobTracker(store)
    tracker.start("q", "l", job_id="job-1")
    tracker.mark("job-1", Step.SUBMISSION, StepStatus.FAILED, error="boom")
    StagingGateway(store).stage("job-1", "q", "l", serp_payload(TWO_ADS))
    store.rows("staging_serps")[0]["status"] = "error"

    assert cli.main(["reset", "job", "job-1"]) == 0
    out = _last_json(capsys)
    assert out["previous_status"] == "error"
    assert store.rows("staging_serps")[0]["status"] == "pending"
    assert store.rows("job_tracking")[0]["api_call_status"] == "pending"


def test_reset_unknown_job_fails(store, capsys):
    assert cli.main(["reset", "job", "ghost"]) == 1
    assert "ghost" in capsys.readouterr().err


def test_process_staging_then_verify(store, capsys):
    JobTracker(store).start("q", "l", job_id="job-1")
    StagingGateway(store).stage("job-1", "q", "l", serp_payload(TWO_ADS))

    assert cli.main(["process-staging"]) == 0
    assert _last_json(capsys)[0]["status"] == "processed"
    assert cli.main(["verify", "job-1"]) == 0
    out = _last_json(capsys)
    assert out["ok"] is True
    assert out["ad_count"] == 2


def test_status_stats(store, capsys):
    JobTracker(store).start("q", "l", job_id="job-1")
    assert cli.main(["status", "--stats"]) == 0
    assert _last_json(capsys)["status"] == {"pending": 1}


def test_report_writes_html(store, tmp_path, capsys):
    out = tmp_path / "report.html"
    assert cli.main(["report", "--output", str(out)]) == 0
    assert _last_json(capsys)["report"] == str(out)
    assert out.read_text(encoding="utf-8").startswith("<!DOCTYPE html>")
