import json
import logging

from advault_scraper.errors import JobFailedError, PollTimeoutError, error_kind
from advault_scraper.logging import jlog, joblog, logging_context


def _payloads(caplog):
    return [json.loads(r.getMessage()) for r in caplog.records if r.name == "advault"]


def test_jlog_merges_nested_context(caplog):
    caplog.set_level(logging.INFO, logger="advault")
    with logging_context(query="plumbers near me"):
        with logging_context(job_id="j1"):
            jlog("info", event="inner")
        jlog("info", event="outer")
    inner, outer = _payloads(caplog)
    assert inner["query"] == "plumbers near me" and inner["job_id"] == "j1"
    assert "job_id" not in outer


def test_joblog_uses_requested_level(caplog):
    caplog.set_level(logging.INFO, logger="advault")
    joblog("step_status", job_id="j1", level="error", status="failed")
    record = caplog.records[-1]
    assert record.levelno == logging.ERROR
    assert json.loads(record.getMessage())["event"] == "step_status"


def test_error_kind_labels():
    assert error_kind(JobFailedError("j", "faulted")) == "job_failed"
    assert error_kind(PollTimeoutError("job:j", 3)) == "timeout"
    assert error_kind(RuntimeError("x")) == "unexpected"
