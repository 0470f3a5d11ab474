"""Scraping-provider client: job submission, result polling and realtime renders.

All HTTP goes through an injected :class:`requests.Session`; the blocking
calls run in worker threads via :func:`asyncio.to_thread` so polling loops
stay cooperative.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import requests

from .backoff import NOT_READY, BackoffPolicy, Sleep, poll, retry
from .errors import JobFailedError, NetworkError, ProviderResponseError, SubmissionError
from .logging import jlog, joblog

PERMANENT_STATUS_CODES = frozenset({400, 401, 403, 422})
TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})
# The provider did not create a job when it answers with one of these.
NOT_ACCEPTED_STATUS_CODES = frozenset({429, 503})
READY_STATES = frozenset({"done", "completed"})
FAILED_STATES = frozenset({"faulted", "failed", "error"})

DEFAULT_SOURCE = "google_ads"
DEFAULT_RENDER_WAIT_S = 3


class _TransientHTTPError(NetworkError):
    pass


@dataclass(frozen=True)
class SearchRequest:
    query: str
    location: str
    device: str = "desktop"
    pages: int = 1
    start_page: int = 1
    locale: str = "en-US"
    parse: bool = True

    def to_payload(self) -> dict[str, Any]:
        return {
            "source": DEFAULT_SOURCE,
            "query": self.query,
            "geo_location": self.location,
            "device": self.device,
            "parse": self.parse,
            "start_page": self.start_page,
            "pages": self.pages,
            "locale": self.locale,
            "user_agent_type": self.device,
            "context": [{"key": "ad_extraction", "value": "true"}],
        }


def build_session(username: str, password: str, *, user_agent: str | None = None) -> requests.Session:
    session = requests.Session()
    session.auth = (username, password)
    session.headers.update({"Content-Type": "application/json", "Accept": "application/json"})
    if user_agent:
        session.headers["User-Agent"] = user_agent
    return session


def _json(resp: requests.Response, what: str) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise ProviderResponseError(f"{what}: response is not JSON ({resp.status_code})") from exc


class JobSubmissionClient:
    """Submits provider jobs and waits for their results."""

    def __init__(
        self,
        session: requests.Session,
        *,
        base_url: str,
        realtime_url: str,
        poll_policy: BackoffPolicy,
        submit_policy: BackoffPolicy | None = None,
        request_timeout: float = 20.0,
        render_timeout: float = 300.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.realtime_url = realtime_url.rstrip("/")
        self.poll_policy = poll_policy
        self.submit_policy = submit_policy or BackoffPolicy(max_attempts=3, initial_delay=2.0, max_delay=8.0)
        self.request_timeout = request_timeout
        self.render_timeout = render_timeout
        self.sleep = sleep

    # ============================
    # Submission
    # ============================

    def _post_job(self, payload: Mapping[str, Any]) -> str:
        try:
            resp = self.session.post(f"{self.base_url}/queries", json=dict(payload), timeout=self.request_timeout)
        except requests.ConnectTimeout as exc:
            raise _TransientHTTPError(f"connect timeout submitting job: {exc}") from exc
        except requests.RequestException as exc:
            raise SubmissionError(f"job submission failed: {exc}") from exc
        if resp.status_code in NOT_ACCEPTED_STATUS_CODES:
            raise _TransientHTTPError(f"provider not accepting jobs ({resp.status_code})")
        if resp.status_code >= 400:
            raise SubmissionError(f"job submission rejected ({resp.status_code}): {resp.text[:300]}")
        body = _json(resp, "submit")
        job_id = body.get("id") if isinstance(body, Mapping) else None
        if not job_id:
            raise SubmissionError("job submission response carried no job id")
        return str(job_id)

    async def submit(self, payload: Mapping[str, Any], *, cancel: asyncio.Event | None = None) -> str:
        """Submit one scrape job and return the provider-assigned job id.

        Only requests the provider demonstrably did not accept are retried, so
        a retry never creates a second billed job.
        """

        try:
            job_id = await retry(
                lambda: asyncio.to_thread(self._post_job, payload),
                self.submit_policy,
                label="submit_job",
                retry_on=(_TransientHTTPError,),
                cancel=cancel,
                sleep=self.sleep,
            )
        except _TransientHTTPError as exc:
            raise SubmissionError(str(exc)) from exc
        joblog("job_submitted", job_id=job_id, query=payload.get("query"), location=payload.get("geo_location"))
        return job_id

    # ============================
    # Polling
    # ============================

    def _get(self, path: str, **params: Any) -> requests.Response | None:
        try:
            resp = self.session.get(f"{self.base_url}{path}", params=params or None, timeout=self.request_timeout)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise _TransientHTTPError(f"GET {path}: {exc}") from exc
        except requests.RequestException as exc:
            raise NetworkError(f"GET {path}: {exc}") from exc
        if resp.status_code == 404:
            return None
        if resp.status_code in TRANSIENT_STATUS_CODES:
            raise _TransientHTTPError(f"GET {path}: transient status {resp.status_code}")
        if resp.status_code in PERMANENT_STATUS_CODES:
            raise SubmissionError(f"GET {path}: rejected ({resp.status_code})")
        if resp.status_code >= 400:
            raise NetworkError(f"GET {path}: unexpected status {resp.status_code}")
        return resp

    def _check_once(self, job_id: str) -> Any:
        resp = self._get(f"/queries/{job_id}")
        if resp is None:
            return NOT_READY
        info = _json(resp, "status")
        if not isinstance(info, Mapping):
            raise ProviderResponseError(f"status for job {job_id} is not an object")
        status = str(info.get("status", "")).lower()
        if status in FAILED_STATES:
            raise JobFailedError(job_id, status)
        if status not in READY_STATES:
            return NOT_READY
        resp = self._get(f"/queries/{job_id}/results", type="parsed")
        if resp is None:
            return NOT_READY
        body = _json(resp, "results")
        if not isinstance(body, Mapping) or not body.get("results"):
            return NOT_READY
        return dict(body)

    async def wait_for_result(
        self,
        job_id: str,
        policy: BackoffPolicy | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> dict[str, Any]:
        """Poll a submitted job until its parsed results are available.

        Args:
            job_id: Provider job id returned by :meth:`submit`.
            policy: Overrides the client's default polling policy.
            cancel: Checked before every attempt.

        Returns:
            The raw parsed-results payload.

        Raises:
            JobFailedError: The provider reported the job as failed.
            PollTimeoutError: Results never became ready within the budget.
            SubmissionError: Authentication was rejected while polling.
        """

        policy = policy or self.poll_policy
        raw = await poll(
            lambda: asyncio.to_thread(self._check_once, job_id),
            policy,
            label=f"job:{job_id}",
            retry_on=(_TransientHTTPError,),
            cancel=cancel,
            sleep=self.sleep,
        )
        joblog("job_results_ready", job_id=job_id, results=len(raw.get("results") or []))
        return raw

    # ============================
    # Realtime rendering
    # ============================

    def render_payload(self, url: str, render: str, *, simple: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {"source": "universal", "url": url, "render": render}
        if not simple:
            payload["browser_instructions"] = [{"type": "wait", "wait_time_s": DEFAULT_RENDER_WAIT_S}]
        return payload

    def _render_once(self, url: str, render: str, simple: bool) -> Any:
        payload = self.render_payload(url, render, simple=simple)
        try:
            resp = self.session.post(f"{self.realtime_url}/queries", json=payload, timeout=self.render_timeout)
        except requests.RequestException as exc:
            raise NetworkError(f"render {render} request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise NetworkError(f"render {render} rejected ({resp.status_code}): {resp.text[:300]}")
        body = _json(resp, "render")
        results = body.get("results") if isinstance(body, Mapping) else None
        if not results or not isinstance(results[0], Mapping) or results[0].get("content") in (None, ""):
            raise ProviderResponseError(f"render {render}: response carried no content")
        return results[0]["content"]

    async def render(self, url: str, render: str, *, simple: bool = False) -> Any:
        """Request a synchronous render of ``url`` as ``html`` or ``png``."""

        jlog("info", event="render_request", url=url, render=render, simple=simple)
        return await asyncio.to_thread(self._render_once, url, render, simple)


__all__ = [
    "FAILED_STATES",
    "READY_STATES",
    "JobSubmissionClient",
    "SearchRequest",
    "build_session",
]
